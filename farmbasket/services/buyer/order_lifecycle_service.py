# farmbasket/services/buyer/order_lifecycle_service.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from farmbasket.errors import (
    AuthRequired,
    EditWindowClosed,
    NotFound,
    OrderFlowError,
    RemoteFailure,
    ValidationError,
)
from farmbasket.models.buyer.article_models import Article
from farmbasket.models.buyer.order_models import MergeConflict, MergeResolution, Order, OrderStatus
from farmbasket.models.buyer.profile_models import BuyerProfile
from farmbasket.repositories.contracts import AuthRepository, OrderRepository, ProfileRepository
from farmbasket.services.buyer.basket_service import BasketStore
from farmbasket.services.buyer.order_reconciler import (
    MergeRequired,
    OrderReconciler,
    Reject,
    RejectReason,
    apply_resolutions,
    resolve_conflict,
)
from farmbasket.services.buyer.pickup_schedule_service import PickupSchedule, order_path
from farmbasket.services.state_store import StateStore, records_error


class OrderLifecycleManager:
    """
    Checkout, merge, edit, cancel and reorder for one buyer session.

    Remote writes happen first; the basket and the session state only change
    after the repository call returned. The exception is cancel, where an
    order that is already gone counts as cancelled.
    """

    def __init__(
        self,
        state: StateStore,
        basket: BasketStore,
        reconciler: OrderReconciler,
        orders: OrderRepository,
        profiles: ProfileRepository,
        auth: AuthRepository,
        schedule: PickupSchedule,
        seller_id: str,
        available_dates_count: int = 5,
    ):
        self.state = state
        self.basket = basket
        self.reconciler = reconciler
        self.orders = orders
        self.profiles = profiles
        self.auth = auth
        self.schedule = schedule
        self.seller_id = seller_id
        self.available_dates_count = available_dates_count

    # =========================
    # CHECKOUT
    # =========================
    @records_error
    async def checkout(self, pickup_date: Optional[datetime] = None):
        """
        Returns the placed Order, or the MergeRequired outcome when the buyer
        already has an order for that pickup date.
        """
        user_id = await self.auth.current_user_id()
        if not user_id:
            raise AuthRequired("Please sign in to place an order")

        items = self.basket.items
        if not items:
            raise ValidationError("Basket is empty")

        pickup = pickup_date or self.state.state.selected_pickup_date
        if pickup is None:
            raise ValidationError("Please choose a pickup date")

        if not self.schedule.is_pickup_date_valid(pickup):
            await self.state.patch(selected_pickup_date=None)
            await self.load_available_dates()
            raise ValidationError("The selected pickup date is no longer available. Please choose a new date.")

        profile = await self._load_profile(user_id)
        path = await self.reconciler.resolve_checkout_path(items, pickup, profile.placed_order_ids)

        if isinstance(path, Reject):
            raise self._reject_error(path)

        if isinstance(path, MergeRequired):
            print(f"⚠️ checkout: order {path.existing_order.id} already exists, {len(path.conflicts)} conflict(s)")
            await self.state.patch(
                profile=profile,
                selected_pickup_date=pickup,
                existing_order_for_merge=path.existing_order,
                merge_conflicts=path.conflicts,
                error=None,
            )
            return path

        order = Order(
            buyer_profile=profile.model_copy(update={"draft_basket": None}),
            created_at=self.schedule.now(),
            seller_id=self.seller_id,
            pickup_date=pickup,
            articles=items,
            status=OrderStatus.OPEN,
        )
        placed = await self.orders.place_order(order)
        print(f"✅ checkout: order placed {placed.id} for {path.date_key}")

        await self.basket.load_from_existing(placed.articles, placed.id, path.date_key)
        profile = await self._register_order(profile, path.date_key, placed.id)

        await self.state.update(lambda s: s.model_copy(update={
            "profile": profile,
            "selected_pickup_date": placed.pickup_date,
            "order_id": placed.id,
            "order_date_key": path.date_key,
            "pickup_date": placed.pickup_date,
            "created_at": placed.created_at,
            "original_order_items": list(placed.articles),
            "can_edit": self.schedule.can_edit_order(placed.pickup_date),
            "existing_order_for_merge": None,
            "merge_conflicts": [],
            "last_success": "order_placed",
            "error": None,
        }))
        return placed

    # =========================
    # MERGE
    # =========================
    @records_error
    async def resolve_merge_conflict(self, product_id: str, resolution: MergeResolution) -> List[MergeConflict]:
        st = self.state.state
        if st.existing_order_for_merge is None:
            raise ValidationError("No merge in progress")
        if not any(c.product_id == product_id for c in st.merge_conflicts):
            raise ValidationError(f"No conflict for product {product_id}")

        conflicts = resolve_conflict(st.merge_conflicts, product_id, resolution)
        await self.state.patch(merge_conflicts=conflicts)
        return conflicts

    @records_error
    async def confirm_merge(
        self,
        existing_order: Optional[Order] = None,
        conflicts: Optional[List[MergeConflict]] = None,
    ) -> Order:
        st = self.state.state
        existing = existing_order or st.existing_order_for_merge
        if existing is None:
            raise ValidationError("No merge in progress")
        if conflicts is None:
            conflicts = st.merge_conflicts

        if existing.status != OrderStatus.OPEN or not self.schedule.can_edit_order(existing.pickup_date):
            raise EditWindowClosed("The order for this pickup date can no longer be changed")

        merged = apply_resolutions(existing, self.basket.items, conflicts)
        updated = existing.model_copy(update={"articles": merged})
        await self.orders.update_order(updated)

        date_key = self.schedule.date_key(existing.pickup_date)
        print(f"✅ confirm_merge: order {existing.id} now has {len(merged)} line(s)")

        await self.basket.load_from_existing(merged, existing.id, date_key)
        profile = st.profile
        if profile is not None:
            profile = await self._register_order(profile, date_key, existing.id)

        await self.state.update(lambda s: s.model_copy(update={
            "profile": profile,
            "order_id": existing.id,
            "order_date_key": date_key,
            "pickup_date": existing.pickup_date,
            "created_at": existing.created_at,
            "original_order_items": merged,
            "can_edit": True,
            "existing_order_for_merge": None,
            "merge_conflicts": [],
            "last_success": "order_merged",
            "error": None,
        }))
        return updated

    async def dismiss_merge(self) -> None:
        await self.state.patch(existing_order_for_merge=None, merge_conflicts=[])

    # =========================
    # LOAD
    # =========================
    @records_error
    async def load_order(self, order_id: str, date_key: str) -> Order:
        """Loads one of the buyer's own orders; anyone else's order reads as NotFound."""
        try:
            user_id = await self.auth.current_user_id()
            if not user_id:
                raise AuthRequired("Please sign in to load an order")

            order = await self.orders.load_order(
                self.seller_id, order_id, order_path(self.seller_id, date_key, order_id)
            )
            if order.buyer_profile.id != user_id:
                print(f"⚠️ load_order: {user_id} asked for order {order_id} of another buyer")
                raise NotFound(f"Order {order_id} not found")
        except OrderFlowError:
            await self.basket.clear()
            await self.state.update(lambda s: s.without_order())
            raise

        await self.show_order(order, self.schedule.date_key(order.pickup_date))
        return order

    @records_error
    async def load_most_recent_editable_order(self) -> Optional[Order]:
        profile = self.state.state.profile
        if profile is None or not profile.placed_order_ids:
            return None

        order = await self.orders.get_open_editable_order(self.seller_id, profile.placed_order_ids)
        if order is None:
            return None

        await self.show_order(order, self.schedule.date_key(order.pickup_date))
        return order

    async def show_order(self, order: Order, date_key: str):
        can_edit = order.status == OrderStatus.OPEN and self.schedule.can_edit_order(order.pickup_date)
        await self.basket.load_from_existing(order.articles, order.id, date_key)
        await self.state.update(lambda s: s.model_copy(update={
            "order_id": order.id,
            "order_date_key": date_key,
            "pickup_date": order.pickup_date,
            "created_at": order.created_at,
            "selected_pickup_date": order.pickup_date,
            "original_order_items": list(order.articles),
            "can_edit": can_edit,
            "error": None,
        }))

    # =========================
    # UPDATE / CANCEL / COMPLETE
    # =========================
    @records_error
    async def update_order(self, order_id: Optional[str] = None) -> Order:
        st = self.state.state
        if not st.order_id or st.pickup_date is None:
            raise ValidationError("No order loaded")
        if order_id and order_id != st.order_id:
            raise ValidationError(f"Order {order_id} is not loaded")

        if not st.can_edit or not self.schedule.can_edit_order(st.pickup_date):
            raise EditWindowClosed("The edit deadline for this order has passed")

        user_id = await self.auth.current_user_id()
        if not user_id:
            raise AuthRequired("Please sign in to change your order")

        items = self.basket.items
        if not items:
            raise ValidationError("Basket is empty")

        order = Order(
            id=st.order_id,
            buyer_profile=(st.profile or BuyerProfile(id=user_id)).model_copy(update={"draft_basket": None}),
            created_at=st.created_at,
            seller_id=self.seller_id,
            pickup_date=st.pickup_date,
            articles=items,
            status=OrderStatus.OPEN,
        )
        try:
            await self.orders.update_order(order)
        except EditWindowClosed:
            # completed or cancelled remotely since it was loaded
            await self.state.patch(can_edit=False)
            raise
        print(f"✅ update_order: order {order.id} saved with {len(items)} line(s)")

        await self.basket.mark_baseline(items)
        await self.state.patch(original_order_items=items, last_success="order_updated", error=None)
        return order

    @records_error
    async def cancel_order(self, order_id: Optional[str] = None, date_key: Optional[str] = None) -> None:
        """
        Cancels the loaded order or one listed in the buyer's profile.
        The pickup date always comes from that record; a date_key sent by the
        client only has to agree with it.
        """
        st = self.state.state
        order_id = order_id or st.order_id
        if not order_id:
            raise ValidationError("No order loaded")

        known_key = self._date_key_for(order_id)
        if not known_key:
            raise NotFound(f"Order {order_id} not found")
        if date_key and date_key != known_key:
            raise ValidationError(f"Order {order_id} is not for pickup date {date_key}")
        date_key = known_key

        if st.order_id == order_id and st.pickup_date is not None:
            pickup = st.pickup_date
        else:
            pickup = self.schedule.parse_date_key(date_key)
        if not self.schedule.is_pickup_date_valid(pickup):
            raise EditWindowClosed("The order can no longer be cancelled")

        try:
            await self.orders.cancel_order(self.seller_id, date_key, order_id)
            print(f"✅ cancel_order: order {order_id} cancelled")
        except NotFound:
            print(f"⚠️ cancel_order: order {order_id} not found, treating as cancelled")

        if st.order_id is None or st.order_id == order_id:
            await self.basket.clear()

        profile = st.profile
        if profile is not None and order_id in profile.placed_order_ids.values():
            profile = profile.without_order(order_id)
            try:
                profile = await self.profiles.save_buyer_profile(profile)
            except OrderFlowError as e:
                print(f"⚠️ cancel_order: could not update order index - {e.message}")

        def apply(s):
            nxt = s.without_order() if s.order_id in (None, order_id) else s
            return nxt.model_copy(update={"profile": profile, "last_success": "order_cancelled", "error": None})

        await self.state.update(apply)

    @records_error
    async def complete_order(self, order_id: str, date_key: str) -> Order:
        """Seller-side hand-over; only sell-flavor sessions expose it."""
        order = await self.orders.load_order(
            self.seller_id, order_id, order_path(self.seller_id, date_key, order_id)
        )
        completed = order.transition(OrderStatus.COMPLETED)
        await self.orders.update_order(completed)
        print(f"✅ complete_order: order {order_id} completed")

        if self.state.state.order_id == order_id:
            await self.state.patch(can_edit=False, last_success="order_completed", error=None)
        return completed

    # =========================
    # REORDER / DATES
    # =========================
    @records_error
    async def reorder_with_new_date(self, new_pickup_date: datetime, catalog: Optional[List[Article]] = None):
        if not self.schedule.is_pickup_date_valid(new_pickup_date):
            await self.load_available_dates()
            raise ValidationError("The selected pickup date is no longer available. Please choose a new date.")

        items = self.basket.items
        if not items:
            raise ValidationError("No items to reorder")

        if catalog is None:
            catalog = self.state.state.articles

        repriced = []
        updated_prices = 0
        for item in items:
            article = _find_article(catalog, item.product_id)
            if article is not None and article.available:
                if article.price != item.price:
                    updated_prices += 1
                repriced.append(item.model_copy(update={
                    "price": article.price,
                    "product_name": article.product_name or item.product_name,
                    "unit": article.unit or item.unit,
                }))
            else:
                # unavailable or unknown: keep the old line, the buyer can remove it
                repriced.append(item)

        await self.state.update(lambda s: s.without_order().model_copy(update={
            "selected_pickup_date": new_pickup_date,
            "existing_order_for_merge": None,
            "merge_conflicts": [],
        }))
        await self.basket.replace_items(repriced)
        await self.state.patch(last_success="reorder_prepared", error=None)

        print(f"✅ reorder_with_new_date: {len(repriced)} line(s), {updated_prices} price(s) updated")
        return repriced

    @records_error
    async def select_pickup_date(self, pickup_date: datetime) -> datetime:
        if not self.schedule.is_pickup_date_valid(pickup_date):
            raise ValidationError("The selected pickup date is no longer available. Please choose a new date.")
        await self.state.patch(selected_pickup_date=pickup_date, error=None)
        return pickup_date

    async def start_new_order(self) -> None:
        """Empties the basket, forgets the loaded order and the stored draft."""
        await self.basket.clear()
        await self.state.update(lambda s: s.without_order().model_copy(update={
            "existing_order_for_merge": None,
            "merge_conflicts": [],
            "error": None,
        }))
        try:
            await self.profiles.clear_draft_basket()
        except OrderFlowError as e:
            print(f"⚠️ start_new_order: could not clear stored draft - {e.message}")

    async def load_available_dates(self) -> List[datetime]:
        dates = self.schedule.available_pickup_dates(self.available_dates_count)
        await self.state.patch(available_pickup_dates=dates)
        return dates

    # =========================
    # HELPERS
    # =========================
    async def _load_profile(self, user_id: str) -> BuyerProfile:
        try:
            return await self.profiles.get_buyer_profile()
        except NotFound:
            current = self.state.state.profile
            return current or BuyerProfile(id=user_id, display_name="Customer")

    async def _register_order(self, profile: BuyerProfile, date_key: str, order_id: str) -> BuyerProfile:
        """
        Adds the order to the profile index and drops the draft basket.
        Best effort: the order is already stored and stays reachable by date.
        """
        updated = profile.with_order(date_key, order_id).model_copy(update={"draft_basket": None})
        try:
            return await self.profiles.save_buyer_profile(updated)
        except OrderFlowError as e:
            print(f"⚠️ could not register order {order_id} in profile - {e.message}")
            return updated

    def _date_key_for(self, order_id: str) -> Optional[str]:
        st = self.state.state
        if st.order_id == order_id and st.order_date_key:
            return st.order_date_key
        if st.profile is not None:
            for key, oid in st.profile.placed_order_ids.items():
                if oid == order_id:
                    return key
        return None

    @staticmethod
    def _reject_error(reject: Reject) -> OrderFlowError:
        if reject.reason == RejectReason.STALE_PICKUP_DATE:
            return ValidationError(reject.message)
        if reject.reason == RejectReason.ORDER_LOCKED:
            return EditWindowClosed(reject.message)
        return RemoteFailure(reject.message)


def _find_article(catalog: List[Article], product_id: str) -> Optional[Article]:
    for article in catalog:
        if article.id == product_id:
            return article
    for article in catalog:
        if article.product_id and article.product_id == product_id:
            return article
    return None
