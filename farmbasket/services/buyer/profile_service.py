# farmbasket/services/buyer/profile_service.py
from __future__ import annotations

import re
from typing import List, Optional

from farmbasket.errors import NotFound, ValidationError
from farmbasket.models.buyer.order_models import Order
from farmbasket.models.buyer.profile_models import BuyerProfile
from farmbasket.repositories.contracts import OrderRepository, ProfileRepository
from farmbasket.services.state_store import StateStore, records_error

MAX_DISPLAY_NAME_LENGTH = 80
PHONE_RE = re.compile(r"^\+?[0-9][0-9 ()/-]{2,29}$")


class BuyerProfileService:
    """
    Buyer-editable profile fields, favourite articles and the order history.
    Every change is saved to the profile repository before state is updated.
    """

    def __init__(
        self,
        state: StateStore,
        profiles: ProfileRepository,
        orders: OrderRepository,
        seller_id: str,
    ):
        self.state = state
        self.profiles = profiles
        self.orders = orders
        self.seller_id = seller_id

    # =========================
    # PROFILE FIELDS
    # =========================
    @records_error
    async def save_profile(self, display_name: Optional[str] = None, phone: Optional[str] = None) -> BuyerProfile:
        """Only the fields passed are changed; an empty phone clears it."""
        profile = self.state.state.profile
        if profile is None:
            raise ValidationError("No buyer profile loaded")

        update = {}
        if display_name is not None:
            display_name = display_name.strip()
            if not display_name:
                raise ValidationError("Name must not be empty")
            if len(display_name) > MAX_DISPLAY_NAME_LENGTH:
                raise ValidationError(f"Name must be at most {MAX_DISPLAY_NAME_LENGTH} characters")
            update["display_name"] = display_name

        if phone is not None:
            phone = phone.strip()
            if phone and not PHONE_RE.match(phone):
                raise ValidationError("Please enter a valid phone number")
            update["phone"] = phone

        if not update:
            raise ValidationError("Nothing to update")

        saved = await self.profiles.save_buyer_profile(profile.model_copy(update=update))
        print(f"✅ save_profile: {saved.id} updated {sorted(update)}")

        await self.state.patch(profile=saved, last_success="profile_saved", error=None)
        return saved

    # =========================
    # FAVOURITES
    # =========================
    @records_error
    async def toggle_favourite(self, article_id: str) -> List[str]:
        if not article_id:
            raise ValidationError("Article id is required")

        try:
            profile = await self.profiles.get_buyer_profile()
        except NotFound:
            raise ValidationError("No buyer profile found")

        favourites = list(profile.favourite_article_ids)
        if article_id in favourites:
            favourites.remove(article_id)
            print(f"⭐ toggle_favourite: removed {article_id}")
        else:
            favourites.append(article_id)
            print(f"⭐ toggle_favourite: added {article_id}")

        saved = await self.profiles.save_buyer_profile(profile.model_copy(update={"favourite_article_ids": favourites}))
        await self.state.patch(profile=saved, error=None)
        return saved.favourite_article_ids

    # =========================
    # ORDER HISTORY
    # =========================
    @records_error
    async def load_order_history(self) -> List[Order]:
        profile = self.state.state.profile
        if profile is None:
            try:
                profile = await self.profiles.get_buyer_profile()
            except NotFound:
                profile = None

        if profile is None or not profile.placed_order_ids:
            print("⚠️ load_order_history: no orders to load")
            orders = []
        else:
            orders = await self.orders.get_buyer_orders(self.seller_id, profile.placed_order_ids)
            print(f"✅ load_order_history: {len(orders)} order(s)")

        await self.state.patch(order_history=orders, error=None)
        return orders
