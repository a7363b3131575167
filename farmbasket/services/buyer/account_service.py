# farmbasket/services/buyer/account_service.py
from __future__ import annotations

import re
from typing import Optional

from farmbasket.errors import AuthRequired, NotFound, OrderFlowError, ValidationError
from farmbasket.models.buyer.account_models import CleanupReport
from farmbasket.models.buyer.profile_models import BuyerProfile
from farmbasket.models.buyer.state_models import BuyerState
from farmbasket.repositories.contracts import AuthRepository, OrderRepository, ProfileRepository
from farmbasket.services.buyer.basket_service import BasketStore
from farmbasket.services.buyer.pickup_schedule_service import PickupSchedule
from farmbasket.services.state_store import StateStore, records_error

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 6


class AccountLifecycleCoordinator:
    """
    Guest -> permanent linking, account deletion, destructive guest logout
    and plain sign-out.
    """

    def __init__(
        self,
        state: StateStore,
        basket: BasketStore,
        auth: AuthRepository,
        profiles: ProfileRepository,
        orders: OrderRepository,
        schedule: PickupSchedule,
        seller_id: str,
    ):
        self.state = state
        self.basket = basket
        self.auth = auth
        self.profiles = profiles
        self.orders = orders
        self.schedule = schedule
        self.seller_id = seller_id

    # =========================
    # LINK
    # =========================
    @records_error
    async def link_guest_to_permanent(self, email: str, password: str) -> BuyerProfile:
        email = (email or "").strip().lower()
        if not EMAIL_RE.match(email):
            raise ValidationError("Please enter a valid email address")
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        if not await self.auth.is_anonymous():
            raise ValidationError("This account is already linked")

        user_id = await self.auth.link_with_email(email, password)
        print(f"✅ link_guest_to_permanent: {user_id} linked to {email}")

        profile = self.state.state.profile or BuyerProfile(id=user_id)
        profile = profile.model_copy(update={"email": email, "anonymous": False})
        try:
            profile = await self.profiles.save_buyer_profile(profile)
        except OrderFlowError as e:
            # credentials are linked already; the email lands in the profile on the next save
            print(f"⚠️ link_guest_to_permanent: profile update failed - {e.message}")

        await self.state.patch(
            user_id=user_id,
            is_anonymous=False,
            profile=profile,
            last_success="account_linked",
            error=None,
        )
        return profile

    # =========================
    # DELETE
    # =========================
    @records_error
    async def delete_account(self, user_id: Optional[str] = None) -> CleanupReport:
        """
        Cancels orders with a future pickup, keeps past ones for the seller,
        deletes the profile and the auth identity. Steps that fail are listed
        in the report; the remaining steps still run.
        """
        user_id = user_id or await self.auth.current_user_id()
        if not user_id:
            raise AuthRequired("Please sign in to delete your account")

        report = CleanupReport()
        profile = await self._profile_for_cleanup(report)

        if profile is None:
            # nothing stored for this buyer
            report.profile_deleted = True
        else:
            await self._cancel_future_orders(profile, report)
            try:
                cleared = await self.profiles.clear_user_data(self.seller_id, profile)
                report.profile_deleted = cleared.profile_deleted
                report.errors.extend(cleared.errors)
            except OrderFlowError as e:
                report.errors.append(f"profile: {e.message}")

        await self.basket.clear()

        try:
            await self.auth.delete_account()
            report.auth_deleted = True
        except OrderFlowError as e:
            report.errors.append(f"auth: {e.message}")

        print(
            f"🔐 delete_account: cancelled={len(report.cancelled_orders)} "
            f"skipped={len(report.skipped_orders)} profile_deleted={report.profile_deleted} "
            f"errors={len(report.errors)}"
        )

        await self._reset_session(last_success="account_deleted", last_cleanup=report)
        return report

    async def _profile_for_cleanup(self, report: CleanupReport) -> Optional[BuyerProfile]:
        try:
            return await self.profiles.get_buyer_profile()
        except NotFound:
            return None
        except OrderFlowError as e:
            report.errors.append(f"profile load: {e.message}")
            return self.state.state.profile

    async def _cancel_future_orders(self, profile: BuyerProfile, report: CleanupReport):
        now = self.schedule.now()
        for date_key, order_id in sorted(profile.placed_order_ids.items()):
            if self.schedule.parse_date_key(date_key) <= now:
                report.skipped_orders.append(order_id)
                continue

            report.future_order_ids.append(order_id)
            try:
                await self.orders.cancel_order(self.seller_id, date_key, order_id)
                report.cancelled_orders.append(order_id)
            except NotFound:
                report.cancelled_orders.append(order_id)
            except OrderFlowError as e:
                report.errors.append(f"order {order_id}: {e.message}")

    # =========================
    # LOGOUT
    # =========================
    @records_error
    async def guest_logout_with_data_wipe(self, user_id: Optional[str] = None) -> None:
        if not await self.auth.is_anonymous():
            raise ValidationError("Only guest sessions can be wiped, sign out instead")

        user_id = user_id or await self.auth.current_user_id()
        if user_id:
            await self.profiles.delete_buyer_profile(user_id)
            print(f"🗑️ guest_logout: deleted profile {user_id}")

        await self.basket.clear()

        try:
            await self.auth.delete_account()
        except OrderFlowError as e:
            print(f"⚠️ guest_logout: could not delete auth account - {e.message}")

        await self._reset_session(last_success="guest_logged_out")

    @records_error
    async def sign_out(self) -> None:
        if await self.auth.is_anonymous():
            raise ValidationError("Guest sessions would lose their data, use guest logout instead")

        await self.basket.clear()
        await self.auth.sign_out()
        await self._reset_session(last_success="signed_out")

    async def _reset_session(self, **fields):
        def reset(s: BuyerState) -> BuyerState:
            return BuyerState(
                available_pickup_dates=s.available_pickup_dates,
                articles=s.articles,
                requires_login=True,
                **fields,
            )

        await self.state.update(reset)
