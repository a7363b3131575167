# farmbasket/repositories/mongo_profile_repository.py

from datetime import datetime, timezone
from typing import Callable, Optional

from farmbasket.errors import AuthRequired, NotFound
from farmbasket.models.buyer.account_models import CleanupReport
from farmbasket.models.buyer.basket_models import DraftBasket
from farmbasket.models.buyer.profile_models import BuyerProfile
from farmbasket.mongo import from_bson, get_col, run_blocking, to_bson
from farmbasket.repositories.contracts import ProfileRepository


class MongoProfileRepository(ProfileRepository):
    """buyer_profiles collection, _id = user id. The draft basket lives inside the profile."""

    COLLECTION = "buyer_profiles"

    def __init__(self, current_user_id: Callable[[], Optional[str]], timeout: Optional[float] = None):
        self._current_user_id = current_user_id
        self.timeout = timeout

    def _col(self):
        return get_col(self.COLLECTION)

    def _user_id(self) -> str:
        user_id = self._current_user_id()
        if not user_id:
            raise AuthRequired("No signed-in user")
        return user_id

    @staticmethod
    def _from_doc(doc: dict) -> BuyerProfile:
        data = from_bson(dict(doc))
        data["id"] = data.pop("_id")
        data.pop("updated_at", None)
        return BuyerProfile.model_validate(data)

    # =========================
    # PROFILE
    # =========================
    async def get_buyer_profile(self) -> BuyerProfile:
        user_id = self._user_id()
        doc = await run_blocking(self._col().find_one, {"_id": user_id}, timeout=self.timeout)
        if not doc:
            raise NotFound(f"No buyer profile for {user_id}")
        return self._from_doc(doc)

    async def save_buyer_profile(self, profile: BuyerProfile) -> BuyerProfile:
        user_id = profile.id or self._user_id()
        saved = profile.model_copy(update={"id": user_id})

        doc = saved.model_dump(mode="python")
        doc.pop("id", None)
        doc["updated_at"] = datetime.now(timezone.utc)

        await run_blocking(
            self._col().replace_one, {"_id": user_id}, to_bson(doc), upsert=True, timeout=self.timeout
        )
        return saved

    async def delete_buyer_profile(self, user_id: str) -> None:
        await run_blocking(self._col().delete_one, {"_id": user_id}, timeout=self.timeout)

    async def clear_user_data(self, seller_id: str, profile: BuyerProfile) -> CleanupReport:
        result = await run_blocking(self._col().delete_one, {"_id": profile.id}, timeout=self.timeout)
        report = CleanupReport(profile_deleted=True)
        if result.deleted_count == 0:
            print(f"⚠️ clear_user_data: profile {profile.id} was already gone")
        return report

    # =========================
    # DRAFT BASKET
    # =========================
    async def save_draft_basket(self, draft: DraftBasket) -> None:
        user_id = self._user_id()
        await run_blocking(
            self._col().update_one,
            {"_id": user_id},
            {"$set": {"draft_basket": to_bson(draft.model_dump(mode="python")),
                      "updated_at": datetime.now(timezone.utc)}},
            upsert=True,
            timeout=self.timeout,
        )

    async def clear_draft_basket(self) -> None:
        user_id = self._user_id()
        await run_blocking(
            self._col().update_one,
            {"_id": user_id},
            {"$set": {"draft_basket": None, "updated_at": datetime.now(timezone.utc)}},
            timeout=self.timeout,
        )
