# farmbasket/models/buyer/account_models.py
from __future__ import annotations

from dataclasses import dataclass, field, asdict
from typing import List, Optional


@dataclass
class CleanupReport:
    # future-pickup orders targeted for cancellation
    future_order_ids: List[str] = field(default_factory=list)
    cancelled_orders: List[str] = field(default_factory=list)
    # past orders kept for the seller's records
    skipped_orders: List[str] = field(default_factory=list)
    profile_deleted: bool = False
    auth_deleted: bool = False
    errors: List[str] = field(default_factory=list)

    @property
    def all_orders_cancelled(self) -> bool:
        return len(self.future_order_ids) == len(self.cancelled_orders)

    @property
    def is_successful(self) -> bool:
        return not self.errors and self.profile_deleted

    def to_dict(self):
        d = asdict(self)
        d["all_orders_cancelled"] = self.all_orders_cancelled
        d["is_successful"] = self.is_successful
        return d


@dataclass(frozen=True)
class InitializationStep:
    name: str
    failed_step: Optional[str] = None
    message: Optional[str] = None

    @property
    def is_failed(self) -> bool:
        return self.name == "Failed"

    @property
    def is_complete(self) -> bool:
        return self.name == "Complete"

    def to_dict(self):
        return asdict(self)


CHECKING_AUTH = InitializationStep("CheckingAuth")
LOADING_PROFILE = InitializationStep("LoadingProfile")
LOADING_ORDER = InitializationStep("LoadingOrder")
LOADING_ARTICLES = InitializationStep("LoadingArticles")
COMPLETE = InitializationStep("Complete")
NOT_STARTED = InitializationStep("NotStarted")


def failed(step: str, message: str) -> InitializationStep:
    return InitializationStep("Failed", failed_step=step, message=message)
