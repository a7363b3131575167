# farmbasket/models/buyer/state_models.py

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from farmbasket.models.buyer.account_models import CleanupReport, InitializationStep, NOT_STARTED
from farmbasket.models.buyer.article_models import Article
from farmbasket.models.buyer.basket_models import BasketSnapshot, OrderedLineItem
from farmbasket.models.buyer.order_models import MergeConflict, Order
from farmbasket.models.buyer.profile_models import BuyerProfile


class BuyerState(BaseModel):
    """Everything one buyer session shows. Replaced wholesale on every update."""

    # session
    user_id: Optional[str] = None
    is_anonymous: bool = True
    requires_login: bool = False
    init_step: InitializationStep = NOT_STARTED
    profile: Optional[BuyerProfile] = None

    # catalog
    articles: List[Article] = Field(default_factory=list)

    # basket (mirrors BasketStore)
    basket: BasketSnapshot = Field(default_factory=BasketSnapshot)

    # pickup date selection
    available_pickup_dates: List[datetime] = Field(default_factory=list)
    selected_pickup_date: Optional[datetime] = None

    # currently loaded order
    order_id: Optional[str] = None
    order_date_key: Optional[str] = None
    pickup_date: Optional[datetime] = None
    created_at: Optional[datetime] = None
    original_order_items: List[OrderedLineItem] = Field(default_factory=list)
    can_edit: bool = True

    # order history (newest pickup first)
    order_history: List[Order] = Field(default_factory=list)

    # merge flow
    existing_order_for_merge: Optional[Order] = None
    merge_conflicts: List[MergeConflict] = Field(default_factory=list)

    # outcome of the last operation
    last_success: Optional[str] = None
    error: Optional[str] = None
    last_cleanup: Optional[CleanupReport] = None

    def without_order(self) -> "BuyerState":
        return self.model_copy(update={
            "order_id": None,
            "order_date_key": None,
            "pickup_date": None,
            "created_at": None,
            "original_order_items": [],
            "can_edit": True,
        })
