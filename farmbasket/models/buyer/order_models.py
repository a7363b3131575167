# farmbasket/models/buyer/order_models.py

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from farmbasket.errors import InvalidStatusTransition
from farmbasket.models.buyer.basket_models import OrderedLineItem
from farmbasket.models.buyer.profile_models import BuyerProfile


class OrderStatus(str, Enum):
    OPEN = "OPEN"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


# OPEN may be edited (OPEN -> OPEN); COMPLETED and CANCELLED are final
ALLOWED_TRANSITIONS = {
    OrderStatus.OPEN: {OrderStatus.OPEN, OrderStatus.COMPLETED, OrderStatus.CANCELLED},
    OrderStatus.COMPLETED: set(),
    OrderStatus.CANCELLED: set(),
}


class Order(BaseModel):
    id: str = ""
    buyer_profile: BuyerProfile = Field(default_factory=BuyerProfile)
    created_at: Optional[datetime] = None
    seller_id: str = ""
    pickup_date: datetime
    message: str = ""
    articles: List[OrderedLineItem] = Field(default_factory=list)
    status: OrderStatus = OrderStatus.OPEN

    @property
    def total(self) -> Decimal:
        return sum((a.line_total for a in self.articles), Decimal("0"))

    def can_transition(self, status: OrderStatus) -> bool:
        return status in ALLOWED_TRANSITIONS[self.status]

    def transition(self, status: OrderStatus) -> "Order":
        if not self.can_transition(status):
            raise InvalidStatusTransition(
                f"Order {self.id or '-'} is {self.status.value}, cannot move to {status.value}"
            )
        return self.model_copy(update={"status": status})


class MergeResolution(str, Enum):
    UNDECIDED = "UNDECIDED"
    ADD = "ADD"
    KEEP_EXISTING = "KEEP_EXISTING"
    USE_NEW = "USE_NEW"


class MergeConflict(BaseModel):
    product_id: str
    product_name: str = ""
    unit: str = ""
    existing_quantity: Decimal
    new_quantity: Decimal
    existing_price: Decimal
    new_price: Decimal
    resolution: MergeResolution = MergeResolution.UNDECIDED
