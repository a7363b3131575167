# farmbasket/models/buyer/basket_models.py

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field


class OrderedLineItem(BaseModel):
    product_id: str
    product_name: str = ""
    unit: str = ""
    price: Decimal = Decimal("0")
    quantity: Decimal = Field(default=Decimal("0"), ge=0)
    pieces_count: int = -1

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity


def basket_total(items: List[OrderedLineItem]) -> Decimal:
    return sum((i.line_total for i in items), Decimal("0"))


class DraftBasket(BaseModel):
    """
    Basket contents that were never placed as an order.
    Stored on the buyer profile so the cart survives restarts.
    """
    items: List[OrderedLineItem] = Field(default_factory=list)
    selected_pickup_date_key: Optional[str] = None
    last_modified: Optional[datetime] = None

    def is_empty(self) -> bool:
        return not self.items

    @property
    def total(self) -> Decimal:
        return basket_total(self.items)

    @property
    def item_count(self) -> int:
        return len(self.items)


class BasketSnapshot(BaseModel):
    items: List[OrderedLineItem] = Field(default_factory=list)
    total: Decimal = Decimal("0")
    item_count: int = 0

    # provenance: set when the basket mirrors a placed order
    order_id: Optional[str] = None
    date_key: Optional[str] = None
    has_changes: bool = False
