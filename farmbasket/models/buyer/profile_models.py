# farmbasket/models/buyer/profile_models.py

from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from farmbasket.models.buyer.basket_models import DraftBasket


class BuyerProfile(BaseModel):
    id: str = ""
    display_name: str = ""
    email: str = ""
    phone: str = ""
    anonymous: bool = True

    favourite_article_ids: List[str] = Field(default_factory=list)

    # dateKey (YYYYMMDD) -> order id
    placed_order_ids: Dict[str, str] = Field(default_factory=dict)

    draft_basket: Optional[DraftBasket] = None

    def order_id_for(self, date_key: str) -> Optional[str]:
        return self.placed_order_ids.get(date_key)

    def with_order(self, date_key: str, order_id: str) -> "BuyerProfile":
        ids = dict(self.placed_order_ids)
        ids[date_key] = order_id
        return self.model_copy(update={"placed_order_ids": ids})

    def without_order(self, order_id: str) -> "BuyerProfile":
        ids = {k: v for k, v in self.placed_order_ids.items() if v != order_id}
        return self.model_copy(update={"placed_order_ids": ids})
