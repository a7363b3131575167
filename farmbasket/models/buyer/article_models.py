# farmbasket/models/buyer/article_models.py

from decimal import Decimal
from enum import Enum
from typing import Dict, List

from pydantic import BaseModel


class Article(BaseModel):
    id: str
    product_id: str = ""
    product_name: str = ""
    unit: str = ""
    price: Decimal = Decimal("0")
    available: bool = False
    weight_per_piece: float = 0.0
    category: str = ""


class ArticleMode(str, Enum):
    ADDED = "ADDED"
    CHANGED = "CHANGED"
    REMOVED = "REMOVED"


class ArticleChangeEvent(BaseModel):
    mode: ArticleMode
    article: Article


def apply_article_event(catalog: List[Article], event: ArticleChangeEvent) -> List[Article]:
    """Returns a new catalog list with the change event applied (keyed by article id)."""
    by_id: Dict[str, Article] = {a.id: a for a in catalog}
    if event.mode == ArticleMode.REMOVED:
        by_id.pop(event.article.id, None)
    else:
        by_id[event.article.id] = event.article
    return list(by_id.values())
