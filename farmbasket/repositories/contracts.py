# farmbasket/repositories/contracts.py
"""
Repository contracts consumed by the buyer core.

Implementations raise NotFound when a document is missing and RemoteFailure
for transport/persistence errors. All methods are coroutines.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import AsyncIterator, Dict, List, Optional, Tuple

from farmbasket.models.buyer.account_models import CleanupReport
from farmbasket.models.buyer.article_models import Article, ArticleChangeEvent
from farmbasket.models.buyer.basket_models import BasketSnapshot, DraftBasket, OrderedLineItem
from farmbasket.models.buyer.order_models import Order
from farmbasket.models.buyer.profile_models import BuyerProfile


class ArticleRepository(ABC):

    @abstractmethod
    def get_articles(self, seller_id: str) -> AsyncIterator[ArticleChangeEvent]:
        """
        Realtime catalog feed for a seller. Yields one ADDED event per existing
        article first, then CHANGED / ADDED / REMOVED events as they happen.
        """

    @abstractmethod
    async def load_articles(self, seller_id: str) -> List[Article]:
        """One-shot snapshot of the seller's catalog."""


class OrderRepository(ABC):

    @abstractmethod
    async def place_order(self, order: Order) -> Order:
        """
        Persists a new order and returns it with its generated id.
        Registering the id in the buyer profile is the caller's job.
        """

    @abstractmethod
    async def update_order(self, order: Order) -> None:
        """
        Overwrites an existing order document while it is still OPEN.
        Raises NotFound if it is gone, EditWindowClosed if it is no longer open.
        """

    @abstractmethod
    async def cancel_order(self, seller_id: str, date_key: str, order_id: str) -> None:
        """Moves the order to CANCELLED. Raises NotFound if it is gone."""

    @abstractmethod
    async def load_order(self, seller_id: str, order_id: str, path: str) -> Order:
        """Loads one order by its orders/{seller}/{dateKey}/{orderId} path."""

    @abstractmethod
    async def get_open_editable_order(self, seller_id: str, placed_order_ids: Dict[str, str]) -> Optional[Order]:
        """Most recent (latest pickup) OPEN order whose edit window is still open."""

    @abstractmethod
    async def get_upcoming_order(self, seller_id: str, placed_order_ids: Dict[str, str]) -> Optional[Order]:
        """Most recent order whose pickup is still in the future, editable or not."""

    @abstractmethod
    async def get_buyer_orders(self, seller_id: str, placed_order_ids: Dict[str, str]) -> List[Order]:
        """All indexed orders that can still be loaded, newest pickup first."""


class ProfileRepository(ABC):

    @abstractmethod
    async def get_buyer_profile(self) -> BuyerProfile:
        """Profile of the signed-in buyer. Raises NotFound when none was saved yet."""

    @abstractmethod
    async def save_buyer_profile(self, profile: BuyerProfile) -> BuyerProfile:
        pass

    @abstractmethod
    async def delete_buyer_profile(self, user_id: str) -> None:
        pass

    @abstractmethod
    async def clear_user_data(self, seller_id: str, profile: BuyerProfile) -> CleanupReport:
        """
        Removes the buyer's own data (profile document, draft basket, caches).
        Orders are handled by the caller.
        """

    @abstractmethod
    async def save_draft_basket(self, draft: DraftBasket) -> None:
        pass

    @abstractmethod
    async def clear_draft_basket(self) -> None:
        pass


class BasketRepository(ABC):

    @abstractmethod
    def observe_basket(self):
        """Subscription yielding BasketSnapshot values, current one first."""

    @property
    @abstractmethod
    def snapshot(self) -> BasketSnapshot:
        pass

    @abstractmethod
    async def add_item(self, item: OrderedLineItem) -> None:
        pass

    @abstractmethod
    async def remove_item(self, product_id: str) -> None:
        pass

    @abstractmethod
    async def update_quantity(self, product_id: str, quantity: Decimal) -> None:
        pass

    @abstractmethod
    async def clear(self) -> None:
        pass

    @abstractmethod
    async def load_from_existing(self, items: List[OrderedLineItem], order_id: str, date_key: str) -> None:
        pass

    @abstractmethod
    async def load_from_draft(self, draft: DraftBasket) -> None:
        pass

    @abstractmethod
    def loaded_order_info(self) -> Optional[Tuple[str, str]]:
        pass


class AuthRepository(ABC):

    @abstractmethod
    def observe_auth_state(self):
        """Subscription yielding the current user id (or None), current one first."""

    @abstractmethod
    async def current_user_id(self) -> Optional[str]:
        pass

    @abstractmethod
    async def check_persisted_auth(self) -> Optional[str]:
        """User id of a restorable session, or None."""

    @abstractmethod
    async def is_anonymous(self) -> bool:
        pass

    @abstractmethod
    async def sign_in_anonymously(self) -> str:
        pass

    @abstractmethod
    async def sign_in_with_email(self, email: str, password: str) -> str:
        pass

    @abstractmethod
    async def sign_up_with_email(self, email: str, password: str) -> str:
        pass

    @abstractmethod
    async def link_with_email(self, email: str, password: str) -> str:
        """Attaches credentials to the current anonymous identity; the user id is kept."""

    @abstractmethod
    async def sign_out(self) -> None:
        pass

    @abstractmethod
    async def delete_account(self) -> None:
        """Deletes the current identity and signs out."""
