# farmbasket/services/buyer/basket_service.py
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from typing import Awaitable, Callable, List, Optional, Tuple

from farmbasket.errors import OrderFlowError
from farmbasket.models.buyer.basket_models import BasketSnapshot, DraftBasket, OrderedLineItem, basket_total
from farmbasket.repositories.contracts import BasketRepository
from farmbasket.services.state_store import Broadcast, Subscription

DraftSync = Callable[[DraftBasket], Awaitable[None]]


def has_changes(current: List[OrderedLineItem], original: List[OrderedLineItem]) -> bool:
    """
    True when the two baskets differ as sets of (product_id, quantity).
    Line order does not matter.
    """
    if not original and not current:
        return False
    if not original:
        return True
    if len(current) != len(original):
        return True

    original_by_id = {i.product_id: i for i in original}
    for item in current:
        base = original_by_id.get(item.product_id)
        if base is None or base.quantity != item.quantity:
            return True

    current_ids = {i.product_id for i in current}
    return any(i.product_id not in current_ids for i in original)


def _as_decimal(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


class BasketStore(BasketRepository):
    """
    Local basket for one session.

    Mutations are applied immediately and published to every observer.
    While the basket is a draft (not mirroring a placed order) each
    add/remove/update schedules a debounced background save through
    on_draft_changed; failures there are logged and dropped.
    """

    def __init__(
        self,
        on_draft_changed: Optional[DraftSync] = None,
        debounce_s: float = 2.0,
        selected_date_key: Optional[Callable[[], Optional[str]]] = None,
    ):
        self._items: List[OrderedLineItem] = []
        self._order_id: Optional[str] = None
        self._date_key: Optional[str] = None
        self._baseline: List[OrderedLineItem] = []
        self._stream: Broadcast[BasketSnapshot] = Broadcast(BasketSnapshot())

        self._on_draft_changed = on_draft_changed
        self._debounce_s = debounce_s
        self._selected_date_key = selected_date_key or (lambda: None)
        self._draft_task: Optional[asyncio.Task] = None

    # =========================
    # READ
    # =========================
    def observe_basket(self) -> Subscription[BasketSnapshot]:
        return self._stream.subscribe()

    @property
    def snapshot(self) -> BasketSnapshot:
        return self._stream.value

    @property
    def items(self) -> List[OrderedLineItem]:
        return list(self._items)

    @property
    def total(self) -> Decimal:
        return basket_total(self._items)

    @property
    def item_count(self) -> int:
        return len(self._items)

    @property
    def baseline(self) -> List[OrderedLineItem]:
        return list(self._baseline)

    def loaded_order_info(self) -> Optional[Tuple[str, str]]:
        if self._order_id and self._date_key:
            return self._order_id, self._date_key
        return None

    def is_draft(self) -> bool:
        return self._order_id is None

    def to_draft(self, date_key: Optional[str] = None) -> DraftBasket:
        return DraftBasket(
            items=list(self._items),
            selected_pickup_date_key=date_key or self._selected_date_key(),
            last_modified=datetime.now(timezone.utc),
        )

    # =========================
    # MUTATIONS
    # =========================
    async def add_item(self, item: OrderedLineItem) -> None:
        if item.quantity <= 0:
            return

        items = list(self._items)
        for idx, existing in enumerate(items):
            if existing.product_id == item.product_id:
                pieces = existing.pieces_count
                if existing.pieces_count >= 0 and item.pieces_count >= 0:
                    pieces = existing.pieces_count + item.pieces_count
                items[idx] = existing.model_copy(update={
                    "quantity": existing.quantity + item.quantity,
                    "pieces_count": pieces,
                })
                break
        else:
            items.append(item)

        self._items = items
        self._changed()

    async def remove_item(self, product_id: str) -> None:
        items = [i for i in self._items if i.product_id != product_id]
        if len(items) == len(self._items):
            return
        self._items = items
        self._changed()

    async def update_quantity(self, product_id: str, quantity) -> None:
        quantity = _as_decimal(quantity)
        if quantity <= 0:
            await self.remove_item(product_id)
            return

        items = list(self._items)
        for idx, item in enumerate(items):
            if item.product_id != product_id:
                continue
            pieces = item.pieces_count
            if pieces >= 0:
                # keep the pieces-per-unit ratio
                if item.quantity > 0:
                    pieces = int(Decimal(item.pieces_count) / item.quantity * quantity)
                else:
                    pieces = int(quantity)
            items[idx] = item.model_copy(update={"quantity": quantity, "pieces_count": pieces})
            self._items = items
            self._changed()
            return

    async def replace_items(self, items: List[OrderedLineItem]) -> None:
        """Fresh draft with the given lines (provenance dropped)."""
        self._items = [i for i in items if i.quantity > 0]
        self._order_id = None
        self._date_key = None
        self._baseline = []
        self._changed()

    async def clear(self) -> None:
        self._cancel_draft_sync()
        self._items = []
        self._order_id = None
        self._date_key = None
        self._baseline = []
        self._publish()

    async def load_from_existing(self, items: List[OrderedLineItem], order_id: str, date_key: str) -> None:
        self._cancel_draft_sync()
        self._items = list(items)
        self._order_id = order_id
        self._date_key = date_key
        self._baseline = list(items)
        self._publish()

    async def load_from_draft(self, draft: DraftBasket) -> None:
        self._cancel_draft_sync()
        self._items = list(draft.items)
        self._order_id = None
        self._date_key = None
        self._baseline = []
        self._publish()

    async def mark_baseline(self, items: Optional[List[OrderedLineItem]] = None) -> None:
        """Current contents (or items) become the provenance snapshot; has_changes resets."""
        self._baseline = list(items if items is not None else self._items)
        self._publish()

    # =========================
    # DRAFT MIRRORING
    # =========================
    async def flush_draft(self) -> None:
        """Waits for a pending draft save, if any."""
        task = self._draft_task
        if task is not None and not task.done():
            await asyncio.gather(task, return_exceptions=True)

    def _changed(self):
        self._publish()
        if self.is_draft():
            self._schedule_draft_sync()

    def _schedule_draft_sync(self):
        if self._on_draft_changed is None:
            return
        self._cancel_draft_sync()
        self._draft_task = asyncio.get_running_loop().create_task(self._sync_draft_later())

    def _cancel_draft_sync(self):
        if self._draft_task is not None and not self._draft_task.done():
            self._draft_task.cancel()
        self._draft_task = None

    async def _sync_draft_later(self):
        if self._debounce_s > 0:
            await asyncio.sleep(self._debounce_s)
        draft = self.to_draft()
        try:
            await self._on_draft_changed(draft)
        except OrderFlowError as e:
            print(f"⚠️ BasketStore: draft save failed - {e.message}")

    # =========================
    # PUBLISH
    # =========================
    def _publish(self):
        changed = False
        if self._order_id is not None:
            changed = has_changes(self._items, self._baseline)

        self._stream.publish(BasketSnapshot(
            items=list(self._items),
            total=self.total,
            item_count=self.item_count,
            order_id=self._order_id,
            date_key=self._date_key,
            has_changes=changed,
        ))
