# farmbasket/services/buyer/order_reconciler.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Union

from farmbasket.errors import OrderFlowError
from farmbasket.models.buyer.basket_models import OrderedLineItem
from farmbasket.models.buyer.order_models import MergeConflict, MergeResolution, Order, OrderStatus
from farmbasket.repositories.contracts import OrderRepository
from farmbasket.services.buyer.pickup_schedule_service import PickupSchedule, order_path


class RejectReason(str, Enum):
    STALE_PICKUP_DATE = "STALE_PICKUP_DATE"
    ORDER_LOAD_FAILED = "ORDER_LOAD_FAILED"
    ORDER_LOCKED = "ORDER_LOCKED"


@dataclass
class CreateNew:
    date_key: str


@dataclass
class MergeRequired:
    existing_order: Order
    conflicts: List[MergeConflict] = field(default_factory=list)


@dataclass
class Reject:
    reason: RejectReason
    message: str = ""


CheckoutPath = Union[CreateNew, MergeRequired, Reject]


class OrderReconciler:
    """
    Decides what a checkout means against what is already stored:
    a brand new order, a merge into the order for that date, or nothing.
    """

    def __init__(self, order_repository: OrderRepository, schedule: PickupSchedule, seller_id: str):
        self.orders = order_repository
        self.schedule = schedule
        self.seller_id = seller_id

    # =========================
    # CHECKOUT PATH
    # =========================
    async def resolve_checkout_path(
        self,
        items: List[OrderedLineItem],
        pickup_date,
        placed_order_ids: Dict[str, str],
    ) -> CheckoutPath:
        if not self.schedule.is_pickup_date_valid(pickup_date):
            return Reject(
                RejectReason.STALE_PICKUP_DATE,
                "The selected pickup date is no longer available. Please choose a new date.",
            )

        date_key = self.schedule.date_key(pickup_date)
        order_id = placed_order_ids.get(date_key)
        if not order_id:
            return CreateNew(date_key)

        try:
            existing = await self.orders.load_order(
                self.seller_id, order_id, order_path(self.seller_id, date_key, order_id)
            )
        except OrderFlowError as e:
            return Reject(RejectReason.ORDER_LOAD_FAILED, f"Could not load existing order: {e.message}")

        if existing.status == OrderStatus.CANCELLED:
            # index still points at a cancelled order
            return CreateNew(date_key)

        if existing.status == OrderStatus.COMPLETED or not self.schedule.can_edit_order(existing.pickup_date):
            return Reject(RejectReason.ORDER_LOCKED, "The order for this pickup date can no longer be changed.")

        return MergeRequired(existing, calculate_merge_conflicts(items, existing.articles))


# =========================
# MERGE
# =========================
def calculate_merge_conflicts(
    new_items: List[OrderedLineItem],
    existing_items: List[OrderedLineItem],
) -> List[MergeConflict]:
    """One UNDECIDED conflict per product present on both sides with a different quantity."""
    existing_by_id = {i.product_id: i for i in existing_items}
    conflicts: List[MergeConflict] = []

    for new in new_items:
        existing = existing_by_id.get(new.product_id)
        if existing is None or existing.quantity == new.quantity:
            continue
        conflicts.append(MergeConflict(
            product_id=new.product_id,
            product_name=new.product_name or existing.product_name,
            unit=new.unit or existing.unit,
            existing_quantity=existing.quantity,
            new_quantity=new.quantity,
            existing_price=existing.price,
            new_price=new.price,
        ))

    return conflicts


def resolve_conflict(
    conflicts: List[MergeConflict],
    product_id: str,
    resolution: MergeResolution,
) -> List[MergeConflict]:
    return [
        c.model_copy(update={"resolution": resolution}) if c.product_id == product_id else c
        for c in conflicts
    ]


def apply_resolutions(
    existing_order: Order,
    new_items: List[OrderedLineItem],
    conflicts: List[MergeConflict],
) -> List[OrderedLineItem]:
    """
    Merged line list: existing lines in their order with resolutions applied,
    then lines that only exist in the new basket.
    """
    new_by_id = {i.product_id: i for i in new_items}
    conflict_by_id = {c.product_id: c for c in conflicts}
    merged: List[OrderedLineItem] = []

    for existing in existing_order.articles:
        conflict = conflict_by_id.get(existing.product_id)
        new = new_by_id.get(existing.product_id)

        if conflict is not None:
            merged.append(_resolve_line(existing, new, conflict))
        elif new is not None:
            merged.append(new)
        else:
            merged.append(existing)

    existing_ids = {i.product_id for i in existing_order.articles}
    merged.extend(i for i in new_items if i.product_id not in existing_ids)
    return merged


def _resolve_line(
    existing: OrderedLineItem,
    new: Optional[OrderedLineItem],
    conflict: MergeConflict,
) -> OrderedLineItem:
    if conflict.resolution == MergeResolution.ADD:
        pieces = existing.pieces_count
        if new is not None and existing.pieces_count >= 0 and new.pieces_count >= 0:
            pieces = existing.pieces_count + new.pieces_count
        return existing.model_copy(update={
            "quantity": conflict.existing_quantity + conflict.new_quantity,
            "price": conflict.new_price,
            "pieces_count": pieces,
        })

    if conflict.resolution == MergeResolution.USE_NEW:
        if new is not None:
            return new
        return existing.model_copy(update={"quantity": conflict.new_quantity, "price": conflict.new_price})

    # KEEP_EXISTING and UNDECIDED
    return existing
