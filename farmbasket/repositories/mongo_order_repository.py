# farmbasket/repositories/mongo_order_repository.py

import random
from datetime import datetime, timezone
from typing import Dict, List, Optional

from farmbasket.errors import EditWindowClosed, NotFound
from farmbasket.models.buyer.order_models import Order, OrderStatus
from farmbasket.mongo import from_bson, get_col, run_blocking, to_bson
from farmbasket.repositories.contracts import OrderRepository
from farmbasket.services.buyer.pickup_schedule_service import PickupSchedule, order_path


class MongoOrderRepository(OrderRepository):
    """
    orders collection, one document per order:
        { _id: order id, seller_id, date_key, path, buyer_id, status, pickup_date, articles, ... }
    """

    COLLECTION = "orders"

    def __init__(self, schedule: PickupSchedule, timeout: Optional[float] = None):
        self.schedule = schedule
        self.timeout = timeout

    # =========================
    # ID GENERATORS
    # =========================
    @staticmethod
    def generate_order_id():
        # ORD-YYYYMMDD-XXXXX
        now = datetime.now(timezone.utc)
        date_part = now.strftime("%Y%m%d")
        suffix = random.randint(10000, 99999)
        return f"ORD-{date_part}-{suffix}"

    # =========================
    # MAPPING
    # =========================
    def _to_doc(self, order: Order) -> dict:
        date_key = self.schedule.date_key(order.pickup_date)
        doc = order.model_dump(mode="python")
        doc.pop("id", None)
        doc.update({
            "_id": order.id,
            "date_key": date_key,
            "path": order_path(order.seller_id, date_key, order.id),
            "buyer_id": order.buyer_profile.id,
            "status": order.status.value,
            "updated_at": datetime.now(timezone.utc),
        })
        return to_bson(doc)

    @staticmethod
    def _from_doc(doc: dict) -> Order:
        data = from_bson(dict(doc))
        data["id"] = data.pop("_id")
        for key in ("date_key", "path", "buyer_id", "updated_at"):
            data.pop(key, None)
        return Order.model_validate(data)

    def _col(self):
        return get_col(self.COLLECTION)

    # =========================
    # WRITE
    # =========================
    async def place_order(self, order: Order) -> Order:
        placed = order.model_copy(update={
            "id": order.id or self.generate_order_id(),
            "created_at": order.created_at or datetime.now(timezone.utc),
            "status": OrderStatus.OPEN,
        })
        await run_blocking(self._col().insert_one, self._to_doc(placed), timeout=self.timeout)
        print(f"✅ Order stored: {placed.id}")
        return placed

    async def update_order(self, order: Order) -> None:
        result = await run_blocking(
            self._col().replace_one,
            {"_id": order.id, "status": OrderStatus.OPEN.value},
            self._to_doc(order),
            timeout=self.timeout,
        )
        if result.matched_count:
            return

        doc = await run_blocking(self._col().find_one, {"_id": order.id}, {"status": 1}, timeout=self.timeout)
        if not doc:
            raise NotFound(f"Order {order.id} not found")
        raise EditWindowClosed(f"Order {order.id} is {doc.get('status')} and can no longer be changed")

    async def cancel_order(self, seller_id: str, date_key: str, order_id: str) -> None:
        path = order_path(seller_id, date_key, order_id)
        doc = await run_blocking(self._col().find_one, {"_id": order_id, "path": path}, timeout=self.timeout)
        if not doc:
            raise NotFound(f"Order {order_id} not found")

        order = self._from_doc(doc)
        if order.status == OrderStatus.CANCELLED:
            return

        cancelled = order.transition(OrderStatus.CANCELLED)
        await run_blocking(
            self._col().update_one,
            {"_id": order_id},
            {"$set": {"status": cancelled.status.value, "updated_at": datetime.now(timezone.utc)}},
            timeout=self.timeout,
        )

    # =========================
    # READ
    # =========================
    async def load_order(self, seller_id: str, order_id: str, path: str) -> Order:
        doc = await run_blocking(self._col().find_one, {"_id": order_id, "path": path}, timeout=self.timeout)
        if not doc:
            raise NotFound(f"Order {order_id} not found")
        return self._from_doc(doc)

    async def get_buyer_orders(self, seller_id: str, placed_order_ids: Dict[str, str]) -> List[Order]:
        ids = list(placed_order_ids.values())
        if not ids:
            return []

        def _query():
            cursor = self._col().find({"_id": {"$in": ids}, "seller_id": seller_id}).sort("pickup_date", -1)
            return list(cursor)

        docs = await run_blocking(_query, timeout=self.timeout)
        return [self._from_doc(d) for d in docs]

    async def get_open_editable_order(self, seller_id: str, placed_order_ids: Dict[str, str]) -> Optional[Order]:
        orders = await self.get_buyer_orders(seller_id, placed_order_ids)
        editable = [
            o for o in orders
            if o.status == OrderStatus.OPEN and self.schedule.can_edit_order(o.pickup_date)
        ]
        return max(editable, key=lambda o: o.pickup_date, default=None)

    async def get_upcoming_order(self, seller_id: str, placed_order_ids: Dict[str, str]) -> Optional[Order]:
        now = self.schedule.now()
        orders = await self.get_buyer_orders(seller_id, placed_order_ids)
        upcoming = [o for o in orders if o.status != OrderStatus.CANCELLED and o.pickup_date > now]
        return max(upcoming, key=lambda o: o.pickup_date, default=None)
