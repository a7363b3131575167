# tests/test_mongo_repositories.py
# Mapping and failure paths of the Mongo layer; no server needed.
import asyncio
import re
import time
from decimal import Decimal
from types import SimpleNamespace

import pytest
from bson.decimal128 import Decimal128
from pymongo.errors import ServerSelectionTimeoutError

from farmbasket.errors import EditWindowClosed, NotFound, RemoteFailure
from farmbasket.models.buyer.basket_models import OrderedLineItem
from farmbasket.models.buyer.order_models import Order, OrderStatus
from farmbasket.models.buyer.profile_models import BuyerProfile
from farmbasket.mongo import from_bson, get_col, run_blocking, to_bson
from farmbasket.repositories.mongo_auth_repository import check_password, generate_user_id, hash_password
from farmbasket.repositories.mongo_order_repository import MongoOrderRepository


def test_decimal_round_trip_through_bson():
    doc = to_bson({"price": Decimal("2.50"), "lines": [{"quantity": Decimal("1.5")}], "name": "Carrots"})
    assert isinstance(doc["price"], Decimal128)
    assert isinstance(doc["lines"][0]["quantity"], Decimal128)
    assert from_bson(doc) == {"price": Decimal("2.50"), "lines": [{"quantity": Decimal("1.5")}], "name": "Carrots"}


def test_order_document_mapping(schedule):
    repo = MongoOrderRepository(schedule)
    order = Order(
        id="ORD-20261012-12345",
        buyer_profile=BuyerProfile(id="BUY1"),
        seller_id="seller-1",
        pickup_date=schedule.parse_date_key("20261015"),
        articles=[OrderedLineItem(product_id="a1", price=Decimal("2.50"), quantity=Decimal("2"))],
    )

    doc = repo._to_doc(order)
    assert doc["_id"] == order.id
    assert doc["date_key"] == "20261015"
    assert doc["path"] == "orders/seller-1/20261015/ORD-20261012-12345"
    assert doc["buyer_id"] == "BUY1"
    assert doc["status"] == "OPEN"

    back = MongoOrderRepository._from_doc(doc)
    assert back.id == order.id
    assert back.status == OrderStatus.OPEN
    assert back.articles[0].price == Decimal("2.50")
    assert back.total == Decimal("5.00")


def test_generated_ids():
    assert re.match(r"^ORD-\d{8}-\d{5}$", MongoOrderRepository.generate_order_id())
    assert re.match(r"^BUY[0-9A-F]{6}\d{10}$", generate_user_id())


def test_password_hashing():
    hashed = hash_password("secret1")
    assert hashed != "secret1"
    assert check_password("secret1", hashed)
    assert not check_password("secret2", hashed)
    assert not check_password("secret1", "")


def test_uninitialized_mongo_is_a_remote_failure(schedule):
    with pytest.raises(RemoteFailure):
        get_col("orders")

    with pytest.raises(RemoteFailure):
        asyncio.run(MongoOrderRepository(schedule).load_order("seller-1", "ORD-1", "orders/seller-1/20261015/ORD-1"))


def test_run_blocking_wraps_driver_errors_and_timeouts():
    def unreachable():
        raise ServerSelectionTimeoutError("no servers")

    def slow():
        time.sleep(0.2)

    with pytest.raises(RemoteFailure, match="no servers"):
        asyncio.run(run_blocking(unreachable))
    with pytest.raises(RemoteFailure, match="timed out"):
        asyncio.run(run_blocking(slow, timeout=0.01))


class StubCollection:
    """Just enough of a pymongo collection for replace_one / find_one by _id."""

    def __init__(self, docs):
        self.docs = docs

    def _matches(self, doc, flt):
        return doc is not None and all(doc.get(k) == v for k, v in flt.items())

    def replace_one(self, flt, replacement):
        matched = self._matches(self.docs.get(flt["_id"]), flt)
        if matched:
            self.docs[flt["_id"]] = replacement
        return SimpleNamespace(matched_count=int(matched))

    def find_one(self, flt, projection=None):
        doc = self.docs.get(flt["_id"])
        return doc if self._matches(doc, flt) else None


def test_update_only_overwrites_open_orders(schedule):
    repo = MongoOrderRepository(schedule)
    base = Order(
        id="ORD-20261012-12345",
        buyer_profile=BuyerProfile(id="BUY1"),
        seller_id="seller-1",
        pickup_date=schedule.parse_date_key("20261015"),
        articles=[OrderedLineItem(product_id="a1", price=Decimal("2.50"), quantity=Decimal("2"))],
    )
    edited = base.model_copy(update={"articles": [base.articles[0].model_copy(update={"quantity": Decimal("5")})]})

    completed_doc = repo._to_doc(base.transition(OrderStatus.COMPLETED))
    stub = StubCollection({base.id: completed_doc})
    repo._col = lambda: stub

    with pytest.raises(EditWindowClosed):
        asyncio.run(repo.update_order(edited))
    assert stub.docs[base.id] is completed_doc

    stub.docs[base.id] = repo._to_doc(base)
    asyncio.run(repo.update_order(edited))
    assert MongoOrderRepository._from_doc(stub.docs[base.id]).articles[0].quantity == Decimal("5")

    del stub.docs[base.id]
    with pytest.raises(NotFound):
        asyncio.run(repo.update_order(edited))
