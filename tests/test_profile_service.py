# tests/test_profile_service.py
import asyncio
from decimal import Decimal

import pytest

from farmbasket.errors import RemoteFailure, ValidationError
from farmbasket.models.buyer.order_models import OrderStatus


async def started(make_session):
    session = make_session()
    step = await session.start()
    assert step.is_complete
    return session


async def place(session, date_key, article_id="a1", qty="1"):
    await session.dispatch("add_article", article_id=article_id, quantity=Decimal(qty))
    await session.dispatch("select_pickup_date", pickup_date=session.schedule.parse_date_key(date_key))
    order = await session.dispatch("checkout")
    await session.dispatch("start_new_order")
    return order


def test_save_profile_fields(make_session, profile_store):
    async def scenario():
        session = await started(make_session)
        await session.dispatch("save_profile", display_name="  Anna Berg ", phone="+49 30 1234567")
        # fields left out stay as they are
        await session.dispatch("save_profile", phone="")
        return session

    session = asyncio.run(scenario())
    stored = profile_store[session.current.user_id]
    assert stored.display_name == "Anna Berg"
    assert stored.phone == ""
    assert session.current.profile == stored
    assert session.current.last_success == "profile_saved"


@pytest.mark.parametrize("fields", [
    {"display_name": "   "},
    {"phone": "call me"},
    {"display_name": "x" * 81},
    {},
])
def test_save_profile_rejects_bad_input(make_session, profile_store, fields):
    async def scenario():
        session = await started(make_session)
        before = profile_store[session.current.user_id]
        with pytest.raises(ValidationError):
            await session.dispatch("save_profile", **fields)
        return session, before

    session, before = asyncio.run(scenario())
    assert profile_store[session.current.user_id] == before
    assert session.current.error


def test_failed_save_keeps_state(make_session):
    async def scenario():
        session = await started(make_session)
        session.repos.profiles.failures["save_buyer_profile"] = RemoteFailure("profile store offline")
        with pytest.raises(RemoteFailure):
            await session.dispatch("save_profile", display_name="Anna")
        return session

    st = asyncio.run(scenario()).current
    assert st.profile.display_name == ""
    assert st.error == "profile store offline"


def test_toggle_favourite(make_session, profile_store):
    async def scenario():
        session = await started(make_session)
        first = await session.dispatch("toggle_favourite", article_id="a1")
        second = await session.dispatch("toggle_favourite", article_id="a2")
        third = await session.dispatch("toggle_favourite", article_id="a1")
        return session, first, second, third

    session, first, second, third = asyncio.run(scenario())
    assert first == ["a1"]
    assert second == ["a1", "a2"]
    assert third == ["a2"]
    assert profile_store[session.current.user_id].favourite_article_ids == ["a2"]
    assert session.current.profile.favourite_article_ids == ["a2"]


def test_order_history_newest_first(make_session, orders):
    async def scenario():
        session = await started(make_session)
        early = await place(session, "20261015")
        late = await place(session, "20261022", article_id="a2", qty="6")
        history = await session.dispatch("load_order_history")
        return session, early, late, history

    session, early, late, history = asyncio.run(scenario())
    assert [o.id for o in history] == [late.id, early.id]
    assert all(o.status == OrderStatus.OPEN for o in history)
    assert [o.id for o in session.current.order_history] == [late.id, early.id]


def test_order_history_without_orders(make_session, orders):
    async def scenario():
        session = await started(make_session)
        return await session.dispatch("load_order_history")

    assert asyncio.run(scenario()) == []
    assert "get_buyer_orders" not in orders.calls
