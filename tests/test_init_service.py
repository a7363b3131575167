# tests/test_init_service.py
import asyncio
from decimal import Decimal

from farmbasket.errors import RemoteFailure
from farmbasket.models.buyer.article_models import ArticleChangeEvent, ArticleMode
from farmbasket.models.buyer.basket_models import DraftBasket, OrderedLineItem
from farmbasket.models.buyer.order_models import Order
from farmbasket.models.buyer.profile_models import BuyerProfile

SELLER = "seller-1"


def carrots(qty="2"):
    return OrderedLineItem(product_id="a1", product_name="Carrots", unit="kg", price=Decimal("2.50"), quantity=Decimal(qty))


def known_buyer(auth_backend, profile_store, **profile_fields):
    user_id = auth_backend.create(anonymous=False, email="anna@example.com", password="secret1")
    profile_store[user_id] = BuyerProfile(id=user_id, email="anna@example.com", anonymous=False, **profile_fields)
    return user_id


def test_guest_start_runs_every_step(make_session, profile_store, auth_backend):
    async def scenario():
        session = make_session()
        sub = session.observe()
        step = await session.start()
        names = []
        st = sub.get_nowait()
        while st is not None:
            if not names or names[-1] != st.init_step.name:
                names.append(st.init_step.name)
            st = sub.get_nowait()
        sub.close()
        return session, step, names

    session, step, names = asyncio.run(scenario())
    assert step.is_complete
    assert names == ["NotStarted", "CheckingAuth", "LoadingProfile", "LoadingOrder", "LoadingArticles", "Complete"]

    st = session.current
    assert st.is_anonymous
    assert st.user_id in auth_backend.users
    assert st.profile.id == st.user_id
    assert st.user_id in profile_store
    assert len(st.available_pickup_dates) == 5
    assert [a.id for a in st.articles] == ["a1", "a2", "a3"]
    assert st.basket.item_count == 0


def test_draft_basket_is_restored(make_session, auth_backend, profile_store):
    user_id = known_buyer(
        auth_backend, profile_store,
        draft_basket=DraftBasket(items=[carrots()], selected_pickup_date_key="20261015"),
    )

    async def scenario():
        session = make_session(persisted_user_id=user_id)
        await session.start()
        return session

    session = asyncio.run(scenario())
    st = session.current
    assert st.user_id == user_id
    assert not st.is_anonymous
    assert st.basket.item_count == 1
    assert st.basket.order_id is None
    assert session.schedule.date_key(st.selected_pickup_date) == "20261015"


def test_stale_draft_date_is_not_selected(make_session, auth_backend, profile_store):
    user_id = known_buyer(
        auth_backend, profile_store,
        draft_basket=DraftBasket(items=[carrots()], selected_pickup_date_key="20261008"),
    )

    async def scenario():
        session = make_session(persisted_user_id=user_id)
        await session.start()
        return session

    st = asyncio.run(scenario()).current
    assert st.basket.item_count == 1
    assert st.selected_pickup_date is None


def test_upcoming_order_is_loaded(make_session, auth_backend, profile_store, orders, schedule):
    orders.add(Order(id="ORD-1", seller_id=SELLER, pickup_date=schedule.parse_date_key("20261015"), articles=[carrots("3")]))
    user_id = known_buyer(auth_backend, profile_store, placed_order_ids={"20261015": "ORD-1"})

    async def scenario():
        session = make_session(persisted_user_id=user_id)
        await session.start()
        return session

    st = asyncio.run(scenario()).current
    assert st.order_id == "ORD-1"
    assert st.order_date_key == "20261015"
    assert st.can_edit
    assert st.basket.order_id == "ORD-1"
    assert st.basket.items[0].quantity == Decimal("3")


def test_draft_wins_over_placed_order(make_session, auth_backend, profile_store, orders, schedule):
    orders.add(Order(id="ORD-1", seller_id=SELLER, pickup_date=schedule.parse_date_key("20261015"), articles=[carrots("3")]))
    user_id = known_buyer(
        auth_backend, profile_store,
        placed_order_ids={"20261015": "ORD-1"},
        draft_basket=DraftBasket(items=[carrots("1")]),
    )

    async def scenario():
        session = make_session(persisted_user_id=user_id)
        await session.start()
        return session

    st = asyncio.run(scenario()).current
    assert st.order_id is None
    assert st.basket.items[0].quantity == Decimal("1")


def test_sell_flavor_without_session_needs_login(make_session, auth_backend):
    async def scenario():
        session = make_session(flavor="sell")
        step = await session.start()
        return session, step

    session, step = asyncio.run(scenario())
    assert step.is_failed
    assert step.failed_step == "authentication"
    assert session.current.requires_login
    assert auth_backend.users == {}


def test_vanished_account_falls_back_to_guest(make_session, auth_backend):
    async def scenario():
        session = make_session(persisted_user_id="user-404")
        await session.start()
        return session

    st = asyncio.run(scenario()).current
    assert st.user_id != "user-404"
    assert st.is_anonymous


def test_restore_only_never_creates_a_guest(make_session, auth_backend, profile_store):
    async def scenario():
        session = make_session(persisted_user_id="user-404")
        step = await session.initializer.run(restore_only=True)
        return session, step

    session, step = asyncio.run(scenario())
    assert step.failed_step == "authentication"
    assert session.current.requires_login
    assert auth_backend.users == {}
    assert profile_store == {}


def test_profile_failure_stops_initialization(make_session):
    async def scenario():
        session = make_session()
        session.repos.profiles.failures["get_buyer_profile"] = RemoteFailure("profile store offline")
        step = await session.start()
        return session, step

    session, step = asyncio.run(scenario())
    assert step.failed_step == "profile"
    assert step.message == "profile store offline"
    assert not session.current.requires_login
    assert session.current.articles == []
    assert "load_articles" not in session.repos.articles.calls


def test_article_failure_keeps_earlier_steps(make_session):
    async def scenario():
        session = make_session()
        session.repos.articles.failures["load_articles"] = RemoteFailure("catalog offline")
        step = await session.start()
        return session, step

    session, step = asyncio.run(scenario())
    assert step.failed_step == "articles"
    assert session.current.profile is not None
    assert session.current.init_step.is_failed
    assert session.current.error == "catalog offline"


def test_article_feed_updates_catalog(make_session, catalog):
    async def scenario():
        session = make_session()
        feed = session.repos.articles.events
        feed.put_nowait(ArticleChangeEvent(
            mode=ArticleMode.CHANGED,
            article=catalog[0].model_copy(update={"price": Decimal("2.90")}),
        ))
        feed.put_nowait(ArticleChangeEvent(mode=ArticleMode.REMOVED, article=catalog[1]))
        feed.put_nowait(None)

        await session.start(watch_articles=True)
        await asyncio.wait_for(session._article_task, timeout=1)
        await session.close()
        return session

    st = asyncio.run(scenario()).current
    assert {a.id: a.price for a in st.articles} == {"a1": Decimal("2.90"), "a3": Decimal("3.00")}
