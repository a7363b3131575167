# tests/test_session_registry.py
import asyncio
from decimal import Decimal

import pytest

from fakes import InMemoryArticleRepository
from farmbasket.errors import AuthRequired, RemoteFailure
from farmbasket.models.buyer.article_models import ArticleChangeEvent, ArticleMode
from farmbasket.services.buyer.session_service import CatalogFeed, SessionRegistry

SELLER = "seller-1"


def known_users(auth_backend, count):
    return [auth_backend.create(anonymous=False, email=f"buyer{i}@example.com", password="secret1") for i in range(count)]


def test_vanished_account_creates_nothing(make_session, auth_backend, profile_store):
    registry = SessionRegistry(lambda uid: make_session(persisted_user_id=uid))

    async def scenario():
        for _ in range(3):
            with pytest.raises(AuthRequired):
                await registry.get("user-404")

    asyncio.run(scenario())
    assert auth_backend.users == {}
    assert profile_store == {}
    assert len(registry) == 0


def test_auth_outage_is_a_remote_failure(make_session, auth_backend):
    def factory(uid):
        session = make_session(persisted_user_id=uid)
        session.repos.auth.failures["check_persisted_auth"] = RemoteFailure("auth offline")
        return session

    registry = SessionRegistry(factory)
    (user_id,) = known_users(auth_backend, 1)

    async def scenario():
        with pytest.raises(RemoteFailure):
            await registry.get(user_id)

    asyncio.run(scenario())
    assert list(auth_backend.users) == [user_id]
    assert len(registry) == 0


def test_same_user_gets_same_session(make_session, auth_backend):
    registry = SessionRegistry(lambda uid: make_session(persisted_user_id=uid))
    (user_id,) = known_users(auth_backend, 1)

    async def scenario():
        first = await registry.get(user_id)
        second = await registry.get(user_id)
        return first, second

    first, second = asyncio.run(scenario())
    assert first is second
    assert first.current.user_id == user_id


def test_idle_sessions_are_evicted(make_session, auth_backend):
    now = [0.0]
    registry = SessionRegistry(
        lambda uid: make_session(persisted_user_id=uid),
        idle_ttl_s=60,
        max_sessions=None,
        clock=lambda: now[0],
    )
    anna, ben = known_users(auth_backend, 2)

    async def scenario():
        first = await registry.get(anna)
        now[0] = 30.0
        await registry.get(ben)
        assert len(registry) == 2

        now[0] = 100.0
        await registry.get(ben)
        assert registry.peek(anna) is None

        again = await registry.get(anna)
        return first, again

    first, again = asyncio.run(scenario())
    assert again is not first
    assert len(registry) == 2


def test_least_recently_used_session_goes_first(make_session, auth_backend):
    registry = SessionRegistry(lambda uid: make_session(persisted_user_id=uid), idle_ttl_s=None, max_sessions=2)
    anna, ben, cleo = known_users(auth_backend, 3)

    async def scenario():
        await registry.get(anna)
        await registry.get(ben)
        await registry.get(anna)
        await registry.get(cleo)

    asyncio.run(scenario())
    assert len(registry) == 2
    assert registry.peek(ben) is None
    assert registry.peek(anna) is not None
    assert registry.peek(cleo) is not None


def test_sessions_share_one_catalog_feed(make_session, auth_backend, catalog):
    articles = InMemoryArticleRepository(catalog)
    feed = CatalogFeed(articles, SELLER)
    registry = SessionRegistry(lambda uid: make_session(persisted_user_id=uid), watch_articles=True, feed=feed)
    anna, ben = known_users(auth_backend, 2)

    async def scenario():
        first = await registry.get(anna)
        second = await registry.get(ben)
        assert feed.subscriber_count == 2

        articles.events.put_nowait(ArticleChangeEvent(
            mode=ArticleMode.CHANGED,
            article=catalog[0].model_copy(update={"price": Decimal("2.90")}),
        ))
        articles.events.put_nowait(ArticleChangeEvent(mode=ArticleMode.REMOVED, article=catalog[2]))
        articles.events.put_nowait(None)

        await asyncio.wait_for(first._article_task, timeout=1)
        await asyncio.wait_for(second._article_task, timeout=1)
        await registry.close_all()
        return first, second

    first, second = asyncio.run(scenario())
    for session in (first, second):
        assert {a.id: a.price for a in session.current.articles} == {"a1": Decimal("2.90"), "a2": Decimal("0.40")}
        # the sessions never opened a feed of their own
        assert "get_articles" not in session.repos.articles.calls
    assert articles.calls.count("get_articles") == 1
    assert feed.subscriber_count == 0
    assert not feed.running
