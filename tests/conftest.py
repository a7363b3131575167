# tests/conftest.py
import dataclasses
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from fakes import (
    FakeAuthBackend,
    FakeAuthRepository,
    FakeClock,
    InMemoryArticleRepository,
    InMemoryOrderRepository,
    InMemoryProfileRepository,
)
from farmbasket.app_config import AppConfig, ScheduleConfig
from farmbasket.models.buyer.article_models import Article
from farmbasket.services.buyer.pickup_schedule_service import PickupSchedule
from farmbasket.services.buyer.session_service import BuyerSession, SessionRepositories

# Monday 12.10.2026, 12:00 in Berlin. Next pickup Thursday 15.10, deadline Tuesday 13.10 23:59:59.
MONDAY_NOON = datetime(2026, 10, 12, 10, 0, tzinfo=timezone.utc)
SELLER = "seller-1"


@pytest.fixture
def clock():
    return FakeClock(MONDAY_NOON)


@pytest.fixture
def schedule(clock):
    return PickupSchedule(ScheduleConfig(), clock=clock)


@pytest.fixture
def config():
    return AppConfig(
        disable_mongo=True,
        jwt_secret_key="test-secret",
        seller_id=SELLER,
        draft_save_debounce_s=0,
    )


@pytest.fixture
def catalog():
    return [
        Article(id="a1", product_id="p-carrot", product_name="Carrots", unit="kg", price=Decimal("2.50"), available=True),
        Article(id="a2", product_id="p-egg", product_name="Eggs", unit="pc", price=Decimal("0.40"), available=True),
        Article(id="a3", product_id="p-kale", product_name="Kale", unit="bunch", price=Decimal("3.00"), available=False),
    ]


@pytest.fixture
def auth_backend():
    return FakeAuthBackend()


@pytest.fixture
def orders(schedule):
    return InMemoryOrderRepository(schedule)


@pytest.fixture
def profile_store():
    return {}


@pytest.fixture
def make_session(config, schedule, catalog, auth_backend, orders, profile_store):
    """Builds a BuyerSession over the shared in-memory stores; persisted_user_id restores a login."""

    def build(persisted_user_id=None, flavor=None):
        auth = FakeAuthRepository(auth_backend, persisted_user_id=persisted_user_id)
        repos = SessionRepositories(
            articles=InMemoryArticleRepository(catalog),
            orders=orders,
            profiles=InMemoryProfileRepository(auth, store=profile_store),
            auth=auth,
        )
        cfg = config
        if flavor is not None:
            cfg = dataclasses.replace(config, flavor=flavor)
        return BuyerSession(cfg, repos, schedule=schedule)

    return build
