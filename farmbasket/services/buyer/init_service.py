# farmbasket/services/buyer/init_service.py
from __future__ import annotations

import asyncio
from typing import AsyncIterator, Optional

from farmbasket.errors import AuthRequired, NotFound, OrderFlowError, RemoteFailure
from farmbasket.models.buyer.account_models import (
    CHECKING_AUTH,
    COMPLETE,
    LOADING_ARTICLES,
    LOADING_ORDER,
    LOADING_PROFILE,
    InitializationStep,
    failed,
)
from farmbasket.models.buyer.article_models import ArticleChangeEvent, apply_article_event
from farmbasket.models.buyer.profile_models import BuyerProfile
from farmbasket.repositories.contracts import ArticleRepository, AuthRepository, OrderRepository, ProfileRepository
from farmbasket.services.buyer.basket_service import BasketStore
from farmbasket.services.buyer.order_lifecycle_service import OrderLifecycleManager
from farmbasket.services.buyer.pickup_schedule_service import PickupSchedule
from farmbasket.services.state_store import StateStore

STEP_LABELS = {
    CHECKING_AUTH.name: "authentication",
    LOADING_PROFILE.name: "profile",
    LOADING_ORDER.name: "order",
    LOADING_ARTICLES.name: "articles",
}


class InitializationSequencer:
    """
    Session startup:
        CheckingAuth -> LoadingProfile -> LoadingOrder -> LoadingArticles -> Complete

    Any failure ends in Failed(step, message) and nothing after it runs.
    """

    def __init__(
        self,
        state: StateStore,
        basket: BasketStore,
        lifecycle: OrderLifecycleManager,
        auth: AuthRepository,
        profiles: ProfileRepository,
        orders: OrderRepository,
        articles: ArticleRepository,
        schedule: PickupSchedule,
        seller_id: str,
        flavor: str = "buy",
    ):
        self.state = state
        self.basket = basket
        self.lifecycle = lifecycle
        self.auth = auth
        self.profiles = profiles
        self.orders = orders
        self.articles = articles
        self.schedule = schedule
        self.seller_id = seller_id
        self.flavor = flavor

    async def run(self, restore_only: bool = False) -> InitializationStep:
        """
        restore_only: only resume a persisted login, never fall back to a new
        guest account. Sessions restored from a token use it.
        """
        step = CHECKING_AUTH
        try:
            await self._enter(step)
            user_id = await self._check_auth(restore_only)

            step = LOADING_PROFILE
            await self._enter(step)
            profile = await self._load_profile(user_id)

            step = LOADING_ORDER
            await self._enter(step)
            await self._load_order(profile)

            step = LOADING_ARTICLES
            await self._enter(step)
            await self._load_articles()

        except OrderFlowError as e:
            result = failed(STEP_LABELS[step.name], e.message)
            print(f"❌ Init failed during {result.failed_step}: {e.message}")
            await self.state.patch(
                init_step=result,
                error=e.message,
                requires_login=isinstance(e, AuthRequired),
            )
            return result

        await self._enter(COMPLETE)
        return COMPLETE

    async def _enter(self, step: InitializationStep):
        print(f"🚀 Init: {step.name}")
        await self.state.patch(init_step=step)

    # =========================
    # STEPS
    # =========================
    async def _check_auth(self, restore_only: bool = False) -> str:
        try:
            user_id = await self.auth.check_persisted_auth()
        except RemoteFailure as e:
            print(f"⚠️ Init: could not check persisted auth - {e.message}")
            if restore_only:
                raise
            user_id = None

        if user_id:
            print(f"✅ Init: restored session for {user_id}")
        elif self.flavor == "sell" or restore_only:
            raise AuthRequired("Please sign in to continue")
        else:
            user_id = await self.auth.sign_in_anonymously()
            print(f"✅ Init: guest sign-in {user_id}")

        is_anonymous = await self.auth.is_anonymous()
        await self.state.patch(user_id=user_id, is_anonymous=is_anonymous, requires_login=False)
        return user_id

    async def _load_profile(self, user_id: str) -> BuyerProfile:
        try:
            profile = await self.profiles.get_buyer_profile()
        except NotFound:
            print(f"⚠️ Init: no profile for {user_id}, creating one")
            profile = await self.profiles.save_buyer_profile(
                BuyerProfile(id=user_id, anonymous=self.state.state.is_anonymous)
            )

        await self.state.patch(profile=profile)
        return profile

    async def _load_order(self, profile: BuyerProfile):
        await self.lifecycle.load_available_dates()

        draft = profile.draft_basket
        if draft is not None and not draft.is_empty():
            # an unsent cart wins over placed orders
            await self.basket.load_from_draft(draft)
            selected = None
            if draft.selected_pickup_date_key:
                candidate = self.schedule.parse_date_key(draft.selected_pickup_date_key)
                if self.schedule.is_pickup_date_valid(candidate):
                    selected = candidate
            await self.state.update(lambda s: s.without_order().model_copy(update={"selected_pickup_date": selected}))
            print(f"✅ Init: restored draft basket with {draft.item_count} item(s)")
            return

        if not profile.placed_order_ids:
            return

        order = await self.orders.get_upcoming_order(self.seller_id, profile.placed_order_ids)
        if order is None:
            return
        await self.lifecycle.show_order(order, self.schedule.date_key(order.pickup_date))
        print(f"✅ Init: loaded order {order.id}")

    async def _load_articles(self):
        catalog = await self.articles.load_articles(self.seller_id)
        await self.state.patch(articles=catalog)
        print(f"✅ Init: {len(catalog)} article(s) loaded")

    # =========================
    # CATALOG FEED
    # =========================
    async def follow_articles(self, events: Optional[AsyncIterator[Optional[ArticleChangeEvent]]] = None):
        """
        Applies catalog change events to state until the feed ends.
        events defaults to this session's own feed from the article repository;
        a None event ends it.
        """
        if events is None:
            events = self.articles.get_articles(self.seller_id)
        try:
            async for event in events:
                if event is None:
                    break
                await self.state.update(
                    lambda s, e=event: s.model_copy(update={"articles": apply_article_event(s.articles, e)})
                )
        except OrderFlowError as e:
            print(f"⚠️ Article feed stopped - {e.message}")

    def watch_articles(self, events=None) -> asyncio.Task:
        return asyncio.get_running_loop().create_task(self.follow_articles(events))
