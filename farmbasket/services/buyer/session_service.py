# farmbasket/services/buyer/session_service.py
from __future__ import annotations

import asyncio
import time
from collections import OrderedDict
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

from farmbasket.app_config import AppConfig
from farmbasket.errors import AuthRequired, OrderFlowError, RemoteFailure, ValidationError
from farmbasket.models.buyer.account_models import InitializationStep
from farmbasket.models.buyer.article_models import ArticleChangeEvent
from farmbasket.models.buyer.basket_models import DraftBasket, OrderedLineItem
from farmbasket.models.buyer.state_models import BuyerState
from farmbasket.repositories.contracts import ArticleRepository, AuthRepository, OrderRepository, ProfileRepository
from farmbasket.services.buyer.account_service import AccountLifecycleCoordinator
from farmbasket.services.buyer.basket_service import BasketStore
from farmbasket.services.buyer.init_service import InitializationSequencer
from farmbasket.services.buyer.order_lifecycle_service import OrderLifecycleManager
from farmbasket.services.buyer.order_reconciler import OrderReconciler
from farmbasket.services.buyer.pickup_schedule_service import PickupSchedule
from farmbasket.services.buyer.profile_service import BuyerProfileService
from farmbasket.services.state_store import Broadcast, StateStore, Subscription


@dataclass
class SessionRepositories:
    articles: ArticleRepository
    orders: OrderRepository
    profiles: ProfileRepository
    auth: AuthRepository


class BuyerSession:
    """
    One buyer's components, wired together.

    Every action goes through dispatch(), one at a time; after each action the
    current basket snapshot is copied into the session state.
    """

    def __init__(
        self,
        config: AppConfig,
        repos: SessionRepositories,
        schedule: Optional[PickupSchedule] = None,
    ):
        self.config = config
        self.repos = repos
        self.seller_id = config.seller_id
        self.schedule = schedule or PickupSchedule(config.schedule)

        self.state = StateStore()
        self.basket = BasketStore(
            on_draft_changed=self._save_draft,
            debounce_s=config.draft_save_debounce_s,
            selected_date_key=self._selected_date_key,
        )
        self.reconciler = OrderReconciler(repos.orders, self.schedule, self.seller_id)
        self.lifecycle = OrderLifecycleManager(
            state=self.state,
            basket=self.basket,
            reconciler=self.reconciler,
            orders=repos.orders,
            profiles=repos.profiles,
            auth=repos.auth,
            schedule=self.schedule,
            seller_id=self.seller_id,
            available_dates_count=config.available_pickup_dates,
        )
        self.initializer = InitializationSequencer(
            state=self.state,
            basket=self.basket,
            lifecycle=self.lifecycle,
            auth=repos.auth,
            profiles=repos.profiles,
            orders=repos.orders,
            articles=repos.articles,
            schedule=self.schedule,
            seller_id=self.seller_id,
            flavor=config.flavor,
        )
        self.profile = BuyerProfileService(
            state=self.state,
            profiles=repos.profiles,
            orders=repos.orders,
            seller_id=self.seller_id,
        )
        self.accounts = AccountLifecycleCoordinator(
            state=self.state,
            basket=self.basket,
            auth=repos.auth,
            profiles=repos.profiles,
            orders=repos.orders,
            schedule=self.schedule,
            seller_id=self.seller_id,
        )

        self._lock = asyncio.Lock()
        self._article_task: Optional[asyncio.Task] = None
        self._article_sub: Optional[Subscription] = None

        self._commands: Dict[str, Callable[..., Any]] = {
            # basket
            "add_article": self._add_article,
            "add_item": self.basket.add_item,
            "remove_item": self.basket.remove_item,
            "update_quantity": self.basket.update_quantity,
            "start_new_order": self.lifecycle.start_new_order,
            # pickup dates
            "load_available_dates": self.lifecycle.load_available_dates,
            "select_pickup_date": self.lifecycle.select_pickup_date,
            # orders
            "checkout": self.lifecycle.checkout,
            "resolve_merge_conflict": self.lifecycle.resolve_merge_conflict,
            "confirm_merge": self.lifecycle.confirm_merge,
            "dismiss_merge": self.lifecycle.dismiss_merge,
            "load_order": self.lifecycle.load_order,
            "load_most_recent_editable_order": self.lifecycle.load_most_recent_editable_order,
            "update_order": self.lifecycle.update_order,
            "cancel_order": self.lifecycle.cancel_order,
            "reorder_with_new_date": self.lifecycle.reorder_with_new_date,
            # profile
            "save_profile": self.profile.save_profile,
            "toggle_favourite": self.profile.toggle_favourite,
            "load_order_history": self.profile.load_order_history,
            # account
            "link_guest_to_permanent": self.accounts.link_guest_to_permanent,
            "delete_account": self.accounts.delete_account,
            "guest_logout_with_data_wipe": self.accounts.guest_logout_with_data_wipe,
            "sign_out": self.accounts.sign_out,
        }
        if config.flavor == "sell":
            # hand-over is a seller action
            self._commands["complete_order"] = self.lifecycle.complete_order

    # =========================
    # LIFECYCLE
    # =========================
    async def start(
        self,
        watch_articles: bool = False,
        feed: Optional[CatalogFeed] = None,
        restore_only: bool = False,
    ) -> InitializationStep:
        """
        Runs the startup sequence. With watch_articles the catalog follows live
        changes, from the shared feed when one is given, else from this
        session's own article repository.
        """
        async with self._lock:
            step = await self.initializer.run(restore_only=restore_only)
            await self._sync_basket()

        if watch_articles and step.is_complete:
            if feed is not None:
                self._article_sub = feed.subscribe()
                self._article_task = self.initializer.watch_articles(self._article_sub)
            else:
                self._article_task = self.initializer.watch_articles()
        return step

    async def close(self):
        if self._article_sub is not None:
            self._article_sub.close()
            self._article_sub = None
        if self._article_task is not None:
            self._article_task.cancel()
            await asyncio.gather(self._article_task, return_exceptions=True)
            self._article_task = None
        await self.basket.flush_draft()

    # =========================
    # ACTIONS
    # =========================
    @property
    def commands(self):
        return sorted(self._commands)

    async def dispatch(self, command: str, **params):
        handler = self._commands.get(command)
        if handler is None:
            raise ValidationError(f"Unknown action: {command}")

        async with self._lock:
            try:
                return await handler(**params)
            finally:
                await self._sync_basket()

    @property
    def current(self) -> BuyerState:
        return self.state.state

    def observe(self) -> Subscription[BuyerState]:
        return self.state.subscribe()

    # =========================
    # INTERNALS
    # =========================
    async def _add_article(self, article_id: str, quantity, pieces_count: int = -1) -> OrderedLineItem:
        article = next((a for a in self.state.state.articles if a.id == article_id), None)
        if article is None:
            raise ValidationError(f"Unknown article {article_id}")
        if not article.available:
            raise ValidationError(f"{article.product_name or article_id} is currently not available")

        item = OrderedLineItem(
            product_id=article.id,
            product_name=article.product_name,
            unit=article.unit,
            price=article.price,
            quantity=quantity if isinstance(quantity, Decimal) else Decimal(str(quantity)),
            pieces_count=pieces_count,
        )
        await self.basket.add_item(item)
        return item

    async def _sync_basket(self):
        await self.state.patch(basket=self.basket.snapshot)

    def _selected_date_key(self) -> Optional[str]:
        selected = self.state.state.selected_pickup_date
        return self.schedule.date_key(selected) if selected else None

    async def _save_draft(self, draft: DraftBasket):
        if draft.is_empty():
            await self.repos.profiles.clear_draft_basket()
        else:
            await self.repos.profiles.save_draft_basket(draft)




SessionFactory = Callable[[str], BuyerSession]


class CatalogFeed:
    """
    One live catalog feed per seller, shared by every session.

    Subscribers get the events published after they subscribed; a None event
    means the feed ended. The next subscribe() starts it again.
    """

    def __init__(self, articles: ArticleRepository, seller_id: str):
        self.articles = articles
        self.seller_id = seller_id
        self._channel: Broadcast[Optional[ArticleChangeEvent]] = Broadcast(None)
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def subscriber_count(self) -> int:
        return self._channel.subscriber_count

    def subscribe(self) -> Subscription[Optional[ArticleChangeEvent]]:
        if not self.running:
            self._task = asyncio.get_running_loop().create_task(self._run())
        sub = self._channel.subscribe()
        # drop the replayed value; sessions load their own snapshot at startup
        sub.get_nowait()
        return sub

    async def _run(self):
        print(f"📡 Catalog feed started for {self.seller_id}")
        try:
            async for event in self.articles.get_articles(self.seller_id):
                self._channel.publish(event)
        except OrderFlowError as e:
            print(f"⚠️ Catalog feed stopped - {e.message}")
        finally:
            self._channel.publish(None)

    async def close(self):
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None


class SessionRegistry:
    """
    Keeps one started BuyerSession per signed-in user.

    Sessions are only restored from an existing login, never created as new
    guests. A session unused for idle_ttl_s is closed; above max_sessions the
    least recently used one is closed first.
    """

    def __init__(
        self,
        factory: SessionFactory,
        watch_articles: bool = False,
        feed: Optional[CatalogFeed] = None,
        idle_ttl_s: Optional[float] = 1800.0,
        max_sessions: Optional[int] = 500,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.factory = factory
        self.watch_articles = watch_articles
        self.feed = feed
        self.idle_ttl_s = idle_ttl_s
        self.max_sessions = max_sessions
        self.clock = clock
        self._sessions: "OrderedDict[str, BuyerSession]" = OrderedDict()
        self._last_used: Dict[str, float] = {}
        self._lock = asyncio.Lock()

    async def get(self, user_id: str) -> BuyerSession:
        async with self._lock:
            session = self._sessions.get(user_id)
            if session is None:
                session = await self._open(user_id)
                self._sessions[user_id] = session

            now = self.clock()
            self._sessions.move_to_end(user_id)
            self._last_used[user_id] = now
            evicted = self._take_evictions(now)

        for old_user_id, old in evicted:
            await old.close()
            print(f"🧺 Session evicted for {old_user_id}")
        return session

    async def _open(self, user_id: str) -> BuyerSession:
        session = self.factory(user_id)
        print(f"🧺 Session created for {user_id}")
        step = await session.start(watch_articles=self.watch_articles, feed=self.feed, restore_only=True)
        if step.is_complete and session.current.user_id == user_id:
            return session

        await session.close()
        if step.is_failed and not session.current.requires_login:
            raise RemoteFailure(step.message or "Session could not be started")
        # token outlived its account
        raise AuthRequired("Session is no longer valid, please sign in again")

    def _take_evictions(self, now: float) -> List[Tuple[str, BuyerSession]]:
        evicted = []
        if self.idle_ttl_s is not None:
            for user_id in list(self._sessions):
                if now - self._last_used.get(user_id, now) > self.idle_ttl_s:
                    evicted.append((user_id, self._sessions.pop(user_id)))
                    self._last_used.pop(user_id, None)

        if self.max_sessions:
            while len(self._sessions) > self.max_sessions:
                user_id, session = self._sessions.popitem(last=False)
                self._last_used.pop(user_id, None)
                evicted.append((user_id, session))
        return evicted

    def peek(self, user_id: str) -> Optional[BuyerSession]:
        return self._sessions.get(user_id)

    async def drop(self, user_id: str):
        async with self._lock:
            session = self._sessions.pop(user_id, None)
            self._last_used.pop(user_id, None)
        if session is not None:
            await session.close()
            print(f"🧺 Session closed for {user_id}")

    async def close_all(self):
        for user_id in list(self._sessions):
            await self.drop(user_id)
        if self.feed is not None:
            await self.feed.close()

    def __len__(self):
        return len(self._sessions)
