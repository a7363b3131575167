# server.py
# FastAPI app: auth routes + buyer router.
# Run: uvicorn server:create_app --factory --host 0.0.0.0 --port 8000

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator

from farmbasket.app_config import AppConfig, load_config
from farmbasket.errors import OrderFlowError
from farmbasket.fastapi.buyer_api import current_session, router as buyer_router
from farmbasket.fastapi.common import app_config, auth_identity, http_error, jwt_decode, jwt_issue
from farmbasket.mongo import init_mongo
from farmbasket.repositories.contracts import AuthRepository
from farmbasket.repositories.mongo_article_repository import MongoArticleRepository
from farmbasket.repositories.mongo_auth_repository import MongoAuthRepository
from farmbasket.repositories.mongo_order_repository import MongoOrderRepository
from farmbasket.repositories.mongo_profile_repository import MongoProfileRepository
from farmbasket.services.buyer.pickup_schedule_service import PickupSchedule
from farmbasket.services.buyer.session_service import BuyerSession, CatalogFeed, SessionRegistry, SessionRepositories

AuthFactory = Callable[[Optional[str]], AuthRepository]


# --- pydantic models ---
class CredentialsRequest(BaseModel):
    email: str
    password: str = Field(..., min_length=6)

    @field_validator("email")
    @classmethod
    def _loose_email(cls, v: str) -> str:
        v = (v or "").strip()
        if "@" not in v or " " in v:
            raise ValueError("invalid email format (expected something like user@host)")
        return v


class LoginRequest(BaseModel):
    email: str
    password: str

    @field_validator("email")
    @classmethod
    def _loose_email(cls, v: str) -> str:
        v = (v or "").strip()
        if "@" not in v or " " in v:
            raise ValueError("invalid email format (expected something like user@host)")
        return v


class RefreshRequest(BaseModel):
    refresh_token: str


# --- helpers ---
def _user_public_payload(user_id: str, anonymous: bool, email: str = "") -> Dict[str, Any]:
    return {"userId": user_id, "email": email, "anonymous": anonymous}


def mongo_session_factory(config: AppConfig, schedule: PickupSchedule) -> Callable[[str], BuyerSession]:
    timeout = config.remote_timeout_s

    def build(user_id: str) -> BuyerSession:
        auth = MongoAuthRepository(persisted_user_id=user_id, timeout=timeout)
        repos = SessionRepositories(
            articles=MongoArticleRepository(timeout=timeout),
            orders=MongoOrderRepository(schedule, timeout=timeout),
            profiles=MongoProfileRepository(lambda: auth.user_id, timeout=timeout),
            auth=auth,
        )
        return BuyerSession(config, repos, schedule=schedule)

    return build


def create_app(
    config: Optional[AppConfig] = None,
    session_factory: Optional[Callable[[str], BuyerSession]] = None,
    auth_factory: Optional[AuthFactory] = None,
    watch_articles: Optional[bool] = None,
) -> FastAPI:
    config = config or load_config()

    feed = None
    if session_factory is None or auth_factory is None:
        init_mongo(config)
        schedule = PickupSchedule(config.schedule)
        session_factory = session_factory or mongo_session_factory(config, schedule)
        auth_factory = auth_factory or (lambda uid: MongoAuthRepository(uid, timeout=config.remote_timeout_s))
        if watch_articles is None:
            watch_articles = not config.disable_mongo
        if watch_articles:
            # one change stream for all sessions
            feed = CatalogFeed(MongoArticleRepository(timeout=config.remote_timeout_s), config.seller_id)

    sessions = SessionRegistry(
        session_factory,
        watch_articles=bool(watch_articles),
        feed=feed,
        idle_ttl_s=config.session_idle_ttl_s,
        max_sessions=config.max_sessions,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await sessions.close_all()

    app = FastAPI(title="Farm Basket API", version="1.0.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.config = config
    app.state.sessions = sessions
    app.state.auth_factory = auth_factory

    # --- auth routes ---
    @app.post("/api/v1/auth/anonymous")
    async def api_anonymous(request: Request):
        try:
            user_id = await auth_factory(None).sign_in_anonymously()
        except OrderFlowError as e:
            raise http_error(e)
        user = _user_public_payload(user_id, anonymous=True)
        tokens = jwt_issue(app_config(request), user)
        return JSONResponse(status_code=201, content={"ok": True, "user": user, **tokens})

    @app.post("/api/v1/auth/register")
    async def api_register(req: CredentialsRequest, request: Request):
        email = req.email.strip().lower()
        try:
            user_id = await auth_factory(None).sign_up_with_email(email, req.password)
        except OrderFlowError as e:
            raise http_error(e)
        user = _user_public_payload(user_id, anonymous=False, email=email)
        tokens = jwt_issue(app_config(request), user)
        return JSONResponse(status_code=201, content={"ok": True, "user": user, **tokens})

    @app.post("/api/v1/auth/login")
    async def api_login(req: LoginRequest, request: Request):
        email = req.email.strip().lower()
        try:
            user_id = await auth_factory(None).sign_in_with_email(email, req.password)
        except OrderFlowError as e:
            raise http_error(e)
        user = _user_public_payload(user_id, anonymous=False, email=email)
        return {"ok": True, "user": user, **jwt_issue(app_config(request), user)}

    @app.post("/api/v1/auth/refresh")
    async def api_refresh(req: RefreshRequest, request: Request):
        payload = jwt_decode(app_config(request), req.refresh_token)
        if payload.get("type") != "refresh":
            raise HTTPException(status_code=401, detail="Not a refresh token")
        ident = payload.get("user") or {"userId": payload.get("sub")}
        new = jwt_issue(app_config(request), ident)
        return {"ok": True, "access_token": new["access_token"]}

    @app.post("/api/v1/auth/link")
    async def api_link(
        req: CredentialsRequest,
        request: Request,
        identity=Depends(auth_identity),
        session: BuyerSession = Depends(current_session),
    ):
        try:
            profile = await session.dispatch("link_guest_to_permanent", email=req.email, password=req.password)
        except OrderFlowError as e:
            raise http_error(e)
        user = _user_public_payload(identity["userId"], anonymous=False, email=profile.email)
        return {"ok": True, "user": user, **jwt_issue(app_config(request), user)}

    @app.delete("/api/v1/auth/account")
    async def api_delete_account(identity=Depends(auth_identity), session: BuyerSession = Depends(current_session)):
        user_id = identity["userId"]
        try:
            report = await session.dispatch("delete_account")
        except OrderFlowError as e:
            raise http_error(e)
        await sessions.drop(user_id)
        return {"ok": report.is_successful, "cleanup": report.to_dict()}

    @app.post("/api/v1/auth/logout")
    async def api_logout(identity=Depends(auth_identity), session: BuyerSession = Depends(current_session)):
        user_id = identity["userId"]
        command = "guest_logout_with_data_wipe" if session.current.is_anonymous else "sign_out"
        try:
            await session.dispatch(command)
        except OrderFlowError as e:
            raise http_error(e)
        await sessions.drop(user_id)
        return {"ok": True, "wiped": command == "guest_logout_with_data_wipe"}

    # --- include routers ---
    app.include_router(buyer_router)

    # --- diagnostics ---
    @app.get("/_health")
    def _health():
        return {
            "ok": True,
            "service": "farmbasket",
            "flavor": config.flavor,
            "sessions": len(sessions),
            "ts": int(datetime.now(timezone.utc).timestamp()),
        }

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("server:create_app", factory=True, host="0.0.0.0", port=8000)
