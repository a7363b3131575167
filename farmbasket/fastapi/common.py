# farmbasket/fastapi/common.py
# JWT + error helpers shared by the auth routes (server.py) and the buyer router.

from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import jwt
from fastapi import HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from farmbasket.app_config import AppConfig
from farmbasket.errors import (
    AuthRequired,
    EditWindowClosed,
    InvalidStatusTransition,
    NotFound,
    OrderFlowError,
    RemoteFailure,
    ValidationError,
)

# --- one HTTPBearer scheme for all routers (docs will show a lock) ---
bearer = HTTPBearer(scheme_name="AccessToken", bearerFormat="JWT", auto_error=False)

STATUS_BY_ERROR = [
    (ValidationError, 400),
    (AuthRequired, 401),
    (NotFound, 404),
    (EditWindowClosed, 409),
    (InvalidStatusTransition, 409),
    (RemoteFailure, 502),
]


def _now_utc() -> datetime:
    return datetime.now(tz=timezone.utc)


def app_config(request: Request) -> AppConfig:
    return request.app.state.config


# =========================
# TOKENS
# =========================
def jwt_issue(config: AppConfig, identity: Dict[str, Any]) -> Dict[str, str]:
    now = _now_utc()
    access_exp = now + timedelta(hours=config.access_expires_h)
    refresh_exp = now + timedelta(days=config.refresh_expires_d)

    # 'sub' MUST be a string. Keep full identity in 'user'.
    sub_val = str(identity.get("userId", ""))

    access = jwt.encode(
        {"sub": sub_val, "user": identity, "type": "access",
         "iat": int(now.timestamp()), "exp": int(access_exp.timestamp())},
        config.jwt_secret_key, algorithm="HS256"
    )
    refresh = jwt.encode(
        {"sub": sub_val, "user": identity, "type": "refresh",
         "iat": int(now.timestamp()), "exp": int(refresh_exp.timestamp())},
        config.jwt_secret_key, algorithm="HS256"
    )
    return {"access_token": access, "refresh_token": refresh}


def jwt_decode(config: AppConfig, token: str) -> Dict[str, Any]:
    try:
        return jwt.decode(token, config.jwt_secret_key, algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


def auth_identity(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Security(bearer),
) -> Dict[str, Any]:
    if not credentials or (credentials.scheme or "").lower() != "bearer":
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header")

    payload = jwt_decode(app_config(request), credentials.credentials.strip())
    if payload.get("type") != "access":
        raise HTTPException(status_code=401, detail="Not an access token")

    identity = payload.get("user")
    if not identity and isinstance(payload.get("sub"), str):
        identity = {"userId": payload["sub"]}

    if not identity or not identity.get("userId"):
        raise HTTPException(status_code=401, detail="Invalid token payload")
    return identity


# =========================
# ERRORS
# =========================
def http_error(e: OrderFlowError) -> HTTPException:
    status = 500
    for cls, code in STATUS_BY_ERROR:
        if isinstance(e, cls):
            status = code
            break
    return HTTPException(status_code=status, detail={"code": e.code, "message": e.message})
