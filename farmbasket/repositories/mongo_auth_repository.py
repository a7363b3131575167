# farmbasket/repositories/mongo_auth_repository.py

import os
import time
from datetime import datetime, timezone
from typing import Optional

import bcrypt

from farmbasket.errors import AuthRequired, NotFound, ValidationError
from farmbasket.mongo import get_col, run_blocking
from farmbasket.repositories.contracts import AuthRepository
from farmbasket.services.state_store import Broadcast


def _now_utc() -> datetime:
    return datetime.now(tz=timezone.utc)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def check_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))


def generate_user_id(prefix: str = "BUY") -> str:
    return f"{prefix}{os.urandom(3).hex().upper()}{int(time.time())}"


class MongoAuthRepository(AuthRepository):
    """
    Email/password and anonymous identities in auth_users:
        { userId, email, password (bcrypt), anonymous, createdAt }

    One instance tracks one signed-in identity. persisted_user_id restores a
    session (e.g. from a verified JWT).
    """

    COLLECTION = "auth_users"

    def __init__(self, persisted_user_id: Optional[str] = None, timeout: Optional[float] = None):
        self.timeout = timeout
        self._persisted_user_id = persisted_user_id
        self._auth_state: Broadcast[Optional[str]] = Broadcast(None)

    def _col(self):
        return get_col(self.COLLECTION)

    @property
    def user_id(self) -> Optional[str]:
        return self._auth_state.value

    def _set_user(self, user_id: Optional[str]):
        self._auth_state.publish(user_id)

    def _require_user(self) -> str:
        user_id = self._auth_state.value
        if not user_id:
            raise AuthRequired("No signed-in user")
        return user_id

    async def _find(self, query: dict) -> Optional[dict]:
        return await run_blocking(self._col().find_one, query, timeout=self.timeout)

    # =========================
    # STATE
    # =========================
    def observe_auth_state(self):
        return self._auth_state.subscribe()

    async def current_user_id(self) -> Optional[str]:
        return self._auth_state.value

    async def check_persisted_auth(self) -> Optional[str]:
        user_id = self._auth_state.value or self._persisted_user_id
        if not user_id:
            return None

        if not await self._find({"userId": user_id}):
            print(f"⚠️ Persisted session for {user_id} has no account anymore")
            self._persisted_user_id = None
            self._set_user(None)
            return None

        self._set_user(user_id)
        return user_id

    async def is_anonymous(self) -> bool:
        user_id = self._auth_state.value
        if not user_id:
            return True
        u = await self._find({"userId": user_id})
        return bool(u.get("anonymous", True)) if u else True

    # =========================
    # SIGN IN / UP
    # =========================
    async def sign_in_anonymously(self) -> str:
        user_id = generate_user_id()
        await run_blocking(
            self._col().insert_one,
            {"userId": user_id, "email": None, "password": None, "anonymous": True, "createdAt": _now_utc()},
            timeout=self.timeout,
        )
        self._set_user(user_id)
        return user_id

    async def sign_up_with_email(self, email: str, password: str) -> str:
        email = email.strip().lower()
        if await self._find({"email": email}):
            raise ValidationError("User already exists")

        user_id = generate_user_id()
        hashed = await run_blocking(hash_password, password)
        await run_blocking(
            self._col().insert_one,
            {"userId": user_id, "email": email, "password": hashed, "anonymous": False, "createdAt": _now_utc()},
            timeout=self.timeout,
        )
        self._set_user(user_id)
        return user_id

    async def sign_in_with_email(self, email: str, password: str) -> str:
        u = await self._find({"email": email.strip().lower()})
        if not u:
            raise NotFound("User not found")
        if not await run_blocking(check_password, password, u.get("password") or ""):
            raise ValidationError("Invalid password")
        self._set_user(u["userId"])
        return u["userId"]

    async def link_with_email(self, email: str, password: str) -> str:
        user_id = self._require_user()
        email = email.strip().lower()

        other = await self._find({"email": email})
        if other and other.get("userId") != user_id:
            raise ValidationError("Email is already used by another account")

        hashed = await run_blocking(hash_password, password)
        result = await run_blocking(
            self._col().update_one,
            {"userId": user_id, "anonymous": True},
            {"$set": {"email": email, "password": hashed, "anonymous": False, "linkedAt": _now_utc()}},
            timeout=self.timeout,
        )
        if result.matched_count == 0:
            raise ValidationError("Only guest accounts can be linked")
        return user_id

    # =========================
    # SIGN OUT / DELETE
    # =========================
    async def sign_out(self) -> None:
        self._persisted_user_id = None
        self._set_user(None)

    async def delete_account(self) -> None:
        user_id = self._require_user()
        await run_blocking(self._col().delete_one, {"userId": user_id}, timeout=self.timeout)
        await self.sign_out()
