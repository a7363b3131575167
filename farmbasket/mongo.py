# farmbasket/mongo.py
from __future__ import annotations

import asyncio
from concurrent.futures import Executor, ThreadPoolExecutor
from decimal import Decimal
from typing import Any, Callable, Optional

from bson.decimal128 import Decimal128
from pymongo import MongoClient
from pymongo.errors import PyMongoError

from farmbasket.app_config import AppConfig
from farmbasket.errors import RemoteFailure

_client: Optional[MongoClient] = None
_db = None

# pymongo is blocking; every call is pushed onto this pool
executor = ThreadPoolExecutor(max_workers=8)
# change streams block up to max_await_time_ms per poll; kept off the main pool
stream_executor = ThreadPoolExecutor(max_workers=2)


def init_mongo(config: AppConfig):
    """
    Creates the shared MongoClient.
    The client connects lazily, so a wrong URI only shows up on the first query.
    Call this during app startup (create_app).
    """
    global _client, _db

    if config.disable_mongo:
        print("⚠️ Mongo disabled by DISABLE_MONGO=1")
        return None

    if not config.mongo_uri:
        print("⚠️ MONGO_URI not set. Mongo will not be initialized.")
        return None

    try:
        _client = MongoClient(config.mongo_uri, tz_aware=True)
        _db = _client.get_database()
        print("✅ Mongo initialized")
    except (PyMongoError, ValueError) as e:
        # keep the app running; repositories will raise RemoteFailure
        print(f"⚠️ Mongo init failed: {e}")
        _client, _db = None, None

    return _db


def get_db():
    """
    Returns the database if initialized, else None.
    """
    return _db


def get_col(name: str):
    db = get_db()
    if db is None:
        raise RemoteFailure("Mongo is not initialized")
    return db[name]


async def run_blocking(
    fn: Callable[..., Any],
    *args,
    timeout: Optional[float] = None,
    pool: Optional[Executor] = None,
    **kwargs,
) -> Any:
    """
    Runs a blocking pymongo call on the executor (or the given pool).
    Driver errors and timeouts surface as RemoteFailure.
    """
    loop = asyncio.get_running_loop()
    fut = loop.run_in_executor(pool or executor, lambda: fn(*args, **kwargs))
    try:
        if timeout:
            return await asyncio.wait_for(fut, timeout)
        return await fut
    except asyncio.TimeoutError:
        raise RemoteFailure(f"Remote call timed out after {timeout}s")
    except PyMongoError as e:
        raise RemoteFailure(str(e))


# =========================
# BSON CONVERSION
# =========================
def to_bson(value: Any) -> Any:
    """Decimal -> Decimal128, recursively through dicts and lists."""
    if isinstance(value, Decimal):
        return Decimal128(value)
    if isinstance(value, dict):
        return {k: to_bson(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_bson(v) for v in value]
    return value


def from_bson(value: Any) -> Any:
    """Decimal128 -> Decimal, recursively; drops nothing else."""
    if isinstance(value, Decimal128):
        return value.to_decimal()
    if isinstance(value, dict):
        return {k: from_bson(v) for k, v in value.items()}
    if isinstance(value, list):
        return [from_bson(v) for v in value]
    return value
