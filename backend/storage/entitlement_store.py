# storage/entitlement_store.py
# ============================================================================
# POLEGUESSR PREMIUM PASS: ENTITLEMENT STORE
# ============================================================================
# One document per registered user, keyed by user id, holding the premium
# flag. Records are created by registration; the webhook only ever sets
# premium=True on an existing record, so replays are harmless.
# ============================================================================

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Optional

import asyncpg
import structlog
from pymongo import MongoClient
from pymongo.collection import Collection
from pymongo.errors import PyMongoError

from database import Database
from errors import EntitlementNotFoundError, EntitlementStoreError
from schemas.payment_models import EntitlementRecord, is_sentinel_identity
from settings import EntitlementBackend, Settings


def _require_real_identity(user_id: Optional[str]) -> str:
    if is_sentinel_identity(user_id):
        raise ValueError(f"Refusing to use sentinel identity as entitlement key: {user_id!r}")
    return user_id.strip()


# ============================================================================
# INTERFACE
# ============================================================================

class EntitlementStore(ABC):
    """Async entitlement persistence interface"""

    name: str = "abstract"

    @abstractmethod
    async def grant_premium(self, user_id: str) -> EntitlementRecord:
        """Set premium=True on an existing record.

        Raises EntitlementNotFoundError when the user was never registered,
        EntitlementStoreError when the backend fails.
        """

    @abstractmethod
    async def get(self, user_id: str) -> Optional[EntitlementRecord]:
        pass

    @abstractmethod
    async def register(self, user_id: str, username: Optional[str] = None) -> EntitlementRecord:
        """Create the record with premium=False unless it already exists."""

    async def initialize(self) -> None:
        return None

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


# ============================================================================
# IN-MEMORY
# ============================================================================

class InMemoryEntitlementStore(EntitlementStore):
    """Dict-backed store for development and tests"""

    name = "memory"

    def __init__(self):
        self._records: Dict[str, EntitlementRecord] = {}
        self._lock = asyncio.Lock()

    async def grant_premium(self, user_id: str) -> EntitlementRecord:
        user_id = _require_real_identity(user_id)
        async with self._lock:
            record = self._records.get(user_id)
            if record is None:
                raise EntitlementNotFoundError(user_id)
            record = record.model_copy(update={"premium": True, "updated_at": datetime.utcnow()})
            self._records[user_id] = record
            return record

    async def get(self, user_id: str) -> Optional[EntitlementRecord]:
        async with self._lock:
            return self._records.get(user_id)

    async def register(self, user_id: str, username: Optional[str] = None) -> EntitlementRecord:
        user_id = _require_real_identity(user_id)
        async with self._lock:
            if user_id not in self._records:
                self._records[user_id] = EntitlementRecord(user_id=user_id, username=username)
            return self._records[user_id]

    def __len__(self) -> int:
        return len(self._records)


# ============================================================================
# MONGODB
# ============================================================================

class MongoEntitlementStore(EntitlementStore):
    """
    MongoDB-backed store. Documents live in one collection with the user id
    as `_id`. PyMongo is blocking, so calls run in the default executor.
    """

    name = "mongo"

    def __init__(
        self,
        url: Optional[str] = None,
        database: str = "poleguessr",
        collection: str = "users",
        client: Optional[MongoClient] = None,
    ):
        if client is None and not url:
            raise ValueError("MongoEntitlementStore needs a url or a client")
        self._client = client or MongoClient(url, serverSelectionTimeoutMS=5000)
        self._collection: Collection = self._client[database][collection]
        self._logger = structlog.get_logger().bind(component="entitlements", backend="mongo")

    async def _run(self, fn, *args, **kwargs):
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, lambda: fn(*args, **kwargs))
        except PyMongoError as e:
            raise EntitlementStoreError(f"MongoDB error: {e}") from e

    @staticmethod
    def _to_record(doc: Dict[str, Any]) -> EntitlementRecord:
        return EntitlementRecord(
            user_id=doc["_id"],
            username=doc.get("username"),
            premium=bool(doc.get("premium", False)),
            created_at=doc.get("created_at") or datetime.utcnow(),
            updated_at=doc.get("updated_at") or datetime.utcnow(),
        )

    async def grant_premium(self, user_id: str) -> EntitlementRecord:
        user_id = _require_real_identity(user_id)
        now = datetime.utcnow()
        result = await self._run(
            self._collection.update_one,
            {"_id": user_id},
            {"$set": {"premium": True, "updated_at": now}},
            upsert=False,
        )
        if result.matched_count == 0:
            raise EntitlementNotFoundError(user_id)

        doc = await self._run(self._collection.find_one, {"_id": user_id})
        if doc is None:
            raise EntitlementNotFoundError(user_id)
        return self._to_record(doc)

    async def get(self, user_id: str) -> Optional[EntitlementRecord]:
        doc = await self._run(self._collection.find_one, {"_id": user_id})
        return self._to_record(doc) if doc else None

    async def register(self, user_id: str, username: Optional[str] = None) -> EntitlementRecord:
        user_id = _require_real_identity(user_id)
        now = datetime.utcnow()
        await self._run(
            self._collection.update_one,
            {"_id": user_id},
            {"$setOnInsert": {
                "username": username,
                "premium": False,
                "created_at": now,
                "updated_at": now,
            }},
            upsert=True,
        )
        doc = await self._run(self._collection.find_one, {"_id": user_id})
        return self._to_record(doc)

    async def ping(self) -> bool:
        try:
            await self._run(self._client.admin.command, "ping")
            return True
        except EntitlementStoreError as e:
            self._logger.warning("mongo_ping_failed", error=str(e))
            return False

    async def close(self) -> None:
        self._client.close()


# ============================================================================
# POSTGRES
# ============================================================================

class PostgresEntitlementStore(EntitlementStore):
    """Postgres-backed store on top of the asyncpg pool in database.py"""

    name = "postgres"

    _COLUMNS = "user_id, username, premium, created_at, updated_at"

    def __init__(self, db: Database):
        self._db = db
        self._logger = structlog.get_logger().bind(component="entitlements", backend="postgres")

    async def initialize(self) -> None:
        try:
            await self._db.initialize()
        except (OSError, asyncpg.PostgresError) as e:
            raise EntitlementStoreError(f"Postgres unavailable: {e}") from e

    @staticmethod
    def _to_record(row: asyncpg.Record) -> EntitlementRecord:
        return EntitlementRecord(**dict(row))

    async def _fetch_one(self, query: str, *args) -> Optional[asyncpg.Record]:
        try:
            return await self._db.fetch_one(query, *args)
        except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            raise EntitlementStoreError(f"Postgres error: {e}") from e

    async def grant_premium(self, user_id: str) -> EntitlementRecord:
        user_id = _require_real_identity(user_id)
        row = await self._fetch_one(
            f"""
            UPDATE users SET premium = TRUE, updated_at = NOW()
            WHERE user_id = $1
            RETURNING {self._COLUMNS}
            """,
            user_id,
        )
        if row is None:
            raise EntitlementNotFoundError(user_id)
        return self._to_record(row)

    async def get(self, user_id: str) -> Optional[EntitlementRecord]:
        row = await self._fetch_one(
            f"SELECT {self._COLUMNS} FROM users WHERE user_id = $1", user_id
        )
        return self._to_record(row) if row else None

    async def register(self, user_id: str, username: Optional[str] = None) -> EntitlementRecord:
        user_id = _require_real_identity(user_id)
        await self._fetch_one(
            """
            INSERT INTO users (user_id, username) VALUES ($1, $2)
            ON CONFLICT (user_id) DO NOTHING
            """,
            user_id,
            username,
        )
        return await self.get(user_id)

    async def ping(self) -> bool:
        try:
            await self._fetch_one("SELECT 1")
            return True
        except EntitlementStoreError as e:
            self._logger.warning("postgres_ping_failed", error=str(e))
            return False

    async def close(self) -> None:
        await self._db.close()


# ============================================================================
# FACTORY
# ============================================================================

def create_entitlement_store(settings: Settings) -> EntitlementStore:
    """Build the backend selected by ENTITLEMENT_BACKEND"""
    if settings.entitlement_backend == EntitlementBackend.MONGO:
        return MongoEntitlementStore(
            url=settings.mongo_url,
            database=settings.mongo_database,
            collection=settings.mongo_collection,
        )
    if settings.entitlement_backend == EntitlementBackend.POSTGRES:
        return PostgresEntitlementStore(
            Database(
                settings.database_url,
                min_size=settings.db_min_pool_size,
                max_size=settings.db_max_pool_size,
            )
        )
    return InMemoryEntitlementStore()
