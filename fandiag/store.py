import json
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

import aiosqlite
import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError, TimeoutError as RedisTimeoutError

from fandiag.logging_config import get_logger
from fandiag.models import Damage, DiagnosisRule, HistoryOwner, HistoryRecord, ScoredCause, Symptom

logger = get_logger(__name__)

CACHE_PREFIX = "fandiag:catalog:"


class StoreUnavailableError(RuntimeError):
    """The backing database cannot serve the request."""


# -------------------------------------------------------------------
# Fallback in-memory Redis (for local / test runs)
# -------------------------------------------------------------------
class _MemoryRedis:
    def __init__(self) -> None:
        self._data: Dict[str, str] = {}
        self._expiry: Dict[str, float] = {}

    async def setex(self, key: str, ttl_seconds: int, value: str) -> None:
        self._data[key] = value
        self._expiry[key] = time.time() + ttl_seconds

    async def get(self, key: str) -> Optional[str]:
        exp = self._expiry.get(key)
        if exp is not None and time.time() > exp:
            self._data.pop(key, None)
            self._expiry.pop(key, None)
            return None
        return self._data.get(key)

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self._data.pop(key, None)
            self._expiry.pop(key, None)

    async def aclose(self) -> None:
        return


# -------------------------------------------------------------------
# Helpers
# -------------------------------------------------------------------
def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _loads(raw: Optional[str], default: Any) -> Any:
    if not raw:
        return default
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return default


SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        username TEXT NOT NULL UNIQUE,
        email TEXT NOT NULL UNIQUE,
        full_name TEXT,
        password_hash TEXT NOT NULL,
        role TEXT NOT NULL DEFAULT 'user',
        created_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS symptoms (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        description TEXT,
        created_at TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS damages (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        remedy TEXT,
        created_at TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS diagnosis_rules (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        damage_id TEXT NOT NULL,
        symptom_id TEXT NOT NULL,
        probability REAL NOT NULL,
        created_at TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS diagnosis_history (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL,
        symptoms_json TEXT,
        results_json TEXT,
        notes TEXT,
        created_at TEXT
    )
    """,
)


# -------------------------------------------------------------------
# Store
# -------------------------------------------------------------------
class Store:
    def __init__(
        self,
        redis_url: str,
        sqlite_path: str,
        ttl_seconds: int = 3600,
        catalog_seed_path: Optional[str] = None,
    ):
        self.redis_url = redis_url
        self.sqlite_path = sqlite_path
        self.ttl_seconds = ttl_seconds
        self.catalog_seed_path = catalog_seed_path
        self._redis: Any = None
        self._db: Optional[aiosqlite.Connection] = None

    # ---------------------------------------------------------------
    # Lifecycle
    # ---------------------------------------------------------------
    async def connect(self) -> None:
        # Redis (best effort)
        client = redis.from_url(self.redis_url, decode_responses=True)
        try:
            await client.ping()
            self._redis = client
        except (OSError, RedisConnectionError, RedisTimeoutError):
            await client.aclose()
            logger.warning("redis_unavailable_using_memory_cache", extra={"redis_url": self.redis_url})
            self._redis = _MemoryRedis()

        # SQLite
        try:
            self._db = await aiosqlite.connect(self.sqlite_path)
            self._db.row_factory = aiosqlite.Row
            for statement in SCHEMA:
                await self._db.execute(statement)
            await self._db.commit()
        except (aiosqlite.Error, OSError) as exc:
            raise StoreUnavailableError(f"cannot open database at {self.sqlite_path}") from exc

        if self.catalog_seed_path:
            await self.seed_catalog(self.catalog_seed_path)

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
        if self._db is not None:
            await self._db.close()
            self._db = None

    # ---------------------------------------------------------------
    # Low level
    # ---------------------------------------------------------------
    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StoreUnavailableError("Store not connected (db).")
        return self._db

    async def _fetchall(self, sql: str, params: Sequence[Any] = ()) -> List[aiosqlite.Row]:
        db = self._conn()
        try:
            async with db.execute(sql, params) as cursor:
                return list(await cursor.fetchall())
        except aiosqlite.Error as exc:
            raise StoreUnavailableError(str(exc)) from exc

    async def _fetchone(self, sql: str, params: Sequence[Any] = ()) -> Optional[aiosqlite.Row]:
        rows = await self._fetchall(sql, params)
        return rows[0] if rows else None

    async def _write(self, sql: str, params: Sequence[Any] = ()) -> aiosqlite.Cursor:
        db = self._conn()
        try:
            cursor = await db.execute(sql, params)
            await db.commit()
            return cursor
        except aiosqlite.IntegrityError:
            raise
        except aiosqlite.Error as exc:
            raise StoreUnavailableError(str(exc)) from exc

    async def _cache_get(self, key: str) -> Optional[Any]:
        try:
            raw = await self._redis.get(CACHE_PREFIX + key)
        except RedisError as exc:
            logger.warning("catalog_cache_read_failed", extra={"key": key, "error": str(exc)})
            return None
        return _loads(raw, None)

    async def _cache_set(self, key: str, value: Any) -> None:
        try:
            await self._redis.setex(CACHE_PREFIX + key, self.ttl_seconds, json.dumps(value, default=str))
        except RedisError as exc:
            logger.warning("catalog_cache_write_failed", extra={"key": key, "error": str(exc)})

    async def invalidate_catalog_cache(self) -> None:
        try:
            await self._redis.delete(CACHE_PREFIX + "symptoms", CACHE_PREFIX + "damages")
        except RedisError as exc:
            logger.warning("catalog_cache_invalidate_failed", extra={"error": str(exc)})

    # ---------------------------------------------------------------
    # Catalogue
    # ---------------------------------------------------------------
    async def seed_catalog(self, path: str) -> bool:
        """Load symptoms, damages and rules from a JSON file into empty tables.

        Returns False without touching anything when a catalogue is already present.
        """
        existing = await self._fetchone("SELECT COUNT(*) FROM damages")
        if existing and existing[0] > 0:
            return False

        seed_file = Path(path)
        if not seed_file.exists():
            logger.warning("catalog_seed_missing", extra={"path": path})
            return False
        data = json.loads(seed_file.read_text(encoding="utf-8"))
        await self.replace_catalog(
            symptoms=[Symptom(**item) for item in data.get("symptoms", [])],
            damages=[Damage(**item) for item in data.get("damages", [])],
            rules=[DiagnosisRule(**item) for item in data.get("rules", [])],
        )
        logger.info("catalog_seeded", extra={"path": path})
        return True

    async def replace_catalog(
        self,
        symptoms: Iterable[Symptom],
        damages: Iterable[Damage],
        rules: Iterable[DiagnosisRule],
    ) -> None:
        db = self._conn()
        now = now_utc().isoformat()
        try:
            await db.execute("DELETE FROM diagnosis_rules")
            await db.execute("DELETE FROM symptoms")
            await db.execute("DELETE FROM damages")
            await db.executemany(
                "INSERT INTO symptoms (id, name, description, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
                [(s.id, s.name, s.description, now, now) for s in symptoms],
            )
            await db.executemany(
                "INSERT INTO damages (id, name, remedy, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
                [(d.id, d.name, d.remedy, now, now) for d in damages],
            )
            await db.executemany(
                """
                INSERT INTO diagnosis_rules (damage_id, symptom_id, probability, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                [(r.damage_id, r.symptom_id, r.probability, now, now) for r in rules],
            )
            await db.commit()
        except aiosqlite.Error as exc:
            await db.rollback()
            raise StoreUnavailableError(str(exc)) from exc
        await self.invalidate_catalog_cache()

    async def list_symptoms(self) -> List[Symptom]:
        cached = await self._cache_get("symptoms")
        if cached is not None:
            return [Symptom(**item) for item in cached]

        rows = await self._fetchall(
            "SELECT id, name, description, created_at, updated_at FROM symptoms ORDER BY id"
        )
        symptoms = [Symptom(**dict(row)) for row in rows]
        await self._cache_set("symptoms", [s.model_dump(mode="json") for s in symptoms])
        return symptoms

    async def list_damages(self) -> List[Damage]:
        cached = await self._cache_get("damages")
        if cached is not None:
            return [Damage(**item) for item in cached]

        rows = await self._fetchall(
            "SELECT id, name, remedy, created_at, updated_at FROM damages ORDER BY id"
        )
        damages = [Damage(**{**dict(row), "remedy": row["remedy"] or ""}) for row in rows]
        await self._cache_set("damages", [d.model_dump(mode="json") for d in damages])
        return damages

    async def list_rules(self, symptom_ids: Optional[Sequence[str]] = None) -> List[DiagnosisRule]:
        sql = """
            SELECT
                r.id,
                r.damage_id,
                r.symptom_id,
                r.probability,
                s.name AS symptom_name,
                d.name AS damage_name
            FROM diagnosis_rules r
            LEFT JOIN symptoms s ON s.id = r.symptom_id
            LEFT JOIN damages d ON d.id = r.damage_id
        """
        params: List[Any] = []
        if symptom_ids is not None:
            if not symptom_ids:
                return []
            placeholders = ", ".join("?" for _ in symptom_ids)
            sql += f" WHERE r.symptom_id IN ({placeholders})"
            params.extend(symptom_ids)
        sql += " ORDER BY r.symptom_id, r.id"
        rows = await self._fetchall(sql, params)
        return [DiagnosisRule(**dict(row)) for row in rows]

    # ---------------------------------------------------------------
    # Users
    # ---------------------------------------------------------------
    async def create_user(
        self,
        username: str,
        email: str,
        full_name: str,
        password_hash: str,
        role: str = "user",
    ) -> int:
        cursor = await self._write(
            """
            INSERT INTO users (username, email, full_name, password_hash, role, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (username, email, full_name, password_hash, role, now_utc().isoformat()),
        )
        return int(cursor.lastrowid)

    async def find_user_conflict(self, username: str, email: str) -> bool:
        row = await self._fetchone(
            "SELECT 1 FROM users WHERE username = ? OR email = ? LIMIT 1",
            (username, email),
        )
        return row is not None

    async def get_user_by_username(self, username: str) -> Optional[Dict[str, Any]]:
        row = await self._fetchone(
            "SELECT id, username, email, full_name, password_hash, role FROM users WHERE username = ?",
            (username,),
        )
        return dict(row) if row else None

    async def get_user_by_id(self, user_id: int) -> Optional[Dict[str, Any]]:
        row = await self._fetchone(
            "SELECT id, username, email, full_name, role FROM users WHERE id = ?",
            (user_id,),
        )
        return dict(row) if row else None

    async def ensure_admin(self, username: str, password_hash: str, email: str) -> int:
        existing = await self.get_user_by_username(username)
        if existing is not None:
            if existing["role"] != "admin":
                await self._write("UPDATE users SET role = 'admin' WHERE id = ?", (existing["id"],))
            return int(existing["id"])
        return await self.create_user(username, email, "Administrator", password_hash, role="admin")

    # ---------------------------------------------------------------
    # History
    # ---------------------------------------------------------------
    async def save_history(
        self,
        user_id: int,
        symptoms: Sequence[str],
        results: Sequence[ScoredCause],
        notes: Optional[str] = None,
    ) -> int:
        cursor = await self._write(
            """
            INSERT INTO diagnosis_history (user_id, symptoms_json, results_json, notes, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                user_id,
                json.dumps(list(symptoms), ensure_ascii=False),
                json.dumps([r.model_dump() for r in results], ensure_ascii=False),
                notes,
                now_utc().isoformat(),
            ),
        )
        return int(cursor.lastrowid)

    async def list_history(self, user_id: Optional[int] = None) -> List[HistoryRecord]:
        sql = """
            SELECT
                h.id,
                h.user_id,
                h.symptoms_json,
                h.results_json,
                h.notes,
                h.created_at,
                u.username,
                u.email,
                u.full_name
            FROM diagnosis_history h
            LEFT JOIN users u ON u.id = h.user_id
        """
        params: List[Any] = []
        if user_id is not None:
            sql += " WHERE h.user_id = ?"
            params.append(user_id)
        sql += " ORDER BY h.created_at DESC, h.id DESC"
        rows = await self._fetchall(sql, params)

        return [
            HistoryRecord(
                id=row["id"],
                user=HistoryOwner(
                    id=row["user_id"],
                    username=row["username"],
                    email=row["email"],
                    full_name=row["full_name"],
                ),
                symptoms=[str(s) for s in _loads(row["symptoms_json"], [])],
                results=_loads(row["results_json"], []),
                created_at=row["created_at"],
                notes=row["notes"],
            )
            for row in rows
        ]

    async def get_history_owner(self, history_id: int) -> Optional[int]:
        row = await self._fetchone("SELECT user_id FROM diagnosis_history WHERE id = ?", (history_id,))
        return int(row["user_id"]) if row else None

    async def count_owned(self, history_ids: Sequence[int], user_id: int) -> int:
        if not history_ids:
            return 0
        placeholders = ", ".join("?" for _ in history_ids)
        row = await self._fetchone(
            f"SELECT COUNT(*) FROM diagnosis_history WHERE id IN ({placeholders}) AND user_id = ?",
            (*history_ids, user_id),
        )
        return int(row[0]) if row else 0

    async def delete_history(self, history_ids: Sequence[int]) -> int:
        if not history_ids:
            return 0
        placeholders = ", ".join("?" for _ in history_ids)
        cursor = await self._write(
            f"DELETE FROM diagnosis_history WHERE id IN ({placeholders})",
            tuple(history_ids),
        )
        return cursor.rowcount
