"""
Repository pattern for data access.

Handles the usage ledger, generated-recipe history and recipe cache tables.
"""

from datetime import datetime, timezone
from typing import List, Optional

from .db import DEFAULT_DB_PATH, get_connection
from .models import CacheEntry, StoredRecipe, UsageLedgerEntry


_LEDGER_COLUMNS = """
    timestamp, user_id, cost, meal_type, prompt_tokens, completion_tokens,
    total_tokens, generation_time_ms, complexity_score, cache_hit,
    safety_warnings_count, allergens_detected_count, request_id
"""


def _to_utc_iso(value: datetime) -> str:
    """Normalize a timestamp to an ISO-8601 UTC string.

    Naive datetimes are taken to already be UTC so that every stored value
    shares one day boundary and compares correctly as text.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _from_iso(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _row_to_entry(row) -> UsageLedgerEntry:
    return UsageLedgerEntry(
        timestamp=_from_iso(row[0]),
        user_id=row[1],
        cost=row[2],
        meal_type=row[3],
        prompt_tokens=row[4],
        completion_tokens=row[5],
        total_tokens=row[6],
        generation_time_ms=row[7],
        complexity_score=row[8],
        cache_hit=bool(row[9]),
        safety_warnings_count=row[10],
        allergens_detected_count=row[11],
        request_id=row[12]
    )


class MealGuardRepository:
    """Repository for the ledger, recipe history and cache.

    Every method opens its own short-lived connection. The ledger is
    append-only: there is no update or delete path for usage rows.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH, timeout: float = 10.0):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
            timeout: Busy timeout in seconds applied to every connection
        """
        self.db_path = db_path
        self.timeout = timeout

    def _connect(self):
        return get_connection(self.db_path, timeout=self.timeout)

    def initialize_schema(self) -> None:
        """Create the ledger, recipe and cache tables if they don't exist."""
        conn = self._connect()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS usage_ledger (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    cost REAL NOT NULL,
                    meal_type TEXT NOT NULL,
                    prompt_tokens INTEGER NOT NULL DEFAULT 0,
                    completion_tokens INTEGER NOT NULL DEFAULT 0,
                    total_tokens INTEGER NOT NULL DEFAULT 0,
                    generation_time_ms INTEGER NOT NULL DEFAULT 0,
                    complexity_score REAL NOT NULL DEFAULT 0,
                    cache_hit INTEGER NOT NULL DEFAULT 0,
                    safety_warnings_count INTEGER NOT NULL DEFAULT 0,
                    allergens_detected_count INTEGER NOT NULL DEFAULT 0,
                    request_id TEXT
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_usage_ledger_user_time
                ON usage_ledger (user_id, timestamp)
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS generated_recipe (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    meal_type TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    recipe_json TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS recipe_cache (
                    fingerprint TEXT PRIMARY KEY,
                    recipe_json TEXT NOT NULL,
                    profile_digest TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    expires_at TEXT NOT NULL
                )
            """)
            conn.commit()
        finally:
            conn.close()

    # Usage ledger

    def insert_usage_entry(self, entry: UsageLedgerEntry) -> None:
        """Append a single usage entry to the ledger."""
        conn = self._connect()
        try:
            conn.execute(f"""
                INSERT INTO usage_ledger ({_LEDGER_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                _to_utc_iso(entry.timestamp),
                entry.user_id,
                entry.cost,
                entry.meal_type,
                entry.prompt_tokens,
                entry.completion_tokens,
                entry.total_tokens,
                entry.generation_time_ms,
                entry.complexity_score,
                int(entry.cache_hit),
                entry.safety_warnings_count,
                entry.allergens_detected_count,
                entry.request_id
            ))
            conn.commit()
        finally:
            conn.close()

    def sum_user_cost_since(self, user_id: str, since: datetime) -> float:
        """Total logged cost for a user at or after `since`."""
        conn = self._connect()
        try:
            cursor = conn.execute("""
                SELECT SUM(cost) FROM usage_ledger
                WHERE user_id = ? AND timestamp >= ?
            """, (user_id, _to_utc_iso(since)))
            row = cursor.fetchone()
            return float(row[0] or 0)
        finally:
            conn.close()

    def count_user_entries_since(self, user_id: str, since: datetime) -> int:
        """Number of ledger rows for a user at or after `since`."""
        conn = self._connect()
        try:
            cursor = conn.execute("""
                SELECT COUNT(*) FROM usage_ledger
                WHERE user_id = ? AND timestamp >= ?
            """, (user_id, _to_utc_iso(since)))
            return cursor.fetchone()[0] or 0
        finally:
            conn.close()

    def sum_total_cost_since(self, since: datetime) -> float:
        """Total logged cost across all users at or after `since`."""
        conn = self._connect()
        try:
            cursor = conn.execute(
                "SELECT SUM(cost) FROM usage_ledger WHERE timestamp >= ?",
                (_to_utc_iso(since),)
            )
            row = cursor.fetchone()
            return float(row[0] or 0)
        finally:
            conn.close()

    def fetch_usage_entries(
        self,
        user_id: Optional[str] = None,
        limit: int = 100
    ) -> List[UsageLedgerEntry]:
        """Fetch recent ledger rows, newest first."""
        conn = self._connect()
        try:
            query = f"SELECT {_LEDGER_COLUMNS} FROM usage_ledger"
            params = []
            if user_id:
                query += " WHERE user_id = ?"
                params.append(user_id)
            query += " ORDER BY timestamp DESC, id DESC LIMIT ?"
            params.append(limit)

            cursor = conn.execute(query, params)
            return [_row_to_entry(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    # Recipe history

    def insert_generated_recipe(
        self,
        user_id: str,
        meal_type: str,
        recipe_json: str,
        created_at: datetime
    ) -> int:
        """Insert a generated recipe and return its row id."""
        conn = self._connect()
        try:
            cursor = conn.execute("""
                INSERT INTO generated_recipe (user_id, meal_type, created_at, recipe_json)
                VALUES (?, ?, ?, ?)
            """, (user_id, meal_type, _to_utc_iso(created_at), recipe_json))
            conn.commit()
            return cursor.lastrowid
        finally:
            conn.close()

    def fetch_recipe_history(self, user_id: str, limit: int = 20) -> List[StoredRecipe]:
        """Fetch a user's generated recipes, newest first."""
        conn = self._connect()
        try:
            cursor = conn.execute("""
                SELECT id, user_id, meal_type, created_at, recipe_json
                FROM generated_recipe
                WHERE user_id = ?
                ORDER BY created_at DESC, id DESC LIMIT ?
            """, (user_id, limit))
            return [
                StoredRecipe(
                    recipe_id=row[0],
                    user_id=row[1],
                    meal_type=row[2],
                    created_at=_from_iso(row[3]),
                    recipe_json=row[4]
                )
                for row in cursor.fetchall()
            ]
        finally:
            conn.close()

    # Recipe cache

    def get_cache_entry(self, fingerprint: str) -> Optional[CacheEntry]:
        conn = self._connect()
        try:
            cursor = conn.execute("""
                SELECT fingerprint, recipe_json, profile_digest, created_at, expires_at
                FROM recipe_cache WHERE fingerprint = ?
            """, (fingerprint,))
            row = cursor.fetchone()
            if row is None:
                return None
            return CacheEntry(
                fingerprint=row[0],
                recipe_json=row[1],
                profile_digest=row[2],
                created_at=_from_iso(row[3]),
                expires_at=_from_iso(row[4])
            )
        finally:
            conn.close()

    def put_cache_entry(self, entry: CacheEntry) -> None:
        """Insert or replace the cache entry for a fingerprint."""
        conn = self._connect()
        try:
            conn.execute("""
                INSERT OR REPLACE INTO recipe_cache
                (fingerprint, recipe_json, profile_digest, created_at, expires_at)
                VALUES (?, ?, ?, ?, ?)
            """, (
                entry.fingerprint,
                entry.recipe_json,
                entry.profile_digest,
                _to_utc_iso(entry.created_at),
                _to_utc_iso(entry.expires_at)
            ))
            conn.commit()
        finally:
            conn.close()

    def delete_cache_entry(self, fingerprint: str) -> None:
        conn = self._connect()
        try:
            conn.execute("DELETE FROM recipe_cache WHERE fingerprint = ?", (fingerprint,))
            conn.commit()
        finally:
            conn.close()

    def purge_cache(self, expired_before: Optional[datetime] = None) -> int:
        """Delete cache entries and return how many were removed.

        Args:
            expired_before: Only remove entries that expired before this
                time; removes every entry when omitted
        """
        conn = self._connect()
        try:
            if expired_before is None:
                cursor = conn.execute("DELETE FROM recipe_cache")
            else:
                cursor = conn.execute(
                    "DELETE FROM recipe_cache WHERE expires_at < ?",
                    (_to_utc_iso(expired_before),)
                )
            conn.commit()
            return cursor.rowcount
        finally:
            conn.close()


# Global repository instance
_default_repository: Optional[MealGuardRepository] = None


def get_repository(db_path: str = DEFAULT_DB_PATH, timeout: float = 10.0) -> MealGuardRepository:
    """Get the shared repository instance, creating it on first use.

    Args:
        db_path: Path to SQLite database file
        timeout: Busy timeout in seconds

    Returns:
        An instance of MealGuardRepository
    """
    global _default_repository
    if (_default_repository is None or _default_repository.db_path != db_path
            or _default_repository.timeout != timeout):
        _default_repository = MealGuardRepository(db_path, timeout=timeout)
    return _default_repository
