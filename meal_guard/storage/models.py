"""
Data models for storage layer.

Defines the ledger and cache rows the pipeline reads and writes.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class UsageLedgerEntry:
    """Immutable record of one generation attempt that reached the provider or cache.

    Append-only. Daily cost and rolling rate windows are recomputed from
    these rows on every admission check, so they must never be modified.
    """
    timestamp: datetime
    user_id: str
    cost: float
    meal_type: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    generation_time_ms: int = 0
    complexity_score: float = 0.0
    cache_hit: bool = False
    safety_warnings_count: int = 0
    allergens_detected_count: int = 0
    request_id: Optional[str] = None


@dataclass(frozen=True)
class StoredRecipe:
    """Generated recipe row kept for the household's history."""
    recipe_id: int
    user_id: str
    meal_type: str
    created_at: datetime
    recipe_json: str


@dataclass(frozen=True)
class CacheEntry:
    """Serialized recipe addressed by a constraint fingerprint."""
    fingerprint: str
    recipe_json: str
    profile_digest: str
    created_at: datetime
    expires_at: datetime
