"""
Fingerprint-keyed recipe cache.

Entries are addressed by the household's effective constraints rather than
by wording, so equivalent requests share an entry. A fingerprint match is
never enough on its own: every hit is re-scanned against the current
household before it is served.
"""

import hashlib
import json
import logging
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from meal_guard.storage.models import CacheEntry
from meal_guard.storage.repository import MealGuardRepository

from .family import FamilyMemberProfile, HouseholdPreferences
from .prompt import GenerationRequest, avoidance_terms, normalize_term, restriction_terms
from .recipe import GeneratedRecipe
from .safety import detect_allergens, is_household_allergen

logger = logging.getLogger(__name__)

_STORAGE_ERRORS = (sqlite3.Error, OSError)


def _digest(payload: Dict[str, Any]) -> str:
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def fingerprint(request: GenerationRequest) -> str:
    """Cache key from meal type, avoidance set, restrictions, size and occasion."""
    preferences = request.preferences
    occasion = request.special_occasion
    return _digest({
        "meal_type": request.meal_type,
        "avoid": list(avoidance_terms(preferences)),
        "restrictions": list(restriction_terms(preferences)),
        "household_size": preferences.household_size,
        "occasion": None if occasion is None else {
            "type": occasion.occasion_type.strip().lower(),
            "guests": occasion.guest_count,
            "guest_restrictions": sorted(r.strip().lower() for r in occasion.guest_dietary_restrictions),
            "presentation": occasion.presentation_level,
        },
    })


def _sorted_terms(values) -> List[str]:
    return sorted({normalize_term(v) for v in values} - {""})


def _member_constraints(member: FamilyMemberProfile) -> Dict[str, Any]:
    return {
        "age_group": member.age_group,
        "allergies": sorted(
            {(normalize_term(a), s) for a, s in zip(member.allergies, member.allergy_severity)}
        ),
        "restrictions": _sorted_terms(member.dietary_restrictions),
        "dislikes": _sorted_terms(member.disliked_ingredients),
        "special_needs": normalize_term(member.special_needs or ""),
    }


def profile_digest(preferences: HouseholdPreferences) -> str:
    """Digest of the household's member constraints.

    Names, ids, member order and term casing are ignored, so equivalent
    households share a digest; any edit to a member's constraints changes it.
    """
    members = [_member_constraints(m) for m in preferences.family_members]
    return _digest({
        "allergies": _sorted_terms(preferences.allergies),
        "dislikes": _sorted_terms(preferences.disliked_ingredients),
        "restrictions": _sorted_terms(preferences.dietary_restrictions),
        "members": sorted(members, key=lambda m: json.dumps(m, sort_keys=True)),
    })


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RecipeCache:
    """Recipe cache stored in the pipeline database.

    Storage errors are logged and treated as a miss; the cache can only
    save cost, never block a generation.
    """

    def __init__(self, repository: MealGuardRepository, ttl_hours: float = 24.0):
        if ttl_hours <= 0:
            raise ValueError("ttl_hours must be > 0")
        self.repository = repository
        self.ttl = timedelta(hours=ttl_hours)

    def lookup(
        self,
        request: GenerationRequest,
        now: Optional[datetime] = None
    ) -> Optional[GeneratedRecipe]:
        """Return a cached recipe that is safe for this household, or None."""
        now = now or _utcnow()
        key = fingerprint(request)
        try:
            entry = self.repository.get_cache_entry(key)
        except _STORAGE_ERRORS as e:
            logger.warning("Cache lookup failed, treating as miss: %s", e)
            return None
        if entry is None:
            return None

        if entry.expires_at <= now:
            logger.debug("Cache entry %s expired", key[:12])
            self.invalidate(key)
            return None
        if entry.profile_digest != profile_digest(request.preferences):
            # Another household with the same fingerprint may still use the entry.
            logger.info("Cache entry %s belongs to a different family profile", key[:12])
            return None

        try:
            recipe = GeneratedRecipe.from_json(entry.recipe_json)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Cache entry %s is unreadable: %s", key[:12], e)
            self.invalidate(key)
            return None

        if not self.is_safe_for(recipe, request.preferences):
            logger.warning("Cache entry %s failed re-validation for current household", key[:12])
            self.invalidate(key)
            return None

        return recipe

    def is_safe_for(self, recipe: GeneratedRecipe, preferences: HouseholdPreferences) -> bool:
        """Re-check a cached recipe against the household as it is now."""
        for allergen in detect_allergens(recipe.ingredients, preferences):
            if allergen.affects_family_members or is_household_allergen(allergen.name, preferences):
                return False
        ingredient_text = " ".join(recipe.ingredients).lower().replace("_", " ").replace("-", " ")
        return not any(term in ingredient_text for term in avoidance_terms(preferences))

    def store(
        self,
        request: GenerationRequest,
        recipe: GeneratedRecipe,
        now: Optional[datetime] = None
    ) -> bool:
        """Cache a freshly generated recipe. Returns False if storage failed."""
        now = now or _utcnow()
        entry = CacheEntry(
            fingerprint=fingerprint(request),
            recipe_json=recipe.to_json(),
            profile_digest=profile_digest(request.preferences),
            created_at=now,
            expires_at=now + self.ttl,
        )
        try:
            self.repository.put_cache_entry(entry)
        except _STORAGE_ERRORS as e:
            logger.warning("Failed to cache recipe %r: %s", recipe.title, e)
            return False
        return True

    def invalidate(self, key: str) -> None:
        try:
            self.repository.delete_cache_entry(key)
        except _STORAGE_ERRORS as e:
            logger.warning("Failed to invalidate cache entry %s: %s", key[:12], e)
