"""
Tests for the fingerprint-keyed recipe cache.
"""

import os
import shutil
import sqlite3
import tempfile
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from meal_guard.core.cache import RecipeCache, fingerprint, profile_digest
from meal_guard.core.family import FamilyMemberProfile, HouseholdPreferences
from meal_guard.core.prompt import GenerationRequest, SpecialOccasion
from meal_guard.core.recipe import GeneratedRecipe
from meal_guard.core.safety import detect_allergens
from meal_guard.storage.repository import MealGuardRepository

NOW = datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)


def household(*members, **kwargs):
    return HouseholdPreferences(household_size=3, family_members=tuple(members), **kwargs)


def request_for(preferences, meal_type="dinner", **kwargs):
    return GenerationRequest(user_id="u1", preferences=preferences, meal_type=meal_type, **kwargs)


def recipe(ingredients=("rice", "carrots"), preferences=None):
    preferences = preferences or HouseholdPreferences()
    return GeneratedRecipe(
        title="Rice Bowl", description="", ingredients=tuple(ingredients),
        instructions=("Cook.",), prep_time=5, cook_time=20, total_time=25,
        servings=3, difficulty="easy", family_reasoning="",
        detected_allergens=detect_allergens(ingredients, preferences),
        generation_cost=0.0005,
    )


class TestFingerprint:
    """Test that equivalent requests share a key."""

    def test_member_order_and_case_do_not_matter(self):
        a = household(FamilyMemberProfile(name="A", allergies=("Peanuts",)),
                      FamilyMemberProfile(name="B", allergies=("milk",)))
        b = household(FamilyMemberProfile(name="B", allergies=("milk",)),
                      FamilyMemberProfile(name="A", allergies=("peanuts",)))
        assert fingerprint(request_for(a)) == fingerprint(request_for(b))

    def test_meal_type_changes_key(self):
        prefs = household()
        assert fingerprint(request_for(prefs, "lunch")) != fingerprint(request_for(prefs, "dinner"))

    def test_allergy_changes_key(self):
        a = household(FamilyMemberProfile(name="A"))
        b = household(FamilyMemberProfile(name="A", allergies=("eggs",)))
        assert fingerprint(request_for(a)) != fingerprint(request_for(b))

    def test_restrictions_change_key(self):
        a = household(FamilyMemberProfile(name="A"))
        b = household(FamilyMemberProfile(name="A", dietary_restrictions=("vegan",)))
        assert fingerprint(request_for(a)) != fingerprint(request_for(b))

    def test_occasion_changes_key(self):
        prefs = household()
        plain = request_for(prefs)
        party = request_for(prefs, special_occasion=SpecialOccasion(occasion_type="party", guest_count=4))
        assert fingerprint(plain) != fingerprint(party)

    def test_profile_digest_tracks_any_edit(self):
        a = household(FamilyMemberProfile(name="A", special_needs=None))
        b = household(FamilyMemberProfile(name="A", special_needs="soft foods"))
        assert profile_digest(a) != profile_digest(b)

    def test_profile_digest_ignores_names_and_order(self):
        a = household(FamilyMemberProfile(name="A", allergies=("Eggs",), allergy_severity=("severe",)),
                      FamilyMemberProfile(name="B", dietary_restrictions=("Vegan",)))
        b = household(FamilyMemberProfile(name="Z", dietary_restrictions=("vegan",)),
                      FamilyMemberProfile(name="Y", allergies=("eggs",), allergy_severity=("severe",)))
        assert profile_digest(a) == profile_digest(b)

    def test_profile_digest_tracks_severity(self):
        a = household(FamilyMemberProfile(name="A", allergies=("eggs",), allergy_severity=("mild",)))
        b = household(FamilyMemberProfile(name="A", allergies=("eggs",), allergy_severity=("severe",)))
        assert profile_digest(a) != profile_digest(b)


class TestRecipeCache:
    """Test lookup, expiry and invalidation against a real database."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.repository = MealGuardRepository(os.path.join(self.temp_dir, "test.db"))
        self.repository.initialize_schema()
        self.cache = RecipeCache(self.repository, ttl_hours=24)

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_miss_when_empty(self):
        assert self.cache.lookup(request_for(household()), now=NOW) is None

    def test_hit_after_store(self):
        request = request_for(household())
        stored = recipe()
        assert self.cache.store(request, stored, now=NOW)
        assert self.cache.lookup(request, now=NOW + timedelta(hours=1)) == stored

    def test_expired_entry_is_a_miss_and_removed(self):
        request = request_for(household())
        self.cache.store(request, recipe(), now=NOW)
        assert self.cache.lookup(request, now=NOW + timedelta(hours=24)) is None
        assert self.repository.get_cache_entry(fingerprint(request)) is None

    def test_profile_edit_is_a_miss(self):
        """A member edit that keeps the fingerprint is not served the old entry."""
        before = household(FamilyMemberProfile(name="A", age_group="adult"))
        after = household(FamilyMemberProfile(name="A", age_group="senior"))
        assert fingerprint(request_for(before)) == fingerprint(request_for(after))

        self.cache.store(request_for(before), recipe(), now=NOW)
        assert self.cache.lookup(request_for(after), now=NOW) is None

    def test_equivalent_household_hits(self):
        stored_for = household(FamilyMemberProfile(name="A", allergies=("Peanuts",)),
                               FamilyMemberProfile(name="B", allergies=("milk",)))
        looked_up = household(FamilyMemberProfile(name="B", allergies=("milk",)),
                              FamilyMemberProfile(name="A", allergies=(" peanuts",)))
        assert profile_digest(stored_for) == profile_digest(looked_up)

        stored = recipe()
        self.cache.store(request_for(stored_for), stored, now=NOW)
        assert self.cache.lookup(request_for(looked_up), now=NOW) == stored

    def test_other_household_miss_keeps_entry(self):
        """A different household sharing the key does not evict the entry."""
        owner = household(FamilyMemberProfile(name="A", age_group="adult"))
        other = household(FamilyMemberProfile(name="A", age_group="child"))
        self.cache.store(request_for(owner), recipe(), now=NOW)

        assert self.cache.lookup(request_for(other), now=NOW) is None
        assert self.repository.get_cache_entry(fingerprint(request_for(owner))) is not None
        assert self.cache.lookup(request_for(owner), now=NOW) is not None

    def test_unsafe_entry_rejected_on_lookup(self):
        """A stored entry containing a current allergen is never served."""
        prefs = household(FamilyMemberProfile(name="A", allergies=("eggs",)))
        request = request_for(prefs)
        self.cache.store(request, recipe(ingredients=("fried egg", "rice")), now=NOW)
        assert self.cache.lookup(request, now=NOW) is None
        assert self.repository.get_cache_entry(fingerprint(request)) is None

    def test_unreadable_entry_is_a_miss(self):
        request = request_for(household())
        self.cache.store(request, recipe(), now=NOW)
        entry = self.repository.get_cache_entry(fingerprint(request))
        self.repository.put_cache_entry(replace(entry, recipe_json="{not json"))
        assert self.cache.lookup(request, now=NOW) is None

    def test_is_safe_for_checks_dislikes(self):
        prefs = household(FamilyMemberProfile(name="A", disliked_ingredients=("mushrooms",)))
        assert not self.cache.is_safe_for(recipe(ingredients=("button mushrooms",)), prefs)
        assert self.cache.is_safe_for(recipe(), prefs)

    def test_is_safe_for_household_allergy(self):
        prefs = household(allergies=("sesame",))
        assert not self.cache.is_safe_for(recipe(ingredients=("tahini",)), prefs)


class TestRecipeCacheStorageErrors:
    """Storage failures degrade to a miss."""

    def test_lookup_error_is_a_miss(self):
        repository = Mock()
        repository.get_cache_entry.side_effect = sqlite3.OperationalError("locked")
        assert RecipeCache(repository).lookup(request_for(household()), now=NOW) is None

    def test_store_error_returns_false(self):
        repository = Mock()
        repository.put_cache_entry.side_effect = sqlite3.OperationalError("locked")
        assert RecipeCache(repository).store(request_for(household()), recipe(), now=NOW) is False

    def test_ttl_must_be_positive(self):
        with pytest.raises(ValueError, match="ttl_hours"):
            RecipeCache(Mock(), ttl_hours=0)
