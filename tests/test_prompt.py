"""
Tests for generation request construction.
"""

import pytest

from meal_guard.core.family import FamilyMemberProfile, HouseholdPreferences, analyze_family
from meal_guard.core.prompt import (
    NO_AVOIDANCES_TEXT,
    GenerationRequest,
    SpecialOccasion,
    avoidance_terms,
    build_avoidance_list,
    build_generation_prompt,
)


def household():
    return HouseholdPreferences(
        household_size=4,
        allergies=("sesame",),
        family_members=(
            FamilyMemberProfile(name="Sam", age_group="child", allergies=("peanuts",),
                                allergy_severity=("severe",), disliked_ingredients=("mushrooms",)),
            FamilyMemberProfile(name="Ana", dietary_restrictions=("vegetarian",)),
        ),
    )


def build(preferences, meal_type="dinner", **kwargs):
    request = GenerationRequest(user_id="u1", preferences=preferences, meal_type=meal_type, **kwargs)
    return build_generation_prompt(request, analyze_family(preferences))


class TestAvoidanceList:
    """Test avoidance tagging."""

    def test_entries_tagged_with_owner(self):
        assert build_avoidance_list(household()) == (
            "sesame (ALLERGY - household)",
            "peanuts (ALLERGY - Sam)",
            "mushrooms (DISLIKE - Sam)",
        )

    def test_duplicate_entries_collapse(self):
        prefs = HouseholdPreferences(family_members=(
            FamilyMemberProfile(name="A", allergies=("milk", "milk")),
        ))
        assert build_avoidance_list(prefs) == ("milk (ALLERGY - A)",)

    def test_avoidance_terms_normalized_and_sorted(self):
        assert avoidance_terms(household()) == ("mushrooms", "peanuts", "sesame")


class TestBuildGenerationPrompt:
    """Test the assembled provider request."""

    def test_every_avoidance_entry_in_system_prompt(self):
        prompt = build(household())
        for entry in prompt.avoidance_list:
            assert entry in prompt.system_prompt

    def test_empty_household_gets_explicit_no_avoidances(self):
        """The avoidance section is present even when empty."""
        prompt = build(HouseholdPreferences())
        assert prompt.avoidance_list == ()
        assert prompt.avoidance_text == NO_AVOIDANCES_TEXT
        assert NO_AVOIDANCES_TEXT in prompt.system_prompt

    def test_member_notes_include_severity(self):
        prompt = build(household())
        assert any("Sam (child)" in note and "peanuts [severe]" in note for note in prompt.member_notes)
        assert any("Ana (adult)" in note and "vegetarian" in note for note in prompt.member_notes)

    def test_restrictions_listed(self):
        assert "vegetarian" in build(household()).system_prompt

    @pytest.mark.parametrize("meal_type,phrase", [
        ("breakfast", "breakfast"),
        ("lunch", "lunch"),
        ("dinner", "dinner"),
        ("snack", "snack"),
    ])
    def test_meal_guidance(self, meal_type, phrase):
        prompt = build(HouseholdPreferences(), meal_type=meal_type)
        assert phrase in prompt.meal_guidance
        assert prompt.user_prompt.startswith(prompt.meal_guidance)

    def test_occasion_context(self):
        occasion = SpecialOccasion(occasion_type="birthday", guest_count=6,
                                   guest_dietary_restrictions=("vegan",), presentation_level="impressive")
        prompt = build(household(), special_occasion=occasion)
        assert "birthday" in prompt.occasion_context
        assert prompt.occasion_context in prompt.system_prompt
        assert "vegan" in prompt.system_prompt

    def test_pantry_items(self):
        prompt = build(HouseholdPreferences(), pantry_items=("rice", "leeks"))
        assert "Available ingredients: rice, leeks" in prompt.user_prompt

    def test_messages_are_system_then_user(self):
        prompt = build(household())
        messages = prompt.messages()
        assert [m["role"] for m in messages] == ["system", "user"]
        assert messages[0]["content"] == prompt.system_prompt


class TestRequestValidation:
    def test_unknown_meal_type(self):
        with pytest.raises(ValueError, match="meal_type"):
            GenerationRequest(user_id="u1", preferences=HouseholdPreferences(), meal_type="brunch")

    def test_missing_user(self):
        with pytest.raises(ValueError, match="user_id"):
            GenerationRequest(user_id=" ", preferences=HouseholdPreferences(), meal_type="lunch")

    def test_invalid_occasion(self):
        with pytest.raises(ValueError, match="guest_count"):
            SpecialOccasion(occasion_type="party", guest_count=-1)
        with pytest.raises(ValueError, match="presentation_level"):
            SpecialOccasion(occasion_type="party", presentation_level="lavish")
