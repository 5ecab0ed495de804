"""
Generation request construction.

Turns a household snapshot and meal context into the system and user
messages sent to the provider. Pure data transformation, no I/O.
"""

import json
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .family import FamilyComplexityAnalysis, HouseholdPreferences

MEAL_TYPES = ("breakfast", "lunch", "dinner", "snack")
PRESENTATION_LEVELS = ("casual", "standard", "impressive")

NO_AVOIDANCES_TEXT = (
    "No avoidances: this household has reported no allergies or disliked "
    "ingredients. This is an explicit empty list, not a missing one."
)

MEAL_GUIDANCE: Dict[str, Tuple[str, str]] = {
    "breakfast": (
        "Create a delicious breakfast recipe that energizes my family for the day.",
        "Focus on morning-appropriate foods like eggs, toast, cereals, or pancakes.",
    ),
    "lunch": (
        "Create a satisfying lunch recipe that provides midday energy and nutrition.",
        "Consider lighter meals like salads, sandwiches, soups, or quick stir-fries.",
    ),
    "dinner": (
        "Create a hearty dinner recipe that brings my family together for the evening.",
        "Think substantial evening meals like pasta dishes, casseroles, roasts, or curries.",
    ),
    "snack": (
        "Create a simple snack my family can enjoy between meals.",
        "Keep it small and quick: dips, fruit plates, bars, or bites that need little cooking.",
    ),
}

RESPONSE_SCHEMA = {
    "title": "Recipe name",
    "description": "Brief family-friendly description",
    "ingredients": ["ingredient 1", "ingredient 2"],
    "instructions": ["step 1", "step 2"],
    "prep_time": 15,
    "cook_time": 30,
    "total_time": 45,
    "servings": 4,
    "difficulty": "easy",
    "family_reasoning": "Why this recipe works for this family",
    "member_notes": {"Member name": "How this recipe suits them"},
    "allergen_considerations": "Specific notes about allergen safety for this recipe",
    "dietary_compliance": ["vegetarian", "dairy-free"],
    "nutrition_highlights": "Key nutritional benefits",
    "safety_notes": "Important safety reminders and verification steps",
}


@dataclass(frozen=True)
class SpecialOccasion:
    """Optional context for meals cooked for guests."""
    occasion_type: str
    guest_count: int = 0
    guest_dietary_restrictions: Tuple[str, ...] = ()
    presentation_level: str = "standard"

    def __post_init__(self):
        if not self.occasion_type or not self.occasion_type.strip():
            raise ValueError("occasion_type is required")
        if self.guest_count < 0:
            raise ValueError("guest_count cannot be negative")
        if self.presentation_level not in PRESENTATION_LEVELS:
            raise ValueError(f"presentation_level must be one of: {list(PRESENTATION_LEVELS)}")
        object.__setattr__(self, "guest_dietary_restrictions", tuple(self.guest_dietary_restrictions))

    def describe(self) -> str:
        restrictions = ", ".join(self.guest_dietary_restrictions) or "none"
        return (
            f"Special occasion: {self.occasion_type} with {self.guest_count} guests. "
            f"Guest restrictions: {restrictions}. "
            f"Presentation level: {self.presentation_level}."
        )


@dataclass(frozen=True)
class GenerationRequest:
    """One caller request for a recipe."""
    user_id: str
    preferences: HouseholdPreferences
    meal_type: str
    special_occasion: Optional[SpecialOccasion] = None
    pantry_items: Tuple[str, ...] = field(default_factory=tuple)
    premium: bool = False

    def __post_init__(self):
        if not self.user_id or not self.user_id.strip():
            raise ValueError("user_id is required")
        if self.meal_type not in MEAL_TYPES:
            raise ValueError(f"meal_type must be one of: {list(MEAL_TYPES)}")
        object.__setattr__(self, "pantry_items", tuple(self.pantry_items or ()))


@dataclass(frozen=True)
class GenerationPrompt:
    """Structured provider request."""
    avoidance_list: Tuple[str, ...]
    avoidance_text: str
    member_notes: Tuple[str, ...]
    meal_guidance: str
    occasion_context: Optional[str]
    system_prompt: str
    user_prompt: str

    def messages(self) -> List[Dict[str, str]]:
        return [
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": self.user_prompt},
        ]


def build_avoidance_list(preferences: HouseholdPreferences) -> Tuple[str, ...]:
    """Tag every allergy and dislike with who it belongs to.

    Household-level entries come first, then each member in profile order.
    """
    entries: Dict[str, None] = {}
    for allergy in preferences.allergies:
        entries[f"{allergy} (ALLERGY - household)"] = None
    for dislike in preferences.disliked_ingredients:
        entries[f"{dislike} (DISLIKE - household)"] = None
    for member in preferences.family_members:
        for allergy in member.allergies:
            entries[f"{allergy} (ALLERGY - {member.name})"] = None
        for dislike in member.disliked_ingredients:
            entries[f"{dislike} (DISLIKE - {member.name})"] = None
    return tuple(entries)


def avoidance_terms(preferences: HouseholdPreferences) -> Tuple[str, ...]:
    """Normalized, sorted set of everything the household must not receive."""
    terms = set()
    for value in preferences.allergies + preferences.disliked_ingredients:
        terms.add(normalize_term(value))
    for member in preferences.family_members:
        for value in member.allergies + member.disliked_ingredients:
            terms.add(normalize_term(value))
    terms.discard("")
    return tuple(sorted(terms))


def restriction_terms(preferences: HouseholdPreferences) -> Tuple[str, ...]:
    terms = {normalize_term(r) for r in preferences.dietary_restrictions}
    for member in preferences.family_members:
        terms.update(normalize_term(r) for r in member.dietary_restrictions)
    terms.discard("")
    return tuple(sorted(terms))


def normalize_term(value: str) -> str:
    return " ".join(value.strip().lower().replace("_", " ").replace("-", " ").split())


def build_member_notes(preferences: HouseholdPreferences) -> Tuple[str, ...]:
    notes = []
    for member in preferences.family_members:
        parts = []
        if member.allergies:
            allergies = ", ".join(
                f"{a} [{s}]" for a, s in zip(member.allergies, member.allergy_severity)
            )
            parts.append(f"ALLERGIES: {allergies}")
        parts.append(
            f"restrictions: {', '.join(member.dietary_restrictions)}"
            if member.dietary_restrictions else "no restrictions"
        )
        if member.disliked_ingredients:
            parts.append(f"dislikes: {', '.join(member.disliked_ingredients)}")
        if member.special_needs:
            parts.append(f"special needs: {member.special_needs}")
        notes.append(f"- {member.name} ({member.age_group}): {' | '.join(parts)}")
    return tuple(notes)


def build_generation_prompt(
    request: GenerationRequest,
    analysis: FamilyComplexityAnalysis
) -> GenerationPrompt:
    """Build the provider request for a generation.

    The avoidance section is never omitted. A household with nothing to
    avoid gets an explicit "No avoidances" statement so the provider cannot
    read silence as permission.

    Raises:
        ValueError: If the meal type has no guidance entry
    """
    preferences = request.preferences
    if request.meal_type not in MEAL_GUIDANCE:
        raise ValueError(f"No guidance for meal type: {request.meal_type}")

    avoidance_list = build_avoidance_list(preferences)
    if avoidance_list:
        avoidance_text = "\n".join(f"- {entry}" for entry in avoidance_list)
    else:
        avoidance_text = NO_AVOIDANCES_TEXT

    member_notes = build_member_notes(preferences)
    intro, variety = MEAL_GUIDANCE[request.meal_type]
    meal_guidance = f"{intro}\n{variety}"
    occasion_context = request.special_occasion.describe() if request.special_occasion else None

    restrictions = list(preferences.dietary_restrictions) + [
        r for r in analysis.all_restrictions if r not in preferences.dietary_restrictions
    ]
    if request.special_occasion:
        restrictions += [
            r for r in request.special_occasion.guest_dietary_restrictions if r not in restrictions
        ]

    system_sections = [
        "You are a meal planning assistant specializing in family-safe recipes.",
        "",
        "CRITICAL SAFETY REQUIREMENTS:",
        "1. HARD AVOIDANCE LIST. NEVER include any of these ingredients or anything derived from them:",
        avoidance_text,
        f"2. DIETARY COMPLIANCE: Strictly follow these restrictions: {', '.join(restrictions) or 'none'}.",
        f"3. FAMILY COORDINATION: This meal serves {preferences.household_size} people "
        f"with {len(preferences.family_members)} individual family member profiles.",
        "4. Always fill in allergen_considerations, safety_notes and dietary_compliance.",
    ]
    if occasion_context:
        system_sections.append(f"5. {occasion_context}")
    system_sections += [
        "",
        "Respond with a single JSON object only.",
    ]

    user_sections = [
        meal_guidance,
        "",
        "Family Details:",
        f"- Household size: {preferences.household_size} people",
        f"- Cooking time available: {preferences.cooking_time_minutes} minutes",
        f"- Cooking skill: {preferences.cooking_skill}",
        f"- Budget preference: {preferences.budget_level}",
    ]
    if member_notes:
        user_sections += ["", "Individual Family Members:", *member_notes]
    if request.pantry_items:
        user_sections += ["", f"Available ingredients: {', '.join(request.pantry_items)}"]
    else:
        user_sections += ["", "Use common grocery store ingredients."]
    user_sections += ["", "Return JSON format:", json.dumps(RESPONSE_SCHEMA, indent=2)]

    return GenerationPrompt(
        avoidance_list=avoidance_list,
        avoidance_text=avoidance_text,
        member_notes=member_notes,
        meal_guidance=meal_guidance,
        occasion_context=occasion_context,
        system_prompt="\n".join(system_sections),
        user_prompt="\n".join(user_sections),
    )
