"""
Allergen detection and safety scoring.

Deterministic keyword scan of a recipe's ingredients, run on every
generated recipe regardless of what the provider says it checked.

Scoring:
- Start at 100
- -40 per allergen affecting a known family member
- -30 per allergen matching a household-level allergy with no member data
- -10 per other detected allergen
- -5 per unit of complexity above 3
- -10 per missing safety field in the provider output
- Clamped to [0, 100]
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .family import FamilyComplexityAnalysis, HouseholdPreferences
from .lexicon import ALLERGEN_LEXICON, AllergenLexicon
from .recipe import AI_DISCLAIMER, DetectedAllergen, missing_safety_fields

FAMILY_ALLERGEN_PENALTY = 40
HOUSEHOLD_ALLERGEN_PENALTY = 30
GENERAL_ALLERGEN_PENALTY = 10
COMPLEXITY_BASELINE = 3.0
COMPLEXITY_PENALTY_PER_UNIT = 5
MISSING_FIELD_PENALTY = 10
COMPLEXITY_WARNING_THRESHOLD = 10.0


@dataclass(frozen=True)
class SafetyReport:
    """Result of the post-generation safety pass."""
    detected_allergens: Tuple[DetectedAllergen, ...]
    safety_warnings: Tuple[str, ...]
    safety_score: int
    missing_fields: Tuple[str, ...] = ()

    @property
    def degraded(self) -> bool:
        """True when the provider omitted safety fields we expected."""
        return bool(self.missing_fields)


def _categories_for(allergies: Iterable[str], lexicon: AllergenLexicon) -> set:
    resolved = (lexicon.resolve_category(a) for a in allergies)
    return {c for c in resolved if c}


def affected_members(
    category: str,
    preferences: HouseholdPreferences,
    lexicon: AllergenLexicon = ALLERGEN_LEXICON
) -> Tuple[str, ...]:
    """Names of members whose allergies resolve to the category."""
    return tuple(
        member.name
        for member in preferences.family_members
        if category in _categories_for(member.allergies, lexicon)
    )


def is_household_allergen(
    category: str,
    preferences: HouseholdPreferences,
    lexicon: AllergenLexicon = ALLERGEN_LEXICON
) -> bool:
    """True if the household-level allergy list covers the category."""
    return category in _categories_for(preferences.allergies, lexicon)


def escalate_severity(
    category: str,
    default_severity: str,
    preferences: HouseholdPreferences,
    lexicon: AllergenLexicon = ALLERGEN_LEXICON
) -> str:
    """Severity for a detection: "severe" when the family is known to be allergic."""
    if affected_members(category, preferences, lexicon) or is_household_allergen(category, preferences, lexicon):
        return "severe"
    return default_severity


def detect_allergens(
    ingredients: Iterable[str],
    preferences: HouseholdPreferences,
    lexicon: AllergenLexicon = ALLERGEN_LEXICON
) -> Tuple[DetectedAllergen, ...]:
    """Scan ingredients for every lexicon category.

    Matching is a case-insensitive substring test against the joined
    ingredient text. Confidence is matched keywords / category keywords.
    """
    ingredient_text = " ".join(str(i) for i in ingredients).lower()
    detected = []

    for name, category in lexicon.categories.items():
        matched = [k for k in category.keywords if k.lower() in ingredient_text]
        if not matched:
            continue

        members = affected_members(name, preferences, lexicon)
        severity = escalate_severity(name, category.default_severity, preferences, lexicon)
        if members:
            warning = (
                f"This recipe may contain {name}. CRITICAL: This is a known "
                f"allergen for {', '.join(members)}."
            )
        elif severity == "severe" and is_household_allergen(name, preferences, lexicon):
            warning = f"This recipe may contain {name}. CRITICAL: This is a known allergen for your household."
        else:
            warning = f"This recipe may contain {name}. Please verify all ingredients carefully."

        detected.append(DetectedAllergen(
            name=name,
            confidence=min(len(matched) / len(category.keywords), 1.0),
            severity=severity,
            icon=category.icon,
            warning_text=warning,
            affects_family_members=members,
        ))

    return tuple(detected)


def _is_family_critical(allergen: DetectedAllergen, preferences: HouseholdPreferences) -> bool:
    return bool(allergen.affects_family_members) or is_household_allergen(allergen.name, preferences)


def generate_safety_warnings(
    detected: Iterable[DetectedAllergen],
    preferences: HouseholdPreferences,
    analysis: FamilyComplexityAnalysis
) -> Tuple[str, ...]:
    """Ordered warnings: critical, general, complexity, then the AI disclaimer."""
    detected = list(detected)
    warnings: List[str] = []

    critical = [a for a in detected if _is_family_critical(a, preferences)]
    if critical:
        labels = []
        for allergen in critical:
            if allergen.affects_family_members:
                labels.append(f"{allergen.name} ({', '.join(allergen.affects_family_members)})")
            else:
                labels.append(allergen.name)
        warnings.append(
            "CRITICAL ALLERGEN WARNING: This recipe contains allergens that are "
            f"dangerous for family members: {', '.join(labels)}"
        )

    general = [a for a in detected if not _is_family_critical(a, preferences)]
    if general:
        warnings.append(
            f"This recipe may contain: {', '.join(f'{a.icon} {a.name}' for a in general)}. "
            "Please verify ingredients for safety."
        )

    if analysis.complexity_score > COMPLEXITY_WARNING_THRESHOLD:
        warnings.append(
            f"Your household has complex dietary needs (complexity {analysis.complexity_score:g}). "
            "Check every ingredient against each family member's profile."
        )

    warnings.append(AI_DISCLAIMER)
    return tuple(warnings)


def calculate_safety_score(
    raw_recipe: Dict[str, Any],
    detected: Iterable[DetectedAllergen],
    preferences: HouseholdPreferences,
    analysis: FamilyComplexityAnalysis
) -> int:
    """Score a recipe from 0 (unsafe) to 100 for this household."""
    score = 100.0

    for allergen in detected:
        if allergen.affects_family_members:
            score -= FAMILY_ALLERGEN_PENALTY
        elif is_household_allergen(allergen.name, preferences):
            score -= HOUSEHOLD_ALLERGEN_PENALTY
        else:
            score -= GENERAL_ALLERGEN_PENALTY

    excess = analysis.complexity_score - COMPLEXITY_BASELINE
    if excess > 0:
        score -= COMPLEXITY_PENALTY_PER_UNIT * excess

    score -= MISSING_FIELD_PENALTY * len(missing_safety_fields(raw_recipe))

    return int(max(0.0, min(100.0, round(score))))


def enhance_recipe_with_safety(
    raw_recipe: Dict[str, Any],
    preferences: HouseholdPreferences,
    analysis: FamilyComplexityAnalysis,
    ingredients: Optional[Iterable[str]] = None
) -> SafetyReport:
    """Run detection, warnings and scoring over provider output.

    Args:
        raw_recipe: Provider JSON (untrusted)
        preferences: Household the recipe is for
        analysis: Complexity analysis for the same request
        ingredients: Ingredient list to scan; defaults to the raw list
    """
    if ingredients is None:
        ingredients = raw_recipe.get("ingredients") or []
    ingredients = list(ingredients)

    detected = detect_allergens(ingredients, preferences)
    return SafetyReport(
        detected_allergens=detected,
        safety_warnings=generate_safety_warnings(detected, preferences, analysis),
        safety_score=calculate_safety_score(raw_recipe, detected, preferences, analysis),
        missing_fields=tuple(missing_safety_fields(raw_recipe)),
    )
