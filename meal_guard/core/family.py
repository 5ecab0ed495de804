"""
Family constraint aggregation.

Merges household member profiles into a single set of constraints and a
complexity score. Recomputed for every request because family composition
can change between calls.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .lexicon import CRITICAL_SEVERITIES, SEVERITY_LEVELS

AGE_GROUPS = ("child", "teen", "adult", "senior")
COOKING_SKILLS = ("beginner", "intermediate", "advanced")
BUDGET_LEVELS = ("budget", "moderate", "premium")
PLANT_BASED_RESTRICTIONS = frozenset({
    "vegetarian",
    "vegan",
    "lacto_vegetarian",
    "ovo_vegetarian",
    "lacto_ovo_vegetarian",
    "plant_based",
})

# Relative ordering matters more than the constants:
# allergies >= critical members >= restrictions >= preferences.
ALLERGY_WEIGHT = 2.0
RESTRICTION_WEIGHT = 1.5
CRITICAL_MEMBER_WEIGHT = 3.0
CHILD_WEIGHT = 1.0
CONFLICT_WEIGHT = 2.0


def normalize_severity(value: Optional[str]) -> str:
    """Normalize a severity label, defaulting empty values to mild."""
    if not value:
        return "mild"
    normalized = value.strip().lower().replace("-", "_").replace(" ", "_")
    if normalized not in SEVERITY_LEVELS:
        raise ValueError(f"severity must be one of: {list(SEVERITY_LEVELS)}")
    return normalized


def _normalize_tag(value: str) -> str:
    return "_".join(value.strip().lower().replace("-", " ").replace("_", " ").split())


def _ordered_union(groups: Iterable[Iterable[str]]) -> Tuple[str, ...]:
    seen = {}
    for group in groups:
        for item in group:
            if item not in seen:
                seen[item] = None
    return tuple(seen)


@dataclass(frozen=True)
class FamilyMemberProfile:
    """One household member's dietary profile.

    ``allergy_severity`` is aligned by position with ``allergies``. Missing
    severities are filled with "mild"; extra severities are an error.
    """
    name: str
    age_group: str = "adult"
    allergies: Tuple[str, ...] = ()
    allergy_severity: Tuple[str, ...] = ()
    dietary_restrictions: Tuple[str, ...] = ()
    disliked_ingredients: Tuple[str, ...] = ()
    special_needs: Optional[str] = None
    member_id: Optional[str] = None

    def __post_init__(self):
        if not self.name or not self.name.strip():
            raise ValueError("family member name is required")
        if self.age_group not in AGE_GROUPS:
            raise ValueError(f"age_group must be one of: {list(AGE_GROUPS)}")
        allergies = tuple(self.allergies)
        severities = tuple(normalize_severity(s) for s in self.allergy_severity)
        if len(severities) > len(allergies):
            raise ValueError(
                f"{self.name} has {len(severities)} severities for {len(allergies)} allergies"
            )
        severities += ("mild",) * (len(allergies) - len(severities))
        object.__setattr__(self, "allergies", allergies)
        object.__setattr__(self, "allergy_severity", severities)
        object.__setattr__(self, "dietary_restrictions", tuple(self.dietary_restrictions))
        object.__setattr__(self, "disliked_ingredients", tuple(self.disliked_ingredients))

    @property
    def is_critical(self) -> bool:
        """True if any allergy is severe or life-threatening."""
        return any(s in CRITICAL_SEVERITIES for s in self.allergy_severity)

    @property
    def is_plant_based(self) -> bool:
        return any(
            _normalize_tag(restriction) in PLANT_BASED_RESTRICTIONS
            for restriction in self.dietary_restrictions
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FamilyMemberProfile":
        return cls(
            name=data.get("name", ""),
            age_group=data.get("age_group", "adult"),
            allergies=tuple(data.get("allergies") or ()),
            allergy_severity=tuple(data.get("allergy_severity") or ()),
            dietary_restrictions=tuple(data.get("dietary_restrictions") or ()),
            disliked_ingredients=tuple(data.get("disliked_ingredients") or ()),
            special_needs=data.get("special_needs"),
            member_id=data.get("id") or data.get("member_id"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "member_id": self.member_id,
            "name": self.name,
            "age_group": self.age_group,
            "allergies": list(self.allergies),
            "allergy_severity": list(self.allergy_severity),
            "dietary_restrictions": list(self.dietary_restrictions),
            "disliked_ingredients": list(self.disliked_ingredients),
            "special_needs": self.special_needs,
        }


@dataclass(frozen=True)
class HouseholdPreferences:
    """Household-level settings plus zero or more member profiles."""
    household_size: int = 1
    cooking_skill: str = "intermediate"
    budget_level: str = "moderate"
    cooking_time_minutes: int = 30
    dietary_restrictions: Tuple[str, ...] = ()
    allergies: Tuple[str, ...] = ()
    disliked_ingredients: Tuple[str, ...] = ()
    meals_per_week: int = 7
    family_members: Tuple[FamilyMemberProfile, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if self.household_size <= 0:
            raise ValueError("household_size must be > 0")
        if self.cooking_skill not in COOKING_SKILLS:
            raise ValueError(f"cooking_skill must be one of: {list(COOKING_SKILLS)}")
        if self.budget_level not in BUDGET_LEVELS:
            raise ValueError(f"budget_level must be one of: {list(BUDGET_LEVELS)}")
        if self.cooking_time_minutes <= 0:
            raise ValueError("cooking_time_minutes must be > 0")
        object.__setattr__(self, "dietary_restrictions", tuple(self.dietary_restrictions))
        object.__setattr__(self, "allergies", tuple(self.allergies))
        object.__setattr__(self, "disliked_ingredients", tuple(self.disliked_ingredients))
        object.__setattr__(self, "family_members", tuple(self.family_members))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HouseholdPreferences":
        """Build preferences from a plain mapping such as a parsed YAML file."""
        members = data.get("family_members") or []
        if not isinstance(members, list):
            raise ValueError("'family_members' must be a list")
        return cls(
            household_size=int(data.get("household_size", 1)),
            cooking_skill=data.get("cooking_skill", "intermediate"),
            budget_level=data.get("budget_level", "moderate"),
            cooking_time_minutes=int(data.get("cooking_time_minutes", 30)),
            dietary_restrictions=tuple(data.get("dietary_restrictions") or ()),
            allergies=tuple(data.get("allergies") or ()),
            disliked_ingredients=tuple(data.get("disliked_ingredients") or ()),
            meals_per_week=int(data.get("meals_per_week", 7)),
            family_members=tuple(FamilyMemberProfile.from_dict(m) for m in members),
        )


@dataclass(frozen=True)
class FamilyComplexityAnalysis:
    """Aggregated household constraints. Derived, never persisted."""
    all_allergies: Tuple[str, ...]
    all_restrictions: Tuple[str, ...]
    all_dislikes: Tuple[str, ...]
    critical_members: Tuple[FamilyMemberProfile, ...]
    child_count: int
    has_dietary_conflict: bool
    complexity_score: float
    summary: str

    @property
    def critical_member_names(self) -> List[str]:
        return [m.name for m in self.critical_members]


def analyze_family(preferences: HouseholdPreferences) -> FamilyComplexityAnalysis:
    """Aggregate member profiles into one constraint set and complexity score.

    Unions are exact-string set unions in first-seen order. A member is
    critical when any of their allergies is severe or life-threatening. A
    dietary conflict exists when plant-based and non-plant-based members
    share the household.

    Args:
        preferences: Household preferences snapshot

    Returns:
        FamilyComplexityAnalysis for this request only
    """
    members = preferences.family_members

    all_allergies = _ordered_union(m.allergies for m in members)
    all_restrictions = _ordered_union(m.dietary_restrictions for m in members)
    all_dislikes = _ordered_union(m.disliked_ingredients for m in members)
    critical_members = tuple(m for m in members if m.is_critical)
    child_count = sum(1 for m in members if m.age_group in ("child", "teen"))

    plant_based = [m for m in members if m.is_plant_based]
    has_conflict = bool(plant_based) and len(plant_based) < len(members)

    complexity_score = (
        ALLERGY_WEIGHT * len(all_allergies)
        + RESTRICTION_WEIGHT * len(all_restrictions)
        + CRITICAL_MEMBER_WEIGHT * len(critical_members)
        + CHILD_WEIGHT * child_count
        + CONFLICT_WEIGHT * (1 if has_conflict else 0)
    )

    return FamilyComplexityAnalysis(
        all_allergies=all_allergies,
        all_restrictions=all_restrictions,
        all_dislikes=all_dislikes,
        critical_members=critical_members,
        child_count=child_count,
        has_dietary_conflict=has_conflict,
        complexity_score=complexity_score,
        summary=_build_summary(preferences, all_allergies, all_restrictions,
                               critical_members, has_conflict, complexity_score),
    )


def _build_summary(
    preferences: HouseholdPreferences,
    allergies: Tuple[str, ...],
    restrictions: Tuple[str, ...],
    critical_members: Tuple[FamilyMemberProfile, ...],
    has_conflict: bool,
    complexity_score: float
) -> str:
    member_count = len(preferences.family_members)
    parts = [
        f"Cooking for {preferences.household_size} "
        f"{'person' if preferences.household_size == 1 else 'people'}"
        f" with {member_count} family member profile{'' if member_count == 1 else 's'}"
    ]
    parts.append(f"allergies: {', '.join(allergies)}" if allergies else "no member allergies")
    if restrictions:
        parts.append(f"restrictions: {', '.join(restrictions)}")
    if critical_members:
        names = ", ".join(m.name for m in critical_members)
        parts.append(f"severe allergy risk for {names}")
    if has_conflict:
        parts.append("mixed vegetarian and non-vegetarian needs")
    parts.append(f"complexity {complexity_score:g}")
    return "; ".join(parts) + "."
