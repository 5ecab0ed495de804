"""
Recipe records and provider-output normalization.

The provider's JSON is untrusted input: required fields are checked here
and every optional field is cleaned or defaulted before it is stored.
"""

import json
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple

AI_DISCLAIMER = (
    "This recipe was generated by AI. Always verify ingredients for "
    "allergies and dietary restrictions."
)
DIFFICULTIES = ("easy", "medium", "hard")
REQUIRED_FIELDS = ("title", "ingredients", "instructions")
# Safety fields the provider is asked for; their absence lowers the score.
SAFETY_FIELDS = ("allergen_considerations", "safety_notes", "dietary_compliance")


class InvalidRecipeError(ValueError):
    """Raised when provider output lacks the fields a recipe needs."""


@dataclass(frozen=True)
class DetectedAllergen:
    """Allergen found by keyword scan of the ingredient list.

    ``confidence`` is the share of the category's keywords that matched. It
    is a heuristic, not a calibrated probability.
    """
    name: str
    confidence: float
    severity: str
    icon: str
    warning_text: str
    affects_family_members: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DetectedAllergen":
        return cls(
            name=data["name"],
            confidence=float(data["confidence"]),
            severity=data["severity"],
            icon=data.get("icon", ""),
            warning_text=data.get("warning_text", ""),
            affects_family_members=tuple(data.get("affects_family_members") or ()),
        )


@dataclass(frozen=True)
class GeneratedRecipe:
    """A recipe served to a household. Immutable once created."""
    title: str
    description: str
    ingredients: Tuple[str, ...]
    instructions: Tuple[str, ...]
    prep_time: int
    cook_time: int
    total_time: int
    servings: int
    difficulty: str
    family_reasoning: str
    member_notes: Dict[str, str] = field(default_factory=dict)
    allergen_considerations: str = ""
    dietary_compliance: Tuple[str, ...] = ()
    nutrition_highlights: str = ""
    safety_notes: str = ""
    detected_allergens: Tuple[DetectedAllergen, ...] = ()
    safety_warnings: Tuple[str, ...] = ()
    safety_score: int = 100
    generation_cost: float = 0.0
    generation_time_ms: int = 0
    cache_hit: bool = False
    ai_disclaimers: Tuple[str, ...] = (AI_DISCLAIMER,)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in ("ingredients", "instructions", "dietary_compliance",
                    "safety_warnings", "ai_disclaimers"):
            data[key] = list(data[key])
        for allergen in data["detected_allergens"]:
            allergen["affects_family_members"] = list(allergen["affects_family_members"])
        data["detected_allergens"] = list(data["detected_allergens"])
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, sort_keys=True)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GeneratedRecipe":
        return cls(
            title=data["title"],
            description=data.get("description", ""),
            ingredients=tuple(data.get("ingredients") or ()),
            instructions=tuple(data.get("instructions") or ()),
            prep_time=int(data.get("prep_time", 0)),
            cook_time=int(data.get("cook_time", 0)),
            total_time=int(data.get("total_time", 0)),
            servings=int(data.get("servings", 0)),
            difficulty=data.get("difficulty", "medium"),
            family_reasoning=data.get("family_reasoning", ""),
            member_notes=dict(data.get("member_notes") or {}),
            allergen_considerations=data.get("allergen_considerations", ""),
            dietary_compliance=tuple(data.get("dietary_compliance") or ()),
            nutrition_highlights=data.get("nutrition_highlights", ""),
            safety_notes=data.get("safety_notes", ""),
            detected_allergens=tuple(
                DetectedAllergen.from_dict(a) for a in data.get("detected_allergens") or ()
            ),
            safety_warnings=tuple(data.get("safety_warnings") or ()),
            safety_score=int(data.get("safety_score", 100)),
            generation_cost=float(data.get("generation_cost", 0.0)),
            generation_time_ms=int(data.get("generation_time_ms", 0)),
            cache_hit=bool(data.get("cache_hit", False)),
            ai_disclaimers=tuple(data.get("ai_disclaimers") or (AI_DISCLAIMER,)),
        )

    @classmethod
    def from_json(cls, payload: str) -> "GeneratedRecipe":
        return cls.from_dict(json.loads(payload))


def normalize_difficulty(value: Any) -> str:
    """Map free-form difficulty labels onto easy/medium/hard."""
    if not value or not isinstance(value, str):
        return "medium"
    cleaned = value.strip().lower()
    if any(word in cleaned for word in ("easy", "simple", "beginner")):
        return "easy"
    if any(word in cleaned for word in ("hard", "difficult", "advanced", "challenging")):
        return "hard"
    return "medium"


def _to_int(value: Any, default: int = 0) -> int:
    # json.loads yields inf for 1e400 and Infinity.
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return default


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(item).strip() for item in value if str(item).strip()]


def validate_raw_recipe(raw: Any) -> Dict[str, Any]:
    """Check provider output has the fields every recipe needs.

    Returns:
        The raw mapping, unchanged

    Raises:
        InvalidRecipeError: If the payload is not an object or a required
            field is missing or empty
    """
    if not isinstance(raw, dict):
        raise InvalidRecipeError("provider output is not a JSON object")
    missing = [name for name in REQUIRED_FIELDS if not raw.get(name)]
    if missing:
        raise InvalidRecipeError(f"provider output missing required fields: {missing}")
    if not isinstance(raw["title"], str):
        raise InvalidRecipeError("title must be a string")
    if not _string_list(raw["ingredients"]):
        raise InvalidRecipeError("ingredients must be a non-empty list of strings")
    if not _string_list(raw["instructions"]):
        raise InvalidRecipeError("instructions must be a non-empty list of strings")
    return raw


def missing_safety_fields(raw: Dict[str, Any]) -> List[str]:
    """Names of expected safety fields the provider left out or empty."""
    return [name for name in SAFETY_FIELDS if not raw.get(name)]


def build_recipe(
    raw: Dict[str, Any],
    detected_allergens: Tuple[DetectedAllergen, ...],
    safety_warnings: Tuple[str, ...],
    safety_score: int,
    generation_cost: float,
    generation_time_ms: int,
    default_servings: int,
    member_names: Optional[List[str]] = None
) -> GeneratedRecipe:
    """Build the stored recipe from validated provider output and safety results."""
    prep_time = _to_int(raw.get("prep_time"))
    cook_time = _to_int(raw.get("cook_time"))
    member_notes = raw.get("member_notes")
    if not isinstance(member_notes, dict):
        member_notes = {}
    member_notes = {str(k): str(v) for k, v in member_notes.items()}
    if member_names:
        member_notes = {k: v for k, v in member_notes.items() if k in member_names}

    return GeneratedRecipe(
        title=raw["title"].strip() or "Generated Recipe",
        description=str(raw.get("description") or "AI-generated family recipe"),
        ingredients=tuple(_string_list(raw["ingredients"])),
        instructions=tuple(_string_list(raw["instructions"])),
        prep_time=prep_time,
        cook_time=cook_time,
        total_time=_to_int(raw.get("total_time")) or prep_time + cook_time,
        servings=_to_int(raw.get("servings")) or default_servings,
        difficulty=normalize_difficulty(raw.get("difficulty")),
        family_reasoning=str(raw.get("family_reasoning") or "Generated for your family"),
        member_notes=member_notes,
        allergen_considerations=str(raw.get("allergen_considerations") or ""),
        dietary_compliance=tuple(_string_list(raw.get("dietary_compliance"))),
        nutrition_highlights=str(raw.get("nutrition_highlights") or ""),
        safety_notes=str(raw.get("safety_notes") or ""),
        detected_allergens=detected_allergens,
        safety_warnings=safety_warnings,
        safety_score=max(0, min(100, safety_score)),
        generation_cost=generation_cost,
        generation_time_ms=generation_time_ms,
        cache_hit=False,
    )
