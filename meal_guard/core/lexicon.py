"""
Allergen lexicon.

Fixed keyword table used for deterministic allergen detection, and the
aliases that map user-entered allergy names onto its categories.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

SEVERITY_LEVELS = ("mild", "moderate", "severe", "life_threatening")
CRITICAL_SEVERITIES = frozenset({"severe", "life_threatening"})


@dataclass(frozen=True)
class AllergenCategory:
    """Keywords, icon and default severity for one allergen category."""
    name: str
    keywords: Tuple[str, ...]
    icon: str
    default_severity: str

    def __post_init__(self):
        if not self.keywords:
            raise ValueError(f"allergen category '{self.name}' has no keywords")
        if self.default_severity not in SEVERITY_LEVELS:
            raise ValueError(f"invalid default severity: {self.default_severity}")


@dataclass(frozen=True)
class AllergenLexicon:
    """Fixed allergen table - no dynamic fetching."""
    categories: Dict[str, AllergenCategory]
    aliases: Dict[str, str]

    def resolve_category(self, allergy_name: str) -> Optional[str]:
        """Map a user-entered allergy name to a category name, if any."""
        key = _normalize(allergy_name)
        if key in self.categories:
            return key
        return self.aliases.get(key)


def _normalize(name: str) -> str:
    return name.strip().lower().replace("-", "_").replace(" ", "_")


ALLERGEN_LEXICON = AllergenLexicon(
    categories={
        "dairy": AllergenCategory(
            name="dairy",
            keywords=("milk", "cheese", "butter", "cream", "yogurt", "whey", "casein", "lactose"),
            icon="🥛",
            default_severity="moderate"
        ),
        "nuts": AllergenCategory(
            name="nuts",
            keywords=("peanut", "almond", "walnut", "cashew", "pecan", "hazelnut", "pistachio", "macadamia"),
            icon="🥜",
            default_severity="severe"
        ),
        "gluten": AllergenCategory(
            name="gluten",
            keywords=("wheat", "flour", "bread", "pasta", "barley", "rye", "malt", "bulgur"),
            icon="🌾",
            default_severity="moderate"
        ),
        "shellfish": AllergenCategory(
            name="shellfish",
            keywords=("shrimp", "crab", "lobster", "prawn", "crawfish", "langostino"),
            icon="🦐",
            default_severity="severe"
        ),
        "eggs": AllergenCategory(
            name="eggs",
            keywords=("egg", "eggs", "albumin", "mayonnaise"),
            icon="🥚",
            default_severity="moderate"
        ),
        "soy": AllergenCategory(
            name="soy",
            keywords=("soy", "tofu", "tempeh", "edamame", "miso", "tamari", "lecithin"),
            icon="🫘",
            default_severity="mild"
        ),
        "fish": AllergenCategory(
            name="fish",
            keywords=("salmon", "tuna", "cod", "anchovy", "sardine", "haddock", "mackerel", "fish sauce"),
            icon="🐟",
            default_severity="moderate"
        ),
        "sesame": AllergenCategory(
            name="sesame",
            keywords=("sesame", "tahini", "hummus", "halva"),
            icon="🌱",
            default_severity="moderate"
        ),
    },
    aliases={
        "milk": "dairy",
        "lactose": "dairy",
        "peanut": "nuts",
        "peanuts": "nuts",
        "tree_nuts": "nuts",
        "tree_nut": "nuts",
        "nut": "nuts",
        "wheat": "gluten",
        "egg": "eggs",
        "soya": "soy",
        "crustaceans": "shellfish",
    },
)
