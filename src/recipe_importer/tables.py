"""Versioned heuristic data tables.

All pattern- and table-driven heuristics in the package read from a
``HeuristicTables`` instance that callers pass in explicitly. The default
instance, ``DEFAULT_TABLES``, is immutable; tests and callers that need a
variant build a new one with ``dataclasses.replace``.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Final

TABLES_VERSION: Final = "2025-09-02"


@dataclass(frozen=True)
class CommonQuantity:
    """Typical amount for an everyday ingredient."""

    quantity: float
    unit: str
    confidence: float


@dataclass(frozen=True)
class ContextualUnit:
    """Quantity implied by a phrase such as "a pinch of"."""

    pattern: str
    quantity: float | None
    unit: str | None
    confidence: float


# Closed unit vocabulary shared by the ingredient tokenizer and the validator
UNIT_VOCABULARY: Final = frozenset(
    {
        "tsp", "tbsp", "cup", "oz", "fl oz", "pt", "qt", "gal", "ml", "l",
        "g", "kg", "lb", "clove", "bunch", "pinch", "dash", "splash", "can",
        "jar", "bottle", "pkg", "slice", "piece",
    }
)  # fmt: skip

# Spelling variants accepted by the ingredient tokenizer -> canonical unit
UNIT_ALIASES: Final = {
    "t": "tsp", "tsp": "tsp", "tsps": "tsp", "teaspoon": "tsp", "teaspoons": "tsp",
    "tbsp": "tbsp", "tbsps": "tbsp", "tbs": "tbsp", "tbl": "tbsp", "tablespoon": "tbsp",
    "tablespoons": "tbsp",
    "c": "cup", "cup": "cup", "cups": "cup",
    "oz": "oz", "ounce": "oz", "ounces": "oz",
    "fl oz": "fl oz", "fluid ounce": "fl oz", "fluid ounces": "fl oz",
    "pt": "pt", "pint": "pt", "pints": "pt",
    "qt": "qt", "quart": "qt", "quarts": "qt",
    "gal": "gal", "gallon": "gal", "gallons": "gal",
    "ml": "ml", "milliliter": "ml", "milliliters": "ml", "millilitre": "ml", "millilitres": "ml",
    "l": "l", "liter": "l", "liters": "l", "litre": "l", "litres": "l",
    "g": "g", "gram": "g", "grams": "g", "gr": "g",
    "kg": "kg", "kilogram": "kg", "kilograms": "kg",
    "lb": "lb", "lbs": "lb", "pound": "lb", "pounds": "lb",
    "clove": "clove", "cloves": "clove",
    "bunch": "bunch", "bunches": "bunch",
    "pinch": "pinch", "pinches": "pinch",
    "dash": "dash", "dashes": "dash",
    "splash": "splash", "splashes": "splash",
    "can": "can", "cans": "can",
    "jar": "jar", "jars": "jar",
    "bottle": "bottle", "bottles": "bottle",
    "pkg": "pkg", "package": "pkg", "packages": "pkg",
    "slice": "slice", "slices": "slice",
    "piece": "piece", "pieces": "piece", "pcs": "piece",
}  # fmt: skip

# Long-form unit names rewritten by the text normalizer
UNIT_MAPPINGS: Final = {
    "teaspoons": "tsp", "teaspoon": "tsp",
    "tablespoons": "tbsp", "tablespoon": "tbsp",
    "cups": "cup",
    "fluid ounces": "fl oz", "fluid ounce": "fl oz",
    "ounces": "oz", "ounce": "oz",
    "pints": "pt", "pint": "pt",
    "quarts": "qt", "quart": "qt",
    "gallons": "gal", "gallon": "gal",
    "milliliters": "ml", "milliliter": "ml",
    "liters": "l", "liter": "l",
    "pounds": "lb", "pound": "lb",
    "grams": "g", "gram": "g",
    "kilograms": "kg", "kilogram": "kg",
    "pieces": "piece",
    "cloves": "clove",
    "bunches": "bunch",
    "packages": "pkg",
    "cans": "can",
    "bottles": "bottle",
    "jars": "jar",
}  # fmt: skip

# OCR and speech transcription misspellings
COMMON_ERRORS: Final = {
    "0ne": "one",
    "rninutes": "minutes",
    "rnin": "min",
    "degress": "degrees",
    "ingrediants": "ingredients",
    "recipie": "recipe",
    "seperate": "separate",
    "untill": "until",
    "recieve": "receive",
    "tablespoom": "tablespoon",
    "teaspoom": "teaspoon",
}

UNICODE_FRACTIONS: Final = {
    "½": 0.5, "⅓": 1 / 3, "⅔": 2 / 3, "¼": 0.25, "¾": 0.75,
    "⅕": 0.2, "⅖": 0.4, "⅗": 0.6, "⅘": 0.8, "⅙": 1 / 6, "⅚": 5 / 6,
    "⅛": 0.125, "⅜": 0.375, "⅝": 0.625, "⅞": 0.875,
}  # fmt: skip

COMMON_INGREDIENT_QUANTITIES: Final = {
    "salt": CommonQuantity(1, "tsp", 0.8),
    "pepper": CommonQuantity(0.5, "tsp", 0.7),
    "black pepper": CommonQuantity(0.5, "tsp", 0.7),
    "garlic powder": CommonQuantity(1, "tsp", 0.7),
    "onion powder": CommonQuantity(1, "tsp", 0.7),
    "paprika": CommonQuantity(1, "tsp", 0.7),
    "oregano": CommonQuantity(1, "tsp", 0.6),
    "basil": CommonQuantity(1, "tsp", 0.6),
    "thyme": CommonQuantity(1, "tsp", 0.6),
    "rosemary": CommonQuantity(1, "tsp", 0.6),
    "cumin": CommonQuantity(1, "tsp", 0.6),
    "cinnamon": CommonQuantity(1, "tsp", 0.7),
    "vanilla extract": CommonQuantity(1, "tsp", 0.8),
    "baking powder": CommonQuantity(1, "tsp", 0.8),
    "baking soda": CommonQuantity(0.5, "tsp", 0.8),
    "olive oil": CommonQuantity(2, "tbsp", 0.7),
    "vegetable oil": CommonQuantity(2, "tbsp", 0.7),
    "butter": CommonQuantity(2, "tbsp", 0.7),
    "lemon juice": CommonQuantity(1, "tbsp", 0.7),
    "lime juice": CommonQuantity(1, "tbsp", 0.7),
    "soy sauce": CommonQuantity(1, "tbsp", 0.6),
    "worcestershire sauce": CommonQuantity(1, "tsp", 0.6),
    "hot sauce": CommonQuantity(0.5, "tsp", 0.5),
}

INGREDIENT_SYNONYMS: Final = {
    "salt": ("sea salt", "kosher salt", "table salt", "fine salt"),
    "pepper": ("black pepper", "ground pepper", "white pepper", "peppercorns"),
    "garlic": ("garlic cloves", "minced garlic", "garlic clove"),
    "onion": ("onions", "yellow onion", "white onion", "red onion", "shallot"),
    "tomato": ("tomatoes", "cherry tomatoes", "roma tomatoes"),
    "butter": ("unsalted butter", "salted butter"),
    "oil": ("olive oil", "vegetable oil", "canola oil", "cooking oil"),
    "flour": ("all-purpose flour", "plain flour", "wheat flour"),
    "sugar": ("granulated sugar", "white sugar", "caster sugar", "brown sugar"),
    "milk": ("whole milk", "skim milk", "dairy milk"),
    "cheese": ("cheddar", "parmesan", "mozzarella", "grated cheese"),
    "chicken": ("chicken breast", "chicken thighs", "chicken breasts"),
    "beef": ("ground beef", "beef mince", "steak"),
    "rice": ("white rice", "brown rice", "basmati rice", "jasmine rice"),
    "pasta": ("spaghetti", "penne", "noodles", "macaroni"),
}

CONTEXTUAL_UNIT_PATTERNS: Final = (
    ContextualUnit(r"\b(?:a\s+)?pinch\s+of\s+{name}", 1, "pinch", 0.9),
    ContextualUnit(r"\b(?:a\s+)?dash\s+of\s+{name}", 1, "dash", 0.9),
    ContextualUnit(r"\b{name}\s+to\s+taste\b", None, None, 0.8),
    ContextualUnit(r"\ba\s+little\s+(?:bit\s+of\s+)?{name}", None, None, 0.6),
    ContextualUnit(r"\ba\s+bit\s+of\s+{name}", None, None, 0.6),
    ContextualUnit(r"\bsome\s+{name}", None, None, 0.5),
    ContextualUnit(r"\bsprinkle\s+(?:with\s+)?(?:some\s+)?{name}", 1, "pinch", 0.7),
    ContextualUnit(r"\bdrizzle\s+(?:with\s+)?(?:some\s+)?{name}", 1, "tbsp", 0.6),
)

# Verb-anchored phrases that introduce an ingredient inside a step
MISSING_INGREDIENT_PATTERNS: Final = (
    r"\badd(?:\s+in)?\s+(?:the\s+|some\s+|a\s+little\s+)?([a-z][a-z\s-]+?)(?=\s+(?:to|into|until|and\s+(?:stir|mix|cook))\b|[.,;:!]|$)",
    r"\bmix\s+in\s+(?:the\s+)?([a-z][a-z\s-]+?)(?=\s+(?:to|into|until)\b|[.,;:!]|$)",
    r"\bseason\s+with\s+([a-z][a-z\s-]+?)(?=\s+(?:to|until)\b|[.,;:!]|$)",
    r"\bsprinkle\s+(?:with\s+)?([a-z][a-z\s-]+?)(?=\s+(?:over|on|to|until)\b|[.,;:!]|$)",
    r"\bdrizzle\s+(?:with\s+)?([a-z][a-z\s-]+?)(?=\s+(?:over|on|to|until)\b|[.,;:!]|$)",
    r"\bgarnish\s+with\s+([a-z][a-z\s-]+?)(?=\s+(?:and\s+serve|to|before)\b|[.,;:!]|$)",
    r"\btop\s+with\s+([a-z][a-z\s-]+?)(?=\s+(?:and\s+serve|to|before)\b|[.,;:!]|$)",
)  # fmt: skip

NON_INGREDIENT_WORDS: Final = frozenset(
    {
        "mixture", "bowl", "pan", "pot", "skillet", "oven", "heat", "water",
        "everything", "it", "them", "all", "rest", "remaining", "dish", "plate",
        "sauce", "batter", "dough", "top", "side", "lid", "foil", "tray",
        "sheet", "minutes", "minute", "hours", "hour", "seconds", "time",
        "taste", "serving", "servings", "more", "both", "each", "other",
    }
)  # fmt: skip

# Words that are never meaningful tokens for evidence matching
STOPWORDS: Final = frozenset(
    {
        "a", "an", "and", "the", "of", "to", "in", "on", "with", "for", "or",
        "into", "at", "by", "is", "it", "be", "as", "from", "then", "until",
        "about", "over", "your", "you", "this", "that", "some",
    }
)  # fmt: skip

COOKING_VERBS: Final = (
    "mix", "stir", "add", "cook", "bake", "heat", "boil", "simmer", "fry",
    "sauté", "saute", "chop", "dice", "slice", "combine", "whisk", "fold",
    "pour", "serve", "preheat", "roast", "grill", "season", "blend", "knead",
)  # fmt: skip

RECIPE_SITE_HOSTS: Final = (
    "allrecipes.com", "foodnetwork.com", "epicurious.com", "bonappetit.com",
    "seriouseats.com", "food.com", "delish.com", "tasteofhome.com",
    "cooking.nytimes.com", "bbcgoodfood.com", "simplyrecipes.com",
)  # fmt: skip

PLACEHOLDER_TITLES: Final = frozenset(
    {"untitled", "untitled recipe", "unknown", "unknown recipe", "recipe", "n/a", "none"}
)


def _freeze(mapping: Mapping) -> Mapping:
    return MappingProxyType(dict(mapping))


@dataclass(frozen=True)
class HeuristicTables:
    """Bundle of every data table consumed by the heuristic functions."""

    version: str = TABLES_VERSION
    units: frozenset[str] = UNIT_VOCABULARY
    unit_aliases: Mapping[str, str] = field(default_factory=lambda: _freeze(UNIT_ALIASES))
    unit_mappings: Mapping[str, str] = field(default_factory=lambda: _freeze(UNIT_MAPPINGS))
    common_errors: Mapping[str, str] = field(default_factory=lambda: _freeze(COMMON_ERRORS))
    unicode_fractions: Mapping[str, float] = field(
        default_factory=lambda: _freeze(UNICODE_FRACTIONS)
    )
    common_quantities: Mapping[str, CommonQuantity] = field(
        default_factory=lambda: _freeze(COMMON_INGREDIENT_QUANTITIES)
    )
    synonyms: Mapping[str, tuple[str, ...]] = field(
        default_factory=lambda: _freeze(INGREDIENT_SYNONYMS)
    )
    contextual_units: tuple[ContextualUnit, ...] = CONTEXTUAL_UNIT_PATTERNS
    missing_ingredient_patterns: tuple[str, ...] = MISSING_INGREDIENT_PATTERNS
    non_ingredient_words: frozenset[str] = NON_INGREDIENT_WORDS
    stopwords: frozenset[str] = STOPWORDS
    cooking_verbs: tuple[str, ...] = COOKING_VERBS
    recipe_site_hosts: tuple[str, ...] = RECIPE_SITE_HOSTS
    placeholder_titles: frozenset[str] = PLACEHOLDER_TITLES

    def canonical_name(self, name: str) -> str:
        """Map an ingredient name to its synonym-group key (or itself)."""
        lowered = name.strip().lower()
        for key, variants in self.synonyms.items():
            if lowered == key or lowered in variants:
                return key
        return lowered


DEFAULT_TABLES: Final = HeuristicTables()
