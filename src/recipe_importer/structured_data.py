"""Markup-first recipe extraction.

Tries, in order:

1. JSON-LD ``<script type="application/ld+json">`` blocks (``@graph`` and
   nested nodes flattened; every ``Recipe`` node scored for completeness)
2. schema.org microdata (``itemtype*="Recipe"`` with ``itemprop`` values)
3. Open Graph metadata plus CSS-selector and heading-based section heuristics

The winning candidate is mapped verbatim into a ``CanonicalRecipe``; no model
is involved on this path. When the page only yields part of a recipe, the
partial data is still returned as labeled text so it can serve as evidence
for the generative path.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Final

from bs4 import BeautifulSoup, Tag
from pydantic import ValidationError

from .ingredient_parser import parse_ingredient_line
from .models import (
    MAX_MINUTES,
    MAX_SERVINGS,
    MAX_TITLE_LENGTH,
    MIN_INSTRUCTION_LENGTH,
    CanonicalRecipe,
    ParsedIngredient,
    is_placeholder_title,
)
from .tables import DEFAULT_TABLES, HeuristicTables

logger = logging.getLogger(__name__)

METHOD_JSON_LD: Final = "json-ld"
METHOD_MICRODATA: Final = "microdata"
METHOD_OPEN_GRAPH: Final = "open-graph"

METHOD_CONFIDENCE: Final = {
    METHOD_JSON_LD: 0.9,
    METHOD_MICRODATA: 0.9,
    METHOD_OPEN_GRAPH: 0.8,
}

INGREDIENT_SELECTORS: Final = (
    '[itemprop="recipeIngredient"]',
    ".recipe-ingredient",
    ".ingredients li",
    "li.ingredient",
    ".ingredient-list li",
    ".wprm-recipe-ingredient",
)
INSTRUCTION_SELECTORS: Final = (
    '[itemprop="recipeInstructions"]',
    ".recipe-instruction",
    ".instructions li",
    ".method li",
    ".directions li",
    ".recipe-directions li",
    ".wprm-recipe-instruction",
)
INGREDIENT_HEADING: Final = re.compile(r"^\s*ingredients?\b", re.I)
INSTRUCTION_HEADING: Final = re.compile(
    r"^\s*(?:instructions?|directions?|method|steps?|preparation)\b", re.I
)
ISO_DURATION: Final = re.compile(
    r"^P(?:(?P<days>\d+(?:\.\d+)?)D)?"
    r"(?:T(?:(?P<hours>\d+(?:\.\d+)?)H)?(?:(?P<minutes>\d+(?:\.\d+)?)M)?(?:(?P<seconds>\d+(?:\.\d+)?)S)?)?$",
    re.I,
)


@dataclass(frozen=True)
class StructuredExtraction:
    """Result of the markup-first path.

    Attributes:
        method: Which markup produced the data (None when nothing was found)
        recipe: Canonical recipe, set only when ingredients and steps were both found
        node: The schema.org-shaped dict that was mapped
        candidates: Number of Recipe nodes considered
    """

    method: str | None
    recipe: CanonicalRecipe | None = None
    node: dict[str, Any] = field(default_factory=dict)
    candidates: int = 0

    @property
    def is_complete(self) -> bool:
        """True when the pipeline can short-circuit on this result."""
        return self.recipe is not None

    @property
    def confidence(self) -> float:
        """Fixed confidence for the method that produced the data."""
        return METHOD_CONFIDENCE.get(self.method or "", 0.0)

    @property
    def evidence_text(self) -> str:
        """Whatever was found, formatted as labeled text."""
        return format_structured_text(self.node) if self.node else ""


# ============================================================================
# Field helpers
# ============================================================================


def node_types(node: dict[str, Any]) -> set[str]:
    """Return the ``@type`` values of a node with vocabulary prefixes removed."""
    raw = node.get("@type", [])
    values = raw if isinstance(raw, list) else [raw]
    return {str(v).rsplit("/", 1)[-1].rsplit(":", 1)[-1] for v in values if v}


def parse_iso_duration(value: Any) -> int | None:
    """Convert an ISO 8601 duration (``PT1H30M``) or bare number to minutes.

    Returns None for unparseable values and for values beyond one day.
    """
    if value is None:
        return None
    if isinstance(value, (int, float)):
        minutes = int(value)
    else:
        text = str(value).strip()
        if text.isdigit():
            minutes = int(text)
        else:
            match = ISO_DURATION.match(text)
            if not match or not any(match.groupdict().values()):
                return None
            parts = {k: float(v) if v else 0.0 for k, v in match.groupdict().items()}
            minutes = round(
                parts["days"] * 1440 + parts["hours"] * 60 + parts["minutes"] + parts["seconds"] / 60
            )
    if 0 <= minutes <= MAX_MINUTES:
        return minutes
    logger.debug(f"Discarding out-of-range duration: {value!r}")
    return None


def parse_servings(value: Any) -> int | None:
    """Pull a serving count from ``recipeYield`` ("4", "Serves 4", ["4", "4 servings"])."""
    if value is None:
        return None
    if isinstance(value, list):
        for item in value:
            servings = parse_servings(item)
            if servings is not None:
                return servings
        return None
    if isinstance(value, (int, float)):
        servings = int(value)
    else:
        match = re.search(r"\d+", str(value))
        if not match:
            return None
        servings = int(match.group())
    return servings if 1 <= servings <= MAX_SERVINGS else None


def parse_keywords(value: Any) -> set[str]:
    """Split ``keywords``/``recipeCategory`` into a lowercase tag set."""
    if not value:
        return set()
    items = value if isinstance(value, list) else str(value).split(",")
    return {str(item).strip().lower() for item in items if str(item).strip()}


def extract_image_url(value: Any) -> str | None:
    """Return the first image URL from a string, list or ImageObject."""
    if not value:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return extract_image_url(value[0]) if value else None
    if isinstance(value, dict):
        return value.get("url") or value.get("contentUrl")
    return None


def _clean_text(value: Any) -> str:
    text = str(value)
    if "<" in text and ">" in text:
        text = BeautifulSoup(text, "html.parser").get_text(" ")
    return re.sub(r"\s+", " ", text).strip()


def flatten_instructions(value: Any) -> list[str]:
    """Flatten ``recipeInstructions`` into an ordered list of step strings.

    Handles plain strings (split on newlines), ``HowToStep`` objects,
    ``HowToSection``/``ItemList`` nesting via ``itemListElement``, and lists of
    any of these.
    """
    steps: list[str] = []
    if value is None:
        return steps
    if isinstance(value, str):
        for line in re.split(r"\n+|<br\s*/?>", value):
            cleaned = _clean_text(line)
            if cleaned:
                steps.append(cleaned)
    elif isinstance(value, list):
        for item in value:
            steps.extend(flatten_instructions(item))
    elif isinstance(value, dict):
        if "itemListElement" in value:
            steps.extend(flatten_instructions(value["itemListElement"]))
        else:
            text = value.get("text") or value.get("name") or value.get("description")
            if text:
                steps.extend(flatten_instructions(str(text)))
    return [step for step in steps if len(step) >= MIN_INSTRUCTION_LENGTH]


def ingredient_strings(node: dict[str, Any]) -> list[str]:
    """Ingredient lines from ``recipeIngredient`` (or legacy ``ingredients``)."""
    raw = node.get("recipeIngredient") or node.get("ingredients") or []
    if isinstance(raw, str):
        raw = [line for line in raw.splitlines()]
    lines: list[str] = []
    for item in raw:
        if isinstance(item, dict):
            item = item.get("text") or item.get("name") or ""
        cleaned = _clean_text(item)
        if cleaned:
            lines.append(cleaned)
    return lines


def score_recipe_node(node: dict[str, Any]) -> int:
    """Completeness score used to pick among several Recipe nodes.

    +2 for a name, +min(10, ingredients), +min(10, steps), +1 each for
    prepTime, cookTime, totalTime and recipeYield.
    """
    score = 2 if node.get("name") else 0
    score += min(10, len(ingredient_strings(node)))
    score += min(10, len(flatten_instructions(node.get("recipeInstructions"))))
    score += sum(1 for key in ("prepTime", "cookTime", "totalTime", "recipeYield") if node.get(key))
    return score


def format_structured_text(node: dict[str, Any]) -> str:
    """Render a schema.org-shaped node as labeled plain text."""
    lines: list[str] = []
    if node.get("name"):
        lines.append(_clean_text(node["name"]))
    if node.get("description"):
        lines.extend(["", _clean_text(node["description"])])
    ingredients = ingredient_strings(node)
    if ingredients:
        lines.extend(["", "Ingredients:"])
        lines.extend(f"- {line}" for line in ingredients)
    steps = flatten_instructions(node.get("recipeInstructions"))
    if steps:
        lines.extend(["", "Instructions:"])
        lines.extend(f"{i}. {step}" for i, step in enumerate(steps, 1))
    return "\n".join(lines).strip()


# ============================================================================
# Mapping
# ============================================================================


def map_recipe_node(
    node: dict[str, Any],
    confidence: float,
    fallback_title: str | None = None,
    tables: HeuristicTables = DEFAULT_TABLES,
) -> CanonicalRecipe | None:
    """Map a schema.org Recipe node verbatim into a ``CanonicalRecipe``.

    Returns None unless the node yields a usable title, at least one
    ingredient and at least one step.
    """
    ingredients: list[ParsedIngredient] = []
    for line in ingredient_strings(node):
        try:
            ingredients.append(parse_ingredient_line(line, tables))
        except (ValueError, ValidationError) as e:
            logger.debug(f"Skipping unparseable ingredient {line!r}: {e}")

    steps = flatten_instructions(node.get("recipeInstructions"))
    if not ingredients or not steps:
        return None

    title = ""
    for candidate in (node.get("name"), node.get("headline"), fallback_title):
        if candidate and not is_placeholder_title(_clean_text(candidate)):
            title = _clean_text(candidate)[:MAX_TITLE_LENGTH]
            break
    if not title:
        return None

    tags = parse_keywords(node.get("keywords")) | parse_keywords(node.get("recipeCategory"))
    cuisine = node.get("recipeCuisine")
    if isinstance(cuisine, list):
        cuisine = cuisine[0] if cuisine else None

    try:
        return CanonicalRecipe(
            title=title,
            description=_clean_text(node["description"]) if node.get("description") else None,
            image_url=extract_image_url(node.get("image")),
            ingredients=ingredients,
            instructions=steps,
            prep_time=parse_iso_duration(node.get("prepTime")),
            cook_time=parse_iso_duration(node.get("cookTime")),
            servings=parse_servings(node.get("recipeYield")),
            cuisine=_clean_text(cuisine) if cuisine else None,
            tags=tags,
            confidence=confidence,
        )
    except ValidationError as e:
        logger.warning(f"Structured recipe failed validation: {e}")
        return None


# ============================================================================
# JSON-LD
# ============================================================================


def _collect_recipe_nodes(data: Any, found: list[dict[str, Any]]) -> None:
    if isinstance(data, list):
        for item in data:
            _collect_recipe_nodes(item, found)
    elif isinstance(data, dict):
        if "Recipe" in node_types(data):
            found.append(data)
            return
        for value in data.values():
            if isinstance(value, (dict, list)):
                _collect_recipe_nodes(value, found)


def find_json_ld_recipes(soup: BeautifulSoup) -> list[dict[str, Any]]:
    """Collect every Recipe node from all JSON-LD blocks on the page."""
    found: list[dict[str, Any]] = []
    for script in soup.find_all("script", attrs={"type": re.compile(r"ld\+json", re.I)}):
        raw = script.string or script.get_text()
        if not raw or not raw.strip():
            continue
        raw = raw.strip().removeprefix("<!--").removesuffix("-->").strip()
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.debug(f"Skipping malformed JSON-LD block: {e}")
            continue
        _collect_recipe_nodes(data, found)
    return found


# ============================================================================
# Microdata
# ============================================================================


def _microdata_value(element: Tag) -> str:
    for attr in ("content", "datetime", "src", "href"):
        value = element.get(attr)
        if value:
            return str(value)
    return element.get_text(" ", strip=True)


def find_microdata_recipe(soup: BeautifulSoup) -> dict[str, Any] | None:
    """Build a schema.org-shaped dict from ``itemprop`` attributes."""
    scope = soup.select_one('[itemtype*="schema.org/Recipe"], [itemtype*="Recipe"]')
    if scope is None:
        return None

    props: dict[str, list[Any]] = {}
    for element in scope.find_all(attrs={"itemprop": True}):
        owner = element.find_parent(attrs={"itemscope": True})
        if owner is not scope and element is not scope:
            continue
        names = str(element.get("itemprop", "")).split()
        for name in names:
            if name == "recipeInstructions":
                items = element.find_all("li")
                value: Any = [li.get_text(" ", strip=True) for li in items] if items else (
                    element.get_text("\n", strip=True)
                )
            else:
                value = _microdata_value(element)
            props.setdefault(name, []).append(value)

    node: dict[str, Any] = {"@type": "Recipe"}
    for key in ("name", "description", "image", "prepTime", "cookTime", "totalTime",
                "recipeYield", "recipeCuisine", "recipeCategory", "keywords"):  # fmt: skip
        if props.get(key):
            node[key] = props[key][0]
    node["recipeIngredient"] = props.get("recipeIngredient") or props.get("ingredients") or []
    node["recipeInstructions"] = props.get("recipeInstructions", [])
    return node


# ============================================================================
# Open Graph + selectors
# ============================================================================


def _meta(soup: BeautifulSoup, prop: str) -> str | None:
    tag = soup.find("meta", attrs={"property": prop}) or soup.find("meta", attrs={"name": prop})
    if tag and tag.get("content"):
        return str(tag["content"]).strip()
    return None


def _texts(elements: list[Tag]) -> list[str]:
    seen: set[str] = set()
    texts: list[str] = []
    for element in elements:
        text = element.get_text(" ", strip=True)
        if text and text not in seen:
            seen.add(text)
            texts.append(text)
    return texts


def _is_section_heading(element: Tag) -> bool:
    text = element.get_text(" ", strip=True)
    return bool(INGREDIENT_HEADING.match(text) or INSTRUCTION_HEADING.match(text))


def _section_after_heading(soup: BeautifulSoup, pattern: re.Pattern[str]) -> list[str]:
    for heading in soup.find_all(["h1", "h2", "h3", "h4", "h5", "strong", "b"]):
        if not pattern.match(heading.get_text(" ", strip=True)):
            continue
        items: list[str] = []
        for sibling in heading.find_all_next():
            if sibling.name in ("h1", "h2", "h3", "h4", "h5"):
                break
            if sibling.name in ("strong", "b", "p") and _is_section_heading(sibling):
                break
            if sibling.name == "li" or (sibling.name == "p" and not sibling.find("li")):
                text = sibling.get_text(" ", strip=True)
                if text:
                    items.append(text)
        if items:
            return items
    return []


def find_selector_recipe(soup: BeautifulSoup) -> dict[str, Any] | None:
    """Open Graph metadata combined with common recipe class names and headings."""
    ingredients: list[str] = []
    for selector in INGREDIENT_SELECTORS:
        ingredients = _texts(soup.select(selector))
        if ingredients:
            break
    if not ingredients:
        ingredients = _section_after_heading(soup, INGREDIENT_HEADING)

    steps: list[str] = []
    for selector in INSTRUCTION_SELECTORS:
        steps = _texts(soup.select(selector))
        if steps:
            break
    if not steps:
        steps = _section_after_heading(soup, INSTRUCTION_HEADING)

    title = _meta(soup, "og:title")
    if not title:
        h1 = soup.find("h1")
        title = h1.get_text(" ", strip=True) if h1 else None

    if not (title or ingredients or steps):
        return None

    node: dict[str, Any] = {"@type": "Recipe", "recipeIngredient": ingredients,
                            "recipeInstructions": steps}  # fmt: skip
    if title:
        node["name"] = title
    if description := _meta(soup, "og:description"):
        node["description"] = description
    if image := _meta(soup, "og:image"):
        node["image"] = image
    return node


def page_title(soup: BeautifulSoup) -> str | None:
    """Text of the ``<title>`` element."""
    if soup.title and soup.title.string:
        return soup.title.string.strip()
    return None


# ============================================================================
# Entry point
# ============================================================================


def extract_structured_recipe(
    html: str, tables: HeuristicTables = DEFAULT_TABLES
) -> StructuredExtraction:
    """Run JSON-LD, microdata and selector extraction over fetched HTML.

    Returns the first complete result; otherwise the best partial result
    (``recipe`` is None) so its text can be used as evidence.
    """
    soup = BeautifulSoup(html, "html.parser")
    fallback_title = _meta(soup, "og:title") or page_title(soup)
    partial: StructuredExtraction | None = None

    candidates = find_json_ld_recipes(soup)
    if candidates:
        best = max(candidates, key=score_recipe_node)
        logger.info(
            f"Found {len(candidates)} JSON-LD recipe candidate(s); best score "
            f"{score_recipe_node(best)}"
        )
        recipe = map_recipe_node(
            best, METHOD_CONFIDENCE[METHOD_JSON_LD], fallback_title, tables
        )
        result = StructuredExtraction(METHOD_JSON_LD, recipe, best, len(candidates))
        if result.is_complete:
            return result
        partial = result

    microdata = find_microdata_recipe(soup)
    if microdata is not None:
        recipe = map_recipe_node(
            microdata, METHOD_CONFIDENCE[METHOD_MICRODATA], fallback_title, tables
        )
        result = StructuredExtraction(METHOD_MICRODATA, recipe, microdata, 1)
        if result.is_complete:
            logger.info("Recipe extracted from microdata")
            return result
        partial = partial or result

    selectors = find_selector_recipe(soup)
    if selectors is not None:
        recipe = map_recipe_node(
            selectors, METHOD_CONFIDENCE[METHOD_OPEN_GRAPH], fallback_title, tables
        )
        result = StructuredExtraction(METHOD_OPEN_GRAPH, recipe, selectors, 1)
        if result.is_complete:
            logger.info("Recipe extracted from Open Graph metadata and page selectors")
            return result
        partial = partial or result

    if partial is None:
        logger.info("No structured recipe data found")
        return StructuredExtraction(method=None)
    return partial
