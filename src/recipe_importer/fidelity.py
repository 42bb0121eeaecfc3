"""Token-fidelity guard against hallucinated recipe content.

After a model has parsed non-structured evidence, every ingredient and step
must share at least one lexical token with that evidence. Items that do not
are removed; if removal empties either list the import fails rather than
returning a recipe with nothing traceable behind it.
"""

import logging
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from .exceptions import InsufficientEvidenceError
from .models import CanonicalRecipe, ParsedIngredient, SupportRates
from .tables import DEFAULT_TABLES, HeuristicTables

logger = logging.getLogger(__name__)

_TOKEN = re.compile(r"[a-z0-9]+")


def tokenize(text: str, tables: HeuristicTables = DEFAULT_TABLES) -> set[str]:
    """Lowercase word set without stopwords or single characters.

    Example:
        >>> sorted(tokenize("Mix the flour with salt"))
        ['flour', 'mix', 'salt']
    """
    return {
        token
        for token in _TOKEN.findall(text.lower())
        if len(token) >= 2 and token not in tables.stopwords
    }


def is_supported(text: str, evidence_tokens: set[str], tables: HeuristicTables = DEFAULT_TABLES) -> bool:
    """Check whether ``text`` shares at least one token with the evidence."""
    return bool(tokenize(text, tables) & evidence_tokens)


def _rate(items: Sequence[str], evidence_tokens: set[str], tables: HeuristicTables) -> float:
    if not items:
        return 0.0
    supported = sum(1 for item in items if is_supported(item, evidence_tokens, tables))
    return supported / len(items)


def compute_support_rates(
    evidence: str,
    ingredient_names: Sequence[str],
    steps: Sequence[str],
    tables: HeuristicTables = DEFAULT_TABLES,
) -> SupportRates:
    """Fraction of ingredients and of steps with token overlap against ``evidence``.

    Example:
        >>> rates = compute_support_rates(
        ...     "2 cups flour\\n1 tsp salt\\nMix flour with salt. Bake.",
        ...     ["flour", "salt"],
        ...     ["Mix flour with salt", "Bake"],
        ... )
        >>> (rates.ingredient_support, rates.step_support)
        (1.0, 1.0)
    """
    evidence_tokens = tokenize(evidence, tables)
    return SupportRates(
        ingredient_support=_rate(ingredient_names, evidence_tokens, tables),
        step_support=_rate(steps, evidence_tokens, tables),
    )


def recipe_support(
    recipe: CanonicalRecipe, evidence: str, tables: HeuristicTables = DEFAULT_TABLES
) -> SupportRates:
    """Support rates for a recipe's ingredient names and instructions."""
    return compute_support_rates(
        evidence, [ing.name for ing in recipe.ingredients], recipe.instructions, tables
    )


@dataclass(frozen=True)
class FidelityReport:
    """What the guard kept and what it removed."""

    recipe: CanonicalRecipe
    removed_ingredients: tuple[str, ...] = ()
    removed_steps: tuple[str, ...] = ()

    @property
    def changed(self) -> bool:
        return bool(self.removed_ingredients or self.removed_steps)

    def notes(self) -> list[str]:
        notes = [f"Removed unsupported ingredient: {name}" for name in self.removed_ingredients]
        notes.extend(f"Removed unsupported step: {step}" for step in self.removed_steps)
        return notes


def filter_by_token_fidelity(
    recipe: CanonicalRecipe,
    evidence: str,
    tables: HeuristicTables = DEFAULT_TABLES,
    source: str = "text",
) -> FidelityReport:
    """Drop ingredients and steps with zero token overlap with ``evidence``.

    Returns:
        FidelityReport carrying a new recipe; the input is not modified

    Raises:
        InsufficientEvidenceError: If no ingredient or no step survives
    """
    evidence_tokens = tokenize(evidence, tables)

    kept_ingredients: list[ParsedIngredient] = []
    removed_ingredients: list[str] = []
    for ingredient in recipe.ingredients:
        if is_supported(ingredient.name, evidence_tokens, tables):
            kept_ingredients.append(ingredient)
        else:
            removed_ingredients.append(ingredient.name)

    kept_steps: list[str] = []
    removed_steps: list[str] = []
    for step in recipe.instructions:
        if is_supported(step, evidence_tokens, tables):
            kept_steps.append(step)
        else:
            removed_steps.append(step)

    if removed_ingredients or removed_steps:
        logger.info(
            f"Fidelity filter removed {len(removed_ingredients)} ingredient(s) "
            f"and {len(removed_steps)} step(s)"
        )

    if not kept_ingredients or not kept_steps:
        missing = [] if kept_ingredients else ["ingredients"]
        if not kept_steps:
            missing.append("instructions")
        raise InsufficientEvidenceError(
            "No evidence-backed content left after fidelity filtering",
            source=source,
            missing=", ".join(missing),
        )

    return FidelityReport(
        recipe=recipe.model_copy(update={"ingredients": kept_ingredients, "instructions": kept_steps}),
        removed_ingredients=tuple(removed_ingredients),
        removed_steps=tuple(removed_steps),
    )


@dataclass(frozen=True)
class AbstainVerdict:
    """A model's explicit refusal to produce a recipe."""

    reason: str
    missing: tuple[str, ...] = field(default_factory=tuple)


def parse_abstain(data: Any) -> AbstainVerdict | None:
    """Recognize ``{"abstain": true, "reason": ..., "missing": [...]}``.

    Returns:
        AbstainVerdict, or None if ``data`` is not an abstain object
    """
    if not isinstance(data, dict) or data.get("abstain") is not True:
        return None
    reason = str(data.get("reason") or "unspecified").strip() or "unspecified"
    missing = data.get("missing") or []
    if not isinstance(missing, Iterable) or isinstance(missing, str):
        missing = [missing]
    return AbstainVerdict(reason=reason, missing=tuple(str(item) for item in missing))
