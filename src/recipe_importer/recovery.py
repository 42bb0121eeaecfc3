"""Ingredient recovery and consistency checking.

Cross-references a parsed recipe against its instructions and the original
evidence text:

1. Missing ingredients: verb-anchored phrases in the instructions ("season
   with X", "garnish with X") name ingredients the list never declared.
2. Quantity inference: ingredients without an amount get one from the common
   quantity table, then from contextual phrases ("a pinch of X"), then
   optionally from a constrained model call.
3. Consistency: duplicates, ingredients used but not listed, and ingredients
   listed but never used.

The engine never raises. Any internal failure degrades to the original
ingredient list with a note.
"""

import logging
import re
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, field

from .exceptions import RetryableError, ServiceError
from .ingredient_parser import normalize_unit, parse_quantity
from .models import (
    Inconsistency,
    InconsistencyType,
    InferredQuantity,
    MissingIngredient,
    ParsedIngredient,
    RecoveryResult,
    Severity,
)
from .prompt_library import PromptKind, PromptLibrary
from .protocols import ChatCompletionService
from .response_validator import extract_json
from .tables import DEFAULT_TABLES, CommonQuantity, HeuristicTables

logger = logging.getLogger(__name__)

BASE_CONFIDENCE = 0.7
FAILURE_CONFIDENCE = 0.5
AI_CONFIDENCE_CAP = 0.8
AI_CONTEXT_CHARS = 1000

_OPTIONAL_CUES = re.compile(r"\b(?:optional|if desired|to taste|for garnish|garnish)\b")
_SPLIT = re.compile(r"\s*(?:,|&|\band\b|\bor\b)\s*")
_LEADING = re.compile(r"^(?:the|some|a|an|more|fresh|extra)\s+")
_DIGIT = re.compile(r"\d")

METHOD_COMMON = "common-quantity"
METHOD_CONTEXT = "context"
METHOD_AI = "ai"


@dataclass(frozen=True)
class RecoveryOptions:
    """Switches for one ``recover`` call.

    Attributes:
        find_missing: Look for ingredients referenced only in the instructions
        infer_quantities: Fill in amounts for ingredients without one
        check_consistency: Report list/instruction mismatches
        use_ai: Allow a model call when tables and context give no quantity
        max_inferred: Upper bound on missing ingredients added to the list
        min_confidence: Score a missing-ingredient candidate needs to be added
    """

    find_missing: bool = True
    infer_quantities: bool = True
    check_consistency: bool = True
    use_ai: bool = False
    max_inferred: int = 5
    min_confidence: float = 0.5


@dataclass
class _Candidate:
    name: str
    phrases: list[str] = field(default_factory=list)


# ============================================================================
# Candidate detection
# ============================================================================


def _clean_candidate(raw: str) -> str:
    name = re.sub(r"\s+", " ", raw).strip(" -")
    previous = None
    while previous != name:
        previous = name
        name = _LEADING.sub("", name)
    return name


def is_likely_ingredient(name: str, tables: HeuristicTables = DEFAULT_TABLES) -> bool:
    """Reject noun phrases that are equipment, mixtures or filler.

    Example:
        >>> is_likely_ingredient("salt")
        True
        >>> is_likely_ingredient("the mixture")
        False
    """
    if not 3 <= len(name) <= 30 or _DIGIT.search(name):
        return False
    words = name.split()
    if len(words) > 4:
        return False
    return not any(word in tables.non_ingredient_words for word in words)


def find_candidates(
    instructions: Sequence[str], tables: HeuristicTables = DEFAULT_TABLES
) -> dict[str, list[str]]:
    """Ingredient names introduced by verb-anchored phrases, with their source steps.

    Example:
        >>> list(find_candidates(["Season with salt and pepper."]))
        ['salt', 'pepper']
    """
    found: dict[str, _Candidate] = {}
    for step in instructions:
        lowered = step.lower()
        for pattern in tables.missing_ingredient_patterns:
            for match in re.finditer(pattern, lowered):
                for part in _SPLIT.split(match.group(1)):
                    name = _clean_candidate(part)
                    if not is_likely_ingredient(name, tables):
                        continue
                    candidate = found.setdefault(name, _Candidate(name))
                    if step not in candidate.phrases:
                        candidate.phrases.append(step)
    return {name: candidate.phrases for name, candidate in found.items()}


def _words(name: str) -> set[str]:
    return set(re.findall(r"[a-z]+", name.lower()))


def is_known_ingredient(
    name: str, ingredients: Sequence[ParsedIngredient], tables: HeuristicTables = DEFAULT_TABLES
) -> bool:
    """Check ``name`` against the list by synonym group and by word containment."""
    canonical = tables.canonical_name(name)
    words = _words(name)
    for ingredient in ingredients:
        existing = ingredient.name.lower()
        if tables.canonical_name(existing) == canonical:
            return True
        existing_words = _words(existing)
        if words and existing_words and (words <= existing_words or existing_words <= words):
            return True
    return False


def count_mentions(name: str, text: str) -> int:
    return len(re.findall(rf"\b{re.escape(name)}\b", text))


def _common_quantity(name: str, tables: HeuristicTables) -> CommonQuantity | None:
    lowered = name.lower()
    return tables.common_quantities.get(lowered) or tables.common_quantities.get(
        tables.canonical_name(lowered)
    )


def score_candidate(
    name: str,
    phrases: Sequence[str],
    instruction_text: str,
    evidence_text: str,
    tables: HeuristicTables = DEFAULT_TABLES,
) -> float:
    """Likelihood that ``name`` is a genuinely missing ingredient.

    Base 0.3, plus 0.5 x the common-table confidence, 0.2 for optional
    wording, 0.1 per mention (up to 0.3) and 0.2 when the evidence names it.
    """
    score = 0.3
    common = _common_quantity(name, tables)
    if common is not None:
        score += 0.5 * common.confidence
    if any(_OPTIONAL_CUES.search(phrase.lower()) for phrase in phrases):
        score += 0.2
    score += min(0.3, 0.1 * count_mentions(name, instruction_text))
    if name in evidence_text.lower():
        score += 0.2
    return round(min(1.0, score), 4)


# ============================================================================
# Engine
# ============================================================================


class IngredientRecoveryEngine:
    """Recovers missing ingredients and quantities for a parsed recipe.

    Example:
        >>> engine = IngredientRecoveryEngine()
        >>> result = await engine.recover(
        ...     [ParsedIngredient(name="pepper")],
        ...     ["Season with salt and pepper."],
        ...     "pepper. Season with salt and pepper.",
        ... )
        >>> [ing.name for ing in result.recovered_ingredients]
        ['pepper', 'salt']
    """

    def __init__(
        self,
        tables: HeuristicTables = DEFAULT_TABLES,
        chat: ChatCompletionService | None = None,
        prompts: PromptLibrary | None = None,
    ) -> None:
        self.tables = tables
        self.chat = chat
        self.prompts = prompts or PromptLibrary()

    async def recover(
        self,
        ingredients: Sequence[ParsedIngredient],
        instructions: Sequence[str],
        evidence_text: str = "",
        options: RecoveryOptions | None = None,
    ) -> RecoveryResult:
        """Run recovery; returns the originals with a note if anything goes wrong."""
        options = options or RecoveryOptions()
        original = tuple(ingredients)
        try:
            return await self._recover(original, list(instructions), evidence_text, options)
        except Exception as e:
            logger.exception("Ingredient recovery failed")
            return RecoveryResult(
                original_ingredients=original,
                recovered_ingredients=original,
                confidence=FAILURE_CONFIDENCE,
                recovery_notes=(f"Recovery failed: {e}",),
            )

    async def _recover(
        self,
        original: tuple[ParsedIngredient, ...],
        instructions: list[str],
        evidence_text: str,
        options: RecoveryOptions,
    ) -> RecoveryResult:
        notes: list[str] = []
        working = list(original)
        instruction_text = " ".join(instructions).lower()

        missing: list[MissingIngredient] = []
        if options.find_missing:
            missing = self.find_missing(working, instructions, evidence_text, options)
            for item in missing:
                working.append(
                    ParsedIngredient(
                        name=item.name,
                        quantity=item.quantity,
                        unit=item.unit,
                        notes="Inferred from instructions",
                        optional=bool(_OPTIONAL_CUES.search(item.source_phrase.lower())),
                        confidence=item.confidence,
                        inferred=True,
                    )
                )
                notes.append(f"Added missing ingredient: {item.name}")

        inferred: list[InferredQuantity] = []
        if options.infer_quantities:
            for index, ingredient in enumerate(working):
                if ingredient.quantity is not None:
                    continue
                guess = await self.infer_quantity(
                    ingredient, instruction_text, instructions, evidence_text, options
                )
                if guess is None or guess.quantity is None:
                    continue
                working[index] = ingredient.model_copy(
                    update={
                        "quantity": guess.quantity,
                        "unit": guess.unit,
                        "inferred": True,
                        "confidence": min(ingredient.confidence, guess.confidence),
                    }
                )
                inferred.append(guess)
                unit = f" {guess.unit}" if guess.unit else ""
                notes.append(f"Inferred quantity for {ingredient.name}: {guess.quantity:g}{unit}")

        inconsistencies: list[Inconsistency] = []
        if options.check_consistency:
            inconsistencies = self.check_consistency(working, instructions)
            notes.append(f"Found {len(inconsistencies)} consistency issue(s)")

        confidence = recovery_confidence(missing, inferred, inconsistencies)
        logger.info(
            f"Recovery added {len(missing)} ingredient(s), inferred {len(inferred)} "
            f"quantity(ies), confidence {confidence:.2f}"
        )
        return RecoveryResult(
            original_ingredients=original,
            recovered_ingredients=tuple(working),
            missing_ingredients=tuple(missing),
            inferred_quantities=tuple(inferred),
            inconsistencies=tuple(inconsistencies),
            confidence=confidence,
            recovery_notes=tuple(notes),
        )

    def find_missing(
        self,
        ingredients: Sequence[ParsedIngredient],
        instructions: Sequence[str],
        evidence_text: str,
        options: RecoveryOptions,
    ) -> list[MissingIngredient]:
        """Scored candidates above ``options.min_confidence``, best first, capped."""
        instruction_text = " ".join(instructions).lower()
        accepted: list[MissingIngredient] = []
        for name, phrases in find_candidates(instructions, self.tables).items():
            if is_known_ingredient(name, ingredients, self.tables):
                continue
            score = score_candidate(name, phrases, instruction_text, evidence_text, self.tables)
            if score < options.min_confidence:
                logger.debug(f"Rejected recovery candidate {name!r} ({score:.2f})")
                continue
            common = _common_quantity(name, self.tables)
            accepted.append(
                MissingIngredient(
                    name=name,
                    confidence=score,
                    mentions=count_mentions(name, instruction_text),
                    quantity=common.quantity if common else None,
                    unit=common.unit if common else None,
                    source_phrase=phrases[0],
                )
            )
        accepted.sort(key=lambda item: item.confidence, reverse=True)
        return accepted[: options.max_inferred]

    async def infer_quantity(
        self,
        ingredient: ParsedIngredient,
        instruction_text: str,
        instructions: Sequence[str],
        evidence_text: str,
        options: RecoveryOptions,
    ) -> InferredQuantity | None:
        """Amount for one ingredient: common table, then context, then the model."""
        name = ingredient.name.lower()
        common = _common_quantity(name, self.tables)
        if common is not None:
            return InferredQuantity(
                ingredient.name, common.quantity, common.unit, common.confidence, METHOD_COMMON
            )

        for contextual in self.tables.contextual_units:
            pattern = contextual.pattern.replace("{name}", re.escape(name))
            if re.search(pattern, instruction_text):
                # "to taste" style matches settle the question without an amount
                return InferredQuantity(
                    ingredient.name,
                    contextual.quantity,
                    contextual.unit,
                    contextual.confidence,
                    METHOD_CONTEXT,
                )

        if options.use_ai and self.chat is not None:
            return await self._infer_with_model(ingredient, instructions, evidence_text)
        return None

    async def _infer_with_model(
        self, ingredient: ParsedIngredient, instructions: Sequence[str], evidence_text: str
    ) -> InferredQuantity | None:
        messages = self.prompts.build(
            PromptKind.INFER_QUANTITY,
            ingredient=ingredient.name,
            instructions="\n".join(instructions),
            context=evidence_text[:AI_CONTEXT_CHARS] or None,
        )
        try:
            raw = await self.chat.complete(messages)
        except (ServiceError, RetryableError) as e:
            logger.warning(f"Model quantity inference failed for {ingredient.name}: {e}")
            return None

        data = extract_json(raw)
        if not isinstance(data, dict):
            return None
        quantity = data.get("quantity")
        if isinstance(quantity, str):
            quantity = parse_quantity(quantity)
        if isinstance(quantity, bool) or not isinstance(quantity, int | float) or quantity <= 0:
            return None
        unit = normalize_unit(data["unit"], self.tables) if data.get("unit") else None
        if unit is not None and unit not in self.tables.units:
            unit = None
        try:
            stated = float(data.get("confidence") or 0.6)
        except (TypeError, ValueError):
            stated = 0.6
        confidence = max(0.0, min(AI_CONFIDENCE_CAP, stated))
        return InferredQuantity(ingredient.name, float(quantity), unit, confidence, METHOD_AI)

    def check_consistency(
        self, ingredients: Sequence[ParsedIngredient], instructions: Sequence[str]
    ) -> list[Inconsistency]:
        """Duplicates, used-but-unlisted and listed-but-unused ingredients."""
        issues: list[Inconsistency] = []
        instruction_text = " ".join(instructions).lower()

        counts = Counter(ingredient.name.strip().lower() for ingredient in ingredients)
        for name, count in counts.items():
            if count > 1:
                issues.append(
                    Inconsistency(
                        InconsistencyType.DUPLICATE,
                        f'Ingredient "{name}" appears {count} times in the list',
                        Severity.MEDIUM,
                        "Combine duplicate ingredients or specify different forms",
                    )
                )

        for name in find_candidates(instructions, self.tables):
            if not is_known_ingredient(name, ingredients, self.tables):
                issues.append(
                    Inconsistency(
                        InconsistencyType.MISSING_IN_INGREDIENTS,
                        f'"{name}" is mentioned in instructions but not in ingredients list',
                        Severity.HIGH,
                        "Add this ingredient to the ingredients list",
                    )
                )

        for ingredient in ingredients:
            if ingredient.optional or self._is_mentioned(ingredient.name, instruction_text):
                continue
            issues.append(
                Inconsistency(
                    InconsistencyType.MISSING_IN_STEPS,
                    f'"{ingredient.name}" is in ingredients but not mentioned in instructions',
                    Severity.MEDIUM,
                    "Add usage instructions or mark as optional",
                )
            )
        return issues

    def _is_mentioned(self, name: str, instruction_text: str) -> bool:
        lowered = name.strip().lower()
        if lowered in instruction_text:
            return True
        key = self.tables.canonical_name(lowered)
        for group_key, variants in self.tables.synonyms.items():
            group = (group_key, *variants)
            if key == group_key or any(variant in lowered for variant in group):
                if any(variant in instruction_text for variant in group):
                    return True
        return False


def recovery_confidence(
    missing: Sequence[MissingIngredient],
    inferred: Sequence[InferredQuantity],
    inconsistencies: Sequence[Inconsistency],
) -> float:
    """Overall confidence in a recovery pass, clamped to [0, 1]."""
    confidence = BASE_CONFIDENCE
    if missing:
        confidence += sum(item.confidence for item in missing) / len(missing) * 0.2
    if inferred:
        confidence += sum(item.confidence for item in inferred) / len(inferred) * 0.1
    confidence -= 0.2 * sum(1 for issue in inconsistencies if issue.severity is Severity.HIGH)
    confidence -= 0.1 * sum(1 for issue in inconsistencies if issue.severity is Severity.MEDIUM)
    return round(max(0.0, min(1.0, confidence)), 4)
