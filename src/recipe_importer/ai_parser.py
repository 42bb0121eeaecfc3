"""Generative recipe parsing with single- and multi-stage modes.

Single-stage mode asks for the whole schema in one call and optionally
follows with a consistency check. Multi-stage mode splits the work:

1. Initial extraction, explicit content only
2. Ingredient enhancement (unit normalization, missing ingredients)
3. Instruction validation against the enhanced ingredient list
4. Final scoring

The overall confidence is the minimum of the per-stage confidences, so a
weak stage is never averaged away. Whole attempts are retried with a
linearly growing delay; an explicit abstain from the model is never retried.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from .exceptions import (
    ImportAbstainError,
    ParsingFailedAfterRetriesError,
    RecipeValidationError,
    RetryableError,
)
from .fidelity import parse_abstain
from .ingredient_parser import normalize_unit, parse_ingredient_line, parse_quantity
from .models import (
    MAX_INGREDIENT_NAME_LENGTH,
    MIN_INSTRUCTION_LENGTH,
    CanonicalRecipe,
    Difficulty,
    ErrorCode,
    ParsedIngredient,
    ValidationResult,
)
from .prompt_library import PromptKind, PromptLibrary
from .protocols import ChatCompletionService, ResponseValidatorStrategy
from .response_validator import (
    FINAL_STAGE_SCHEMA,
    INGREDIENTS_STAGE_SCHEMA,
    INSTRUCTIONS_STAGE_SCHEMA,
    RECIPE_SCHEMA,
    EnhancedResponseValidator,
    Schema,
    create_validation_summary,
    extract_json,
)
from .retry import Err, linear_backoff, retry_async
from .tables import DEFAULT_TABLES, HeuristicTables

logger = logging.getLogger(__name__)

RETRYABLE_PARSE_ERRORS = (RecipeValidationError, RetryableError)


@dataclass(frozen=True)
class ParseOutcome:
    """A parsed recipe plus how the parser got there.

    Attributes:
        recipe: Canonical recipe built from the model output
        confidence: Minimum of the stage confidences
        stage_confidences: ``(stage, confidence)`` pairs in execution order
        attempts: Number of whole attempts used
        notes: Advisory observations (low confidence, issues, fallbacks)
        missing_ingredients: Ingredients the instruction stage found missing
        fallback_used: True when the validator had to fall back to regex parsing
    """

    recipe: CanonicalRecipe
    confidence: float
    stage_confidences: tuple[tuple[str, float], ...]
    attempts: int = 1
    notes: tuple[str, ...] = ()
    missing_ingredients: tuple[str, ...] = ()
    fallback_used: bool = False


@dataclass
class _Attempt:
    """Mutable scratch state for one parsing attempt."""

    stages: list[tuple[str, float]] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)
    fallback_used: bool = False

    def record(self, stage: str, confidence: float) -> None:
        self.stages.append((stage, round(max(0.0, min(1.0, confidence)), 4)))

    @property
    def confidence(self) -> float:
        return min(c for _, c in self.stages) if self.stages else 0.0


class AiRecipeParser:
    """Turns evidence text into a ``CanonicalRecipe`` through a chat model.

    Example:
        >>> parser = AiRecipeParser(chat, EnhancedResponseValidator())
        >>> outcome = await parser.parse(text, source="text")
        >>> outcome.recipe.title
        'Tomato Soup'
    """

    def __init__(
        self,
        chat: ChatCompletionService,
        validator: ResponseValidatorStrategy | None = None,
        prompts: PromptLibrary | None = None,
        *,
        tables: HeuristicTables = DEFAULT_TABLES,
        use_multi_stage: bool = True,
        max_attempts: int = 3,
        retry_delay: float = 1.0,
        confidence_threshold: float = 0.7,
        consistency_pass: bool = True,
        allow_partial_data: bool = True,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.chat = chat
        self.validator = validator or EnhancedResponseValidator()
        self.prompts = prompts or PromptLibrary()
        self.tables = tables
        self.use_multi_stage = use_multi_stage
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.confidence_threshold = confidence_threshold
        self.consistency_pass = consistency_pass
        self.allow_partial_data = allow_partial_data
        self.sleep = sleep

    async def parse(
        self,
        text: str,
        source: str = "text",
        kind: PromptKind = PromptKind.IMPORT_TEXT,
    ) -> ParseOutcome:
        """Parse ``text`` into a recipe, retrying whole attempts on failure.

        Args:
            text: Evidence text
            source: Evidence source label used in abstain errors
            kind: Prompt used for single-stage parsing

        Raises:
            ImportAbstainError: The model declined; not retried
            ParsingFailedAfterRetriesError: Every attempt failed
        """
        mode = "multi-stage" if self.use_multi_stage else "single-stage"
        logger.info(f"Parsing {len(text)} chars from {source} ({mode})")

        async def attempt() -> ParseOutcome:
            if self.use_multi_stage:
                return await self._parse_multi_stage(text, source)
            return await self._parse_single_stage(text, source, kind)

        result = await retry_async(
            attempt,
            max_attempts=self.max_attempts,
            backoff=linear_backoff(self.retry_delay),
            retryable=RETRYABLE_PARSE_ERRORS,
            sleep=self.sleep,
            name=f"{mode} parse",
        )
        if isinstance(result, Err):
            if isinstance(result.error, ImportAbstainError):
                raise result.error
            raise ParsingFailedAfterRetriesError(
                result.attempts, result.error, source=source
            ) from result.error

        outcome = result.value
        logger.info(
            f"Parsed '{outcome.recipe.title}' with {len(outcome.recipe.ingredients)} ingredients, "
            f"{len(outcome.recipe.instructions)} steps (confidence {outcome.confidence:.2f})"
        )
        return ParseOutcome(
            recipe=outcome.recipe,
            confidence=outcome.confidence,
            stage_confidences=outcome.stage_confidences,
            attempts=result.attempts,
            notes=outcome.notes,
            missing_ingredients=outcome.missing_ingredients,
            fallback_used=outcome.fallback_used,
        )

    # ------------------------------------------------------------------
    # Modes
    # ------------------------------------------------------------------

    async def _parse_single_stage(self, text: str, source: str, kind: PromptKind) -> ParseOutcome:
        state = _Attempt()
        data = await self._call(kind, RECIPE_SCHEMA, source, state, "single", text=text)
        recipe = normalize_recipe_data(data, self.tables)

        if self.consistency_pass:
            try:
                review = await self._call(
                    PromptKind.PARSE_FINAL,
                    FINAL_STAGE_SCHEMA,
                    source,
                    state,
                    "consistency",
                    text=text,
                    recipe=recipe_payload(recipe),
                )
                state.notes.extend(str(issue) for issue in review.get("issues") or [])
            except RecipeValidationError as e:
                logger.warning(f"Consistency pass skipped: {e}")
                state.notes.append("Consistency pass failed; using single-stage confidence")

        return self._finish(recipe, state)

    async def _parse_multi_stage(self, text: str, source: str) -> ParseOutcome:
        state = _Attempt()

        initial = await self._call(
            PromptKind.PARSE_INITIAL, RECIPE_SCHEMA, source, state, "initial", text=text
        )

        enhanced = await self._call(
            PromptKind.PARSE_ENHANCE_INGREDIENTS,
            INGREDIENTS_STAGE_SCHEMA,
            source,
            state,
            "enhance_ingredients",
            text=text,
            ingredients=initial.get("ingredients"),
            instructions=initial.get("instructions"),
        )

        checked = await self._call(
            PromptKind.PARSE_VALIDATE_INSTRUCTIONS,
            INSTRUCTIONS_STAGE_SCHEMA,
            source,
            state,
            "validate_instructions",
            text=text,
            ingredients=enhanced.get("ingredients"),
            instructions=initial.get("instructions"),
        )
        state.missing.extend(str(name) for name in checked.get("missingIngredients") or [])

        recipe = normalize_recipe_data(
            {**initial, "ingredients": enhanced["ingredients"], "instructions": checked["instructions"]},
            self.tables,
        )

        review = await self._call(
            PromptKind.PARSE_FINAL,
            FINAL_STAGE_SCHEMA,
            source,
            state,
            "final",
            text=text,
            recipe=recipe_payload(recipe),
        )
        state.notes.extend(str(issue) for issue in review.get("issues") or [])

        return self._finish(recipe, state)

    def _finish(self, recipe: CanonicalRecipe, state: _Attempt) -> ParseOutcome:
        confidence = state.confidence
        if confidence < self.confidence_threshold:
            message = f"Parser confidence {confidence:.2f} below threshold {self.confidence_threshold}"
            if not self.allow_partial_data:
                raise RecipeValidationError(message, confidence=confidence)
            logger.warning(message)
            state.notes.append(message)
        if state.missing:
            state.notes.append(f"Instructions reference missing ingredients: {', '.join(state.missing)}")

        return ParseOutcome(
            recipe=recipe.model_copy(update={"confidence": confidence}),
            confidence=confidence,
            stage_confidences=tuple(state.stages),
            notes=tuple(state.notes),
            missing_ingredients=tuple(state.missing),
            fallback_used=state.fallback_used,
        )

    # ------------------------------------------------------------------
    # One model call
    # ------------------------------------------------------------------

    async def _call(
        self,
        kind: PromptKind,
        schema: Schema,
        source: str,
        state: _Attempt,
        stage: str,
        **payload: Any,
    ) -> dict[str, Any]:
        """Run one prompt, reject abstains and invalid responses, record confidence."""
        logger.debug(f"Stage {stage}: prompt {kind.value}")
        raw = await self.chat.complete(self.prompts.build(kind, **payload))

        verdict = parse_abstain(extract_json(raw))
        if verdict is not None:
            raise ImportAbstainError(source, verdict.reason, list(verdict.missing), stage=stage)

        result = self.validator.validate(raw, schema)
        self._check_validation(result, stage)
        data = result.data or {}

        state.fallback_used = state.fallback_used or result.fallback_used
        stated = data.get("confidence")
        stated = float(stated) if isinstance(stated, (int, float)) and not isinstance(stated, bool) else 1.0
        state.record(stage, min(stated, result.confidence))
        return data

    def _check_validation(self, result: ValidationResult, stage: str) -> None:
        if not result.is_valid or result.data is None:
            raise RecipeValidationError(
                "Model response failed validation",
                stage=stage,
                summary=create_validation_summary(result),
            )
        if result.has_error(ErrorCode.PARTIAL_DATA):
            raise RecipeValidationError("Model response replaced by placeholder data", stage=stage)


# ============================================================================
# Normalization
# ============================================================================


def _first(data: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return int(round(value))
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _as_confidence(value: Any, default: float = 1.0) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return max(0.0, min(1.0, float(value)))
    return default


def normalize_ingredient(item: Any, tables: HeuristicTables = DEFAULT_TABLES) -> ParsedIngredient | None:
    """Convert one model-produced ingredient (string or object) to a ``ParsedIngredient``."""
    if isinstance(item, str):
        return parse_ingredient_line(item, tables) if item.strip() else None
    if not isinstance(item, dict):
        return None

    name = str(item.get("name") or "").strip()
    if not name:
        return None

    quantity = item.get("quantity")
    if isinstance(quantity, str):
        quantity = parse_quantity(quantity, tables)
    if isinstance(quantity, bool) or not isinstance(quantity, (int, float)) or quantity < 0:
        quantity = None

    notes = str(item["notes"]).strip() if item.get("notes") else None
    unit = None
    raw_unit = item.get("unit")
    if isinstance(raw_unit, str) and raw_unit.strip():
        unit = normalize_unit(raw_unit, tables)
        if unit is None:
            # keep unrecognized units visible rather than dropping them
            notes = f"{raw_unit.strip()}; {notes}" if notes else raw_unit.strip()

    return ParsedIngredient(
        name=name[:MAX_INGREDIENT_NAME_LENGTH],
        quantity=float(quantity) if quantity is not None else None,
        unit=unit,
        notes=notes,
        optional=bool(item.get("optional", False)),
        confidence=_as_confidence(item.get("confidence")),
        inferred=bool(item.get("inferred", False)),
    )


def normalize_instruction(item: Any) -> str | None:
    """Accept a step string or a ``{"text": ...}`` object."""
    if isinstance(item, dict):
        item = item.get("text") or item.get("name")
    if not isinstance(item, str):
        return None
    step = " ".join(item.split())
    return step if len(step) >= MIN_INSTRUCTION_LENGTH else None


def normalize_recipe_data(
    data: dict[str, Any],
    tables: HeuristicTables = DEFAULT_TABLES,
    confidence: float | None = None,
) -> CanonicalRecipe:
    """Build a ``CanonicalRecipe`` from validated model output.

    Accepts camelCase and snake_case keys, plus ``name``/``steps`` aliases.

    Raises:
        RecipeValidationError: If no ingredients or instructions survive, or
            the result violates the canonical recipe invariants
    """
    ingredients = [
        ing
        for ing in (normalize_ingredient(item, tables) for item in data.get("ingredients") or [])
        if ing is not None
    ]
    if not ingredients:
        raise RecipeValidationError("Recipe has no ingredients", field="ingredients")

    instructions = [
        step
        for step in (normalize_instruction(item) for item in _first(data, "instructions", "steps") or [])
        if step is not None
    ]
    if not instructions:
        raise RecipeValidationError("Recipe has no instructions", field="instructions")

    difficulty = data.get("difficulty")
    tags = data.get("tags") or []

    try:
        return CanonicalRecipe(
            title=str(_first(data, "title", "name") or "").strip(),
            description=_first(data, "description") or None,
            image_url=_first(data, "imageUrl", "image_url") or None,
            ingredients=ingredients,
            instructions=instructions,
            prep_time=_as_int(_first(data, "prepTime", "prep_time")),
            cook_time=_as_int(_first(data, "cookTime", "cook_time")),
            servings=_as_int(data.get("servings")),
            difficulty=difficulty if difficulty in {d.value for d in Difficulty} else None,
            cuisine=_first(data, "cuisine") or None,
            tags={str(tag).strip() for tag in tags if str(tag).strip()} if isinstance(tags, list) else set(),
            confidence=confidence if confidence is not None else _as_confidence(data.get("confidence"), 0.5),
        )
    except ValidationError as e:
        raise RecipeValidationError(
            "Parsed data violates recipe constraints", errors=e.error_count(), detail=str(e)
        ) from e


def recipe_payload(recipe: CanonicalRecipe) -> dict[str, Any]:
    """Compact JSON-ready view of a recipe for follow-up prompts."""
    return {
        "title": recipe.title,
        "ingredients": [ing.model_dump(exclude_none=True) for ing in recipe.ingredients],
        "instructions": recipe.instructions,
    }
