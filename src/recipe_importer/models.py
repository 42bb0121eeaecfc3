"""Data models for recipe imports.

The canonical recipe and its ingredients are pydantic models so that the
invariants (at least one ingredient and one step, bounded times and
servings, a non-placeholder title) are enforced at construction. Result
records produced by the validator, recovery engine and pipeline are frozen
dataclasses: they are created once and never mutated after return.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .tables import DEFAULT_TABLES

MAX_TITLE_LENGTH = 200
MAX_INGREDIENT_NAME_LENGTH = 100
MIN_INSTRUCTION_LENGTH = 3
MAX_MINUTES = 1440
MAX_SERVINGS = 100


# ============================================================================
# Enumerations
# ============================================================================


class Difficulty(str, Enum):
    """Recipe difficulty levels."""

    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class InputKind(str, Enum):
    """Coarse input type reported by the classifier."""

    URL = "url"
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"


class SourceKind(str, Enum):
    """Routing decision for an import request."""

    RECIPE_URL = "recipe-url"
    VIDEO_URL = "video-url"
    TEXT = "text"
    IMAGE_FILE = "image-file"
    VIDEO_FILE = "video-file"


class Severity(str, Enum):
    """Severity of a validation issue or inconsistency."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ErrorCode(str, Enum):
    """Validator-level error taxonomy."""

    INVALID_JSON = "INVALID_JSON"
    MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"
    INVALID_TYPE = "INVALID_TYPE"
    INVALID_FORMAT = "INVALID_FORMAT"
    VALUE_OUT_OF_RANGE = "VALUE_OUT_OF_RANGE"
    INVALID_ENUM_VALUE = "INVALID_ENUM_VALUE"
    EMPTY_ARRAY = "EMPTY_ARRAY"
    PATTERN_MISMATCH = "PATTERN_MISMATCH"
    CUSTOM_VALIDATION_FAILED = "CUSTOM_VALIDATION_FAILED"
    LOW_CONFIDENCE = "LOW_CONFIDENCE"
    PARTIAL_DATA = "PARTIAL_DATA"


# ============================================================================
# Recipe Models
# ============================================================================


class ParsedIngredient(BaseModel):
    """A single ingredient split into quantity, unit and name.

    ``inferred`` is True when the value was not read verbatim from the input
    (recovered from instructions, or a quantity filled from defaults).
    """

    name: str = Field(
        min_length=1,
        max_length=MAX_INGREDIENT_NAME_LENGTH,
        description="Ingredient name without quantity or unit",
        examples=["all-purpose flour", "red chilli"],
    )
    quantity: float | None = Field(None, ge=0, description="Numeric amount", examples=[2, 0.5])
    unit: str | None = Field(
        None,
        description="Unit from the closed unit vocabulary",
        examples=["cup", "tbsp", "g"],
    )
    notes: str | None = Field(None, description="Preparation notes", examples=["finely chopped"])
    optional: bool = False
    confidence: float = Field(1.0, ge=0.0, le=1.0)
    inferred: bool = False

    model_config = ConfigDict(extra="forbid")

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Ingredient name must not be blank")
        return value

    @field_validator("unit")
    @classmethod
    def _check_unit(cls, value: str | None) -> str | None:
        if value is None:
            return None
        unit = value.strip().lower()
        if unit not in DEFAULT_TABLES.units:
            raise ValueError(f"Unknown unit: {value!r}")
        return unit

    def display(self) -> str:
        """Render as a single ingredient line, e.g. ``"2 cup flour"``."""
        parts: list[str] = []
        if self.quantity is not None:
            parts.append(format_quantity(self.quantity))
        if self.unit:
            parts.append(self.unit)
        parts.append(self.name)
        text = " ".join(parts)
        if self.notes:
            text = f"{text}, {self.notes}"
        if self.optional:
            text = f"{text} (optional)"
        return text


class CanonicalRecipe(BaseModel):
    """The structured, validated recipe record produced by an import."""

    title: str = Field(min_length=1, max_length=MAX_TITLE_LENGTH)
    description: str | None = None
    image_url: str | None = None
    ingredients: list[ParsedIngredient] = Field(min_length=1)
    instructions: list[str] = Field(min_length=1)
    prep_time: int | None = Field(None, ge=0, le=MAX_MINUTES, description="Minutes")
    cook_time: int | None = Field(None, ge=0, le=MAX_MINUTES, description="Minutes")
    servings: int | None = Field(None, ge=1, le=MAX_SERVINGS)
    difficulty: Difficulty | None = None
    cuisine: str | None = None
    tags: set[str] = Field(default_factory=set)
    confidence: float = Field(ge=0.0, le=1.0)

    model_config = ConfigDict(extra="forbid")

    @field_validator("title")
    @classmethod
    def _check_title(cls, value: str) -> str:
        value = value.strip()
        if is_placeholder_title(value):
            raise ValueError(f"Placeholder title is not allowed: {value!r}")
        return value

    @field_validator("instructions")
    @classmethod
    def _check_instructions(cls, value: list[str]) -> list[str]:
        steps = [step.strip() for step in value]
        for step in steps:
            if len(step) < MIN_INSTRUCTION_LENGTH:
                raise ValueError(
                    f"Instruction shorter than {MIN_INSTRUCTION_LENGTH} characters: {step!r}"
                )
        return steps

    @property
    def inferred_ingredients(self) -> list[ParsedIngredient]:
        """Ingredients that were not read verbatim from the input."""
        return [ing for ing in self.ingredients if ing.inferred]

    def to_text(self) -> str:
        """Render the recipe as labeled plain text."""
        lines = [self.title, "", "Ingredients:"]
        lines.extend(f"- {ing.display()}" for ing in self.ingredients)
        lines.extend(["", "Instructions:"])
        lines.extend(f"{i}. {step}" for i, step in enumerate(self.instructions, 1))
        return "\n".join(lines)


def is_placeholder_title(title: str) -> bool:
    """Check whether a title is a generic placeholder like "Untitled Recipe"."""
    return title.strip().lower() in DEFAULT_TABLES.placeholder_titles


def format_quantity(quantity: float) -> str:
    """Format a quantity without trailing zeros (2.0 -> "2", 0.5 -> "0.5")."""
    if float(quantity).is_integer():
        return str(int(quantity))
    return f"{quantity:.3f}".rstrip("0").rstrip(".")


# ============================================================================
# Evidence
# ============================================================================


@dataclass(frozen=True)
class EvidenceFragment:
    """One piece of text obtained before generative parsing."""

    source: str
    text: str


@dataclass
class ExtractionEvidence:
    """Every text fragment gathered for one import, tagged per source.

    Lives only for the duration of a single import call and is the reference
    the fidelity guard checks generated content against.
    """

    fragments: list[EvidenceFragment] = field(default_factory=list)

    def add(self, source: str, text: str | None) -> None:
        """Append a fragment; blank text is ignored."""
        if text and text.strip():
            self.fragments.append(EvidenceFragment(source=source, text=text.strip()))

    @property
    def text(self) -> str:
        """Concatenation of all fragments."""
        return "\n\n".join(fragment.text for fragment in self.fragments)

    @property
    def sizes(self) -> dict[str, int]:
        """Total characters per source."""
        sizes: dict[str, int] = {}
        for fragment in self.fragments:
            sizes[fragment.source] = sizes.get(fragment.source, 0) + len(fragment.text)
        return sizes

    def __bool__(self) -> bool:
        return bool(self.fragments)


# ============================================================================
# Validation Results
# ============================================================================


@dataclass(frozen=True)
class ValidationIssue:
    """A single schema or domain problem found by the response validator."""

    code: ErrorCode
    message: str
    severity: Severity
    field: str | None = None
    recoverable: bool = True

    def __str__(self) -> str:
        location = f" [{self.field}]" if self.field else ""
        return f"{self.code.value}{location}: {self.message}"


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of one validation call.

    Attributes:
        is_valid: No critical errors and confidence acceptable (or partial allowed)
        data: Cleaned object; None unless the result is valid
        errors: Issues in the order they were found
        warnings: Non-error observations
        confidence: 1.0 minus severity penalties, clamped to [0, 1]
        fallback_used: True when the data came from a fallback parser
    """

    is_valid: bool
    data: dict[str, Any] | None
    errors: tuple[ValidationIssue, ...] = ()
    warnings: tuple[str, ...] = ()
    confidence: float = 0.0
    fallback_used: bool = False

    @property
    def critical_errors(self) -> list[ValidationIssue]:
        """Errors with critical severity."""
        return [e for e in self.errors if e.severity is Severity.CRITICAL]

    def has_error(self, code: ErrorCode) -> bool:
        """Check whether an error with the given code was recorded."""
        return any(e.code is code for e in self.errors)


# ============================================================================
# Recovery Results
# ============================================================================


class InconsistencyType(str, Enum):
    """Kinds of ingredient/instruction mismatches."""

    DUPLICATE = "duplicate"
    MISSING_IN_INGREDIENTS = "missing_in_ingredients"
    MISSING_IN_STEPS = "missing_in_steps"


@dataclass(frozen=True)
class Inconsistency:
    """A mismatch between the ingredient list and the instructions."""

    type: InconsistencyType
    description: str
    severity: Severity
    suggestion: str


@dataclass(frozen=True)
class MissingIngredient:
    """An ingredient referenced in the instructions but absent from the list."""

    name: str
    confidence: float
    mentions: int
    quantity: float | None = None
    unit: str | None = None
    source_phrase: str = ""


@dataclass(frozen=True)
class InferredQuantity:
    """A quantity filled in for an ingredient that had none."""

    ingredient: str
    quantity: float | None
    unit: str | None
    confidence: float
    method: str


@dataclass(frozen=True)
class RecoveryResult:
    """Output of the ingredient recovery engine.

    ``recovered_ingredients`` supersedes the original list. The engine never
    mutates its inputs.
    """

    original_ingredients: tuple[ParsedIngredient, ...]
    recovered_ingredients: tuple[ParsedIngredient, ...]
    missing_ingredients: tuple[MissingIngredient, ...] = ()
    inferred_quantities: tuple[InferredQuantity, ...] = ()
    inconsistencies: tuple[Inconsistency, ...] = ()
    confidence: float = 0.7
    recovery_notes: tuple[str, ...] = ()


# ============================================================================
# Provenance
# ============================================================================


@dataclass(frozen=True)
class SupportRates:
    """Fraction of ingredients and steps that share a token with the evidence."""

    ingredient_support: float
    step_support: float

    def meets(self, min_ingredient: float, min_step: float) -> bool:
        """Check both rates against minimums."""
        return self.ingredient_support >= min_ingredient and self.step_support >= min_step


@dataclass(frozen=True)
class ImportProvenance:
    """Write-once record of how a recipe was obtained."""

    source_kind: SourceKind
    method: str
    platform: str | None = None
    method_confidences: tuple[tuple[str, float], ...] = ()
    parser_notes: tuple[str, ...] = ()
    abstain_reason: str | None = None
    fallback_used: bool = False
    support: SupportRates | None = None
    structured: bool = False

    def confidence_for(self, method: str) -> float | None:
        """Look up the confidence recorded for a method tag."""
        for name, confidence in self.method_confidences:
            if name == method:
                return confidence
        return None


@dataclass(frozen=True)
class ImportResult:
    """What the public entry points return."""

    recipe: CanonicalRecipe
    provenance: ImportProvenance
    recovery: RecoveryResult | None = None
