"""Validation of raw model responses against a declared recipe schema.

Model output is untrusted text. ``validate_ai_response`` extracts JSON from
it (tolerating code fences, chatter and common syntax slips), walks the
schema field by field, cleans what can be cleaned in place and scores the
result. Field-level problems are returned as data in ``ValidationResult``;
nothing here raises for a bad response.

Two strategies satisfy ``ResponseValidatorStrategy`` and are chosen by
configuration: ``BasicResponseValidator`` (JSON + required fields) and
``EnhancedResponseValidator`` (full schema walk with fallback parsers).
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Literal

from .models import (
    MAX_INGREDIENT_NAME_LENGTH,
    MAX_MINUTES,
    MAX_SERVINGS,
    MAX_TITLE_LENGTH,
    ErrorCode,
    Severity,
    ValidationIssue,
    ValidationResult,
    is_placeholder_title,
)
from .tables import DEFAULT_TABLES

logger = logging.getLogger(__name__)

FieldType = Literal["string", "number", "boolean", "array", "object"]
FallbackStrategy = Literal["simple", "template", "none"]

SEVERITY_PENALTIES = {
    Severity.CRITICAL: 0.5,
    Severity.HIGH: 0.2,
    Severity.MEDIUM: 0.1,
    Severity.LOW: 0.05,
}
WARNING_PENALTY = 0.02
COMPLETENESS_BONUS = 0.1
SIMPLE_FALLBACK_CONFIDENCE = 0.3
TEMPLATE_FALLBACK_CONFIDENCE = 0.2
TEMPLATE_TITLE = "Extracted Recipe"

CustomCheck = Callable[[Any], "ValidationIssue | None"]


@dataclass
class FieldSchema:
    """Declared shape of one field.

    ``items`` describes array elements and ``properties`` the keys of an
    object; both are validated recursively. ``custom`` may return one extra
    domain issue for the value.
    """

    type: FieldType
    required: bool = False
    minimum: float | None = None
    maximum: float | None = None
    min_length: int | None = None
    max_length: int | None = None
    enum: tuple[Any, ...] | None = None
    pattern: re.Pattern[str] | None = None
    items: FieldSchema | None = None
    properties: dict[str, FieldSchema] | None = None
    custom: CustomCheck | None = None


Schema = dict[str, FieldSchema]


@dataclass(frozen=True)
class ValidatorOptions:
    """Options for a validation call.

    Attributes:
        strict_mode: Report fields the schema does not declare as warnings
        allow_partial_data: Accept results below ``confidence_threshold``
        fallback_strategy: Parser to use when no JSON can be extracted
        confidence_threshold: Minimum confidence for an unqualified pass
    """

    strict_mode: bool = False
    allow_partial_data: bool = True
    fallback_strategy: FallbackStrategy = "simple"
    confidence_threshold: float = 0.5


# =============================================================================
# Recipe schema
# =============================================================================


def _check_title(value: str) -> ValidationIssue | None:
    if is_placeholder_title(value):
        return ValidationIssue(
            ErrorCode.CUSTOM_VALIDATION_FAILED,
            f"Placeholder title '{value}' is not a real recipe name",
            Severity.HIGH,
        )
    return None


def _check_ingredients(ingredients: list[Any]) -> ValidationIssue | None:
    if not ingredients:
        return ValidationIssue(
            ErrorCode.EMPTY_ARRAY, "Recipe has no ingredients", Severity.CRITICAL, recoverable=False
        )
    low = [
        item
        for item in ingredients
        if isinstance(item, dict) and _is_number(item.get("confidence")) and item["confidence"] < 0.5
    ]
    if low:
        return ValidationIssue(
            ErrorCode.LOW_CONFIDENCE,
            f"{len(low)} ingredient(s) have confidence below 0.5",
            Severity.LOW,
        )
    return None


def _check_instructions(instructions: list[Any]) -> ValidationIssue | None:
    if not instructions:
        return ValidationIssue(
            ErrorCode.EMPTY_ARRAY, "Recipe has no instructions", Severity.CRITICAL, recoverable=False
        )
    short = [step for step in instructions if isinstance(step, str) and len(step.strip()) < 10]
    if len(short) > len(instructions) * 0.3:
        return ValidationIssue(
            ErrorCode.CUSTOM_VALIDATION_FAILED,
            f"{len(short)} of {len(instructions)} instructions are very short",
            Severity.MEDIUM,
        )
    return None


INGREDIENT_SCHEMA = FieldSchema(
    type="object",
    properties={
        "name": FieldSchema("string", required=True, min_length=1, max_length=MAX_INGREDIENT_NAME_LENGTH),
        "quantity": FieldSchema("number", minimum=0, maximum=1000),
        "unit": FieldSchema("string", max_length=20, enum=tuple(sorted(DEFAULT_TABLES.units))),
        "notes": FieldSchema("string", max_length=200),
        "optional": FieldSchema("boolean"),
        "inferred": FieldSchema("boolean"),
        "confidence": FieldSchema("number", minimum=0, maximum=1),
    },
)

RECIPE_SCHEMA: Schema = {
    "title": FieldSchema(
        "string", required=True, min_length=1, max_length=MAX_TITLE_LENGTH, custom=_check_title
    ),
    "description": FieldSchema("string", max_length=1000),
    "imageUrl": FieldSchema("string", max_length=2000),
    "ingredients": FieldSchema(
        "array", required=True, items=INGREDIENT_SCHEMA, custom=_check_ingredients
    ),
    "instructions": FieldSchema(
        "array",
        required=True,
        items=FieldSchema("string", min_length=5, max_length=500),
        custom=_check_instructions,
    ),
    "prepTime": FieldSchema("number", minimum=0, maximum=MAX_MINUTES),
    "cookTime": FieldSchema("number", minimum=0, maximum=MAX_MINUTES),
    "servings": FieldSchema("number", minimum=1, maximum=MAX_SERVINGS),
    "difficulty": FieldSchema("string", enum=("easy", "medium", "hard")),
    "cuisine": FieldSchema("string", max_length=100),
    "tags": FieldSchema("array", items=FieldSchema("string", max_length=50)),
    "confidence": FieldSchema("number", required=True, minimum=0, maximum=1),
}

# Stage-specific schemas for the multi-stage parser
INGREDIENTS_STAGE_SCHEMA: Schema = {
    "ingredients": FieldSchema(
        "array", required=True, items=INGREDIENT_SCHEMA, custom=_check_ingredients
    ),
    "confidence": FieldSchema("number", required=True, minimum=0, maximum=1),
}

INSTRUCTIONS_STAGE_SCHEMA: Schema = {
    "instructions": FieldSchema(
        "array",
        required=True,
        items=FieldSchema("string", min_length=5, max_length=500),
        custom=_check_instructions,
    ),
    "missingIngredients": FieldSchema("array", items=FieldSchema("string")),
    "confidence": FieldSchema("number", required=True, minimum=0, maximum=1),
}

FINAL_STAGE_SCHEMA: Schema = {
    "confidence": FieldSchema("number", required=True, minimum=0, maximum=1),
    "issues": FieldSchema("array", items=FieldSchema("string")),
}


# =============================================================================
# JSON extraction
# =============================================================================

_FENCE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.I)


def extract_json(response: str) -> Any | None:
    """Pull a JSON value out of a model response.

    Tries, in order: the whole trimmed response, the first fenced code
    block, the outermost ``{...}`` span, the outermost ``[...]`` span, and a
    cleanup pass (quote normalization, trailing commas, bare keys).

    Returns:
        The decoded value, or None if every strategy fails
    """
    trimmed = response.strip()
    candidates = [trimmed]

    fence = _FENCE.search(trimmed)
    if fence:
        candidates.append(fence.group(1).strip())

    for opener, closer in (("{", "}"), ("[", "]")):
        start, end = trimmed.find(opener), trimmed.rfind(closer)
        if start != -1 and end > start:
            candidates.append(trimmed[start : end + 1])

    for candidate in candidates:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue

    cleaned = clean_json_string(trimmed)
    if cleaned != trimmed:
        try:
            return json.loads(cleaned)
        except json.JSONDecodeError:
            logger.debug("JSON cleanup pass did not produce parseable JSON")
    return None


def clean_json_string(text: str) -> str:
    """Best-effort repair of almost-JSON."""
    text = re.sub(r"^[^{\[]*", "", text)
    text = re.sub(r"[^}\]]*$", "", text)
    text = text.replace("“", '"').replace("”", '"').replace("‘", "'").replace("’", "'")
    text = re.sub(r"(?<![A-Za-z])'|'(?![A-Za-z])", '"', text)
    text = re.sub(r",(\s*[}\]])", r"\1", text)
    text = re.sub(r"([{,]\s*)([A-Za-z_]\w*)\s*:", r'\1"\2":', text)
    return text


# =============================================================================
# Schema walk
# =============================================================================


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value == value


def _type_matches(value: Any, expected: FieldType) -> bool:
    if expected == "string":
        return isinstance(value, str)
    if expected == "number":
        return _is_number(value)
    if expected == "boolean":
        return isinstance(value, bool)
    if expected == "array":
        return isinstance(value, list)
    return isinstance(value, dict)


def validate_field(value: Any, rule: FieldSchema, path: str) -> list[ValidationIssue]:
    """Validate one value against its rule, recursing into arrays and objects."""
    issues: list[ValidationIssue] = []

    if value is None:
        if rule.required:
            issues.append(
                ValidationIssue(
                    ErrorCode.MISSING_REQUIRED_FIELD,
                    f"Required field '{path}' is missing",
                    Severity.CRITICAL,
                    field=path,
                    recoverable=False,
                )
            )
        return issues

    if not _type_matches(value, rule.type):
        issues.append(
            ValidationIssue(
                ErrorCode.INVALID_TYPE,
                f"Field '{path}' should be of type {rule.type}, got {type(value).__name__}",
                Severity.HIGH,
                field=path,
            )
        )
        return issues

    if rule.type == "string":
        length = len(value.strip())
        if rule.min_length is not None and length < rule.min_length:
            issues.append(_range_issue(path, f"is too short ({length} < {rule.min_length})"))
        if rule.max_length is not None and length > rule.max_length:
            issues.append(_range_issue(path, f"is too long ({length} > {rule.max_length})"))
        if rule.pattern is not None and not rule.pattern.search(value):
            issues.append(
                ValidationIssue(
                    ErrorCode.PATTERN_MISMATCH,
                    f"Field '{path}' does not match required pattern",
                    Severity.MEDIUM,
                    field=path,
                )
            )

    if rule.type == "number":
        if rule.minimum is not None and value < rule.minimum:
            issues.append(_range_issue(path, f"is below minimum ({value} < {rule.minimum})"))
        if rule.maximum is not None and value > rule.maximum:
            issues.append(_range_issue(path, f"is above maximum ({value} > {rule.maximum})"))

    if rule.enum is not None and value not in rule.enum:
        issues.append(
            ValidationIssue(
                ErrorCode.INVALID_ENUM_VALUE,
                f"Field '{path}' has invalid value '{value}', expected one of: "
                f"{', '.join(map(str, rule.enum))}",
                Severity.MEDIUM,
                field=path,
            )
        )

    if rule.type == "array" and rule.items is not None:
        for index, item in enumerate(value):
            if item is not None:
                issues.extend(validate_field(item, rule.items, f"{path}[{index}]"))

    if rule.type == "object" and rule.properties is not None:
        for name, prop_rule in rule.properties.items():
            issues.extend(validate_field(value.get(name), prop_rule, f"{path}.{name}"))

    if rule.custom is not None:
        custom_issue = rule.custom(value)
        if custom_issue is not None:
            issues.append(
                ValidationIssue(
                    custom_issue.code,
                    custom_issue.message,
                    custom_issue.severity,
                    field=path,
                    recoverable=custom_issue.recoverable,
                )
            )

    return issues


def _range_issue(path: str, detail: str) -> ValidationIssue:
    return ValidationIssue(
        ErrorCode.VALUE_OUT_OF_RANGE, f"Field '{path}' {detail}", Severity.MEDIUM, field=path
    )


def validate_against_schema(
    data: dict[str, Any], schema: Schema, strict_mode: bool = False
) -> tuple[list[ValidationIssue], list[str]]:
    """Walk every declared field; in strict mode also flag undeclared ones."""
    issues: list[ValidationIssue] = []
    warnings: list[str] = []
    for name, rule in schema.items():
        issues.extend(validate_field(data.get(name), rule, name))
    if strict_mode:
        warnings.extend(
            f"Unexpected field '{name}' found in data" for name in data if name not in schema
        )
    return issues, warnings


def calculate_confidence(
    data: dict[str, Any] | None, issues: list[ValidationIssue], warnings: list[str]
) -> float:
    """1.0 minus severity penalties, plus a bonus for well-populated data, clamped."""
    confidence = 1.0
    for issue in issues:
        confidence -= SEVERITY_PENALTIES[issue.severity]
    confidence -= WARNING_PENALTY * len(warnings)
    if isinstance(data, dict) and len(data) > 5:
        confidence += COMPLETENESS_BONUS
    return max(0.0, min(1.0, confidence))


def clean_value(value: Any, rule: FieldSchema) -> Any:
    """Trim and truncate strings, clamp numbers, drop null array items."""
    if value is None:
        return None
    if rule.type == "string" and isinstance(value, str):
        value = value.strip()
        if rule.max_length is not None and len(value) > rule.max_length:
            value = value[: rule.max_length].rstrip()
        return value
    if rule.type == "number" and _is_number(value):
        if rule.minimum is not None and value < rule.minimum:
            return rule.minimum
        if rule.maximum is not None and value > rule.maximum:
            return rule.maximum
        return value
    if rule.type == "array" and isinstance(value, list):
        items = [item for item in value if item is not None]
        if rule.items is not None:
            items = [clean_value(item, rule.items) for item in items]
        return items
    if rule.type == "object" and isinstance(value, dict) and rule.properties is not None:
        cleaned = dict(value)
        for name, prop_rule in rule.properties.items():
            if cleaned.get(name) is not None:
                cleaned[name] = clean_value(cleaned[name], prop_rule)
        return cleaned
    return value


def clean_data(data: dict[str, Any], schema: Schema) -> dict[str, Any]:
    """Apply ``clean_value`` to every declared field; undeclared fields pass through."""
    cleaned = dict(data)
    for name, rule in schema.items():
        if cleaned.get(name) is not None:
            cleaned[name] = clean_value(cleaned[name], rule)
    return cleaned


# =============================================================================
# Fallback parsers
# =============================================================================

_TITLE_LINE = re.compile(r"(?:title|name|recipe)\s*:\s*([^\n]+)", re.I)
_INGREDIENT_BLOCK = re.compile(
    r"(?:ingredients?|what you need)\s*:\s*\n?((?:[ \t]*[-•*][ \t]*[^\n]+\n?)+)", re.I
)
_INSTRUCTION_BLOCK = re.compile(
    r"(?:instructions?|directions?|steps?|method)\s*:\s*\n?((?:[ \t]*\d+[.)][ \t]*[^\n]+\n?)+)", re.I
)


def simple_fallback(response: str) -> dict[str, Any] | None:
    """Regex extraction of a title/ingredients/instructions triad from labeled text."""
    data: dict[str, Any] = {}

    title = _TITLE_LINE.search(response)
    if title:
        data["title"] = title.group(1).strip()

    block = _INGREDIENT_BLOCK.search(response)
    if block:
        data["ingredients"] = [
            {"name": re.sub(r"^\s*[-•*]\s*", "", line).strip(), "confidence": 0.5, "inferred": True}
            for line in block.group(1).splitlines()
            if line.strip()
        ]

    block = _INSTRUCTION_BLOCK.search(response)
    if block:
        data["instructions"] = [
            re.sub(r"^\s*\d+[.)]\s*", "", line).strip()
            for line in block.group(1).splitlines()
            if line.strip()
        ]

    if not data:
        return None
    data["confidence"] = SIMPLE_FALLBACK_CONFIDENCE
    return data


def template_fallback() -> dict[str, Any]:
    """Minimal placeholder recipe; never usable as a real import."""
    return {
        "title": TEMPLATE_TITLE,
        "ingredients": [{"name": "ingredient (extracted from text)", "confidence": 0.3, "inferred": True}],
        "instructions": ["Follow the original instructions from the source"],
        "confidence": TEMPLATE_FALLBACK_CONFIDENCE,
    }


# =============================================================================
# Entry points
# =============================================================================


def validate_ai_response(
    response: str,
    schema: Schema = RECIPE_SCHEMA,
    options: ValidatorOptions | None = None,
) -> ValidationResult:
    """Extract, validate, score and clean a raw model response.

    Returns:
        ValidationResult. ``data`` holds the cleaned object only when the
        result is valid. Fallback-parsed data is flagged ``fallback_used``
        and capped at the fallback's fixed confidence.
    """
    options = options or ValidatorOptions()
    issues: list[ValidationIssue] = []
    warnings: list[str] = []
    fallback_used = False
    confidence_cap = 1.0

    data = extract_json(response)
    if data is not None and not isinstance(data, dict):
        issues.append(
            ValidationIssue(
                ErrorCode.INVALID_TYPE,
                f"Expected a JSON object, got {type(data).__name__}",
                Severity.CRITICAL,
                recoverable=False,
            )
        )
        return ValidationResult(is_valid=False, data=None, errors=tuple(issues))

    if data is None:
        message = "Could not extract valid JSON from response"
        if options.fallback_strategy == "simple":
            data = simple_fallback(response)
            confidence_cap = SIMPLE_FALLBACK_CONFIDENCE
        elif options.fallback_strategy == "template":
            data = template_fallback()
            confidence_cap = TEMPLATE_FALLBACK_CONFIDENCE
            issues.append(
                ValidationIssue(
                    ErrorCode.PARTIAL_DATA,
                    "Template placeholder substituted for unparseable response",
                    Severity.LOW,
                )
            )

        if data is None:
            issues.insert(
                0,
                ValidationIssue(
                    ErrorCode.INVALID_JSON,
                    message,
                    Severity.CRITICAL,
                    recoverable=options.fallback_strategy != "none",
                ),
            )
            return ValidationResult(is_valid=False, data=None, errors=tuple(issues))

        fallback_used = True
        warnings.append(f"{ErrorCode.INVALID_JSON.value}: {message}; used {options.fallback_strategy} fallback")
        logger.warning(f"Used {options.fallback_strategy} fallback parser for unparseable response")

    schema_issues, schema_warnings = validate_against_schema(data, schema, options.strict_mode)
    issues.extend(schema_issues)
    warnings.extend(schema_warnings)

    confidence = min(confidence_cap, calculate_confidence(data, issues, warnings))
    if confidence < options.confidence_threshold:
        issues.append(
            ValidationIssue(
                ErrorCode.LOW_CONFIDENCE,
                f"Validation confidence {confidence:.2f} below threshold {options.confidence_threshold}",
                Severity.MEDIUM,
                recoverable=options.allow_partial_data,
            )
        )

    critical = any(issue.severity is Severity.CRITICAL for issue in issues)
    is_valid = not critical and (
        options.allow_partial_data or confidence >= options.confidence_threshold
    )

    return ValidationResult(
        is_valid=is_valid,
        data=clean_data(data, schema) if is_valid else None,
        errors=tuple(issues),
        warnings=tuple(warnings),
        confidence=confidence,
        fallback_used=fallback_used,
    )


def create_validation_summary(result: ValidationResult) -> str:
    """Human-readable multi-line summary for logs and the CLI."""
    lines = [
        f"Validation Result: {'PASSED' if result.is_valid else 'FAILED'}",
        f"Confidence: {result.confidence * 100:.1f}%",
    ]
    if result.fallback_used:
        lines.append("Fallback strategy was used")
    if result.errors:
        lines.append(f"Errors ({len(result.errors)}):")
        lines.extend(f"  - {e.severity.value.upper()}: {e.message}" for e in result.errors)
    if result.warnings:
        lines.append(f"Warnings ({len(result.warnings)}):")
        lines.extend(f"  - {w}" for w in result.warnings)
    return "\n".join(lines)


@dataclass
class BasicResponseValidator:
    """JSON extraction plus required-field presence; no cleaning or fallbacks."""

    schema: Schema = field(default_factory=lambda: RECIPE_SCHEMA)
    options: ValidatorOptions = field(default_factory=ValidatorOptions)

    def validate(self, raw_response: str, schema: Schema | None = None) -> ValidationResult:
        schema = schema or self.schema
        data = extract_json(raw_response)
        if not isinstance(data, dict):
            return ValidationResult(
                is_valid=False,
                data=None,
                errors=(
                    ValidationIssue(
                        ErrorCode.INVALID_JSON,
                        "Could not extract a JSON object from response",
                        Severity.CRITICAL,
                        recoverable=False,
                    ),
                ),
            )

        issues: list[ValidationIssue] = []
        for name, rule in schema.items():
            value = data.get(name)
            if rule.required and value is None:
                issues.append(
                    ValidationIssue(
                        ErrorCode.MISSING_REQUIRED_FIELD,
                        f"Required field '{name}' is missing",
                        Severity.CRITICAL,
                        field=name,
                        recoverable=False,
                    )
                )
            elif rule.required and rule.type == "array" and value == []:
                issues.append(
                    ValidationIssue(
                        ErrorCode.EMPTY_ARRAY, f"Field '{name}' is empty", Severity.CRITICAL, field=name
                    )
                )

        confidence = calculate_confidence(data, issues, [])
        is_valid = not issues and (
            self.options.allow_partial_data or confidence >= self.options.confidence_threshold
        )
        return ValidationResult(
            is_valid=is_valid,
            data=data if is_valid else None,
            errors=tuple(issues),
            confidence=confidence,
        )


@dataclass
class EnhancedResponseValidator:
    """Full schema walk with cleaning and the configured fallback parser."""

    schema: Schema = field(default_factory=lambda: RECIPE_SCHEMA)
    options: ValidatorOptions = field(default_factory=ValidatorOptions)

    def validate(self, raw_response: str, schema: Schema | None = None) -> ValidationResult:
        result = validate_ai_response(raw_response, schema or self.schema, self.options)
        if not result.is_valid:
            logger.debug(create_validation_summary(result))
        return result


def create_validator(
    strategy: str, options: ValidatorOptions | None = None
) -> BasicResponseValidator | EnhancedResponseValidator:
    """Build the validator strategy named in configuration.

    Raises:
        ValueError: If the strategy is unknown
    """
    options = options or ValidatorOptions()
    if strategy == "basic":
        return BasicResponseValidator(options=options)
    if strategy == "enhanced":
        return EnhancedResponseValidator(options=options)
    raise ValueError(f"Unknown validator strategy: {strategy}")
