"""Unit tests for recipe_importer.response_validator module.

Tests JSON extraction, the schema walk, confidence scoring, fallback
parsers and the two validator strategies.
"""

import json

import pytest

from recipe_importer.models import ErrorCode, Severity, ValidationIssue
from recipe_importer.response_validator import (
    INSTRUCTIONS_STAGE_SCHEMA,
    BasicResponseValidator,
    EnhancedResponseValidator,
    ValidatorOptions,
    calculate_confidence,
    create_validation_summary,
    create_validator,
    extract_json,
    validate_ai_response,
)

LABELED_TEXT = (
    "Title: Pancakes\n"
    "Ingredients:\n"
    "- 2 cups flour\n"
    "- 1 egg\n"
    "Instructions:\n"
    "1. Mix everything together.\n"
    "2. Cook on a hot pan.\n"
)


class TestExtractJson:
    """Tests for extract_json."""

    def test_plain_json(self) -> None:
        """A bare JSON object is decoded."""
        assert extract_json('{"a": 1}') == {"a": 1}

    def test_code_fence(self) -> None:
        """JSON inside a fenced block is decoded."""
        response = 'Here you go:\n```json\n{"title": "Soup"}\n```\nEnjoy!'
        assert extract_json(response) == {"title": "Soup"}

    def test_surrounding_chatter(self) -> None:
        """The outermost braces are tried when text surrounds the object."""
        assert extract_json('Sure! {"a": [1, 2]} Hope this helps') == {"a": [1, 2]}

    def test_trailing_comma_repaired(self) -> None:
        """Trailing commas are removed by the cleanup pass."""
        assert extract_json('{"title": "Soup", "confidence": 0.9,}') == {
            "title": "Soup",
            "confidence": 0.9,
        }

    def test_single_quotes_and_bare_keys(self) -> None:
        """Single quotes and unquoted keys are repaired."""
        assert extract_json("{title: 'Soup'}") == {"title": "Soup"}

    def test_no_json(self) -> None:
        """Plain prose yields None."""
        assert extract_json("I cannot help with that.") is None


class TestValidateAiResponse:
    """Tests for validate_ai_response."""

    def test_valid_recipe(self, sample_recipe_data) -> None:
        """A complete response passes with full confidence."""
        result = validate_ai_response(json.dumps(sample_recipe_data))

        assert result.is_valid
        assert result.errors == ()
        assert result.confidence == 1.0
        assert result.data["title"] == "Tomato Soup"
        assert result.fallback_used is False

    def test_idempotent(self, sample_recipe_data) -> None:
        """Validating cleaned output again yields the same data."""
        first = validate_ai_response(json.dumps(sample_recipe_data))
        second = validate_ai_response(json.dumps(first.data))
        assert second.data == first.data
        assert second.confidence == first.confidence

    def test_missing_required_fields(self) -> None:
        """Missing required fields are critical and invalidate the result."""
        result = validate_ai_response('{"title": "Soup"}')

        assert not result.is_valid
        assert result.data is None
        missing = {e.field for e in result.errors if e.code is ErrorCode.MISSING_REQUIRED_FIELD}
        assert missing == {"ingredients", "instructions", "confidence"}

    def test_empty_ingredients(self) -> None:
        """An empty ingredient list is a critical error."""
        response = json.dumps(
            {"title": "Soup", "ingredients": [], "instructions": ["Boil it well."], "confidence": 0.9}
        )
        result = validate_ai_response(response)
        assert not result.is_valid
        assert result.has_error(ErrorCode.EMPTY_ARRAY)

    def test_wrong_type_is_not_critical(self, sample_recipe_data) -> None:
        """A mistyped optional field costs confidence but keeps the result."""
        sample_recipe_data["servings"] = "four"
        result = validate_ai_response(json.dumps(sample_recipe_data))

        assert result.is_valid
        assert result.has_error(ErrorCode.INVALID_TYPE)
        assert result.confidence == pytest.approx(0.9)

    def test_out_of_range_clamped(self, sample_recipe_data) -> None:
        """Out-of-range numbers are reported and clamped in the cleaned data."""
        sample_recipe_data["prepTime"] = 5000
        result = validate_ai_response(json.dumps(sample_recipe_data))

        assert result.has_error(ErrorCode.VALUE_OUT_OF_RANGE)
        assert result.data["prepTime"] == 1440

    def test_unknown_unit(self, sample_recipe_data) -> None:
        """Units outside the vocabulary are enum errors."""
        sample_recipe_data["ingredients"][0]["unit"] = "handful"
        result = validate_ai_response(json.dumps(sample_recipe_data))
        assert any(
            e.code is ErrorCode.INVALID_ENUM_VALUE and e.field == "ingredients[0].unit"
            for e in result.errors
        )

    def test_placeholder_title(self, sample_recipe_data) -> None:
        """Placeholder titles raise a custom domain issue."""
        sample_recipe_data["title"] = "Untitled Recipe"
        result = validate_ai_response(json.dumps(sample_recipe_data))
        assert result.has_error(ErrorCode.CUSTOM_VALIDATION_FAILED)

    def test_strings_trimmed(self, sample_recipe_data) -> None:
        """Cleaning trims string fields."""
        sample_recipe_data["title"] = "  Tomato Soup  "
        result = validate_ai_response(json.dumps(sample_recipe_data))
        assert result.data["title"] == "Tomato Soup"

    def test_strict_mode_warns_on_extra_fields(self, sample_recipe_data) -> None:
        """Strict mode reports undeclared fields as warnings."""
        sample_recipe_data["author"] = "Nonna"
        result = validate_ai_response(
            json.dumps(sample_recipe_data), options=ValidatorOptions(strict_mode=True)
        )
        assert "Unexpected field 'author' found in data" in result.warnings

    def test_non_object_rejected(self) -> None:
        """A JSON array is not a recipe."""
        result = validate_ai_response("[1, 2, 3]")
        assert not result.is_valid
        assert result.has_error(ErrorCode.INVALID_TYPE)

    def test_stage_schema(self) -> None:
        """Stage schemas validate partial responses."""
        response = json.dumps(
            {
                "instructions": ["Boil the pasta.", "Toss with butter."],
                "missingIngredients": ["salt"],
                "confidence": 0.8,
            }
        )
        result = validate_ai_response(response, INSTRUCTIONS_STAGE_SCHEMA)
        assert result.is_valid
        assert result.data["missingIngredients"] == ["salt"]


class TestFallbacks:
    """Tests for the fallback strategies."""

    def test_fallback_none(self) -> None:
        """With no fallback, unparseable text is a critical INVALID_JSON error."""
        result = validate_ai_response(
            "I could not find a recipe.", options=ValidatorOptions(fallback_strategy="none")
        )
        assert not result.is_valid
        assert result.errors[0].code is ErrorCode.INVALID_JSON
        assert result.errors[0].severity is Severity.CRITICAL
        assert result.errors[0].recoverable is False

    def test_simple_fallback(self) -> None:
        """Labeled text is parsed by the simple fallback at capped confidence."""
        result = validate_ai_response(LABELED_TEXT)

        assert result.is_valid
        assert result.fallback_used
        assert result.confidence == pytest.approx(0.3)
        assert result.data["title"] == "Pancakes"
        assert [i["name"] for i in result.data["ingredients"]] == ["2 cups flour", "1 egg"]
        assert result.data["instructions"] == ["Mix everything together.", "Cook on a hot pan."]
        assert any(w.startswith("INVALID_JSON") for w in result.warnings)
        assert result.has_error(ErrorCode.LOW_CONFIDENCE)

    def test_simple_fallback_without_partial_data(self) -> None:
        """Low-confidence fallback data is rejected when partial data is disallowed."""
        result = validate_ai_response(
            LABELED_TEXT, options=ValidatorOptions(allow_partial_data=False)
        )
        assert not result.is_valid
        assert result.data is None

    def test_simple_fallback_nothing_found(self) -> None:
        """Prose with no labels gives INVALID_JSON even with the simple fallback."""
        result = validate_ai_response("Nothing useful here.")
        assert not result.is_valid
        assert result.errors[0].code is ErrorCode.INVALID_JSON
        assert result.errors[0].recoverable is True

    def test_template_fallback(self) -> None:
        """The template fallback is tagged as partial data."""
        result = validate_ai_response(
            "Nothing useful here.", options=ValidatorOptions(fallback_strategy="template")
        )
        assert result.fallback_used
        assert result.has_error(ErrorCode.PARTIAL_DATA)
        assert result.confidence == pytest.approx(0.2)
        assert result.data["title"] == "Extracted Recipe"


class TestCalculateConfidence:
    """Tests for calculate_confidence."""

    def test_clamped_at_zero(self) -> None:
        """Heavy penalties never push confidence below zero."""
        issues = [ValidationIssue(ErrorCode.INVALID_JSON, "x", Severity.CRITICAL)] * 3
        assert calculate_confidence({}, issues, []) == 0.0

    def test_clamped_at_one(self) -> None:
        """The completeness bonus never pushes confidence above one."""
        data = {str(i): i for i in range(10)}
        assert calculate_confidence(data, [], []) == 1.0

    def test_penalties(self) -> None:
        """Each severity and warning has its own penalty."""
        issues = [
            ValidationIssue(ErrorCode.INVALID_TYPE, "x", Severity.HIGH),
            ValidationIssue(ErrorCode.VALUE_OUT_OF_RANGE, "y", Severity.MEDIUM),
        ]
        assert calculate_confidence({}, issues, ["w"]) == pytest.approx(0.68)


class TestValidatorStrategies:
    """Tests for the strategy classes and factory."""

    def test_create_validator(self) -> None:
        """The factory builds the named strategy."""
        assert isinstance(create_validator("basic"), BasicResponseValidator)
        assert isinstance(create_validator("enhanced"), EnhancedResponseValidator)

    def test_create_validator_unknown(self) -> None:
        """Unknown strategies are rejected."""
        with pytest.raises(ValueError, match="Unknown validator strategy"):
            create_validator("fancy")

    def test_basic_validator_required_fields(self) -> None:
        """The basic validator checks required fields only."""
        validator = BasicResponseValidator()
        result = validator.validate('{"title": "Soup", "ingredients": [], "instructions": ["x"]}')

        assert not result.is_valid
        assert result.has_error(ErrorCode.EMPTY_ARRAY)
        assert result.has_error(ErrorCode.MISSING_REQUIRED_FIELD)

    def test_basic_validator_no_fallback(self) -> None:
        """The basic validator never uses a fallback parser."""
        result = BasicResponseValidator().validate(LABELED_TEXT)
        assert not result.is_valid
        assert result.has_error(ErrorCode.INVALID_JSON)

    def test_enhanced_validator_uses_options(self) -> None:
        """The enhanced validator passes its options through."""
        validator = EnhancedResponseValidator(options=ValidatorOptions(fallback_strategy="none"))
        result = validator.validate(LABELED_TEXT)
        assert not result.is_valid
        assert not result.fallback_used

    def test_summary(self) -> None:
        """The summary reports status, fallback use and errors."""
        summary = create_validation_summary(validate_ai_response(LABELED_TEXT))
        assert summary.startswith("Validation Result: PASSED")
        assert "Fallback strategy was used" in summary
        assert "MEDIUM" in summary
