"""Unit tests for recipe_importer.ai_parser module.

The chat model is replaced with a scripted fake; each test lists exactly
the responses the parser is expected to request.
"""

import pytest

from recipe_importer.ai_parser import (
    AiRecipeParser,
    normalize_ingredient,
    normalize_instruction,
    normalize_recipe_data,
    recipe_payload,
)
from recipe_importer.exceptions import (
    ImportAbstainError,
    ParsingFailedAfterRetriesError,
    RecipeValidationError,
)
from recipe_importer.prompt_library import PromptKind
from recipe_importer.response_validator import EnhancedResponseValidator, ValidatorOptions


class RecordingSleep:
    """Collects requested delays instead of sleeping."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def stage_responses(sample_recipe_data, final_confidence: float = 0.8, missing=None) -> list:
    """The four responses of one multi-stage attempt."""
    return [
        sample_recipe_data,
        {"ingredients": sample_recipe_data["ingredients"], "confidence": 0.85},
        {
            "instructions": sample_recipe_data["instructions"],
            "missingIngredients": missing or [],
            "confidence": 0.95,
        },
        {"confidence": final_confidence, "issues": []},
    ]


class TestMultiStage:
    """Tests for the four-stage parsing mode."""

    async def test_four_stages(self, scripted_chat, sample_recipe_data, sample_recipe_text) -> None:
        """Each stage runs once and the minimum confidence wins."""
        chat = scripted_chat(stage_responses(sample_recipe_data))
        outcome = await AiRecipeParser(chat).parse(sample_recipe_text)

        assert len(chat.calls) == 4
        assert [stage for stage, _ in outcome.stage_confidences] == [
            "initial",
            "enhance_ingredients",
            "validate_instructions",
            "final",
        ]
        assert outcome.confidence == pytest.approx(0.8)
        assert outcome.recipe.confidence == pytest.approx(0.8)
        assert outcome.recipe.title == "Tomato Soup"
        assert outcome.attempts == 1
        assert outcome.notes == ()

    async def test_prompts_in_order(self, scripted_chat, sample_recipe_data) -> None:
        """Stages use their own prompts and see the evidence text."""
        chat = scripted_chat(stage_responses(sample_recipe_data))
        parser = AiRecipeParser(chat)
        await parser.parse("4 tomatoes, simmer")

        systems = [messages[0]["content"] for messages in chat.calls]
        expected = [
            parser.prompts.system_prompt(kind)
            for kind in (
                PromptKind.PARSE_INITIAL,
                PromptKind.PARSE_ENHANCE_INGREDIENTS,
                PromptKind.PARSE_VALIDATE_INSTRUCTIONS,
                PromptKind.PARSE_FINAL,
            )
        ]
        assert systems == expected
        assert all("4 tomatoes, simmer" in messages[1]["content"] for messages in chat.calls)

    async def test_low_confidence_is_noted(self, scripted_chat, sample_recipe_data) -> None:
        """Sub-threshold confidence is advisory by default."""
        chat = scripted_chat(stage_responses(sample_recipe_data, final_confidence=0.5))
        outcome = await AiRecipeParser(chat).parse("text")

        assert outcome.confidence == pytest.approx(0.5)
        assert "Parser confidence 0.50 below threshold 0.7" in outcome.notes

    async def test_low_confidence_rejected(self, scripted_chat, sample_recipe_data) -> None:
        """Without partial data, low confidence fails the attempt."""
        chat = scripted_chat(stage_responses(sample_recipe_data, final_confidence=0.5))
        parser = AiRecipeParser(chat, max_attempts=1, allow_partial_data=False)

        with pytest.raises(ParsingFailedAfterRetriesError) as exc_info:
            await parser.parse("text")
        assert isinstance(exc_info.value.last_error, RecipeValidationError)

    async def test_missing_ingredients_reported(self, scripted_chat, sample_recipe_data) -> None:
        """Ingredients flagged by the instruction stage become a note."""
        chat = scripted_chat(stage_responses(sample_recipe_data, missing=["black pepper"]))
        outcome = await AiRecipeParser(chat).parse("text")

        assert outcome.missing_ingredients == ("black pepper",)
        assert "Instructions reference missing ingredients: black pepper" in outcome.notes


class TestSingleStage:
    """Tests for the single-call mode."""

    async def test_with_consistency_pass(self, scripted_chat, sample_recipe_data) -> None:
        """A consistency call follows the parse and its issues become notes."""
        chat = scripted_chat([sample_recipe_data, {"confidence": 0.75, "issues": ["Salt amount unclear"]}])
        outcome = await AiRecipeParser(chat, use_multi_stage=False).parse("text")

        assert len(chat.calls) == 2
        assert [stage for stage, _ in outcome.stage_confidences] == ["single", "consistency"]
        assert outcome.confidence == pytest.approx(0.75)
        assert "Salt amount unclear" in outcome.notes

    async def test_without_consistency_pass(self, scripted_chat, sample_recipe_data) -> None:
        """One call is enough when the consistency pass is disabled."""
        chat = scripted_chat([sample_recipe_data])
        outcome = await AiRecipeParser(chat, use_multi_stage=False, consistency_pass=False).parse("text")

        assert len(chat.calls) == 1
        assert outcome.confidence == pytest.approx(0.9)

    async def test_kind_selects_prompt(self, scripted_chat, sample_recipe_data) -> None:
        """The caller chooses the single-stage prompt."""
        chat = scripted_chat([sample_recipe_data])
        parser = AiRecipeParser(chat, use_multi_stage=False, consistency_pass=False)
        await parser.parse("text", source="ocr", kind=PromptKind.IMPORT_IMAGE)

        assert chat.calls[0][0]["content"] == parser.prompts.system_prompt(PromptKind.IMPORT_IMAGE)

    async def test_failed_consistency_pass_keeps_recipe(self, scripted_chat, sample_recipe_data) -> None:
        """An unusable consistency response does not fail the parse."""
        chat = scripted_chat([sample_recipe_data, "no idea"])
        parser = AiRecipeParser(
            chat,
            EnhancedResponseValidator(options=ValidatorOptions(fallback_strategy="none")),
            use_multi_stage=False,
        )
        outcome = await parser.parse("text")

        assert outcome.recipe.title == "Tomato Soup"
        assert "Consistency pass failed; using single-stage confidence" in outcome.notes


class TestRetries:
    """Tests for whole-attempt retries."""

    async def test_retry_after_invalid_response(self, scripted_chat, sample_recipe_data) -> None:
        """An unparseable response is retried with a linear delay."""
        sleep = RecordingSleep()
        chat = scripted_chat(["Nothing useful here.", sample_recipe_data])
        parser = AiRecipeParser(
            chat, use_multi_stage=False, consistency_pass=False, retry_delay=1.5, sleep=sleep
        )
        outcome = await parser.parse("text")

        assert outcome.attempts == 2
        assert sleep.delays == [1.5]

    async def test_exhausted(self, scripted_chat) -> None:
        """Every attempt failing raises with the attempt count."""
        sleep = RecordingSleep()
        chat = scripted_chat(["Nothing useful here."] * 3)
        parser = AiRecipeParser(chat, use_multi_stage=False, consistency_pass=False, sleep=sleep)

        with pytest.raises(ParsingFailedAfterRetriesError, match="failed after 3 attempts") as exc_info:
            await parser.parse("text", source="text")
        assert exc_info.value.attempts == 3
        assert sleep.delays == [1.0, 2.0]

    async def test_template_fallback_rejected(self, scripted_chat) -> None:
        """Placeholder data from the template fallback never becomes a recipe."""
        chat = scripted_chat(["Nothing useful here."])
        parser = AiRecipeParser(
            chat,
            EnhancedResponseValidator(options=ValidatorOptions(fallback_strategy="template")),
            use_multi_stage=False,
            consistency_pass=False,
            max_attempts=1,
        )
        with pytest.raises(ParsingFailedAfterRetriesError, match="placeholder"):
            await parser.parse("text")

    async def test_abstain_not_retried(self, scripted_chat) -> None:
        """An abstain stops parsing immediately."""
        chat = scripted_chat(
            [{"abstain": True, "reason": "insufficient_text_evidence", "missing": ["instructions"]}]
        )
        with pytest.raises(ImportAbstainError) as exc_info:
            await AiRecipeParser(chat).parse("2 cups flour", source="text")

        assert len(chat.calls) == 1
        assert exc_info.value.reason == "insufficient_text_evidence"
        assert exc_info.value.missing == ["instructions"]
        assert exc_info.value.context["stage"] == "initial"


class TestNormalization:
    """Tests for model output normalization."""

    def test_ingredient_from_string(self) -> None:
        """String ingredients go through the line parser."""
        ingredient = normalize_ingredient("2 cups flour")
        assert ingredient.name == "flour"
        assert ingredient.quantity == 2
        assert ingredient.unit == "cup"

    def test_ingredient_from_object(self) -> None:
        """Quantity strings are parsed and units canonicalized."""
        ingredient = normalize_ingredient({"name": "butter", "quantity": "1/2", "unit": "cups"})
        assert ingredient.quantity == 0.5
        assert ingredient.unit == "cup"

    def test_unknown_unit_moves_to_notes(self) -> None:
        """Unrecognized units are kept as notes."""
        ingredient = normalize_ingredient({"name": "parsley", "quantity": 1, "unit": "handful"})
        assert ingredient.unit is None
        assert ingredient.notes == "handful"

    @pytest.mark.parametrize("item", ["", "   ", {"quantity": 2}, 42, None])
    def test_unusable_ingredient(self, item) -> None:
        """Blank or nameless items are skipped."""
        assert normalize_ingredient(item) is None

    def test_instruction_shapes(self) -> None:
        """Steps may be strings or HowToStep-like objects."""
        assert normalize_instruction({"text": "Stir  well."}) == "Stir well."
        assert normalize_instruction("ok") is None

    def test_aliases(self) -> None:
        """name/steps and snake_case keys are accepted."""
        recipe = normalize_recipe_data(
            {
                "name": "Toast",
                "ingredients": ["2 slices bread"],
                "steps": ["Toast the bread."],
                "prep_time": 2,
                "confidence": 0.6,
            }
        )
        assert recipe.title == "Toast"
        assert recipe.instructions == ["Toast the bread."]
        assert recipe.prep_time == 2
        assert recipe.confidence == pytest.approx(0.6)

    def test_no_ingredients(self) -> None:
        """A recipe without ingredients is rejected."""
        with pytest.raises(RecipeValidationError, match="no ingredients"):
            normalize_recipe_data({"title": "Air", "ingredients": [], "instructions": ["Breathe in."]})

    def test_no_instructions(self) -> None:
        """A recipe without usable steps is rejected."""
        with pytest.raises(RecipeValidationError, match="no instructions"):
            normalize_recipe_data({"title": "Salt", "ingredients": ["salt"], "instructions": ["x"]})

    def test_constraint_violation(self) -> None:
        """Pydantic constraint failures surface as validation errors."""
        with pytest.raises(RecipeValidationError, match="violates recipe constraints"):
            normalize_recipe_data(
                {"title": "", "ingredients": ["salt"], "instructions": ["Season to taste."]}
            )

    def test_recipe_payload(self, sample_recipe) -> None:
        """The payload drops empty fields."""
        payload = recipe_payload(sample_recipe)
        assert payload["title"] == "Tomato Soup"
        assert payload["ingredients"][0] == {
            "name": "tomatoes",
            "quantity": 4.0,
            "optional": False,
            "confidence": 1.0,
            "inferred": False,
        }
