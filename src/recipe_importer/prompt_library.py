"""Prompt library for recipe imports.

Versioned prompts for every model call the pipeline makes, plus the import
policy and support knobs that shape them. Every prompt starts with the same
strict-JSON output rule, and every evidence-bound prompt tells the model how
to abstain instead of guessing.

Design rules for the prompts:
- Extract what exists; never invent ingredients, quantities or steps
- State negative constraints explicitly
- Give the exact JSON shape expected back
- When evidence is insufficient, abstain with a reason
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from string import Template
from typing import Any, Final

from .protocols import ChatMessage

PROMPTS_VERSION: Final = "2025-08-14"

OUTPUT_RULE: Final = "Output rule: Return STRICT JSON only (no markdown, no commentary)."

ABSTAIN_SHAPE: Final = '{"abstain": true, "reason": "<reason>", "missing": ["<field>", ...]}'

RECIPE_SHAPE: Final = (
    '{"title": string, "description"?: string, "imageUrl"?: string, '
    '"ingredients": [{"name": string, "quantity"?: number, "unit"?: string, '
    '"notes"?: string, "optional"?: boolean, "confidence"?: number}], '
    '"instructions": string[], "prepTime"?: number | null, "cookTime"?: number | null, '
    '"servings"?: number | null, "difficulty"?: "easy" | "medium" | "hard", '
    '"cuisine"?: string, "tags"?: string[], "confidence": number}'
)

UNIT_LIST: Final = (
    "tsp, tbsp, cup, oz, fl oz, pt, qt, gal, ml, l, g, kg, lb, clove, bunch, "
    "pinch, dash, splash, can, jar, bottle, pkg, slice, piece"
)


class ImportPolicy(str, Enum):
    """How much latitude the model has when parsing evidence."""

    VERBATIM = "verbatim"
    CONSERVATIVE = "conservative"
    ENRICH = "enrich"


class PromptKind(str, Enum):
    """Every prompt the pipeline can build."""

    IMPORT_TEXT = "import.text"
    IMPORT_IMAGE = "import.image"
    IMPORT_VIDEO = "import.video"
    IMPORT_URL_JSON_LD = "import.urlJsonLd"
    IMPORT_URL_ONLY = "import.urlOnly"
    IMPORT_RECONCILE = "import.reconcile"
    PARSE_INITIAL = "parse.initial"
    PARSE_ENHANCE_INGREDIENTS = "parse.enhanceIngredients"
    PARSE_VALIDATE_INSTRUCTIONS = "parse.validateInstructions"
    PARSE_FINAL = "parse.final"
    INFER_QUANTITY = "recovery.inferQuantity"


@dataclass(frozen=True)
class ImportKnobs:
    """Policy settings interpolated into prompts and used by the fidelity gate."""

    policy: ImportPolicy = ImportPolicy.CONSERVATIVE
    allow_enrich: bool = False
    min_ingredient_support: float = 0.7
    min_step_support: float = 0.7
    version: str = PROMPTS_VERSION


@dataclass(frozen=True)
class PromptVersion:
    """A versioned system prompt.

    Attributes:
        kind: Which call the prompt is for
        template: ``string.Template`` source for the system message
        description: What the prompt asks for
        abstains: Whether the prompt offers the abstain escape hatch
        version: Registry version the prompt belongs to
    """

    kind: PromptKind
    template: str
    description: str
    abstains: bool = False
    version: str = PROMPTS_VERSION

    def render(self, knobs: ImportKnobs) -> str:
        """Render the system message with the preface and abstain rule."""
        body = Template(self.template).safe_substitute(
            policy=knobs.policy.value,
            allow_enrich=str(knobs.allow_enrich).lower(),
            min_ingredient_support=f"{knobs.min_ingredient_support:g}",
            min_step_support=f"{knobs.min_step_support:g}",
            recipe_shape=RECIPE_SHAPE,
            units=UNIT_LIST,
        )
        parts = [OUTPUT_RULE, body]
        if self.abstains:
            parts.append(f"If evidence is insufficient for required fields, return only: {ABSTAIN_SHAPE}")
        return "\n".join(parts)


# =============================================================================
# IMPORT PROMPTS
# =============================================================================

IMPORT_TEXT_PROMPT = """You are a precise recipe parser. Parse the provided unstructured text (it may include headings, ads or chatter).
Policy: $policy.
Rules (non-negotiable):
- Include only items that appear in the text verbatim or near-verbatim; do not add or infer missing items, quantities or steps.
- Quantities: if unclear, omit quantity/unit rather than guess. Units must be one of: $units.
- Times/servings: only if explicitly present; otherwise null.
Schema (return minified JSON matching exactly):
$recipe_shape"""

IMPORT_IMAGE_PROMPT = """You parse a recipe photo or screenshot. Use only the OCR text provided.
Policy: $policy.
Rules: no guesses; no invented ingredients; quantities only if explicit. If the OCR text cannot support both ingredients and steps, abstain with reason "insufficient_ocr_evidence".
Return schema JSON exactly:
$recipe_shape"""

IMPORT_VIDEO_PROMPT = """You parse video-derived evidence (captions, transcript, on-screen text).
Policy: $policy.
Rules: build from the union of captions, transcript and on-screen text. An item is eligible only if its main tokens appear in at least one source.
Accept only if at least $min_ingredient_support of ingredients and $min_step_support of steps are supported by the evidence; otherwise abstain with reason "insufficient_video_evidence".
Return schema JSON exactly:
$recipe_shape"""

IMPORT_URL_JSON_LD_PROMPT = """You import structured JSON-LD. Policy: verbatim. Map fields directly, normalize whitespace and fractions only. No reconciliation unless allowEnrich=$allow_enrich.
Return schema JSON exactly:
$recipe_shape"""

IMPORT_URL_ONLY_PROMPT = """The page behind this URL could not be fetched. Using only what you reliably know about this specific published recipe, reconstruct it as plain text with a title line, an "Ingredients:" section of "- " lines and an "Instructions:" section of numbered lines.
Policy: $policy. Do not guess: if you do not know this exact recipe, abstain with reason "unknown_recipe_url".
Return JSON: {"text": string}"""

IMPORT_RECONCILE_PROMPT = """You are a conservative recipe validator. Minimize changes while binding the recipe to the evidence.
REMOVE every ingredient or step that has no token overlap with the evidence and record a note explaining each removal.
Fix obvious parsing errors only. Preserve fraction formatting; normalize unit shorthands only.
Policy: $policy.
Return {"recipe": $recipe_shape, "notes": string[], "confidence": number}"""

# =============================================================================
# MULTI-STAGE PARSING PROMPTS
# =============================================================================

PARSE_INITIAL_PROMPT = """Stage 1 of 4: structural extraction.
Extract ONLY information explicitly present in the text. Do not infer, complete or embellish.
- title: the recipe name as written
- ingredients: each listed ingredient with quantity and unit when stated (units: $units)
- instructions: each step, in order, as written
- confidence: how completely the text describes a recipe (0-1)
Return schema JSON exactly:
$recipe_shape"""

PARSE_ENHANCE_INGREDIENTS_PROMPT = """Stage 2 of 4: ingredient enhancement.
You receive the original text and the ingredients extracted so far.
- Normalize units to: $units
- Split combined entries ("salt and pepper") into separate ingredients
- Add ingredients that the instructions use but the list omits ONLY if they literally appear in the text; mark them "inferred": true
- Never change an explicitly stated quantity
Return {"ingredients": [{"name": string, "quantity"?: number, "unit"?: string, "notes"?: string, "optional"?: boolean, "inferred"?: boolean, "confidence"?: number}], "confidence": number}"""

PARSE_VALIDATE_INSTRUCTIONS_PROMPT = """Stage 3 of 4: instruction validation.
You receive the original text, the enhanced ingredient list and the extracted instructions.
- Keep steps in their original order and wording; only fix obvious OCR/transcription errors
- Every ingredient a step refers to must exist in the ingredient list; report any that do not in "missingIngredients"
- Drop fragments that are not cooking steps
Return {"instructions": string[], "missingIngredients": string[], "confidence": number}"""

PARSE_FINAL_PROMPT = """Stage 4 of 4: final validation.
You receive the original text and the assembled recipe. Judge how faithfully the recipe reflects the text.
Do not modify the recipe. List concrete problems, if any.
Return {"confidence": number, "issues": string[]}"""

INFER_QUANTITY_PROMPT = """You estimate a typical quantity for one ingredient in a recipe.
Use the recipe context given. Units must be one of: $units.
If no sensible estimate exists, return {"quantity": null, "unit": null, "confidence": 0}.
Return {"quantity": number | null, "unit": string | null, "confidence": number}"""


DEFAULT_PROMPTS: Final = (
    PromptVersion(PromptKind.IMPORT_TEXT, IMPORT_TEXT_PROMPT, "Single-shot parse of free text", True),
    PromptVersion(PromptKind.IMPORT_IMAGE, IMPORT_IMAGE_PROMPT, "Parse OCR text from a photo", True),
    PromptVersion(PromptKind.IMPORT_VIDEO, IMPORT_VIDEO_PROMPT, "Parse merged video evidence", True),
    PromptVersion(PromptKind.IMPORT_URL_JSON_LD, IMPORT_URL_JSON_LD_PROMPT, "Map JSON-LD verbatim"),
    PromptVersion(PromptKind.IMPORT_URL_ONLY, IMPORT_URL_ONLY_PROMPT, "Reconstruct from URL", True),
    PromptVersion(PromptKind.IMPORT_RECONCILE, IMPORT_RECONCILE_PROMPT, "Bind recipe to evidence"),
    PromptVersion(PromptKind.PARSE_INITIAL, PARSE_INITIAL_PROMPT, "Explicit-only extraction", True),
    PromptVersion(
        PromptKind.PARSE_ENHANCE_INGREDIENTS, PARSE_ENHANCE_INGREDIENTS_PROMPT, "Enhance ingredients"
    ),
    PromptVersion(
        PromptKind.PARSE_VALIDATE_INSTRUCTIONS,
        PARSE_VALIDATE_INSTRUCTIONS_PROMPT,
        "Validate instructions against ingredients",
    ),
    PromptVersion(PromptKind.PARSE_FINAL, PARSE_FINAL_PROMPT, "Final confidence scoring"),
    PromptVersion(PromptKind.INFER_QUANTITY, INFER_QUANTITY_PROMPT, "Estimate a missing quantity"),
)


@dataclass
class PromptLibrary:
    """Registry of prompt versions with message builders.

    Example:
        >>> library = PromptLibrary(ImportKnobs(policy=ImportPolicy.VERBATIM))
        >>> messages = library.build(PromptKind.IMPORT_TEXT, text="2 cups flour ...")
        >>> messages[0]["content"].startswith(OUTPUT_RULE)
        True
    """

    knobs: ImportKnobs = field(default_factory=ImportKnobs)
    prompts: dict[PromptKind, PromptVersion] = field(
        default_factory=lambda: {p.kind: p for p in DEFAULT_PROMPTS}
    )

    @property
    def version(self) -> str:
        """Registry version."""
        return self.knobs.version

    def get(self, kind: PromptKind) -> PromptVersion:
        """Return the prompt registered for ``kind``.

        Raises:
            KeyError: If no prompt is registered
        """
        return self.prompts[kind]

    def register(self, prompt: PromptVersion) -> None:
        """Replace the prompt for ``prompt.kind``."""
        self.prompts[prompt.kind] = prompt

    def system_prompt(self, kind: PromptKind) -> str:
        """Rendered system message for ``kind``."""
        return self.get(kind).render(self.knobs)

    def build(self, kind: PromptKind, **payload: Any) -> list[ChatMessage]:
        """Build the chat messages for one call.

        Keyword payload entries become labeled sections of the user message.
        Strings are fenced verbatim; other values are JSON-encoded.
        """
        return [
            {"role": "system", "content": self.system_prompt(kind)},
            {"role": "user", "content": format_payload(payload)},
        ]


def format_payload(payload: dict[str, Any]) -> str:
    """Render keyword payload as labeled, fenced sections."""
    sections: list[str] = []
    for key, value in payload.items():
        if value is None:
            continue
        label = key.replace("_", " ").capitalize()
        body = value if isinstance(value, str) else json.dumps(value, ensure_ascii=False)
        sections.append(f"{label}:\n<<<\n{body}\n>>>")
    return "\n\n".join(sections)
