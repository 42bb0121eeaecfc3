"""Pipeline architecture for recipe import.

This module implements a stage-based pipeline that turns one untrusted input
(URL, pasted text, photo or video file) into an ``ImportResult``:

1. **Classification**: decide the input kind and reject bad input before any I/O
2. **Structured data**: for URLs, map JSON-LD/microdata verbatim and stop early
3. **Content extraction**: fallback chain, image OCR or video signals
4. **Normalization**: deterministic cleanup with a preset per source
5. **Parsing**: single- or multi-stage model parsing with validation
6. **Fidelity**: support rates, reconciliation and the token-fidelity guard
7. **Recovery**: missing ingredients, quantities and consistency report

A stage may mark the context complete, in which case the remaining stages are
skipped. Any ``RecipeImportError`` escaping a stage is annotated with the stage
name and the notes gathered so far.

Example:
    >>> factory = ServiceFactory(ImportConfig.load())
    >>> result = await import_recipe(ImportInput(url="https://example.com/soup"), factory)
    >>> result.provenance.method
    'json-ld'
"""

from __future__ import annotations

import base64
import logging
import mimetypes
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import urlparse

from .ai_parser import normalize_recipe_data, recipe_payload
from .classifier import (
    Classification,
    ImportInput,
    classify_input,
    classify_text,
    detect_source_kind,
    validate_input,
)
from .exceptions import (
    ExtractionError,
    ImportAbstainError,
    InsufficientEvidenceError,
    RecipeImportError,
    RecipeValidationError,
    RetryableError,
    ServiceError,
)
from .fallback_chain import USER_AGENTS, normalize_url
from .fidelity import filter_by_token_fidelity, parse_abstain, recipe_support
from .models import (
    CanonicalRecipe,
    ExtractionEvidence,
    ImportProvenance,
    ImportResult,
    InputKind,
    RecoveryResult,
    SourceKind,
    SupportRates,
)
from .normalizer import NormalizationResult, normalize_text, preset
from .prompt_library import PromptKind
from .response_validator import extract_json
from .structured_data import StructuredExtraction, extract_structured_recipe
from .telemetry import AbstainEvent
from .video import assess_video_extraction

if TYPE_CHECKING:
    from .ai_parser import ParseOutcome
    from .services.factory import ServiceFactory

logger = logging.getLogger(__name__)

METHOD_TEXT = "text"
METHOD_IMAGE_OCR = "image-ocr"

NORMALIZATION_PRESETS = {
    SourceKind.RECIPE_URL: "web",
    SourceKind.VIDEO_URL: "social",
    SourceKind.TEXT: "social",
    SourceKind.IMAGE_FILE: "ocr",
    SourceKind.VIDEO_FILE: "transcribed",
}

PROMPT_KINDS = {
    SourceKind.RECIPE_URL: PromptKind.IMPORT_TEXT,
    SourceKind.VIDEO_URL: PromptKind.IMPORT_VIDEO,
    SourceKind.TEXT: PromptKind.IMPORT_TEXT,
    SourceKind.IMAGE_FILE: PromptKind.IMPORT_IMAGE,
    SourceKind.VIDEO_FILE: PromptKind.IMPORT_VIDEO,
}


@dataclass
class ImportContext:
    """Shared state passed through pipeline stages.

    Attributes:
        request: The ``{url?, text?, file?}`` input

        classification: Classifier verdict (populated by ClassificationStage)
        source_kind: Routing decision (populated by ClassificationStage)
        url: Normalized URL for URL inputs
        prefetched: Pages already fetched, keyed by normalized URL
        evidence: Every text fragment gathered before parsing
        text: Text handed to the parser (raw, then normalized)
        method: Method tag of the extraction that produced ``text``
        recipe: Current recipe (structured, parsed, filtered, recovered)
        completed: Set when the remaining stages must be skipped
    """

    request: ImportInput

    classification: Classification | None = None
    source_kind: SourceKind | None = None
    url: str | None = None
    prefetched: dict[str, str] = field(default_factory=dict)
    evidence: ExtractionEvidence = field(default_factory=ExtractionEvidence)
    text: str = ""
    method: str | None = None
    method_confidences: list[tuple[str, float]] = field(default_factory=list)
    fallback_used: bool = False
    structured: bool = False
    normalization: NormalizationResult | None = None
    parse_outcome: ParseOutcome | None = None
    recipe: CanonicalRecipe | None = None
    support: SupportRates | None = None
    recovery: RecoveryResult | None = None
    abstain_reason: str | None = None
    notes: list[str] = field(default_factory=list)
    completed: bool = False

    @property
    def prompt_kind(self) -> PromptKind:
        return PROMPT_KINDS.get(self.source_kind, PromptKind.IMPORT_TEXT)

    @property
    def source_label(self) -> str:
        return self.source_kind.value if self.source_kind else "unknown"

    def record_method(self, method: str, confidence: float) -> None:
        self.method = self.method or method
        self.method_confidences.append((method, round(confidence, 4)))

    def to_result(self) -> ImportResult:
        """Freeze the context into the public result.

        Raises:
            ExtractionError: If no stage produced a recipe
        """
        if self.recipe is None or self.source_kind is None:
            raise ExtractionError("Pipeline finished without a recipe", source=self.source_label)
        provenance = ImportProvenance(
            source_kind=self.source_kind,
            method=self.method or METHOD_TEXT,
            platform=self.classification.platform if self.classification else None,
            method_confidences=tuple(self.method_confidences),
            parser_notes=tuple(self.notes),
            abstain_reason=self.abstain_reason,
            fallback_used=self.fallback_used,
            support=self.support,
            structured=self.structured,
        )
        return ImportResult(recipe=self.recipe, provenance=provenance, recovery=self.recovery)


class PipelineStage(ABC):
    """Abstract base class for pipeline stages.

    Stages are stateless; everything they produce goes into the context.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name of this stage."""
        ...

    @abstractmethod
    async def execute(self, ctx: ImportContext, factory: ServiceFactory) -> None:
        """Execute this pipeline stage.

        Raises:
            RecipeImportError: Terminal failure of the import
        """
        ...


class ClassificationStage(PipelineStage):
    """Stage 1: classify the input and run the validation gate.

    With ``text_only`` set the request is always treated as pasted text, so
    URL-shaped text is parsed as written and never fetched.

    Populates:
        - ctx.classification, ctx.source_kind, ctx.url
    """

    def __init__(self, text_only: bool = False) -> None:
        self.text_only = text_only

    @property
    def name(self) -> str:
        return "Classification"

    async def execute(self, ctx: ImportContext, factory: ServiceFactory) -> None:
        if self.text_only:
            request = ImportInput(text=ctx.request.text)
            classification = classify_text(request.text or "")
        else:
            request = ctx.request
            classification = classify_input(request, factory.tables)
        validation = validate_input(request, classification)
        validation.raise_for_errors()

        ctx.classification = classification
        ctx.source_kind = detect_source_kind(request, classification)
        ctx.notes.extend(validation.warnings)
        if classification.type is InputKind.URL:
            ctx.url = normalize_url((request.url or request.text or "").strip())
        logger.info(
            f"Classified input as {ctx.source_kind.value} "
            f"(confidence {classification.confidence:.2f})"
        )


class StructuredDataStage(PipelineStage):
    """Stage 2: markup-first extraction for URLs.

    A complete JSON-LD/microdata/selector recipe completes the import here;
    no model is called. The fetched page is kept for the fallback chain.
    """

    @property
    def name(self) -> str:
        return "Structured data"

    async def execute(self, ctx: ImportContext, factory: ServiceFactory) -> None:
        if ctx.url is None:
            return
        fetcher = factory.create_fetcher()
        try:
            html = await fetcher.fetch(ctx.url, USER_AGENTS["desktop"])
        except ExtractionError as e:
            logger.warning(f"Page fetch for structured data failed: {e}")
            ctx.notes.append(f"Structured data unavailable: {e.message}")
            return

        ctx.prefetched[ctx.url] = html
        extraction = extract_structured_recipe(html, factory.tables)
        if extraction.is_complete:
            apply_structured(ctx, extraction)
        elif extraction.method:
            ctx.notes.append(f"Partial {extraction.method} data found; continuing with fallbacks")


def apply_structured(ctx: ImportContext, extraction: StructuredExtraction) -> None:
    """Accept a complete structured extraction as the final recipe."""
    ctx.recipe = extraction.recipe
    ctx.structured = True
    ctx.record_method(extraction.method or "structured", extraction.confidence)
    ctx.evidence.add(extraction.method or "structured", extraction.evidence_text)
    ctx.completed = True
    logger.info(f"Recipe mapped verbatim from {extraction.method}; skipping model stages")


class ContentExtractionStage(PipelineStage):
    """Stage 3: obtain evidence text for the parser.

    Populates:
        - ctx.text, ctx.evidence, ctx.method, ctx.method_confidences
    """

    @property
    def name(self) -> str:
        return "Content extraction"

    async def execute(self, ctx: ImportContext, factory: ServiceFactory) -> None:
        kind = ctx.source_kind
        if kind in (SourceKind.RECIPE_URL, SourceKind.VIDEO_URL):
            await self._from_url(ctx, factory)
        elif kind is SourceKind.IMAGE_FILE:
            await self._from_image(ctx, factory)
        elif kind is SourceKind.VIDEO_FILE:
            await self._from_video(ctx, factory)
        else:
            ctx.text = ctx.request.text or ""
            ctx.evidence.add(METHOD_TEXT, ctx.text)
            confidence = ctx.classification.confidence if ctx.classification else 0.5
            ctx.record_method(METHOD_TEXT, confidence)

        if not ctx.completed:
            logger.info(f"Extracted {len(ctx.text)} chars via {ctx.method}")

    async def _from_url(self, ctx: ImportContext, factory: ServiceFactory) -> None:
        chain = factory.create_fallback_chain(ctx.prefetched)
        content = await chain.run(ctx.url, ctx.classification)
        if content.structured is not None and content.structured.is_complete:
            apply_structured(ctx, content.structured)
            return
        ctx.text = content.text
        ctx.evidence.add(content.method, content.text)
        ctx.record_method(content.method, content.confidence)
        ctx.fallback_used = ctx.fallback_used or content.fallback_used

    async def _from_image(self, ctx: ImportContext, factory: ServiceFactory) -> None:
        ocr = factory.create_ocr()
        result = await ocr.recognize(image_data_url(ctx.request.file.uri, ctx.request.file.mime_type))
        ctx.text = result.text
        ctx.evidence.add(METHOD_IMAGE_OCR, result.text)
        ctx.record_method(METHOD_IMAGE_OCR, result.confidence)

    async def _from_video(self, ctx: ImportContext, factory: ServiceFactory) -> None:
        extractor = factory.create_video_extractor()
        extraction = await extractor.extract(local_path(ctx.request.file.uri))
        for source, text in extraction.sources.items():
            ctx.evidence.add(source, text)
        ctx.text = extraction.text
        for method in extraction.methods:
            ctx.record_method(method, extraction.confidence)
        ctx.notes.extend(extraction.notes)

        assessment = assess_video_extraction(extraction)
        if not assessment.is_useful:
            logger.warning(f"Weak video extraction: {'; '.join(assessment.issues)}")
            ctx.notes.extend(assessment.issues)


def image_data_url(uri: str, mime_type: str | None = None) -> str:
    """Turn a file URI into something a vision model accepts.

    ``data:`` and ``http(s)`` URLs pass through; local files are base64-encoded.
    """
    scheme = urlparse(uri).scheme
    if uri.startswith("data:") or scheme in ("http", "https"):
        return uri
    path = Path(local_path(uri))
    try:
        data = path.read_bytes()
    except OSError as e:
        raise ExtractionError(f"Cannot read image file: {e}", path=str(path)) from e
    mime = mime_type or mimetypes.guess_type(path.name)[0] or "image/jpeg"
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


def local_path(uri: str) -> str:
    parsed = urlparse(uri)
    return parsed.path if parsed.scheme == "file" else uri


class NormalizationStage(PipelineStage):
    """Stage 4: deterministic cleanup of the extracted text."""

    @property
    def name(self) -> str:
        return "Normalization"

    async def execute(self, ctx: ImportContext, factory: ServiceFactory) -> None:
        preset_name = NORMALIZATION_PRESETS.get(ctx.source_kind, "social")
        result = normalize_text(ctx.text, preset(preset_name), factory.tables)
        ctx.normalization = result
        if result.changed:
            ctx.text = result.text
            # corrected spellings must count as evidence for the fidelity guard
            ctx.evidence.add("normalized", result.text)
            logger.debug(f"Normalization ({preset_name}) applied: {', '.join(result.operations_applied)}")


class ParsingStage(PipelineStage):
    """Stage 5: model parsing into a candidate recipe."""

    @property
    def name(self) -> str:
        return "Parsing"

    async def execute(self, ctx: ImportContext, factory: ServiceFactory) -> None:
        if not ctx.text.strip():
            raise InsufficientEvidenceError("No text to parse", source=ctx.source_label)
        parser = factory.create_parser()
        outcome = await parser.parse(ctx.text, source=ctx.source_label, kind=ctx.prompt_kind)
        ctx.parse_outcome = outcome
        ctx.recipe = outcome.recipe
        ctx.method_confidences.append(("ai-parse", outcome.confidence))
        ctx.fallback_used = ctx.fallback_used or outcome.fallback_used
        ctx.notes.extend(outcome.notes)


class FidelityStage(PipelineStage):
    """Stage 6: bind the parsed recipe to the evidence.

    Support rates below the policy minimums trigger one reconciliation call;
    the token-fidelity guard then removes anything without evidence overlap.
    Remaining shortfalls are advisory unless partial data is disallowed.
    """

    @property
    def name(self) -> str:
        return "Fidelity"

    async def execute(self, ctx: ImportContext, factory: ServiceFactory) -> None:
        if not factory.config.fidelity_check:
            return
        evidence = ctx.evidence.text
        knobs = factory.prompts.knobs
        ctx.support = recipe_support(ctx.recipe, evidence, factory.tables)

        if not ctx.support.meets(knobs.min_ingredient_support, knobs.min_step_support):
            logger.info(
                f"Support below minimums (ingredients {ctx.support.ingredient_support:.2f}, "
                f"steps {ctx.support.step_support:.2f}); reconciling"
            )
            ctx.recipe = await self._reconcile(ctx, factory, evidence)

        report = filter_by_token_fidelity(ctx.recipe, evidence, factory.tables, ctx.source_label)
        ctx.recipe = report.recipe
        ctx.notes.extend(report.notes())
        ctx.support = recipe_support(ctx.recipe, evidence, factory.tables)

        if not ctx.support.meets(knobs.min_ingredient_support, knobs.min_step_support):
            message = (
                f"Evidence support below minimums: ingredients "
                f"{ctx.support.ingredient_support:.2f}, steps {ctx.support.step_support:.2f}"
            )
            if not factory.config.allow_partial_data:
                raise InsufficientEvidenceError(message, source=ctx.source_label)
            ctx.notes.append(message)

    async def _reconcile(
        self, ctx: ImportContext, factory: ServiceFactory, evidence: str
    ) -> CanonicalRecipe:
        chat = factory.create_chat()
        messages = factory.prompts.build(
            PromptKind.IMPORT_RECONCILE, evidence=evidence, recipe=recipe_payload(ctx.recipe)
        )
        try:
            raw = await chat.complete(messages)
        except (ServiceError, RetryableError) as e:
            logger.warning(f"Reconciliation call failed: {e}")
            ctx.notes.append(f"Reconciliation skipped: {e.message}")
            return ctx.recipe

        data = extract_json(raw)
        verdict = parse_abstain(data)
        if verdict is not None:
            raise ImportAbstainError(
                ctx.source_label, verdict.reason, list(verdict.missing), stage="reconcile"
            )
        if not isinstance(data, dict) or not isinstance(data.get("recipe"), dict):
            ctx.notes.append("Reconciliation returned no recipe; keeping parsed recipe")
            return ctx.recipe

        stated = data.get("confidence")
        confidence = ctx.recipe.confidence
        if isinstance(stated, (int, float)) and not isinstance(stated, bool):
            confidence = min(confidence, max(0.0, min(1.0, float(stated))))
        try:
            reconciled = normalize_recipe_data(data["recipe"], factory.tables, confidence)
        except RecipeValidationError as e:
            logger.warning(f"Reconciled recipe rejected: {e}")
            ctx.notes.append(f"Reconciled recipe rejected: {e.message}")
            return ctx.recipe

        notes = data.get("notes") or []
        if isinstance(notes, list):
            ctx.notes.extend(f"Reconcile: {note}" for note in notes if isinstance(note, str))
        return reconciled


class RecoveryStage(PipelineStage):
    """Stage 7: ingredient recovery and consistency report."""

    @property
    def name(self) -> str:
        return "Recovery"

    async def execute(self, ctx: ImportContext, factory: ServiceFactory) -> None:
        if not factory.config.enable_recovery:
            return
        engine = factory.create_recovery()
        result = await engine.recover(
            ctx.recipe.ingredients,
            ctx.recipe.instructions,
            ctx.evidence.text,
            factory.recovery_options(),
        )
        ctx.recovery = result
        ctx.recipe = ctx.recipe.model_copy(
            update={"ingredients": list(result.recovered_ingredients)}
        )


class ImportPipeline:
    """Orchestrates an import through a series of stages.

    Attributes:
        stages: Ordered list of pipeline stages to execute

    Example:
        >>> pipeline = ImportPipeline([ClassificationStage(), ContentExtractionStage()])
        >>> result = await pipeline.run(ImportContext(request), factory)
    """

    def __init__(self, stages: list[PipelineStage]) -> None:
        self.stages = stages

    async def run(self, ctx: ImportContext, factory: ServiceFactory) -> ImportResult:
        """Execute stages in order and return the frozen result.

        Raises:
            RecipeImportError: Annotated with ``stage`` and ``trail``
        """
        for stage in self.stages:
            if ctx.completed:
                logger.debug(f"Skipping stage: {stage.name}")
                continue
            logger.info(f"Starting stage: {stage.name}")
            try:
                await stage.execute(ctx, factory)
            except ImportAbstainError as e:
                ctx.abstain_reason = e.reason
                factory.telemetry.record(
                    AbstainEvent(
                        source=e.source,
                        reason=e.reason,
                        missing=tuple(e.missing),
                        support=ctx.support,
                        evidence_sizes=ctx.evidence.sizes,
                    )
                )
                self._annotate(e, stage, ctx)
                raise
            except RecipeImportError as e:
                self._annotate(e, stage, ctx)
                raise
            logger.info(f"Completed stage: {stage.name}")
        return ctx.to_result()

    @staticmethod
    def _annotate(error: RecipeImportError, stage: PipelineStage, ctx: ImportContext) -> None:
        logger.error(f"Stage {stage.name} failed: {error}")
        inner = error.context.get("stage")
        if inner is not None and inner != stage.name:
            error.context["step"] = inner
        error.context["stage"] = stage.name
        if ctx.notes:
            error.context.setdefault("trail", "; ".join(ctx.notes))


def create_default_pipeline() -> ImportPipeline:
    """Create the full pipeline used for any input kind."""
    return ImportPipeline(
        [
            ClassificationStage(),
            StructuredDataStage(),
            ContentExtractionStage(),
            NormalizationStage(),
            ParsingStage(),
            FidelityStage(),
            RecoveryStage(),
        ]
    )


def create_text_pipeline() -> ImportPipeline:
    """Pipeline for pasted text; nothing is fetched, even for URL-shaped text."""
    return ImportPipeline(
        [
            ClassificationStage(text_only=True),
            ContentExtractionStage(),
            NormalizationStage(),
            ParsingStage(),
            FidelityStage(),
            RecoveryStage(),
        ]
    )


async def import_recipe(
    request: ImportInput, factory: ServiceFactory, pipeline: ImportPipeline | None = None
) -> ImportResult:
    """Import a recipe from a URL, text or file.

    Raises:
        InputValidationError: Input rejected before any I/O
        ExtractionExhaustedError: Every URL strategy failed
        ParsingFailedAfterRetriesError: The parser ran out of attempts
        ImportAbstainError: A model declined for lack of evidence
        InsufficientEvidenceError: Nothing evidence-backed survived the fidelity guard
    """
    pipeline = pipeline or create_default_pipeline()
    return await pipeline.run(ImportContext(request), factory)


async def import_text(text: str, factory: ServiceFactory) -> ImportResult:
    """Import a recipe from pasted text."""
    return await create_text_pipeline().run(ImportContext(ImportInput(text=text)), factory)
