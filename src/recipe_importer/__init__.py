"""
Recipe Importer - Turn URLs, pasted text, photos and videos into recipes.

This package classifies an untrusted input, prefers verbatim structured
markup, falls back to scraping, OCR and transcription, parses the evidence
with a chat model, and guards the result against hallucinated content.
"""

__version__ = "0.1.0"

from .classifier import FileDescriptor, ImportInput
from .config import ImportConfig
from .exceptions import (
    ExtractionExhaustedError,
    ImportAbstainError,
    InputValidationError,
    InsufficientEvidenceError,
    ParsingFailedAfterRetriesError,
    RecipeImportError,
)
from .models import CanonicalRecipe, ImportProvenance, ImportResult, ParsedIngredient
from .pipeline import import_recipe, import_text
from .services import ServiceFactory

__all__ = [
    "CanonicalRecipe",
    "ExtractionExhaustedError",
    "FileDescriptor",
    "ImportAbstainError",
    "ImportConfig",
    "ImportInput",
    "ImportProvenance",
    "ImportResult",
    "InputValidationError",
    "InsufficientEvidenceError",
    "ParsedIngredient",
    "ParsingFailedAfterRetriesError",
    "RecipeImportError",
    "ServiceFactory",
    "import_recipe",
    "import_text",
]
