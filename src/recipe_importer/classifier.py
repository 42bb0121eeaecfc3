"""Input classification and the pre-flight validation gate.

Classification decides the coarse input type (url, text, image, video) and
flags video-hosting platforms so the caption-first strategy can be chosen.
Validation runs before any network or model call and rejects inputs that
cannot possibly produce a recipe.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePosixPath
from typing import Any, Final
from urllib.parse import urlparse

from .exceptions import InputValidationError
from .models import InputKind, SourceKind
from .tables import DEFAULT_TABLES, HeuristicTables

logger = logging.getLogger(__name__)


class Platform(str, Enum):
    """Known social/video platforms."""

    TIKTOK = "tiktok"
    INSTAGRAM = "instagram"
    YOUTUBE = "youtube"
    FACEBOOK = "facebook"
    PINTEREST = "pinterest"


PLATFORM_PATTERNS: Final = {
    Platform.TIKTOK: (
        re.compile(r"(?:www\.|vm\.|m\.)?tiktok\.com/@[\w.-]+/video/\d+", re.I),
        re.compile(r"(?:vm|vt)\.tiktok\.com/\w+", re.I),
        re.compile(r"tiktok\.com/t/\w+", re.I),
    ),
    Platform.INSTAGRAM: (
        re.compile(r"instagram\.com/(?:p|reel|reels|stories)/[\w-]+", re.I),
    ),
    Platform.YOUTUBE: (
        re.compile(r"youtube\.com/watch\?(?:.*&)?v=[\w-]+", re.I),
        re.compile(r"youtube\.com/shorts/[\w-]+", re.I),
        re.compile(r"youtu\.be/[\w-]+", re.I),
    ),
    Platform.FACEBOOK: (
        re.compile(r"facebook\.com/(?:[\w.]+/)?videos/[\w.-]+", re.I),
        re.compile(r"facebook\.com/watch/?\?v=\d+", re.I),
        re.compile(r"fb\.watch/[\w-]+", re.I),
    ),
    Platform.PINTEREST: (
        re.compile(r"pinterest\.[\w.]+/pin/[\w-]+", re.I),
        re.compile(r"pin\.it/[\w-]+", re.I),
    ),
}

SOCIAL_PLATFORMS: Final = frozenset(
    {Platform.TIKTOK, Platform.INSTAGRAM, Platform.YOUTUBE, Platform.FACEBOOK}
)

IMAGE_EXTENSIONS: Final = frozenset(
    {".jpg", ".jpeg", ".png", ".webp", ".heic", ".heif", ".gif", ".bmp"}
)
VIDEO_EXTENSIONS: Final = frozenset({".mp4", ".mov", ".avi", ".webm", ".m4v", ".mkv", ".3gp"})

SUPPORTED_IMAGE_MIME_TYPES: Final = frozenset(
    {
        "image/jpeg", "image/jpg", "image/png", "image/webp", "image/heic",
        "image/heif", "image/gif", "image/bmp",
    }
)  # fmt: skip
SUPPORTED_VIDEO_MIME_TYPES: Final = frozenset(
    {
        "video/mp4", "video/quicktime", "video/x-msvideo", "video/webm",
        "video/x-m4v", "video/x-matroska", "video/3gpp",
    }
)  # fmt: skip

MIN_TEXT_LENGTH: Final = 10
MAX_TEXT_LENGTH: Final = 50_000
MAX_IMAGE_BYTES: Final = 10 * 1024 * 1024
MIN_IMAGE_BYTES: Final = 1024
MAX_VIDEO_BYTES: Final = 100 * 1024 * 1024
LARGE_VIDEO_BYTES: Final = 50 * 1024 * 1024

RECIPE_INDICATORS: Final = (
    re.compile(r"ingredients?:", re.I),
    re.compile(r"directions?:", re.I),
    re.compile(r"instructions?:", re.I),
    re.compile(r"steps?:", re.I),
    re.compile(r"method:", re.I),
    re.compile(r"recipe", re.I),
    re.compile(r"serves?\s+\d+", re.I),
    re.compile(r"prep\s+time", re.I),
    re.compile(r"cook\s+time", re.I),
    re.compile(r"\d+\s+(?:cup|tbsp|tsp|oz|lb|kg|g|ml|liter)\b", re.I),
)
MEASUREMENT_PATTERN: Final = re.compile(
    r"\d+\s*(?:cups?|tbsp|tsp|tablespoons?|teaspoons?|oz|ounces?|lbs?|pounds?|kg|grams?|ml|liters?)\b",
    re.I,
)
BULLET_LINE: Final = re.compile(r"^[-•*]\s")
NUMBERED_LINE: Final = re.compile(r"^\d+\.?\s")


@dataclass(frozen=True)
class FileDescriptor:
    """A local or remote media file handed to the importer."""

    uri: str
    mime_type: str | None = None
    name: str | None = None
    size: int | None = None

    @property
    def extension(self) -> str:
        """Lowercase extension taken from the name (or the URI)."""
        return PurePosixPath(self.name or urlparse(self.uri).path).suffix.lower()


@dataclass(frozen=True)
class ImportInput:
    """The ``{url?, text?, file?}`` request accepted by ``import_recipe``."""

    url: str | None = None
    text: str | None = None
    file: FileDescriptor | None = None


@dataclass(frozen=True)
class Classification:
    """Classifier verdict for one input."""

    type: InputKind
    confidence: float
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def platform(self) -> str | None:
        """Platform name for URLs on a known host."""
        return self.metadata.get("platform")

    @property
    def is_video_platform(self) -> bool:
        """True for URLs on a host where captions come first."""
        return bool(self.metadata.get("is_video"))


@dataclass(frozen=True)
class InputValidation:
    """Result of the pre-flight validation gate."""

    is_valid: bool
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()

    def raise_for_errors(self) -> None:
        """Raise ``InputValidationError`` if the input was rejected."""
        if not self.is_valid:
            raise InputValidationError("Input rejected", reasons=list(self.errors))


# ============================================================================
# URL helpers
# ============================================================================


def detect_platform(url: str) -> Platform | None:
    """Return the platform whose URL patterns match, if any."""
    for platform, patterns in PLATFORM_PATTERNS.items():
        if any(p.search(url) for p in patterns):
            return platform
    return None


def is_video_url(url: str) -> bool:
    """Check for video posts on TikTok, Instagram reels, YouTube or Facebook."""
    platform = detect_platform(url)
    if platform is None:
        return False
    if platform is Platform.INSTAGRAM:
        return bool(re.search(r"instagram\.com/(?:reel|reels)/", url, re.I))
    return platform in SOCIAL_PLATFORMS


def is_social_url(url: str) -> bool:
    """Check for any of the social video platforms."""
    return detect_platform(url) in SOCIAL_PLATFORMS


def is_recipe_site(url: str, tables: HeuristicTables = DEFAULT_TABLES) -> bool:
    """Check for well-known recipe publishers or a ``recipe`` path segment."""
    parsed = urlparse(url)
    host = parsed.netloc.lower().removeprefix("www.")
    if any(host == site or host.endswith("." + site) for site in tables.recipe_site_hosts):
        return True
    return "recipe" in host or "/recipe" in parsed.path.lower()


def _looks_like_url(value: str) -> bool:
    parsed = urlparse(value.strip())
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


# ============================================================================
# Classification
# ============================================================================


def classify_url(url: str, tables: HeuristicTables = DEFAULT_TABLES) -> Classification:
    """Classify a URL and flag known platforms."""
    parsed = urlparse(url)
    platform = detect_platform(url)
    metadata: dict[str, Any] = {
        "hostname": parsed.netloc.lower().removeprefix("www."),
        "platform": platform.value if platform else None,
        "is_video": is_video_url(url),
        "is_social": platform in SOCIAL_PLATFORMS,
        "is_recipe_site": False,
    }
    if platform is not None:
        confidence = 0.95
    elif is_recipe_site(url, tables):
        metadata["is_recipe_site"] = True
        confidence = 0.9
    else:
        confidence = 0.8
    return Classification(InputKind.URL, confidence, metadata)


def classify_text(text: str) -> Classification:
    """Score how recipe-shaped a block of text looks.

    Starts at 0.5, adds 0.1 per recipe indicator and 0.2 each for more than
    two bullets, numbered lines or measurements, capped at 0.95.
    """
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    confidence = 0.5
    confidence += 0.1 * sum(1 for pattern in RECIPE_INDICATORS if pattern.search(text))

    bullets = sum(1 for line in lines if BULLET_LINE.match(line))
    numbered = sum(1 for line in lines if NUMBERED_LINE.match(line))
    measurements = len(MEASUREMENT_PATTERN.findall(text))

    if bullets > 2:
        confidence += 0.2
    if numbered > 2:
        confidence += 0.2
    if measurements > 2:
        confidence += 0.2
    confidence = min(confidence, 0.95)

    return Classification(
        InputKind.TEXT,
        round(confidence, 4),
        {
            "line_count": len(lines),
            "has_recipe_structure": confidence > 0.7,
            "bullet_points": bullets,
            "numbered_steps": numbered,
            "measurements": measurements,
        },
    )


def classify_file(file: FileDescriptor) -> Classification:
    """Classify a file by MIME type first, then by extension."""
    mime = (file.mime_type or "").lower()
    metadata: dict[str, Any] = {"mime_type": mime or None, "extension": file.extension}
    if mime.startswith("image/"):
        return Classification(InputKind.IMAGE, 0.95, metadata)
    if mime.startswith("video/"):
        return Classification(InputKind.VIDEO, 0.95, metadata)
    if file.extension in IMAGE_EXTENSIONS:
        return Classification(InputKind.IMAGE, 0.8, metadata)
    if file.extension in VIDEO_EXTENSIONS:
        return Classification(InputKind.VIDEO, 0.8, metadata)
    return Classification(InputKind.IMAGE, 0.3, metadata)


def classify_input(
    request: ImportInput, tables: HeuristicTables = DEFAULT_TABLES
) -> Classification:
    """Classify an import request.

    A file wins over a URL, which wins over text. Text that is itself a bare
    URL is classified as a URL.

    Raises:
        InputValidationError: If the request is empty
    """
    if request.file is not None:
        return classify_file(request.file)
    if request.url and request.url.strip():
        return classify_url(request.url.strip(), tables)
    if request.text and request.text.strip():
        if _looks_like_url(request.text) and len(request.text.split()) == 1:
            return classify_url(request.text.strip(), tables)
        return classify_text(request.text)
    raise InputValidationError("Input rejected", reasons=["No url, text or file provided"])


def detect_source_kind(request: ImportInput, classification: Classification) -> SourceKind:
    """Map a classification to the routing decision used by the pipeline."""
    if classification.type is InputKind.URL:
        return SourceKind.VIDEO_URL if classification.is_video_platform else SourceKind.RECIPE_URL
    if classification.type is InputKind.IMAGE:
        return SourceKind.IMAGE_FILE
    if classification.type is InputKind.VIDEO:
        return SourceKind.VIDEO_FILE
    return SourceKind.TEXT


# ============================================================================
# Validation
# ============================================================================


def validate_input(request: ImportInput, classification: Classification) -> InputValidation:
    """Reject inputs that cannot produce a recipe; warn about risky ones."""
    errors: list[str] = []
    warnings: list[str] = []

    if classification.type is InputKind.URL:
        url = (request.url or request.text or "").strip()
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            errors.append(f"Unsupported URL: {url!r}")
        elif parsed.scheme == "http":
            warnings.append("URL is not secure (http) - consider using https")

    elif classification.type is InputKind.TEXT:
        text = request.text or ""
        if len(text.strip()) < MIN_TEXT_LENGTH:
            errors.append("Text is too short to contain a meaningful recipe")
        else:
            if len(text) > MAX_TEXT_LENGTH:
                warnings.append("Text is very long - processing may take extra time")
            if classification.confidence < 0.5:
                warnings.append("Text does not appear to contain a structured recipe")
            if not re.search(r"ingredients?", text, re.I) and not MEASUREMENT_PATTERN.search(text):
                warnings.append("No ingredients list detected")
            if not re.search(r"steps?|directions?|instructions?|method", text, re.I) and not (
                re.search(r"^\d+\.", text, re.M)
            ):
                warnings.append("No cooking steps detected")

    elif request.file is not None:
        _validate_file(request.file, classification, errors, warnings)

    if errors:
        logger.info(f"Input rejected: {'; '.join(errors)}")
    return InputValidation(not errors, tuple(errors), tuple(warnings))


def _validate_file(
    file: FileDescriptor,
    classification: Classification,
    errors: list[str],
    warnings: list[str],
) -> None:
    mime = (file.mime_type or "").lower()

    if classification.type is InputKind.IMAGE:
        if mime and mime not in SUPPORTED_IMAGE_MIME_TYPES:
            errors.append(f"Unsupported image type: {mime}")
        if file.size is not None:
            if file.size > MAX_IMAGE_BYTES:
                errors.append("Image is too large (max 10MB)")
            elif file.size < MIN_IMAGE_BYTES:
                warnings.append("Image is very small - text may not be readable")
        if classification.confidence < 0.5:
            if mime:
                errors.append(f"Unsupported file type: {mime}")
            else:
                warnings.append("Could not determine file type - treating as an image")

    elif classification.type is InputKind.VIDEO:
        if mime and mime not in SUPPORTED_VIDEO_MIME_TYPES:
            errors.append(f"Unsupported video type: {mime}")
        if file.size is not None:
            if file.size > MAX_VIDEO_BYTES:
                errors.append("Video is too large (max 100MB)")
            elif file.size > LARGE_VIDEO_BYTES:
                warnings.append("Large video - processing may take several minutes")


def platform_hints(classification: Classification) -> list[str]:
    """User-facing tips for getting better results from a given input."""
    hints: list[str] = []
    if classification.type is InputKind.URL:
        platform = classification.platform
        if platform == Platform.TIKTOK.value:
            hints.append("TikTok videos work best when they show ingredients and steps clearly")
            hints.append("Consider using the transcription feature for better accuracy")
        elif platform == Platform.INSTAGRAM.value:
            hints.append("Instagram Reels often have recipe details in captions")
            hints.append("Screenshots of recipe cards work well too")
        elif platform == Platform.YOUTUBE.value:
            hints.append("YouTube videos with clear ingredient lists in description work best")
            hints.append("Cooking channels often have timestamps for ingredients")
        elif classification.metadata.get("is_recipe_site"):
            hints.append("Recipe websites usually have structured data for best results")
    elif classification.type is InputKind.TEXT:
        hints.append("For best results, include both ingredients list and cooking steps")
        hints.append("Use clear formatting with bullet points or numbers")
    elif classification.type is InputKind.IMAGE:
        hints.append("Ensure text is clear and well-lit for better OCR results")
        hints.append("Recipe cards and screenshots work better than photos of printed recipes")
    elif classification.type is InputKind.VIDEO:
        hints.append("Videos with clear narration or on-screen text work best")
        hints.append("Consider extracting a screenshot if video quality is poor")
    return hints
