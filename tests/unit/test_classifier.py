"""Unit tests for recipe_importer.classifier module.

Tests input classification, source routing and the pre-flight
validation gate.
"""

import pytest

from recipe_importer.classifier import (
    MAX_IMAGE_BYTES,
    Classification,
    FileDescriptor,
    ImportInput,
    Platform,
    classify_file,
    classify_input,
    classify_text,
    classify_url,
    detect_platform,
    detect_source_kind,
    is_recipe_site,
    is_video_url,
    platform_hints,
    validate_input,
)
from recipe_importer.exceptions import InputValidationError
from recipe_importer.models import InputKind, SourceKind


class TestPlatformDetection:
    """Tests for URL platform helpers."""

    @pytest.mark.parametrize(
        ("url", "platform"),
        [
            ("https://www.tiktok.com/@chef.joe/video/7234567890", Platform.TIKTOK),
            ("https://vm.tiktok.com/ZMabc123", Platform.TIKTOK),
            ("https://www.instagram.com/reel/Cx12ab", Platform.INSTAGRAM),
            ("https://www.youtube.com/watch?v=dQw4w9WgXcQ", Platform.YOUTUBE),
            ("https://youtu.be/dQw4w9WgXcQ", Platform.YOUTUBE),
            ("https://fb.watch/abc123", Platform.FACEBOOK),
            ("https://pin.it/xyz", Platform.PINTEREST),
        ],
    )
    def test_detect_platform(self, url: str, platform: Platform) -> None:
        """Known platform URLs are recognized."""
        assert detect_platform(url) is platform

    def test_unknown_host(self) -> None:
        """Ordinary sites have no platform."""
        assert detect_platform("https://example.com/soup") is None

    def test_instagram_post_is_not_video(self) -> None:
        """Only Instagram reels count as video posts."""
        assert is_video_url("https://www.instagram.com/reel/Cx12ab")
        assert not is_video_url("https://www.instagram.com/p/Cx12ab")

    def test_pinterest_is_not_video(self) -> None:
        """Pinterest pins are not video posts."""
        assert not is_video_url("https://pin.it/xyz")

    def test_is_recipe_site(self) -> None:
        """Publisher hosts and recipe paths are recipe sites."""
        assert is_recipe_site("https://www.allrecipes.com/recipe/123/soup")
        assert is_recipe_site("https://blog.example.com/recipes/soup")
        assert not is_recipe_site("https://example.com/about")


class TestClassifyInput:
    """Tests for classify_input and its helpers."""

    def test_empty_request_raises(self) -> None:
        """An empty request is rejected before anything else."""
        with pytest.raises(InputValidationError) as exc_info:
            classify_input(ImportInput())
        assert exc_info.value.reasons == ["No url, text or file provided"]

    def test_whitespace_text_raises(self) -> None:
        """Whitespace-only text counts as empty."""
        with pytest.raises(InputValidationError):
            classify_input(ImportInput(text="   \n "))

    def test_file_wins_over_url(self) -> None:
        """A file is classified even when a URL is also present."""
        request = ImportInput(
            url="https://example.com", file=FileDescriptor(uri="/tmp/a.png", mime_type="image/png")
        )
        assert classify_input(request).type is InputKind.IMAGE

    def test_bare_url_text_is_url(self) -> None:
        """Text consisting of one URL is treated as a URL."""
        result = classify_input(ImportInput(text="https://example.com/soup"))
        assert result.type is InputKind.URL

    def test_classify_url_confidence(self) -> None:
        """Platform URLs score highest, recipe sites next."""
        assert classify_url("https://youtu.be/abc").confidence == 0.95
        recipe_site = classify_url("https://www.seriouseats.com/soup")
        assert recipe_site.confidence == 0.9
        assert recipe_site.metadata["is_recipe_site"] is True
        assert classify_url("https://example.com/blog").confidence == 0.8

    def test_classify_text_structured(self, sample_recipe_text: str) -> None:
        """Labeled sections, bullets and measurements raise the score."""
        result = classify_text(sample_recipe_text)
        assert result.type is InputKind.TEXT
        assert result.confidence == 0.95
        assert result.metadata["bullet_points"] == 3
        assert result.metadata["has_recipe_structure"] is True

    def test_classify_text_plain(self) -> None:
        """Unstructured prose keeps the base score."""
        result = classify_text("We went to the beach and had a lovely time.")
        assert result.confidence == 0.5
        assert result.metadata["has_recipe_structure"] is False

    @pytest.mark.parametrize(
        ("descriptor", "kind", "confidence"),
        [
            (FileDescriptor(uri="a", mime_type="image/jpeg"), InputKind.IMAGE, 0.95),
            (FileDescriptor(uri="a", mime_type="video/mp4"), InputKind.VIDEO, 0.95),
            (FileDescriptor(uri="/x/card.PNG"), InputKind.IMAGE, 0.8),
            (FileDescriptor(uri="/x/clip.mov"), InputKind.VIDEO, 0.8),
            (FileDescriptor(uri="/x/notes.pdf"), InputKind.IMAGE, 0.3),
        ],
    )
    def test_classify_file(
        self, descriptor: FileDescriptor, kind: InputKind, confidence: float
    ) -> None:
        """MIME type wins, then extension, then a low-confidence image guess."""
        result = classify_file(descriptor)
        assert result.type is kind
        assert result.confidence == confidence


class TestDetectSourceKind:
    """Tests for detect_source_kind."""

    @pytest.mark.parametrize(
        ("request_", "kind"),
        [
            (ImportInput(url="https://www.tiktok.com/@a/video/123"), SourceKind.VIDEO_URL),
            (ImportInput(url="https://www.instagram.com/p/abc"), SourceKind.RECIPE_URL),
            (ImportInput(url="https://example.com/soup"), SourceKind.RECIPE_URL),
            (ImportInput(text="Ingredients: 2 cups flour"), SourceKind.TEXT),
            (ImportInput(file=FileDescriptor(uri="a.jpg")), SourceKind.IMAGE_FILE),
            (ImportInput(file=FileDescriptor(uri="a.mp4")), SourceKind.VIDEO_FILE),
        ],
    )
    def test_routing(self, request_: ImportInput, kind: SourceKind) -> None:
        """Each input routes to one source kind."""
        assert detect_source_kind(request_, classify_input(request_)) is kind


class TestValidateInput:
    """Tests for the pre-flight validation gate."""

    def test_short_text_rejected(self) -> None:
        """Text under ten characters is an error."""
        request = ImportInput(text="eggs")
        result = validate_input(request, classify_input(request))
        assert not result.is_valid
        assert "too short" in result.errors[0]

    def test_short_text_raise_for_errors(self) -> None:
        """raise_for_errors turns errors into InputValidationError."""
        request = ImportInput(text="eggs")
        with pytest.raises(InputValidationError, match="Input rejected"):
            validate_input(request, classify_input(request)).raise_for_errors()

    def test_recipe_text_accepted(self, sample_recipe_text: str) -> None:
        """Well-formed recipe text passes without warnings."""
        request = ImportInput(text=sample_recipe_text)
        result = validate_input(request, classify_input(request))
        assert result.is_valid
        assert result.warnings == ()

    def test_prose_text_warns(self) -> None:
        """Text with no ingredients or steps passes with warnings."""
        request = ImportInput(text="We went to the beach and had a lovely time.")
        result = validate_input(request, classify_input(request))
        assert result.is_valid
        assert "No ingredients list detected" in result.warnings
        assert "No cooking steps detected" in result.warnings

    def test_http_url_warns(self) -> None:
        """Plain http URLs are accepted with a warning."""
        request = ImportInput(url="http://example.com/soup")
        result = validate_input(request, classify_input(request))
        assert result.is_valid
        assert any("not secure" in w for w in result.warnings)

    def test_unsupported_url_scheme(self) -> None:
        """Non-http schemes are rejected."""
        request = ImportInput(url="ftp://example.com/soup")
        result = validate_input(request, classify_input(request))
        assert not result.is_valid

    def test_oversized_image(self) -> None:
        """Images over the size limit are rejected."""
        request = ImportInput(
            file=FileDescriptor(uri="a.jpg", mime_type="image/jpeg", size=MAX_IMAGE_BYTES + 1)
        )
        result = validate_input(request, classify_input(request))
        assert not result.is_valid
        assert "too large" in result.errors[0]

    def test_unsupported_mime_type(self) -> None:
        """Unknown file types with a MIME type are rejected."""
        request = ImportInput(file=FileDescriptor(uri="a.pdf", mime_type="application/pdf"))
        result = validate_input(request, classify_input(request))
        assert not result.is_valid
        assert "Unsupported file type: application/pdf" in result.errors

    def test_unknown_type_without_mime_warns(self) -> None:
        """Without a MIME type the file is treated as an image with a warning."""
        request = ImportInput(file=FileDescriptor(uri="scan"))
        result = validate_input(request, classify_input(request))
        assert result.is_valid
        assert result.warnings


class TestPlatformHints:
    """Tests for platform_hints."""

    def test_tiktok_hints(self) -> None:
        """TikTok URLs get TikTok-specific hints."""
        hints = platform_hints(classify_url("https://www.tiktok.com/@a/video/1"))
        assert any("TikTok" in hint for hint in hints)

    def test_text_hints(self) -> None:
        """Text inputs get formatting hints."""
        hints = platform_hints(Classification(InputKind.TEXT, 0.5))
        assert len(hints) == 2
