"""Evidence extraction from local video files.

Signals are gathered in cost order: embedded caption tracks first, then OCR
over frames sampled at a fixed interval, then speech-to-text over the audio
track (only when the file is known to carry audio). Everything found is
deduplicated and merged into one labeled evidence block.

Frame count is capped, so worst-case work is bounded by ``max_frames`` and
not by the length of the video.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Final

from .exceptions import ExtractionError, RetryableError, ServiceError
from .protocols import MediaInfo, MediaToolkit, OcrService, SpeechToTextService

logger = logging.getLogger(__name__)

METHOD_CAPTIONS: Final = "embedded-captions"
METHOD_FRAME_OCR: Final = "frame-ocr"
METHOD_AUDIO: Final = "audio-transcription"

HEADING_CAPTIONS: Final = "Video Captions:"
HEADING_ON_SCREEN: Final = "On-screen Text:"
HEADING_AUDIO: Final = "Audio Transcript:"

_VTT_TIMING: Final = re.compile(r"^\s*(?:\d{1,2}:)?\d{1,2}:\d{2}[.,]\d{3}\s*-->\s*")
_SRT_INDEX: Final = re.compile(r"^\s*\d+\s*$")
_CUE_TAGS: Final = re.compile(r"<[^>]+>")


# ============================================================================
# Caption parsing
# ============================================================================


def parse_webvtt(content: str) -> list[str]:
    """Extract cue text lines from a WebVTT document.

    Example:
        >>> parse_webvtt("WEBVTT\\n\\n00:00.000 --> 00:02.000\\nAdd the <b>flour</b>\\n")
        ['Add the flour']
    """
    lines: list[str] = []
    in_note = False
    for raw in content.splitlines():
        line = raw.strip()
        if not line:
            in_note = False
            continue
        if line.startswith("WEBVTT") or line.startswith(("STYLE", "REGION")):
            continue
        if line.startswith("NOTE"):
            in_note = True
            continue
        if in_note or _VTT_TIMING.match(line):
            continue
        text = _CUE_TAGS.sub("", line).strip()
        if text:
            lines.append(text)
    return _dedupe_consecutive(lines)


def parse_srt(content: str) -> list[str]:
    """Extract subtitle text lines from an SRT document."""
    lines: list[str] = []
    for raw in content.splitlines():
        line = raw.strip()
        if not line or _SRT_INDEX.match(line) or _VTT_TIMING.match(line):
            continue
        text = _CUE_TAGS.sub("", line).strip()
        if text:
            lines.append(text)
    return _dedupe_consecutive(lines)


def parse_captions(content: str) -> list[str]:
    """Parse either caption format, sniffing WebVTT by its header."""
    if content.lstrip().startswith("WEBVTT"):
        return parse_webvtt(content)
    return parse_srt(content)


def _dedupe_consecutive(lines: list[str]) -> list[str]:
    out: list[str] = []
    for line in lines:
        if not out or out[-1] != line:
            out.append(line)
    return out


def dedupe_lines(lines: list[str]) -> list[str]:
    """Drop repeated lines (case and whitespace insensitive), keeping first occurrence."""
    seen: set[str] = set()
    out: list[str] = []
    for line in lines:
        key = re.sub(r"\s+", " ", line).strip().lower()
        if key and key not in seen:
            seen.add(key)
            out.append(line.strip())
    return out


def sample_timestamps(duration: float, interval: float, max_frames: int) -> list[float]:
    """Timestamps every ``interval`` seconds, at most ``max_frames`` of them.

    Example:
        >>> sample_timestamps(35.0, 10.0, 8)
        [0.0, 10.0, 20.0, 30.0]
    """
    if duration <= 0 or interval <= 0 or max_frames < 1:
        return []
    stamps: list[float] = []
    at = 0.0
    while at < duration and len(stamps) < max_frames:
        stamps.append(round(at, 3))
        at += interval
    return stamps


# ============================================================================
# Extraction
# ============================================================================


@dataclass(frozen=True)
class VideoExtraction:
    """Merged evidence from one video file.

    Attributes:
        text: Labeled evidence block
        methods: Method tags of the signals that contributed
        confidence: Sum of per-signal contributions, capped at 1.0
        caption_lines: Lines read from caption tracks
        ocr_lines: Lines recognized in sampled frames
        transcript: Speech-to-text output
        frames_sampled: Number of frames sent to OCR
        media: Probe result
        notes: Degraded paths taken along the way
    """

    text: str
    methods: tuple[str, ...]
    confidence: float
    caption_lines: tuple[str, ...] = ()
    ocr_lines: tuple[str, ...] = ()
    transcript: str = ""
    frames_sampled: int = 0
    media: MediaInfo | None = None
    notes: tuple[str, ...] = field(default_factory=tuple)

    @property
    def sources(self) -> dict[str, str]:
        """Raw text per signal, for the evidence record."""
        sources: dict[str, str] = {}
        if self.caption_lines:
            sources[METHOD_CAPTIONS] = "\n".join(self.caption_lines)
        if self.ocr_lines:
            sources[METHOD_FRAME_OCR] = "\n".join(self.ocr_lines)
        if self.transcript:
            sources[METHOD_AUDIO] = self.transcript
        return sources


def merge_signals(caption_lines: list[str], ocr_lines: list[str], transcript: str) -> str:
    """Build the labeled evidence block.

    Lines already present under an earlier heading are not repeated under a
    later one.
    """
    seen: set[str] = set()
    sections: list[str] = []

    def unseen(lines: list[str]) -> list[str]:
        fresh = []
        for line in dedupe_lines(lines):
            key = re.sub(r"\s+", " ", line).lower()
            if key not in seen:
                seen.add(key)
                fresh.append(line)
        return fresh

    for heading, lines in (
        (HEADING_CAPTIONS, caption_lines),
        (HEADING_ON_SCREEN, ocr_lines),
        (HEADING_AUDIO, [transcript] if transcript.strip() else []),
    ):
        fresh = unseen(lines)
        if fresh:
            sections.append("\n".join([heading, *fresh]))
    return "\n\n".join(sections)


class VideoContentExtractor:
    """Caption-first evidence extraction for a local video file."""

    def __init__(
        self,
        media: MediaToolkit,
        ocr: OcrService | None = None,
        stt: SpeechToTextService | None = None,
        *,
        frame_interval: float = 10.0,
        max_frames: int = 8,
        transcribe_audio: bool = True,
        language: str | None = "english",
        min_caption_length: int = 80,
    ) -> None:
        self.media = media
        self.ocr = ocr
        self.stt = stt
        self.frame_interval = frame_interval
        self.max_frames = max_frames
        self.transcribe_audio = transcribe_audio
        self.language = language
        self.min_caption_length = min_caption_length

    async def extract(self, path: str) -> VideoExtraction:
        """Gather every available signal from the file at ``path``.

        Raises:
            ExtractionError: If no signal produced any text
        """
        info = await self.media.probe(path)
        logger.info(
            f"Video probe: {info.duration:.1f}s, audio={info.has_audio}, "
            f"subtitle streams={info.subtitle_streams}"
        )
        notes: list[str] = []
        methods: list[str] = []
        confidence = 0.0

        caption_lines: list[str] = []
        if info.subtitle_streams:
            raw = await self.media.read_captions(path)
            if raw:
                caption_lines = parse_captions(raw)
        if caption_lines:
            methods.append(METHOD_CAPTIONS)
            confidence += 0.3
        captions_sufficient = len(" ".join(caption_lines)) >= self.min_caption_length

        ocr_lines: list[str] = []
        frames_sampled = 0
        if not captions_sufficient:
            if self.ocr is None:
                notes.append("Frame OCR unavailable")
            else:
                ocr_lines, frames_sampled, frames_read = await self._read_frames(path, info.duration)
                if ocr_lines:
                    methods.append(METHOD_FRAME_OCR)
                    confidence += 0.4 * (frames_read / frames_sampled)

        transcript = ""
        if not info.has_audio:
            notes.append("No audio stream detected; skipped transcription")
        elif not self.transcribe_audio or self.stt is None:
            notes.append("Audio transcription disabled")
        else:
            transcript = await self._transcribe(path, notes)
            if transcript:
                methods.append(METHOD_AUDIO)
                confidence += 0.4

        text = merge_signals(caption_lines, ocr_lines, transcript)
        if not text:
            raise ExtractionError(
                "No captions, on-screen text or speech found in video",
                path=path,
                frames_sampled=frames_sampled,
            )

        return VideoExtraction(
            text=text,
            methods=tuple(methods),
            confidence=min(1.0, round(confidence, 4)),
            caption_lines=tuple(caption_lines),
            ocr_lines=tuple(ocr_lines),
            transcript=transcript,
            frames_sampled=frames_sampled,
            media=info,
            notes=tuple(notes),
        )

    async def _read_frames(self, path: str, duration: float) -> tuple[list[str], int, int]:
        """OCR every sampled frame; returns (lines, frames sampled, frames with text)."""
        stamps = sample_timestamps(duration, self.frame_interval, self.max_frames)
        lines: list[str] = []
        frames_read = 0
        for at in stamps:
            try:
                frame = await self.media.extract_frame(path, at)
                result = await self.ocr.recognize(frame)
            except (ExtractionError, ServiceError, RetryableError) as e:
                logger.warning(f"Frame OCR failed at {at:.1f}s: {e}")
                continue
            frame_lines = [line.strip() for line in result.text.splitlines() if line.strip()]
            if frame_lines:
                frames_read += 1
                lines.extend(frame_lines)
        logger.debug(f"OCR read text from {frames_read}/{len(stamps)} frames")
        return dedupe_lines(lines), len(stamps), frames_read

    async def _transcribe(self, path: str, notes: list[str]) -> str:
        try:
            audio_path = await self.media.extract_audio(path)
        except ExtractionError as e:
            logger.warning(f"Audio extraction failed: {e}")
            notes.append(f"Audio transcription failed: {e.message}")
            return ""
        try:
            transcript = await self.stt.transcribe(audio_path, language=self.language)
        except (ExtractionError, ServiceError, RetryableError) as e:
            logger.warning(f"Audio transcription failed: {e}")
            notes.append(f"Audio transcription failed: {e.message}")
            return ""
        finally:
            Path(audio_path).unlink(missing_ok=True)
        return transcript.text.strip()


@dataclass(frozen=True)
class VideoAssessment:
    """Quality verdict on a ``VideoExtraction``."""

    is_useful: bool
    issues: tuple[str, ...]
    suggestions: tuple[str, ...]


def assess_video_extraction(extraction: VideoExtraction, min_text_length: int = 50) -> VideoAssessment:
    """List problems with a video extraction and what the user could do about them."""
    issues: list[str] = []
    suggestions: list[str] = []

    if len(extraction.text) < min_text_length:
        issues.append("Very little text content extracted")
        suggestions.append("Try a video with clear on-screen text or spoken instructions")
    if not extraction.methods:
        issues.append("No extraction methods succeeded")
        suggestions.append("Check that the video file is valid and not corrupted")
    if extraction.confidence < 0.3:
        issues.append("Low extraction confidence")
        suggestions.append("Consider adding a written recipe alongside the video")
    if extraction.media is not None and not extraction.media.has_audio and not extraction.ocr_lines:
        suggestions.append("Videos with narration or captions import more reliably")

    return VideoAssessment(
        is_useful=not issues, issues=tuple(issues), suggestions=tuple(suggestions)
    )
