"""ffmpeg/ffprobe implementation of the media toolkit.

All work runs in subprocesses started with ``asyncio.create_subprocess_exec``
so the event loop is never blocked on decoding.
"""

import asyncio
import base64
import json
import logging
import os
import tempfile
from typing import Any

from ..exceptions import ExtractionError
from ..protocols import MediaInfo

logger = logging.getLogger(__name__)


def parse_probe_output(output: str | bytes) -> MediaInfo:
    """Build ``MediaInfo`` from ``ffprobe -print_format json`` output.

    Example:
        >>> parse_probe_output('{"format": {"duration": "12.5"}, "streams": [{"codec_type": "audio"}]}')
        MediaInfo(duration=12.5, has_audio=True, subtitle_streams=0)
    """
    try:
        data: dict[str, Any] = json.loads(output or "{}")
    except json.JSONDecodeError as e:
        raise ExtractionError(f"Unreadable ffprobe output: {e}") from e

    streams = data.get("streams") or []
    duration = _as_float((data.get("format") or {}).get("duration"))
    if duration is None:
        stream_durations = [_as_float(stream.get("duration")) for stream in streams]
        duration = max((d for d in stream_durations if d is not None), default=0.0)

    return MediaInfo(
        duration=duration,
        has_audio=any(stream.get("codec_type") == "audio" for stream in streams),
        subtitle_streams=sum(1 for stream in streams if stream.get("codec_type") == "subtitle"),
    )


def _as_float(value: Any) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class FfmpegMediaToolkit:
    """Probe, caption, frame and audio access for local video files."""

    def __init__(self, ffmpeg: str = "ffmpeg", ffprobe: str = "ffprobe", timeout: float = 120.0) -> None:
        self.ffmpeg = ffmpeg
        self.ffprobe = ffprobe
        self.timeout = timeout

    async def probe(self, path: str) -> MediaInfo:
        output = await self._run(
            [self.ffprobe, "-v", "error", "-print_format", "json", "-show_format", "-show_streams", path]
        )
        return parse_probe_output(output)

    async def read_captions(self, path: str) -> str | None:
        """First subtitle track as WebVTT, or None if it cannot be decoded."""
        try:
            output = await self._run(
                [self.ffmpeg, "-v", "error", "-i", path, "-map", "0:s:0", "-f", "webvtt", "-"]
            )
        except ExtractionError as e:
            logger.warning(f"Could not read embedded captions: {e}")
            return None
        return output.decode("utf-8", errors="replace") or None

    async def extract_frame(self, path: str, at_seconds: float) -> str:
        output = await self._run(
            [
                self.ffmpeg, "-v", "error", "-ss", f"{at_seconds:.3f}", "-i", path,
                "-frames:v", "1", "-f", "image2pipe", "-vcodec", "png", "-",
            ]
        )  # fmt: skip
        if not output:
            raise ExtractionError("No frame decoded", path=path, at_seconds=at_seconds)
        return "data:image/png;base64," + base64.b64encode(output).decode("ascii")

    async def extract_audio(self, path: str) -> str:
        """Mono 16 kHz MP3 in a temporary file; the caller owns cleanup on success."""
        fd, out_path = tempfile.mkstemp(prefix="recipe-audio-", suffix=".mp3")
        os.close(fd)
        try:
            await self._run(
                [
                    self.ffmpeg, "-v", "error", "-y", "-i", path,
                    "-vn", "-ac", "1", "-ar", "16000", "-b:a", "64k", out_path,
                ]
            )  # fmt: skip
        except ExtractionError:
            os.unlink(out_path)
            raise
        return out_path

    async def _run(self, args: list[str]) -> bytes:
        logger.debug(f"$ {' '.join(args)}")
        try:
            process = await asyncio.create_subprocess_exec(
                *args, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE
            )
        except FileNotFoundError as e:
            raise ExtractionError(f"{args[0]} is not installed", command=args[0]) from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except TimeoutError as e:
            process.kill()
            await process.wait()
            raise ExtractionError(f"{args[0]} timed out", timeout=self.timeout) from e

        if process.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip().splitlines()
            raise ExtractionError(
                f"{args[0]} exited with status {process.returncode}",
                stderr=detail[-1] if detail else "",
            )
        return stdout
