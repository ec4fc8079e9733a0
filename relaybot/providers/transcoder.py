"""Voice-note transcoding for provider compatibility."""

from __future__ import annotations

import asyncio
import shutil
import subprocess
import tempfile
from pathlib import Path

from loguru import logger

from relaybot.agent.errors import MediaConversionFailed
from relaybot.providers.base import MediaAttachment

# Container formats the provider rejects for audio input.
TRANSCODE_MIME_TYPES = {
    "audio/ogg": ".ogg",
    "audio/webm": ".webm",
    "video/webm": ".webm",
    "audio/opus": ".ogg",
}


def _base_mime(mime_type: str) -> str:
    return (mime_type or "").split(";", 1)[0].strip().lower()


def needs_transcode(mime_type: str) -> bool:
    return _base_mime(mime_type) in TRANSCODE_MIME_TYPES


class MediaTranscoder:
    """Convert ogg/webm voice notes to mp3 with ffmpeg; fall back to the original."""

    def __init__(self, enabled: bool = True, ffmpeg_path: str = ""):
        self.enabled = enabled
        self.ffmpeg_path = ffmpeg_path

    def _resolve_ffmpeg(self) -> str | None:
        if self.ffmpeg_path:
            return self.ffmpeg_path
        return shutil.which("ffmpeg")

    async def process(self, attachment: MediaAttachment) -> MediaAttachment:
        """Return an mp3 copy when conversion applies and succeeds, else the input."""
        if not self.enabled or not needs_transcode(attachment.mime_type):
            return attachment
        try:
            data = await asyncio.to_thread(self._convert, attachment)
        except MediaConversionFailed as e:
            logger.warning(f"Conversion failed, using original {attachment.mime_type}: {e}")
            return attachment
        return MediaAttachment(data=data, mime_type="audio/mp3")

    def _convert(self, attachment: MediaAttachment) -> bytes:
        ffmpeg = self._resolve_ffmpeg()
        if not ffmpeg:
            raise MediaConversionFailed("ffmpeg not found")

        suffix = TRANSCODE_MIME_TYPES[_base_mime(attachment.mime_type)]
        try:
            with tempfile.TemporaryDirectory(prefix="relaybot-media-") as tmp:
                source = Path(tmp) / f"input{suffix}"
                target = Path(tmp) / "output.mp3"
                source.write_bytes(attachment.data)
                subprocess.run(
                    [
                        ffmpeg,
                        "-y",
                        "-i",
                        str(source),
                        "-codec:a",
                        "libmp3lame",
                        "-q:a",
                        "4",
                        str(target),
                    ],
                    check=True,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    text=True,
                )
                if not target.exists() or target.stat().st_size == 0:
                    raise MediaConversionFailed("ffmpeg produced no output")
                return target.read_bytes()
        except (OSError, subprocess.SubprocessError) as e:
            raise MediaConversionFailed(str(e)) from e
