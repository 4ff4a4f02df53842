"""OpenAI speech synthesis backend.

Sends text to the OpenAI TTS endpoint and stores the returned audio in a
shared output directory.  Filenames carry a nanosecond timestamp plus a
random suffix so concurrent requests never collide.  Playback is not done
here; the selector hands the file to the AudioPlayer.
"""

from __future__ import annotations

import os
import time
import uuid
from typing import Any, Optional

import openai

from .errors import CloudBackendError, ConfigurationError
from .logging import get_logger, log_context
from .models import (
    CLOUD_FORMATS,
    CLOUD_MODELS,
    CLOUD_VOICES,
    CloudAudio,
)
from .validation import clamp_speed

_log = get_logger("ai-voice.cloud")


def resolve_model(model: Optional[str], default: str = "tts-1") -> str:
    """Map a quality tier ("standard"/"hd") or raw model id to a model id."""
    if not model:
        return default
    return CLOUD_MODELS.get(model, model)


def voice_info(voice: str) -> str:
    """Display string for a cloud voice: ``nova (Warm, engaging feminine voice)``."""
    data = CLOUD_VOICES.get(voice)
    if data is None:
        return voice
    return f"{voice} ({data['description']})"


class CloudVoiceBackend:
    """OpenAI TTS client writing audio files for background playback."""

    def __init__(self, api_key: str = "", output_dir: str = "",
                 default_voice: str = "nova", default_model: str = "tts-1",
                 default_speed: float = 1.0, default_format: str = "mp3",
                 base_url: Optional[str] = None,
                 client: Any = None):
        self._api_key = (api_key or "").strip()
        self.output_dir = output_dir
        self.default_voice = default_voice if default_voice in CLOUD_VOICES else "nova"
        self.default_model = resolve_model(default_model)
        self.default_speed = clamp_speed(default_speed)
        self.default_format = default_format if default_format in CLOUD_FORMATS else "mp3"
        self._client = client
        if self._client is None and self._api_key:
            self._client = openai.AsyncOpenAI(api_key=self._api_key, base_url=base_url or None)

    @property
    def available(self) -> bool:
        return bool(self._api_key) and self._client is not None

    def _output_path(self, response_format: str) -> str:
        filename = f"openai_tts_{time.time_ns()}_{uuid.uuid4().hex[:8]}.{response_format}"
        return os.path.join(self.output_dir, filename)

    async def invoke(self, text: str, voice: Optional[str] = None,
                     model: Optional[str] = None, speed: Optional[float] = None,
                     response_format: Optional[str] = None) -> CloudAudio:
        """Synthesize *text* to an audio file and return where it was written.

        Raises ConfigurationError without a credential, CloudBackendError
        for unknown parameters or any API/network/file failure.
        """
        if not self.available:
            raise ConfigurationError("OpenAI TTS engine is not available (no API key configured)")

        voice = voice or self.default_voice
        model = resolve_model(model, self.default_model)
        response_format = response_format or self.default_format
        speed = clamp_speed(speed if speed is not None else self.default_speed)

        if voice not in CLOUD_VOICES:
            raise CloudBackendError(f"Unknown OpenAI voice '{voice}' — available: {', '.join(CLOUD_VOICES)}")
        if model not in CLOUD_MODELS.values():
            raise CloudBackendError(f"Unknown OpenAI model '{model}' — available: {', '.join(CLOUD_MODELS.values())}")
        if response_format not in CLOUD_FORMATS:
            raise CloudBackendError(f"Unknown audio format '{response_format}' — available: {', '.join(CLOUD_FORMATS)}")

        start = time.monotonic()
        try:
            response = await self._client.audio.speech.create(
                model=model,
                voice=voice,
                input=text,
                response_format=response_format,
                speed=speed,
            )
            audio = response.content
        except openai.APIStatusError as e:
            raise CloudBackendError(
                f"OpenAI API Error ({e.status_code}): {e.message}", status_code=e.status_code,
            ) from e
        except openai.OpenAIError as e:
            raise CloudBackendError(f"OpenAI TTS error: {e}") from e

        path = self._output_path(response_format)
        try:
            os.makedirs(self.output_dir, exist_ok=True)
            with open(path, "wb") as f:
                f.write(audio)
        except OSError as e:
            raise CloudBackendError(f"Failed to write audio file {path}: {e}") from e

        duration_ms = int((time.monotonic() - start) * 1000)
        _log.debug("OpenAI audio written to %s", path,
                   extra={"context": log_context(engine="openai", duration_ms=duration_ms,
                                                 voice=voice, model=model, bytes=len(audio))})
        return CloudAudio(path=path, voice=voice, model=model,
                          format=response_format, duration_ms=duration_ms)

    def cleanup_old_files(self, max_age_hours: float = 24) -> int:
        """Delete audio files older than *max_age_hours*. Returns the count removed."""
        if not os.path.isdir(self.output_dir):
            return 0
        cutoff = time.time() - max_age_hours * 3600
        removed = 0
        try:
            entries = list(os.scandir(self.output_dir))
        except OSError as e:
            _log.warning("Cannot scan audio directory %s: %s", self.output_dir, e)
            return 0
        for entry in entries:
            try:
                if entry.is_file() and entry.stat().st_mtime < cutoff:
                    os.unlink(entry.path)
                    removed += 1
            except OSError as e:
                _log.debug("Could not remove %s: %s", entry.path, e)
        if removed:
            _log.info("Removed %d stale audio file(s) from %s", removed, self.output_dir)
        return removed
