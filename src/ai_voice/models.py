"""Data model shared by the selector, backends and MCP server."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional, Union


class Engine(str, enum.Enum):
    """The two mutually exclusive synthesis paths."""

    LOCAL = "platform"
    CLOUD = "openai"


# ─── Cloud catalog ──────────────────────────────────────────────────

CLOUD_VOICES: dict[str, dict[str, str]] = {
    "alloy": {"gender": "neutral", "description": "Balanced, versatile voice"},
    "echo": {"gender": "male", "description": "Clear, direct masculine voice"},
    "fable": {"gender": "neutral", "description": "Expressive, storytelling voice"},
    "onyx": {"gender": "male", "description": "Deep, authoritative masculine voice"},
    "nova": {"gender": "female", "description": "Warm, engaging feminine voice"},
    "shimmer": {"gender": "female", "description": "Bright, energetic feminine voice"},
}

# Quality tier name → OpenAI model id
CLOUD_MODELS: dict[str, str] = {
    "standard": "tts-1",
    "hd": "tts-1-hd",
}

CLOUD_FORMATS = ("mp3", "opus", "aac", "flac")

MIN_SPEED = 0.25
MAX_SPEED = 4.0

MAX_ECHO_REPEATS = 10
MAX_ECHO_DELAY_MS = 2000
ECHO_VOLUME_FLOOR = 0.1


# ─── Echo ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class EchoConfig:
    """Echo post-effect applied when playing cloud audio.

    Repeat ``i`` (1-based) starts ``delay_ms * i`` after the original and
    plays at ``volumes[i - 1]``, or at the last volume once the sequence
    runs out.
    """

    delay_ms: int = 110
    volumes: tuple[float, ...] = (0.3, 0.1, 0.03, 0.01)
    repeat_count: int = 4

    def volume_for(self, repeat: int) -> float:
        if not self.volumes:
            return 0.1
        return self.volumes[min(repeat, len(self.volumes)) - 1]


SIGNATURE_ECHO = EchoConfig()


# ─── Requests and results ────────────────────────────────────────────


@dataclass(frozen=True)
class SynthesisRequest:
    """One inbound ``say`` call after validation."""

    text: str
    language: Optional[str] = None
    voice_name: Optional[str] = None
    use_cloud: Optional[bool] = None
    cloud_voice: Optional[str] = None
    cloud_model: Optional[str] = None
    cloud_speed: Optional[float] = None
    cloud_format: Optional[str] = None
    echo: Union[bool, EchoConfig] = True


@dataclass(frozen=True)
class EngineStatus:
    """Backend availability, computed once at startup."""

    local_available: bool = True
    cloud_available: bool = False
    preferred_engine: Engine = Engine.LOCAL

    @classmethod
    def from_cloud_availability(cls, cloud_available: bool) -> "EngineStatus":
        return cls(
            local_available=True,
            cloud_available=cloud_available,
            preferred_engine=Engine.CLOUD if cloud_available else Engine.LOCAL,
        )

    def as_dict(self) -> dict:
        return {
            "platform": self.local_available,
            "openai": self.cloud_available,
            "preferred": self.preferred_engine.value,
        }


@dataclass(frozen=True)
class SynthesisResult:
    """Outcome of one request, logged and discarded."""

    engine_used: Engine
    success: bool
    voice_description: str
    error_message: Optional[str] = None
    duration_ms: int = 0
    audio_file: Optional[str] = None


@dataclass(frozen=True)
class VoiceInfo:
    """An installed platform voice."""

    id: str
    name: str
    language: str
    language_code: str
    quality: str = "standard"
    gender: str = "male"


@dataclass(frozen=True)
class CloudAudio:
    """A cloud-synthesized audio file on disk."""

    path: str
    voice: str
    model: str
    format: str
    duration_ms: int = 0
