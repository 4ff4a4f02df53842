"""Inbound ``say`` argument parsing.

Turns the loosely-typed tool arguments into an immutable SynthesisRequest.
Structural problems raise ValidationError before any engine is chosen.
Cloud voice and model names are only type-checked here: an unknown name is
accepted and fails later inside the cloud backend, where it triggers the
normal fallback to the platform voice.
"""

from __future__ import annotations

import math
import re
from typing import Any, Mapping, Optional, Union

from .errors import ValidationError
from .models import (
    ECHO_VOLUME_FLOOR,
    MAX_ECHO_DELAY_MS,
    MAX_ECHO_REPEATS,
    MAX_SPEED,
    MIN_SPEED,
    EchoConfig,
    SynthesisRequest,
)

SAY_FIELDS = frozenset({
    "text", "language", "useOpenAI", "openaiVoice",
    "openaiModel", "openaiSpeed", "openaiFormat", "echo",
})

ECHO_FIELDS = frozenset({"delay", "volume", "repeats"})

# "en", "pl", "en-us", "en_GB", "zh-yue" are language tags, anything else
# longer than two letters is taken as a voice name ("Samantha", "Fred").
_LANGUAGE_TAG = re.compile(r"^[a-zA-Z]{2,3}([-_][a-zA-Z0-9]{2,8})*$")


def clamp_speed(speed: float) -> float:
    """Clamp a speed multiplier into the range the cloud API accepts."""
    return max(MIN_SPEED, min(MAX_SPEED, float(speed)))


def is_language_tag(value: str) -> bool:
    if len(value) <= 2:
        return True
    return bool(_LANGUAGE_TAG.match(value)) and ("-" in value or "_" in value)


def _optional_str(args: Mapping[str, Any], key: str) -> Optional[str]:
    value = args.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string")
    value = value.strip()
    return value or None


def _optional_bool(args: Mapping[str, Any], key: str) -> Optional[bool]:
    value = args.get(key)
    if value is None:
        return None
    if not isinstance(value, bool):
        raise ValidationError(f"{key} must be a boolean")
    return value


def _number(value: Any, name: str) -> float:
    # bool is an int subclass, reject it explicitly
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{name} must be a number")
    if not math.isfinite(value):
        raise ValidationError(f"{name} must be a number")
    return float(value)


def _check_volumes(volumes: tuple[float, ...]) -> None:
    for v in volumes:
        if not 0 < v <= 1:
            raise ValidationError("echo.volume values must be in (0, 1]")


def parse_echo(value: Any, defaults: EchoConfig,
               default_enabled: bool = True) -> Union[bool, EchoConfig]:
    """Parse the ``echo`` option.

    ``True`` means "echo with the configured defaults", ``False`` disables
    echo, ``None`` falls back to *default_enabled*, and an object overrides
    individual fields of *defaults*.  A single ``volume`` number decays as
    ``volume / i`` for repeat ``i``, never below 0.1.  At most 10 repeats
    and a 2 s delay are accepted.
    """
    if value is None:
        return default_enabled
    if isinstance(value, bool):
        return value
    if not isinstance(value, Mapping):
        raise ValidationError("echo must be a boolean or an object")

    unknown = set(value) - ECHO_FIELDS
    if unknown:
        raise ValidationError(
            f"Unknown echo option(s): {', '.join(sorted(unknown))} — "
            f"expected: {', '.join(sorted(ECHO_FIELDS))}"
        )

    delay_ms = defaults.delay_ms
    if value.get("delay") is not None:
        delay_ms = int(round(_number(value["delay"], "echo.delay")))
        if not 1 <= delay_ms <= MAX_ECHO_DELAY_MS:
            raise ValidationError(f"echo.delay must be between 1 and {MAX_ECHO_DELAY_MS} ms")

    repeats = defaults.repeat_count
    if value.get("repeats") is not None:
        count = _number(value["repeats"], "echo.repeats")
        if count > MAX_ECHO_REPEATS:
            raise ValidationError(f"echo.repeats must be at most {MAX_ECHO_REPEATS}")
        if count < 0 or count != int(count):
            raise ValidationError("echo.repeats must be a non-negative integer")
        repeats = int(count)

    volumes = defaults.volumes
    raw_volume = value.get("volume")
    if raw_volume is not None:
        if isinstance(raw_volume, (list, tuple)):
            if not 1 <= len(raw_volume) <= MAX_ECHO_REPEATS:
                raise ValidationError(f"echo.volume list must have 1 to {MAX_ECHO_REPEATS} entries")
            volumes = tuple(_number(v, "echo.volume") for v in raw_volume)
            _check_volumes(volumes)
        else:
            base = _number(raw_volume, "echo.volume")
            _check_volumes((base,))
            volumes = tuple(max(ECHO_VOLUME_FLOOR, base / i) for i in range(1, max(repeats, 1) + 1))

    return EchoConfig(delay_ms=delay_ms, volumes=volumes, repeat_count=repeats)


def check_say_fields(args: Mapping[str, Any]) -> None:
    """Reject argument names the ``say`` tool does not define."""
    unknown = set(args) - SAY_FIELDS
    if unknown:
        raise ValidationError(f"Unknown argument(s): {', '.join(sorted(unknown))}")


def parse_say_arguments(args: Mapping[str, Any],
                        echo_defaults: EchoConfig,
                        echo_enabled: bool = True) -> SynthesisRequest:
    """Validate ``say`` tool arguments and build a SynthesisRequest.

    Raises ValidationError on missing or non-string text, unknown fields,
    wrongly typed options, or malformed echo settings.  ``openaiSpeed``
    outside [0.25, 4.0] is clamped, never rejected.
    """
    if not isinstance(args, Mapping):
        raise ValidationError("Invalid arguments provided")

    check_say_fields(args)

    text = args.get("text")
    if not isinstance(text, str):
        raise ValidationError("Text parameter must be a string")
    if not text.strip():
        raise ValidationError("Text parameter must not be empty")

    language = _optional_str(args, "language")
    voice_name = None
    if language and not is_language_tag(language):
        voice_name, language = language, None

    speed = None
    if args.get("openaiSpeed") is not None:
        speed = clamp_speed(_number(args["openaiSpeed"], "openaiSpeed"))

    return SynthesisRequest(
        text=text,
        language=language.lower() if language else None,
        voice_name=voice_name,
        use_cloud=_optional_bool(args, "useOpenAI"),
        cloud_voice=_optional_str(args, "openaiVoice"),
        cloud_model=_optional_str(args, "openaiModel"),
        cloud_speed=speed,
        cloud_format=_optional_str(args, "openaiFormat"),
        echo=parse_echo(args.get("echo"), echo_defaults, echo_enabled),
    )
