"""Configuration system for ai-voice.

Reads config from $XDG_CONFIG_HOME/ai-voice/config.yml (or --config-file).
Also merges with a local .ai-voice.yml if found in the current directory
(local takes precedence over global config), and .ai-voice.local.yml on top
of that for personal/gitignored overrides.

Config strings can include shell variables like ${OPENAI_API_KEY} which are
expanded at load time.  The built-in defaults reference the environment
variables the server has always honoured:

  - OPENAI_API_KEY          cloud credential (cloud is available iff set)
  - DEFAULT_TTS_VOICE       default cloud voice (nova)
  - DEFAULT_TTS_MODEL       default cloud model (tts-1)
  - DEFAULT_TTS_SPEED       default speed multiplier (1.0)
  - CLEANUP_INTERVAL_HOURS  age after which cloud audio files are removed (24)
"""

from __future__ import annotations

import copy
import os
import re
import tempfile
from dataclasses import dataclass, field
from typing import Any, Optional

import yaml

from .logging import get_logger, SERVER_LOG
from .models import (
    CLOUD_FORMATS,
    CLOUD_MODELS,
    CLOUD_VOICES,
    MAX_ECHO_DELAY_MS,
    MAX_ECHO_REPEATS,
    EchoConfig,
    SIGNATURE_ECHO,
)

_log = get_logger("ai-voice.config", SERVER_LOG, json_format=False)


DEFAULT_CONFIG_DIR = os.path.join(
    os.environ.get("XDG_CONFIG_HOME", os.path.expanduser("~/.config")),
    "ai-voice",
)
DEFAULT_CONFIG_FILE = os.path.join(DEFAULT_CONFIG_DIR, "config.yml")

DEFAULT_OUTPUT_DIR = os.path.join(tempfile.gettempdir(), "mcp-nexus-voice-openai")

DEFAULT_CONFIG: dict[str, Any] = {
    "openai": {
        "apiKey": "${OPENAI_API_KEY}",
        "baseUrl": "${OPENAI_BASE_URL:-https://api.openai.com/v1}",
    },
    "tts": {
        "voice": "${DEFAULT_TTS_VOICE:-nova}",
        "model": "${DEFAULT_TTS_MODEL:-tts-1}",
        "speed": "${DEFAULT_TTS_SPEED:-1.0}",
        "format": "mp3",
        "fallback": True,
    },
    "echo": {
        "enabled": True,
        "delayMs": SIGNATURE_ECHO.delay_ms,
        "volumes": list(SIGNATURE_ECHO.volumes),
        "repeats": SIGNATURE_ECHO.repeat_count,
    },
    "audio": {
        "outputDir": DEFAULT_OUTPUT_DIR,
        "cleanupHours": "${CLEANUP_INTERVAL_HOURS:-24}",
    },
}

_KNOWN_KEYS: dict[str, set[str]] = {
    "openai": {"apiKey", "baseUrl"},
    "tts": {"voice", "model", "speed", "format", "fallback"},
    "echo": {"enabled", "delayMs", "volumes", "repeats"},
    "audio": {"outputDir", "cleanupHours"},
}


def _expand_env(value: str) -> str:
    """Expand shell-style ${VAR} and ${VAR:-default} in a string."""
    def _replacer(m: re.Match) -> str:
        var_expr = m.group(1)
        if ":-" in var_expr:
            var_name, default = var_expr.split(":-", 1)
            return os.environ.get(var_name) or default
        return os.environ.get(var_expr, "")
    return re.sub(r"\$\{([^}]+)\}", _replacer, value)


def _expand_config(obj: Any) -> Any:
    """Recursively expand env vars in all string values."""
    if isinstance(obj, str):
        return _expand_env(obj)
    elif isinstance(obj, dict):
        return {k: _expand_config(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_expand_config(v) for v in obj]
    return obj


def _deep_merge(base: dict, override: dict) -> dict:
    """Deep-merge override into base. Override values win."""
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _closest_match(key: str, valid_keys: set[str], max_distance: int = 3) -> str | None:
    """Find the closest match for a key in a set of valid keys.

    Returns None if no match is within max_distance edits.
    """
    best_match = None
    best_dist = max_distance + 1
    key_lower = key.lower()
    for candidate in valid_keys:
        cand_lower = candidate.lower()
        if key_lower == cand_lower:
            return candidate
        if abs(len(key_lower) - len(cand_lower)) > max_distance:
            continue
        dist = _edit_distance(key_lower, cand_lower)
        if dist < best_dist:
            best_dist = dist
            best_match = candidate
    return best_match if best_dist <= max_distance else None


def _edit_distance(a: str, b: str) -> int:
    """Compute Levenshtein edit distance between two strings."""
    if len(a) > len(b):
        a, b = b, a
    prev = list(range(len(a) + 1))
    for j in range(1, len(b) + 1):
        curr = [j] + [0] * len(a)
        for i in range(1, len(a) + 1):
            cost = 0 if a[i - 1] == b[j - 1] else 1
            curr[i] = min(curr[i - 1] + 1, prev[i] + 1, prev[i - 1] + cost)
        prev = curr
    return prev[len(a)]


def _load_yaml(path: str) -> dict[str, Any]:
    """Load a YAML mapping, logging and ignoring unreadable files."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        _log.warning("Failed to load config from %s: %s", path, e)
        return {}
    if not isinstance(data, dict):
        return {}
    return data


def _as_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


@dataclass
class VoiceConfig:
    """Parsed and expanded ai-voice configuration."""

    raw: dict[str, Any] = field(default_factory=dict)
    """The merged config as loaded from YAML (env vars unexpanded)."""

    expanded: dict[str, Any] = field(default_factory=dict)
    """The config with all env vars expanded."""

    config_path: str = DEFAULT_CONFIG_FILE

    validation_warnings: list[str] = field(default_factory=list)

    @classmethod
    def defaults(cls) -> "VoiceConfig":
        """Built-in defaults only, ignoring any config files."""
        raw = copy.deepcopy(DEFAULT_CONFIG)
        cfg = cls(raw=raw, expanded=_expand_config(raw), config_path=os.devnull)
        cfg._validate()
        return cfg

    @classmethod
    def load(cls, config_path: Optional[str] = None) -> "VoiceConfig":
        """Load config, layering files over the built-in defaults.

        Merge order (later takes precedence):
        1. DEFAULT_CONFIG (built-in defaults, env-driven)
        2. ~/.config/ai-voice/config.yml (user config)
        3. .ai-voice.yml in cwd (project-local)
        4. .ai-voice.local.yml in cwd (personal overrides, gitignored)

        CLI flags override all of the above at runtime.
        """
        path = config_path or DEFAULT_CONFIG_FILE
        raw = copy.deepcopy(DEFAULT_CONFIG)

        if os.path.isfile(path):
            raw = _deep_merge(raw, _load_yaml(path))

        for local_name in (".ai-voice.yml", ".ai-voice.local.yml"):
            local_path = os.path.join(os.getcwd(), local_name)
            if os.path.isfile(local_path):
                raw = _deep_merge(raw, _load_yaml(local_path))
                _log.info("Config: merged local %s", local_path)

        cfg = cls(raw=raw, expanded=_expand_config(raw), config_path=path)
        cfg._validate()
        return cfg

    def _validate(self) -> None:
        """Collect warnings for unknown keys and out-of-catalog values."""
        warnings: list[str] = []

        for section, value in self.raw.items():
            if section not in _KNOWN_KEYS:
                suggest = _closest_match(section, set(_KNOWN_KEYS))
                hint = f" (did you mean '{suggest}'?)" if suggest else ""
                warnings.append(
                    f"Unknown top-level key '{section}'{hint} — "
                    f"expected one of: {', '.join(sorted(_KNOWN_KEYS))}"
                )
                continue
            if not isinstance(value, dict):
                warnings.append(f"Section '{section}' must be a mapping")
                continue
            known = _KNOWN_KEYS[section]
            for key in value:
                if key not in known:
                    suggest = _closest_match(key, known)
                    hint = f" (did you mean '{suggest}'?)" if suggest else ""
                    warnings.append(
                        f"Unknown key '{section}.{key}'{hint} — "
                        f"expected one of: {', '.join(sorted(known))}"
                    )

        tts = self.expanded.get("tts", {})
        if isinstance(tts, dict):
            voice = tts.get("voice", "")
            if voice and voice not in CLOUD_VOICES:
                warnings.append(f"TTS voice '{voice}' not recognised — available: {list(CLOUD_VOICES)}")
            model = tts.get("model", "")
            if model and model not in CLOUD_MODELS.values() and model not in CLOUD_MODELS:
                warnings.append(f"TTS model '{model}' not recognised — available: {list(CLOUD_MODELS.values())}")
            fmt = tts.get("format", "")
            if fmt and fmt not in CLOUD_FORMATS:
                warnings.append(f"TTS format '{fmt}' not recognised — available: {list(CLOUD_FORMATS)}")

        self.validation_warnings = warnings
        for w in warnings:
            _log.warning("Config WARNING: %s", w)

    # ─── Accessors ──────────────────────────────────────────────────

    def _section(self, name: str) -> dict[str, Any]:
        value = self.expanded.get(name, {})
        return value if isinstance(value, dict) else {}

    @property
    def openai_api_key(self) -> str:
        return str(self._section("openai").get("apiKey") or "").strip()

    @property
    def openai_base_url(self) -> str:
        return str(self._section("openai").get("baseUrl") or "").strip()

    @property
    def cloud_available(self) -> bool:
        """True when a non-empty cloud credential is configured."""
        return bool(self.openai_api_key)

    @property
    def tts_voice(self) -> str:
        voice = str(self._section("tts").get("voice") or "nova")
        return voice if voice in CLOUD_VOICES else "nova"

    @property
    def tts_model(self) -> str:
        model = str(self._section("tts").get("model") or "tts-1")
        return CLOUD_MODELS.get(model, model)

    @property
    def tts_speed(self) -> float:
        return _as_float(self._section("tts").get("speed"), 1.0)

    @property
    def tts_format(self) -> str:
        fmt = str(self._section("tts").get("format") or "mp3")
        return fmt if fmt in CLOUD_FORMATS else "mp3"

    @property
    def fallback_enabled(self) -> bool:
        return bool(self._section("tts").get("fallback", True))

    @property
    def echo_enabled(self) -> bool:
        return bool(self._section("echo").get("enabled", True))

    @property
    def echo(self) -> EchoConfig:
        """Default echo settings used when a request asks for echo without details."""
        section = self._section("echo")
        volumes = section.get("volumes", list(SIGNATURE_ECHO.volumes))
        if not isinstance(volumes, list) or not volumes:
            volumes = list(SIGNATURE_ECHO.volumes)
        try:
            delay_ms = int(section.get("delayMs", SIGNATURE_ECHO.delay_ms))
            repeats = int(section.get("repeats", SIGNATURE_ECHO.repeat_count))
            return EchoConfig(
                delay_ms=min(max(delay_ms, 1), MAX_ECHO_DELAY_MS),
                volumes=tuple(float(v) for v in volumes[:MAX_ECHO_REPEATS]),
                repeat_count=min(max(repeats, 0), MAX_ECHO_REPEATS),
            )
        except (TypeError, ValueError, OverflowError):
            return SIGNATURE_ECHO

    @property
    def output_dir(self) -> str:
        return str(self._section("audio").get("outputDir") or DEFAULT_OUTPUT_DIR)

    @property
    def cleanup_hours(self) -> float:
        return _as_float(self._section("audio").get("cleanupHours"), 24.0)
