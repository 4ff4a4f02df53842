"""Platform voice discovery and ranking.

Lists the voices installed on the host once at startup and keeps, per
language code, a ranked list so the best voice can be picked instantly:

- macOS:   ``say -v ?``
- Windows: System.Speech via PowerShell
- Linux:   ``espeak --voices`` (or ``espeak-ng``)

Ranking is quality first (premium > enhanced > standard), then male voices
ahead of female ones within the same tier.
"""

from __future__ import annotations

import asyncio
import re
import shutil
import sys
from typing import Awaitable, Callable, Optional

from .logging import get_logger, log_context
from .models import VoiceInfo

_log = get_logger("ai-voice.voices")

# argv → (returncode, stdout)
Runner = Callable[[list[str]], Awaitable[tuple[int, str]]]

LANGUAGE_NAMES = {
    "en": "English",
    "pl": "Polish",
    "de": "German",
    "fr": "French",
    "es": "Spanish",
    "it": "Italian",
    "pt": "Portuguese",
    "ru": "Russian",
    "ja": "Japanese",
    "zh": "Chinese",
}

_QUALITY_RANK = {"premium": 3, "enhanced": 2, "standard": 1}

_MALE_NAMES = ("daniel", "alex", "fred", "bruce", "krzysztof", "marek",
               "thomas", "oliver", "luca", "diego")
_FEMALE_NAMES = ("samantha", "victoria", "karen", "zofia", "ewa",
                 "amelie", "anna", "elena", "alice")

_MACOS_LINE = re.compile(r"^(.+?)\s+([a-z]{2,3}_[A-Z0-9]{2,3})\s+#\s*(.*)$")
_MACOS_NAME = re.compile(r"^(.+?)(?:\s*\(([^)]+)\))?$")

_WINDOWS_LIST_SCRIPT = (
    "Add-Type -AssemblyName System.Speech; "
    "$synth = New-Object System.Speech.Synthesis.SpeechSynthesizer; "
    "$synth.GetInstalledVoices() | ForEach-Object { "
    "$v = $_.VoiceInfo; "
    "Write-Output \"$($v.Name)|$($v.Culture.TwoLetterISOLanguageName)|$($v.Gender)\" }"
)

_PLATFORM_DEFAULTS = {
    "darwin": "System Default (macOS)",
    "win32": "System Default (Windows SAPI)",
    "linux": "System Default (espeak)",
}


def language_name(code: str) -> str:
    """Human-readable name for a language code ("pl" → "Polish")."""
    return LANGUAGE_NAMES.get(code, code.upper())


def detect_quality(indicator: str, comment: str = "") -> str:
    combined = f"{indicator} {comment}".lower()
    if "enhanced" in combined or "neural" in combined:
        return "enhanced"
    if "premium" in combined or "high quality" in combined:
        return "premium"
    return "standard"


def detect_gender(name: str) -> str:
    lower = name.lower()
    if any(n in lower for n in _MALE_NAMES):
        return "male"
    if any(n in lower for n in _FEMALE_NAMES):
        return "female"
    return "male"


def parse_macos_voices(output: str) -> list[VoiceInfo]:
    """Parse ``say -v ?`` output.

    Lines look like ``Krzysztof (Enhanced) pl_PL    # Witaj, nazywam się Krzysztof.``
    The full name including the quality suffix is kept as the voice id
    because that is what ``say -v`` expects.
    """
    voices: list[VoiceInfo] = []
    for line in output.splitlines():
        match = _MACOS_LINE.match(line.strip())
        if not match:
            continue
        name_part, locale, comment = match.groups()
        name_part = name_part.strip()
        code = locale.split("_")[0]
        name_match = _MACOS_NAME.match(name_part)
        base_name = name_match.group(1).strip() if name_match else name_part
        indicator = (name_match.group(2) or "") if name_match else ""
        voices.append(VoiceInfo(
            id=name_part,
            name=name_part,
            language=language_name(code),
            language_code=code,
            quality=detect_quality(indicator, comment),
            gender=detect_gender(base_name),
        ))
    return voices


def parse_windows_voices(output: str) -> list[VoiceInfo]:
    """Parse ``Name|xx|Gender`` lines emitted by the PowerShell listing."""
    voices: list[VoiceInfo] = []
    for line in output.splitlines():
        parts = line.strip().split("|")
        if len(parts) < 2 or not parts[0] or not parts[1]:
            continue
        name, code = parts[0].strip(), parts[1].strip().lower()
        gender = parts[2].strip().lower() if len(parts) > 2 else ""
        voices.append(VoiceInfo(
            id=name,
            name=name,
            language=language_name(code),
            language_code=code,
            quality="standard",
            gender="female" if gender == "female" else "male",
        ))
    return voices


def parse_espeak_voices(output: str) -> list[VoiceInfo]:
    """Parse the ``espeak --voices`` table (header line skipped).

    Columns: Pty, Language, Age/Gender, VoiceName, File, Other Languages.
    """
    voices: list[VoiceInfo] = []
    for line in output.splitlines()[1:]:
        parts = line.split()
        if len(parts) < 2:
            continue
        voice_id = parts[1]
        code = base_language(voice_id)
        gender_col = parts[2] if len(parts) > 2 else ""
        voices.append(VoiceInfo(
            id=voice_id,
            name=parts[3] if len(parts) > 3 else voice_id,
            language=language_name(code),
            language_code=code,
            quality="standard",
            gender="female" if "F" in gender_col else "male",
        ))
    return voices


def base_language(tag: str) -> str:
    """Primary subtag of a language tag: ``pt-br`` and ``en_US`` give ``pt``, ``en``."""
    return re.split(r"[-_]", tag, maxsplit=1)[0].lower()


def rank_voices(voices: list[VoiceInfo]) -> list[VoiceInfo]:
    """Order voices best-first: quality tier, then male before female."""
    return sorted(
        voices,
        key=lambda v: (-_QUALITY_RANK.get(v.quality, 1), 0 if v.gender == "male" else 1),
    )


async def run_listing(cmd: list[str]) -> tuple[int, str]:
    """Run a voice-listing command and capture its stdout."""
    proc = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.DEVNULL,
    )
    stdout, _ = await proc.communicate()
    return proc.returncode or 0, stdout.decode("utf-8", errors="replace")


class VoiceDirectory:
    """Installed platform voices, grouped and ranked by language."""

    def __init__(self, platform: Optional[str] = None,
                 runner: Optional[Runner] = None):
        self.platform = platform or sys.platform
        self._runner = runner or run_listing
        self._voices: list[VoiceInfo] = []
        self._by_language: dict[str, list[VoiceInfo]] = {}
        self._languages: list[str] = []

    # ─── Discovery ───────────────────────────────────────────────

    def _listing_command(self) -> tuple[Optional[list[str]], Callable[[str], list[VoiceInfo]]]:
        if self.platform == "darwin":
            return ["say", "-v", "?"], parse_macos_voices
        if self.platform == "win32":
            return ["powershell", "-NoProfile", "-Command", _WINDOWS_LIST_SCRIPT], parse_windows_voices
        if self.platform.startswith("linux"):
            binary = "espeak" if shutil.which("espeak") or not shutil.which("espeak-ng") else "espeak-ng"
            return [binary, "--voices"], parse_espeak_voices
        return None, lambda _out: []

    async def discover(self) -> None:
        """Discover installed voices.  Failures leave the directory empty."""
        cmd, parser = self._listing_command()
        if cmd is None:
            _log.warning("Unsupported platform for voice discovery: %s", self.platform)
            self.load([])
            return
        try:
            returncode, output = await self._runner(cmd)
        except (OSError, asyncio.TimeoutError) as e:
            _log.error("Voice discovery failed: %s", e,
                       extra={"context": log_context(platform=self.platform, command=cmd[0])})
            self.load([])
            return
        if returncode != 0:
            _log.warning("Voice listing exited with code %d", returncode,
                         extra={"context": log_context(platform=self.platform, command=cmd[0])})
        self.load(parser(output))
        _log.info("Discovered %d languages with %d voices",
                  len(self._languages), len(self._voices),
                  extra={"context": log_context(platform=self.platform)})

    def load(self, voices: list[VoiceInfo]) -> None:
        """Replace the directory contents with *voices* and re-rank."""
        self._voices = list(voices)
        groups: dict[str, list[VoiceInfo]] = {}
        for voice in self._voices:
            groups.setdefault(voice.language_code, []).append(voice)
        self._by_language = {code: rank_voices(vs) for code, vs in groups.items()}
        self._languages = list(groups)

    # ─── Lookups ─────────────────────────────────────────────────

    @property
    def voices(self) -> list[VoiceInfo]:
        return list(self._voices)

    @property
    def supported_languages(self) -> list[str]:
        return list(self._languages)

    def voices_for(self, language_code: str) -> list[VoiceInfo]:
        return list(self._by_language.get(base_language(language_code), []))

    def best_voice_for(self, language_code: str) -> Optional[VoiceInfo]:
        ranked = self._by_language.get(base_language(language_code))
        return ranked[0] if ranked else None

    def voice_named(self, name: str) -> Optional[VoiceInfo]:
        """Case-insensitive exact match on voice id or name."""
        wanted = name.lower()
        for voice in self._voices:
            if voice.id.lower() == wanted or voice.name.lower() == wanted:
                return voice
        return None

    @property
    def default_description(self) -> str:
        for prefix, description in _PLATFORM_DEFAULTS.items():
            if self.platform.startswith(prefix):
                return description
        return "System Default"

    def resolve(self, language: Optional[str] = None,
                voice_name: Optional[str] = None) -> Optional[VoiceInfo]:
        """The voice the platform command will use, None for the system default."""
        if voice_name:
            return self.voice_named(voice_name)
        if language:
            # espeak voice ids are language tags, "pt-br" names a voice
            wanted = language.lower().replace("_", "-")
            for voice in self._voices:
                if voice.id.lower().replace("_", "-") == wanted:
                    return voice
            return self.best_voice_for(language)
        return None

    def describe(self, language: Optional[str] = None,
                 voice_name: Optional[str] = None) -> str:
        """Human-readable description of the voice :meth:`resolve` picks."""
        voice = self.resolve(language, voice_name)
        if voice_name:
            if voice:
                return f"{voice.name} (Easter Egg)"
            return f'System Default (Voice "{voice_name}" not found)'
        if voice:
            return voice.name
        return self.default_description
