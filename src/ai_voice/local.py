"""Platform text-to-speech backend.

Every platform command is assembled here as an argv list and executed
without a shell, so text never needs shell quoting:

- macOS:   say [-v VOICE] TEXT
- Windows: powershell with System.Speech.Synthesis.SpeechSynthesizer
- Linux:   espeak [-v VOICE] TEXT (espeak-ng when plain espeak is missing)

The call blocks (asynchronously) until speech has finished; success is a
zero exit code.
"""

from __future__ import annotations

import asyncio
import os
import re
import shutil
import sys
from typing import Optional

from .errors import LocalBackendError
from .logging import get_logger, log_context

_log = get_logger("ai-voice.local")


def _find_binary(name: str) -> Optional[str]:
    """Find a binary in PATH or common Nix locations."""
    found = shutil.which(name)
    if found:
        return found
    for path in [
        f"/nix/var/nix/profiles/default/bin/{name}",
        os.path.expanduser(f"~/.nix-profile/bin/{name}"),
    ]:
        if os.path.isfile(path):
            return path
    return None


def normalize_text(text: str) -> str:
    """Collapse newlines, NUL bytes and whitespace runs into single spaces."""
    return re.sub(r"[\s\x00]+", " ", text).strip()


def _ps_quote(value: str) -> str:
    """Quote a value as a PowerShell single-quoted string literal."""
    return "'" + value.replace("'", "''") + "'"


class LocalVoiceBackend:
    """Runs the host's native TTS engine."""

    def __init__(self, platform: Optional[str] = None):
        self.platform = platform or sys.platform

    def _espeak_binary(self) -> Optional[str]:
        return _find_binary("espeak") or _find_binary("espeak-ng")

    def build_command(self, text: str, voice_id: Optional[str] = None) -> list[str]:
        """Build the platform TTS argv for *text* and an optional voice id."""
        spoken = normalize_text(text)

        if self.platform == "darwin":
            cmd = [_find_binary("say") or "say"]
            if voice_id:
                cmd += ["-v", voice_id]
            return cmd + [spoken]

        if self.platform == "win32":
            script = (
                "Add-Type -AssemblyName System.Speech; "
                "$synth = New-Object System.Speech.Synthesis.SpeechSynthesizer;"
            )
            if voice_id:
                script += f" $synth.SelectVoice({_ps_quote(voice_id)});"
            script += f" $synth.Speak({_ps_quote(spoken)})"
            return ["powershell", "-NoProfile", "-WindowStyle", "Hidden", "-Command", script]

        if self.platform.startswith("linux"):
            cmd = [self._espeak_binary() or "espeak"]
            if voice_id:
                cmd += ["-v", voice_id]
            return cmd + [spoken]

        raise LocalBackendError(f"Unsupported platform: {self.platform}")

    async def invoke(self, text: str, voice_id: Optional[str] = None) -> None:
        """Speak *text* and wait for the TTS process to exit.

        Raises LocalBackendError if the command cannot be started or exits
        with a non-zero status.
        """
        cmd = self.build_command(text, voice_id)
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except (OSError, ValueError) as e:
            raise LocalBackendError(f"Platform synthesis failed: cannot run {cmd[0]}: {e}") from e

        _, stderr = await proc.communicate()
        stderr_out = (stderr or b"").decode("utf-8", errors="replace").strip()
        if proc.returncode != 0:
            raise LocalBackendError(
                f"Platform synthesis failed (code {proc.returncode}): {stderr_out or 'no stderr'}",
                returncode=proc.returncode,
            )
        if stderr_out:
            _log.warning("Platform synthesis warning: %s", stderr_out[:200],
                         extra={"context": log_context(engine="platform", command=cmd[0])})
