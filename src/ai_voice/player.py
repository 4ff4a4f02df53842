"""Background playback of synthesized audio files, with optional echo.

Echo is produced by starting extra, quieter copies of the same file after
increasing delays.  Players that support it get a per-copy volume:

- macOS:   afplay [-v VOLUME] FILE
- Linux:   ffplay (-volume 0..100), else paplay (--volume 0..65536), else aplay
- Windows: PowerShell System.Windows.Media.MediaPlayer (.Volume 0..1)

play() returns as soon as the schedule is handed to BackgroundTasks; the
caller never waits for audio to finish.
"""

from __future__ import annotations

import asyncio
import sys
from dataclasses import dataclass
from typing import Optional, Union

from .background import BackgroundTasks
from .errors import PlaybackError
from .local import _find_binary, _ps_quote
from .logging import get_logger, log_context
from .models import SIGNATURE_ECHO, EchoConfig

_log = get_logger("ai-voice.player")


@dataclass(frozen=True)
class PlaybackStep:
    """One player process: start after ``delay`` seconds."""

    delay: float
    argv: tuple[str, ...]
    volume: float = 1.0


class AudioPlayer:
    """Plays audio files in the background using the platform's player."""

    def __init__(self, tasks: BackgroundTasks, platform: Optional[str] = None,
                 default_echo: EchoConfig = SIGNATURE_ECHO):
        self.platform = platform or sys.platform
        self.tasks = tasks
        self.default_echo = default_echo
        self._player = self._detect_player()

    def _detect_player(self) -> Optional[tuple[str, str]]:
        """Return (kind, binary) for the first usable player, or None."""
        if self.platform == "darwin":
            candidates = ["afplay"]
        elif self.platform == "win32":
            candidates = ["powershell"]
        else:
            candidates = ["ffplay", "paplay", "aplay"]
        for name in candidates:
            binary = _find_binary(name)
            if binary:
                return name, binary
        return None

    @property
    def available(self) -> bool:
        return self._player is not None

    @property
    def player_name(self) -> Optional[str]:
        return self._player[0] if self._player else None

    def command(self, path: str, volume: float = 1.0) -> list[str]:
        """Argv that plays *path* once at *volume* (0..1)."""
        if self._player is None:
            raise PlaybackError(f"No audio player available on {self.platform}")
        kind, binary = self._player
        if kind == "afplay":
            cmd = [binary]
            if volume < 1.0:
                cmd += ["-v", f"{volume:.3g}"]
            return cmd + [path]
        if kind == "ffplay":
            return [binary, "-nodisp", "-autoexit", "-loglevel", "quiet",
                    "-volume", str(int(round(volume * 100))), path]
        if kind == "paplay":
            cmd = [binary]
            if volume < 1.0:
                cmd.append(f"--volume={int(round(volume * 65536))}")
            return cmd + [path]
        if kind == "powershell":
            script = (
                "Add-Type -AssemblyName PresentationCore; "
                "$p = New-Object System.Windows.Media.MediaPlayer; "
                f"$p.Open([uri]{_ps_quote(path)}); $p.Volume = {volume:.3g}; "
                "while (-not $p.NaturalDuration.HasTimeSpan) { Start-Sleep -Milliseconds 50 }; "
                "$p.Play(); "
                "Start-Sleep -Milliseconds ([int]$p.NaturalDuration.TimeSpan.TotalMilliseconds + 100); "
                "$p.Close()"
            )
            return [binary, "-NoProfile", "-WindowStyle", "Hidden", "-Command", script]
        # aplay has no volume control
        return [binary, path]

    def resolve_echo(self, echo: Union[bool, EchoConfig, None]) -> Optional[EchoConfig]:
        if echo is None or echo is False:
            return None
        if echo is True:
            return self.default_echo
        return echo

    def build_schedule(self, path: str,
                       echo: Union[bool, EchoConfig, None] = None) -> list[PlaybackStep]:
        """The original at full volume, then one delayed step per echo repeat."""
        steps = [PlaybackStep(0.0, tuple(self.command(path)), 1.0)]
        cfg = self.resolve_echo(echo)
        if cfg is None:
            return steps
        for i in range(1, cfg.repeat_count + 1):
            volume = cfg.volume_for(i)
            steps.append(PlaybackStep(
                delay=cfg.delay_ms * i / 1000,
                argv=tuple(self.command(path, volume)),
                volume=volume,
            ))
        return steps

    def play(self, path: str, echo: Union[bool, EchoConfig, None] = None) -> None:
        """Start playing *path* in the background and return immediately.

        Raises PlaybackError when no player is available.
        """
        schedule = self.build_schedule(path, echo)
        self.tasks.spawn(self._run_schedule(path, schedule), tag="playback")

    async def _run_schedule(self, path: str, schedule: list[PlaybackStep]) -> None:
        await asyncio.gather(*(self._run_step(path, step) for step in schedule))

    async def _run_step(self, path: str, step: PlaybackStep) -> None:
        if step.delay:
            await asyncio.sleep(step.delay)
        try:
            proc = await asyncio.create_subprocess_exec(
                *step.argv,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            _log.warning("Failed to start %s: %s", step.argv[0], e,
                         extra={"context": log_context(file=path)})
            return
        _, stderr = await proc.communicate()
        if proc.returncode != 0:
            stderr_out = (stderr or b"").decode("utf-8", errors="replace").strip()
            _log.warning("Playback exited with code %s: %s", proc.returncode,
                         stderr_out[:200] or "no stderr",
                         extra={"context": log_context(file=path, volume=step.volume)})
