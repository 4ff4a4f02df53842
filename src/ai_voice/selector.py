"""Engine selection and cloud → platform fallback.

The selector is created once at startup, initialized (voice discovery,
credential check, stale file cleanup) and then shared by every request.
After initialization it holds no mutable state except the fallback flag.

Per request:

    Start → EngineChosen → Attempting(engine) → Success | Failed
    Failed from Attempting(openai) with fallback enabled → Attempting(platform)

Backend failures never escape synthesize(); they become a SynthesisResult
with ``success=False`` that the caller logs.
"""

from __future__ import annotations

import time
from typing import Optional

from .background import BackgroundTasks
from .cloud import CloudVoiceBackend, voice_info
from .config import VoiceConfig
from .errors import BackendInvocationError
from .local import LocalVoiceBackend
from .logging import get_logger, log_context
from .models import Engine, EngineStatus, SynthesisRequest, SynthesisResult
from .player import AudioPlayer
from .voices import VoiceDirectory

_log = get_logger("ai-voice.selector")


class EngineSelector:
    """Chooses between the platform and OpenAI engines and runs synthesis."""

    def __init__(self, config: VoiceConfig,
                 directory: Optional[VoiceDirectory] = None,
                 local: Optional[LocalVoiceBackend] = None,
                 cloud: Optional[CloudVoiceBackend] = None,
                 player: Optional[AudioPlayer] = None,
                 tasks: Optional[BackgroundTasks] = None):
        self.config = config
        self.tasks = tasks or BackgroundTasks()
        self.directory = directory or VoiceDirectory()
        self.local = local or LocalVoiceBackend(platform=self.directory.platform)
        self.cloud = cloud or CloudVoiceBackend(
            api_key=config.openai_api_key,
            output_dir=config.output_dir,
            default_voice=config.tts_voice,
            default_model=config.tts_model,
            default_speed=config.tts_speed,
            default_format=config.tts_format,
            base_url=config.openai_base_url,
        )
        self.player = player or AudioPlayer(self.tasks, platform=self.directory.platform,
                                            default_echo=config.echo)
        self._fallback_enabled = config.fallback_enabled
        self._status: Optional[EngineStatus] = None
        self._initialized = False

    # ─── Lifecycle ───────────────────────────────────────────────

    async def initialize(self) -> None:
        """Discover voices and fix the engine status.  Safe to call twice."""
        if self._initialized:
            return
        await self.directory.discover()
        status = self.get_engine_status()
        if status.cloud_available:
            self.cloud.cleanup_old_files(self.config.cleanup_hours)
        self._initialized = True
        _log.info("Engine selector ready",
                  extra={"context": log_context(**status.as_dict(),
                                                languages=len(self.directory.supported_languages))})

    def get_engine_status(self) -> EngineStatus:
        """Availability snapshot, computed on first use and never again."""
        if self._status is None:
            self._status = EngineStatus.from_cloud_availability(self.cloud.available)
        return self._status

    @property
    def fallback_enabled(self) -> bool:
        return self._fallback_enabled

    def set_fallback_enabled(self, enabled: bool) -> None:
        self._fallback_enabled = enabled

    def supported_languages(self) -> list[str]:
        return self.directory.supported_languages

    # ─── Selection ───────────────────────────────────────────────

    def select_engine(self, request: SynthesisRequest) -> Engine:
        """Pick the engine for *request*; first matching rule wins."""
        status = self.get_engine_status()
        if request.use_cloud is True and status.cloud_available:
            return Engine.CLOUD
        if request.use_cloud is False:
            return Engine.LOCAL
        if status.preferred_engine is Engine.CLOUD and status.cloud_available:
            return Engine.CLOUD
        return Engine.LOCAL

    def _cloud_voice(self, request: SynthesisRequest) -> str:
        return request.cloud_voice or self.cloud.default_voice

    def _describe(self, engine: Engine, request: SynthesisRequest) -> str:
        if engine is Engine.CLOUD:
            return f"OpenAI {voice_info(self._cloud_voice(request))}"
        return f"Platform {self.directory.describe(request.language, request.voice_name)}"

    def get_used_voice_info(self, request: SynthesisRequest) -> str:
        """Describe the voice synthesize() would use, without synthesizing."""
        return self._describe(self.select_engine(request), request)

    # ─── Synthesis ───────────────────────────────────────────────

    async def _attempt_local(self, request: SynthesisRequest) -> None:
        voice = self.directory.resolve(request.language, request.voice_name)
        await self.local.invoke(request.text, voice.id if voice else None)

    async def _attempt_cloud(self, request: SynthesisRequest) -> str:
        audio = await self.cloud.invoke(
            request.text,
            voice=self._cloud_voice(request),
            model=request.cloud_model,
            speed=request.cloud_speed,
            response_format=request.cloud_format,
        )
        self.player.play(audio.path, request.echo)
        return audio.path

    async def synthesize(self, request: SynthesisRequest) -> SynthesisResult:
        """Synthesize *request*, falling back to the platform voice once if OpenAI fails."""
        start = time.monotonic()
        engine = self.select_engine(request)

        def elapsed() -> int:
            return int((time.monotonic() - start) * 1000)

        if engine is Engine.LOCAL:
            try:
                await self._attempt_local(request)
            except BackendInvocationError as e:
                result = SynthesisResult(Engine.LOCAL, False, self._describe(Engine.LOCAL, request),
                                         error_message=str(e), duration_ms=elapsed())
            else:
                result = SynthesisResult(Engine.LOCAL, True, self._describe(Engine.LOCAL, request),
                                         duration_ms=elapsed())
            self._log_result(request, result)
            return result

        try:
            path = await self._attempt_cloud(request)
        except BackendInvocationError as cloud_error:
            if not self._fallback_enabled:
                result = SynthesisResult(Engine.CLOUD, False, self._describe(Engine.CLOUD, request),
                                         error_message=str(cloud_error), duration_ms=elapsed())
                self._log_result(request, result)
                return result

            _log.warning("OpenAI synthesis failed, falling back to platform voice: %s", cloud_error,
                         extra={"context": log_context(engine=Engine.CLOUD.value,
                                                       text_preview=request.text,
                                                       status_code=getattr(cloud_error, "status_code", None))})
            annotation = f"Fallback after cloud error: {cloud_error}"
            try:
                await self._attempt_local(request)
            except BackendInvocationError as local_error:
                result = SynthesisResult(Engine.LOCAL, False, self._describe(Engine.LOCAL, request),
                                         error_message=f"{annotation}; {local_error}",
                                         duration_ms=elapsed())
            else:
                result = SynthesisResult(Engine.LOCAL, True, self._describe(Engine.LOCAL, request),
                                         error_message=annotation, duration_ms=elapsed())
            self._log_result(request, result)
            return result

        result = SynthesisResult(Engine.CLOUD, True, self._describe(Engine.CLOUD, request),
                                 duration_ms=elapsed(), audio_file=path)
        self._log_result(request, result)
        return result

    def _log_result(self, request: SynthesisRequest, result: SynthesisResult) -> None:
        ctx = log_context(
            engine=result.engine_used.value,
            text_preview=request.text,
            duration_ms=result.duration_ms,
            voice=result.voice_description,
        )
        if not result.success:
            _log.error("Voice synthesis failed: %s", result.error_message, extra={"context": ctx})
        elif result.error_message:
            _log.warning("Voice synthesis recovered: %s", result.error_message, extra={"context": ctx})
        else:
            _log.info("Voice synthesis complete", extra={"context": ctx})
