"""Tests for engine selection, synthesis and cloud → platform fallback.

Backends are replaced with small fakes that record their calls, so these
tests never start a TTS process or touch the network.
"""

from __future__ import annotations

import unittest.mock as mock

import pytest

from ai_voice.config import VoiceConfig
from ai_voice.errors import (
    CloudBackendError,
    ConfigurationError,
    LocalBackendError,
    PlaybackError,
)
from ai_voice.local import LocalVoiceBackend
from ai_voice.models import CloudAudio, Engine, SynthesisRequest, VoiceInfo
from ai_voice.selector import EngineSelector
from ai_voice.voices import VoiceDirectory


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeLocal:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.calls: list[tuple[str, str | None]] = []

    async def invoke(self, text, voice_id=None):
        self.calls.append((text, voice_id))
        if self.error:
            raise self.error


class FakeCloud:
    default_voice = "nova"

    def __init__(self, available: bool = True, error: Exception | None = None):
        self.available = available
        self.error = error
        self.calls: list[dict] = []
        self.cleaned: list[float] = []

    async def invoke(self, text, voice=None, model=None, speed=None, response_format=None):
        self.calls.append({"text": text, "voice": voice, "model": model,
                           "speed": speed, "format": response_format})
        if self.error:
            raise self.error
        return CloudAudio(path="/tmp/openai_tts_1_abc.mp3", voice=voice or "nova",
                          model=model or "tts-1", format=response_format or "mp3")

    def cleanup_old_files(self, max_age_hours=24):
        self.cleaned.append(max_age_hours)
        return 0


class FakePlayer:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.played: list[tuple[str, object]] = []

    def play(self, path, echo=None):
        if self.error:
            raise self.error
        self.played.append((path, echo))


async def _no_voices(cmd):
    return 0, ""


def _directory(voices: list[VoiceInfo] | None = None) -> VoiceDirectory:
    directory = VoiceDirectory(platform="darwin", runner=_no_voices)
    directory.load(voices or [])
    return directory


POLISH = [
    VoiceInfo("Zosia", "Zosia", "Polish", "pl", "standard", "female"),
    VoiceInfo("Krzysztof (Enhanced)", "Krzysztof (Enhanced)", "Polish", "pl", "enhanced", "male"),
]


def _selector(cloud=None, local=None, player=None, voices=None) -> EngineSelector:
    return EngineSelector(
        VoiceConfig.defaults(),
        directory=_directory(voices),
        local=local or FakeLocal(),
        cloud=cloud or FakeCloud(available=True),
        player=player or FakePlayer(),
    )


# ---------------------------------------------------------------------------
# Engine status
# ---------------------------------------------------------------------------

class TestEngineStatus:
    def test_cloud_available_prefers_cloud(self):
        status = _selector(cloud=FakeCloud(available=True)).get_engine_status()
        assert status.local_available is True
        assert status.cloud_available is True
        assert status.preferred_engine is Engine.CLOUD

    def test_no_credential_prefers_local(self):
        status = _selector(cloud=FakeCloud(available=False)).get_engine_status()
        assert status.cloud_available is False
        assert status.preferred_engine is Engine.LOCAL

    def test_status_is_same_instance_every_call(self):
        selector = _selector()
        first = selector.get_engine_status()
        assert selector.get_engine_status() is first
        assert selector.get_engine_status() == first

    def test_status_not_recomputed_when_backend_changes(self):
        cloud = FakeCloud(available=True)
        selector = _selector(cloud=cloud)
        first = selector.get_engine_status()
        cloud.available = False
        assert selector.get_engine_status() is first
        assert selector.get_engine_status().cloud_available is True

    @pytest.mark.asyncio
    async def test_initialize_cleans_old_files_when_cloud_available(self):
        cloud = FakeCloud(available=True)
        selector = _selector(cloud=cloud)
        await selector.initialize()
        assert cloud.cleaned == [24.0]

    @pytest.mark.asyncio
    async def test_initialize_skips_cleanup_without_cloud(self):
        cloud = FakeCloud(available=False)
        selector = _selector(cloud=cloud)
        await selector.initialize()
        assert cloud.cleaned == []

    @pytest.mark.asyncio
    async def test_initialize_twice_is_harmless(self):
        cloud = FakeCloud(available=True)
        selector = _selector(cloud=cloud)
        await selector.initialize()
        await selector.initialize()
        assert cloud.cleaned == [24.0]


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------

class TestSelectEngine:
    def test_explicit_local_wins_over_preferred_cloud(self):
        selector = _selector(cloud=FakeCloud(available=True))
        assert selector.select_engine(SynthesisRequest("Hello", use_cloud=False)) is Engine.LOCAL

    def test_explicit_cloud_when_available(self):
        selector = _selector(cloud=FakeCloud(available=True))
        assert selector.select_engine(SynthesisRequest("Hello", use_cloud=True)) is Engine.CLOUD

    def test_explicit_cloud_unavailable_degrades_to_local(self):
        selector = _selector(cloud=FakeCloud(available=False))
        assert selector.select_engine(SynthesisRequest("Hello", use_cloud=True)) is Engine.LOCAL

    def test_unset_uses_preferred_cloud(self):
        selector = _selector(cloud=FakeCloud(available=True))
        assert selector.select_engine(SynthesisRequest("Hello")) is Engine.CLOUD

    def test_unset_without_cloud_uses_local(self):
        selector = _selector(cloud=FakeCloud(available=False))
        assert selector.select_engine(SynthesisRequest("Hello")) is Engine.LOCAL

    def test_selection_is_deterministic(self):
        selector = _selector()
        request = SynthesisRequest("Hello", language="pl")
        assert {selector.select_engine(request) for _ in range(10)} == {Engine.CLOUD}


# ---------------------------------------------------------------------------
# Voice preview
# ---------------------------------------------------------------------------

class TestUsedVoiceInfo:
    def test_cloud_default_voice(self):
        selector = _selector()
        info = selector.get_used_voice_info(SynthesisRequest("Hi"))
        assert info == "OpenAI nova (Warm, engaging feminine voice)"

    def test_cloud_requested_voice(self):
        selector = _selector()
        info = selector.get_used_voice_info(SynthesisRequest("Hi", cloud_voice="onyx"))
        assert info == "OpenAI onyx (Deep, authoritative masculine voice)"

    def test_local_best_voice_for_language(self):
        selector = _selector(cloud=FakeCloud(available=False), voices=POLISH)
        info = selector.get_used_voice_info(SynthesisRequest("Cześć", language="pl"))
        assert info == "Platform Krzysztof (Enhanced)"

    def test_local_system_default(self):
        selector = _selector(cloud=FakeCloud(available=False))
        info = selector.get_used_voice_info(SynthesisRequest("Hi"))
        assert info == "Platform System Default (macOS)"

    def test_local_voice_name(self):
        selector = _selector(cloud=FakeCloud(available=False), voices=POLISH)
        info = selector.get_used_voice_info(SynthesisRequest("Hi", voice_name="zosia"))
        assert info == "Platform Zosia (Easter Egg)"

    def test_local_voice_name_not_found(self):
        selector = _selector(cloud=FakeCloud(available=False), voices=POLISH)
        info = selector.get_used_voice_info(SynthesisRequest("Hi", voice_name="Nobody"))
        assert info == 'Platform System Default (Voice "Nobody" not found)'

    def test_preview_has_no_side_effects(self):
        local, cloud = FakeLocal(), FakeCloud()
        selector = _selector(cloud=cloud, local=local)
        selector.get_used_voice_info(SynthesisRequest("Hi"))
        selector.get_used_voice_info(SynthesisRequest("Hi", use_cloud=False))
        assert local.calls == []
        assert cloud.calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("request_", [
        SynthesisRequest("a"),
        SynthesisRequest("a", use_cloud=False),
        SynthesisRequest("a", use_cloud=True, cloud_voice="shimmer"),
        SynthesisRequest("a", language="pl"),
        SynthesisRequest("a", language="pl", use_cloud=False),
        SynthesisRequest("a", voice_name="Zosia", use_cloud=False),
    ])
    async def test_preview_matches_synthesis(self, request_):
        selector = _selector(voices=POLISH)
        preview = selector.get_used_voice_info(request_)
        result = await selector.synthesize(request_)
        assert result.success
        assert result.voice_description == preview


# ---------------------------------------------------------------------------
# Synthesis
# ---------------------------------------------------------------------------

class TestSynthesize:
    @pytest.mark.asyncio
    async def test_local_success(self):
        local = FakeLocal()
        selector = _selector(cloud=FakeCloud(available=False), local=local, voices=POLISH)
        result = await selector.synthesize(SynthesisRequest("Dzień dobry", language="pl"))
        assert result.engine_used is Engine.LOCAL
        assert result.success is True
        assert result.error_message is None
        assert local.calls == [("Dzień dobry", "Krzysztof (Enhanced)")]

    @pytest.mark.asyncio
    async def test_local_system_default_passes_no_voice(self):
        local = FakeLocal()
        selector = _selector(cloud=FakeCloud(available=False), local=local)
        await selector.synthesize(SynthesisRequest("Hello", language="xx"))
        assert local.calls == [("Hello", None)]

    @pytest.mark.asyncio
    async def test_local_failure_is_reported_not_raised(self):
        local = FakeLocal(error=LocalBackendError("Platform synthesis failed (code 1): boom", 1))
        selector = _selector(cloud=FakeCloud(available=False), local=local)
        result = await selector.synthesize(SynthesisRequest("Hello"))
        assert result.engine_used is Engine.LOCAL
        assert result.success is False
        assert "boom" in result.error_message

    @pytest.mark.asyncio
    async def test_cloud_success_plays_audio(self):
        cloud, player, local = FakeCloud(), FakePlayer(), FakeLocal()
        selector = _selector(cloud=cloud, player=player, local=local)
        request = SynthesisRequest("Hi", use_cloud=True, cloud_voice="echo",
                                   cloud_model="hd", cloud_speed=1.5, echo=False)
        result = await selector.synthesize(request)
        assert result.engine_used is Engine.CLOUD
        assert result.success is True
        assert result.error_message is None
        assert result.audio_file == "/tmp/openai_tts_1_abc.mp3"
        assert cloud.calls == [{"text": "Hi", "voice": "echo", "model": "hd",
                                "speed": 1.5, "format": None}]
        assert player.played == [("/tmp/openai_tts_1_abc.mp3", False)]
        assert local.calls == []

    @pytest.mark.asyncio
    async def test_cloud_unavailable_never_calls_cloud(self):
        cloud, local = FakeCloud(available=False), FakeLocal()
        selector = _selector(cloud=cloud, local=local)
        result = await selector.synthesize(SynthesisRequest("Hello", use_cloud=True))
        assert result.engine_used is Engine.LOCAL
        assert result.success is True
        assert result.error_message is None
        assert cloud.calls == []

    @pytest.mark.asyncio
    async def test_region_tag_uses_matching_espeak_voice(self):
        directory = VoiceDirectory(platform="linux", runner=_no_voices)
        directory.load([
            VoiceInfo("pt", "Portuguese_(Portugal)", "Portuguese", "pt", "standard", "male"),
            VoiceInfo("pt-br", "Portuguese_(Brazil)", "Portuguese", "pt", "standard", "male"),
        ])
        local = FakeLocal()
        selector = EngineSelector(VoiceConfig.defaults(), directory=directory, local=local,
                                  cloud=FakeCloud(available=False), player=FakePlayer())
        request = SynthesisRequest("Olá", language="pt-br")
        assert selector.get_used_voice_info(request) == "Platform Portuguese_(Brazil)"
        result = await selector.synthesize(request)
        assert result.success is True
        assert result.voice_description == "Platform Portuguese_(Brazil)"
        assert local.calls == [("Olá", "pt-br")]

    @pytest.mark.asyncio
    async def test_unstartable_platform_command_is_reported_not_raised(self):
        local = LocalVoiceBackend(platform="linux")
        selector = _selector(cloud=FakeCloud(available=False), local=local)
        with mock.patch("asyncio.create_subprocess_exec",
                        new=mock.AsyncMock(side_effect=ValueError("embedded null byte"))):
            result = await selector.synthesize(SynthesisRequest("a\x00b"))
        assert result.engine_used is Engine.LOCAL
        assert result.success is False
        assert "embedded null byte" in result.error_message

    @pytest.mark.asyncio
    async def test_duration_is_measured(self):
        selector = _selector()
        result = await selector.synthesize(SynthesisRequest("Hi"))
        assert result.duration_ms >= 0


# ---------------------------------------------------------------------------
# Fallback
# ---------------------------------------------------------------------------

class TestFallback:
    @pytest.mark.asyncio
    async def test_auth_error_falls_back_to_local(self):
        cloud = FakeCloud(error=CloudBackendError(
            "OpenAI API Error (401): Incorrect API key provided", status_code=401))
        local = FakeLocal()
        selector = _selector(cloud=cloud, local=local)
        result = await selector.synthesize(SynthesisRequest("Hi", use_cloud=True))
        assert result.engine_used is Engine.LOCAL
        assert result.success is True
        assert result.error_message.startswith("Fallback after cloud error:")
        assert "Incorrect API key" in result.error_message
        assert len(cloud.calls) == 1
        assert len(local.calls) == 1

    @pytest.mark.asyncio
    async def test_fallback_description_is_local(self):
        cloud = FakeCloud(error=CloudBackendError("timeout"))
        selector = _selector(cloud=cloud, voices=POLISH)
        result = await selector.synthesize(SynthesisRequest("Hi", language="pl"))
        assert result.voice_description == "Platform Krzysztof (Enhanced)"

    @pytest.mark.asyncio
    async def test_configuration_error_falls_back(self):
        cloud = FakeCloud(error=ConfigurationError("no API key configured"))
        selector = _selector(cloud=cloud)
        result = await selector.synthesize(SynthesisRequest("Hi"))
        assert result.engine_used is Engine.LOCAL
        assert result.success is True
        assert "no API key" in result.error_message

    @pytest.mark.asyncio
    async def test_missing_player_counts_as_cloud_failure(self):
        player = FakePlayer(error=PlaybackError("No audio player available on linux"))
        local = FakeLocal()
        selector = _selector(player=player, local=local)
        result = await selector.synthesize(SynthesisRequest("Hi"))
        assert result.engine_used is Engine.LOCAL
        assert result.success is True
        assert "No audio player" in result.error_message
        assert len(local.calls) == 1

    @pytest.mark.asyncio
    async def test_both_engines_fail(self):
        cloud = FakeCloud(error=CloudBackendError("OpenAI API Error (500): down", status_code=500))
        local = FakeLocal(error=LocalBackendError("Platform synthesis failed (code 1): no say"))
        selector = _selector(cloud=cloud, local=local)
        result = await selector.synthesize(SynthesisRequest("Hi"))
        assert result.engine_used is Engine.LOCAL
        assert result.success is False
        assert "down" in result.error_message
        assert "no say" in result.error_message
        assert len(cloud.calls) == 1
        assert len(local.calls) == 1

    @pytest.mark.asyncio
    async def test_fallback_disabled_reports_cloud_failure(self):
        cloud = FakeCloud(error=CloudBackendError("OpenAI API Error (429): rate limited", 429))
        local = FakeLocal()
        selector = _selector(cloud=cloud, local=local)
        selector.set_fallback_enabled(False)
        result = await selector.synthesize(SynthesisRequest("Hi"))
        assert result.engine_used is Engine.CLOUD
        assert result.success is False
        assert "rate limited" in result.error_message
        assert local.calls == []

    def test_fallback_flag_defaults_from_config(self):
        selector = _selector()
        assert selector.fallback_enabled is True
        selector.set_fallback_enabled(False)
        assert selector.fallback_enabled is False

    @pytest.mark.asyncio
    async def test_local_failure_never_tries_cloud(self):
        cloud = FakeCloud()
        local = FakeLocal(error=LocalBackendError("failed"))
        selector = _selector(cloud=cloud, local=local)
        result = await selector.synthesize(SynthesisRequest("Hi", use_cloud=False))
        assert result.success is False
        assert cloud.calls == []

    @pytest.mark.asyncio
    async def test_unstartable_fallback_keeps_cloud_error(self):
        cloud = FakeCloud(error=CloudBackendError("OpenAI API Error (500): down", status_code=500))
        local = LocalVoiceBackend(platform="linux")
        selector = _selector(cloud=cloud, local=local)
        with mock.patch("asyncio.create_subprocess_exec",
                        new=mock.AsyncMock(side_effect=ValueError("embedded null byte"))):
            result = await selector.synthesize(SynthesisRequest("Hi"))
        assert result.engine_used is Engine.LOCAL
        assert result.success is False
        assert "down" in result.error_message
        assert "embedded null byte" in result.error_message
