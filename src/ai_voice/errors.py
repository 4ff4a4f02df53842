"""Exception taxonomy for ai-voice.

ValidationError is raised before any engine is chosen and is reported to
the caller.  Everything deriving from BackendInvocationError happens inside
background synthesis: the selector turns it into a fallback attempt (cloud
only) or into a failed SynthesisResult, never into a caller-facing error.
"""

from __future__ import annotations

from typing import Optional


class VoiceError(Exception):
    """Base class for all ai-voice errors."""


class ValidationError(VoiceError):
    """Malformed inbound request (missing text, wrong types, bad echo options)."""


class BackendInvocationError(VoiceError):
    """A synthesis backend failed to produce audio."""


class LocalBackendError(BackendInvocationError):
    """The platform TTS command could not run or exited non-zero."""

    def __init__(self, message: str, returncode: Optional[int] = None):
        super().__init__(message)
        self.returncode = returncode


class CloudBackendError(BackendInvocationError):
    """The cloud speech API call failed (network, auth, quota, parameters)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ConfigurationError(CloudBackendError):
    """Cloud synthesis was invoked without a configured credential.

    The selection policy never picks the cloud engine without a key, so this
    only surfaces on programmer error.  It derives from CloudBackendError so
    the fallback path handles it like any other cloud failure.
    """


class PlaybackError(BackendInvocationError):
    """No audio player is available to play a synthesized file."""
