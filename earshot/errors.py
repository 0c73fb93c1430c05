"""Error taxonomy shared by the segmentation, dispatch and session layers."""

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    """Stable error codes surfaced to callers and renderers."""
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    NO_ACTIVE_SESSION = "NO_ACTIVE_SESSION"
    AUDIO_CAPTURE_FAILED = "AUDIO_CAPTURE_FAILED"
    INVALID_AUDIO_FORMAT = "INVALID_AUDIO_FORMAT"
    STORAGE_ERROR = "STORAGE_ERROR"


class EarshotError(Exception):
    """Base class for all errors raised by Earshot."""

    code: ErrorCode = ErrorCode.PROVIDER_ERROR

    def __init__(self, message: str = ""):
        super().__init__(message or self.code.value)
        self.message = message or self.code.value

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class RateLimitExceededError(EarshotError):
    """Every configured model is at (or near) its usage ceiling."""
    code = ErrorCode.RATE_LIMIT_EXCEEDED


class ProviderError(EarshotError):
    """Transport, authentication or server failure talking to a backend."""
    code = ErrorCode.PROVIDER_ERROR

    def __init__(self,
                 message: str = "",
                 provider: Optional[str] = None,
                 status: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.status = status

    @property
    def rate_limited(self) -> bool:
        """True when the backend itself rejected the call for quota reasons."""
        return self.status == 429

    @property
    def auth_failed(self) -> bool:
        return self.status in (401, 403)


class NoActiveSessionError(EarshotError):
    """A duplex operation was attempted without an open session."""
    code = ErrorCode.NO_ACTIVE_SESSION


class AudioCaptureFailedError(EarshotError):
    code = ErrorCode.AUDIO_CAPTURE_FAILED


class InvalidAudioFormatError(EarshotError):
    code = ErrorCode.INVALID_AUDIO_FORMAT


class StorageError(EarshotError):
    code = ErrorCode.STORAGE_ERROR
