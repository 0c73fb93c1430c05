"""Usage accounting data models."""

from dataclasses import dataclass, asdict
from typing import Optional, Dict, Any


@dataclass(frozen=True)
class ModelLimits:
    """Provider-published ceilings for one model. None means unlimited."""
    requests_per_day: Optional[int] = None
    tokens_per_minute: Optional[int] = None
    audio_seconds_per_day: Optional[float] = None
    audio_seconds_per_hour: Optional[float] = None


@dataclass(frozen=True)
class ProviderModelDescriptor:
    """Static capability record for a (provider, model) pair."""
    provider: str
    model: str
    supports_vision: bool = False
    supports_streaming: bool = True
    supports_live_audio: bool = False
    limits: ModelLimits = ModelLimits()


@dataclass
class UsageRecord:
    """Counters for one (provider, model) key.

    ``daily_reset_at`` and ``hourly_reset_at`` are epoch seconds of the next
    boundary at which the respective counters go back to zero.
    """
    request_count: int = 0
    token_count: int = 0
    audio_seconds: float = 0.0
    hourly_audio_seconds: float = 0.0
    daily_reset_at: float = 0.0
    hourly_reset_at: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UsageRecord":
        return cls(
            request_count=int(data.get("request_count", 0)),
            token_count=int(data.get("token_count", 0)),
            audio_seconds=float(data.get("audio_seconds", 0.0)),
            hourly_audio_seconds=float(data.get("hourly_audio_seconds", 0.0)),
            daily_reset_at=float(data.get("daily_reset_at", 0.0)),
            hourly_reset_at=float(data.get("hourly_reset_at", 0.0)),
        )


@dataclass
class UsageDelta:
    """Usage reported by a provider for a model other than the dispatched one."""
    model: str
    tokens: int = 0
    audio_seconds: float = 0.0
