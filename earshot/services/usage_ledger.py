"""Usage ledger: per-(provider, model) counters with daily and hourly windows."""

import time
import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Tuple, Any

from ..models.dispatch import DispatchPreference, ProviderKind
from ..models.usage import UsageRecord
from ..providers.catalog import ModelCatalog
from ..storage.usage_store import UsageStore

logger = logging.getLogger(__name__)


# Stop using a model once 90% of any ceiling is consumed
FALLBACK_THRESHOLD = 0.9
HOUR_SECONDS = 3600.0


def next_utc_midnight(now: float) -> float:
    """Epoch seconds of the first UTC midnight strictly after ``now``."""
    current = datetime.fromtimestamp(now, tz=timezone.utc)
    tomorrow = (current + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
    return tomorrow.timestamp()


class UsageLedger:
    """Tracks consumption and answers whether a model is still safely usable.

    Windows are reset lazily: the first read or write after a boundary zeroes
    the affected counters and moves the boundary forward.
    """

    def __init__(self, store: UsageStore, catalog: Optional[ModelCatalog] = None,
                 clock: Callable[[], float] = time.time,
                 threshold: float = FALLBACK_THRESHOLD):
        """Initialize the ledger.

        Args:
            store: Durable counter storage
            catalog: Limits per model; unknown models are never blocked
            clock: Epoch-seconds clock, injectable for tests
            threshold: Fraction of a ceiling at which a model counts as exhausted
        """
        self.store = store
        self.catalog = catalog or ModelCatalog()
        self.clock = clock
        self.threshold = threshold

        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, provider: str, model: str) -> threading.Lock:
        key = UsageStore.key(provider, model)
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    # ------------------------------------------------------------------
    # Windows
    # ------------------------------------------------------------------

    @staticmethod
    def _window_crossed(record: UsageRecord, now: float) -> bool:
        return now >= record.daily_reset_at or now >= record.hourly_reset_at

    def _apply_resets(self, provider: str, model: str, record: UsageRecord, now: float) -> None:
        if now >= record.daily_reset_at:
            if record.daily_reset_at:
                logger.info(f"Daily usage window reset for {provider}:{model} "
                            f"(was {record.request_count} requests)")
            record.request_count = 0
            record.token_count = 0
            record.audio_seconds = 0.0
            record.daily_reset_at = next_utc_midnight(now)
        if now >= record.hourly_reset_at:
            if record.hourly_reset_at:
                logger.debug(f"Hourly usage window reset for {provider}:{model}")
            record.hourly_audio_seconds = 0.0
            record.hourly_reset_at = now + HOUR_SECONDS

    def _current(self, provider: str, model: str) -> UsageRecord:
        now = self.clock()
        record = self.store.read(provider, model)
        if self._window_crossed(record, now):
            record = self.store.update(
                provider, model, lambda r: self._apply_resets(provider, model, r, now))
        return record

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_usage(self, provider, model: str) -> UsageRecord:
        provider = _name(provider)
        with self._lock_for(provider, model):
            return self._current(provider, model)

    def can_use(self, provider, model: str) -> bool:
        """Return False once any configured ceiling is at or above the threshold."""
        provider = _name(provider)
        descriptor = self.catalog.get(provider, model)
        if descriptor is None:
            logger.warning(f"No limits known for {provider}:{model}, allowing")
            return True

        limits = descriptor.limits
        with self._lock_for(provider, model):
            record = self._current(provider, model)

        checks = (
            ("requests/day", record.request_count, limits.requests_per_day),
            ("audio-seconds/day", record.audio_seconds, limits.audio_seconds_per_day),
            ("audio-seconds/hour", record.hourly_audio_seconds, limits.audio_seconds_per_hour),
        )
        for label, used, ceiling in checks:
            if ceiling is not None and used >= ceiling * self.threshold:
                logger.info(f"{provider}:{model} near limit on {label}: {used}/{ceiling}")
                return False
        return True

    def get_next_available_model(self, preference: DispatchPreference
                                 ) -> Optional[Tuple[ProviderKind, str]]:
        """Return the first usable (provider, model) of a preference, or None."""
        if self.can_use(preference.primary_provider, preference.primary_model):
            return preference.primary_provider, preference.primary_model
        if preference.has_fallback and self.can_use(preference.fallback_provider,
                                                    preference.fallback_model):
            logger.info(f"Primary {preference.primary_provider.value}:{preference.primary_model} "
                        f"exhausted, next available is "
                        f"{preference.fallback_provider.value}:{preference.fallback_model}")
            return preference.fallback_provider, preference.fallback_model
        return None

    def get_all_usage_stats(self) -> Dict[str, Dict[str, Any]]:
        """Usage against limits for every catalogued model, keyed by ``provider:model``."""
        stats = {}
        for descriptor in self.catalog:
            record = self.get_usage(descriptor.provider, descriptor.model)
            limit = descriptor.limits.requests_per_day
            percentage = round(record.request_count / limit * 100, 1) if limit else 0.0
            stats[UsageStore.key(descriptor.provider, descriptor.model)] = {
                "provider": descriptor.provider,
                "model": descriptor.model,
                "count": record.request_count,
                "limit": limit,
                "percentage": percentage,
                "tokens": record.token_count,
                "audio_seconds": record.audio_seconds,
                "hourly_audio_seconds": record.hourly_audio_seconds,
            }
        return stats

    def time_until_reset(self) -> float:
        """Seconds until the next daily window starts."""
        now = self.clock()
        return next_utc_midnight(now) - now

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    def record_usage(self, provider, model: str, tokens: int = 0,
                     audio_seconds: float = 0.0) -> UsageRecord:
        """Count one successful request against a model."""
        provider = _name(provider)
        now = self.clock()

        def apply(record: UsageRecord) -> None:
            self._apply_resets(provider, model, record, now)
            record.request_count += 1
            record.token_count += max(0, int(tokens))
            record.audio_seconds += max(0.0, audio_seconds)
            record.hourly_audio_seconds += max(0.0, audio_seconds)

        with self._lock_for(provider, model):
            record = self.store.update(provider, model, apply)
        logger.debug(f"Recorded usage for {provider}:{model}: requests={record.request_count}, "
                     f"tokens={record.token_count}, audio={record.audio_seconds:.1f}s")
        return record

    def flush(self) -> None:
        self.store.flush()


def _name(provider) -> str:
    return provider.value if isinstance(provider, ProviderKind) else str(provider)
