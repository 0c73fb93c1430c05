"""Unit tests for the usage ledger and model catalog."""

import threading
from datetime import datetime, timezone
from pathlib import Path

import pytest

from earshot.models.dispatch import DispatchPreference, ProviderKind
from earshot.models.usage import ModelLimits, ProviderModelDescriptor
from earshot.providers.catalog import ModelCatalog
from earshot.services.usage_ledger import UsageLedger, next_utc_midnight
from earshot.storage.usage_store import UsageStore


def utc(*args) -> float:
    return datetime(*args, tzinfo=timezone.utc).timestamp()


class FakeClock:
    def __init__(self, now: float):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock(utc(2025, 1, 1, 10, 0, 0))


@pytest.fixture
def ledger(temp_data_dir, clock):
    store = UsageStore(str(Path(temp_data_dir) / "usage.json"), flush_every=1000, flush_interval=60)
    yield UsageLedger(store, ModelCatalog(), clock=clock)
    store.close()


@pytest.mark.unit
class TestCanUse:

    def test_fresh_model_is_usable(self, ledger):
        assert ledger.can_use(ProviderKind.GEMINI, "gemini-2.5-flash")

    def test_blocks_at_ninety_percent_of_daily_requests(self, ledger):
        for _ in range(17):
            ledger.record_usage("gemini", "gemini-2.5-flash")
        assert ledger.can_use("gemini", "gemini-2.5-flash")

        ledger.record_usage("gemini", "gemini-2.5-flash")
        assert not ledger.can_use("gemini", "gemini-2.5-flash")

    def test_unknown_model_is_allowed(self, ledger):
        for _ in range(100):
            ledger.record_usage("groq", "some-new-model")
        assert ledger.can_use("groq", "some-new-model")

    def test_daily_boundary_resets_counts(self, ledger, clock):
        clock.now = utc(2025, 1, 1, 23, 0, 0)
        for _ in range(18):
            ledger.record_usage("gemini", "gemini-2.5-flash")
        assert not ledger.can_use("gemini", "gemini-2.5-flash")

        clock.now = utc(2025, 1, 2, 0, 0, 1)
        assert ledger.can_use("gemini", "gemini-2.5-flash")
        assert ledger.get_usage("gemini", "gemini-2.5-flash").request_count == 0

    def test_hourly_audio_window_is_rolling(self, ledger, clock):
        ledger.record_usage("groq", "whisper-large-v3-turbo", audio_seconds=6500)
        assert not ledger.can_use("groq", "whisper-large-v3-turbo")

        clock.now += 3599
        assert not ledger.can_use("groq", "whisper-large-v3-turbo")

        clock.now += 2
        assert ledger.can_use("groq", "whisper-large-v3-turbo")
        usage = ledger.get_usage("groq", "whisper-large-v3-turbo")
        assert usage.hourly_audio_seconds == 0.0
        assert usage.audio_seconds == 6500

    def test_daily_audio_limit_outlives_hourly_reset(self, ledger, clock):
        ledger.record_usage("groq", "whisper-large-v3-turbo", audio_seconds=26000)
        clock.now += 3601

        assert not ledger.can_use("groq", "whisper-large-v3-turbo")

    def test_custom_limits_from_overrides(self, temp_data_dir, clock):
        catalog = ModelCatalog([]).with_overrides({"groq": {"tiny": {"requests_per_day": 10}}})
        store = UsageStore(str(Path(temp_data_dir) / "u.json"), flush_every=1000)
        ledger = UsageLedger(store, catalog, clock=clock)
        for _ in range(9):
            ledger.record_usage("groq", "tiny")

        assert not ledger.can_use("groq", "tiny")
        store.close()


@pytest.mark.unit
class TestRecordUsage:

    def test_counts_requests_tokens_and_audio(self, ledger):
        ledger.record_usage("groq", "llama-3.3-70b-versatile", tokens=120)
        record = ledger.record_usage("groq", "llama-3.3-70b-versatile", tokens=30, audio_seconds=2.5)

        assert record.request_count == 2
        assert record.token_count == 150
        assert record.audio_seconds == 2.5
        assert record.hourly_audio_seconds == 2.5

    def test_concurrent_updates_are_not_lost(self, ledger):
        def worker():
            for _ in range(250):
                ledger.record_usage("groq", "llama-3.1-8b-instant", tokens=1)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        usage = ledger.get_usage("groq", "llama-3.1-8b-instant")
        assert usage.request_count == 2000
        assert usage.token_count == 2000

    def test_counts_survive_restart(self, temp_data_dir, clock):
        path = str(Path(temp_data_dir) / "persist.json")
        store = UsageStore(path)
        UsageLedger(store, clock=clock).record_usage("groq", "llama-3.3-70b-versatile")
        store.close()

        reloaded = UsageLedger(UsageStore(path), clock=clock)
        assert reloaded.get_usage("groq", "llama-3.3-70b-versatile").request_count == 1


@pytest.mark.unit
class TestQueries:

    def test_next_available_model_prefers_primary(self, ledger):
        preference = DispatchPreference(ProviderKind.GEMINI, "gemini-2.5-flash",
                                        ProviderKind.GROQ, "llama-3.3-70b-versatile")
        assert ledger.get_next_available_model(preference) == (ProviderKind.GEMINI, "gemini-2.5-flash")

    def test_next_available_model_falls_back(self, ledger):
        preference = DispatchPreference(ProviderKind.GEMINI, "gemini-2.5-flash",
                                        ProviderKind.GROQ, "llama-3.3-70b-versatile")
        for _ in range(18):
            ledger.record_usage("gemini", "gemini-2.5-flash")

        assert ledger.get_next_available_model(preference) == (ProviderKind.GROQ, "llama-3.3-70b-versatile")

    def test_next_available_model_none_when_all_exhausted(self, ledger):
        preference = DispatchPreference(ProviderKind.GEMINI, "gemini-2.5-flash")
        for _ in range(18):
            ledger.record_usage("gemini", "gemini-2.5-flash")

        assert ledger.get_next_available_model(preference) is None

    def test_usage_stats(self, ledger):
        for _ in range(5):
            ledger.record_usage("gemini", "gemini-2.5-flash")
        stats = ledger.get_all_usage_stats()

        entry = stats["gemini:gemini-2.5-flash"]
        assert entry["count"] == 5
        assert entry["limit"] == 20
        assert entry["percentage"] == 25.0
        assert len(stats) == len(ModelCatalog())
        assert stats["gemini:gemini-2.5-flash-native-audio-preview-12-2025"]["limit"] is None

    def test_time_until_reset(self, ledger, clock):
        clock.now = utc(2025, 1, 1, 23, 0, 0)
        assert ledger.time_until_reset() == pytest.approx(3600)

    def test_next_utc_midnight(self):
        assert next_utc_midnight(utc(2025, 3, 31, 0, 0, 0)) == utc(2025, 4, 1)
        assert next_utc_midnight(utc(2025, 12, 31, 18, 30)) == utc(2026, 1, 1)


@pytest.mark.unit
class TestCatalog:

    def test_default_catalog_capabilities(self):
        catalog = ModelCatalog()

        assert catalog.get("groq", "meta-llama/llama-4-scout-17b-16e-instruct").supports_vision
        assert not catalog.get(ProviderKind.GROQ, "llama-3.3-70b-versatile").supports_vision
        assert catalog.get("gemini", "gemini-2.5-flash-native-audio-preview-12-2025").supports_live_audio
        assert ("groq", "whisper-large-v3-turbo") in catalog
        assert catalog.get("groq", "nope") is None

    def test_overrides_replace_limits_only_where_given(self):
        catalog = ModelCatalog().with_overrides(
            {"groq": {"llama-3.3-70b-versatile": {"requests_per_day": 50}}})
        descriptor = catalog.get("groq", "llama-3.3-70b-versatile")

        assert descriptor.limits.requests_per_day == 50
        assert descriptor.limits.tokens_per_minute == 12000

    def test_overrides_add_models(self):
        catalog = ModelCatalog([ProviderModelDescriptor("groq", "a", limits=ModelLimits(requests_per_day=1))])
        extended = catalog.with_overrides({"gemini": {"b": {"supports_vision": True}}})

        assert len(extended) == 2
        assert extended.get("gemini", "b").supports_vision
        assert len(catalog) == 1
