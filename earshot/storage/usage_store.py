"""Durable key-value store for usage counters."""

import os
import json
import logging
import threading
from pathlib import Path
from typing import Callable, Dict, Optional

from ..errors import StorageError
from ..models.usage import UsageRecord


logger = logging.getLogger(__name__)


class UsageStore:
    """JSON-file backed store of UsageRecords keyed by ``provider:model``.

    Reads are served from memory. Writes are batched to disk: the file is
    rewritten after ``flush_every`` updates or ``flush_interval`` seconds,
    whichever comes first, and on ``flush()`` / ``close()``. Each write goes to
    a temporary file that replaces the real one, so a crash never leaves a
    half-written file behind.
    """

    def __init__(self, path: str, flush_every: int = 5, flush_interval: float = 5.0):
        """Initialize the store, loading any existing counters.

        Args:
            path: JSON file holding the counters
            flush_every: Updates to accumulate before writing
            flush_interval: Seconds after the first unwritten update to write anyway
        """
        self.path = Path(path)
        self.flush_every = max(1, flush_every)
        self.flush_interval = flush_interval

        self.lock = threading.RLock()
        self.records: Dict[str, UsageRecord] = {}
        self.pending_writes = 0
        self.flush_count = 0
        self._timer: Optional[threading.Timer] = None

        self._load()
        logger.info(f"UsageStore initialized with {len(self.records)} records from {self.path}")

    @staticmethod
    def key(provider: str, model: str) -> str:
        return f"{provider}:{model}"

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"Usage file {self.path} is corrupt, starting with empty counters: {e}")
            return
        except OSError as e:
            raise StorageError(f"Could not read {self.path}: {e}") from e

        for key, value in data.items():
            self.records[key] = UsageRecord.from_dict(value)

    def read(self, provider: str, model: str) -> UsageRecord:
        """Return a copy of the counters for one key (zeroed if never seen)."""
        with self.lock:
            record = self.records.get(self.key(provider, model))
            if record is None:
                return UsageRecord()
            return UsageRecord.from_dict(record.to_dict())

    def update(self, provider: str, model: str,
               mutator: Callable[[UsageRecord], None]) -> UsageRecord:
        """Atomically read-modify-write one key.

        ``mutator`` receives the live record and changes it in place. No other
        update or read of the store can interleave with it.

        Returns:
            A copy of the record after the mutation
        """
        with self.lock:
            key = self.key(provider, model)
            record = self.records.setdefault(key, UsageRecord())
            mutator(record)
            self.pending_writes += 1
            self._schedule_flush()
            return UsageRecord.from_dict(record.to_dict())

    def snapshot(self) -> Dict[str, UsageRecord]:
        with self.lock:
            return {key: UsageRecord.from_dict(r.to_dict()) for key, r in self.records.items()}

    def clear(self) -> None:
        """Drop every counter and persist the empty state."""
        with self.lock:
            self.records.clear()
            self.pending_writes += 1
            self.flush()

    def _schedule_flush(self) -> None:
        if self.pending_writes >= self.flush_every:
            self.flush()
            return
        if self._timer is None:
            self._timer = threading.Timer(self.flush_interval, self._flush_from_timer)
            self._timer.daemon = True
            self._timer.start()

    def _flush_from_timer(self) -> None:
        try:
            self.flush()
        except StorageError as e:
            logger.error(f"Deferred usage flush failed: {e}")

    def flush(self) -> None:
        """Write pending changes to disk now."""
        with self.lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            if self.pending_writes == 0:
                return

            data = {key: record.to_dict() for key, record in self.records.items()}
            tmp_path = self.path.with_name(self.path.name + ".tmp")
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(tmp_path, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2, sort_keys=True)
                os.replace(tmp_path, self.path)
            except OSError as e:
                raise StorageError(f"Could not write {self.path}: {e}") from e

            self.pending_writes = 0
            self.flush_count += 1
            logger.debug(f"Flushed {len(data)} usage records to {self.path}")

    def close(self) -> None:
        self.flush()
