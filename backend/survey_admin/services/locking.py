"""
Process-wide single-flight locks, keyed by name.

Acquisition never blocks: a second caller gets ConflictError immediately.
"""
from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator

from survey_admin.services.errors import ConflictError

RECONCILIATION_LOCK_KEY = "reconciliation-run"

_registry: Dict[str, threading.Lock] = {}
_registry_guard = threading.Lock()


def _lock_for(key: str) -> threading.Lock:
    with _registry_guard:
        lock = _registry.get(key)
        if lock is None:
            lock = _registry[key] = threading.Lock()
        return lock


class SingleFlightLock:
    def __init__(self, key: str = RECONCILIATION_LOCK_KEY):
        self.key = key
        self._lock = _lock_for(key)

    def locked(self) -> bool:
        return self._lock.locked()

    @contextmanager
    def hold(self) -> Iterator[None]:
        if not self._lock.acquire(blocking=False):
            raise ConflictError("Reconciliation already running")
        try:
            yield
        finally:
            self._lock.release()
