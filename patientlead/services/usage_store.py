"""Atomic check-and-increment stores for fixed usage windows.

A store evaluates a batch of window checks as one unit: either every checked
counter is incremented by one, or (on the first counter at its limit) none is.
Windows reset on access: a window whose ``window_end`` has passed is treated
as a fresh window anchored at ``now``.
"""

from __future__ import annotations

import hashlib
import logging
import threading
import time
import zlib
from dataclasses import dataclass, replace
from typing import Optional, Sequence, Tuple

from patientlead.repositories import usage_repo
from patientlead.services.ttl_cache import TTLCache
from patientlead.services.tool_catalog import UNLIMITED


@dataclass(frozen=True)
class WindowCheck:
    key: str
    kind: str
    limit: int
    duration_seconds: int


@dataclass(frozen=True)
class UsageWindow:
    key: str
    count: int
    window_start: float
    window_end: float

    def expired(self, now) -> bool:
        return now >= self.window_end


@dataclass(frozen=True)
class WindowState:
    check: WindowCheck
    window: UsageWindow

    @property
    def remaining(self) -> Optional[int]:
        if self.check.limit == UNLIMITED:
            return None
        return max(0, self.check.limit - self.window.count)


@dataclass(frozen=True)
class ConsumeResult:
    allowed: bool
    states: Tuple[WindowState, ...] = ()
    failed: Optional[WindowState] = None


def window_doc_id(key):
    return hashlib.sha256(str(key).encode('utf-8')).hexdigest()


def current_window(check: WindowCheck, stored: Optional[UsageWindow], now) -> UsageWindow:
    if stored is None or stored.expired(now):
        return UsageWindow(key=check.key, count=0, window_start=now, window_end=now + check.duration_seconds)
    return stored


def evaluate_windows(checks: Sequence[WindowCheck], stored_windows, now) -> ConsumeResult:
    """Check windows in order and stop at the first one at its limit."""
    states = []
    for check, stored in zip(checks, stored_windows):
        state = WindowState(check=check, window=current_window(check, stored, now))
        if check.limit != UNLIMITED and state.window.count >= check.limit:
            return ConsumeResult(allowed=False, states=tuple(states), failed=state)
        states.append(state)
    return ConsumeResult(allowed=True, states=tuple(states))


def increment_states(states):
    return tuple(
        replace(state, window=replace(state.window, count=state.window.count + 1))
        for state in states
    )


class InMemoryUsageStore:
    """Single-process store backed by a bounded TTL/LRU map.

    Check-and-increment runs under a lock striped by ``lock_key`` (the user),
    so every window of one user is serialized while other users proceed.
    """

    def __init__(self, max_items=10000, lock_stripes=64, clock=time.time):
        self._windows = TTLCache(max_items=max_items, clock=clock)
        self._locks = [threading.Lock() for _ in range(max(1, int(lock_stripes)))]

    def _lock_for(self, lock_key):
        return self._locks[zlib.crc32(str(lock_key).encode('utf-8')) % len(self._locks)]

    def _load(self, checks):
        return [self._windows.get(check.key) for check in checks]

    def consume(self, checks, now, lock_key=None):
        lock_key = lock_key if lock_key is not None else (checks[0].key if checks else '')
        with self._lock_for(lock_key):
            result = evaluate_windows(checks, self._load(checks), now)
            if not result.allowed:
                return result
            admitted = increment_states(result.states)
            for state in admitted:
                self._windows.set(state.window.key, state.window, ttl_sec=max(1.0, state.window.window_end - now))
            return ConsumeResult(allowed=True, states=admitted)

    def peek(self, checks, now, lock_key=None):
        lock_key = lock_key if lock_key is not None else (checks[0].key if checks else '')
        with self._lock_for(lock_key):
            return evaluate_windows(checks, self._load(checks), now)

    def clear(self):
        self._windows.clear()


class FirestoreUsageStore:
    """Multi-instance store: one Firestore transaction per check batch."""

    def __init__(self, db, firestore_module, collection_name=usage_repo.USAGE_WINDOW_COLLECTION):
        self.db = db
        self.firestore_module = firestore_module
        self.collection_name = collection_name

    def _refs(self, checks):
        return [usage_repo.window_doc_ref(self.db, self.collection_name, window_doc_id(check.key)) for check in checks]

    @staticmethod
    def _window_from_snapshot(check, snapshot):
        if snapshot is None or not snapshot.exists:
            return None
        data = snapshot.to_dict() or {}
        try:
            return UsageWindow(
                key=check.key,
                count=int(data.get('count', 0) or 0),
                window_start=float(data.get('window_start', 0) or 0),
                window_end=float(data.get('window_end', 0) or 0),
            )
        except (TypeError, ValueError):
            return None

    def consume(self, checks, now, lock_key=None):
        refs = self._refs(checks)
        transaction = self.db.transaction()

        @self.firestore_module.transactional
        def _txn(txn):
            stored = [
                self._window_from_snapshot(check, ref.get(transaction=txn))
                for check, ref in zip(checks, refs)
            ]
            result = evaluate_windows(checks, stored, now)
            if not result.allowed:
                return result
            admitted = increment_states(result.states)
            for ref, state in zip(refs, admitted):
                txn.set(ref, {
                    'key': state.window.key,
                    'count': state.window.count,
                    'window_start': state.window.window_start,
                    'window_end': state.window.window_end,
                    'updated_at': now,
                    'expires_at': state.window.window_end + state.check.duration_seconds,
                }, merge=True)
            return ConsumeResult(allowed=True, states=admitted)

        return _txn(transaction)

    def peek(self, checks, now, lock_key=None):
        stored = [
            self._window_from_snapshot(check, ref.get())
            for check, ref in zip(checks, self._refs(checks))
        ]
        return evaluate_windows(checks, stored, now)


class FallbackUsageStore:
    """Use ``primary`` and fall back to ``secondary`` when it raises."""

    def __init__(self, primary, secondary, logger=None):
        self.primary = primary
        self.secondary = secondary
        self.logger = logger or logging.getLogger('patientlead.usage')

    def consume(self, checks, now, lock_key=None):
        try:
            return self.primary.consume(checks, now, lock_key=lock_key)
        except Exception as exc:
            self.logger.warning(f"Usage store unavailable, using in-memory counters: {exc}")
            return self.secondary.consume(checks, now, lock_key=lock_key)

    def peek(self, checks, now, lock_key=None):
        try:
            return self.primary.peek(checks, now, lock_key=lock_key)
        except Exception as exc:
            self.logger.warning(f"Usage store unavailable, using in-memory counters: {exc}")
            return self.secondary.peek(checks, now, lock_key=lock_key)
