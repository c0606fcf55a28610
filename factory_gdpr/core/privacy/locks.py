from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class SubjectLocks:
    """
    One re-entrant lock per data subject.

    Every operation that mutates a subject's records or consents holds that
    subject's lock. Re-entrant so the erasure workflow can call store methods
    that take the same lock.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}

    def lock_for(self, data_subject_id: str) -> threading.RLock:
        key = str(data_subject_id)
        with self._guard:
            lk = self._locks.get(key)
            if lk is None:
                lk = threading.RLock()
                self._locks[key] = lk
            return lk

    @contextmanager
    def hold(self, data_subject_id: str) -> Iterator[None]:
        lk = self.lock_for(data_subject_id)
        with lk:
            yield

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
