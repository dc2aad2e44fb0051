# provisioning_engine/orchestrator/locks.py
"""Per-application mutual exclusion for step execution."""

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Tuple

logger = logging.getLogger(__name__)

Target = Tuple[str, str, str]


class ApplicationLocks:
    """
    One lock per (host, username, application_name).

    Held from the start of a step until its log entry is written, so two
    requests for the same target never interleave remote commands. A lock
    only lives while some request holds or waits for it.
    """

    def __init__(self):
        self._guard = threading.Lock()
        # target -> [lock, number of holders and waiters]
        self._locks: Dict[Target, List] = {}

    def _claim(self, target: Target) -> threading.Lock:
        with self._guard:
            entry = self._locks.get(target)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._locks[target] = entry
            entry[1] += 1
            return entry[0]

    def _release(self, target: Target) -> None:
        with self._guard:
            entry = self._locks[target]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[target]

    @contextmanager
    def hold(self, target: Target) -> Iterator[None]:
        lock = self._claim(target)
        try:
            if not lock.acquire(blocking=False):
                logger.info(f"[locks] waiting for {target[2]} ({target[1]}@{target[0]})")
                lock.acquire()
            try:
                yield
            finally:
                lock.release()
        finally:
            self._release(target)

    def is_locked(self, target: Target) -> bool:
        with self._guard:
            entry = self._locks.get(target)
            return entry is not None and entry[0].locked()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
