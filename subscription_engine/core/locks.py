"""
Per-user mutual exclusion.

- In-memory, keyed by user_id.
- Re-entrant so an operation holding a user's lock can call another
  locked operation for the same user (retry -> process_payment).
"""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class UserLockRegistry:
    def __init__(self):
        self._locks: Dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, user_id: str) -> threading.RLock:
        with self._guard:
            if user_id not in self._locks:
                self._locks[user_id] = threading.RLock()
            return self._locks[user_id]

    @contextmanager
    def hold(self, user_id: str) -> Iterator[None]:
        """Serialize all mutations for one user."""
        lock = self._lock_for(user_id)
        with lock:
            yield

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
