"""In-flight job tracking. Registries are per process and start empty."""

import logging
import threading
from typing import Hashable

logger = logging.getLogger(__name__)


class JobRegistry:
    """Mutex-guarded set of keys that currently own a running job."""

    def __init__(self, name: str):
        self.name = name
        self._active: set[Hashable] = set()
        self._lock = threading.Lock()

    def try_acquire(self, key: Hashable) -> bool:
        """Claim ``key``.

        Returns:
            True if the caller now owns the job, False if one is already running
        """
        with self._lock:
            if key in self._active:
                return False
            self._active.add(key)
            return True

    def release(self, key: Hashable) -> None:
        with self._lock:
            self._active.discard(key)

    def is_active(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._active

    def __len__(self) -> int:
        with self._lock:
            return len(self._active)


# Assembly runs keyed by session token, transcode triggers keyed by video id
assembly_jobs = JobRegistry("assembly")
transcode_jobs = JobRegistry("transcode")
