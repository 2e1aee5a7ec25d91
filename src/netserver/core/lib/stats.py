"""Connection statistics for a running engine.

Counts are kept by the process running the accept loop. In forking mode the
access decision is taken inside each worker, so the supervisor only sees
accepted connections and worker lifetimes; in select mode every counter is
exact.

Example:
    stats = ServerStats()
    stats.connection_accepted()
    stats.worker_started(pid)
"""

import threading
import time
from datetime import datetime, timezone


class ServerStats:
    """Statistics tracker for one engine run.

    Uses a reentrant lock: the SIGCHLD handler updates the counters from the
    main thread, possibly while the main thread already holds the lock.
    """

    def __init__(self) -> None:
        """Initialize zeroed counters and record the start time."""
        self.accepted = 0
        self.denied = 0
        self.served = 0
        self.failed = 0
        self.active_workers: set[int] = set()
        self.workers_started = 0
        self.workers_reaped = 0
        self.start_time = datetime.now(tz=timezone.utc)
        self._started = time.monotonic()
        self._lock = threading.RLock()

    def connection_accepted(self) -> None:
        with self._lock:
            self.accepted += 1

    def connection_denied(self) -> None:
        with self._lock:
            self.denied += 1

    def connection_served(self) -> None:
        with self._lock:
            self.served += 1

    def connection_failed(self) -> None:
        with self._lock:
            self.failed += 1

    def worker_started(self, pid: int) -> None:
        with self._lock:
            self.active_workers.add(pid)
            self.workers_started += 1

    def worker_reaped(self, pid: int) -> None:
        with self._lock:
            if pid in self.active_workers:
                self.active_workers.discard(pid)
                self.workers_reaped += 1

    @property
    def uptime(self) -> float:
        """Seconds since the engine started."""
        return time.monotonic() - self._started

    def summary(self) -> str:
        with self._lock:
            parts = [f"accepted={self.accepted}", f"served={self.served}", f"denied={self.denied}"]
            if self.failed:
                parts.append(f"failed={self.failed}")
            if self.workers_started:
                parts.append(f"workers={self.workers_started}")
                parts.append(f"active={len(self.active_workers)}")
        return f"{' '.join(parts)} uptime={self.uptime:.1f}s"
