import threading
from collections import deque
from datetime import datetime, timedelta

MAX_FAILURES = 5
WINDOW_SECONDS = 15 * 60
LOCK_SECONDS = 15 * 60


class LoginGuard:
    """Per-key failed-login counter with a temporary lockout.

    Keys are ``email:client_ip``. State is per process. Keys whose failures
    have all aged out of the window are swept at most once per window, so
    the tables only hold keys seen recently.
    """

    def __init__(
        self,
        max_failures: int = MAX_FAILURES,
        window_seconds: int = WINDOW_SECONDS,
        lock_seconds: int = LOCK_SECONDS,
        clock=datetime.utcnow,
    ):
        self.max_failures = max_failures
        self.window = timedelta(seconds=window_seconds)
        self.lock_for = timedelta(seconds=lock_seconds)
        self._clock = clock
        self._failures: dict[str, deque] = {}
        self._locked_until: dict[str, datetime] = {}
        self._last_sweep = clock()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._failures.keys() | self._locked_until.keys())

    def _sweep(self, now: datetime) -> None:
        if now - self._last_sweep < self.window:
            return
        cutoff = now - self.window
        for key in [k for k, q in self._failures.items() if not q or q[-1] < cutoff]:
            del self._failures[key]
        for key in [k for k, until in self._locked_until.items() if until <= now]:
            del self._locked_until[key]
        self._last_sweep = now

    def locked_until(self, key: str) -> datetime | None:
        now = self._clock()
        with self._lock:
            self._sweep(now)
            until = self._locked_until.get(key)
            if not until:
                return None
            if until <= now:
                self._locked_until.pop(key, None)
                return None
            return until

    def register_failure(self, key: str) -> datetime | None:
        now = self._clock()
        with self._lock:
            self._sweep(now)
            q = self._failures.setdefault(key, deque())
            cutoff = now - self.window
            while q and q[0] < cutoff:
                q.popleft()
            q.append(now)

            if len(q) >= self.max_failures:
                until = now + self.lock_for
                self._locked_until[key] = until
                del self._failures[key]
                return until
        return None

    def clear(self, key: str) -> None:
        with self._lock:
            self._failures.pop(key, None)
            self._locked_until.pop(key, None)

    def reset(self) -> None:
        with self._lock:
            self._failures.clear()
            self._locked_until.clear()


login_guard = LoginGuard()
