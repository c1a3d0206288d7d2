"""
Rate/Concurrency Governor.

Every outbound request passes through `RequestGovernor.call`, which holds
a request until it is below the concurrency ceiling, below the rolling
per-minute rate ceiling and outside any pause window, then retries
transient failures with exponential backoff.
"""

import threading
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Optional

import requests

from tracker.errors import FetchError, ResourceGoneError
from tracker.logger import logger

RATE_WINDOW_SECONDS = 60.0


@dataclass
class GovernorState:
    """Counters owned by one governor. Mutated only under its lock."""
    issued: int = 0
    in_flight: int = 0
    peak_in_flight: int = 0
    retries: int = 0
    pauses: int = 0
    rate_waits: int = 0


def is_transient(error: BaseException) -> bool:
    if isinstance(error, ResourceGoneError):
        return False
    if isinstance(error, FetchError):
        return error.transient
    if isinstance(error, (requests.exceptions.ConnectionError, requests.exceptions.Timeout)):
        return True
    if isinstance(error, requests.exceptions.HTTPError):
        response = getattr(error, "response", None)
        return response is not None and response.status_code >= 500
    return False


class RequestGovernor:
    def __init__(
        self,
        max_concurrency: int = 4,
        rate_limit: int = 80,
        pause_every: int = 0,
        pause_ms: int = 0,
        retries: int = 3,
        retry_backoff: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        if retries < 1:
            raise ValueError("retries must be at least 1")
        self.max_concurrency = max_concurrency
        self.rate_limit = rate_limit
        self.pause_every = pause_every
        self.pause_seconds = pause_ms / 1000.0
        self.retries = retries
        self.retry_backoff = retry_backoff
        self._clock = clock
        self._sleep = sleep

        self._slots = threading.BoundedSemaphore(max_concurrency)
        self._lock = threading.Lock()
        self._issued_at = deque()
        self._paused_until = 0.0
        self.state = GovernorState()

    @classmethod
    def from_config(cls, config, **kwargs) -> "RequestGovernor":
        return cls(
            max_concurrency=config.max_concurrency,
            rate_limit=config.rate_limit,
            pause_every=config.pause_every,
            pause_ms=config.pause_ms,
            retries=config.retries,
            retry_backoff=config.retry_backoff,
            **kwargs,
        )

    # --------------------------------------------------
    # Admission
    # --------------------------------------------------
    def _admit(self) -> float:
        """
        Try to start one request. Returns 0 when admitted, otherwise the
        number of seconds to wait before trying again. The window check and
        the counter update happen under the same lock.
        """
        with self._lock:
            now = self._clock()
            while self._issued_at and now - self._issued_at[0] >= RATE_WINDOW_SECONDS:
                self._issued_at.popleft()

            if now < self._paused_until:
                return self._paused_until - now
            if self.rate_limit and len(self._issued_at) >= self.rate_limit:
                self.state.rate_waits += 1
                return max(RATE_WINDOW_SECONDS - (now - self._issued_at[0]), 0.001)

            self._issued_at.append(now)
            self.state.issued += 1
            self.state.in_flight += 1
            self.state.peak_in_flight = max(self.state.peak_in_flight, self.state.in_flight)
            if self.pause_every and self.pause_seconds and self.state.issued % self.pause_every == 0:
                self._paused_until = now + self.pause_seconds
                self.state.pauses += 1
                logger.info(
                    f"[THROTTLE] {self.state.issued} requests issued. "
                    f"Pausing new requests for {self.pause_seconds:.1f}s"
                )
            return 0.0

    def acquire(self) -> None:
        self._slots.acquire()
        try:
            while True:
                wait = self._admit()
                if wait <= 0:
                    return
                self._sleep(wait)
        except BaseException:
            self._slots.release()
            raise

    def release(self) -> None:
        with self._lock:
            self.state.in_flight -= 1
        self._slots.release()

    @contextmanager
    def slot(self):
        self.acquire()
        try:
            yield
        finally:
            self.release()

    # --------------------------------------------------
    # Retries
    # --------------------------------------------------
    def backoff_delay(self, attempt: int) -> float:
        """Delay before `attempt` (1-based): 0, 0, b, 2b, 4b, ..."""
        if attempt <= 2:
            return 0.0
        return self.retry_backoff * (2 ** (attempt - 3))

    def call(self, func: Callable, *args, description: Optional[str] = None, **kwargs):
        """
        Run `func` under the governor. Transient failures are retried up to
        the retry budget; the last failure is raised once it is exhausted.
        """
        label = description or (str(args[0]) if args else getattr(func, "__name__", "request"))
        for attempt in range(1, self.retries + 1):
            delay = self.backoff_delay(attempt)
            if delay:
                self._sleep(delay)
            try:
                with self.slot():
                    return func(*args, **kwargs)
            except Exception as e:
                if not is_transient(e) or attempt >= self.retries:
                    if is_transient(e):
                        logger.error(f"[RETRY] Giving up on {label} after {attempt} attempt(s): {e}")
                    raise
                with self._lock:
                    self.state.retries += 1
                logger.warning(f"[RETRY {attempt}/{self.retries}] {label}: {e}")
