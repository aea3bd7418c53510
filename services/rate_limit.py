"""Per-client fixed-window admission control."""

import ipaddress
import logging
import math
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, Optional, Tuple

from pydantic import BaseModel

from services.errors import AdmissionDenied

logger = logging.getLogger(__name__)

UNKNOWN_CLIENT = "unknown"


@dataclass
class RateWindow:
    count: int
    reset_time: float  # epoch seconds


class RateLimitInfo(BaseModel):
    remaining: int
    reset_time: float
    limit: int


class CounterStore(ABC):
    """Where windows live. Swap in a shared store to limit across processes."""

    @abstractmethod
    def get(self, key: str) -> Optional[RateWindow]:
        ...

    @abstractmethod
    def set(self, key: str, window: RateWindow):
        ...

    @abstractmethod
    def delete(self, key: str):
        ...

    @abstractmethod
    def items(self) -> Iterator[Tuple[str, RateWindow]]:
        ...


class InMemoryCounterStore(CounterStore):

    def __init__(self):
        self._windows: Dict[str, RateWindow] = {}

    def get(self, key: str) -> Optional[RateWindow]:
        return self._windows.get(key)

    def set(self, key: str, window: RateWindow):
        self._windows[key] = window

    def delete(self, key: str):
        self._windows.pop(key, None)

    def items(self) -> Iterator[Tuple[str, RateWindow]]:
        return iter(list(self._windows.items()))

    def __len__(self) -> int:
        return len(self._windows)


def make_counter_store(kind: str = "memory") -> CounterStore:
    if kind == "memory":
        return InMemoryCounterStore()
    raise ValueError(f"Unknown rate limit store: {kind}")


class RateLimiter:
    """Allows ``max_requests`` per ``window_seconds`` for each identifier.

    The first request after a window has expired opens a new one with a
    count of 1.
    """

    def __init__(
        self,
        max_requests: int = 10,
        window_seconds: float = 60,
        store: Optional[CounterStore] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.store = store if store is not None else InMemoryCounterStore()
        self.clock = clock
        self._lock = threading.Lock()

    def is_allowed(self, identifier: str) -> bool:
        with self._lock:
            now = self.clock()
            window = self.store.get(identifier)
            if window is None or now > window.reset_time:
                self.store.set(identifier, RateWindow(count=1, reset_time=now + self.window_seconds))
                return True
            if window.count < self.max_requests:
                window.count += 1
                self.store.set(identifier, window)
                return True
            return False

    def get_info(self, identifier: str) -> RateLimitInfo:
        now = self.clock()
        window = self.store.get(identifier)
        if window is None or now > window.reset_time:
            return RateLimitInfo(
                remaining=self.max_requests,
                reset_time=now + self.window_seconds,
                limit=self.max_requests,
            )
        return RateLimitInfo(
            remaining=max(0, self.max_requests - window.count),
            reset_time=window.reset_time,
            limit=self.max_requests,
        )

    def retry_after(self, identifier: str) -> int:
        """Whole seconds until the current window resets, at least 1."""
        info = self.get_info(identifier)
        return max(1, math.ceil(info.reset_time - self.clock()))

    def cleanup(self) -> int:
        removed = 0
        with self._lock:
            now = self.clock()
            for key, window in self.store.items():
                if now > window.reset_time:
                    self.store.delete(key)
                    removed += 1
        if removed:
            logger.debug("[ratelimit] swept %d expired windows", removed)
        return removed

    def reset(self, identifier: str):
        with self._lock:
            self.store.delete(identifier)


def is_valid_ip(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


def get_client_identifier(
    peer: Optional[str],
    forwarded_for: Optional[str] = None,
    trust_proxy: bool = False,
    max_proxy_hops: int = 1,
) -> str:
    """Pick the address to rate limit on.

    ``X-Forwarded-For`` is only honoured behind a trusted proxy, and only when
    it lists no more than ``max_proxy_hops + 1`` addresses and the leftmost one
    is a valid IP. Anything else falls back to the transport peer.
    """
    direct = peer or UNKNOWN_CLIENT
    if not trust_proxy or not forwarded_for:
        return direct

    ips = [ip.strip() for ip in forwarded_for.split(",")]
    if len(ips) > max_proxy_hops + 1:
        logger.warning("[ratelimit] suspicious x-forwarded-for with %d hops: %s", len(ips), forwarded_for)
        return direct

    client_ip = ips[0]
    if not is_valid_ip(client_ip):
        logger.warning("[ratelimit] invalid ip in x-forwarded-for: %s", client_ip)
        return direct
    return client_ip


def check_admission(limiter: RateLimiter, identifier: str) -> RateLimitInfo:
    """Admit one request for ``identifier`` or raise ``AdmissionDenied``.

    Returns the window info as it was before this request, which is what
    the ``X-RateLimit-*`` headers report.
    """
    info = limiter.get_info(identifier)
    if not limiter.is_allowed(identifier):
        retry_after = limiter.retry_after(identifier)
        logger.info("[ratelimit] denied client=%s retry_after=%ss", identifier, retry_after)
        raise AdmissionDenied(retry_after)
    return info
