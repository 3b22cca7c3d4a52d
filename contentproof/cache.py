"""
Consumer-side verdict cache.

Last-write-wins map from resource locator to verdict with a fixed freshness
window. Staleness is judged at read time; writes also drop every expired
entry so locators that are never read again do not accumulate. Each instance
is independent; the verification engine never consults it.
"""

import threading
import time
from typing import Callable, Dict, Optional, Tuple

from .config import ProvenanceConfig
from .verifier import VerificationVerdict

DEFAULT_TTL_SECONDS = 300


class VerificationCache:
    """
    TTL cache of verification verdicts.

    Args:
        ttl_seconds: Freshness window
        clock: Wall-clock source (seconds)
    """

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.time):
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[float, VerificationVerdict]] = {}
        self._lock = threading.RLock()

    @classmethod
    def from_config(cls, config: ProvenanceConfig, clock: Callable[[], float] = time.time) -> 'VerificationCache':
        return cls(ttl_seconds=config.verification_cache_ttl_seconds, clock=clock)

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def _expired(self, stored_at: float, now: float) -> bool:
        return now - stored_at >= self._ttl

    def get(self, locator: str) -> Optional[VerificationVerdict]:
        with self._lock:
            item = self._entries.get(locator)
            if item is None:
                return None
            stored_at, verdict = item
            if self._expired(stored_at, self._clock()):
                del self._entries[locator]
                return None
            return verdict

    def put(self, locator: str, verdict: VerificationVerdict) -> None:
        with self._lock:
            now = self._clock()
            stale = [key for key, (stored_at, _) in self._entries.items() if self._expired(stored_at, now)]
            for key in stale:
                del self._entries[key]
            self._entries[locator] = (now, verdict)

    def get_or_compute(
        self,
        locator: str,
        compute: Callable[[], VerificationVerdict],
    ) -> VerificationVerdict:
        """Return a fresh cached verdict or compute and store a new one."""
        verdict = self.get(locator)
        if verdict is None:
            verdict = compute()
            self.put(locator, verdict)
        return verdict

    def invalidate(self, locator: str) -> None:
        with self._lock:
            self._entries.pop(locator, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
