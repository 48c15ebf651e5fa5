# app/x402/nonces.py
"""
Replay protection for x402 payments.

NonceLedger remembers every nonce that belonged to an accepted payment.
A nonce moves from unused to used exactly once: reserve() checks and marks
under a single lock, so two concurrent reservations of the same nonce can
never both succeed. Only the validator's final step calls reserve(), which
means a payment rejected for any other reason leaves its nonce usable.

Records are evicted once the payment timestamp they came from is older than
the retention window (validity period + clock skew). A payload that old is
rejected as expired before the ledger is consulted, so forgetting it cannot
re-open a replay.
"""
import logging
import threading
import time
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class NonceLedger:
    """
    In-memory nonce store with time-based eviction.

    Thread-safe for concurrent access. Owned by the gateway that uses it;
    swap in another implementation with the same reserve()/sweep() surface
    for a horizontally scaled deployment.
    """

    def __init__(
        self,
        retention_seconds: int,
        clock: Optional[Clock] = None,
        sweep_interval: int = 60,
    ):
        """
        Initialize the ledger.

        Args:
            retention_seconds: How long a nonce is remembered, measured from
                the timestamp of the payment that used it
            clock: Time source (defaults to time.time)
            sweep_interval: Minimum seconds between opportunistic sweeps
                triggered from reserve()
        """
        if retention_seconds <= 0:
            raise ValueError("retention_seconds must be positive")
        self._retention_seconds = retention_seconds
        self._clock = clock or time.time
        self._sweep_interval = sweep_interval
        self._used: Dict[str, float] = {}
        self._lock = threading.Lock()
        self._last_sweep = self._clock()

    @property
    def retention_seconds(self) -> int:
        return self._retention_seconds

    def reserve(self, nonce: str, timestamp: Optional[float] = None) -> bool:
        """
        Atomically claim a nonce.

        Args:
            nonce: The payment nonce
            timestamp: Originating timestamp of the payment; eviction is
                measured from it. Defaults to now.

        Returns:
            True if the nonce was unused and is now marked used,
            False if it had already been used
        """
        now = self._clock()
        self._maybe_sweep(now)

        with self._lock:
            if nonce in self._used:
                return False
            self._used[nonce] = timestamp if timestamp is not None else now
            return True

    def is_used(self, nonce: str) -> bool:
        with self._lock:
            return nonce in self._used

    def __contains__(self, nonce: str) -> bool:
        return self.is_used(nonce)

    def __len__(self) -> int:
        with self._lock:
            return len(self._used)

    def sweep(self, now: Optional[float] = None) -> int:
        """
        Evict nonces whose payment timestamp is older than the retention window.

        Returns:
            Number of evicted records
        """
        if now is None:
            now = self._clock()
        cutoff = now - self._retention_seconds

        with self._lock:
            stale = [nonce for nonce, ts in self._used.items() if ts < cutoff]
            for nonce in stale:
                del self._used[nonce]
            self._last_sweep = now

        if stale:
            logger.debug(f"Evicted {len(stale)} expired nonces")
        return len(stale)

    def reset(self) -> None:
        """Forget every nonce (useful for testing)."""
        with self._lock:
            self._used.clear()
        logger.info("Reset nonce ledger")

    def _maybe_sweep(self, now: float) -> None:
        if now - self._last_sweep < self._sweep_interval:
            return
        self.sweep(now)
