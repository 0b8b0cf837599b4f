"""
Request coalescing to prevent duplicate upstream calls.

When multiple concurrent requests ask for the same key, only one
upstream call is made and all requesters share the result.
"""
import threading
import time
import logging
from typing import Dict, Optional, Callable, Any, Tuple
from dataclasses import dataclass, field

from .core import CacheSource

logger = logging.getLogger("cache.coalescer")

# Returned by a lookup callable when it has nothing to serve
MISSING = object()


class CoalesceTimeoutError(TimeoutError):
    """A waiter gave up on an in-flight computation."""


@dataclass
class InFlightRequest:
    """Tracks an in-progress upstream request."""
    event: threading.Event = field(default_factory=threading.Event)
    result: Optional[Any] = None
    error: Optional[BaseException] = None
    started_at: float = field(default_factory=time.time)
    waiter_count: int = 0


class RequestCoalescer:
    """
    Ensures concurrent requests for the same key share one upstream call.

    Pattern:
    - First request for a key initiates the fetch
    - Subsequent requests for the same key wait on the Event
    - When fetch completes, all waiters receive the same result or error
    - The in-flight entry is removed whatever the outcome, so a failed or
      interrupted fetch never blocks later retries

    Usage:
        coalescer = RequestCoalescer()
        value, source = coalescer.get_or_fetch(
            "courses:fsu",
            fetch_fn=lambda: client.get_text(url),
        )
    """

    def __init__(self, timeout: Optional[float] = 30.0):
        """
        Initialize the coalescer.

        Args:
            timeout: Max seconds a waiter blocks on an in-flight request
                     (None waits forever)
        """
        self._in_flight: Dict[str, InFlightRequest] = {}
        self._lock = threading.Lock()
        self._timeout = timeout

    def get_or_fetch(
        self,
        key: str,
        fetch_fn: Callable[[], Any],
        lookup: Optional[Callable[[], Any]] = None,
        on_result: Optional[Callable[[Any], None]] = None,
    ) -> Tuple[Any, CacheSource]:
        """
        Either join an existing in-flight request or initiate a new one.

        Args:
            key: Unique key for this request
            fetch_fn: Function to call if we need to fetch
            lookup: Checked under the registry lock before joining or
                    initiating; a value other than MISSING is returned as-is
            on_result: Called by the initiator with the fetched value before
                       the in-flight entry is released

        Returns:
            (value, source) where source is FRESH for a lookup hit,
            UPSTREAM for the initiator and SHARED for waiters

        Raises:
            CoalesceTimeoutError: If waiting for an in-flight request times out
            Exception: Any error from fetch_fn is propagated to every caller
        """
        with self._lock:
            if lookup is not None:
                cached = lookup()
                if cached is not MISSING:
                    return cached, CacheSource.FRESH

            if key in self._in_flight:
                in_flight = self._in_flight[key]
                in_flight.waiter_count += 1
                logger.debug(
                    f"Coalescing request for {key} "
                    f"(waiters: {in_flight.waiter_count})"
                )
                is_initiator = False
            else:
                in_flight = InFlightRequest()
                self._in_flight[key] = in_flight
                is_initiator = True
                logger.debug(f"Initiating fetch for {key}")

        if is_initiator:
            try:
                result = fetch_fn()
                if on_result is not None:
                    on_result(result)
                in_flight.result = result
            except BaseException as e:
                in_flight.error = e
                logger.warning(f"Fetch failed for {key}: {e!r}")
            finally:
                with self._lock:
                    if self._in_flight.get(key) is in_flight:
                        del self._in_flight[key]
                in_flight.event.set()

            if in_flight.error is not None:
                raise in_flight.error
            return in_flight.result, CacheSource.UPSTREAM

        completed = in_flight.event.wait(timeout=self._timeout)

        if not completed:
            logger.error(f"Timeout waiting for coalesced request: {key}")
            raise CoalesceTimeoutError(
                f"Request for {key} timed out after {self._timeout}s"
            )

        if in_flight.error is not None:
            raise in_flight.error

        return in_flight.result, CacheSource.SHARED

    def is_pending(self, key: str) -> bool:
        with self._lock:
            return key in self._in_flight

    @property
    def active_requests(self) -> int:
        """Number of currently in-flight requests."""
        with self._lock:
            return len(self._in_flight)

    def get_stats(self) -> Dict[str, Any]:
        """Get coalescer statistics."""
        with self._lock:
            return {
                "active_requests": len(self._in_flight),
                "active_keys": list(self._in_flight.keys()),
            }
