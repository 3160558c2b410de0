"""
Single-flight refresh coordination.

When several request threads find the same table cold, only one of them
calls the source; the others block until it finishes and share its outcome.
"""
import threading
import time
import logging
from typing import Dict, Optional, Callable, Any, Tuple
from dataclasses import dataclass, field

logger = logging.getLogger("cache.coalescer")


@dataclass
class InFlightCall:
    """Tracks one in-progress call and the threads waiting on it."""
    event: threading.Event = field(default_factory=threading.Event)
    result: Optional[Any] = None
    error: Optional[BaseException] = None
    started_at: float = field(default_factory=time.monotonic)
    waiter_count: int = 0


class RequestCoalescer:
    """
    Ensures concurrent calls for the same key share one execution.

    - The first caller for a key runs ``fn``
    - Later callers for the same key wait on the initiator's Event
    - Every caller gets the same result, or the same exception re-raised
    - Once the call finishes the key is released, so the next caller starts fresh

    Usage:
        coalescer = RequestCoalescer()
        value, initiated = coalescer.run("subjects:refresh", refresh_fn)
    """

    def __init__(self, timeout: Optional[float] = None):
        """
        Args:
            timeout: Max seconds a waiter blocks on an in-flight call.
                ``None`` waits for as long as the call takes.
        """
        self._in_flight: Dict[str, InFlightCall] = {}
        self._lock = threading.Lock()
        self._timeout = timeout
        self._coalesced = 0

    def run(self, key: str, fn: Callable[[], Any]) -> Tuple[Any, bool]:
        """
        Either join an in-flight call for ``key`` or start a new one.

        Returns:
            (result, initiated) where ``initiated`` is True for the caller
            that actually executed ``fn``

        Raises:
            TimeoutError: If waiting for the in-flight call times out
            Exception: Whatever ``fn`` raised, re-raised in every caller
        """
        with self._lock:
            in_flight = self._in_flight.get(key)
            if in_flight is not None:
                in_flight.waiter_count += 1
                self._coalesced += 1
                is_initiator = False
                logger.debug(f"Coalescing call for {key} (waiters: {in_flight.waiter_count})")
            else:
                in_flight = InFlightCall()
                self._in_flight[key] = in_flight
                is_initiator = True
                logger.debug(f"Initiating call for {key}")

        if is_initiator:
            try:
                in_flight.result = fn()
            except Exception as e:
                in_flight.error = e
                logger.warning(f"Call failed for {key}: {e}")
            finally:
                with self._lock:
                    self._in_flight.pop(key, None)
                in_flight.event.set()

            if in_flight.error is not None:
                raise in_flight.error
            return in_flight.result, True

        completed = in_flight.event.wait(timeout=self._timeout)
        if not completed:
            logger.error(f"Timeout waiting for in-flight call: {key}")
            raise TimeoutError(f"Call for {key} timed out after {self._timeout}s")

        if in_flight.error is not None:
            raise in_flight.error
        return in_flight.result, False

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "active_requests": len(self._in_flight),
                "active_keys": list(self._in_flight.keys()),
                "coalesced_waits": self._coalesced,
            }
