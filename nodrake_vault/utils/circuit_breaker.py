"""
Per-provider circuit breaker.

After ``failure_threshold`` consecutive transient failures a provider's
circuit opens and calls to it are refused without touching the network.
Once ``recovery_timeout_seconds`` have passed the circuit goes half-open:
the next call is let through, and its outcome closes or re-opens the circuit.
"""

import threading
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Callable, Dict, Hashable, Optional

from ..config import CircuitBreakerConfig
from ..enums import CircuitState
from .logger import get_logger


@dataclass
class CircuitSnapshot:
    state: CircuitState = CircuitState.CLOSED
    consecutive_failures: int = 0
    opened_at: Optional[datetime] = None
    retry_at: Optional[datetime] = None


class CircuitBreaker:
    def __init__(
        self,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        self.config = config or CircuitBreakerConfig()
        self.clock = clock
        self.logger = get_logger()
        self._lock = threading.Lock()
        self._circuits: Dict[Hashable, CircuitSnapshot] = {}

    def _circuit(self, key: Hashable) -> CircuitSnapshot:
        circuit = self._circuits.get(key)
        if circuit is None:
            circuit = self._circuits[key] = CircuitSnapshot()
        return circuit

    def _recovery(self) -> timedelta:
        return timedelta(seconds=self.config.recovery_timeout_seconds)

    def allow(self, key: Hashable) -> bool:
        """True if a call for ``key`` may go out now."""
        if not self.config.enabled:
            return True
        with self._lock:
            circuit = self._circuit(key)
            if circuit.state != CircuitState.OPEN:
                return True
            if self.clock() < circuit.retry_at:
                return False
            circuit.state = CircuitState.HALF_OPEN
            self.logger.info("Circuit half-open, allowing a trial call", extra={"circuit": str(key)})
            return True

    def record_success(self, key: Hashable) -> None:
        with self._lock:
            circuit = self._circuit(key)
            if circuit.state != CircuitState.CLOSED:
                self.logger.info("Circuit closed", extra={"circuit": str(key)})
            self._circuits[key] = CircuitSnapshot()

    def record_failure(self, key: Hashable) -> None:
        """Count one transient failure; open the circuit when the threshold is reached."""
        if not self.config.enabled:
            return
        with self._lock:
            circuit = self._circuit(key)
            circuit.consecutive_failures += 1
            if circuit.state == CircuitState.HALF_OPEN or (
                circuit.state == CircuitState.CLOSED
                and circuit.consecutive_failures >= self.config.failure_threshold
            ):
                now = self.clock()
                circuit.state = CircuitState.OPEN
                circuit.opened_at = now
                circuit.retry_at = now + self._recovery()
                self.logger.warning(
                    "Circuit opened",
                    extra={
                        "circuit": str(key),
                        "consecutive_failures": circuit.consecutive_failures,
                        "retry_at": circuit.retry_at.isoformat(),
                    },
                )

    def snapshot(self, key: Hashable) -> CircuitSnapshot:
        """A copy of the current state for ``key``; an unknown key is closed."""
        with self._lock:
            circuit = self._circuits.get(key) or CircuitSnapshot()
            return CircuitSnapshot(
                state=circuit.state,
                consecutive_failures=circuit.consecutive_failures,
                opened_at=circuit.opened_at,
                retry_at=circuit.retry_at,
            )

    def reset(self, key: Optional[Hashable] = None) -> None:
        with self._lock:
            if key is None:
                self._circuits.clear()
            else:
                self._circuits.pop(key, None)
