"""
Per-domain Circuit Breaker
Keeps a failing primary backend out of the request path for a cooldown period.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

import structlog

from lexintake.core.cache import Clock, MonotonicClock

logger = structlog.get_logger()


class CircuitState(str, Enum):
    """Circuit breaker states"""
    CLOSED = "closed"        # Primary backend in use
    OPEN = "open"            # Primary disabled, every call goes to the fallback
    HALF_OPEN = "half_open"  # Cooldown elapsed, the next call probes the primary


@dataclass
class CircuitStats:
    """Statistics for a single domain"""
    consecutive_failures: int = 0
    total_failures: int = 0
    total_successes: int = 0
    last_failure_time: float = 0
    last_error_message: Optional[str] = None
    state_changed_at: float = 0


@dataclass
class _Circuit:
    state: CircuitState = CircuitState.CLOSED
    stats: CircuitStats = field(default_factory=CircuitStats)
    probe_in_flight: bool = False


class CircuitBreaker:
    """
    Per-domain circuit breaker for the primary backend.

    States:
      CLOSED    -> primary is attempted; `failure_threshold` consecutive
                   failures open the circuit
      OPEN      -> primary is skipped for `recovery_timeout` seconds
      HALF_OPEN -> cooldown elapsed; one probe call reaches the primary,
                   success closes the circuit and failure re-opens it.
                   Other callers keep using the fallback while the probe
                   runs; a probe that never reports back is replaced after
                   another `recovery_timeout`

    The default threshold of one failure disables a domain on its first
    error, which is how the primary is expected to degrade: a single broken
    query sends the whole domain to the fallback until the cooldown ends.
    """

    def __init__(
        self,
        failure_threshold: int = 1,
        recovery_timeout: float = 30.0,
        clock: Optional[Clock] = None,
    ):
        self._failure_threshold = max(1, failure_threshold)
        self._recovery_timeout = recovery_timeout
        self._clock = clock or MonotonicClock()
        self._circuits: Dict[str, _Circuit] = {}
        self._lock = asyncio.Lock()

    async def can_execute(self, domain: str) -> bool:
        """Check whether the primary backend may be tried for *domain*."""
        async with self._lock:
            circuit = self._get_or_create(domain)

            if circuit.state == CircuitState.CLOSED:
                return True

            if circuit.state == CircuitState.OPEN:
                elapsed = self._clock.now() - circuit.stats.state_changed_at
                if elapsed >= self._recovery_timeout:
                    self._set_state(circuit, CircuitState.HALF_OPEN)
                    circuit.probe_in_flight = True
                    logger.info("Primary circuit half-open, allowing probe", domain=domain)
                    return True
                return False

            # HALF_OPEN
            stale = self._clock.now() - circuit.stats.state_changed_at >= self._recovery_timeout
            if circuit.probe_in_flight and not stale:
                return False
            circuit.probe_in_flight = True
            circuit.stats.state_changed_at = self._clock.now()
            return True

    async def release_probe(self, domain: str) -> None:
        """End a probe that neither succeeded nor failed, letting the next caller probe."""
        async with self._lock:
            self._get_or_create(domain).probe_in_flight = False

    async def record_success(self, domain: str) -> None:
        """Record a successful primary call and close the circuit."""
        async with self._lock:
            circuit = self._get_or_create(domain)
            circuit.stats.consecutive_failures = 0
            circuit.stats.total_successes += 1
            circuit.probe_in_flight = False

            if circuit.state != CircuitState.CLOSED:
                logger.info("Primary circuit closed after success", domain=domain, previous_state=circuit.state.value)
                self._set_state(circuit, CircuitState.CLOSED)

    async def record_failure(self, domain: str, error_message: Optional[str] = None) -> None:
        """Record a failed primary call; may open the circuit."""
        async with self._lock:
            circuit = self._get_or_create(domain)
            stats = circuit.stats
            circuit.probe_in_flight = False
            stats.consecutive_failures += 1
            stats.total_failures += 1
            stats.last_failure_time = self._clock.now()
            stats.last_error_message = error_message

            if circuit.state == CircuitState.HALF_OPEN or stats.consecutive_failures >= self._failure_threshold:
                if circuit.state != CircuitState.OPEN:
                    logger.error(
                        "Primary circuit opened, using fallback backend",
                        domain=domain,
                        cooldown_seconds=self._recovery_timeout,
                        reason=error_message,
                    )
                self._set_state(circuit, CircuitState.OPEN)

    async def get_state(self, domain: str) -> CircuitState:
        async with self._lock:
            return self._get_or_create(domain).state

    async def get_stats(self, domain: str) -> CircuitStats:
        async with self._lock:
            return self._get_or_create(domain).stats

    async def reset(self, domain: str) -> None:
        """Manually reset a domain to CLOSED."""
        async with self._lock:
            if domain in self._circuits:
                circuit = self._circuits[domain]
                circuit.stats.consecutive_failures = 0
                circuit.probe_in_flight = False
                self._set_state(circuit, CircuitState.CLOSED)
                logger.info("Primary circuit manually reset", domain=domain)

    def _get_or_create(self, domain: str) -> _Circuit:
        if domain not in self._circuits:
            self._circuits[domain] = _Circuit(stats=CircuitStats(state_changed_at=self._clock.now()))
        return self._circuits[domain]

    def _set_state(self, circuit: _Circuit, new_state: CircuitState) -> None:
        circuit.state = new_state
        circuit.stats.state_changed_at = self._clock.now()
