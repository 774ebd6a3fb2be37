"""
Circuit Breaker for job types.

One circuit per job type, created lazily on the first failure:
- CLOSED: failures inside the rolling window are counted; reaching the
  threshold opens the circuit
- OPEN: every call fails fast with CircuitOpenError until the cooldown has
  elapsed, then the circuit moves to HALF_OPEN
- HALF_OPEN: a single trial call is admitted; success closes the circuit,
  failure re-opens it

Circuit state lives in process memory and resets on restart.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional

from .config import ResiliencePolicy, policy_for
from .entities import to_iso, utc_now
from .errors import CircuitOpenError


logger = logging.getLogger(__name__)


class BreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitState:
    """Breaker state of one job type."""

    job_type: str
    threshold: int
    cooldown_duration: timedelta
    window: timedelta
    retryable_error_kinds: frozenset = frozenset()
    state: BreakerState = BreakerState.CLOSED
    failure_count: int = 0
    opened_at: Optional[datetime] = None
    trial_in_flight: bool = False
    failure_times: deque = field(default_factory=deque)

    @property
    def retry_at(self) -> Optional[datetime]:
        """When an open circuit admits its next trial."""
        if self.opened_at is None:
            return None
        return self.opened_at + self.cooldown_duration


class CircuitBreakerRegistry:
    """
    Per-job-type circuit breakers.

    Usage around a single call:

        registry.before_call(job_type)      # may raise CircuitOpenError
        try:
            result = await run()
        except Exception:
            registry.record_failure(job_type)
            raise
        registry.record_success(job_type)
    """

    def __init__(
        self,
        policies: Optional[dict[str, ResiliencePolicy]] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.policies = policies
        self.clock = clock
        self._circuits: dict[str, CircuitState] = {}

    def get_state(self, job_type: str) -> Optional[CircuitState]:
        """Circuit of a job type, or None if it never failed."""
        return self._circuits.get(job_type)

    def _get_or_create(self, job_type: str) -> CircuitState:
        circuit = self._circuits.get(job_type)
        if circuit is None:
            policy = policy_for(job_type, self.policies)
            circuit = CircuitState(
                job_type=job_type,
                threshold=policy.failure_threshold,
                cooldown_duration=timedelta(seconds=policy.cooldown_seconds),
                window=timedelta(seconds=policy.window_seconds),
                retryable_error_kinds=policy.retryable_error_kinds,
            )
            self._circuits[job_type] = circuit
        return circuit

    # =========================================================================
    # Call protocol
    # =========================================================================

    def before_call(self, job_type: str) -> None:
        """
        Admit or reject a call for a job type.

        Raises:
            CircuitOpenError: If the circuit is open, or half-open with its
                trial already in flight
        """
        circuit = self._circuits.get(job_type)
        if circuit is None or circuit.state == BreakerState.CLOSED:
            return

        if circuit.state == BreakerState.OPEN:
            if self.clock() < circuit.retry_at:
                raise CircuitOpenError(job_type, circuit.retry_at)
            circuit.state = BreakerState.HALF_OPEN
            circuit.trial_in_flight = False
            logger.info(f"Circuit for {job_type} half-open after cooldown")

        if circuit.trial_in_flight:
            raise CircuitOpenError(job_type, circuit.retry_at)
        circuit.trial_in_flight = True

    def release_trial(self, job_type: str) -> None:
        """Give back a half-open trial slot that was admitted but not used."""
        circuit = self._circuits.get(job_type)
        if circuit is not None and circuit.state == BreakerState.HALF_OPEN:
            circuit.trial_in_flight = False

    def record_success(self, job_type: str) -> None:
        circuit = self._circuits.get(job_type)
        if circuit is None:
            return

        if circuit.state == BreakerState.HALF_OPEN:
            logger.info(f"Circuit for {job_type} closed after successful trial")
            circuit.state = BreakerState.CLOSED
            circuit.failure_count = 0
            circuit.failure_times.clear()
            circuit.opened_at = None
            circuit.trial_in_flight = False

    def record_failure(self, job_type: str) -> None:
        circuit = self._get_or_create(job_type)
        now = self.clock()

        if circuit.state == BreakerState.HALF_OPEN:
            circuit.state = BreakerState.OPEN
            circuit.opened_at = now
            circuit.trial_in_flight = False
            logger.warning(f"Circuit for {job_type} re-opened after failed trial")
            return

        if circuit.state == BreakerState.OPEN:
            return

        circuit.failure_times.append(now)
        while circuit.failure_times and now - circuit.failure_times[0] > circuit.window:
            circuit.failure_times.popleft()
        circuit.failure_count = len(circuit.failure_times)

        if circuit.failure_count >= circuit.threshold:
            circuit.state = BreakerState.OPEN
            circuit.opened_at = now
            logger.warning(
                f"Circuit for {job_type} opened after {circuit.failure_count} "
                f"failures (cooldown {circuit.cooldown_duration.total_seconds():.0f}s)"
            )

    # =========================================================================
    # Introspection
    # =========================================================================

    def snapshot(self) -> dict[str, dict]:
        """Current state of every circuit, keyed by job type."""
        return {
            job_type: {
                "state": circuit.state.value,
                "failure_count": circuit.failure_count,
                "threshold": circuit.threshold,
                "opened_at": to_iso(circuit.opened_at),
                "retry_at": to_iso(circuit.retry_at) if circuit.state != BreakerState.CLOSED else None,
                "cooldown_seconds": circuit.cooldown_duration.total_seconds(),
            }
            for job_type, circuit in self._circuits.items()
        }

    def reset(self, job_type: Optional[str] = None) -> None:
        """Forget one circuit, or all of them."""
        if job_type is None:
            self._circuits.clear()
        else:
            self._circuits.pop(job_type, None)
