"""Circuit Breaker with exponential backoff and jitter.

Implements the circuit breaker pattern per provider:
  - CLOSED: normal operation, requests pass through
  - OPEN: too many failures, requests are rejected immediately
  - HALF_OPEN: testing recovery with a probe request

Backoff strategy:
  delay = min(base * 2^attempt + jitter, max_delay)
  jitter = random(0, base * 0.5)
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from enum import Enum

from app.gateway.types import LlmProvider, ProviderConfig

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class _CircuitStats:
    consecutive_failures: int = 0
    total_failures: int = 0
    total_successes: int = 0
    state: CircuitState = CircuitState.CLOSED
    opened_at: float = 0.0


FAILURE_THRESHOLD = 5  # Consecutive failures to open circuit
RECOVERY_TIMEOUT = 60.0  # Seconds before trying half-open


class CircuitBreaker:
    """Per-provider circuit breaker.

    Usage:
        if not cb.allow_request(provider):
            ...  # reject

        cb.record_success(provider)

        delay = cb.record_failure(provider, attempt=2, config=provider_config)
        if delay is None:
            ...  # retries exhausted
    """

    def __init__(self, failure_threshold: int = FAILURE_THRESHOLD, recovery_timeout: float = RECOVERY_TIMEOUT):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._circuits: dict[LlmProvider, _CircuitStats] = {}

    def _get_circuit(self, provider: LlmProvider) -> _CircuitStats:
        if provider not in self._circuits:
            self._circuits[provider] = _CircuitStats()
        return self._circuits[provider]

    def allow_request(self, provider: LlmProvider) -> bool:
        """True if the circuit is closed, or open long enough to probe."""
        circuit = self._get_circuit(provider)

        if circuit.state == CircuitState.OPEN:
            if time.monotonic() - circuit.opened_at >= self.recovery_timeout:
                circuit.state = CircuitState.HALF_OPEN
                logger.info("Circuit for %s transitioning to HALF_OPEN", provider.value)
                return True
            return False

        return True

    def record_success(self, provider: LlmProvider) -> None:
        circuit = self._get_circuit(provider)
        circuit.consecutive_failures = 0
        circuit.total_successes += 1

        if circuit.state != CircuitState.CLOSED:
            logger.info("Circuit for %s CLOSED (recovered)", provider.value)
            circuit.state = CircuitState.CLOSED

    def record_failure(self, provider: LlmProvider, attempt: int, config: ProviderConfig) -> float | None:
        """Record a failure and return the retry delay, or None once retries are exhausted.

        `attempt` is 0-based.
        """
        circuit = self._get_circuit(provider)
        circuit.consecutive_failures += 1
        circuit.total_failures += 1

        # A failed half-open probe reopens immediately
        if circuit.state == CircuitState.HALF_OPEN or (
            circuit.consecutive_failures >= self.failure_threshold and circuit.state != CircuitState.OPEN
        ):
            circuit.state = CircuitState.OPEN
            circuit.opened_at = time.monotonic()
            logger.warning(
                "Circuit for %s OPENED after %d consecutive failures",
                provider.value,
                circuit.consecutive_failures,
            )

        if attempt >= config.max_retries:
            return None

        return self.calculate_backoff(attempt, config.base_retry_delay, config.max_retry_delay)

    @staticmethod
    def calculate_backoff(attempt: int, base_delay: float = 1.0, max_delay: float = 60.0) -> float:
        exponential = base_delay * (2**attempt)
        jitter = random.uniform(0, base_delay * 0.5)
        return min(exponential + jitter, max_delay)

    def get_circuit_state(self, provider: LlmProvider) -> dict:
        circuit = self._get_circuit(provider)
        return {
            "provider": provider.value,
            "state": circuit.state.value,
            "consecutive_failures": circuit.consecutive_failures,
            "total_failures": circuit.total_failures,
            "total_successes": circuit.total_successes,
        }

    def get_all_states(self) -> list[dict]:
        return [self.get_circuit_state(p) for p in LlmProvider]
