"""
Retry and circuit-breaker helpers for outbound HTTP clients.

- retry_with_backoff: exponential backoff that honours a server-provided
  ``retry_after`` (seconds) on the raised exception.
- CircuitBreaker: stops a long WooCommerce sync from hammering a store
  that keeps failing.
"""
import asyncio
import random
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from core.observability import get_logger

logger = get_logger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_attempts: int = 3
    base_delay: float = 0.5  # seconds
    max_delay: float = 30.0  # seconds
    exponential_base: float = 2.0
    jitter: float = 0.0  # random jitter factor


@dataclass
class CircuitBreakerConfig:
    failure_threshold: int = 5
    recovery_timeout: float = 60.0  # seconds before a half-open trial call


class CircuitOpenError(Exception):
    """Raised when the circuit breaker rejects a call."""


@dataclass
class CircuitBreaker:
    """
    CLOSED passes calls through, OPEN rejects them until recovery_timeout
    elapses, HALF_OPEN lets a single trial call decide which way to go.
    """
    name: str = "default"
    config: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    last_failure_time: float = 0

    async def can_execute(self) -> bool:
        if self.state == CircuitState.CLOSED:
            return True
        if self.state == CircuitState.OPEN:
            if time.monotonic() - self.last_failure_time >= self.config.recovery_timeout:
                logger.info(f"Circuit {self.name} half-open, probing")
                self.state = CircuitState.HALF_OPEN
                return True
            return False
        # HALF_OPEN: a trial call is already in flight
        return False

    async def record_success(self) -> None:
        if self.state == CircuitState.HALF_OPEN:
            logger.info(f"Circuit {self.name} closed after successful trial call")
        self.state = CircuitState.CLOSED
        self.failure_count = 0

    async def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = time.monotonic()
        if self.state == CircuitState.HALF_OPEN:
            logger.warning(f"Circuit {self.name} re-opened after failed trial call")
            self.state = CircuitState.OPEN
        elif self.failure_count >= self.config.failure_threshold:
            if self.state != CircuitState.OPEN:
                logger.warning(f"Circuit {self.name} opened after {self.failure_count} failures")
            self.state = CircuitState.OPEN

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN


def compute_delay(config: RetryConfig, attempt: int, retry_after: Optional[float] = None) -> float:
    """Delay before the next attempt (attempt is 1-based)."""
    if retry_after is not None and retry_after >= 0:
        return min(float(retry_after), config.max_delay)
    delay = min(
        config.base_delay * (config.exponential_base ** (attempt - 1)),
        config.max_delay,
    )
    if config.jitter:
        delay += delay * config.jitter * random.random()
    return delay


async def retry_with_backoff(
    func: Callable[..., Any],
    *args,
    config: Optional[RetryConfig] = None,
    retryable_exceptions: tuple = (Exception,),
    **kwargs
) -> Any:
    """
    Execute an async function, retrying on ``retryable_exceptions``.

    Raises:
        The last exception once ``config.max_attempts`` is exhausted
    """
    config = config or RetryConfig()

    for attempt in range(1, config.max_attempts + 1):
        try:
            return await func(*args, **kwargs)
        except retryable_exceptions as e:
            if attempt == config.max_attempts:
                logger.error(
                    f"All {config.max_attempts} attempts failed",
                    extra={"error": str(e)}
                )
                raise

            delay = compute_delay(config, attempt, getattr(e, "retry_after", None))
            logger.warning(
                f"Attempt {attempt} failed, retrying in {delay:.2f}s",
                extra={"attempt": attempt, "delay": round(delay, 3), "error": str(e)}
            )
            await asyncio.sleep(delay)
