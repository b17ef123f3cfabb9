"""
Error Handling and Resilience Module

Error classification, retry with exponential backoff, and a circuit breaker
for the two places Chorus talks to the outside world: the message bus and the
text-generation backend.

Error taxonomy:
- TRANSPORT: bus read/connect failures, retried with backoff by consumers
- DECODE: malformed payloads, the single payload is dropped
- GENERATION: text-generation failures, treated as "agent chooses not to reply"
- INVARIANT: programming invariants (e.g. missing conversation id), rejected
  at the boundary
"""
import asyncio
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import ValidationError

from chorus.exceptions import (
    CircuitBreakerOpenError,
    GenerationError,
    InvalidMessageError,
    MessageDecodeError,
    TransportError,
)


logger = logging.getLogger(__name__)


class ErrorType(Enum):
    """Classification of error types."""
    TRANSPORT = "transport"
    DECODE = "decode"
    GENERATION = "generation"
    INVARIANT = "invariant"
    UNKNOWN = "unknown"


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Circuit is open, reject requests
    HALF_OPEN = "half_open"  # Testing if service is recovered


def classify_error(error: BaseException) -> ErrorType:
    """Map an exception onto the error taxonomy."""
    if isinstance(error, (TransportError, ConnectionError, OSError, asyncio.TimeoutError)):
        return ErrorType.TRANSPORT
    elif isinstance(error, (MessageDecodeError, ValidationError, UnicodeDecodeError)):
        return ErrorType.DECODE
    elif isinstance(error, (GenerationError, CircuitBreakerOpenError)):
        return ErrorType.GENERATION
    elif isinstance(error, InvalidMessageError):
        return ErrorType.INVARIANT
    else:
        return ErrorType.UNKNOWN


@dataclass
class RetryConfig:
    """Configuration for retry mechanisms."""
    max_attempts: int = 5  # 0 means retry forever
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = True

    def get_delay(self, attempt: int) -> float:
        """Delay before retry number `attempt` (1-based), exponential with jitter."""
        if attempt <= 0:
            return 0.0

        delay = self.base_delay * (self.exponential_base ** (attempt - 1))
        delay = min(delay, self.max_delay)

        # Add jitter to prevent thundering herd
        if self.jitter:
            delay += random.uniform(0.1, 0.3) * delay

        return delay


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""
    failure_threshold: int = 5
    recovery_timeout: float = 60.0
    success_threshold: int = 2  # For half-open state


@dataclass
class ErrorMetrics:
    """Error tracking metrics."""
    total_errors: int = 0
    errors_by_type: Dict[ErrorType, int] = field(default_factory=dict)
    retry_attempts: int = 0
    dropped_payloads: int = 0
    last_error_time: Optional[datetime] = None
    last_error: Optional[str] = None
    error_rate_window: List[datetime] = field(default_factory=list)

    def record(self, error: BaseException, error_type: Optional[ErrorType] = None) -> ErrorType:
        """Count an error and return its classification."""
        error_type = error_type or classify_error(error)

        self.total_errors += 1
        self.last_error_time = datetime.now()
        self.last_error = f"{type(error).__name__}: {error}"
        self.errors_by_type[error_type] = self.errors_by_type.get(error_type, 0) + 1

        # Keep last 100 errors for rate calculation
        self.error_rate_window.append(self.last_error_time)
        if len(self.error_rate_window) > 100:
            self.error_rate_window.pop(0)

        return error_type

    def to_dict(self) -> Dict[str, Any]:
        now = datetime.now()
        recent_errors = [t for t in self.error_rate_window if (now - t).total_seconds() <= 300]
        return {
            'total_errors': self.total_errors,
            'retry_attempts': self.retry_attempts,
            'dropped_payloads': self.dropped_payloads,
            'error_rate_per_minute': len(recent_errors) / 5.0,
            'errors_by_type': {k.value: v for k, v in self.errors_by_type.items()},
            'last_error_time': self.last_error_time.isoformat() if self.last_error_time else None,
            'last_error': self.last_error
        }


class CircuitBreaker:
    """
    Circuit breaker for calls to a flaky dependency.

    Stops calling a failing service for `recovery_timeout` seconds after
    `failure_threshold` failures, then lets trial calls through (half-open)
    and closes again after `success_threshold` successes.
    """

    def __init__(self, config: Optional[CircuitBreakerConfig] = None, name: str = "circuit"):
        self.config = config or CircuitBreakerConfig()
        self.name = name
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[datetime] = None
        self.state_changed_time = datetime.now()

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Execute a coroutine function through the circuit breaker."""
        if self.state == CircuitState.OPEN:
            if self._should_attempt_reset():
                self._transition_to_half_open()
            else:
                raise CircuitBreakerOpenError(f"Circuit breaker '{self.name}' is open")

        try:
            result = await func(*args, **kwargs)
        except Exception:
            self._on_failure()
            raise

        self._on_success()
        return result

    def _should_attempt_reset(self) -> bool:
        if self.last_failure_time is None:
            return True

        time_since_failure = datetime.now() - self.last_failure_time
        return time_since_failure.total_seconds() >= self.config.recovery_timeout

    def _transition_to_half_open(self):
        self.state = CircuitState.HALF_OPEN
        self.success_count = 0
        self.state_changed_time = datetime.now()
        logger.info(f"🔄 Circuit breaker '{self.name}' transitioned to HALF_OPEN")

    def _on_success(self):
        if self.state == CircuitState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= self.config.success_threshold:
                self._transition_to_closed()
        elif self.state == CircuitState.CLOSED:
            self.failure_count = max(0, self.failure_count - 1)

    def _on_failure(self):
        self.failure_count += 1
        self.last_failure_time = datetime.now()

        if self.state == CircuitState.CLOSED and self.failure_count >= self.config.failure_threshold:
            self._transition_to_open()
        elif self.state == CircuitState.HALF_OPEN:
            self._transition_to_open()

    def _transition_to_open(self):
        self.state = CircuitState.OPEN
        self.state_changed_time = datetime.now()
        logger.warning(f"⚠️ Circuit breaker '{self.name}' OPENED after {self.failure_count} failures")

    def _transition_to_closed(self):
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.state_changed_time = datetime.now()
        logger.info(f"✅ Circuit breaker '{self.name}' CLOSED - service recovered")

    def get_stats(self) -> Dict[str, Any]:
        return {
            'state': self.state.value,
            'failure_count': self.failure_count,
            'success_count': self.success_count,
            'last_failure_time': self.last_failure_time.isoformat() if self.last_failure_time else None,
            'state_changed_time': self.state_changed_time.isoformat(),
            'time_in_current_state': (datetime.now() - self.state_changed_time).total_seconds()
        }


async def retry_with_backoff(
    func: Callable[..., Awaitable[Any]],
    *args,
    retry_config: Optional[RetryConfig] = None,
    retryable_errors: tuple = (ErrorType.TRANSPORT,),
    metrics: Optional[ErrorMetrics] = None,
    sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    **kwargs
) -> Any:
    """
    Await `func` retrying retryable failures with exponential backoff.

    `sleep` waits out each backoff delay (asyncio.sleep by default).

    Raises:
        The last exception once attempts are exhausted or when the error is
        not retryable
    """
    retry_config = retry_config or RetryConfig()
    attempt = 0

    while True:
        attempt += 1
        try:
            result = await func(*args, **kwargs)
            if attempt > 1:
                logger.info(f"✅ Operation succeeded after {attempt} attempts")
            return result

        except asyncio.CancelledError:
            raise

        except Exception as e:
            error_type = classify_error(e)
            if metrics is not None:
                metrics.record(e, error_type)

            if error_type not in retryable_errors:
                raise

            if retry_config.max_attempts and attempt >= retry_config.max_attempts:
                logger.error(f"❌ Max retry attempts ({retry_config.max_attempts}) exceeded: {e}")
                raise

            if metrics is not None:
                metrics.retry_attempts += 1

            delay = retry_config.get_delay(attempt)
            logger.warning(f"🔄 {error_type.value} error: {e}. Retrying in {delay:.2f}s (attempt {attempt + 1})")
            await (sleep or asyncio.sleep)(delay)
