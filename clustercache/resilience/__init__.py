"""
clustercache - Resilience Module

- Exponential backoff retry logic (discovery)
- Per-node circuit breakers driving node health
"""

from .circuit_breaker import CircuitBreakerManager
from .retry import RetryConfig, exponential_backoff, with_retry

__all__ = [
    # Circuit breaker
    "CircuitBreakerManager",
    # Retry logic
    "RetryConfig",
    "exponential_backoff",
    "with_retry",
]
