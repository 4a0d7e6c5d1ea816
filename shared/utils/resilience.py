"""
shared/utils/resilience.py
Circuit breakers and retry policies for downstream services (Stripe, Gemini).
"""

import asyncio
import logging
from typing import Any, Callable

from pybreaker import CircuitBreaker, CircuitBreakerListener
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)


class _LoggingListener(CircuitBreakerListener):
    def state_change(self, cb, old_state, new_state):
        logger.warning(f"Circuit breaker '{cb.name}' {old_state.name} -> {new_state.name}")


class CircuitBreakerManager:
    """Manages circuit breakers for each downstream service."""

    def __init__(self):
        self.breakers = {}

    def get_breaker(self, service_name: str) -> CircuitBreaker:
        """Get or create a circuit breaker for a service."""
        if service_name not in self.breakers:
            self.breakers[service_name] = CircuitBreaker(
                fail_max=5,  # Open after 5 failures
                reset_timeout=60,  # Try again after 60 seconds
                listeners=[_LoggingListener()],
                name=service_name,
            )
        return self.breakers[service_name]


circuit_breaker_manager = CircuitBreakerManager()


async def call_with_resilience(
    service_name: str,
    func: Callable[..., Any],
    *args,
    retry_on: tuple = (ConnectionError,),
    attempts: int = 3,
    **kwargs,
) -> Any:
    """
    Run a blocking SDK call in a worker thread behind the service's circuit
    breaker, retrying transient errors with exponential backoff.
    CircuitBreakerError propagates once the breaker is open.
    """
    breaker = circuit_breaker_manager.get_breaker(service_name)

    async for attempt in AsyncRetrying(
        retry=retry_if_exception_type(retry_on),
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=0.5, max=8),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    ):
        with attempt:
            return await asyncio.to_thread(breaker.call, func, *args, **kwargs)
