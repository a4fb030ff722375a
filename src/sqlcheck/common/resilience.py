"""
Circuit breakers for connection establishment.

Each distinct target (dialect, host, port, database) gets its own
`pybreaker.CircuitBreaker`, so a database that keeps refusing connections
fails fast without affecting validations aimed elsewhere. Only connects go
through a breaker; a rejected statement is a validation outcome, not an
infrastructure fault.
"""
from typing import Dict, Optional

import pybreaker

from sqlcheck.common.logger import get_logger
from sqlcheck.common.settings import settings

logger = get_logger("resilience")


class TargetBreakerListener(pybreaker.CircuitBreakerListener):
    """Logs connect failures and breaker transitions for one target."""

    def state_change(self, cb, old_state, new_state):
        if new_state.name == pybreaker.STATE_OPEN:
            logger.warning(
                f"Connections to {cb.name} suspended for {cb.reset_timeout}s "
                f"after {cb.fail_counter} consecutive failures"
            )
        else:
            logger.info(f"Connection breaker for {cb.name}: {old_state.name} -> {new_state.name}")

    def failure(self, cb, exc):
        logger.error(
            f"Connect to {cb.name} failed ({cb.fail_counter}/{cb.fail_max}): {type(exc).__name__}: {exc}"
        )


def create_breaker(name: str, fail_max: int, reset_timeout: int) -> pybreaker.CircuitBreaker:
    return pybreaker.CircuitBreaker(
        fail_max=fail_max,
        reset_timeout=reset_timeout,
        name=name,
        listeners=[TargetBreakerListener()],
    )


class BreakerRegistry:
    """Lazily creates one breaker per connection target."""

    def __init__(self, fail_max: Optional[int] = None, reset_timeout: Optional[int] = None):
        self.fail_max = fail_max or settings.breaker_fail_max
        self.reset_timeout = reset_timeout or settings.breaker_reset_timeout_sec
        self._breakers: Dict[str, pybreaker.CircuitBreaker] = {}

    def get(self, key: str) -> pybreaker.CircuitBreaker:
        breaker = self._breakers.get(key)
        if breaker is None:
            breaker = create_breaker(key, fail_max=self.fail_max, reset_timeout=self.reset_timeout)
            self._breakers[key] = breaker
        return breaker

    def reset(self) -> None:
        """Closes every breaker, forgetting recorded failures."""
        for breaker in self._breakers.values():
            breaker.close()
