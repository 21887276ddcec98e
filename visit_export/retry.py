from __future__ import annotations

import logging
import time
from dataclasses import dataclass

import requests

from .errors import TransientError

logger = logging.getLogger(__name__)

# 546 is the edge runtime's "worker limit" status.
RETRYABLE_STATUSES = frozenset({502, 503, 504, 546})
RETRYABLE_EXCEPTIONS = (TransientError, requests.Timeout, requests.ConnectionError)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 0.4
    factor: float = 2.0
    max_delay: float = 5.0

    def delay_for(self, attempt: int) -> float:
        return min(self.max_delay, self.base_delay * (self.factor ** (attempt - 1)))

    @classmethod
    def from_config(cls, config) -> "RetryPolicy":
        from .config import config_value

        return cls(
            max_attempts=int(config_value(config, "RETRY_MAX_ATTEMPTS")),
            base_delay=float(config_value(config, "RETRY_BASE_DELAY_SECONDS")),
        )


NO_RETRY = RetryPolicy(max_attempts=1)


def is_retryable_status(status) -> bool:
    return status in RETRYABLE_STATUSES


def with_retry(operation, policy=None, label="operation", sleep=time.sleep):
    policy = policy or RetryPolicy()
    attempts = max(1, int(policy.max_attempts))
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except RETRYABLE_EXCEPTIONS as exc:
            if attempt >= attempts:
                raise
            backoff = policy.delay_for(attempt)
            logger.warning(
                "retrying %s (attempt %d/%d, backoff %.2fs): %s",
                label, attempt, attempts, backoff, exc,
            )
            sleep(backoff)
