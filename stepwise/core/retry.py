from __future__ import annotations
from dataclasses import dataclass
from ..config import Settings
from .types import RetryContext

@dataclass(frozen=True)
class RetryStrategy:
    """
    Backoff exponentiel borné, sans état:
        delay(n) = min(max_delay, base_delay * multiplier ** (n - 1))
    Tout l'état mutable vit dans RetryContext.
    """
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryStrategy":
        a = settings.agent
        return cls(base_delay=a.retry_base_delay_sec, multiplier=a.retry_multiplier, max_delay=a.retry_max_delay_sec)

    def delay(self, attempt: int) -> float:
        if attempt <= 1:
            return min(self.max_delay, self.base_delay)
        return min(self.max_delay, self.base_delay * self.multiplier ** (attempt - 1))

    @staticmethod
    def should_retry(context: RetryContext) -> bool:
        return context.attempt_number < context.max_attempts
