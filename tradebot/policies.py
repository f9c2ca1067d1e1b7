"""
Retry and timing policies.

Defines the retry budgets and backoff delays used by the offer
resolution engine, the confirmation handler and the session coordinator.
"""

from dataclasses import dataclass, field

from .types import RetryCategory


def _default_delays() -> dict[RetryCategory, float]:
    return {
        RetryCategory.EXCHANGE_DETAILS: 5.0,
        RetryCategory.ROLLBACK_FAILED: 15.0,
        RetryCategory.ESCROW_DECLINE: 5.0,
        RetryCategory.NOT_COMPLETE: 10.0,
        RetryCategory.REFRESH: 15.0,
        RetryCategory.OFFER_FETCH: 5.0,
    }


@dataclass
class RetryPolicy:
    """
    Configurable retry budgets and delays.

    Every ambiguous condition carries its own counter. Exceeding
    `max_retries` for one category is terminal for that offer.
    """
    # Retries allowed per category before the offer is reported as stalled
    max_retries: int = 5

    # Backoff per category (seconds)
    delays: dict[RetryCategory, float] = field(default_factory=_default_delays)

    # Added to the cancel time before the deadline timer re-checks an offer
    deadline_grace_s: float = 5.0

    # Deadline used to re-check an offer after an unexpected error
    error_recheck_s: float = 30.0

    # Transient confirmation failures before the offer is declined
    confirmation_max_failures: int = 5

    # Login retry loop: N attempts spaced by attempt delay, then a longer pause
    login_attempts_per_cycle: int = 3
    login_retry_delay_s: float = 30.0
    login_cycle_pause_s: float = 60.0

    # Inventory fetch retries (HTTP collaborator)
    inventory_fetch_retries: int = 5

    def delay_for(self, category: RetryCategory) -> float:
        """Backoff delay for a retry category."""
        return self.delays.get(category, 5.0)

    @classmethod
    def immediate(cls) -> "RetryPolicy":
        """Same budgets with every delay set to zero."""
        return cls(
            delays={category: 0.0 for category in RetryCategory},
            deadline_grace_s=0.0,
            login_retry_delay_s=0.0,
            login_cycle_pause_s=0.0,
        )

    def validate(self) -> list[str]:
        """Validate policy values, return list of errors."""
        errors = []

        if self.max_retries < 0:
            errors.append("max_retries must be non-negative")

        if any(delay < 0 for delay in self.delays.values()):
            errors.append("retry delays must be non-negative")

        if self.confirmation_max_failures < 1:
            errors.append("confirmation_max_failures must be at least 1")

        if self.login_attempts_per_cycle < 1:
            errors.append("login_attempts_per_cycle must be at least 1")

        return errors
