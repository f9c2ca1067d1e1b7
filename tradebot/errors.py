"""
Exceptions and error classification for the trade bot.

Provides stable error classification independent of raw platform messages.
"""

from typing import Iterable, Optional


class TradeBotError(Exception):
    """Base exception for trade bot errors."""
    pass


class ConfigurationError(TradeBotError):
    """Raised when configuration is invalid."""
    pass


class TransportError(TradeBotError):
    """Raised when a call to the platform fails."""
    pass


class OfferNotFoundError(TransportError):
    """Raised when the platform does not know an offer id."""
    pass


class InventoryFetchError(TransportError):
    """Raised when an inventory cannot be fetched."""
    pass


class ItemsUnavailableError(TradeBotError):
    """Raised when items to give are not owned or already reserved."""

    def __init__(self, unavailable: Iterable):
        self.unavailable = list(unavailable)
        super().__init__(
            f"{len(self.unavailable)} items not available in tracked inventory"
        )


class ConfirmationError(TradeBotError):
    """
    Raised when responding to a confirmation fails.

    `transient` is True when the platform could not act on the
    confirmation right now and a later polling cycle may succeed.
    """

    def __init__(self, message: str, transient: Optional[bool] = None):
        super().__init__(message)
        self.transient = (
            classify_confirmation_error(message) if transient is None else transient
        )


class AuthError(TradeBotError):
    """Raised when logging in fails."""
    pass


class MobileConfirmationRequiredError(AuthError):
    """Raised when login needs a manual mobile step; retrying alone cannot fix it."""
    pass


class RetryLimitExceededError(TradeBotError):
    """Raised when an offer exhausts the retry budget of one category."""

    def __init__(self, offer_id: str, category, attempts: int):
        self.offer_id = offer_id
        self.category = category
        self.attempts = attempts
        super().__init__(
            f"Offer {offer_id} still unresolved after {attempts} "
            f"'{category.value}' retries"
        )


class UnknownOfferError(TradeBotError):
    """Raised when an offer id is not tracked by this account."""

    def __init__(self, offer_id: str):
        self.offer_id = offer_id
        super().__init__(f"Unknown offer {offer_id}")


class UnknownAccountError(TradeBotError):
    """Raised when an account id is not managed."""

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Unknown account {account_id}")


def classify_confirmation_error(error_msg: Optional[str] = None) -> bool:
    """
    Map a raw confirmation failure to the transient flag.

    Args:
        error_msg: Raw error message from the platform

    Returns:
        True if a later attempt may succeed
    """
    msg = (error_msg or "").lower()
    return "could not act on confirmation" in msg


def is_mobile_confirmation_error(err: BaseException) -> bool:
    """Check if a login failure asks for the mobile authenticator."""
    if isinstance(err, MobileConfirmationRequiredError):
        return True
    return "steamguardmobile" in str(err).lower()
