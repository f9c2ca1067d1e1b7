"""
Mobile confirmation handler.

Approves confirmations of trade offers and rejects every other kind.
Transient "could not act" failures are left for the next polling cycle of
the confirmation checker; after too many of them the offer is declined.
"""

import logging
from typing import Awaitable, Callable, Optional

from .collaborators import CodeGenerator, SessionTransport
from .errors import ConfirmationError, TradeBotError
from .events import AccountEvents
from .policies import RetryPolicy
from .types import Confirmation, ConfirmationType, TradePhase

logger = logging.getLogger(__name__)

OfferCanceller = Callable[[str], Awaitable[None]]


class ConfirmationHandler:
    """Responds to new-confirmation events for one account."""

    def __init__(
        self,
        account_id: str,
        session: SessionTransport,
        codes: CodeGenerator,
        identity_secret: str,
        cancel_offer: OfferCanceller,
        events: Optional[AccountEvents] = None,
        policy: Optional[RetryPolicy] = None,
    ):
        """
        Initialize the handler.

        Args:
            account_id: Owning account
            session: Session collaborator that acts on confirmations
            codes: Code-generation collaborator for time proofs
            identity_secret: Secret used to sign confirmation keys
            cancel_offer: Declines an offer and releases its items
            events: Outward event emitter
            policy: Retry budgets
        """
        self.account_id = account_id
        self._session = session
        self._codes = codes
        self._identity_secret = identity_secret
        self._cancel_offer = cancel_offer
        self._events = events or AccountEvents(account_id)
        self._policy = policy or RetryPolicy()

        # confirmation id -> transient failures so far
        self._failures: dict[str, int] = {}

    @property
    def failures(self) -> dict[str, int]:
        return dict(self._failures)

    async def respond(self, confirmation: Confirmation, approve: bool) -> None:
        """Approve or reject with a fresh time proof. Raises TradeBotError."""
        tag = "allow" if approve else "cancel"
        timestamp = self._codes.current_time()
        key = self._codes.confirmation_key(self._identity_secret, timestamp, tag)
        await self._session.respond_to_confirmation(confirmation, approve, timestamp, key)

    async def on_new_confirmation(self, confirmation: Confirmation) -> None:
        """Handle a confirmation reported by the confirmation checker."""
        if confirmation.type is not ConfirmationType.TRADE:
            self._events.warning(
                f"A non-trade confirmation was created ({confirmation.type.name}); rejecting it"
            )
            try:
                await self.respond(confirmation, False)
            except TradeBotError as e:
                self._events.err(f"Failed to cancel confirmation {confirmation.id}", e)
            return

        offer_id = confirmation.creator
        try:
            await self.respond(confirmation, True)
        except TradeBotError as e:
            await self._on_failure(confirmation, e)
            return

        self._failures.pop(confirmation.id, None)
        self._events.info(f"Accepted confirmation {confirmation.id}")
        self._events.trade(offer_id, TradePhase.CONFIRMED)

    async def _on_failure(self, confirmation: Confirmation, error: TradeBotError) -> None:
        if not (isinstance(error, ConfirmationError) and error.transient):
            # The checker will not report a vanished confirmation again
            self._failures.pop(confirmation.id, None)
            self._events.err(f"Error accepting confirmation {confirmation.id}", error)
            return

        failures = self._failures.get(confirmation.id, 0) + 1
        self._failures[confirmation.id] = failures

        if failures < self._policy.confirmation_max_failures:
            self._events.warning(
                f"Could not act on confirmation {confirmation.id} "
                f"({failures}/{self._policy.confirmation_max_failures}); retrying next poll"
            )
            self._session.forget_confirmation(confirmation.id)
            return

        self._failures.pop(confirmation.id, None)
        offer_id = confirmation.creator
        self._events.trade(offer_id, TradePhase.CONFIRM_FAILED)
        self._events.info(
            f"Retried too many times but failed to confirm offer {offer_id}. Cancelling offer."
        )
        await self._cancel_offer(offer_id)
