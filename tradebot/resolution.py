"""
Offer resolution engine.

Drives every offer sent by an account to a terminal, locally consistent
outcome: the exchange is reflected in the inventory ledger, or the offer
is cancelled and its reservations released.

KEY DESIGN PRINCIPLES:

1. ACCEPTED is not terminal
   - The platform reports ACCEPTED before items have necessarily moved
   - Accepted offers are classified by their exchange status

2. One resolution pass per offer id
   - Event, timer and confirmation triggers all funnel into _resolve()
   - A trigger arriving while a pass is running is coalesced into a
     single re-check after it, never run in parallel

3. Bounded retries per category
   - Each ambiguous condition has its own counter in the offer's RetryState
   - After the budget is spent the offer is moved to `stalled`, reported,
     and its items stay reserved

4. Forward progress without events
   - Every outstanding offer has a deadline timer (cancel time + grace)
   - A still-pending offer at its deadline is declined
"""

import asyncio
import logging
from enum import Enum
from time import time
from typing import Awaitable, Callable, Iterable, Optional

from .collaborators import TradeOfferClient
from .errors import (
    ItemsUnavailableError,
    RetryLimitExceededError,
    TransportError,
    UnknownOfferError,
)
from .events import AccountEvents
from .ledger import InventoryLedger
from .policies import RetryPolicy
from .scheduler import DelayedTaskScheduler
from .types import (
    DECLINE_OFFER_STATES,
    PENDING_OFFER_STATES,
    ROLLBACK_STATUSES,
    ExchangeDetails,
    ExchangeStatus,
    ItemKey,
    ItemRef,
    OfferState,
    OutstandingOffer,
    RetryCategory,
    TradeOffer,
    TradePhase,
    item_keys,
)

logger = logging.getLogger(__name__)


class Trigger(Enum):
    """What started a resolution pass."""
    EVENT = "event"
    DEADLINE = "deadline"
    RECHECK = "recheck"
    ABANDON = "abandon"
    DISCOVERY = "discovery"


# Triggers under which a still-pending offer is declined
FORCE_CANCEL_TRIGGERS = frozenset({Trigger.DEADLINE, Trigger.ABANDON})


class OfferResolutionEngine:
    """
    Resolution state machine for the offers of one account.

    All ledger mutations go through the InventoryLedger; the engine owns the
    outstanding and stalled offer sets.
    """

    def __init__(
        self,
        account_id: str,
        ledger: InventoryLedger,
        offers: TradeOfferClient,
        events: Optional[AccountEvents] = None,
        policy: Optional[RetryPolicy] = None,
        cancel_time_s: float = 300.0,
        scheduler: Optional[DelayedTaskScheduler] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time,
    ):
        """
        Initialize the engine.

        Args:
            account_id: Owning account
            ledger: The account's inventory ledger
            offers: Trade-offer collaborator
            events: Outward event emitter
            policy: Retry budgets and delays
            cancel_time_s: Seconds before an unresolved offer is force-cancelled
            scheduler: Deadline timers (one is created if omitted)
            sleep: Backoff wait
            clock: Wall clock in seconds
        """
        self.account_id = account_id
        self._ledger = ledger
        self._offers = offers
        self._events = events or AccountEvents(account_id)
        self._policy = policy or RetryPolicy()
        self.cancel_time_s = cancel_time_s
        self._scheduler = scheduler or DelayedTaskScheduler(f"deadlines-{account_id}")
        self._sleep = sleep
        self._clock = clock

        self._outstanding: dict[str, OutstandingOffer] = {}
        self._stalled: dict[str, OutstandingOffer] = {}
        # Reserved for an offer still being sent
        self._sending: set[ItemKey] = set()

        # Per-offer dedup of resolution passes
        self._in_flight: set[str] = set()
        self._recheck: dict[str, Trigger] = {}

    # ============== State ==============

    @property
    def outstanding(self) -> dict[str, OutstandingOffer]:
        """Offers that have not reached a terminal outcome."""
        return dict(self._outstanding)

    @property
    def stalled(self) -> dict[str, OutstandingOffer]:
        """Offers whose retry budget ran out; their items stay reserved."""
        return dict(self._stalled)

    def is_outstanding(self, offer_id: str) -> bool:
        return offer_id in self._outstanding

    def reserved_keys(self) -> set[ItemKey]:
        """Items that must stay reserved: those of offers being sent, outstanding or stalled."""
        keys: set[ItemKey] = set(self._sending)
        for offer in (*self._outstanding.values(), *self._stalled.values()):
            keys.update(offer.items_to_give)
        return keys

    def deadline_pending(self, offer_id: str) -> bool:
        return self._scheduler.pending(offer_id)

    # ============== Sending and Tracking ==============

    async def send_trade(
        self,
        partner_id: str,
        items_to_give: Iterable[ItemRef],
        items_to_receive: Iterable,
        token: Optional[str] = None,
        message: str = "",
    ) -> str:
        """
        Reserve items and send an offer.

        Returns:
            The platform offer id

        Raises:
            ItemsUnavailableError: some items are not owned or already reserved
            TransportError: the offer could not be sent; reservations are released
        """
        keys = item_keys(items_to_give)
        unavailable = await self._ledger.try_reserve(keys)
        if unavailable:
            self._events.err(
                f"{len(unavailable)} items not available in inventory. Trade not sending",
                [str(key) for key in unavailable],
            )
            raise ItemsUnavailableError(unavailable)

        self._sending.update(keys)
        try:
            offer = self._offers.create_offer(partner_id, token)
            offer.message = message
            for key in keys:
                offer.add_my_item(self._ledger.get(key).copy())
            for item in items_to_receive:
                offer.add_their_item(item)
            offer_id = await self._offers.send(offer)
        except Exception as e:
            self._sending.difference_update(keys)
            await self._ledger.release(keys)
            self._events.err(f"Error sending offer to {partner_id}", e)
            if isinstance(e, TransportError):
                raise
            raise TransportError(f"Error sending offer: {e}") from e

        offer.id = offer_id
        self.track(offer)
        self._sending.difference_update(keys)
        self._events.trade(offer_id, TradePhase.SENT)
        return offer_id

    def track(self, offer: TradeOffer) -> OutstandingOffer:
        """
        Start tracking a sent offer and arm its deadline.

        The offer's items must already be reserved.
        """
        existing = self._outstanding.get(offer.id)
        if existing is not None:
            return existing

        outstanding = OutstandingOffer(
            offer_id=offer.id,
            items_to_give=item_keys(offer.items_to_give),
            created_at=offer.created_at,
            last_state=offer.state,
            partner_id=offer.partner_id,
        )
        self._outstanding[offer.id] = outstanding
        self._arm_deadline(outstanding)
        return outstanding

    async def adopt(self, offer: TradeOffer) -> None:
        """Track an offer found open at startup and resolve it if it moved on."""
        if offer.id in self._outstanding or offer.id in self._stalled:
            return

        reserved = await self._ledger.reserve(offer.items_to_give)
        self.track(offer)
        self._events.info(
            f"Tracking open offer {offer.id} ({offer.state.name}), "
            f"{len(reserved)} items reserved"
        )

        if offer.state not in PENDING_OFFER_STATES:
            await self._resolve(offer.id, offer=offer, trigger=Trigger.DISCOVERY)

    async def discover_open_offers(self) -> int:
        """
        Adopt every active sent offer known to the platform.

        Returns:
            Number of offers adopted
        """
        try:
            offers = await self._offers.get_active_sent_offers()
        except TransportError as e:
            self._events.err("Error listing open offers", e)
            return 0

        for offer in offers:
            await self.adopt(offer)
        return len(offers)

    # ============== Triggers ==============

    async def on_offer_changed(
        self,
        offer: TradeOffer,
        previous_state: Optional[OfferState] = None,
    ) -> None:
        """Handle a state-change event from the offer polling loop."""
        previous = previous_state.name if previous_state is not None else "unknown"
        self._events.info(
            f"An offer has changed state from '{previous}' -> '{offer.state.name}'"
        )

        if offer.id not in self._outstanding:
            if offer.id in self._stalled:
                self._events.warning(f"Offer {offer.id} is stalled; ignoring state change")
            else:
                # Created manually, or lost over a restart
                self._events.warning(f"Unknown offer {offer.id}")
            return

        await self._resolve(offer.id, offer=offer, trigger=Trigger.EVENT)

    async def check_offer(self, offer_id: str) -> None:
        """Re-check an outstanding offer against the platform."""
        if offer_id not in self._outstanding:
            self._events.err(f"Cannot resolve offer {offer_id}", UnknownOfferError(offer_id))
            return
        await self._resolve(offer_id, trigger=Trigger.RECHECK)

    async def cancel_offer(self, offer_id: str) -> None:
        """Decline an offer whose confirmation was abandoned and release its items."""
        await self._resolve(offer_id, trigger=Trigger.ABANDON)

    async def _on_deadline(self, offer_id: str) -> None:
        if offer_id not in self._outstanding:
            return
        await self._resolve(offer_id, trigger=Trigger.DEADLINE)

    def _arm_deadline(self, outstanding: OutstandingOffer, minimum_s: float = 0.0) -> None:
        offer_id = outstanding.offer_id
        if self._scheduler.pending(offer_id):
            return

        deadline = outstanding.created_at + self.cancel_time_s + self._policy.deadline_grace_s
        delay = max(deadline - self._clock(), minimum_s)
        self._scheduler.schedule(offer_id, delay, lambda: self._on_deadline(offer_id))

    # ============== Resolution ==============

    async def _resolve(
        self,
        offer_id: str,
        offer: Optional[TradeOffer] = None,
        trigger: Trigger = Trigger.RECHECK,
    ) -> None:
        if offer_id in self._in_flight:
            queued = self._recheck.get(offer_id)
            if queued not in FORCE_CANCEL_TRIGGERS:
                self._recheck[offer_id] = trigger
            self._events.debug(
                f"Resolution of {offer_id} already running; {trigger.value} re-check queued"
            )
            return

        self._in_flight.add(offer_id)
        try:
            while True:
                await self._resolve_once(offer_id, offer, trigger)
                queued = self._recheck.pop(offer_id, None)
                if queued is None or offer_id not in self._outstanding:
                    break
                offer, trigger = None, queued
        finally:
            self._in_flight.discard(offer_id)
            self._recheck.pop(offer_id, None)

    async def _resolve_once(
        self,
        offer_id: str,
        offer: Optional[TradeOffer],
        trigger: Trigger,
    ) -> None:
        outstanding = self._outstanding.get(offer_id)
        if outstanding is None and trigger is not Trigger.ABANDON:
            # Already resolved
            return

        try:
            if outstanding is None:
                offer = await self._offers.get_offer(offer_id)
                outstanding = OutstandingOffer(
                    offer_id=offer_id,
                    items_to_give=item_keys(offer.items_to_give),
                    created_at=offer.created_at,
                    partner_id=offer.partner_id,
                )
            elif offer is None:
                offer = await self._fetch_offer(outstanding)

            await self._drive(outstanding, offer, trigger)

        except RetryLimitExceededError as e:
            self._stall(outstanding, e)

        except Exception as e:
            self._events.err(f"Error resolving offer {offer_id}", e)
            if outstanding is not None and offer_id in self._outstanding:
                self._arm_deadline(outstanding, minimum_s=self._policy.error_recheck_s)

    async def _drive(
        self,
        outstanding: OutstandingOffer,
        offer: TradeOffer,
        trigger: Trigger,
    ) -> None:
        """Classify the offer and act on it until a terminal branch or a wait."""
        offer_id = outstanding.offer_id

        while True:
            state = offer.state
            outstanding.last_state = state

            if state in PENDING_OFFER_STATES:
                if trigger not in FORCE_CANCEL_TRIGGERS:
                    self._arm_deadline(outstanding)
                    return
                reason = (
                    "confirmation abandoned" if trigger is Trigger.ABANDON
                    else f"unresolved after {self.cancel_time_s:g}s"
                )
                if await self._try_decline(outstanding, offer, reason):
                    return
                offer = await self._fetch_offer(outstanding)
                continue

            if state in DECLINE_OFFER_STATES:
                if await self._try_decline(outstanding, offer, f"state: {state.name}"):
                    return
                offer = await self._fetch_offer(outstanding)
                continue

            if state is not OfferState.ACCEPTED:
                await self._conclude_failed(
                    outstanding, f"Offer {offer_id} is {state.name}; items will not be exchanged"
                )
                return

            details = await self._exchange_details(outstanding, offer)
            if details is None:
                offer = await self._fetch_offer(outstanding)
                continue

            status = details.status

            if status is ExchangeStatus.COMPLETED:
                await self._conclude_exchanged(outstanding, details)
                return

            if status is ExchangeStatus.FAILED:
                await self._conclude_failed(
                    outstanding, f"Exchange for offer {offer_id} failed; items were not exchanged"
                )
                return

            if status in ROLLBACK_STATUSES:
                await self._conclude_rollback(outstanding, status)
                return

            if status is ExchangeStatus.IN_ESCROW:
                if await self._try_decline(outstanding, offer, "exchange in escrow"):
                    return
                offer = await self._fetch_offer(outstanding)
                continue

            if status is ExchangeStatus.ROLLBACK_FAILED:
                self._events.warning(f"Rollback failed for offer {offer_id}; checking again")
                await self._backoff(outstanding, RetryCategory.ROLLBACK_FAILED)
            else:
                self._events.warning(
                    f"Offer {offer_id} has been 'Accepted' but not 'Completed' ({status.name})"
                )
                await self._backoff(outstanding, RetryCategory.NOT_COMPLETE)

            offer = await self._fetch_offer(outstanding)

    async def _backoff(self, outstanding: OutstandingOffer, category: RetryCategory) -> None:
        """Consume one retry of `category` and wait its delay."""
        limit = self._policy.max_retries
        count = outstanding.retries.bump(category, limit)
        if count < 0:
            raise RetryLimitExceededError(outstanding.offer_id, category, limit)

        delay = self._policy.delay_for(category)
        self._events.debug(
            f"Retry {count}/{limit} ({category.value}) for offer "
            f"{outstanding.offer_id} in {delay:g}s"
        )
        await self._sleep(delay)

    async def _fetch_offer(self, outstanding: OutstandingOffer) -> TradeOffer:
        """Current authoritative offer, retrying transient failures."""
        while True:
            try:
                offer = await self._offers.get_offer(outstanding.offer_id)
            except TransportError as e:
                self._events.err(f"Error getting offer {outstanding.offer_id}", e)
                await self._backoff(outstanding, RetryCategory.OFFER_FETCH)
                continue
            outstanding.retries.reset(RetryCategory.OFFER_FETCH)
            return offer

    async def _exchange_details(
        self,
        outstanding: OutstandingOffer,
        offer: TradeOffer,
    ) -> Optional[ExchangeDetails]:
        try:
            details = await self._offers.get_exchange_details(offer)
        except TransportError as e:
            self._events.err(f"Error getting exchange details {outstanding.offer_id}", e)
            await self._backoff(outstanding, RetryCategory.EXCHANGE_DETAILS)
            return None
        outstanding.retries.reset(RetryCategory.EXCHANGE_DETAILS)
        return details

    async def _try_decline(
        self,
        outstanding: OutstandingOffer,
        offer: TradeOffer,
        reason: str,
    ) -> bool:
        """Decline and conclude. Returns False after a failed attempt and its backoff."""
        offer_id = outstanding.offer_id
        self._events.info(f"Cancelling offer {offer_id} ({reason})")
        try:
            await self._offers.decline(offer)
        except TransportError as e:
            self._events.err(f"Error declining offer {offer_id}", e)
            await self._backoff(outstanding, RetryCategory.ESCROW_DECLINE)
            return False

        outstanding.retries.reset(RetryCategory.ESCROW_DECLINE)
        await self._conclude_failed(outstanding, f"Offer {offer_id} cancelled ({reason})")
        return True

    # ============== Terminal Branches ==============

    def _finish(self, outstanding: OutstandingOffer) -> None:
        self._outstanding.pop(outstanding.offer_id, None)
        self._scheduler.cancel(outstanding.offer_id)

    async def _release(self, keys: Iterable[ItemKey]) -> None:
        # Never clear a lock still held by another offer
        still_held = self.reserved_keys()
        await self._ledger.release([key for key in keys if key not in still_held])

    async def _conclude_failed(self, outstanding: OutstandingOffer, message: str) -> None:
        self._finish(outstanding)
        await self._release(outstanding.items_to_give)
        self._events.info(message)
        self._events.trade(outstanding.offer_id, TradePhase.OFFER_FAILED)

    async def _conclude_exchanged(
        self,
        outstanding: OutstandingOffer,
        details: ExchangeDetails,
    ) -> None:
        self._finish(outstanding)

        sent = item_keys(details.sent_items) if details.sent_items else list(outstanding.items_to_give)
        removed, added = await self._ledger.apply_exchange(sent, details.received_items)

        kept = set(outstanding.items_to_give) - set(sent)
        if kept:
            await self._release(kept)

        self._events.trade(outstanding.offer_id, TradePhase.EXCHANGED)
        self._events.info(
            f"Offer {outstanding.offer_id} has been Completed and new items recorded "
            f"({removed} sent, {added} received)"
        )

    async def _conclude_rollback(
        self,
        outstanding: OutstandingOffer,
        status: ExchangeStatus,
    ) -> None:
        self._finish(outstanding)
        self._events.info(
            f"Offer {outstanding.offer_id} was rolled back ({status.name}); refreshing inventory"
        )

        while True:
            try:
                await self._ledger.refresh(reapply=self.reserved_keys)
                break
            except TransportError as e:
                self._events.err(f"Error refreshing inventory after rollback of {outstanding.offer_id}", e)
                await self._backoff(outstanding, RetryCategory.REFRESH)

        self._events.trade(outstanding.offer_id, TradePhase.OFFER_FAILED)

    def _stall(self, outstanding: OutstandingOffer, error: RetryLimitExceededError) -> None:
        self._finish(outstanding)
        self._stalled[outstanding.offer_id] = outstanding
        self._events.err(
            f"Offer {outstanding.offer_id} left unresolved "
            f"(last state {outstanding.last_state.name if outstanding.last_state else 'unknown'}); "
            f"its items stay reserved",
            error,
        )

    async def release_stalled(self, offer_id: str) -> bool:
        """Drop a stalled offer and release its items."""
        outstanding = self._stalled.pop(offer_id, None)
        if outstanding is None:
            return False
        await self._release(outstanding.items_to_give)
        self._events.info(f"Released stalled offer {offer_id}")
        return True

    async def close(self) -> None:
        """Cancel all deadline timers."""
        await self._scheduler.close()
