"""
Trade account bundle.

Wires the four per-account components together:

    SessionCoordinator -> (listeners) -> OfferResolutionEngine
                                      -> ConfirmationHandler -> engine.cancel_offer
    OfferResolutionEngine / ConfirmationHandler -> InventoryLedger

Nothing here is shared between accounts.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, Optional

from .collaborators import AccountTransport, Credentials
from .config import AccountConfig
from .confirmations import ConfirmationHandler
from .errors import TransportError
from .events import AccountEvents, EventSink
from .ledger import InventoryLedger
from .policies import RetryPolicy
from .resolution import OfferResolutionEngine
from .session import SessionCoordinator
from .types import ItemRef

logger = logging.getLogger(__name__)


class TradeAccount:
    """One tracked account and its isolated state."""

    def __init__(
        self,
        config: AccountConfig,
        transport: AccountTransport,
        policy: Optional[RetryPolicy] = None,
        on_event: Optional[EventSink] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize the account.

        Args:
            config: Account settings
            transport: Collaborators serving this account
            policy: Retry budgets and delays
            on_event: Sink for outward events
            sleep: Wait used for backoff delays
        """
        self.config = config
        self.account_id = config.account_id
        self.transport = transport
        self.policy = policy or RetryPolicy()
        self.events = AccountEvents(config.account_id, on_event)

        self.ledger = InventoryLedger(
            account_id=config.account_id,
            tracked=config.tracked,
            fetcher=transport.inventory,
            events=self.events,
        )
        self.engine = OfferResolutionEngine(
            account_id=config.account_id,
            ledger=self.ledger,
            offers=transport.offers,
            events=self.events,
            policy=self.policy,
            cancel_time_s=config.cancel_time_s,
            sleep=sleep,
        )
        self.confirmations = ConfirmationHandler(
            account_id=config.account_id,
            session=transport.session,
            codes=transport.codes,
            identity_secret=config.identity_secret,
            cancel_offer=self.engine.cancel_offer,
            events=self.events,
            policy=self.policy,
        )
        self.session = SessionCoordinator(
            account_id=config.account_id,
            credentials=Credentials(config.username, config.password),
            shared_secret=config.shared_secret,
            transport=transport.session,
            offers=transport.offers,
            codes=transport.codes,
            events=self.events,
            policy=self.policy,
            confirmation_check_interval_s=config.confirmation_check_interval_s,
            poll_interval_s=config.poll_interval_s,
            sleep=sleep,
        )

        self._refresh_task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Log in and load inventories concurrently, then adopt open offers."""
        logged_in, _ = await asyncio.gather(self.start_session(), self.start_tracking())
        if logged_in:
            await self.engine.discover_open_offers()

    async def start_session(self) -> bool:
        return await self.session.start(
            on_offer_changed=self.engine.on_offer_changed,
            on_new_confirmation=self.confirmations.on_new_confirmation,
        )

    async def start_tracking(self) -> bool:
        """
        Load tracked inventories and start the periodic refresh.

        Returns:
            True if the first load succeeded
        """
        self.events.info("Starting tracking")
        try:
            await self.refresh_inventory()
            loaded = True
            self.events.info(f"Now tracking {self.ledger.tracked}")
        except TransportError as e:
            self.events.err("Error tracking inventory", e)
            loaded = False

        interval = self.config.inventory_refresh_interval_s
        if interval and self._refresh_task is None:
            self._refresh_task = asyncio.get_running_loop().create_task(
                self._refresh_loop(interval),
                name=f"refresh-{self.account_id}",
            )
        return loaded

    async def refresh_inventory(self) -> int:
        """Full resync, keeping the reservations of tracked offers."""
        return await self.ledger.refresh(reapply=self.engine.reserved_keys)

    async def _refresh_loop(self, interval_s: float) -> None:
        while True:
            await asyncio.sleep(interval_s)
            try:
                await self.refresh_inventory()
                self.events.info("Tracked inventories have been refreshed")
            except TransportError as e:
                self.events.err("Error refreshing inventory", e)

    async def send_trade(
        self,
        partner_id: str,
        items_to_give: Iterable[ItemRef],
        items_to_receive: Iterable,
        token: Optional[str] = None,
        message: str = "",
    ) -> str:
        return await self.engine.send_trade(
            partner_id, items_to_give, items_to_receive, token, message,
        )

    async def stop(self) -> None:
        """Stop background work of this account."""
        task = self._refresh_task
        self._refresh_task = None
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        await self.session.stop()
        await self.engine.close()

        close = getattr(self.transport.inventory, "close", None)
        if close is not None:
            await close()
