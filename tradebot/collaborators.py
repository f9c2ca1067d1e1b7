"""
Interfaces of the external collaborators.

The login transport, the offer polling loop and the confirmation checker
live outside this package. They are consumed through these protocols.
Event callbacks are coroutine functions; a transport schedules them on
the running event loop (e.g. with `asyncio.create_task`).
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Protocol, Sequence

from .types import (
    Confirmation,
    ExchangeDetails,
    Item,
    OfferState,
    TradeOffer,
)

SessionExpiredHandler = Callable[[], Awaitable[None]]
ConfirmationHandlerFn = Callable[[Confirmation], Awaitable[None]]
OfferChangedHandler = Callable[[TradeOffer, Optional[OfferState]], Awaitable[None]]


@dataclass(frozen=True)
class Credentials:
    """Login credentials of one account."""
    username: str
    password: str


class SessionTransport(Protocol):
    """Login session and mobile confirmations."""

    async def login(self, credentials: Credentials, code: str) -> str:
        """Log in and return a session token. Raises AuthError."""
        ...

    async def respond_to_confirmation(
        self,
        confirmation: Confirmation,
        approve: bool,
        time_proof: int,
        key: str,
    ) -> None:
        """Approve or reject a confirmation. Raises ConfirmationError."""
        ...

    def forget_confirmation(self, confirmation_id: str) -> None:
        """Let the confirmation checker report this confirmation again."""
        ...

    def start_confirmation_checker(self, interval_s: float) -> None:
        ...

    def on_session_expired(self, handler: SessionExpiredHandler) -> None:
        ...

    def on_new_confirmation(self, handler: ConfirmationHandlerFn) -> None:
        ...


class TradeOfferClient(Protocol):
    """Trade offers and their exchange records."""

    def set_session(self, token: str) -> None:
        ...

    def start_polling(self, interval_s: float) -> None:
        """Begin polling for offer state changes."""
        ...

    def create_offer(self, partner_id: str, token: Optional[str] = None) -> TradeOffer:
        ...

    async def send(self, offer: TradeOffer) -> str:
        """Send a draft offer and return the platform offer id. Raises TransportError."""
        ...

    async def get_offer(self, offer_id: str) -> TradeOffer:
        """Raises OfferNotFoundError or TransportError."""
        ...

    async def get_active_sent_offers(self) -> list[TradeOffer]:
        ...

    async def accept(self, offer: TradeOffer) -> None:
        ...

    async def decline(self, offer: TradeOffer) -> None:
        ...

    async def get_exchange_details(self, offer: TradeOffer) -> ExchangeDetails:
        ...

    def on_offer_changed(self, handler: OfferChangedHandler) -> None:
        ...


class CodeGenerator(Protocol):
    """Two-factor codes and confirmation keys."""

    def current_time(self) -> int:
        ...

    def auth_code(self, secret: str) -> str:
        ...

    def confirmation_key(self, identity_secret: str, timestamp: int, tag: str) -> str:
        ...


class InventoryFetcher(Protocol):
    """Raw inventory listing of one (collection, sub-collection) pair."""

    async def fetch_inventory(
        self,
        account_id: str,
        collection_id: str,
        sub_collection_id: str,
    ) -> Sequence[Item]:
        """Raises InventoryFetchError."""
        ...


@dataclass
class AccountTransport:
    """Collaborators serving one account."""
    session: SessionTransport
    offers: TradeOfferClient
    inventory: InventoryFetcher
    codes: CodeGenerator
