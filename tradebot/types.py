"""
Core types for the trade bot.

Defines:
- Platform enums (offer state, exchange status, confirmation type)
- Item identity and item records held by the inventory ledger
- Trade offer, exchange details and confirmation shapes exchanged with
  the platform collaborators
- Outstanding offer bookkeeping and per-offer retry state
- Outward event types
"""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from time import time, time_ns
from typing import Any, Iterable, NamedTuple, Optional, Union


# ============== Platform Enums ==============

class OfferState(IntEnum):
    """Coarse trade offer state as reported by the platform."""
    INVALID = 1
    ACTIVE = 2
    ACCEPTED = 3
    COUNTERED = 4
    EXPIRED = 5
    CANCELED = 6
    DECLINED = 7
    INVALID_ITEMS = 8
    CREATED_NEEDS_CONFIRMATION = 9
    CANCELED_BY_SECOND_FACTOR = 10
    IN_ESCROW = 11


class ExchangeStatus(IntEnum):
    """
    Fine-grained exchange status of an accepted offer.

    An offer can be ACCEPTED long before its items have moved; only
    COMPLETED means the exchange is final.
    """
    INIT = 0
    PRE_COMMITTED = 1
    COMMITTED = 2
    COMPLETED = 3
    FAILED = 4
    PARTIAL_SUPPORT_ROLLBACK = 5
    FULL_SUPPORT_ROLLBACK = 6
    SUPPORT_ROLLBACK_SELECTIVE = 7
    ROLLBACK_FAILED = 8
    ROLLBACK_ABANDONED = 9
    IN_ESCROW = 10
    ESCROW_ROLLBACK = 11


class ConfirmationType(IntEnum):
    """Kinds of mobile confirmation."""
    GENERIC = 1
    TRADE = 2
    MARKET_LISTING = 3
    FEATURE_OPT_OUT = 4
    PHONE_NUMBER_CHANGE = 5
    ACCOUNT_RECOVERY = 6


# Offer is still in flight; keep watching
PENDING_OFFER_STATES = frozenset({
    OfferState.ACTIVE,
    OfferState.CREATED_NEEDS_CONFIRMATION,
    OfferState.INVALID,
})

# Offer must be actively declined by us
DECLINE_OFFER_STATES = frozenset({
    OfferState.COUNTERED,
    OfferState.IN_ESCROW,
})

# Items were returned by the platform; local state needs a full resync
ROLLBACK_STATUSES = frozenset({
    ExchangeStatus.PARTIAL_SUPPORT_ROLLBACK,
    ExchangeStatus.FULL_SUPPORT_ROLLBACK,
    ExchangeStatus.SUPPORT_ROLLBACK_SELECTIVE,
    ExchangeStatus.ROLLBACK_ABANDONED,
    ExchangeStatus.ESCROW_ROLLBACK,
})

# Items have not moved yet
NOT_COMPLETE_STATUSES = frozenset({
    ExchangeStatus.INIT,
    ExchangeStatus.PRE_COMMITTED,
    ExchangeStatus.COMMITTED,
})


# ============== Items ==============

class ItemKey(NamedTuple):
    """Composite identity of an item within one account."""
    collection_id: str
    sub_collection_id: str
    item_id: str

    def __str__(self) -> str:
        return f"{self.collection_id}/{self.sub_collection_id}/{self.item_id}"


@dataclass(slots=True)
class Item:
    """
    Item record.

    `metadata` is the opaque platform payload. `reserved` is owned by the
    inventory ledger and must only be changed through it.
    """
    collection_id: str
    sub_collection_id: str
    item_id: str
    metadata: dict = field(default_factory=dict)
    reserved: bool = False

    def __post_init__(self):
        # Platforms hand out numeric ids; the ledger keys on strings
        self.collection_id = str(self.collection_id)
        self.sub_collection_id = str(self.sub_collection_id)
        self.item_id = str(self.item_id)

    @property
    def key(self) -> ItemKey:
        return ItemKey(self.collection_id, self.sub_collection_id, self.item_id)

    def copy(self) -> "Item":
        return Item(
            collection_id=self.collection_id,
            sub_collection_id=self.sub_collection_id,
            item_id=self.item_id,
            metadata=dict(self.metadata),
            reserved=self.reserved,
        )


ItemRef = Union[Item, ItemKey]


def item_key(item: ItemRef) -> ItemKey:
    """Identity of an item record or key."""
    if isinstance(item, Item):
        return item.key
    return ItemKey(str(item[0]), str(item[1]), str(item[2]))


def item_keys(items: Iterable[ItemRef]) -> list[ItemKey]:
    """Identities of a sequence of items, order preserved."""
    return [item_key(item) for item in items]


# ============== Platform Shapes ==============

@dataclass
class TradeOffer:
    """A trade offer as seen through the trade-offer collaborator."""
    partner_id: str
    state: OfferState = OfferState.ACTIVE
    id: Optional[str] = None
    token: Optional[str] = None
    message: str = ""
    items_to_give: list[Item] = field(default_factory=list)
    items_to_receive: list[Item] = field(default_factory=list)
    created_at: float = field(default_factory=time)

    def add_my_item(self, item: Item) -> None:
        self.items_to_give.append(item)

    def add_their_item(self, item: Item) -> None:
        self.items_to_receive.append(item)


@dataclass
class ExchangeDetails:
    """What actually moved for an accepted offer."""
    status: ExchangeStatus
    trade_init_time: Optional[float] = None
    sent_items: list[Item] = field(default_factory=list)
    received_items: list[Item] = field(default_factory=list)


@dataclass
class Confirmation:
    """A pending mobile confirmation."""
    id: str
    type: ConfirmationType
    creator: str  # Offer id for trade confirmations
    key: str = ""
    title: str = ""


# ============== Resolution Bookkeeping ==============

class RetryCategory(Enum):
    """Ambiguous conditions that each carry their own retry budget."""
    EXCHANGE_DETAILS = "exchangeDetails"
    ROLLBACK_FAILED = "rollbackFailed"
    ESCROW_DECLINE = "escrowDecline"
    NOT_COMPLETE = "notComplete"
    REFRESH = "refresh"
    OFFER_FETCH = "offerFetch"


@dataclass
class RetryState:
    """
    Per-offer retry counters, one per category.

    A counter is reset only when the offer advances past that category.
    """
    exchange_details: int = 0
    rollback_failed: int = 0
    escrow_decline: int = 0
    not_complete: int = 0
    refresh: int = 0
    offer_fetch: int = 0

    _FIELDS = {
        RetryCategory.EXCHANGE_DETAILS: "exchange_details",
        RetryCategory.ROLLBACK_FAILED: "rollback_failed",
        RetryCategory.ESCROW_DECLINE: "escrow_decline",
        RetryCategory.NOT_COMPLETE: "not_complete",
        RetryCategory.REFRESH: "refresh",
        RetryCategory.OFFER_FETCH: "offer_fetch",
    }

    def get(self, category: RetryCategory) -> int:
        return getattr(self, self._FIELDS[category])

    def bump(self, category: RetryCategory, limit: int) -> int:
        """
        Consume one retry for `category`.

        Returns the new count. Returns -1 without consuming anything when
        `limit` retries have already been used.
        """
        count = self.get(category)
        if count >= limit:
            return -1
        setattr(self, self._FIELDS[category], count + 1)
        return count + 1

    def reset(self, category: RetryCategory) -> None:
        setattr(self, self._FIELDS[category], 0)


@dataclass
class OutstandingOffer:
    """An offer sent by this account that has not reached a terminal outcome."""
    offer_id: str
    items_to_give: list[ItemKey]
    created_at: float = field(default_factory=time)
    last_state: Optional[OfferState] = None
    retries: RetryState = field(default_factory=RetryState)
    partner_id: str = ""


# ============== Events ==============

class EventKind(Enum):
    """Kinds of outward event."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "err"
    TRADE = "trade"


class TradePhase(Enum):
    """Lifecycle phases reported through trade events."""
    SENT = "send.sent"
    CONFIRMED = "confirm.confirmed"
    CONFIRM_FAILED = "confirm.failed"
    OFFER_FAILED = "offer.failed"
    EXCHANGED = "offer.exchanged"


@dataclass(slots=True)
class BotEvent:
    """One entry of the outward event stream."""
    kind: EventKind
    account_id: str
    message: str = ""
    offer_id: Optional[str] = None
    phase: Optional[TradePhase] = None
    cause: Optional[Any] = None
    ts_ms: int = field(default_factory=lambda: time_ns() // 1_000_000)
