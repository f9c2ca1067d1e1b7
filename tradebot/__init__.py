"""
Trade Bot - Multi-account trade offer resolution

Tracks the inventories of several platform accounts, sends trade offers
from them and drives every offer to a consistent outcome: items exchanged
and recorded, or the offer cancelled and its items released.
"""

__version__ = "0.1.0"

# Core types
from .types import (
    # Enums
    OfferState,
    ExchangeStatus,
    ConfirmationType,
    RetryCategory,
    EventKind,
    TradePhase,
    # Items
    ItemKey,
    Item,
    item_key,
    item_keys,
    # Platform shapes
    TradeOffer,
    ExchangeDetails,
    Confirmation,
    # Bookkeeping
    RetryState,
    OutstandingOffer,
    BotEvent,
)

# Errors
from .errors import (
    TradeBotError,
    ConfigurationError,
    TransportError,
    OfferNotFoundError,
    InventoryFetchError,
    ItemsUnavailableError,
    ConfirmationError,
    AuthError,
    MobileConfirmationRequiredError,
    RetryLimitExceededError,
    UnknownOfferError,
    UnknownAccountError,
)

# Configuration
from .config import AccountConfig, ManagerConfig
from .policies import RetryPolicy

# Collaborators
from .collaborators import AccountTransport, Credentials
from .guard import SteamGuardCodes
from .inventory_client import SteamInventoryClient

# Components
from .events import AccountEvents
from .ledger import InventoryLedger
from .resolution import OfferResolutionEngine
from .confirmations import ConfirmationHandler
from .session import SessionCoordinator, SessionState
from .account import TradeAccount
from .manager import BotManager, build_transport

# Utilities
from .utils import setup_logging
