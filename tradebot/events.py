"""
Outward event stream.

Components never discover listeners; each one is handed an
`AccountEvents` emitter bound to its account and a single sink callable.
Every event is also written to the log.
"""

import logging
from typing import Any, Callable, Optional

from .types import BotEvent, EventKind, TradePhase
from .utils import account_label

logger = logging.getLogger(__name__)

EventSink = Callable[[BotEvent], None]

_LOG_LEVELS = {
    EventKind.DEBUG: logging.DEBUG,
    EventKind.INFO: logging.INFO,
    EventKind.WARNING: logging.WARNING,
    EventKind.ERROR: logging.ERROR,
    EventKind.TRADE: logging.INFO,
}


class AccountEvents:
    """Emits structured events for one account."""

    def __init__(self, account_id: str, sink: Optional[EventSink] = None):
        """
        Initialize the emitter.

        Args:
            account_id: Account the events belong to
            sink: Callable receiving every event (optional)
        """
        self.account_id = account_id
        self._sink = sink
        self._label = account_label(account_id)

    def emit(self, event: BotEvent) -> None:
        """Log an event and hand it to the sink."""
        text = event.message
        if event.kind is EventKind.TRADE:
            text = f"trade {event.offer_id} {event.phase.value}"
        if event.cause is not None:
            text = f"{text}: {event.cause}"
        logger.log(_LOG_LEVELS[event.kind], f"{self._label} {text}")

        if self._sink is None:
            return
        try:
            self._sink(event)
        except Exception as e:
            logger.error(f"{self._label} Event sink failed: {e}")

    def debug(self, message: str) -> None:
        self.emit(BotEvent(EventKind.DEBUG, self.account_id, message))

    def info(self, message: str) -> None:
        self.emit(BotEvent(EventKind.INFO, self.account_id, message))

    def warning(self, message: str) -> None:
        self.emit(BotEvent(EventKind.WARNING, self.account_id, message))

    def err(self, message: str, cause: Any = None) -> None:
        self.emit(BotEvent(EventKind.ERROR, self.account_id, message, cause=cause))

    def trade(self, offer_id: str, phase: TradePhase) -> None:
        self.emit(BotEvent(
            EventKind.TRADE,
            self.account_id,
            offer_id=offer_id,
            phase=phase,
        ))
