"""
Bot manager.

Orchestration layer over many accounts. Each account gets its own
TradeAccount bundle; the manager only maps account ids to bundles and
fans their events into one sink.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

from .account import TradeAccount
from .collaborators import AccountTransport, SessionTransport, TradeOfferClient
from .config import AccountConfig, ManagerConfig
from .errors import ConfigurationError, UnknownAccountError
from .events import EventSink
from .guard import SteamGuardCodes
from .inventory_client import SteamInventoryClient
from .policies import RetryPolicy
from .types import Item, ItemRef
from .utils import setup_logging

logger = logging.getLogger(__name__)

TransportFactory = Callable[[AccountConfig], AccountTransport]


def build_transport(
    config: AccountConfig,
    session: SessionTransport,
    offers: TradeOfferClient,
    policy: Optional[RetryPolicy] = None,
) -> AccountTransport:
    """
    Bundle platform collaborators with the HTTP inventory client and the
    local code generator.
    """
    policy = policy or RetryPolicy()
    return AccountTransport(
        session=session,
        offers=offers,
        inventory=SteamInventoryClient(
            proxy=config.proxy,
            max_retries=policy.inventory_fetch_retries,
        ),
        codes=SteamGuardCodes(),
    )


class BotManager:
    """
    Manages the tracked accounts.

    Example:
        manager = BotManager(config, transport_factory=make_transport, on_event=print)
        await manager.add_account({"account_id": "7656...", ...})
        offer_id = await manager.send_trade("7656...", partner, give, receive, token)
    """

    def __init__(
        self,
        config: Optional[ManagerConfig] = None,
        transport_factory: Optional[TransportFactory] = None,
        on_event: Optional[EventSink] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize the manager.

        Args:
            config: Manager configuration (defaults and retry policy)
            transport_factory: Builds the collaborators of one account
            on_event: Sink receiving the events of every account
            sleep: Wait used for backoff delays
        """
        self.config = config or ManagerConfig()
        setup_logging(self.config.log_level)
        self._transport_factory = transport_factory
        self._on_event = on_event
        self._sleep = sleep
        self._accounts: dict[str, TradeAccount] = {}

    @property
    def accounts(self) -> dict[str, TradeAccount]:
        return dict(self._accounts)

    def account(self, account_id: str) -> TradeAccount:
        try:
            return self._accounts[account_id]
        except KeyError:
            raise UnknownAccountError(account_id) from None

    async def add_account(
        self,
        config: Union[AccountConfig, dict[str, Any]],
        transport: Optional[AccountTransport] = None,
    ) -> str:
        """
        Start an account and register it.

        Options left unset by a dict config are taken from the manager's
        default account.

        Returns:
            The account id
        """
        if isinstance(config, dict):
            config = AccountConfig.from_dict(config, self.config.default_account)

        errors = config.validate()
        if errors:
            raise ConfigurationError("; ".join(errors))
        if config.account_id in self._accounts:
            raise ConfigurationError(f"Account {config.account_id} already added")

        if transport is None:
            if self._transport_factory is None:
                raise ConfigurationError("No transport given and no transport factory configured")
            transport = self._transport_factory(config)

        logger.info(f"[{config.account_id}] Adding account")
        account = TradeAccount(
            config,
            transport,
            policy=self.config.retry_policy,
            on_event=self._on_event,
            sleep=self._sleep,
        )
        await account.start()
        self._accounts[config.account_id] = account
        return config.account_id

    async def add_configured_accounts(self) -> list[str]:
        """Start every account listed in the manager config concurrently."""
        return list(await asyncio.gather(
            *(self.add_account(account) for account in self.config.account_configs())
        ))

    async def send_trade(
        self,
        account_id: str,
        partner_id: str,
        items_to_give: Iterable[ItemRef],
        items_to_receive: Iterable,
        token: Optional[str] = None,
        message: str = "",
    ) -> str:
        """
        Send an offer from one account.

        Raises:
            UnknownAccountError, ItemsUnavailableError, TransportError
        """
        return await self.account(account_id).send_trade(
            partner_id, items_to_give, items_to_receive, token, message,
        )

    def account_inventories(
        self,
        collection_id: str,
        sub_collection_id: str,
        account_ids: Optional[Iterable[str]] = None,
    ) -> list[Item]:
        """Tracked items of one pair across accounts."""
        ids = list(account_ids) if account_ids is not None else list(self._accounts)
        items: list[Item] = []
        for account_id in ids:
            items.extend(self.account(account_id).ledger.items(collection_id, sub_collection_id))
        return items

    async def load_inventory(
        self,
        account_id: str,
        collection_id: str,
        sub_collection_id: str,
    ) -> list[Item]:
        """Fetch an inventory directly, bypassing the ledger."""
        fetcher = self.account(account_id).transport.inventory
        return list(await fetcher.fetch_inventory(account_id, collection_id, sub_collection_id))

    async def remove_account(self, account_id: str) -> None:
        account = self._accounts.pop(account_id, None)
        if account is None:
            raise UnknownAccountError(account_id)
        await account.stop()
        logger.info(f"[{account_id}] Account removed")

    async def stop(self) -> None:
        """Stop every account."""
        accounts = list(self._accounts.values())
        self._accounts.clear()
        await asyncio.gather(*(account.stop() for account in accounts), return_exceptions=True)
