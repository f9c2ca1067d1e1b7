"""Tests for BotManager."""

import asyncio
import logging

import pytest

from tradebot.collaborators import AccountTransport
from tradebot.config import AccountConfig, ManagerConfig
from tradebot.errors import ConfigurationError, ItemsUnavailableError, UnknownAccountError
from tradebot.guard import SteamGuardCodes
from tradebot.inventory_client import SteamInventoryClient
from tradebot.manager import BotManager, build_transport
from tradebot.policies import RetryPolicy
from tradebot.types import ItemKey

from fakes import (
    PAIR,
    FakeCodes,
    FakeInventory,
    FakeOffers,
    FakeSession,
    RecordingSleep,
    make_item,
)


A = ItemKey(*PAIR, "a")


def account_dict(account_id, **overrides) -> dict:
    values = {
        "account_id": account_id,
        "username": f"bot{account_id}",
        "password": "pw",
        "shared_secret": "shared",
        "identity_secret": "identity",
    }
    values.update(overrides)
    return values


class TransportFactory:
    """Builds fresh fakes per account and remembers them."""

    def __init__(self):
        self.created: dict[str, AccountTransport] = {}

    def __call__(self, config: AccountConfig) -> AccountTransport:
        transport = AccountTransport(
            session=FakeSession(),
            offers=FakeOffers(),
            inventory=FakeInventory({PAIR: [make_item(i) for i in ("a", "b", "c", "d")]}),
            codes=FakeCodes(),
        )
        self.created[config.account_id] = transport
        return transport


@pytest.fixture
def factory():
    return TransportFactory()


@pytest.fixture
def manager(factory, recorder):
    config = ManagerConfig(
        default_account={"tracked": {PAIR[0]: [PAIR[1]]}, "cancel_time_s": 120},
        retry_policy=RetryPolicy.immediate(),
    )
    return BotManager(config, transport_factory=factory, on_event=recorder, sleep=RecordingSleep())


class TestAddAccount:
    """Tests for registering accounts."""

    def test_defaults_are_merged(self, manager):
        """Options left unset come from the default account."""
        async def scenario():
            assert await manager.add_account(account_dict(1, cancel_time_s=60)) == "1"
            await manager.add_account(account_dict(2))
            first, second = manager.account("1"), manager.account("2")

            assert first.config.cancel_time_s == 60
            assert second.config.cancel_time_s == 120
            assert second.config.tracked == {"730": ["2"]}
            assert first.session.logged_in and second.session.logged_in
            await manager.stop()

        asyncio.run(scenario())

    def test_duplicate_account_rejected(self, manager):
        async def scenario():
            await manager.add_account(account_dict(1))
            with pytest.raises(ConfigurationError, match="already added"):
                await manager.add_account(account_dict(1))
            await manager.stop()

        asyncio.run(scenario())

    def test_invalid_account_rejected(self, manager, factory):
        async def scenario():
            with pytest.raises(ConfigurationError, match="identity_secret"):
                await manager.add_account(account_dict(1, identity_secret=""))

        asyncio.run(scenario())
        assert manager.accounts == {}
        assert factory.created == {}

    def test_unknown_option_rejected(self, manager):
        async def scenario():
            with pytest.raises(ConfigurationError, match="Unknown account options"):
                await manager.add_account(account_dict(1, polling="fast"))

        asyncio.run(scenario())

    def test_missing_transport(self):
        manager = BotManager(ManagerConfig(default_account={"tracked": {"730": ["2"]}}))

        async def scenario():
            with pytest.raises(ConfigurationError, match="transport"):
                await manager.add_account(account_dict(1))

        asyncio.run(scenario())

    def test_add_configured_accounts(self, factory, recorder):
        config = ManagerConfig(
            default_account={"tracked": {"730": ["2"]}},
            accounts=[account_dict("a1"), account_dict("a2")],
            retry_policy=RetryPolicy.immediate(),
        )
        manager = BotManager(config, transport_factory=factory, on_event=recorder)

        async def scenario():
            ids = await manager.add_configured_accounts()
            await manager.stop()
            return ids

        assert asyncio.run(scenario()) == ["a1", "a2"]
        assert {event.account_id for event in recorder.events} == {"a1", "a2"}


class TestOperations:
    """Tests for routing operations to accounts."""

    def test_send_trade_routes_to_account(self, manager, factory):
        async def scenario():
            await manager.add_account(account_dict(1))
            await manager.add_account(account_dict(2))

            offer_id = await manager.send_trade("1", "partner", [A], [])

            assert manager.account("1").engine.is_outstanding(offer_id)
            assert manager.account("1").ledger.is_reserved(A)
            assert not manager.account("2").ledger.is_reserved(A)

            with pytest.raises(ItemsUnavailableError):
                await manager.send_trade("1", "partner", [A], [])
            await manager.send_trade("2", "partner", [A], [])
            await manager.stop()

        asyncio.run(scenario())
        assert len(factory.created["1"].offers.sent) == 1
        assert len(factory.created["2"].offers.sent) == 1

    def test_unknown_account(self, manager):
        async def scenario():
            with pytest.raises(UnknownAccountError):
                await manager.send_trade("nope", "partner", [A], [])
            with pytest.raises(UnknownAccountError):
                await manager.remove_account("nope")

        asyncio.run(scenario())

    def test_account_inventories(self, manager):
        async def scenario():
            await manager.add_account(account_dict(1))
            await manager.add_account(account_dict(2))

            assert len(manager.account_inventories("730", "2")) == 8
            assert len(manager.account_inventories("730", "2", account_ids=["2"])) == 4
            assert manager.account_inventories("440", "2") == []
            await manager.stop()

        asyncio.run(scenario())

    def test_load_inventory_bypasses_ledger(self, manager, factory):
        async def scenario():
            await manager.add_account(account_dict(1))
            factory.created["1"].inventory.inventories[PAIR] = [make_item("z")]

            items = await manager.load_inventory("1", "730", "2")

            assert [item.item_id for item in items] == ["z"]
            assert len(manager.account("1").ledger) == 4
            await manager.stop()

        asyncio.run(scenario())

    def test_remove_account(self, manager):
        async def scenario():
            await manager.add_account(account_dict(1))
            await manager.remove_account("1")

            assert manager.accounts == {}
            with pytest.raises(UnknownAccountError):
                manager.account("1")

        asyncio.run(scenario())


class TestBuildTransport:
    """Tests for build_transport."""

    def test_uses_http_inventory_and_local_codes(self):
        config = AccountConfig(account_id="1", proxy="http://proxy:8080")
        session, offers = FakeSession(), FakeOffers()

        transport = build_transport(config, session, offers, RetryPolicy(inventory_fetch_retries=2))

        assert transport.session is session
        assert transport.offers is offers
        assert isinstance(transport.inventory, SteamInventoryClient)
        assert transport.inventory._proxy == "http://proxy:8080"
        assert transport.inventory._max_retries == 2
        assert isinstance(transport.codes, SteamGuardCodes)



class TestLogging:
    """Tests for the configured log level."""

    def test_manager_applies_log_level(self):
        package_logger = logging.getLogger("tradebot")
        try:
            BotManager(ManagerConfig(log_level="debug"))
            assert package_logger.level == logging.DEBUG

            BotManager(ManagerConfig(log_level="WARNING"))
            assert package_logger.level == logging.WARNING
            assert not logging.getLogger("tradebot.resolution").isEnabledFor(logging.INFO)
        finally:
            package_logger.setLevel(logging.NOTSET)
