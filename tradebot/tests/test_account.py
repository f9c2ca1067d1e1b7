"""Tests for TradeAccount wiring."""

import asyncio
from unittest.mock import AsyncMock

from tradebot.account import TradeAccount
from tradebot.config import AccountConfig
from tradebot.errors import ConfirmationError
from tradebot.policies import RetryPolicy
from tradebot.types import (
    Confirmation,
    ConfirmationType,
    EventKind,
    ItemKey,
    OfferState,
    TradeOffer,
)

from fakes import PAIR, make_item


A = ItemKey(*PAIR, "a")
C = ItemKey(*PAIR, "c")


def make_config(**overrides) -> AccountConfig:
    values = dict(
        account_id="acct",
        username="bot",
        password="pw",
        shared_secret="shared",
        identity_secret="identity",
        tracked={PAIR[0]: [PAIR[1]]},
    )
    values.update(overrides)
    return AccountConfig(**values)


def make_account(transport, recorder, sleep, **overrides) -> TradeAccount:
    return TradeAccount(
        make_config(**overrides),
        transport,
        policy=RetryPolicy.immediate(),
        on_event=recorder,
        sleep=sleep,
    )


class TestTradeAccount:
    """Tests for TradeAccount."""

    def test_start_logs_in_loads_and_discovers(self, transport, offers, session, recorder, sleep):
        offers.active_sent = [offers.add_offer(TradeOffer(
            "partner", OfferState.ACTIVE, id="77", items_to_give=[make_item("c")],
        ))]

        async def scenario():
            account = make_account(transport, recorder, sleep)
            await account.start()

            assert account.session.logged_in
            assert len(account.ledger) == 4
            assert account.ledger.is_reserved(C)
            assert account.engine.is_outstanding("77")
            await account.stop()
            return account

        account = asyncio.run(scenario())
        assert session.confirmation_handler == account.confirmations.on_new_confirmation
        assert offers.handler == account.engine.on_offer_changed
        assert offers.poll_intervals == [5.0]
        assert "Starting tracking" in recorder.messages(EventKind.INFO)
        assert all(event.account_id == "acct" for event in recorder.events)

    def test_failed_first_load_is_reported(self, transport, inventory, recorder, sleep):
        inventory.failing.add(PAIR)

        async def scenario():
            account = make_account(transport, recorder, sleep)
            loaded = await account.start_tracking()
            await account.stop()
            return loaded

        assert asyncio.run(scenario()) is False
        assert "Error tracking inventory" in recorder.messages(EventKind.ERROR)

    def test_refresh_keeps_outstanding_reservations(self, transport, recorder, sleep):
        async def scenario():
            account = make_account(transport, recorder, sleep)
            await account.start()
            await account.send_trade("partner", [A], [])

            await account.refresh_inventory()

            assert account.ledger.is_reserved(A)
            assert account.ledger.reserved_keys() == {A}
            await account.stop()

        asyncio.run(scenario())

    def test_periodic_refresh(self, transport, inventory, recorder, sleep):
        async def scenario():
            account = make_account(transport, recorder, sleep, inventory_refresh_interval_s=0.02)
            await account.start()
            await asyncio.sleep(0.15)
            await account.stop()

            calls = len(inventory.calls)
            await asyncio.sleep(0.05)
            return calls

        calls = asyncio.run(scenario())
        assert calls >= 3
        assert len(inventory.calls) == calls
        assert "Tracked inventories have been refreshed" in recorder.messages(EventKind.INFO)

    def test_abandoned_confirmation_cancels_through_engine(self, transport, offers, session, recorder, sleep):
        """The confirmation handler escalates into the account's own engine."""
        async def scenario():
            account = make_account(transport, recorder, sleep)
            await account.start()
            offer_id = await account.send_trade("partner", [A], [])
            offers.set_state(offer_id, OfferState.CREATED_NEEDS_CONFIRMATION)

            session.respond_error = ConfirmationError("Could not act on confirmation")
            confirmation = Confirmation("c1", ConfirmationType.TRADE, offer_id)
            for _ in range(5):
                await session.confirmation_handler(confirmation)

            assert not account.ledger.is_reserved(A)
            await account.stop()
            return offer_id

        offer_id = asyncio.run(scenario())
        assert offers.declined == [offer_id]
        assert recorder.trades(offer_id) == ["send.sent", "confirm.failed", "offer.failed"]

    def test_stop_closes_inventory_client(self, transport, inventory, recorder, sleep):
        inventory.close = AsyncMock()

        async def scenario():
            account = make_account(transport, recorder, sleep)
            await account.start()
            await account.stop()

        asyncio.run(scenario())
        inventory.close.assert_awaited_once()

    def test_periodic_refresh_with_trades_in_flight(self, transport, offers, inventory, recorder, sleep):
        """Background refreshes keep live offers locked and drop concluded ones."""
        async def scenario():
            account = make_account(transport, recorder, sleep, inventory_refresh_interval_s=0.02)
            await account.start()
            kept = await account.send_trade("partner", [A], [])
            dropped = await account.send_trade("partner", [C], [])

            await account.engine.on_offer_changed(offers.set_state(dropped, OfferState.DECLINED))
            refreshes = len(inventory.calls)
            await asyncio.sleep(0.1)

            assert len(inventory.calls) > refreshes
            assert account.ledger.reserved_keys() == {A}
            assert account.engine.is_outstanding(kept)
            await account.stop()

        asyncio.run(scenario())
