"""Tests for the outward event stream."""

import logging

from tradebot.events import AccountEvents
from tradebot.types import EventKind, TradePhase

from fakes import EventRecorder


class TestAccountEvents:
    """Tests for AccountEvents."""

    def test_events_reach_sink(self):
        recorder = EventRecorder()
        events = AccountEvents("acct", recorder)

        events.info("hello")
        events.err("failed", ValueError("boom"))
        events.trade("1001", TradePhase.SENT)

        kinds = [event.kind for event in recorder.events]
        assert kinds == [EventKind.INFO, EventKind.ERROR, EventKind.TRADE]
        assert str(recorder.events[1].cause) == "boom"
        assert recorder.events[2].offer_id == "1001"
        assert recorder.trades() == ["send.sent"]
        assert all(event.account_id == "acct" for event in recorder.events)

    def test_events_are_logged_with_account_label(self, caplog):
        events = AccountEvents("acct")

        with caplog.at_level(logging.DEBUG, logger="tradebot.events"):
            events.warning("careful")
            events.trade("1001", TradePhase.EXCHANGED)

        assert "[acct] careful" in caplog.text
        assert "[acct] trade 1001 offer.exchanged" in caplog.text
        assert caplog.records[0].levelno == logging.WARNING

    def test_failing_sink_does_not_raise(self, caplog):
        def sink(event):
            raise RuntimeError("sink down")

        events = AccountEvents("acct", sink)

        with caplog.at_level(logging.ERROR, logger="tradebot.events"):
            events.info("still fine")

        assert "Event sink failed: sink down" in caplog.text

    def test_event_timestamps(self):
        recorder = EventRecorder()
        AccountEvents("acct", recorder).debug("tick")

        assert recorder.events[0].ts_ms > 1_600_000_000_000
