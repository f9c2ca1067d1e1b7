"""Shared fixtures for the trade bot tests."""

import pytest

from tradebot.collaborators import AccountTransport

from fakes import (
    PAIR,
    EventRecorder,
    FakeCodes,
    FakeInventory,
    FakeOffers,
    FakeSession,
    RecordingSleep,
    make_item,
)


@pytest.fixture
def recorder():
    return EventRecorder()


@pytest.fixture
def offers():
    return FakeOffers()


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def codes():
    return FakeCodes()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def inventory():
    return FakeInventory({PAIR: [make_item(i) for i in ("a", "b", "c", "d")]})


@pytest.fixture
def transport(session, offers, inventory, codes):
    return AccountTransport(session=session, offers=offers, inventory=inventory, codes=codes)
