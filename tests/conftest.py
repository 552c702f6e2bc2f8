import pytest

from app.bot.state_machine import ConversationStateMachine
from app.services.messaging import Messenger
from app.services.time_resolver import TimeResolver
from fakes import (
    TZ,
    DAY,
    NEXT_DAY,
    FakeTransport,
    FakeUpstream,
    FixedClock,
    InMemoryJobQueue,
    InMemoryStore,
    InMemoryTimeCache,
    hebcal_payload,
    local,
)


@pytest.fixture
def clock():
    return FixedClock(local(DAY, 10, 0))


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def cache():
    return InMemoryTimeCache()


@pytest.fixture
def upstream():
    return FakeUpstream(
        {
            DAY: hebcal_payload(DAY, sunset="19:50", candles="19:10", mincha="13:15"),
            NEXT_DAY: hebcal_payload(NEXT_DAY, sunset="19:51", candles="19:11", mincha="13:16"),
        }
    )


@pytest.fixture
def resolver(cache, upstream):
    return TimeResolver(cache, upstream)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def messenger(transport):
    return Messenger(transport)


@pytest.fixture
def queue():
    return InMemoryJobQueue()


@pytest.fixture
def machine(store, resolver, messenger, clock):
    return ConversationStateMachine(store, resolver, messenger, clock=clock, default_location="Jerusalem", tz=TZ)
