import random

import pytest

from coaster.messaging.router import MessageRouter
from coaster.session.manager import SessionManager
from coaster.tests.helpers.catalog import spread_catalog
from coaster.tests.helpers.timing import FAST_TIMERS
from coaster.tests.mocks import MockConnection


@pytest.fixture
def catalog():
    return spread_catalog()


@pytest.fixture
def manager(catalog):
    manager = SessionManager(catalog, timer_config=FAST_TIMERS, rng=random.Random(7))
    yield manager
    manager.cancel_all_timers()


@pytest.fixture
def router(manager):
    return MessageRouter(manager)


@pytest.fixture
def connect(router):
    """Open a mock connection and optionally set its username."""

    async def _connect(
        username: str | None = None,
        connection_cls: type[MockConnection] = MockConnection,
    ) -> MockConnection:
        connection = connection_cls()
        await router.handle_connect(connection)
        if username is not None:
            await router.handle_message(connection, {"type": "setUsername", "username": username})
        connection._outbox.clear()
        return connection

    return _connect
