"""Shared fixtures for the simlink test suite.

The client core never touches the network or the event loop directly, so
most tests drive it with FakeTransport and ManualScheduler (tests/fakes.py):
transport events are injected synchronously and delayed callbacks run only
when the test advances time.
"""

from __future__ import annotations

import os

import pytest

from simlink.client import SimClient
from simlink.settings import SimSettings
from tests.fakes import METADATA, ManualScheduler, TransportRecorder, handshake


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep SIMLINK_* variables from the developer shell out of the tests."""
    for key in list(os.environ):
        if key.startswith("SIMLINK_"):
            monkeypatch.delenv(key)


@pytest.fixture
def settings() -> SimSettings:
    """Return settings pointing at a test host with default timing."""
    return SimSettings(host="sim.test", _env_file=None)


@pytest.fixture
def scheduler() -> ManualScheduler:
    """Return a scheduler whose time only moves when advanced."""
    return ManualScheduler()


@pytest.fixture
def transports() -> TransportRecorder:
    """Return a factory recording every transport it creates."""
    return TransportRecorder()


@pytest.fixture
def notices() -> list[str]:
    """Collect end-user notices instead of printing them."""
    return []


@pytest.fixture
def ready_calls() -> list[SimClient]:
    """Collect ready callback invocations."""
    return []


@pytest.fixture
def client(
    settings: SimSettings,
    scheduler: ManualScheduler,
    transports: TransportRecorder,
    notices: list[str],
    ready_calls: list[SimClient],
) -> SimClient:
    """Return an unstarted client wired to the fakes."""
    return SimClient(
        "auto",
        METADATA,
        ready_calls.append,
        settings=settings,
        transport_factory=transports,
        scheduler=scheduler,
        clock=scheduler.clock,
        notice_handler=notices.append,
    )


@pytest.fixture
def active_client(client: SimClient, transports: TransportRecorder) -> SimClient:
    """Return a started client that completed the handshake."""
    client.start()
    handshake(transports.last)
    transports.last.sent.clear()
    return client
