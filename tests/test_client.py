"""Tests for SimClient - the public client surface.

Tests verify:
1. Handshake sends IDENTIFY and runs the ready callback
2. Operations are refused until a session identifier exists
3. Outbound operations produce the expected wire messages
4. RES / COMMAND / ONCE reach subscriptions, command callbacks and reads
5. Redirect, reload and the loading monitor

NO MOCKING - FakeTransport records frames, ManualScheduler drives time.
"""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from simlink.client import SimClient
from simlink.constants import SimConstants as c
from simlink.exceptions import SimSessionError, SimValueError
from simlink.session import SessionPhase
from simlink.settings import SimSettings
from tests.fakes import (
    METADATA,
    SESSION_ID,
    FakeTransport,
    ManualScheduler,
    TransportRecorder,
    handshake,
)

GEAR = "sim/flight_controls/landing_gear_toggle"


def recorder() -> tuple[list[tuple[Any, ...]], Any]:
    calls: list[tuple[Any, ...]] = []

    def callback(*args: Any) -> None:
        calls.append(args)

    return calls, callback


class TestHandshake:
    """Test session establishment."""

    def test_identify_then_ready(
        self,
        client: SimClient,
        transports: TransportRecorder,
        ready_calls: list[SimClient],
    ) -> None:
        client.start()
        assert not client.is_ready
        handshake(transports.last)

        assert ready_calls == [client]
        assert client.is_ready
        assert client.identifier == SESSION_ID
        assert client.phase == SessionPhase.ACTIVE
        assert transports.last.messages == [
            {"id": SESSION_ID, "command": "IDENTIFY", "data": METADATA}
        ]

    def test_ready_after_every_handshake(
        self,
        client: SimClient,
        transports: TransportRecorder,
        scheduler: ManualScheduler,
        ready_calls: list[SimClient],
    ) -> None:
        client.start()
        handshake(transports.last)
        transports.last.drop()
        scheduler.advance(5.0)
        handshake(transports.last, "session-2")

        assert len(ready_calls) == 2
        assert transports.last.url == "ws://sim.test:9002"
        assert transports.last.messages[0]["id"] == "session-2"

    def test_uses_injected_transport_factory(
        self, client: SimClient, transports: TransportRecorder
    ) -> None:
        assert len(transports) == 0
        client.start()
        assert len(transports) == 1
        assert isinstance(client._session.transport, FakeTransport)
        assert client._session.transport is transports.last

    def test_restart_after_passive_close(
        self,
        client: SimClient,
        transports: TransportRecorder,
        ready_calls: list[SimClient],
    ) -> None:
        client.start()
        handshake(transports.last)
        transports.last.drop(c.Network.CloseCode.NORMAL)
        assert client.phase == SessionPhase.CLOSED
        assert not client.is_ready

        client.start()
        handshake(transports.last, "session-2")
        assert len(ready_calls) == 2
        assert client.identifier == "session-2"
        assert transports.last.messages == [
            {"id": "session-2", "command": "IDENTIFY", "data": METADATA}
        ]

    def test_failing_ready_callback_keeps_session(
        self,
        settings: SimSettings,
        scheduler: ManualScheduler,
        transports: TransportRecorder,
    ) -> None:
        def broken(_client: SimClient) -> None:
            raise RuntimeError("boom")

        client = SimClient(
            "auto",
            None,
            broken,
            settings=settings,
            transport_factory=transports,
            scheduler=scheduler,
        )
        client.start()
        handshake(transports.last)
        assert client.is_ready
        assert transports.last.messages == [
            {"id": SESSION_ID, "command": "IDENTIFY", "data": {}}
        ]

    def test_trial_limit_notice(
        self, client: SimClient, transports: TransportRecorder, notices: list[str]
    ) -> None:
        client.start()
        transports.last.accept()
        transports.last.receive({"type": "LOG", "value": c.Notices.TRIAL_LIMIT})
        assert notices == [c.Notices.TRIAL_LIMIT]

    async def test_wait_ready(
        self, client: SimClient, transports: TransportRecorder
    ) -> None:
        client.start()
        waiter = asyncio.create_task(client.wait_ready())
        await asyncio.sleep(0)
        assert not waiter.done()

        handshake(transports.last)
        await asyncio.wait_for(waiter, timeout=1.0)

    async def test_context_manager(
        self, client: SimClient, transports: TransportRecorder
    ) -> None:
        async with client:
            handshake(transports.last)
            assert client.is_ready
        assert client.phase == SessionPhase.CLOSED
        assert transports.last.closed


class TestBeforeHandshake:
    """Test operations refused without an identifier."""

    def test_subscribe_refused_without_state_change(
        self, client: SimClient, transports: TransportRecorder
    ) -> None:
        client.start()
        with pytest.raises(SimSessionError):
            client.subscribe(["a"], print)
        assert len(client.dispatcher) == 0
        assert len(client.cache) == 0

    def test_get_refused_without_state_change(self, client: SimClient) -> None:
        with pytest.raises(SimSessionError):
            client.get_datarefs(["a"], print)
        assert len(client.requests) == 0

    def test_register_refused_without_state_change(self, client: SimClient) -> None:
        with pytest.raises(SimSessionError):
            client.register_command_callback(GEAR, print)
        assert len(client.commands) == 0

    @pytest.mark.parametrize(
        ("operation", "args"),
        [
            ("set_dataref", ("a", "INT", 1)),
            ("move_to_airport", ("KSEA",)),
            ("command_once", (GEAR,)),
            ("dataref_subscribe", (print, 0.0, "a")),
        ],
    )
    def test_operations_raise(
        self, client: SimClient, operation: str, args: tuple[Any, ...]
    ) -> None:
        with pytest.raises(SimSessionError):
            getattr(client, operation)(*args)

    def test_refused_after_connection_lost(
        self,
        active_client: SimClient,
        transports: TransportRecorder,
        scheduler: ManualScheduler,
    ) -> None:
        transports.last.drop()
        scheduler.advance(5.0)
        with pytest.raises(SimSessionError):
            active_client.command_once(GEAR)


class TestOutbound:
    """Test the wire messages produced by public operations."""

    def test_set_dataref(
        self, active_client: SimClient, transports: TransportRecorder
    ) -> None:
        assert active_client.set_dataref(
            "sim/cockpit/autopilot/altitude", "FLOAT", 5000.0
        )
        assert transports.last.messages == [
            {
                "id": SESSION_ID,
                "command": "SET",
                "dataref": "sim/cockpit/autopilot/altitude",
                "data": "5000",
                "type": "FLOAT",
            }
        ]

    @pytest.mark.parametrize(
        ("given", "expected"),
        [
            ("INT", "INT_ARRAY"),
            ("FLOAT", "FLOAT_ARRAY"),
            ("INT_ARRAY", "INT_ARRAY"),
            ("FLOAT_ARRAY", "FLOAT_ARRAY"),
        ],
    )
    def test_set_array_dataref_type_mapping(
        self,
        active_client: SimClient,
        transports: TransportRecorder,
        given: str,
        expected: str,
    ) -> None:
        active_client.set_array_dataref("arr", given, (1, 2), offset=2)
        assert transports.last.messages == [
            {
                "id": SESSION_ID,
                "command": "ASET",
                "dataref": "arr",
                "type": expected,
                "data": [1, 2],
                "offset": 2,
            }
        ]

    @pytest.mark.parametrize("given", ["DOUBLE", "DATA", "int_array"])
    def test_set_array_dataref_rejects_type(
        self, active_client: SimClient, transports: TransportRecorder, given: str
    ) -> None:
        with pytest.raises(SimValueError):
            active_client.set_array_dataref("arr", given, [1])
        assert transports.last.sent == []

    def test_subscribe_default_precision(
        self, active_client: SimClient, transports: TransportRecorder
    ) -> None:
        subscription_id = active_client.subscribe(["a", "b"], print)
        assert transports.last.messages == [
            {
                "id": SESSION_ID,
                "command": "SUBSCRIBE",
                "data": ["a", "b"],
                "precision": 0.0,
            }
        ]
        assert active_client.dispatcher.subscriptions[0].id == subscription_id
        assert dict(active_client.cache) == {"a": 0, "b": 0}

    def test_subscribe_explicit_precision(
        self, active_client: SimClient, transports: TransportRecorder
    ) -> None:
        active_client.subscribe(["a"], print, precision=0.5)
        assert transports.last.messages[0]["precision"] == 0.5

    def test_dataref_subscribe_variadic(
        self, active_client: SimClient, transports: TransportRecorder
    ) -> None:
        active_client.dataref_subscribe(print, 0.25, "a", "b")
        assert transports.last.messages[0]["data"] == ["a", "b"]
        assert transports.last.messages[0]["precision"] == 0.01
        assert active_client.dispatcher.subscriptions[0].min_delta_time == 0.25

    def test_get_datarefs(
        self, active_client: SimClient, transports: TransportRecorder
    ) -> None:
        active_client.get_datarefs(iter(["a", "b"]), print)
        assert transports.last.messages == [
            {"id": SESSION_ID, "command": "GET_ONCE", "data": ["a", "b"]}
        ]
        assert len(active_client.requests) == 1

    def test_register_command_callback(
        self, active_client: SimClient, transports: TransportRecorder
    ) -> None:
        active_client.register_command_callback(GEAR, print)
        assert transports.last.messages == [
            {"id": SESSION_ID, "command": "REGISTER_CMD_CALLBACK", "data": GEAR}
        ]

    def test_move_to_airport(
        self, active_client: SimClient, transports: TransportRecorder
    ) -> None:
        active_client.move_to_airport("KSEA")
        assert transports.last.messages == [
            {"id": SESSION_ID, "command": "REPOSITION", "data": "KSEA"}
        ]

    def test_move_to_position(
        self, active_client: SimClient, transports: TransportRecorder
    ) -> None:
        active_client.move_to_position(47.5, -122.25, 90.0, 1500.0, 120.0, fast=True)
        assert transports.last.messages[0]["data"] == {
            "lat": 47.5,
            "lon": -122.25,
            "hdg": 90.0,
            "alt": 1500.0,
            "speed": 120.0,
            "fast": True,
        }

    def test_command_phases(
        self, active_client: SimClient, transports: TransportRecorder
    ) -> None:
        active_client.command_once(GEAR)
        active_client.command_begin(GEAR)
        active_client.command_end(GEAR)
        assert [m["type"] for m in transports.last.messages] == [0, 1, 2]
        assert {m["command"] for m in transports.last.messages} == {"RUN_COMMAND"}

    def test_command_for_duration(
        self,
        active_client: SimClient,
        transports: TransportRecorder,
        scheduler: ManualScheduler,
    ) -> None:
        active_client.command_for_duration(GEAR, 2.0)
        assert [m["type"] for m in transports.last.messages] == [1]
        scheduler.advance(2.0)
        assert [m["type"] for m in transports.last.messages] == [1, 2]

    @pytest.mark.parametrize("teardown", ["close", "reload"])
    def test_teardown_cancels_held_command(
        self,
        active_client: SimClient,
        transports: TransportRecorder,
        scheduler: ManualScheduler,
        teardown: str,
    ) -> None:
        held = transports.last
        active_client.command_for_duration(GEAR, 2.0)
        getattr(active_client, teardown)()
        assert scheduler.pending == 0

        scheduler.advance(2.0)
        assert [m["type"] for m in held.messages] == [1]

    def test_send_message_mapping(
        self, active_client: SimClient, transports: TransportRecorder
    ) -> None:
        assert active_client.send_message({"id": SESSION_ID, "command": "CUSTOM"})
        assert transports.last.messages == [{"id": SESSION_ID, "command": "CUSTOM"}]


class TestInbound:
    """Test routing of RES / COMMAND / ONCE to callbacks."""

    def test_cache_fallback(
        self, active_client: SimClient, transports: TransportRecorder
    ) -> None:
        calls, callback = recorder()
        active_client.subscribe(["a", "b"], callback)
        transports.last.receive({"type": "RES", "value": {"a": 5}})
        assert calls == [(5, 0)]

    def test_throttled_subscription_gates_later_ones(
        self,
        active_client: SimClient,
        transports: TransportRecorder,
        scheduler: ManualScheduler,
    ) -> None:
        s1_calls, s1 = recorder()
        s2_calls, s2 = recorder()
        s3_calls, s3 = recorder()
        active_client.subscribe(["a"], s1)
        active_client.subscribe(["a"], s2, min_delta_time=10.0)
        active_client.subscribe(["a"], s3)

        scheduler.advance(1.0)
        transports.last.receive({"type": "RES", "value": {"a": 1}})
        assert s1_calls == [(1,)]
        assert s2_calls == []
        assert s3_calls == []

        scheduler.advance(10.0)
        transports.last.receive({"type": "RES", "value": {"a": 2}})
        assert s1_calls == [(1,), (2,)]
        assert s2_calls == [(2,)]
        assert s3_calls == [(2,)]

    def test_once_fifo(
        self, active_client: SimClient, transports: TransportRecorder
    ) -> None:
        results: list[tuple[str, Any]] = []
        active_client.get_datarefs(["a"], lambda v: results.append(("first", v)))
        active_client.get_datarefs(["b"], lambda v: results.append(("second", v)))

        transports.last.receive({"type": "ONCE", "value": ["for b"]})
        transports.last.receive({"type": "ONCE", "value": ["for a"]})
        assert results == [("first", ["for b"]), ("second", ["for a"])]

    def test_unsolicited_once_dropped(
        self, active_client: SimClient, transports: TransportRecorder
    ) -> None:
        transports.last.receive({"type": "ONCE", "value": [1]})
        assert len(active_client.requests) == 0

    def test_command_fan_out(
        self, active_client: SimClient, transports: TransportRecorder
    ) -> None:
        calls: list[str] = []
        active_client.register_command_callback(
            "GEAR_TOGGLE", lambda: calls.append("a")
        )
        active_client.register_command_callback(
            "GEAR_TOGGLE", lambda: calls.append("b")
        )
        transports.last.receive({"type": "COMMAND", "value": "GEAR_TOGGLE"})
        assert sorted(calls) == ["a", "b"]

    def test_remove_command_callback(
        self, active_client: SimClient, transports: TransportRecorder
    ) -> None:
        calls: list[str] = []
        callback_id = active_client.register_command_callback(
            GEAR, lambda: calls.append("x")
        )
        active_client.remove_command_callback(GEAR, callback_id)
        transports.last.receive({"type": "COMMAND", "value": GEAR})
        assert calls == []
        with pytest.raises(KeyError):
            active_client.remove_command_callback(GEAR, callback_id)

    def test_independent_clients(
        self,
        settings: SimSettings,
        scheduler: ManualScheduler,
    ) -> None:
        first_transports = TransportRecorder()
        second_transports = TransportRecorder()
        first = SimClient(
            settings=settings,
            transport_factory=first_transports,
            scheduler=scheduler,
        )
        second = SimClient(
            settings=settings,
            transport_factory=second_transports,
            scheduler=scheduler,
        )
        for client, recorded in ((first, first_transports), (second, second_transports)):
            client.start()
            handshake(recorded.last)

        first.subscribe(["a"], print)
        first_transports.last.receive({"type": "RES", "value": {"a": 3}})
        assert dict(first.cache) == {"a": 3}
        assert dict(second.cache) == {}


class TestRedirect:
    """Test CHNGCONN at the client level."""

    def test_redirect_keeps_subscriptions_drops_commands(
        self,
        active_client: SimClient,
        transports: TransportRecorder,
        ready_calls: list[SimClient],
    ) -> None:
        calls, callback = recorder()
        active_client.subscribe(["a"], callback)
        active_client.register_command_callback(GEAR, print)
        active_client.get_datarefs(["a"], print)
        old = transports.last

        old.receive({"type": "CHNGCONN", "value": {"host": "10.0.0.2", "port": 9100}})
        assert old.closed
        assert active_client.endpoint == ("10.0.0.2", 9100)
        assert len(active_client.commands) == 0
        assert len(active_client.dispatcher) == 1
        assert len(active_client.requests) == 1
        assert not active_client.is_ready

        handshake(transports.last, "session-2")
        assert len(ready_calls) == 2
        transports.last.receive({"type": "RES", "value": {"a": 7}})
        assert calls == [(7,)]

    def test_redirect_without_port_ignored(
        self, active_client: SimClient, transports: TransportRecorder
    ) -> None:
        active_client.register_command_callback(GEAR, print)
        transports.last.receive({"type": "CHNGCONN", "value": {"host": "10.0.0.2"}})
        assert len(transports) == 1
        assert active_client.identifier == SESSION_ID
        assert len(active_client.commands) == 1


class TestReload:
    """Test the send-failure reload."""

    def test_send_failure_reloads_once(
        self,
        active_client: SimClient,
        transports: TransportRecorder,
        scheduler: ManualScheduler,
        ready_calls: list[SimClient],
    ) -> None:
        active_client.subscribe(["a"], print)
        transports.last.is_open = False

        assert not active_client.command_once(GEAR)
        assert not active_client.command_once(GEAR)
        assert len(transports) == 1

        scheduler.advance(5.0)
        assert len(transports) == 2
        assert transports.last.url == "ws://sim.test:9003"
        assert transports.transports[0].closed
        assert len(active_client.dispatcher) == 0
        assert len(active_client.cache) == 0

        handshake(transports.last, "session-2")
        assert len(ready_calls) == 2

    def test_reload_hook_replaces_default(
        self,
        settings: SimSettings,
        scheduler: ManualScheduler,
        transports: TransportRecorder,
    ) -> None:
        reloads: list[int] = []
        client = SimClient(
            settings=settings,
            transport_factory=transports,
            scheduler=scheduler,
            reload=lambda: reloads.append(1),
        )
        client.start()
        handshake(transports.last)
        transports.last.is_open = False
        client.command_once(GEAR)
        scheduler.advance(5.0)
        assert reloads == [1]
        assert len(transports) == 1

    def test_close_cancels_pending_reload(
        self,
        active_client: SimClient,
        transports: TransportRecorder,
        scheduler: ManualScheduler,
    ) -> None:
        transports.last.is_open = False
        active_client.command_once(GEAR)
        active_client.close()
        scheduler.advance(10.0)
        assert len(transports) == 1
        assert active_client.phase == SessionPhase.CLOSED


class TestEvents:
    """Test on() events and the loading monitor."""

    def test_unknown_event(self, client: SimClient) -> None:
        with pytest.raises(SimValueError):
            client.on("somethingElse", print)

    def test_connection_timeout(
        self, client: SimClient, transports: TransportRecorder
    ) -> None:
        errors: list[int] = []
        client.on("connectionTimeout", lambda: errors.append(1))
        client.start()
        transports.last.fail(OSError("refused"))
        assert errors == [1]

    def test_loading_state_changes(
        self,
        active_client: SimClient,
        transports: TransportRecorder,
        scheduler: ManualScheduler,
    ) -> None:
        states: list[bool] = []
        active_client.on(c.Events.LOADING_STATE_CHANGES, states.append)
        assert active_client.is_loading

        transports.last.receive({"type": "RES", "value": {"a": 1}})
        assert states == [False]
        scheduler.advance(2.0)
        transports.last.receive({"type": "RES", "value": {"a": 2}})
        scheduler.advance(2.0)
        assert states == [False]

        scheduler.advance(1.0)
        assert states == [False, True]
        assert active_client.is_loading

        transports.last.receive({"type": "COMMAND", "value": GEAR})
        assert states == [False, True, False]

    def test_loading_monitor_disabled(
        self, scheduler: ManualScheduler, transports: TransportRecorder
    ) -> None:
        client = SimClient(
            settings=SimSettings(loading_threshold=0, _env_file=None),
            transport_factory=transports,
            scheduler=scheduler,
        )
        states: list[bool] = []
        client.on(c.Events.LOADING_STATE_CHANGES, states.append)
        client.start()
        handshake(transports.last)
        transports.last.receive({"type": "RES", "value": {"a": 1}})
        scheduler.advance(10.0)
        assert states == []

    def test_failing_handler_isolated(
        self, active_client: SimClient, transports: TransportRecorder
    ) -> None:
        def broken(_loading: bool) -> None:
            raise RuntimeError("boom")

        calls, callback = recorder()
        active_client.on(c.Events.LOADING_STATE_CHANGES, broken)
        active_client.subscribe(["a"], callback)
        transports.last.receive({"type": "RES", "value": {"a": 1}})
        assert calls == [(1,)]


class TestEndpoint:
    """Test endpoint resolution."""

    @pytest.mark.parametrize(
        ("endpoint", "url"),
        [
            ("auto", "ws://sim.test:9003"),
            ("sim-pc", "ws://sim-pc:9003"),
            ("sim-pc:9100", "ws://sim-pc:9100"),
            ("ws://sim-pc:9100", "ws://sim-pc:9100"),
            ("192.168.1.20", "ws://192.168.1.20:9003"),
        ],
    )
    def test_first_url(
        self,
        settings: SimSettings,
        scheduler: ManualScheduler,
        transports: TransportRecorder,
        endpoint: str,
        url: str,
    ) -> None:
        client = SimClient(
            endpoint,
            settings=settings,
            transport_factory=transports,
            scheduler=scheduler,
        )
        client.start()
        assert transports.last.url == url

    @pytest.mark.parametrize(
        ("endpoint", "fallback"),
        [("sim-pc:9100", 9002), ("sim-pc:9002", 9003)],
    )
    def test_explicit_port_fallback(
        self,
        settings: SimSettings,
        scheduler: ManualScheduler,
        transports: TransportRecorder,
        endpoint: str,
        fallback: int,
    ) -> None:
        client = SimClient(
            endpoint,
            settings=settings,
            transport_factory=transports,
            scheduler=scheduler,
        )
        client.start()
        transports.last.drop()
        scheduler.advance(5.0)
        assert transports.last.url == f"ws://sim-pc:{fallback}"

    @pytest.mark.parametrize("endpoint", ["sim-pc:notaport", ":9003"])
    def test_invalid_endpoint(self, settings: SimSettings, endpoint: str) -> None:
        with pytest.raises(SimValueError):
            SimClient(endpoint, settings=settings)
