"""
Coordinator Tests
=================

Session state mutators, the regeneration timer and the protocol engine,
driven through fake Agent and Backend connections.
"""

import asyncio

import pytest

from hinan.core.planner import plan_route
from hinan.core.schema import Coordinate
from hinan.coordinator import (
    EVAC_COMPLETE_TEXT,
    BackendUnavailableError,
    ProtocolEngine,
    RegenerationTimer,
    SessionPhase,
    SessionState,
)
from hinan.platform.messages import MessageType

from tests.conftest import FakeBackend, FakeTransport, frame


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def engine(transport, backend):
    """Engine whose timer never fires on its own; ticks are driven by hand."""
    return ProtocolEngine("session-under-test", transport, backend, regeneration_interval=3600)


async def _enter_routing(engine, start, shelter):
    await engine.handle_raw(frame("agentLocation", start))
    await engine.fetch_task
    await engine.handle_raw(frame("selectedShelter", shelter))
    assert engine.phase == SessionPhase.ROUTING


# ============================================================================
# SessionState
# ============================================================================


class TestSessionState:
    """Tests for the state mutators."""

    def test_defaults(self):
        state = SessionState()

        assert state.link_quality is True
        assert state.evacuation_active is True
        assert state.data_fetched is False
        assert state.regeneration_started is False
        assert state.current_route is None

    def test_fetch_requested_once(self, tokyo, shelter_15m):
        state = SessionState()

        assert state.record_agent_location(tokyo) is True
        assert state.record_agent_location(shelter_15m) is False
        assert state.record_agent_location(tokyo) is False
        assert state.data_fetched is True
        assert state.agent_location == tokyo

    def test_selection_plans_immediately(self, tokyo, shelter_900m):
        state = SessionState()
        state.record_agent_location(tokyo)

        route = state.record_shelter_selection(shelter_900m)

        assert len(route) == 90
        assert state.current_route == route
        [message] = state.drain()
        assert message.type == MessageType.ROUTE_DATA

    def test_selection_without_location_is_deferred(self, shelter_900m):
        state = SessionState()

        assert state.record_shelter_selection(shelter_900m) is None
        assert state.selected_shelter == shelter_900m
        assert state.evacuation_active is True
        assert state.drain() == []

    def test_empty_route_completes_in_same_step(self):
        state = SessionState()

        assert state.apply_route(()) is True
        assert state.evacuation_active is False
        assert [m.type for m in state.drain()] == [MessageType.ROUTE_DATA, MessageType.EVAC_COMPLETE]

    def test_completion_signalled_once(self):
        state = SessionState()
        state.apply_route(())
        state.drain()

        assert state.apply_route(()) is False
        assert state.drain() == []

    def test_no_regeneration_after_completion(self, tokyo, shelter_900m):
        state = SessionState()
        state.record_agent_location(tokyo)
        state.selected_shelter = shelter_900m
        state.apply_route(())
        state.drain()

        assert state.regenerate_route() is None
        assert state.current_route == ()
        assert state.drain() == []

    def test_route_is_replaced_not_mutated(self, tokyo, shelter_900m):
        state = SessionState()
        state.record_agent_location(tokyo)
        first = state.record_shelter_selection(shelter_900m)

        state.record_agent_location(first[10])
        second = state.regenerate_route()

        assert second is not first
        assert len(first) == 90
        assert second[-1].lat == pytest.approx(shelter_900m.lat)


# ============================================================================
# RegenerationTimer
# ============================================================================


class TestRegenerationTimer:
    """Tests for the scoped-cancellation timer."""

    @pytest.mark.asyncio
    async def test_ticks_until_cancelled(self):
        ticks = []

        async def tick():
            ticks.append(1)

        timer = RegenerationTimer(0.01, tick).start()
        await asyncio.sleep(0.08)
        timer.cancel()
        await timer.wait_closed()
        seen = len(ticks)
        await asyncio.sleep(0.05)

        assert seen >= 2
        assert len(ticks) == seen
        assert timer.running is False

    @pytest.mark.asyncio
    async def test_cancel_from_inside_callback(self):
        ticks = []
        finished = asyncio.Event()

        async def tick():
            ticks.append(1)
            timer.cancel()
            await asyncio.sleep(0)
            finished.set()

        timer = RegenerationTimer(0.01, tick).start()
        await asyncio.wait_for(finished.wait(), 1)
        await timer.wait_closed()
        await asyncio.sleep(0.05)

        assert ticks == [1]

    @pytest.mark.asyncio
    async def test_failing_tick_does_not_stop_timer(self):
        ticks = []

        async def tick():
            ticks.append(1)
            raise ValueError("boom")

        timer = RegenerationTimer(0.01, tick).start()
        await asyncio.sleep(0.06)
        timer.cancel()
        await timer.wait_closed()

        assert len(ticks) >= 2

    def test_rejects_non_positive_interval(self):
        async def tick():
            pass

        with pytest.raises(ValueError):
            RegenerationTimer(0, tick)

    @pytest.mark.asyncio
    async def test_cannot_start_twice(self):
        async def tick():
            pass

        timer = RegenerationTimer(10, tick).start()
        with pytest.raises(RuntimeError):
            timer.start()
        timer.cancel()
        await timer.wait_closed()


# ============================================================================
# ProtocolEngine
# ============================================================================


class TestProtocolEngine:
    """Tests for the session protocol."""

    @pytest.mark.asyncio
    async def test_scenario_a_shelters_forwarded(self, engine, transport, backend, tokyo):
        await engine.handle_raw(frame("agentLocation", tokyo))
        assert engine.phase == SessionPhase.AWAITING_SHELTER_DATA

        await engine.fetch_task

        assert backend.calls == [tokyo]
        assert engine.phase == SessionPhase.AWAITING_SHELTER_SELECTION
        [message] = transport.sent
        assert message["type"] == "sheltersData"
        assert len(message["payload"]) == 3
        assert {"id", "name", "lat", "lng"} <= set(message["payload"][0])

    @pytest.mark.asyncio
    async def test_scenario_b_route_to_shelter(self, engine, transport, tokyo, shelter_900m):
        await _enter_routing(engine, tokyo, shelter_900m)

        [route_message] = transport.of_type("routeData")
        assert len(route_message["payload"]) == 90
        assert route_message["payload"][-1]["lat"] == pytest.approx(shelter_900m.lat)
        assert route_message["payload"][-1]["lng"] == pytest.approx(shelter_900m.lng)
        assert engine.regeneration_running
        assert engine.state.regeneration_started is True

        engine.disconnect()

    @pytest.mark.asyncio
    async def test_scenario_c_selection_at_location_completes(self, engine, transport, tokyo, shelter_15m):
        await engine.handle_raw(frame("agentLocation", tokyo))
        await engine.fetch_task
        await engine.handle_raw(frame("selectedShelter", shelter_15m))

        assert transport.types() == ["sheltersData", "routeData", "evacComplete"]
        assert transport.sent[1]["payload"] == []
        assert transport.sent[2]["payload"] == EVAC_COMPLETE_TEXT
        assert transport.closed is not None
        assert engine.phase == SessionPhase.COMPLETE
        assert not engine.regeneration_running

    @pytest.mark.asyncio
    async def test_scenario_d_link_quality_gates_ticks(self, engine, transport, tokyo, shelter_900m):
        await _enter_routing(engine, tokyo, shelter_900m)
        route_before = engine.state.current_route
        sent_before = len(transport.sent)

        await engine.handle_raw(frame("signalStatus", False))
        await engine.regeneration_tick()

        assert len(transport.sent) == sent_before
        assert engine.state.current_route is route_before

        await engine.handle_raw(frame("signalStatus", True))
        await engine.regeneration_tick()

        assert len(transport.sent) == sent_before + 1
        assert transport.sent[-1]["type"] == "routeData"

        engine.disconnect()

    @pytest.mark.asyncio
    async def test_fetch_issued_at_most_once(self, transport, tokyo, shelter_15m):
        gate = asyncio.Event()
        backend = FakeBackend(gate=gate)
        engine = ProtocolEngine("s", transport, backend, regeneration_interval=3600)

        for i in range(5):
            await engine.handle_raw(frame("agentLocation", Coordinate(lat=tokyo.lat + i * 1e-5, lng=tokyo.lng)))
        await asyncio.sleep(0)

        assert len(backend.calls) == 1
        assert transport.sent == []
        # Later locations were still applied while the fetch was pending.
        assert engine.state.agent_location.lat == pytest.approx(tokyo.lat + 4e-5)

        gate.set()
        await engine.fetch_task
        await engine.handle_raw(frame("agentLocation", shelter_15m))

        assert len(backend.calls) == 1
        assert transport.types() == ["sheltersData"]

    @pytest.mark.asyncio
    async def test_location_while_routing_does_not_replan(self, engine, transport, tokyo, shelter_900m):
        await _enter_routing(engine, tokyo, shelter_900m)
        sent_before = len(transport.sent)
        moved = Coordinate(lat=tokyo.lat + 0.004, lng=tokyo.lng)

        await engine.handle_raw(frame("agentLocation", moved))

        assert len(transport.sent) == sent_before
        assert engine.state.agent_location == moved

        await engine.regeneration_tick()
        assert transport.sent[-1]["payload"] == [
            p.model_dump() for p in plan_route(moved, shelter_900m)
        ]

        engine.disconnect()

    @pytest.mark.asyncio
    async def test_tick_at_shelter_completes_once(self, engine, transport, tokyo, shelter_900m):
        await _enter_routing(engine, tokyo, shelter_900m)
        await engine.handle_raw(frame("agentLocation", shelter_900m))

        await engine.regeneration_tick()

        assert transport.types()[-2:] == ["routeData", "evacComplete"]
        assert transport.sent[-2]["payload"] == []
        assert engine.phase == SessionPhase.COMPLETE
        assert transport.closed == (1000, "evacuation complete")

        sent_after = len(transport.sent)
        await engine.regeneration_tick()
        await engine.handle_raw(frame("selectedShelter", tokyo))

        assert len(transport.sent) == sent_after
        assert transport.types().count("evacComplete") == 1

    @pytest.mark.asyncio
    async def test_timer_drives_regeneration(self, transport, backend, tokyo, shelter_900m):
        engine = ProtocolEngine("s", transport, backend, regeneration_interval=0.01)
        await _enter_routing(engine, tokyo, shelter_900m)

        await asyncio.sleep(0.08)
        assert len(transport.of_type("routeData")) >= 3

        engine.disconnect()
        sent = len(transport.sent)
        await asyncio.sleep(0.05)

        assert len(transport.sent) == sent
        assert not engine.regeneration_running

    @pytest.mark.asyncio
    async def test_timer_completes_session(self, transport, backend, tokyo, shelter_900m):
        engine = ProtocolEngine("s", transport, backend, regeneration_interval=0.01)
        await _enter_routing(engine, tokyo, shelter_900m)
        await engine.handle_raw(frame("agentLocation", shelter_900m))

        await asyncio.sleep(0.08)

        assert engine.phase == SessionPhase.COMPLETE
        assert transport.types().count("evacComplete") == 1
        assert transport.closed is not None
        assert not engine.regeneration_running

    @pytest.mark.asyncio
    async def test_timer_started_once(self, engine, transport, tokyo, shelter_900m):
        await _enter_routing(engine, tokyo, shelter_900m)
        timer = engine._timer

        other = Coordinate(lat=tokyo.lat - 0.005, lng=tokyo.lng)
        await engine.handle_raw(frame("selectedShelter", other))

        assert engine._timer is timer
        assert engine.state.selected_shelter == other
        assert len(transport.of_type("routeData")) == 2

        engine.disconnect()

    @pytest.mark.asyncio
    async def test_malformed_messages_are_dropped(self, engine, transport, tokyo):
        for raw in ("not json", '{"type": "bogus"}', '{"type": "signalStatus", "payload": "no"}', "[]"):
            await engine.handle_raw(raw)

        assert engine.phase == SessionPhase.AWAITING_FIRST_LOCATION
        assert engine.messages_in == 0
        assert transport.sent == []

        await engine.handle_raw(frame("agentLocation", tokyo))
        assert engine.phase == SessionPhase.AWAITING_SHELTER_DATA
        await engine.fetch_task

    @pytest.mark.asyncio
    async def test_non_finite_coordinates_are_dropped(self, engine, transport, tokyo):
        await engine.handle_raw(frame("agentLocation", tokyo))
        await engine.fetch_task

        await engine.handle_raw('{"type": "selectedShelter", "payload": {"lat": NaN, "lng": 139.767}}')
        await engine.handle_raw('{"type": "agentLocation", "payload": {"lat": "Infinity", "lng": 139.767}}')

        assert engine.phase == SessionPhase.AWAITING_SHELTER_SELECTION
        assert engine.messages_in == 1
        assert engine.state.agent_location == tokyo
        assert transport.types() == ["sheltersData"]

        engine.disconnect()

    @pytest.mark.asyncio
    async def test_signal_before_first_location_ignored(self, engine, transport):
        await engine.handle_raw(frame("signalStatus", False))

        assert engine.state.link_quality is True
        assert engine.phase == SessionPhase.AWAITING_FIRST_LOCATION

    @pytest.mark.asyncio
    async def test_completion_ack_is_accepted(self, engine, transport, tokyo):
        await engine.handle_raw(frame("evacComplete"))
        await engine.handle_raw(frame("evacComp"))

        assert engine.messages_in == 2
        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_backend_failure_stalls_session(self, transport, tokyo):
        backend = FakeBackend(error=BackendUnavailableError("backend down"))
        engine = ProtocolEngine("s", transport, backend, regeneration_interval=3600)

        await engine.handle_raw(frame("agentLocation", tokyo))
        await engine.fetch_task
        await engine.handle_raw(frame("agentLocation", tokyo))

        assert engine.phase == SessionPhase.AWAITING_SHELTER_DATA
        assert len(backend.calls) == 1
        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_disconnect_tears_down(self, engine, transport, tokyo, shelter_900m):
        await _enter_routing(engine, tokyo, shelter_900m)

        engine.disconnect()

        assert engine.phase == SessionPhase.DISCONNECTED
        assert engine.state is None
        assert not engine.regeneration_running

        sent = len(transport.sent)
        await engine.regeneration_tick()
        await engine.handle_raw(frame("agentLocation", tokyo))
        assert len(transport.sent) == sent

        snapshot = engine.snapshot()
        assert snapshot["phase"] == "disconnected"
        assert snapshot["route_length"] == 90

    @pytest.mark.asyncio
    async def test_disconnect_during_fetch(self, transport, tokyo):
        gate = asyncio.Event()
        engine = ProtocolEngine("s", transport, FakeBackend(gate=gate), regeneration_interval=3600)

        await engine.handle_raw(frame("agentLocation", tokyo))
        engine.disconnect()
        gate.set()
        await asyncio.sleep(0)

        assert engine.fetch_task.cancelled() or engine.fetch_task.done()
        assert transport.sent == []
        assert engine.phase == SessionPhase.DISCONNECTED

    @pytest.mark.asyncio
    async def test_send_failure_tears_down(self, backend, tokyo):
        transport = FakeTransport(fail_sends=True)
        engine = ProtocolEngine("s", transport, backend, regeneration_interval=3600)

        await engine.handle_raw(frame("agentLocation", tokyo))
        await engine.fetch_task

        assert engine.phase == SessionPhase.DISCONNECTED
        assert engine.state is None

    @pytest.mark.asyncio
    async def test_sessions_are_independent(self, backend, tokyo, shelter_900m, shelter_15m):
        first, second = FakeTransport(), FakeTransport()
        engine_a = ProtocolEngine("a", first, backend, regeneration_interval=3600)
        engine_b = ProtocolEngine("b", second, backend, regeneration_interval=3600)

        await engine_a.handle_raw(frame("agentLocation", tokyo))
        await engine_b.handle_raw(frame("agentLocation", tokyo))
        await asyncio.gather(engine_a.fetch_task, engine_b.fetch_task)
        await engine_a.handle_raw(frame("selectedShelter", shelter_15m))

        assert engine_a.phase == SessionPhase.COMPLETE
        assert engine_b.phase == SessionPhase.AWAITING_SHELTER_SELECTION
        assert len(backend.calls) == 2

        await engine_b.handle_raw(frame("selectedShelter", shelter_900m))
        assert engine_b.phase == SessionPhase.ROUTING
        engine_b.disconnect()
