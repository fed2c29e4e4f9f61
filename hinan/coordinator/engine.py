"""
Coordinator Protocol Engine
===========================

Per-session message dispatcher and regeneration loop.

Session phases:

    AWAITING_FIRST_LOCATION -> AWAITING_SHELTER_DATA -> AWAITING_SHELTER_SELECTION
        -> ROUTING -> COMPLETE
    (any non-terminal phase) -> DISCONNECTED

Two sources touch the session: inbound Agent messages (in arrival order) and
the regeneration timer. Both run under one asyncio.Lock. The Backend fetch is
the only long suspension and runs in its own task without holding the lock,
so location updates keep flowing while it is in flight.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Optional, Protocol

from hinan.core.schema import CombinedData, Coordinate
from hinan.coordinator.gateway import BackendUnavailableError
from hinan.coordinator.state import SessionState
from hinan.coordinator.timer import RegenerationTimer
from hinan.platform.messages import (
    MalformedMessageError,
    MessageType,
    decode_agent_message,
    encode_message,
)

logger = logging.getLogger(__name__)


class SessionPhase(str, Enum):
    """Where a session is in the evacuation protocol."""

    AWAITING_FIRST_LOCATION = "awaiting_first_location"
    AWAITING_SHELTER_DATA = "awaiting_shelter_data"
    AWAITING_SHELTER_SELECTION = "awaiting_shelter_selection"
    ROUTING = "routing"
    COMPLETE = "complete"
    DISCONNECTED = "disconnected"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionPhase.COMPLETE, SessionPhase.DISCONNECTED)


class AgentTransport(Protocol):
    """The connection to the Agent. Send failures raise OSError or RuntimeError."""

    async def send_text(self, data: str) -> None: ...

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None: ...


class ShelterDataSource(Protocol):
    """Anything that can answer a location with map and shelter data."""

    async def fetch(self, location: Coordinate) -> CombinedData: ...


class ProtocolEngine:
    """
    Drives one Agent session.

    Example
    -------
    ```python
    engine = ProtocolEngine(session_id, AgentSocket(websocket), BackendGateway(url))
    async for text in websocket.iter_text():
        await engine.handle_raw(text)
    engine.disconnect()
    ```
    """

    def __init__(
        self,
        session_id: str,
        transport: AgentTransport,
        backend: ShelterDataSource,
        regeneration_interval: float = 10.0,
    ):
        self.session_id = session_id
        self.phase = SessionPhase.AWAITING_FIRST_LOCATION
        self.messages_in = 0
        self.messages_out = 0

        self._transport = transport
        self._backend = backend
        self._regeneration_interval = regeneration_interval
        self._state: Optional[SessionState] = SessionState()
        self._lock = asyncio.Lock()
        self._timer: Optional[RegenerationTimer] = None
        self._fetch_task: Optional[asyncio.Task] = None
        self._retained: dict[str, Any] = {"route_length": None, "link_quality": None}

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> Optional[SessionState]:
        """Live session state; None once the session is torn down."""
        return self._state

    @property
    def fetch_task(self) -> Optional[asyncio.Task]:
        """The in-flight (or finished) Backend fetch, if one was issued."""
        return self._fetch_task

    @property
    def regeneration_running(self) -> bool:
        return self._timer is not None and self._timer.running

    def snapshot(self) -> dict[str, Any]:
        """Summary fields for the session registry."""
        state = self._state
        if state is None:
            return {
                "phase": self.phase.value,
                "messages_in": self.messages_in,
                "messages_out": self.messages_out,
                **self._retained,
            }
        route = state.current_route
        return {
            "phase": self.phase.value,
            "messages_in": self.messages_in,
            "messages_out": self.messages_out,
            "route_length": len(route) if route is not None else None,
            "link_quality": state.link_quality,
        }

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def handle_raw(self, raw: str | bytes) -> None:
        """
        Handle one frame from the Agent.

        Malformed frames are logged and dropped; they never change state.
        """
        try:
            envelope = decode_agent_message(raw)
        except MalformedMessageError as exc:
            logger.warning("[%s] Dropping malformed message: %s", self.session_id[:8], exc)
            return

        self.messages_in += 1
        async with self._lock:
            if self.phase.is_terminal or self._state is None:
                logger.debug("[%s] Ignoring %s after %s", self.session_id[:8], envelope.type, self.phase.value)
                return
            await self._dispatch(MessageType(envelope.type), envelope.payload)

    async def _dispatch(self, tag: MessageType, payload: Any) -> None:
        state = self._state

        if tag == MessageType.AGENT_LOCATION:
            if state.record_agent_location(payload):
                self._set_phase(SessionPhase.AWAITING_SHELTER_DATA)
                self._fetch_task = asyncio.get_running_loop().create_task(
                    self._fetch_shelter_data(payload),
                    name=f"fetch-{self.session_id[:8]}",
                )
            # While routing, location only feeds the next timer tick.

        elif tag == MessageType.SELECTED_SHELTER:
            logger.info("[%s] Shelter selected: %r", self.session_id[:8], payload)
            route = state.record_shelter_selection(payload)
            if route is None:
                logger.info("[%s] No agent location yet; route deferred", self.session_id[:8])
            elif route:
                self._set_phase(SessionPhase.ROUTING)
                self._start_regeneration()
            await self._flush()

        elif tag == MessageType.SIGNAL_STATUS:
            if state.agent_location is None:
                logger.debug("[%s] Signal status before first location ignored", self.session_id[:8])
                return
            state.record_link_quality(payload)
            logger.debug("[%s] Link quality: %s", self.session_id[:8], "good" if payload else "bad")

        elif tag == MessageType.EVAC_COMPLETE:
            logger.info("[%s] Agent acknowledged completion", self.session_id[:8])

    # ------------------------------------------------------------------
    # Backend fetch
    # ------------------------------------------------------------------

    async def _fetch_shelter_data(self, location: Coordinate) -> None:
        try:
            data = await self._backend.fetch(location)
        except BackendUnavailableError as exc:
            # No retry: the session stays in AWAITING_SHELTER_DATA.
            logger.error("[%s] Backend fetch failed: %s", self.session_id[:8], exc)
            return

        async with self._lock:
            if self.phase.is_terminal or self._state is None:
                return
            self._state.record_shelter_data(data.map, data.shelters)
            if self.phase == SessionPhase.AWAITING_SHELTER_DATA:
                self._set_phase(SessionPhase.AWAITING_SHELTER_SELECTION)
            logger.info("[%s] Received %d shelters", self.session_id[:8], len(data.shelters))
            await self._flush()

    # ------------------------------------------------------------------
    # Regeneration
    # ------------------------------------------------------------------

    def _start_regeneration(self) -> None:
        state = self._state
        if state.regeneration_started:
            return
        state.regeneration_started = True
        self._timer = RegenerationTimer(
            self._regeneration_interval,
            self.regeneration_tick,
            name=f"regen-{self.session_id[:8]}",
        ).start()
        logger.info("[%s] Route regeneration every %.1fs", self.session_id[:8], self._regeneration_interval)

    async def regeneration_tick(self) -> None:
        """
        One regeneration cycle.

        With a bad link the cycle is dropped: no message, no state change.
        """
        async with self._lock:
            state = self._state
            if self.phase.is_terminal or state is None or not state.evacuation_active:
                return
            if not state.link_quality:
                logger.info("[%s] Link quality bad; skipping route generation", self.session_id[:8])
                return

            route = state.regenerate_route()
            if route is not None:
                logger.debug("[%s] Regenerated route: %d steps", self.session_id[:8], len(route))
            await self._flush()

    # ------------------------------------------------------------------
    # Outbound / teardown
    # ------------------------------------------------------------------

    async def _flush(self) -> None:
        """Send queued messages; finish the session if evacuation ended."""
        state = self._state
        for message in state.drain():
            try:
                await self._transport.send_text(encode_message(message.type, message.payload))
            except (RuntimeError, OSError) as exc:
                logger.warning("[%s] Send failed, tearing down: %s", self.session_id[:8], exc)
                self.disconnect()
                return
            self.messages_out += 1
            logger.debug("[%s] Sent %s", self.session_id[:8], message.type.value)

        if not state.evacuation_active and self.phase != SessionPhase.COMPLETE:
            await self._complete()

    async def _complete(self) -> None:
        logger.info("[%s] Evacuation completed", self.session_id[:8])
        self._set_phase(SessionPhase.COMPLETE)
        self._teardown()
        try:
            await self._transport.close(code=1000, reason="evacuation complete")
        except (RuntimeError, OSError) as exc:
            logger.debug("[%s] Close after completion failed: %s", self.session_id[:8], exc)

    def disconnect(self) -> None:
        """
        The connection is gone: stop the timer and discard session state.

        Synchronous so the caller's teardown cannot interleave with a tick.
        """
        if not self.phase.is_terminal:
            self._set_phase(SessionPhase.DISCONNECTED)
        self._teardown()

    def _teardown(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        if self._fetch_task is not None and not self._fetch_task.done():
            if self._fetch_task is not asyncio.current_task():
                self._fetch_task.cancel()
        if self._state is not None:
            snapshot = self.snapshot()
            self._retained = {
                "route_length": snapshot["route_length"],
                "link_quality": snapshot["link_quality"],
            }
        self._state = None

    def _set_phase(self, phase: SessionPhase) -> None:
        if phase != self.phase:
            logger.info("[%s] %s -> %s", self.session_id[:8], self.phase.value, phase.value)
            self.phase = phase
