"""
Coordinator Session State
=========================

The authoritative per-session record: where the Agent is, which shelter it
chose, the current route, link quality and whether evacuation is still
running.

Mutators never talk to the network. Anything that must reach the Agent is
appended to ``outbox`` and drained by the protocol engine.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Optional

from hinan.core.planner import plan_route
from hinan.core.schema import Coordinate, Route, Shelter
from hinan.platform.messages import MessageType

EVAC_COMPLETE_TEXT = "Evacuation completed."


@dataclass(frozen=True)
class OutboundMessage:
    """A message queued for the Agent."""

    type: MessageType
    payload: Any = None


@dataclass
class SessionState:
    """
    State owned by exactly one protocol engine.

    Attributes
    ----------
    agent_location : Coordinate, optional
        Last location reported by the Agent
    map_descriptor : Any
        Opaque map data from the Backend
    shelters : tuple[Shelter, ...], optional
        Shelter candidates from the Backend
    selected_shelter : Coordinate, optional
        Destination chosen by the Agent
    current_route : Route, optional
        Last route applied; replaced wholesale, never edited
    link_quality : bool
        Last link-quality sample (True = good)
    evacuation_active : bool
        False once an empty route has been applied
    data_fetched : bool
        Set when the one Backend fetch is issued
    regeneration_started : bool
        Set when the regeneration timer is started
    """

    agent_location: Optional[Coordinate] = None
    map_descriptor: Any = None
    shelters: Optional[tuple[Shelter, ...]] = None
    selected_shelter: Optional[Coordinate] = None
    current_route: Optional[Route] = None
    link_quality: bool = True
    evacuation_active: bool = True
    data_fetched: bool = False
    regeneration_started: bool = False
    outbox: deque = field(default_factory=deque)

    def record_agent_location(self, location: Coordinate) -> bool:
        """
        Store the Agent's location.

        Returns True exactly once per session: on the call that should issue
        the Backend fetch.
        """
        self.agent_location = location
        if self.data_fetched:
            return False
        self.data_fetched = True
        return True

    def record_shelter_data(self, map_descriptor: Any, shelters: tuple[Shelter, ...]) -> None:
        """Store the Backend response and queue it for the Agent."""
        self.map_descriptor = map_descriptor
        self.shelters = tuple(shelters)
        self.outbox.append(OutboundMessage(MessageType.SHELTERS_DATA, self.shelters))

    def record_shelter_selection(self, location: Coordinate) -> Optional[Route]:
        """
        Store the chosen shelter and plan a route to it immediately.

        Returns the applied route, or None when nothing was applied (no
        known agent location yet, or evacuation already complete).
        """
        self.selected_shelter = location
        if self.agent_location is None:
            return None
        route = plan_route(self.agent_location, self.selected_shelter)
        if not self.apply_route(route):
            return None
        return route

    def record_link_quality(self, good: bool) -> None:
        self.link_quality = good

    def regenerate_route(self) -> Optional[Route]:
        """
        Replan from the latest agent location to the selected shelter.

        Returns None when evacuation is over or an endpoint is missing.
        """
        if not self.evacuation_active:
            return None
        if self.agent_location is None or self.selected_shelter is None:
            return None
        route = plan_route(self.agent_location, self.selected_shelter)
        self.apply_route(route)
        return route

    def apply_route(self, route: Route) -> bool:
        """
        Replace the current route and queue it for the Agent.

        An empty route ends the evacuation in the same step and queues the
        completion notice. No-op (returns False) once evacuation is over.
        """
        if not self.evacuation_active:
            return False

        self.current_route = tuple(route)
        self.outbox.append(OutboundMessage(MessageType.ROUTE_DATA, self.current_route))

        if not self.current_route:
            self.evacuation_active = False
            self.outbox.append(OutboundMessage(MessageType.EVAC_COMPLETE, EVAC_COMPLETE_TEXT))
        return True

    def drain(self) -> list[OutboundMessage]:
        """Take everything queued so far."""
        messages = list(self.outbox)
        self.outbox.clear()
        return messages
