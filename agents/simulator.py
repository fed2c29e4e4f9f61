"""
Agent Simulator
===============
Stand-in for the robot or person being guided to a shelter.

Behaviour:
1. On connect, report a location near Tokyo Station
2. On ``sheltersData``, pick one shelter at random and report it
3. On ``routeData``, restart traversal from the route's first waypoint
4. Every step, advance one waypoint (only while its own link is good) and
   report the location
5. After the first route, report a link-quality sample periodically
6. On ``evacComplete``, stop and disconnect

Run: hinan-agent PORT
"""

import argparse
import asyncio
import logging
import random
from typing import Callable, List, Optional

import websockets
from pydantic import TypeAdapter, ValidationError

from hinan.core.schema import Coordinate, Route, Shelter
from hinan.platform import Settings, configure_logging
from hinan.platform.messages import MalformedMessageError, MessageType, encode_message, parse_message

logger = logging.getLogger(__name__)

HOME_LOCATION = Coordinate(lat=35.68, lng=139.767)
LOCATION_JITTER_DEG = 0.01

_SHELTERS = TypeAdapter(List[Shelter])
_ROUTE = TypeAdapter(Route)


class AgentSimulator:
    """
    Protocol logic of the Agent, separated from its socket.

    Each handler returns the text frames to send; ``run()`` does the I/O.

    Parameters
    ----------
    rng : random.Random, optional
        Random source for location, shelter choice and link samples
    step_interval : float
        Seconds between traversal steps
    signal_interval : float
        Seconds between link-quality samples
    bad_signal_probability : float
        Chance that a sample reports a bad link
    """

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        step_interval: float = 5.0,
        signal_interval: float = 7.0,
        bad_signal_probability: float = 0.2,
    ):
        self.rng = rng or random.Random()
        self.step_interval = step_interval
        self.signal_interval = signal_interval
        self.bad_signal_probability = bad_signal_probability

        self.location: Optional[Coordinate] = None
        self.selected_shelter: Optional[Shelter] = None
        self.route: Route = ()
        self.step_index = 0
        self.signal_status = True
        self.route_received = False
        self.complete = False

    # ------------------------------------------------------------------
    # Protocol
    # ------------------------------------------------------------------

    def initial_location(self) -> str:
        """Pick a starting location and return the frame reporting it."""
        self.location = Coordinate(
            lat=HOME_LOCATION.lat + (self.rng.random() - 0.5) * LOCATION_JITTER_DEG,
            lng=HOME_LOCATION.lng + (self.rng.random() - 0.5) * LOCATION_JITTER_DEG,
        )
        return self._location_frame()

    def handle_message(self, raw: str) -> list[str]:
        """React to one Coordinator frame; return frames to send back."""
        try:
            envelope = parse_message(raw)
        except MalformedMessageError as exc:
            logger.warning("Dropping malformed message: %s", exc)
            return []

        if envelope.type == MessageType.SHELTERS_DATA.value:
            return self._on_shelters(envelope.payload)
        if envelope.type == MessageType.ROUTE_DATA.value:
            self._on_route(envelope.payload)
            return []
        if envelope.type == MessageType.EVAC_COMPLETE.value:
            logger.info("Evacuation complete: %s", envelope.payload)
            self.complete = True
            return []

        logger.info("Unknown message type: %s", envelope.type)
        return []

    def _on_shelters(self, payload) -> list[str]:
        try:
            shelters = _SHELTERS.validate_python(payload)
        except ValidationError:
            logger.warning("Invalid sheltersData payload: %r", payload)
            return []
        if not shelters:
            logger.info("There are no shelters")
            return []

        self.selected_shelter = self.rng.choice(shelters)
        logger.info("Chose shelter: %s", self.selected_shelter.name)
        return [encode_message(MessageType.SELECTED_SHELTER, self.selected_shelter.location)]

    def _on_route(self, payload) -> None:
        try:
            route = _ROUTE.validate_python(payload)
        except ValidationError:
            logger.warning("Invalid routeData payload: %r", payload)
            return
        self.route = route
        self.step_index = 0
        self.route_received = True
        logger.info("Received route: %d steps", len(route))

    def step(self) -> str:
        """Advance one waypoint if the link allows, and report the location."""
        if self.step_index < len(self.route):
            if self.signal_status:
                self.location = self.route[self.step_index]
                self.step_index += 1
        else:
            logger.debug("Reached end of route")
        return self._location_frame()

    def sample_signal(self) -> str:
        """Draw a link-quality sample and return the frame reporting it."""
        self.signal_status = self.rng.random() > self.bad_signal_probability
        return encode_message(MessageType.SIGNAL_STATUS, self.signal_status)

    def _location_frame(self) -> str:
        return encode_message(MessageType.AGENT_LOCATION, self.location)

    # ------------------------------------------------------------------
    # I/O
    # ------------------------------------------------------------------

    async def run(self, url: str) -> None:
        """Connect to the Coordinator and play the protocol until completion or close."""
        async with websockets.connect(url) as ws:
            logger.info("Connected to %s", url)
            await ws.send(self.initial_location())

            loops: list[asyncio.Task] = []
            try:
                async for raw in ws:
                    for frame in self.handle_message(raw):
                        await ws.send(frame)
                    if self.complete:
                        break
                    if self.route_received and not loops:
                        loops = [
                            asyncio.create_task(self._every(ws, self.step_interval, self.step)),
                            asyncio.create_task(self._every(ws, self.signal_interval, self.sample_signal)),
                        ]
            finally:
                for task in loops:
                    task.cancel()
                await asyncio.gather(*loops, return_exceptions=True)
        logger.info("Disconnected from %s", url)

    async def _every(self, ws, interval: float, produce: Callable[[], str]) -> None:
        while not self.complete:
            await asyncio.sleep(interval)
            try:
                await ws.send(produce())
            except websockets.exceptions.ConnectionClosed:
                return


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Run the evacuating Agent simulator.")
    parser.add_argument("port", type=int, help="Coordinator port to connect to.")
    args = parser.parse_args(argv)

    try:
        settings = Settings.from_env()
    except ValueError as exc:
        parser.error(str(exc))
    configure_logging(settings.log_level)

    url = f"ws://{settings.coordinator_host}:{args.port}"
    try:
        asyncio.run(AgentSimulator().run(url))
    except OSError as exc:
        parser.exit(1, f"cannot reach coordinator at {url}: {exc}\n")


if __name__ == "__main__":
    main()
