"""
Backend Gateway client.

One short-lived WebSocket round trip per session: send ``locationInfo``,
wait for ``combinedData``, close.
"""

import asyncio
import logging
from typing import Optional

import websockets
from pydantic import ValidationError

from hinan.core.schema import CombinedData, Coordinate
from hinan.platform.messages import (
    MalformedMessageError,
    MessageType,
    encode_message,
    parse_message,
)

logger = logging.getLogger(__name__)


class BackendUnavailableError(RuntimeError):
    """The Backend could not be reached or did not answer usefully."""


class BackendGateway:
    """
    Fetches map and shelter data for a location.

    Parameters
    ----------
    url : str
        Backend WebSocket address, e.g. ``ws://localhost:3000``
    timeout : float, optional
        Upper bound on one fetch in seconds; None means no limit
    """

    def __init__(self, url: str, timeout: Optional[float] = None):
        if not url:
            raise ValueError("backend url is required")
        self.url = url
        self.timeout = timeout

    async def fetch(self, location: Coordinate) -> CombinedData:
        """
        Request combined map/shelter data for ``location``.

        Raises
        ------
        BackendUnavailableError
            On connection failure, early close, invalid response or timeout
        """
        try:
            if self.timeout is None:
                return await self._round_trip(location)
            return await asyncio.wait_for(self._round_trip(location), self.timeout)
        except asyncio.TimeoutError as exc:
            raise BackendUnavailableError(
                f"backend at {self.url} did not answer within {self.timeout}s"
            ) from exc
        except (OSError, websockets.exceptions.WebSocketException) as exc:
            raise BackendUnavailableError(f"backend at {self.url} unreachable: {exc}") from exc

    async def _round_trip(self, location: Coordinate) -> CombinedData:
        async with websockets.connect(self.url) as ws:
            await ws.send(encode_message(MessageType.LOCATION_INFO, location))
            logger.debug("locationInfo sent to %s", self.url)

            async for raw in ws:
                try:
                    envelope = parse_message(raw)
                except MalformedMessageError as exc:
                    logger.warning("Dropping backend frame: %s", exc)
                    continue

                if envelope.type != MessageType.COMBINED_DATA.value:
                    logger.info("Ignoring backend message type: %s", envelope.type)
                    continue

                try:
                    return CombinedData.model_validate(envelope.payload)
                except ValidationError as exc:
                    raise BackendUnavailableError(f"invalid combinedData payload: {exc}") from exc

        raise BackendUnavailableError("backend closed the connection before sending combinedData")
