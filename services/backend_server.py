"""
Hinan Backend Server
====================
FastAPI WebSocket service answering location lookups with map and shelter data.

Endpoints:
- WS / - Receives ``locationInfo``, replies ``combinedData``

Run: hinan-backend [PORT]
"""

import argparse
import logging
import random
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from hinan.core.schema import Coordinate
from hinan.platform import Settings, configure_logging
from hinan.platform.messages import MalformedMessageError, MessageType, encode_message, parse_message
from services.shelter_data import DEFAULT_SHELTER_COUNT, build_combined_data

logger = logging.getLogger(__name__)

DEFAULT_BACKEND_PORT = 3000


def create_backend_app(
    rng: Optional[random.Random] = None,
    shelter_count: int = DEFAULT_SHELTER_COUNT,
) -> FastAPI:
    """Build the Backend application."""
    app = FastAPI(title="Hinan Backend")
    rng = rng or random.Random()

    @app.websocket("/")
    async def backend_endpoint(websocket: WebSocket):
        """Answer each locationInfo on this connection."""
        await websocket.accept()
        logger.info("Client connected")

        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    envelope = parse_message(raw)
                except MalformedMessageError as exc:
                    logger.warning("Dropping malformed message: %s", exc)
                    continue

                if envelope.type != MessageType.LOCATION_INFO.value:
                    logger.info("Unknown message type: %s", envelope.type)
                    continue

                try:
                    location = Coordinate.model_validate(envelope.payload)
                except ValidationError:
                    logger.warning("Invalid locationInfo payload: %r", envelope.payload)
                    continue

                logger.info("locationInfo received: %r", location)
                data = build_combined_data(location, rng=rng, count=shelter_count)
                await websocket.send_text(encode_message(MessageType.COMBINED_DATA, data))
        except WebSocketDisconnect:
            logger.info("Client disconnected")

    return app


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Run the map/shelter Backend.")
    parser.add_argument(
        "port",
        type=int,
        nargs="?",
        default=DEFAULT_BACKEND_PORT,
        help="Port the Coordinator connects to.",
    )
    args = parser.parse_args(argv)

    try:
        settings = Settings.from_env()
    except ValueError as exc:
        parser.error(str(exc))
    configure_logging(settings.log_level)

    import uvicorn
    uvicorn.run(create_backend_app(), host="0.0.0.0", port=args.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
