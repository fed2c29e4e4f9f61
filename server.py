"""
Hinan Coordinator Server
========================
FastAPI server hosting the Coordinator ("vApp") for evacuation guidance.

Endpoints:
- WS / - Agent connection (one session per connection)
- GET /api/status - Open/closed session counts
- GET /api/sessions - Recent session summaries
- GET /api/sessions/{session_id} - One session summary

Run: hinan-coordinator PORT
"""

import argparse
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect

from hinan.coordinator import BackendGateway, ProtocolEngine
from hinan.coordinator.engine import ShelterDataSource
from hinan.platform import SessionRegistry, Settings, configure_logging

logger = logging.getLogger(__name__)


class AgentSocket:
    """Engine-facing view of the Agent WebSocket; a vanished peer surfaces as ConnectionError."""

    def __init__(self, websocket: WebSocket):
        self._websocket = websocket

    async def send_text(self, data: str) -> None:
        try:
            await self._websocket.send_text(data)
        except WebSocketDisconnect as exc:
            raise ConnectionError(f"agent went away (code {exc.code})") from exc

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None:
        await self._websocket.close(code=code, reason=reason)


def create_app(settings: Settings, backend: Optional[ShelterDataSource] = None) -> FastAPI:
    """
    Build the Coordinator application.

    Parameters
    ----------
    settings : Settings
        Runtime configuration
    backend : ShelterDataSource, optional
        Shelter data source; defaults to a BackendGateway on settings.backend_url
    """
    if backend is None:
        backend = BackendGateway(settings.backend_url, timeout=settings.backend_timeout)

    registry = SessionRegistry(max_closed=settings.max_closed_sessions)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """App startup and shutdown."""
        logger.info("Coordinator starting (backend %s)", settings.backend_url)
        yield
        logger.info("Coordinator shutting down with %d open sessions", registry.active_count)

    app = FastAPI(title="Hinan Coordinator", lifespan=lifespan)
    app.state.settings = settings
    app.state.registry = registry

    # ========================================================================
    # Agent WebSocket
    # ========================================================================

    @app.websocket("/")
    async def agent_endpoint(websocket: WebSocket):
        """One Agent session per connection."""
        await websocket.accept()

        session_id = registry.new_session_id()
        engine = ProtocolEngine(
            session_id,
            AgentSocket(websocket),
            backend,
            regeneration_interval=settings.regeneration_interval,
        )
        registry.register(session_id, engine)
        logger.info("Agent connected: %s (open: %d)", session_id[:8], registry.active_count)

        try:
            while not engine.phase.is_terminal:
                text = await websocket.receive_text()
                await engine.handle_raw(text)
        except WebSocketDisconnect:
            pass
        except RuntimeError as exc:
            # Starlette refuses to receive once the server side has closed.
            logger.debug("Receive loop ended for %s: %s", session_id[:8], exc)
        finally:
            engine.disconnect()
            registry.release(session_id)
            logger.info(
                "Agent disconnected: %s (%s, open: %d)",
                session_id[:8],
                engine.phase.value,
                registry.active_count,
            )

    # ========================================================================
    # Status API
    # ========================================================================

    @app.get("/api/status")
    async def get_status():
        """Current session counts."""
        return {
            "active_sessions": registry.active_count,
            "closed_sessions": registry.closed_count,
        }

    @app.get("/api/sessions")
    async def list_sessions(limit: int = 20):
        """List recent sessions, open ones first."""
        return {"sessions": registry.list_sessions(limit=limit)}

    @app.get("/api/sessions/{session_id}")
    async def get_session(session_id: str):
        """Summary for one session."""
        summary = registry.get_summary(session_id)
        if summary is None:
            raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")
        return summary

    return app


# ============================================================================
# Main
# ============================================================================

def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Run the evacuation Coordinator (vApp).")
    parser.add_argument("port", type=int, help="Port the Agent connects to.")
    args = parser.parse_args(argv)

    try:
        settings = Settings.from_env()
    except ValueError as exc:
        parser.error(str(exc))
    if not settings.backend_url:
        parser.error("HINAN_BACKEND_URL must name the Backend address")

    configure_logging(settings.log_level)

    import uvicorn
    uvicorn.run(create_app(settings), host="0.0.0.0", port=args.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
