"""
FastAPI Application - Push channel and operator endpoints.

Endpoints:
    GET    /                    Service info
    GET    /health              Health check
    GET    /api/v1/session      Snapshot of the current session
    DELETE /api/v1/session      Tear the current session down
    WS     /ws                  Spectator channel
    WS     /ws/{mode}           Spectator channel that selects a mode on connect

WebSocket protocol:
    Server -> client: {"type": ..., "payload": ...}
        frame_update, game_state, arm_status, cards_hidden,
        message, game_over, error
    Client -> server: {"mode": "color" | "object"}

Closing the socket with code 1000 as the session owner resets the game.
Any other disconnect leaves the game running for reattachment.
"""

from contextlib import asynccontextmanager
import logging
from typing import Optional, Union

from fastapi import FastAPI, WebSocket, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..engine_core.state import GameMode
from .service import GameService
from .schemas import (
    ErrorCode,
    ErrorResponse,
    HealthResponse,
    SessionSnapshotResponse,
    TeardownResponse,
)

logger = logging.getLogger(__name__)

ABNORMAL_CLOSURE = 1006


def create_app(service: Optional[GameService] = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        service: Optional GameService instance (creates one from the
            environment if not provided)

    Returns:
        FastAPI application instance
    """
    api_service = service or GameService()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await api_service.shutdown()

    app = FastAPI(
        title="Flipmatch Engine API",
        description="Robot memory-matching game engine.",
        version=__version__,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        lifespan=lifespan,
    )
    app.state.service = api_service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=api_service.config.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # =========================================================================
    # Error helpers
    # =========================================================================

    def make_error_response(
        error_code: ErrorCode,
        message: str,
        status_code: int = 400,
        details: Optional[dict] = None,
    ) -> JSONResponse:
        """Create a standardized error response."""
        return JSONResponse(
            status_code=status_code,
            content=ErrorResponse(
                error=message,
                error_code=error_code,
                details=details,
            ).model_dump(),
        )

    # =========================================================================
    # Session Endpoints
    # =========================================================================

    @app.get(
        "/api/v1/session",
        response_model=SessionSnapshotResponse,
        responses={404: {"model": ErrorResponse}},
        tags=["Session"],
        summary="Get the current session",
    )
    async def get_session() -> Union[SessionSnapshotResponse, JSONResponse]:
        snapshot = api_service.snapshot()
        if snapshot is None:
            return make_error_response(
                ErrorCode.SESSION_NOT_FOUND,
                "No game session is running",
                status_code=404,
            )
        return snapshot

    @app.delete(
        "/api/v1/session",
        response_model=TeardownResponse,
        responses={404: {"model": ErrorResponse}},
        tags=["Session"],
        summary="End the current session",
    )
    async def end_session(
        reason: str = Query("user_ended", description="Reason for ending"),
    ) -> Union[TeardownResponse, JSONResponse]:
        """Stop the loop, park the arm, and acknowledge."""
        response = await api_service.teardown(reason)
        if not response.success:
            return make_error_response(
                ErrorCode.SESSION_NOT_FOUND,
                "No game session is running",
                status_code=404,
            )
        return response

    # =========================================================================
    # WebSocket Endpoints
    # =========================================================================

    async def serve_subscriber(websocket: WebSocket, mode: Optional[str] = None) -> None:
        broadcaster = api_service.broadcaster
        await websocket.accept()
        subscriber = await broadcaster.connect(websocket)
        close_code = ABNORMAL_CLOSURE
        try:
            if mode is not None:
                try:
                    await broadcaster.select_mode(subscriber, GameMode.parse(mode))
                except ValueError as e:
                    logger.warning("Ignoring unknown mode in path: %s", e)
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    close_code = message.get("code", ABNORMAL_CLOSURE)
                    break
                text = message.get("text")
                if text is None:
                    logger.warning("Ignoring non-text frame from subscriber %d", subscriber.subscriber_id)
                    continue
                await broadcaster.handle_inbound(subscriber, text)
        finally:
            await broadcaster.disconnect(subscriber, close_code)

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """Spectator channel. Send {"mode": ...} to start a game."""
        await serve_subscriber(websocket)

    @app.websocket("/ws/{mode}")
    async def websocket_mode_endpoint(websocket: WebSocket, mode: str):
        """Spectator channel that selects mode on connect."""
        await serve_subscriber(websocket, mode)

    # =========================================================================
    # Health Check
    # =========================================================================

    @app.get(
        "/health",
        response_model=HealthResponse,
        tags=["System"],
        summary="Health check",
    )
    async def health_check() -> HealthResponse:
        """Health check endpoint for load balancers."""
        return HealthResponse(version=__version__)

    @app.get("/", tags=["System"])
    async def root():
        """Root endpoint with API info."""
        return {
            "name": "Flipmatch Engine API",
            "version": __version__,
            "docs": "/api/docs",
            "health": "/health",
            "websocket": "/ws",
        }

    return app
