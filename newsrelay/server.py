"""
newsrelay: Notification Server
==============================

Carries bridge messages between display consumers and the engine.

Endpoints:
- GET /health   -> Registry status
- WS  /ws       -> Bidirectional JSON frames {"notification": ..., "payload": ...}
                   inbound:  ADD_FEED, REQUEST_QR_CODE
                   outbound: NEWS_ITEMS, NEWSFEED_ERROR, QR_CODE_IMAGE

Usage:
    uvicorn newsrelay.server:app
"""
from contextlib import asynccontextmanager
from typing import Any, Optional
import asyncio

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ValidationError

from .service import NewsRelayService, create_service
from .log import get_logger, setup_logging

logger = get_logger(__name__)


# =============================================================================
# WIRE MODELS
# =============================================================================

class InboundMessage(BaseModel):
    notification: str
    payload: Any = None


class HealthResponse(BaseModel):
    status: str
    sources: int
    running_timers: int
    subscribers: int


# =============================================================================
# APPLICATION
# =============================================================================

def create_app(service: Optional[NewsRelayService] = None) -> FastAPI:
    """
    Build the application.

    Without a service one is created from the configured settings at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        relay = service or create_service()
        setup_logging(relay.settings.log_level)

        app.state.service = relay
        await relay.start()
        try:
            yield
        finally:
            await relay.stop()
            app.state.service = None

    app = FastAPI(
        title="newsrelay",
        version="0.1.0",
        description="Shared feed polling for display consumers",
        lifespan=lifespan
    )
    app.state.service = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        """System status."""
        relay: Optional[NewsRelayService] = app.state.service
        if relay is None:
            raise HTTPException(status_code=503, detail="Relay not initialized")
        return HealthResponse(
            status="online",
            sources=len(relay.registry),
            running_timers=relay.registry.running_timers,
            subscribers=relay.bridge.subscriber_count
        )

    @app.websocket("/ws")
    async def notifications(websocket: WebSocket):
        relay: Optional[NewsRelayService] = app.state.service
        if relay is None:
            await websocket.close(code=1013)
            return

        queue = relay.bridge.subscribe()
        await websocket.accept()
        sender = asyncio.create_task(_forward_events(websocket, queue))

        try:
            while True:
                text = await websocket.receive_text()
                try:
                    message = InboundMessage.model_validate_json(text)
                except ValidationError as e:
                    logger.error("Rejected inbound frame: %s", e)
                    continue
                relay.bridge.submit_message(message.notification, message.payload)
        except WebSocketDisconnect:
            logger.debug("Consumer disconnected")
        finally:
            relay.bridge.unsubscribe(queue)
            sender.cancel()
            await asyncio.gather(sender, return_exceptions=True)

    return app


async def _forward_events(websocket: WebSocket, queue: asyncio.Queue) -> None:
    while True:
        event = await queue.get()
        await websocket.send_json(event.to_dict())


app = create_app()
