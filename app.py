import asyncio
import os
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from auth import verify_connection_credential
from backend import MeetingBackend
from chat_relay import ChatRelay
from constants import ALLOWED_ORIGINS
from dispatcher import EventDispatcher
from errors import DuplicateConnection
from logging_config import get_logger, setup_logging
from room_lifecycle import RoomLifecycleController
from routers.meetings import meetings_router
from session_registry import SessionHandle, SessionRegistry
from signaling import SignalingRelay

# Setup logging
log_level = os.getenv("LOG_LEVEL", "INFO")
log_file = os.getenv("LOG_FILE", None)
setup_logging(log_level=log_level, log_file=log_file)
logger = get_logger(__name__)


async def pump_outbox(websocket: WebSocket, session: SessionHandle):
    """Write a session's queued events to its socket, in order."""
    while True:
        message = await session.outbox.get()
        try:
            await websocket.send_json(message)
        except Exception as e:
            logger.debug(f"Stopped sending to connection {session.connection_id}: {e}")
            return


async def websocket_endpoint(websocket: WebSocket, token: Optional[str] = None, display_name: Optional[str] = None):
    """Meeting WebSocket.

    Query parameters:
    - token: Optional JWT; connections without a valid one join as guests
    - display_name: Name shown for guest connections
    """
    state = websocket.app.state
    identity = verify_connection_credential(token, display_name)
    connection_id = str(uuid.uuid4())

    await websocket.accept()
    try:
        session = state.registry.register(connection_id, identity)
    except DuplicateConnection as e:
        logger.error(f"Refusing connection: {e}")
        await websocket.close(code=1011)
        return
    logger.info(f"{identity.name} connected: {connection_id} (guest={identity.is_guest})")

    sender = asyncio.create_task(pump_outbox(websocket, session))
    try:
        while True:
            data = await websocket.receive_text()
            await state.dispatcher.dispatch(connection_id, data)
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected normally for connection {connection_id}")
    except Exception as e:
        logger.error(f"WebSocket error for connection {connection_id}: {e}", exc_info=True)
    finally:
        state.controller.handle_disconnect(connection_id)
        sender.cancel()
        try:
            await sender
        except asyncio.CancelledError:
            pass


def create_app(backend: Optional[MeetingBackend] = None) -> FastAPI:
    backend = backend or MeetingBackend()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting meeting coordinator")
        try:
            await backend.ping()
            logger.info("Meeting store reachable")
        except Exception as e:
            logger.error(f"Meeting store unreachable: {e}", exc_info=True)
            raise
        yield
        logger.info("Shutting down meeting coordinator")
        try:
            await backend.close()
        except Exception as e:
            logger.warning(f"Error closing meeting store client: {e}")

    app = FastAPI(title="Meeting Coordinator", version="1.0.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    registry = SessionRegistry()
    controller = RoomLifecycleController(registry, backend)
    app.state.backend = backend
    app.state.registry = registry
    app.state.controller = controller
    app.state.dispatcher = EventDispatcher(registry, controller, SignalingRelay(registry), ChatRelay(registry))

    app.include_router(meetings_router)
    app.add_api_websocket_route("/ws", websocket_endpoint)

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "connections": len(registry.sessions),
            "rooms": len(registry.rooms),
        }

    logger.info("FastAPI application initialized")
    return app


app = create_app()
