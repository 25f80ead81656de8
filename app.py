from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from routers.rooms import rooms_router
from backend import RedisBackend
from registry import ConnectionRegistry
from relay import RoomRelay, listen_to_redis_channels
from schemas.events import ConnectedData, ConnectedEvent, encode_server_event
from schemas.rooms import HealthResponse
from constants import FRONTEND_URL, LOG_LEVEL, LOG_FILE, REDIS_FANOUT
from logging_config import get_logger, setup_logging
import asyncio
import uuid

# Setup logging
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)


def create_app(redis_fanout: bool = REDIS_FANOUT, backend=None, sink=None) -> FastAPI:
    """Build the relay application.

    The registry and relay are created in the lifespan handler and live on
    app.state for as long as the server runs. With redis_fanout enabled,
    typing broadcasts go through Redis pub/sub so members connected to other
    instances receive them too.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        fanout_backend = backend
        if fanout_backend is None and redis_fanout:
            fanout_backend = RedisBackend()

        relay = RoomRelay(ConnectionRegistry(), backend=fanout_backend, sink=sink)
        app.state.relay = relay

        listener = None
        if fanout_backend is not None:
            listener = asyncio.create_task(listen_to_redis_channels(relay))
            logger.info("Relay started with Redis fan-out")
        else:
            logger.info("Relay started in local-only mode")

        try:
            yield
        finally:
            if listener:
                listener.cancel()
                try:
                    await listener
                except asyncio.CancelledError:
                    pass
                except Exception as e:
                    logger.error(f"Redis listener had stopped with an error: {e}", exc_info=True)
            relay.close()
            if fanout_backend is not None and backend is None:
                fanout_backend.close()
            logger.info("Relay stopped")

    app = FastAPI(lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[FRONTEND_URL],
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.include_router(rooms_router)

    @app.get("/health", response_model=HealthResponse)
    async def health():
        registry = app.state.relay.registry
        return HealthResponse(status="ok", connections=registry.connection_count, rooms=registry.room_count)

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """Realtime relay connection.

        Frames are JSON objects {"event": ..., "data": ...}: join-chat and
        leave-chat carry a room id, typing carries conversationId, userId and
        isTyping. Frames are handled one at a time, in arrival order.
        """
        relay: RoomRelay = websocket.app.state.relay
        connection_id = str(uuid.uuid4())

        await websocket.accept()
        relay.connect(connection_id, websocket)
        try:
            await websocket.send_text(encode_server_event(
                ConnectedEvent(data=ConnectedData(connection_id=connection_id))
            ))
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    logger.debug(f"WebSocket disconnected normally for connection {connection_id}")
                    break
                data = message.get("text")
                if data is None:
                    logger.warning(f"Dropped binary frame from connection {connection_id}")
                    continue
                await relay.dispatch(connection_id, data)
        except WebSocketDisconnect:
            logger.debug(f"WebSocket disconnected normally for connection {connection_id}")
        except Exception as e:
            logger.error(f"WebSocket error for connection {connection_id}: {e}", exc_info=True)
        finally:
            relay.disconnect(connection_id)

    logger.info("FastAPI application initialized")
    return app


app = create_app()
