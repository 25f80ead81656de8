import asyncio
import json
from typing import Any, Callable, Dict, Optional, Protocol

from pydantic import ValidationError

from logging_config import get_logger
from registry import ConnectionRegistry
from schemas.events import (
    FanoutMessage,
    JoinChatEvent,
    LeaveChatEvent,
    ProtocolError,
    TypingEvent,
    UserTypingData,
    UserTypingEvent,
    parse_client_event,
)

logger = get_logger(__name__)

Sink = Callable[[str, Dict[str, Any]], None]


class Transport(Protocol):
    async def send_text(self, data: str) -> None: ...


class RoomRelay:
    """Routes join, leave and typing events between connections sharing a room.

    Every broadcast is fire-and-forget: delivery is attempted once to the
    connections that are members when the broadcast happens, and a failed
    send to one member never affects the others.

    The userId carried by a typing event is forwarded as given; it is not
    checked against whoever owns the sending connection.
    """

    def __init__(self, registry: Optional[ConnectionRegistry] = None, backend=None, sink: Optional[Sink] = None):
        self.registry = registry if registry is not None else ConnectionRegistry()
        self.backend = backend
        self.sink = sink
        self._transports: Dict[str, Transport] = {}

    def connect(self, connection_id: str, transport: Transport):
        self._transports[connection_id] = transport
        self.registry.on_connect(connection_id)
        logger.info(f"User connected: {connection_id}")
        self._notify("connect", connection_id=connection_id)

    def disconnect(self, connection_id: str):
        known = self._transports.pop(connection_id, None) is not None or connection_id in self.registry
        rooms = self.registry.on_disconnect(connection_id)
        if not known:
            return
        logger.info(f"User disconnected: {connection_id} (left {len(rooms)} room(s))")
        self._notify("disconnect", connection_id=connection_id, rooms=sorted(rooms))

    def join(self, connection_id: str, room_id: str):
        """Join a connected connection to the room. Ids without a live transport are ignored."""
        if connection_id not in self._transports:
            logger.debug(f"Ignoring join for unknown connection {connection_id}")
            return
        if self.registry.join(connection_id, room_id):
            logger.info(f"User {connection_id} joined conversation: {room_id}")
            self._notify("join", connection_id=connection_id, room_id=room_id)

    def leave(self, connection_id: str, room_id: str):
        if self.registry.leave(connection_id, room_id):
            logger.info(f"User {connection_id} left conversation: {room_id}")
            self._notify("leave", connection_id=connection_id, room_id=room_id)

    async def typing(self, connection_id: str, room_id: str, user_id: str, is_typing: bool) -> int:
        """Broadcast user-typing to every member of the room except the sender.

        Returns the number of local members a send was attempted to.
        """
        event = UserTypingEvent(data=UserTypingData(user_id=user_id, is_typing=is_typing))
        payload = event.model_dump(by_alias=True)

        if self.backend is not None:
            try:
                # Blocking redis call; keep it off the event loop
                await asyncio.get_running_loop().run_in_executor(
                    None, self.backend.publish_typing, room_id, connection_id, payload
                )
                return 0
            except Exception as e:
                logger.warning(f"Redis publish failed for room {room_id}, delivering locally: {e}")

        return await self.deliver(room_id, payload, exclude=connection_id)

    async def deliver(self, room_id: str, payload: dict, exclude: Optional[str] = None) -> int:
        """Send a frame to this instance's members of the room, skipping `exclude`."""
        targets = [
            (conn_id, self._transports[conn_id])
            for conn_id in self.registry.members(room_id)
            if conn_id != exclude and conn_id in self._transports
        ]
        if not targets:
            logger.debug(f"No recipients in room {room_id}")
            return 0

        frame = json.dumps(payload)
        results = await asyncio.gather(
            *(transport.send_text(frame) for _, transport in targets),
            return_exceptions=True,
        )
        for (conn_id, _), result in zip(targets, results):
            if isinstance(result, Exception):
                logger.warning(f"Error sending to connection {conn_id} in room {room_id}: {result}")
        logger.debug(f"Broadcasted {payload.get('event')} to {len(targets)} connection(s) in room {room_id}")
        return len(targets)

    async def dispatch(self, connection_id: str, raw: str) -> bool:
        """Handle one client frame. Malformed frames are logged and dropped."""
        try:
            event = parse_client_event(raw)
        except ProtocolError as e:
            logger.warning(f"Dropped frame from connection {connection_id}: {e}")
            return False

        if isinstance(event, JoinChatEvent):
            self.join(connection_id, event.data)
        elif isinstance(event, LeaveChatEvent):
            self.leave(connection_id, event.data)
        elif isinstance(event, TypingEvent):
            await self.typing(
                connection_id,
                event.data.conversation_id,
                event.data.user_id,
                event.data.is_typing,
            )
        return True

    def _notify(self, kind: str, **fields):
        if self.sink is None:
            return
        try:
            self.sink(kind, fields)
        except Exception as e:
            logger.error(f"Event sink failed for {kind} notification: {e}", exc_info=True)

    def close(self):
        for connection_id in list(self._transports):
            self.disconnect(connection_id)


async def handle_fanout_message(relay: RoomRelay, message: dict) -> int:
    """Deliver a typing frame received from Redis to local room members.

    Bodies that do not match FanoutMessage are logged and dropped.
    """
    try:
        body = FanoutMessage.model_validate_json(message["data"])
    except (KeyError, TypeError, ValidationError) as e:
        logger.error(f"Error parsing fan-out message from Redis: {e}")
        return 0
    return await relay.deliver(body.room_id, body.payload.model_dump(by_alias=True), exclude=body.origin)


async def listen_to_redis_channels(relay: RoomRelay):
    """Background task forwarding Redis typing broadcasts to local connections."""
    logger.info("Starting Redis pub/sub listener for room channels")
    pubsub = None
    try:
        pubsub = relay.backend.subscribe_to_rooms()
        loop = asyncio.get_running_loop()

        def get_message():
            """Blocking call to get next message from Redis pub/sub with timeout."""
            try:
                return pubsub.get_message(timeout=1.0, ignore_subscribe_messages=True)
            except Exception as e:
                logger.error(f"Error in pubsub.get_message(): {e}", exc_info=True)
                return None

        while True:
            message = await loop.run_in_executor(None, get_message)
            if message is None:
                continue
            if message.get("type") not in ("message", "pmessage"):
                continue
            try:
                await handle_fanout_message(relay, message)
            except Exception as e:
                logger.error(f"Error processing Redis message on {message.get('channel')}: {e}", exc_info=True)
    except asyncio.CancelledError:
        logger.info("Redis listener task cancelled")
        raise
    finally:
        if pubsub:
            try:
                pubsub.close()
            except Exception as e:
                logger.error(f"Error closing pub/sub: {e}")
