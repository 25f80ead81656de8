import json
from typing import Optional

import redis

from constants import REDIS_HOST, REDIS_PORT, REDIS_PASSWORD
from logging_config import get_logger
from redis_keys import REDIS_ROOM_CHANNEL, REDIS_ROOM_CHANNEL_PATTERN

logger = get_logger(__name__)


def create_redis_client() -> redis.Redis:
    client = redis.Redis(host=REDIS_HOST, port=REDIS_PORT, password=REDIS_PASSWORD, decode_responses=True)
    try:
        client.ping()
        logger.info(f"Redis client connected successfully to {REDIS_HOST}:{REDIS_PORT}")
    except Exception as e:
        logger.error(f"Failed to connect to Redis at {REDIS_HOST}:{REDIS_PORT}: {e}", exc_info=True)
        raise
    return client


class RedisBackend:
    """Redis pub/sub transport for typing broadcasts across instances.

    Membership never goes to Redis: each instance tracks its own
    connections and only forwards typing frames it receives on the room
    channels to its local members.
    """

    def __init__(self, redis_client: Optional[redis.Redis] = None, pubsub_client: Optional[redis.Redis] = None):
        self.redis_client = redis_client or create_redis_client()
        # Separate connection for pub/sub (required by Redis)
        self.pubsub_client = pubsub_client or (self.redis_client if redis_client else create_redis_client())
        logger.info("Initialized RedisBackend for typing fan-out")

    def get_room_channel_name(self, room_id: str) -> str:
        """Get the Redis pub/sub channel name for a room."""
        return REDIS_ROOM_CHANNEL.format(slug=room_id)

    def publish_typing(self, room_id: str, origin: str, payload: dict) -> int:
        """Publish a typing frame to the room's channel. Returns the subscriber count."""
        channel = self.get_room_channel_name(room_id)
        message_json = json.dumps({"room_id": room_id, "origin": origin, "payload": payload})
        subscribers = self.redis_client.publish(channel, message_json)
        logger.debug(f"Published typing to room {room_id} channel {channel}, {subscribers} subscribers")
        return subscribers

    def subscribe_to_rooms(self):
        """Create a pubsub subscriber for every room channel."""
        logger.debug(f"Subscribing to Redis channel pattern {REDIS_ROOM_CHANNEL_PATTERN}")
        pubsub = self.pubsub_client.pubsub()
        pubsub.psubscribe(REDIS_ROOM_CHANNEL_PATTERN)
        return pubsub

    def close(self):
        clients = [self.redis_client]
        if self.pubsub_client is not self.redis_client:
            clients.append(self.pubsub_client)
        for client in clients:
            try:
                client.close()
            except Exception as e:
                logger.warning(f"Error closing Redis client: {e}")
