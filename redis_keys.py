REDIS_ROOM_CHANNEL = "room:channel:{slug}" # room id - pub/sub channel name
REDIS_ROOM_CHANNEL_PATTERN = "room:channel:*" # every room channel, for psubscribe

# **Typing fan-out message** (JSON published on `room:channel:{id}`)
# - `room_id` = conversation id
# - `origin` = connection id of the sender (excluded on delivery)
# - `payload` = `{"event": "user-typing", "data": {...}}` frame to forward
