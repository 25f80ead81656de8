import os

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 8000))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", None)

FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)

# Publish typing broadcasts through Redis so every instance sees them
REDIS_FANOUT = os.getenv("REDIS_FANOUT", "false").lower() in ("1", "true", "yes")
