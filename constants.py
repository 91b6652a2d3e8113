import os

MAX_MEMBERS = int(os.getenv("MAX_MEMBERS", 2))
ROOM_TTL_SECONDS = float(os.getenv("ROOM_TTL_SECONDS", 600))
SWEEP_INTERVAL_SECONDS = float(os.getenv("SWEEP_INTERVAL_SECONDS", ROOM_TTL_SECONDS / 60))
ROOM_CODE_LENGTH = int(os.getenv("ROOM_CODE_LENGTH", 6))

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 8000))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", None)

CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]
