from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from backend import room_store
from constants import CORS_ORIGINS, LOG_FILE, LOG_LEVEL, ROOM_TTL_SECONDS, SWEEP_INTERVAL_SECONDS
from lifecycle import LifecycleSupervisor
from logging_config import get_logger, setup_logging
from manager import connection_manager
from routers.rooms import rooms_router
from schemas.rooms import HealthResponse
from session import ConnectionSession
from signaling import SignalingRouter

# Setup logging
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)

signaling_router = SignalingRouter(room_store, connection_manager)
supervisor = LifecycleSupervisor(room_store, signaling_router, ttl=ROOM_TTL_SECONDS, interval=SWEEP_INTERVAL_SECONDS)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await supervisor.start()
    try:
        yield
    finally:
        await supervisor.stop()


app = FastAPI(title="callrelay", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(rooms_router)

logger.info("FastAPI application initialized")


@app.get("/health", response_model=HealthResponse)
async def health():
    return HealthResponse(status="ok", rooms=len(room_store), connections=len(connection_manager))


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """Signaling channel. One session per connection; it lives until the socket closes."""
    session = ConnectionSession(websocket, room_store, signaling_router, connection_manager)
    await session.run()
