import random
import string
from datetime import datetime

from fastapi import APIRouter, HTTPException, Request

from backend import room_store
from constants import ROOM_CODE_LENGTH
from logging_config import get_logger
from schemas.rooms import RoomCodeResponse, RoomDetailsResponse

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/rooms", tags=["rooms"])

CODE_ALPHABET = string.ascii_uppercase + string.digits
MAX_CODE_ATTEMPTS = 100


def generate_room_code(length: int = ROOM_CODE_LENGTH) -> str:
    return "".join(random.choices(CODE_ALPHABET, k=length))


@rooms_router.post("/code", response_model=RoomCodeResponse)
async def new_room_code(request: Request):
    # The code is only a suggestion; create-room over the websocket is what claims it
    client_host = request.client.host if request.client else "unknown"
    for _ in range(MAX_CODE_ATTEMPTS):
        code = generate_room_code()
        if not room_store.exists(code):
            logger.debug(f"Suggested room code {code} to {client_host}")
            return RoomCodeResponse(code=code)
    logger.error(f"Could not find a free room code after {MAX_CODE_ATTEMPTS} attempts ({len(room_store)} rooms live)")
    raise HTTPException(status_code=503, detail="No free room code available")


@rooms_router.get("/{code}", response_model=RoomDetailsResponse)
async def get_room_details(code: str):
    """
    Get live room details. Codes are case-insensitive.

    Returns:
    - code: Normalized room code
    - state: created, joined or active
    - member_count / max_members
    - created_at / last_activity: ISO timestamps
    - is_full: Whether the room has reached capacity
    """
    room = room_store.get_room(code)
    if not room:
        logger.info(f"Room details failed: room {code} not found")
        raise HTTPException(status_code=404, detail="Room not found")

    member_count = len(room.members)
    return RoomDetailsResponse(
        code=room.code,
        state=room.state.value,
        member_count=member_count,
        max_members=room_store.max_members,
        created_at=datetime.fromtimestamp(room.created_at).isoformat(),
        last_activity=datetime.fromtimestamp(room.last_activity).isoformat(),
        is_full=member_count >= room_store.max_members,
    )
