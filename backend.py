import asyncio
import copy
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from constants import MAX_MEMBERS
from errors import AlreadyInRoom, RoomAlreadyExists, RoomFull, RoomNotFound
from logging_config import get_logger

logger = get_logger(__name__)

STATUS_FIELDS = ("muted", "speaker_off")


def normalize_code(code: str) -> str:
    """Room codes compare case-insensitively, so they are stored upper-cased."""
    return code.strip().upper()


class RoomState(str, Enum):
    CREATED = "created"
    JOINED = "joined"
    ACTIVE = "active"


@dataclass
class MediaStatus:
    muted: bool = False
    speaker_off: bool = False


@dataclass
class Participant:
    connection_id: str
    joined_at: float
    display_name: Optional[str] = None
    media_status: MediaStatus = field(default_factory=MediaStatus)


@dataclass
class Room:
    code: str
    created_at: float
    last_activity: float
    state: RoomState = RoomState.CREATED
    # dicts keep insertion order, so this is the ordered member set
    members: Dict[str, Participant] = field(default_factory=dict)

    def member_ids(self) -> List[str]:
        return list(self.members)


@dataclass(frozen=True)
class LeaveResult:
    code: str
    connection_id: str
    remaining: List[str]

    @property
    def deleted(self) -> bool:
        return not self.remaining


@dataclass(frozen=True)
class EvictedRoom:
    code: str
    members: List[str]


class ConnectionRegistry:
    """connection id -> room code. Only RoomStore writes to it."""

    def __init__(self):
        self._rooms: Dict[str, str] = {}

    def room_of(self, connection_id: str) -> Optional[str]:
        return self._rooms.get(connection_id)

    def bind(self, connection_id: str, code: str) -> None:
        self._rooms[connection_id] = code

    def release(self, connection_id: str) -> None:
        self._rooms.pop(connection_id, None)

    def release_room(self, code: str) -> List[str]:
        """Drop every mapping that points at code and return the released ids."""
        released = [connection_id for connection_id, mapped in self._rooms.items() if mapped == code]
        for connection_id in released:
            del self._rooms[connection_id]
        return released

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._rooms

    def __len__(self) -> int:
        return len(self._rooms)


class KeyedLock:
    """One asyncio.Lock per key, dropped again once nobody holds or waits on it."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str):
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
            self._users[key] = 0
        self._users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class RoomStore:
    """Authoritative in-memory room table.

    Every mutation for a given code runs under that code's lock, so concurrent
    joins, leaves and sweeps on the same room are linearized while unrelated
    rooms never contend. Nothing awaits I/O while a room lock is held.
    """

    def __init__(self, max_members: int = MAX_MEMBERS, clock: Callable[[], float] = time.time):
        if max_members < 1:
            raise ValueError("max_members must be at least 1")
        self.max_members = max_members
        self.registry = ConnectionRegistry()
        self._clock = clock
        self._rooms: Dict[str, Room] = {}
        self._locks = KeyedLock()
        logger.info(f"Initializing RoomStore with max_members={max_members}")

    async def create_room(self, code: str, connection_id: str) -> Room:
        code = normalize_code(code)
        async with self._locks.hold(code):
            if code in self._rooms:
                logger.warning(f"Create room failed: room {code} already exists")
                raise RoomAlreadyExists(f"Room {code} already exists")
            current = self.registry.room_of(connection_id)
            if current is not None:
                logger.warning(f"Create room failed: {connection_id} is already in room {current}")
                raise AlreadyInRoom(f"Already in room {current}")

            now = self._clock()
            room = Room(code=code, created_at=now, last_activity=now)
            room.members[connection_id] = Participant(connection_id=connection_id, joined_at=now)
            self._rooms[code] = room
            self.registry.bind(connection_id, code)
            logger.info(f"Room {code} created by {connection_id}")
            return copy.deepcopy(room)

    async def join_room(self, code: str, connection_id: str, display_name: Optional[str] = None) -> List[str]:
        """Admit connection_id and return the member ids in join order, joiner last."""
        code = normalize_code(code)
        async with self._locks.hold(code):
            room = self._rooms.get(code)
            if room is None:
                logger.warning(f"Join room failed: room {code} not found")
                raise RoomNotFound(f"Room {code} does not exist")
            current = self.registry.room_of(connection_id)
            if current is not None:
                logger.warning(f"Join room failed: {connection_id} is already in room {current}")
                raise AlreadyInRoom(f"Already in room {current}")
            if len(room.members) >= self.max_members:
                logger.warning(f"Join room failed: room {code} is full ({len(room.members)}/{self.max_members})")
                raise RoomFull(f"Room {code} is full")

            now = self._clock()
            room.members[connection_id] = Participant(
                connection_id=connection_id, joined_at=now, display_name=display_name
            )
            if room.state != RoomState.ACTIVE:
                room.state = RoomState.JOINED
            room.last_activity = now
            self.registry.bind(connection_id, code)
            logger.info(f"{connection_id} joined room {code} ({len(room.members)}/{self.max_members})")
            return room.member_ids()

    async def leave_room(self, connection_id: str) -> Optional[LeaveResult]:
        """Remove the connection from its room. Returns None when it was in no room."""
        code = self.registry.room_of(connection_id)
        if code is None:
            logger.debug(f"Leave ignored: {connection_id} is not in a room")
            return None

        async with self._locks.hold(code):
            # A sweep may have evicted the room while we waited for the lock
            if self.registry.room_of(connection_id) != code:
                logger.debug(f"Leave ignored: {connection_id} was already removed from room {code}")
                return None
            self.registry.release(connection_id)

            room = self._rooms.get(code)
            if room is None or connection_id not in room.members:
                return None

            del room.members[connection_id]
            if not room.members:
                del self._rooms[code]
                logger.info(f"{connection_id} left room {code}; room is empty and was deleted")
                return LeaveResult(code=code, connection_id=connection_id, remaining=[])

            room.state = RoomState.CREATED if len(room.members) == 1 else RoomState.JOINED
            room.last_activity = self._clock()
            logger.info(f"{connection_id} left room {code} ({len(room.members)} remaining)")
            return LeaveResult(code=code, connection_id=connection_id, remaining=room.member_ids())

    async def set_status(self, connection_id: str, field_name: str, value: bool) -> Optional[str]:
        """Update a member's advisory media status. Returns the room code, or None if not in a room."""
        if field_name not in STATUS_FIELDS:
            raise ValueError(f"Unknown status field {field_name!r}")
        code = self.registry.room_of(connection_id)
        if code is None:
            logger.info(f"Status update {field_name}={value} ignored: {connection_id} is not in a room")
            return None

        async with self._locks.hold(code):
            room = self._rooms.get(code)
            participant = room.members.get(connection_id) if room else None
            if participant is None:
                logger.info(f"Status update {field_name}={value} ignored: {connection_id} left room {code}")
                return None
            setattr(participant.media_status, field_name, bool(value))
            room.last_activity = self._clock()
            logger.debug(f"{connection_id} in room {code} set {field_name}={value}")
            return code

    async def record_activity(self, code: str, answered: bool = False) -> None:
        """Bump last_activity; the first relayed answer also moves the room to ACTIVE."""
        code = normalize_code(code)
        async with self._locks.hold(code):
            room = self._rooms.get(code)
            if room is None:
                return
            room.last_activity = self._clock()
            if answered and room.state != RoomState.ACTIVE:
                room.state = RoomState.ACTIVE
                logger.info(f"Room {code} is now active")

    async def expire_idle(self, ttl: float, now: Optional[float] = None) -> List[EvictedRoom]:
        """Delete rooms idle for longer than ttl, or with no members left."""
        if now is None:
            now = self._clock()
        evicted = []
        for code in list(self._rooms):
            async with self._locks.hold(code):
                room = self._rooms.get(code)
                if room is None:
                    continue
                idle = now - room.last_activity
                if room.members and idle <= ttl:
                    continue
                del self._rooms[code]
                # Mappings can outlive membership if the two ever desynced
                members = list(dict.fromkeys(room.member_ids() + self.registry.release_room(code)))
                logger.info(f"Room {code} expired after {idle:.0f}s idle with {len(members)} member(s)")
                evicted.append(EvictedRoom(code=code, members=members))
        return evicted

    def room_of(self, connection_id: str) -> Optional[str]:
        return self.registry.room_of(connection_id)

    def members(self, code: str) -> List[str]:
        room = self._rooms.get(normalize_code(code))
        return room.member_ids() if room else []

    def exists(self, code: str) -> bool:
        return normalize_code(code) in self._rooms

    def get_room(self, code: str) -> Optional[Room]:
        """Read-only copy of a room, for reporting."""
        room = self._rooms.get(normalize_code(code))
        return copy.deepcopy(room) if room else None

    def __len__(self) -> int:
        return len(self._rooms)


room_store = RoomStore()
