from typing import Any, Dict, List, Optional

from backend import RoomStore, normalize_code
from errors import NotInRoom, RoomNotFound
from logging_config import get_logger
from manager import ConnectionManager

logger = get_logger(__name__)

ANSWER = "answer"


class SignalingRouter:
    """Forwards negotiation and status messages between members of the same room.

    Payloads are never inspected; the router only decides who receives them.
    Delivery is awaited in order, so messages from one sender reach each
    receiver in the order they were sent.
    """

    def __init__(self, store: RoomStore, connections: ConnectionManager):
        self.store = store
        self.connections = connections

    def resolve_room(self, connection_id: str, code: Optional[str] = None) -> str:
        room_code = self.store.room_of(connection_id)
        if room_code is None:
            raise NotInRoom("You are not in a room")
        if code is not None and normalize_code(code) != room_code:
            if not self.store.exists(code):
                raise RoomNotFound(f"Room {normalize_code(code)} does not exist")
            raise NotInRoom(f"You are not a member of room {normalize_code(code)}")
        return room_code

    def recipients(self, room_code: str, sender_id: str, target: Optional[str] = None) -> List[str]:
        members = self.store.members(room_code)
        if target is not None:
            if target == sender_id or target not in members:
                raise NotInRoom(f"Peer {target} is not in room {room_code}")
            return [target]
        return [member for member in members if member != sender_id]

    async def relay(
        self,
        sender_id: str,
        message_type: str,
        payload: Dict[str, Any],
        code: Optional[str] = None,
        target: Optional[str] = None,
    ) -> List[str]:
        """Send {type, **payload, from} to the sender's peers and return who got it."""
        room_code = self.resolve_room(sender_id, code)
        recipients = self.recipients(room_code, sender_id, target)

        message = {"type": message_type, **payload, "from": sender_id}
        delivered = await self.connections.send_many(recipients, message)
        logger.debug(f"Relayed {message_type} from {sender_id} in room {room_code} to {len(delivered)}/{len(recipients)} peer(s)")

        await self.store.record_activity(room_code, answered=message_type == ANSWER and bool(delivered))
        return delivered

    async def broadcast(self, connection_ids: List[str], message: dict) -> List[str]:
        """Server-originated fan-out that does not touch room activity."""
        return await self.connections.send_many(connection_ids, message)

    async def notify_departure(self, code: str, connection_id: str, remaining: List[str]) -> None:
        """Tell survivors a member is gone. Explicit leave and disconnect both land here."""
        if not remaining:
            return
        await self.broadcast(remaining, {"type": "peer-left", "code": code, "connectionId": connection_id})
        await self.broadcast(remaining, {"type": "update-participants", "code": code, "members": remaining})
        if len(remaining) == 1:
            await self.broadcast(remaining, {"type": "call-ended", "code": code})
