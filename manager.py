import json
from typing import Dict, Iterable, List

from fastapi import WebSocket

from logging_config import get_logger

logger = get_logger(__name__)


class ConnectionManager:
    """Keeps the live websocket for each connection id and delivers JSON messages to it."""

    def __init__(self) -> None:
        self.active_connections: Dict[str, WebSocket] = {}

    def register(self, connection_id: str, websocket: WebSocket) -> None:
        self.active_connections[connection_id] = websocket
        logger.debug(f"Registered connection {connection_id} ({len(self.active_connections)} live)")

    def unregister(self, connection_id: str) -> None:
        self.active_connections.pop(connection_id, None)
        logger.debug(f"Unregistered connection {connection_id} ({len(self.active_connections)} live)")

    async def send(self, connection_id: str, message: dict) -> bool:
        """Deliver one message. Failures are logged, never raised to the caller."""
        websocket = self.active_connections.get(connection_id)
        if websocket is None:
            logger.debug(f"Dropping {message.get('type')} for {connection_id}: connection is gone")
            return False
        try:
            await websocket.send_text(json.dumps(message))
            return True
        except Exception as e:
            # The peer's own session notices the close and runs its cleanup
            logger.warning(f"Error sending {message.get('type')} to connection {connection_id}: {e}")
            return False

    async def send_many(self, connection_ids: Iterable[str], message: dict) -> List[str]:
        """Deliver to each connection in order and return the ids that received it."""
        delivered = []
        for connection_id in connection_ids:
            if await self.send(connection_id, message):
                delivered.append(connection_id)
        return delivered

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self.active_connections

    def __len__(self) -> int:
        return len(self.active_connections)


connection_manager = ConnectionManager()
