import uuid
from typing import Optional, Union

from fastapi import WebSocket, WebSocketDisconnect

from backend import RoomStore
from errors import SignalingError
from logging_config import get_logger
from manager import ConnectionManager
from schemas.messages import (
    Answer,
    CreateRoom,
    IceCandidate,
    InboundMessage,
    JoinRoom,
    LeaveCall,
    Offer,
    SetMuteStatus,
    SetSpeakerStatus,
    decode_message,
)
from signaling import SignalingRouter

logger = get_logger(__name__)


class ConnectionSession:
    """Drives one websocket: decodes frames, dispatches them, cleans up on close."""

    def __init__(
        self,
        websocket: WebSocket,
        store: RoomStore,
        router: SignalingRouter,
        connections: ConnectionManager,
        connection_id: Optional[str] = None,
    ):
        self.websocket = websocket
        self.store = store
        self.router = router
        self.connections = connections
        self.connection_id = connection_id or str(uuid.uuid4())
        self.message_count = 0
        self._closed = False
        self._handlers = {
            CreateRoom: self.on_create_room,
            JoinRoom: self.on_join_room,
            Offer: self.on_offer,
            Answer: self.on_answer,
            IceCandidate: self.on_ice_candidate,
            SetMuteStatus: self.on_set_mute,
            SetSpeakerStatus: self.on_set_speaker,
            LeaveCall: self.on_leave_call,
        }

    async def run(self) -> None:
        await self.websocket.accept()
        self.connections.register(self.connection_id, self.websocket)
        logger.info(f"Connection {self.connection_id} accepted")

        try:
            await self.send({"type": "connected", "connectionId": self.connection_id})
            while True:
                try:
                    message = await self.websocket.receive()
                except WebSocketDisconnect:
                    message = {"type": "websocket.disconnect"}
                if message["type"] == "websocket.disconnect":
                    logger.info(f"Connection {self.connection_id} disconnected after {self.message_count} message(s)")
                    break
                # Frames carry either "text" or "bytes"
                data = message.get("text")
                if data is None:
                    data = message.get("bytes") or b""
                await self.handle(data)
        except Exception as e:
            logger.error(f"Error on connection {self.connection_id}: {e}", exc_info=True)
        finally:
            await self.close()
            try:
                await self.websocket.close()
            except Exception as e:
                logger.debug(f"Error closing WebSocket {self.connection_id}: {e}")

    async def handle(self, raw: Union[str, bytes]) -> None:
        """Process one inbound frame; signaling errors are answered, not raised."""
        self.message_count += 1
        try:
            message = decode_message(raw)
            logger.debug(f"Received {message.type} (#{self.message_count}) from {self.connection_id}")
            await self.dispatch(message)
        except SignalingError as e:
            logger.info(f"Rejected message from {self.connection_id}: {e.kind}: {e.message}")
            await self.send(e.to_message())

    async def dispatch(self, message: InboundMessage) -> None:
        await self._handlers[type(message)](message)

    async def send(self, message: dict) -> bool:
        return await self.connections.send(self.connection_id, message)

    async def on_create_room(self, message: CreateRoom) -> None:
        room = await self.store.create_room(message.code, self.connection_id)
        await self.send({"type": "room-created", "code": room.code})

    async def on_join_room(self, message: JoinRoom) -> None:
        members = await self.store.join_room(message.code, self.connection_id, message.display_name)
        code = message.code
        others = [member for member in members if member != self.connection_id]

        await self.router.broadcast(others, {
            "type": "user-joined",
            "code": code,
            "connectionId": self.connection_id,
            "displayName": message.display_name,
        })
        await self.send({"type": "room-joined", "code": code, "members": others})
        await self.router.broadcast(members, {"type": "update-participants", "code": code, "members": members})

    async def on_offer(self, message: Offer) -> None:
        await self.router.relay(self.connection_id, "offer", {"sdp": message.sdp}, message.code, message.target)

    async def on_answer(self, message: Answer) -> None:
        await self.router.relay(self.connection_id, "answer", {"sdp": message.sdp}, message.code, message.target)

    async def on_ice_candidate(self, message: IceCandidate) -> None:
        await self.router.relay(
            self.connection_id, "ice-candidate", {"candidate": message.candidate}, message.code, message.target
        )

    async def on_set_mute(self, message: SetMuteStatus) -> None:
        code = await self.store.set_status(self.connection_id, "muted", message.muted)
        if code is not None:
            await self.router.relay(self.connection_id, "peer-mute", {"muted": message.muted}, code)

    async def on_set_speaker(self, message: SetSpeakerStatus) -> None:
        code = await self.store.set_status(self.connection_id, "speaker_off", message.speaker_off)
        if code is not None:
            await self.router.relay(self.connection_id, "peer-speaker", {"speakerOff": message.speaker_off}, code)

    async def on_leave_call(self, message: LeaveCall) -> None:
        await self.leave()

    async def leave(self) -> None:
        """Shared teardown for leave-call and transport close."""
        result = await self.store.leave_room(self.connection_id)
        if result is None:
            return
        await self.router.notify_departure(result.code, result.connection_id, result.remaining)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self.leave()
        self.connections.unregister(self.connection_id)
        logger.info(f"Connection {self.connection_id} closed")
