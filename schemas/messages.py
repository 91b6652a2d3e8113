import json
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, StringConstraints, TypeAdapter, ValidationError

from errors import InvalidMessage

RoomCode = Annotated[str, StringConstraints(strip_whitespace=True, to_upper=True, min_length=1, max_length=32)]

CODE_ALIASES = AliasChoices("code", "roomCode", "room")

# Event names used by older clients
EVENT_ALIASES = {
    "new-ice-candidate": "ice-candidate",
    "user-mute": "set-mute",
    "user-speaker": "set-speaker",
}


class InboundMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CreateRoom(InboundMessage):
    type: Literal["create-room"]
    code: RoomCode = Field(validation_alias=CODE_ALIASES)


class JoinRoom(InboundMessage):
    type: Literal["join-room"]
    code: RoomCode = Field(validation_alias=CODE_ALIASES)
    display_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("displayName", "username"))


class Offer(InboundMessage):
    type: Literal["offer"]
    # sdp and candidate are opaque and forwarded untouched
    sdp: Any = Field(validation_alias=AliasChoices("sdp", "offer"))
    code: Optional[RoomCode] = Field(default=None, validation_alias=CODE_ALIASES)
    target: Optional[str] = None


class Answer(InboundMessage):
    type: Literal["answer"]
    sdp: Any = Field(validation_alias=AliasChoices("sdp", "answer"))
    code: Optional[RoomCode] = Field(default=None, validation_alias=CODE_ALIASES)
    target: Optional[str] = None


class IceCandidate(InboundMessage):
    type: Literal["ice-candidate"]
    candidate: Any
    code: Optional[RoomCode] = Field(default=None, validation_alias=CODE_ALIASES)
    target: Optional[str] = None


class SetMuteStatus(InboundMessage):
    type: Literal["set-mute"]
    muted: bool = Field(validation_alias=AliasChoices("muted", "isMuted"))
    code: Optional[RoomCode] = Field(default=None, validation_alias=CODE_ALIASES)


class SetSpeakerStatus(InboundMessage):
    type: Literal["set-speaker"]
    speaker_off: bool = Field(validation_alias=AliasChoices("speakerOff", "isSpeakerOff"))
    code: Optional[RoomCode] = Field(default=None, validation_alias=CODE_ALIASES)


class LeaveCall(InboundMessage):
    type: Literal["leave-call"]
    code: Optional[RoomCode] = Field(default=None, validation_alias=CODE_ALIASES)


ClientMessage = Annotated[
    Union[CreateRoom, JoinRoom, Offer, Answer, IceCandidate, SetMuteStatus, SetSpeakerStatus, LeaveCall],
    Field(discriminator="type"),
]

client_message_adapter = TypeAdapter(ClientMessage)


def decode_message(raw: Union[str, bytes]) -> InboundMessage:
    """Parse one frame into a typed client event, or raise InvalidMessage.

    Binary frames are accepted when they carry UTF-8 encoded JSON.
    """
    try:
        data = json.loads(raw)
    except (ValueError, TypeError) as e:
        # ValueError covers both bad JSON and bad UTF-8 in binary frames
        raise InvalidMessage(f"Frame is not valid JSON: {e}")
    if not isinstance(data, dict):
        raise InvalidMessage("Frame must be a JSON object")

    event = data.get("type")
    if not isinstance(event, str):
        raise InvalidMessage("Frame must carry a string 'type' field")
    if event in EVENT_ALIASES:
        data = {**data, "type": EVENT_ALIASES[event]}

    try:
        return client_message_adapter.validate_python(data)
    except ValidationError as e:
        errors = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())
        raise InvalidMessage(f"Invalid {event!r} message: {errors}")
