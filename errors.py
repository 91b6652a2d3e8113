class SignalingError(Exception):
    """Base for every error that is reported back to the originating connection."""

    kind = "SignalingError"

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind)
        self.message = message or self.kind

    def to_message(self) -> dict:
        return {"type": "error", "kind": self.kind, "message": self.message}


class RoomAlreadyExists(SignalingError):
    kind = "RoomAlreadyExists"


class RoomNotFound(SignalingError):
    kind = "RoomNotFound"


class RoomFull(SignalingError):
    kind = "RoomFull"


class AlreadyInRoom(SignalingError):
    kind = "AlreadyInRoom"


class NotInRoom(SignalingError):
    kind = "NotInRoom"


class InvalidMessage(SignalingError):
    kind = "InvalidMessage"
