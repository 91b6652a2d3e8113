from pydantic import BaseModel


class RoomCodeResponse(BaseModel):
    code: str


class RoomDetailsResponse(BaseModel):
    code: str
    state: str
    member_count: int
    max_members: int
    created_at: str
    last_activity: str
    is_full: bool


class HealthResponse(BaseModel):
    status: str
    rooms: int
    connections: int
