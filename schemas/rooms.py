from pydantic import BaseModel


class RoomPresenceResponse(BaseModel):
    room_id: str
    member_count: int


class HealthResponse(BaseModel):
    status: str
    connections: int
    rooms: int
