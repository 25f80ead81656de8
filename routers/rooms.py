from fastapi import APIRouter, Request

from logging_config import get_logger
from schemas.rooms import RoomPresenceResponse

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/rooms", tags=["rooms"])


@rooms_router.get("/{room_id}", response_model=RoomPresenceResponse)
async def get_room_presence(room_id: str, request: Request):
    """
    Presence snapshot for a conversation room on this instance.

    Rooms exist only while they have members, so an unknown room
    reports zero members rather than 404.
    """
    registry = request.app.state.relay.registry
    member_count = len(registry.members(room_id))
    logger.debug(f"Room presence for {room_id}: {member_count} members")
    return RoomPresenceResponse(room_id=room_id, member_count=member_count)
