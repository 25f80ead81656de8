import json
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr, TypeAdapter, ValidationError

RoomId = Annotated[StrictStr, Field(min_length=1)]


class ProtocolError(ValueError):
    """A client frame that does not match any known event shape."""


class TypingPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    conversation_id: RoomId = Field(alias="conversationId")
    user_id: StrictStr = Field(alias="userId")
    is_typing: StrictBool = Field(alias="isTyping")


class JoinChatEvent(BaseModel):
    event: Literal["join-chat"]
    data: RoomId


class LeaveChatEvent(BaseModel):
    event: Literal["leave-chat"]
    data: RoomId


class TypingEvent(BaseModel):
    event: Literal["typing"]
    data: TypingPayload


ClientEvent = Annotated[
    Union[JoinChatEvent, LeaveChatEvent, TypingEvent],
    Field(discriminator="event"),
]

_client_event_adapter = TypeAdapter(ClientEvent)


def parse_client_event(raw: str) -> Union[JoinChatEvent, LeaveChatEvent, TypingEvent]:
    """Validate a raw text frame into one of the client event variants.

    Raises ProtocolError for invalid JSON, unknown event names and payloads
    with missing or ill-typed fields.
    """
    try:
        message = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        raise ProtocolError(f"Frame is not valid JSON: {e}") from e

    if not isinstance(message, dict):
        raise ProtocolError("Frame must be a JSON object")

    try:
        return _client_event_adapter.validate_python(message)
    except ValidationError as e:
        raise ProtocolError(f"Invalid '{message.get('event')}' event: {e.error_count()} error(s)") from e


class UserTypingData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId")
    is_typing: bool = Field(alias="isTyping")


class UserTypingEvent(BaseModel):
    event: Literal["user-typing"] = "user-typing"
    data: UserTypingData


class ConnectedData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    connection_id: str = Field(alias="connectionId")


class ConnectedEvent(BaseModel):
    event: Literal["connected"] = "connected"
    data: ConnectedData


def encode_server_event(event: Union[UserTypingEvent, ConnectedEvent]) -> str:
    return event.model_dump_json(by_alias=True)


class FanoutMessage(BaseModel):
    """Body published on a Redis room channel by the instance that received the typing event."""

    room_id: RoomId
    origin: Optional[StrictStr] = None
    payload: UserTypingEvent
