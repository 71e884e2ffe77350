"""
Wire schema: newline-delimited JSON frames over the daemon socket.

Every request is answered by zero or more frames terminated by exactly
one ``done`` frame.
"""

from typing import Annotated, Dict, Any, Optional, Literal, Union
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from enum import Enum

from aish.domain.exceptions import ProtocolError


class EventType(str, Enum):
    """Daemon -> client frame types"""
    TEXT = "text"
    TOOL_USE = "tool_use"
    TOOL_RESULT = "tool_result"
    STATUS = "status"
    INFO = "info"
    ERROR = "error"
    DONE = "done"


class CommandName(str, Enum):
    """Administrative commands understood by the daemon"""
    STATUS = "status"
    COMPACT = "compact"
    CLEAR = "clear"
    FORGET = "forget"
    TOPIC = "topic"
    RECALL = "recall"
    REMEMBER = "remember"
    STOP = "stop"


class BaseEvent(BaseModel):
    """Base model for all daemon -> client frames"""
    type: EventType


class TextEvent(BaseEvent):
    """Streamed assistant text fragment"""
    type: Literal["text"] = "text"
    content: str


class ToolUseEvent(BaseEvent):
    """Backend invoked a tool"""
    type: Literal["tool_use"] = "tool_use"
    tool: str
    input: str


class ToolResultEvent(BaseEvent):
    """Tool returned output"""
    type: Literal["tool_result"] = "tool_result"
    output: str


class StatusEvent(BaseEvent):
    """Context status report"""
    type: Literal["status"] = "status"
    data: Dict[str, Any]


class InfoEvent(BaseEvent):
    """Informational message"""
    type: Literal["info"] = "info"
    message: str


class ErrorEvent(BaseEvent):
    """Error message"""
    type: Literal["error"] = "error"
    message: str


class DoneEvent(BaseEvent):
    """Terminates one request"""
    type: Literal["done"] = "done"


DaemonEvent = Annotated[
    Union[TextEvent, ToolUseEvent, ToolResultEvent, StatusEvent, InfoEvent, ErrorEvent, DoneEvent],
    Field(discriminator="type"),
]


class QueryRequest(BaseModel):
    """Natural-language query"""
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["query"] = "query"
    message: str
    cwd: str
    command_context: Optional[str] = Field(None, alias="commandContext")


class CommandRequest(BaseModel):
    """Administrative command"""
    type: Literal["command"] = "command"
    command: str
    args: Optional[str] = None


class PingRequest(BaseModel):
    """Liveness check"""
    type: Literal["ping"] = "ping"


ClientRequest = Annotated[
    Union[QueryRequest, CommandRequest, PingRequest],
    Field(discriminator="type"),
]

_request_adapter: TypeAdapter = TypeAdapter(ClientRequest)
_event_adapter: TypeAdapter = TypeAdapter(DaemonEvent)


def parse_request(line: Union[str, bytes]) -> Union[QueryRequest, CommandRequest, PingRequest]:
    """Decode one inbound frame; raises ProtocolError when it is invalid"""
    try:
        return _request_adapter.validate_json(line)
    except ValidationError as e:
        raise ProtocolError("Invalid message format") from e


def parse_event(line: Union[str, bytes]) -> BaseEvent:
    """Decode one daemon frame (client side)"""
    try:
        return _event_adapter.validate_json(line)
    except ValidationError as e:
        raise ProtocolError("Invalid daemon frame") from e


def encode_frame(frame: BaseModel) -> bytes:
    """Serialize a frame as one JSON line"""
    return frame.model_dump_json(by_alias=True, exclude_none=True).encode("utf-8") + b"\n"
