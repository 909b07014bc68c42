from typing import Dict, Any, Optional, Literal, Union
from pydantic import BaseModel, ConfigDict, Field
from enum import Enum
import json


class StreamEventType(str, Enum):
    """Stream event types"""
    TURN = "turn"
    ERROR = "error"
    FINISH = "finish"


class FinishReason(str, Enum):
    COMPLETED = "completed"
    MAX_STEPS = "max_steps"


class ErrorCode(str, Enum):
    TIMEOUT = "timeout"
    AGENT_ERROR = "agent_error"


class BaseEvent(BaseModel):
    """Base model for every NDJSON stream line"""
    model_config = ConfigDict(populate_by_name=True)

    type: StreamEventType


class TurnEvent(BaseEvent):
    """Full snapshot of the agent turn being streamed"""
    type: Literal[StreamEventType.TURN] = StreamEventType.TURN
    turn: Dict[str, Any] = Field(description="Wire-encoded turn; snapshots share the turn id")


class ErrorEvent(BaseEvent):
    """Terminal error"""
    type: Literal[StreamEventType.ERROR] = StreamEventType.ERROR
    error_text: str = Field(alias="errorText")
    error_code: Optional[ErrorCode] = Field(None, alias="errorCode")


class FinishEvent(BaseEvent):
    """Terminal success"""
    type: Literal[StreamEventType.FINISH] = StreamEventType.FINISH
    reason: FinishReason = FinishReason.COMPLETED


StreamEvent = Union[TurnEvent, ErrorEvent, FinishEvent]

EVENT_MODELS = {
    StreamEventType.TURN: TurnEvent,
    StreamEventType.ERROR: ErrorEvent,
    StreamEventType.FINISH: FinishEvent,
}


def encode_event(event: StreamEvent) -> str:
    """One NDJSON line"""
    return json.dumps(event.model_dump(mode="json", by_alias=True, exclude_none=True)) + "\n"


def decode_event(line: Union[str, bytes]) -> Optional[StreamEvent]:
    """Parse one NDJSON line; None for blank lines or unknown event types"""

    if isinstance(line, bytes):
        line = line.decode("utf-8")
    line = line.strip()
    if not line:
        return None
    payload = json.loads(line)
    if not isinstance(payload, dict):
        return None
    event_type = payload.get("type")
    model = EVENT_MODELS.get(event_type) if isinstance(event_type, str) else None
    if model is None:
        return None
    return model.model_validate({key: value for key, value in payload.items() if key != "type"})
