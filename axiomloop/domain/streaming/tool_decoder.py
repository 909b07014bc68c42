"""
Tool-invocation lifecycle decoder.

Turns raw wire parts (plain mappings as sent by clients or produced by the agent
runner) into the closed set of Part variants, and back. Both the current tool part
shape (``type: "tool-<name>"`` with a ``state``) and the legacy ``tool-invocation``
shape are accepted. Decoding never raises: anything unrecognised becomes an
``UnclassifiedPart`` and malformed tool parts get ``ToolPhase.UNKNOWN``.
"""

from typing import Dict, Any, List, Optional, Mapping
import structlog

from axiomloop.domain.models.conversation import (
    CANCELLED_MESSAGE, Part, Role, ReasoningPart, TextPart,
    ToolInvocationPart, ToolPhase, Turn, UnclassifiedPart
)

logger = structlog.get_logger(__name__)

UNKNOWN_TOOL = "unknown"

STATE_TO_PHASE: Dict[str, ToolPhase] = {
    "input-streaming": ToolPhase.PARTIAL,
    "input-available": ToolPhase.REQUESTED,
    "output-available": ToolPhase.COMPLETED,
    "output-error": ToolPhase.ERRORED,
}

LEGACY_STATE_TO_PHASE: Dict[str, ToolPhase] = {
    "partial-call": ToolPhase.PARTIAL,
    "call": ToolPhase.REQUESTED,
    "result": ToolPhase.COMPLETED,
}

ROLE_ALIASES: Dict[str, Role] = {
    "user": Role.USER,
    "assistant": Role.AGENT,
    "agent": Role.AGENT,
    "system": Role.SYSTEM,
}


def decode_part(raw: Any) -> Part:
    """Classify one raw wire part"""

    if isinstance(raw, (TextPart, ReasoningPart, ToolInvocationPart, UnclassifiedPart)):
        return raw
    if not isinstance(raw, Mapping):
        return UnclassifiedPart(raw=raw)

    part_type = raw.get("type")
    if not isinstance(part_type, str):
        return UnclassifiedPart(raw=dict(raw))

    if part_type == "text":
        return TextPart(text=_as_text(raw.get("text")))
    if part_type == "reasoning":
        return ReasoningPart(text=_as_text(raw.get("text", raw.get("reasoning"))))
    if part_type == "tool-invocation":
        return _decode_legacy_tool(raw.get("toolInvocation"))
    if part_type == "dynamic-tool" or part_type.startswith("tool-"):
        return _decode_tool(raw, part_type)

    return UnclassifiedPart(raw=dict(raw))


def classify_tool_invocation(part: Any) -> Optional[ToolInvocationPart]:
    """Return the decoded invocation, or None when the part is not a tool invocation"""

    decoded = decode_part(part)
    if isinstance(decoded, ToolInvocationPart):
        return decoded
    return None


def _decode_tool(raw: Mapping, part_type: str) -> ToolInvocationPart:
    if part_type == "dynamic-tool":
        tool_name = raw.get("toolName")
    else:
        tool_name = part_type[len("tool-"):]

    phase = _lookup(STATE_TO_PHASE, raw.get("state"), ToolPhase.UNKNOWN)
    return _build_invocation(
        tool_name=tool_name,
        tool_call_id=raw.get("toolCallId"),
        phase=phase,
        input=raw.get("input"),
        output=raw.get("output"),
        error_text=raw.get("errorText"),
    )


def _decode_legacy_tool(invocation: Any) -> ToolInvocationPart:
    if not isinstance(invocation, Mapping):
        return _build_invocation(tool_name=None, tool_call_id=None, phase=ToolPhase.UNKNOWN)

    phase = _lookup(LEGACY_STATE_TO_PHASE, invocation.get("state"), ToolPhase.UNKNOWN)

    result = invocation.get("result")
    error_text = None
    if phase == ToolPhase.COMPLETED and isinstance(result, Mapping) and result.get("__cancelled") is True:
        phase = ToolPhase.ERRORED
        error_text = CANCELLED_MESSAGE

    return _build_invocation(
        tool_name=invocation.get("toolName"),
        tool_call_id=invocation.get("toolCallId"),
        phase=phase,
        input=invocation.get("args"),
        output=result if phase == ToolPhase.COMPLETED else None,
        error_text=error_text,
    )


def _build_invocation(
    tool_name: Any,
    tool_call_id: Any,
    phase: ToolPhase,
    input: Any = None,
    output: Any = None,
    error_text: Any = None
) -> ToolInvocationPart:
    if not isinstance(tool_name, str) or not tool_name:
        tool_name = UNKNOWN_TOOL
        phase = ToolPhase.UNKNOWN
    if phase == ToolPhase.UNKNOWN:
        logger.debug("Unclassifiable tool part", tool_name=tool_name)

    if phase == ToolPhase.ERRORED:
        error_text = _as_text(error_text) or "unknown error"
    else:
        error_text = None

    return ToolInvocationPart(
        tool_name=tool_name,
        tool_call_id=tool_call_id if isinstance(tool_call_id, str) else None,
        phase=phase,
        input=input,
        output=output if phase == ToolPhase.COMPLETED else None,
        error_text=error_text,
    )


def encode_part(part: Part) -> Dict[str, Any]:
    """Render a part in the current wire shape"""

    if isinstance(part, TextPart):
        return {"type": "text", "text": part.text}
    if isinstance(part, ReasoningPart):
        return {"type": "reasoning", "text": part.text}
    if isinstance(part, ToolInvocationPart):
        encoded: Dict[str, Any] = {
            "type": f"tool-{part.tool_name}",
            "toolCallId": part.tool_call_id,
            "state": part.phase.value,
            "input": part.input,
        }
        if part.phase == ToolPhase.COMPLETED:
            encoded["output"] = part.output
        if part.phase == ToolPhase.ERRORED:
            encoded["errorText"] = part.error_text
        return encoded
    raw = part.raw
    if isinstance(raw, Mapping):
        return dict(raw)
    return {"type": "unclassified", "value": raw}


def decode_turn(raw: Any) -> Optional[Turn]:
    """Decode one wire turn; returns None for entries that are not turns at all"""

    if isinstance(raw, Turn):
        return raw
    if not isinstance(raw, Mapping):
        return None

    role = _lookup(ROLE_ALIASES, raw.get("role"), None)
    if role is None:
        logger.debug("Skipping turn with unknown role", role=raw.get("role"))
        return None

    raw_parts = raw.get("parts")
    if isinstance(raw_parts, list):
        parts = [decode_part(item) for item in raw_parts]
    elif isinstance(raw.get("content"), str):
        parts = [TextPart(text=raw["content"])]
    else:
        parts = []

    turn_id = raw.get("id")
    return Turn(id=turn_id if isinstance(turn_id, str) else None, role=role, parts=parts)


def decode_turns(raw_turns: List[Any]) -> List[Turn]:
    turns = []
    for raw in raw_turns:
        turn = decode_turn(raw)
        if turn is not None:
            turns.append(turn)
    return turns


def encode_turn(turn: Turn) -> Dict[str, Any]:
    return {
        "id": turn.id,
        "role": turn.role.value,
        "parts": [encode_part(part) for part in turn.parts],
    }


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    return str(value)


def _lookup(table: Mapping[str, Any], key: Any, default: Any) -> Any:
    if not isinstance(key, str):
        return default
    return table.get(key, default)
