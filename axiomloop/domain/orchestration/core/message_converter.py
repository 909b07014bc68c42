"""
Conversion between the turn log and LangChain chat messages.

``turns_to_messages`` feeds the log to the model: resolved tool invocations
become an AIMessage tool call followed by its ToolMessage, pending ones are
dropped. ``TurnAssembler`` goes the other way and folds the messages a graph
run produces into one agent turn.
"""

from typing import Dict, Any, List, Optional, Sequence
from uuid import uuid4
import json
from langchain_core.messages import (
    AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage
)

from axiomloop.domain.models.conversation import (
    Part, ReasoningPart, Role, TextPart, ToolInvocationPart, ToolPhase, Turn
)


def turns_to_messages(turns: Sequence[Turn]) -> List[BaseMessage]:
    messages: List[BaseMessage] = []
    for turn in turns:
        if turn.role == Role.USER:
            if turn.text:
                messages.append(HumanMessage(content=turn.text))
        elif turn.role == Role.SYSTEM:
            if turn.text:
                messages.append(SystemMessage(content=turn.text))
        else:
            messages.extend(_agent_turn_messages(turn))
    return messages


def _agent_turn_messages(turn: Turn) -> List[BaseMessage]:
    resolved = [part for part in turn.tool_invocations() if part.is_terminal]

    tool_calls = []
    tool_messages: List[BaseMessage] = []
    for index, part in enumerate(resolved):
        call_id = part.tool_call_id or f"call_{turn.id or 'turn'}_{index}"
        tool_calls.append({
            "name": part.tool_name,
            "args": part.input if isinstance(part.input, dict) else {},
            "id": call_id,
        })
        if part.phase == ToolPhase.ERRORED:
            tool_messages.append(ToolMessage(
                content=part.error_text or "unknown error",
                tool_call_id=call_id,
                name=part.tool_name,
                status="error",
            ))
        else:
            tool_messages.append(ToolMessage(
                content=_output_text(part.output),
                tool_call_id=call_id,
                name=part.tool_name,
            ))

    if not turn.text and not tool_calls:
        return []
    return [AIMessage(content=turn.text, tool_calls=tool_calls)] + tool_messages


def _output_text(output: Any) -> str:
    if isinstance(output, str):
        return output
    if output is None:
        return ""
    return json.dumps(output, ensure_ascii=False, default=str)


def parse_tool_output(content: Any) -> Any:
    """ToolNode serialises structured results to JSON text; restore them"""

    if isinstance(content, list):
        content = "".join(
            block.get("text", "") if isinstance(block, dict) else str(block)
            for block in content
        )
    if not isinstance(content, str):
        return content
    stripped = content.strip()
    if stripped[:1] in ("{", "["):
        try:
            return json.loads(stripped)
        except ValueError:
            return content
    return content


class TurnAssembler:
    """Folds graph output messages into a single agent turn"""

    def __init__(self, turn_id: Optional[str] = None):
        self.turn_id = turn_id or f"turn-{uuid4().hex}"
        self.parts: List[Part] = []
        self._calls: Dict[str, int] = {}

    def add_message(self, message: BaseMessage) -> bool:
        """Apply one message; returns whether the turn changed"""

        if isinstance(message, AIMessage):
            return self._add_ai_message(message)
        if isinstance(message, ToolMessage):
            return self._add_tool_message(message)
        return False

    def snapshot(self) -> Turn:
        return Turn(id=self.turn_id, role=Role.AGENT, parts=list(self.parts))

    def _add_ai_message(self, message: AIMessage) -> bool:
        before = len(self.parts)

        reasoning = message.additional_kwargs.get("reasoning_content")
        if isinstance(reasoning, str) and reasoning:
            self.parts.append(ReasoningPart(text=reasoning))

        if isinstance(message.content, str):
            if message.content:
                self.parts.append(TextPart(text=message.content))
        else:
            for block in message.content:
                part = _content_block_part(block)
                if part is not None:
                    self.parts.append(part)

        for call in message.tool_calls:
            call_id = call.get("id") or f"call_{uuid4().hex[:12]}"
            self._calls[call_id] = len(self.parts)
            self.parts.append(ToolInvocationPart(
                tool_name=call["name"],
                tool_call_id=call_id,
                phase=ToolPhase.REQUESTED,
                input=call.get("args") or {},
            ))

        return len(self.parts) != before

    def _add_tool_message(self, message: ToolMessage) -> bool:
        index = self._calls.get(message.tool_call_id)
        if index is None:
            self._calls[message.tool_call_id] = len(self.parts)
            self.parts.append(ToolInvocationPart(
                tool_name=message.name or "unknown",
                tool_call_id=message.tool_call_id,
                phase=ToolPhase.REQUESTED,
            ))
            index = len(self.parts) - 1

        current = self.parts[index]
        if message.status == "error":
            updated = current.advance(ToolPhase.ERRORED, error_text=str(parse_tool_output(message.content)))
        else:
            updated = current.advance(ToolPhase.COMPLETED, output=parse_tool_output(message.content))
        self.parts[index] = updated
        return updated is not current


def _content_block_part(block: Any) -> Optional[Part]:
    if isinstance(block, str):
        return TextPart(text=block) if block else None
    if not isinstance(block, dict):
        return None

    block_type = block.get("type")
    if block_type == "text" and block.get("text"):
        return TextPart(text=block["text"])
    if block_type == "thinking" and block.get("thinking"):
        return ReasoningPart(text=block["thinking"])
    if block_type == "reasoning":
        text = block.get("reasoning")
        if not text and isinstance(block.get("summary"), list):
            text = "\n\n".join(
                item.get("text", "") for item in block["summary"] if isinstance(item, dict)
            )
        return ReasoningPart(text=text) if text else None
    return None
