from typing import Dict, Any, List, Optional, Literal, Union
from pydantic import BaseModel, ConfigDict, Field
from enum import Enum


CANCELLED_MESSAGE = "execution was cancelled"


class Role(str, Enum):
    """Author of a turn"""
    USER = "user"
    AGENT = "assistant"
    SYSTEM = "system"


class ChatStatus(str, Enum):
    """Overall streaming status of a surface"""
    IDLE = "idle"
    SUBMITTED = "submitted"
    STREAMING = "streaming"
    READY = "ready"
    ERROR = "error"


class ToolPhase(str, Enum):
    """Lifecycle phase of a tool invocation"""
    PARTIAL = "input-streaming"
    REQUESTED = "input-available"
    COMPLETED = "output-available"
    ERRORED = "output-error"
    UNKNOWN = "unknown"


PHASE_RANK: Dict[ToolPhase, int] = {
    ToolPhase.UNKNOWN: -1,
    ToolPhase.PARTIAL: 0,
    ToolPhase.REQUESTED: 1,
    ToolPhase.COMPLETED: 2,
    ToolPhase.ERRORED: 2,
}

PENDING_PHASES = (ToolPhase.PARTIAL, ToolPhase.REQUESTED)
TERMINAL_PHASES = (ToolPhase.COMPLETED, ToolPhase.ERRORED)


class TextPart(BaseModel):
    """Plain text produced by a user or the agent"""
    model_config = ConfigDict(frozen=True)

    type: Literal["text"] = "text"
    text: str = ""


class ReasoningPart(BaseModel):
    """Reasoning/thinking fragment streamed by the agent"""
    model_config = ConfigDict(frozen=True)

    type: Literal["reasoning"] = "reasoning"
    text: str = ""


class ToolInvocationPart(BaseModel):
    """One tool invocation in its current lifecycle phase"""
    model_config = ConfigDict(frozen=True)

    type: Literal["tool-invocation"] = "tool-invocation"
    tool_name: str = Field(description="Name of the invoked tool")
    tool_call_id: Optional[str] = Field(None, description="Identifier shared by every phase of the invocation")
    phase: ToolPhase = Field(default=ToolPhase.UNKNOWN)
    input: Any = Field(None, description="Input payload, possibly partial while streaming")
    output: Any = Field(None, description="Result payload once completed")
    error_text: Optional[str] = Field(None, description="Error payload once errored")

    @property
    def is_pending(self) -> bool:
        return self.phase in PENDING_PHASES

    @property
    def is_terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES

    def advance(
        self,
        phase: ToolPhase,
        input: Any = None,
        output: Any = None,
        error_text: Optional[str] = None
    ) -> "ToolInvocationPart":
        """Return a copy moved forward to `phase`; regressions return self unchanged"""

        if self.is_terminal or PHASE_RANK[phase] < PHASE_RANK[self.phase]:
            return self

        update: Dict[str, Any] = {"phase": phase}
        if input is not None:
            update["input"] = input
        if phase == ToolPhase.COMPLETED:
            update["output"] = output
        elif phase == ToolPhase.ERRORED:
            update["error_text"] = error_text or "unknown error"
        return self.model_copy(update=update)


class UnclassifiedPart(BaseModel):
    """A part the decoder could not classify; kept for fidelity, skipped by builders"""
    model_config = ConfigDict(frozen=True)

    type: Literal["unclassified"] = "unclassified"
    raw: Any = None


Part = Union[TextPart, ReasoningPart, ToolInvocationPart, UnclassifiedPart]


class Turn(BaseModel):
    """One exchange unit of the conversation log"""
    model_config = ConfigDict(frozen=True)

    id: Optional[str] = Field(None, description="Stable identifier, reused by streamed snapshots")
    role: Role
    parts: List[Part] = Field(default_factory=list)

    @property
    def is_user(self) -> bool:
        return self.role == Role.USER

    @property
    def is_agent(self) -> bool:
        return self.role == Role.AGENT

    @property
    def text(self) -> str:
        """Concatenated text parts"""
        return "\n\n".join(part.text for part in self.parts if isinstance(part, TextPart) and part.text)

    def first_text(self) -> Optional[str]:
        for part in self.parts:
            if isinstance(part, TextPart):
                return part.text
        return None

    def tool_invocations(self) -> List[ToolInvocationPart]:
        return [part for part in self.parts if isinstance(part, ToolInvocationPart)]

    def with_parts(self, parts: List[Part]) -> "Turn":
        return self.model_copy(update={"parts": list(parts)})


def user_turn(text: str, turn_id: Optional[str] = None) -> Turn:
    """Build a user turn holding a single text part"""
    return Turn(id=turn_id, role=Role.USER, parts=[TextPart(text=text)])
