"""
Linear progress reconstruction for the chat and website-generation surfaces.

``build_sessions`` is a pure fold over the full turn list: it partitions turns
into sessions (one user turn plus the agent turns answering it) and derives an
ordered list of progress steps per session. Step ids only depend on the
session's prompt index and per-kind ordinals, so recomputing over an unchanged
log yields an equal value.
"""

from typing import Dict, Any, List, Optional, Sequence, Set, Union
import json
from pydantic import BaseModel, ConfigDict
import structlog

from axiomloop.domain.models.conversation import (
    CANCELLED_MESSAGE, ChatStatus, ReasoningPart, TextPart,
    ToolInvocationPart, ToolPhase, Turn
)
from axiomloop.domain.models.view_models import (
    ProgressStep, Session, StepKind, StepStatus
)
from axiomloop.domain.research.tree_builder import axiom_ids_in

logger = structlog.get_logger(__name__)

PREVIEW_LENGTH = 100
ELLIPSIS = "..."

SOURCE_TOOLS = frozenset({"searchWeb", "extractWebContent", "tavily-search", "tavily-extract"})


class MilestoneLabels(BaseModel):
    """Labels of the closing step of a session"""
    model_config = ConfigDict(frozen=True)

    active: str = "Responding..."
    completed: str = "Response ready"


CHAT_MILESTONE = MilestoneLabels()
WEBSITE_MILESTONE = MilestoneLabels(active="Creating website...", completed="Website created!")
RESEARCH_MILESTONE = MilestoneLabels(active="Writing report...", completed="Research report ready")


class _TurnGroup:
    def __init__(self, prompt_index: int, user_turn_index: int, user_turn: Turn):
        self.prompt_index = prompt_index
        self.user_turn_index = user_turn_index
        self.user_turn = user_turn
        self.agent_turn_indices: List[int] = []


def group_turns(turns: Sequence[Turn]) -> List[_TurnGroup]:
    """Partition turns into (user turn, following agent turns) groups"""

    groups: List[_TurnGroup] = []
    for index, turn in enumerate(turns):
        if turn.is_user and turn.parts:
            groups.append(_TurnGroup(len(groups), index, turn))
        elif turn.is_agent and groups:
            groups[-1].agent_turn_indices.append(index)
    return groups


def preview(text: str, limit: int = PREVIEW_LENGTH) -> str:
    if len(text) > limit:
        return text[:limit] + ELLIPSIS
    return text


class _SessionFold:
    """Per-session accumulator; lives for a single build"""

    def __init__(self, group: _TurnGroup, turns: Sequence[Turn], is_active: bool, streaming: bool):
        self.group = group
        self.turns = turns
        self.is_active = is_active
        self.streaming = streaming
        self.steps: List[ProgressStep] = []
        self.thinking_count = 0
        self.call_count = 0
        self.result_count = 0
        self.sources = 0
        self.seen_calls: Set[str] = set()
        self.call_index_by_id: Dict[str, int] = {}
        self.unresolved_calls: Dict[str, List[int]] = {}
        self.anonymous_calls: Set[int] = set()

    @property
    def prompt_index(self) -> int:
        return self.group.prompt_index

    @property
    def last_agent_turn_index(self) -> Optional[int]:
        indices = self.group.agent_turn_indices
        return indices[-1] if indices else None

    def run(self, milestone: MilestoneLabels) -> Session:
        has_agent_turns = bool(self.group.agent_turn_indices)
        self.steps.append(ProgressStep(
            id=f"init-{self.prompt_index}",
            kind=StepKind.INITIALIZING,
            label="Initializing",
            status=StepStatus.COMPLETED if has_agent_turns or not self.is_active else StepStatus.ACTIVE,
            source_turn_index=self.group.user_turn_index,
        ))

        text_turn_index = None
        for turn_index in self.group.agent_turn_indices:
            turn = self.turns[turn_index]
            for part_index, part in enumerate(turn.parts):
                if isinstance(part, ReasoningPart):
                    self._thinking(part, turn_index, part_index == len(turn.parts) - 1)
                elif isinstance(part, ToolInvocationPart):
                    self._invocation(part, turn_index)
                elif isinstance(part, TextPart) and part.text:
                    text_turn_index = turn_index

        if text_turn_index is not None:
            writing = self.is_active and self.streaming
            self.steps.append(ProgressStep(
                id=f"milestone-{self.prompt_index}",
                kind=StepKind.MILESTONE,
                label=milestone.active if writing else milestone.completed,
                status=StepStatus.ACTIVE if writing else StepStatus.COMPLETED,
                source_turn_index=text_turn_index,
            ))

        agent_turns = [self.turns[index] for index in self.group.agent_turn_indices]
        return Session(
            prompt_index=self.prompt_index,
            user_message=self.group.user_turn.first_text() or "New request",
            user_turn_index=self.group.user_turn_index,
            agent_turn_indices=list(self.group.agent_turn_indices),
            steps=self.steps,
            is_active=self.is_active,
            completed=not self.is_active,
            findings=self.result_count,
            axioms=len(axiom_ids_in(agent_turns)),
            sources=self.sources,
        )

    def _thinking(self, part: ReasoningPart, turn_index: int, is_last_part: bool):
        is_live = (
            self.is_active and self.streaming
            and turn_index == self.last_agent_turn_index and is_last_part
        )
        self.steps.append(ProgressStep(
            id=f"thinking-{self.prompt_index}-{self.thinking_count}",
            kind=StepKind.THINKING,
            label=preview(part.text),
            status=StepStatus.ACTIVE if is_live else StepStatus.COMPLETED,
            source_turn_index=turn_index,
            detail=part.text,
        ))
        self.thinking_count += 1

    def _invocation(self, part: ToolInvocationPart, turn_index: int):
        if part.phase in (ToolPhase.PARTIAL, ToolPhase.REQUESTED):
            self._call_step(part, turn_index)
        elif part.phase == ToolPhase.COMPLETED:
            self._completed(part, turn_index)
        elif part.phase == ToolPhase.ERRORED:
            self._errored(part, turn_index)
        # ToolPhase.UNKNOWN is skipped

    def _call_step(self, part: ToolInvocationPart, turn_index: int) -> int:
        tool = part.tool_name
        key = part.tool_call_id or f"{tool}-{turn_index}-{self.call_count}"
        if key in self.seen_calls:
            return self.call_index_by_id[key]

        is_live = self.is_active and self.streaming and turn_index == self.last_agent_turn_index
        self.steps.append(ProgressStep(
            id=f"toolcall-{tool}-{self.prompt_index}-{self.call_count}",
            kind=StepKind.TOOL_CALL,
            label=f"invoking `{tool}`",
            status=StepStatus.ACTIVE if is_live else StepStatus.COMPLETED,
            tool_name=tool,
            source_turn_index=turn_index,
        ))
        index = len(self.steps) - 1
        self.seen_calls.add(key)
        self.call_index_by_id[key] = index
        self.unresolved_calls.setdefault(tool, []).append(index)
        if not part.tool_call_id:
            self.anonymous_calls.add(index)
        self.call_count += 1
        return index

    def _resolve_call(self, part: ToolInvocationPart, turn_index: int) -> int:
        """Index of the call step this terminal invocation resolves, synthesising it when absent"""

        tool = part.tool_name
        pending = self.unresolved_calls.get(tool, [])
        if part.tool_call_id and part.tool_call_id in self.call_index_by_id:
            index = self.call_index_by_id[part.tool_call_id]
            if index in pending:
                pending.remove(index)
            return index
        # an unknown id may only claim a call that never had one
        candidates = [index for index in pending if index in self.anonymous_calls] if part.tool_call_id else pending
        if candidates:
            pending.remove(candidates[0])
            return candidates[0]

        index = self._call_step(part, turn_index)
        self.unresolved_calls[tool].remove(index)
        return index

    def _completed(self, part: ToolInvocationPart, turn_index: int):
        tool = part.tool_name
        index = self._resolve_call(part, turn_index)
        self.steps[index] = self.steps[index].model_copy(update={
            "status": StepStatus.COMPLETED,
            "label": f"invoked `{tool}`",
        })

        self.steps.append(ProgressStep(
            id=f"toolresult-{tool}-{self.prompt_index}-{self.result_count}",
            kind=StepKind.TOOL_RESULT,
            label=f"result from `{tool}`",
            status=StepStatus.COMPLETED,
            tool_name=tool,
            source_turn_index=turn_index,
        ))
        self.result_count += 1
        if tool in SOURCE_TOOLS:
            self.sources += 1

    def _errored(self, part: ToolInvocationPart, turn_index: int):
        tool = part.tool_name
        index = self._resolve_call(part, turn_index)
        if part.error_text == CANCELLED_MESSAGE:
            update = {"status": StepStatus.CANCELLED, "label": f"cancelled `{tool}`"}
        else:
            update = {"status": StepStatus.COMPLETED, "label": f"`{tool}` failed"}
        update["detail"] = part.error_text
        self.steps[index] = self.steps[index].model_copy(update=update)


def build_sessions(
    turns: Sequence[Turn],
    status: Union[ChatStatus, str] = ChatStatus.IDLE,
    milestone: MilestoneLabels = CHAT_MILESTONE
) -> List[Session]:
    """Rebuild every session's progress steps from the full event log"""

    streaming = status == ChatStatus.STREAMING
    groups = group_turns(turns)
    sessions = []
    for position, group in enumerate(groups):
        is_active = streaming and position == len(groups) - 1
        sessions.append(_SessionFold(group, turns, is_active, streaming).run(milestone))
    return sessions


def latest_progress_step(sessions: Sequence[Session]) -> Optional[ProgressStep]:
    """The active step of the last session, or its last step"""

    if not sessions:
        return None
    steps = sessions[-1].steps
    for step in steps:
        if step.status == StepStatus.ACTIVE:
            return step
    return steps[-1] if steps else None


def extract_website_result(turns: Sequence[Turn]) -> Optional[Dict[str, Any]]:
    """Latest generated page: the last text part holding a JSON object with an ``html`` key"""

    for turn in reversed(turns):
        if not (turn.is_user or turn.is_agent):
            continue
        for part in reversed(turn.parts):
            if not isinstance(part, TextPart) or not part.text:
                continue
            try:
                parsed = json.loads(part.text)
            except ValueError:
                continue
            if isinstance(parsed, dict) and "html" in parsed:
                return {"html": parsed.get("html") or ""}
    return None
