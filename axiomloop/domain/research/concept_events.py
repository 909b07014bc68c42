from typing import Any, List, Optional, Mapping, Union
from pydantic import BaseModel, ConfigDict, Field

from axiomloop.domain.models.conversation import ToolInvocationPart, ToolPhase
from axiomloop.domain.models.view_models import NodeStatus


UPSERT_TOOL = "upsertConceptNode"
BREAKDOWN_TOOL = "breakdownConcept"

# Earlier tool names still found in stored conversations
LEGACY_UPSERT_TOOL = "updateResearchTree"
LEGACY_BREAKDOWN_TOOL = "breakDownConcept"

FOLDED_PHASES = (ToolPhase.REQUESTED, ToolPhase.COMPLETED)

NODE_STATUSES = tuple(status.value for status in NodeStatus)


class UpsertEvent(BaseModel):
    """A reported node state"""
    model_config = ConfigDict(frozen=True)

    node_id: str
    concept: str
    parent_id: Optional[str] = None
    depth: int = 0
    status: NodeStatus = NodeStatus.IDLE
    is_axiom: bool = False
    notes: Optional[str] = None


class BreakdownChild(BaseModel):
    model_config = ConfigDict(frozen=True)

    node_id: str
    concept: str
    is_axiom: bool = False
    reasoning: Optional[str] = None


class BreakdownEvent(BaseModel):
    """A parent concept split into child concepts"""
    model_config = ConfigDict(frozen=True)

    parent_node_id: str
    concept: str = ""
    summary: Optional[str] = None
    children: List[BreakdownChild] = Field(default_factory=list)


ConceptEvent = Union[UpsertEvent, BreakdownEvent]


def decode_concept_event(invocation: ToolInvocationPart) -> Optional[ConceptEvent]:
    """Read a tree event out of a tool invocation; None when it carries none"""

    if invocation.phase not in FOLDED_PHASES:
        return None

    payload = _payload(invocation)
    if payload is None:
        return None

    if invocation.tool_name in (UPSERT_TOOL, LEGACY_UPSERT_TOOL):
        return _decode_upsert(payload)
    if invocation.tool_name in (BREAKDOWN_TOOL, LEGACY_BREAKDOWN_TOOL):
        return _decode_breakdown(payload)
    return None


def _payload(invocation: ToolInvocationPart) -> Optional[Mapping]:
    # the echoed output is authoritative once the tool has run
    if invocation.phase == ToolPhase.COMPLETED and isinstance(invocation.output, Mapping):
        return invocation.output
    if isinstance(invocation.input, Mapping):
        return invocation.input
    return None


def _decode_upsert(payload: Mapping) -> Optional[UpsertEvent]:
    node_id = _string(payload.get("nodeId"))
    if not node_id:
        return None

    notes = payload.get("notes", payload.get("researchData"))
    status = payload.get("status")
    return UpsertEvent(
        node_id=node_id,
        concept=_string(payload.get("concept")) or node_id,
        parent_id=_string(payload.get("parentId")) or None,
        depth=_depth(payload.get("depth")),
        status=NodeStatus(status) if status in NODE_STATUSES else NodeStatus.IDLE,
        is_axiom=payload.get("isAxiom") is True,
        notes=notes if isinstance(notes, str) and notes else None,
    )


def _decode_breakdown(payload: Mapping) -> Optional[BreakdownEvent]:
    parent_id = _string(payload.get("parentNodeId"))
    if not parent_id:
        return None

    raw_children = payload.get("children", payload.get("subConcepts"))
    children = []
    if isinstance(raw_children, list):
        for raw in raw_children:
            if not isinstance(raw, Mapping):
                continue
            node_id = _string(raw.get("nodeId"))
            if not node_id or node_id == parent_id:
                continue
            reasoning = raw.get("reasoning")
            children.append(BreakdownChild(
                node_id=node_id,
                concept=_string(raw.get("concept")) or node_id,
                is_axiom=raw.get("isAxiom") is True,
                reasoning=reasoning if isinstance(reasoning, str) and reasoning else None,
            ))

    summary = payload.get("summary", payload.get("researchSummary"))
    return BreakdownEvent(
        parent_node_id=parent_id,
        concept=_string(payload.get("concept")),
        summary=summary if isinstance(summary, str) else None,
        children=children,
    )


def _string(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _depth(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, int) and value >= 0:
        return value
    return 0
