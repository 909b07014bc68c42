"""
Concept-tree reconstruction for the research surface.

The tree is folded from scratch over the whole event log on every change. Nodes
are upserted by id; edges are never stored during the fold but derived from the
final parent ids, so interleaved or repeated upsert/breakdown events always
leave a consistent edge set. The builder mirrors what the agent reported and
does not propagate completion on its own.
"""

from typing import Dict, List, Optional, Sequence
import structlog

from axiomloop.domain.models.conversation import ToolInvocationPart, Turn
from axiomloop.domain.models.view_models import (
    ConceptEdge, ConceptNode, ConceptTree, NodeStatus
)
from axiomloop.domain.research.concept_events import (
    BreakdownEvent, UpsertEvent, decode_concept_event
)

logger = structlog.get_logger(__name__)


class ConceptTreeBuilder:
    """Folds concept events into a node map.

    Args:
        freeze_structure: keep a node's parent id and depth as first reported.
            When False every upsert overwrites them.
    """

    def __init__(self, freeze_structure: bool = True):
        self.freeze_structure = freeze_structure
        self._nodes: Dict[str, ConceptNode] = {}

    def build(self, turns: Sequence[Turn]) -> ConceptTree:
        self._nodes = {}
        for turn in turns:
            if not turn.is_agent:
                continue
            for part in turn.parts:
                if isinstance(part, ToolInvocationPart):
                    self.apply(part)
        return self.snapshot()

    def apply(self, invocation: ToolInvocationPart):
        event = decode_concept_event(invocation)
        if isinstance(event, UpsertEvent):
            self._upsert(event)
        elif isinstance(event, BreakdownEvent):
            self._breakdown(event)

    def snapshot(self) -> ConceptTree:
        nodes = list(self._nodes.values())
        return ConceptTree(nodes=nodes, edges=derive_edges(nodes))

    def _upsert(self, event: UpsertEvent):
        existing = self._nodes.get(event.node_id)
        if existing is None:
            self._nodes[event.node_id] = ConceptNode(
                node_id=event.node_id,
                concept=event.concept,
                parent_id=event.parent_id,
                depth=event.depth,
                status=event.status,
                is_axiom=event.is_axiom,
                research_notes=event.notes,
            )
            return

        update = {
            "concept": event.concept,
            "status": event.status,
            "is_axiom": event.is_axiom,
        }
        if event.notes is not None:
            update["research_notes"] = event.notes
        if not self.freeze_structure:
            update["parent_id"] = event.parent_id
            update["depth"] = event.depth
        elif existing.parent_id is None and existing.depth > 0 and event.parent_id is not None:
            update["parent_id"] = event.parent_id

        self._nodes[event.node_id] = existing.model_copy(update=update)

    def _breakdown(self, event: BreakdownEvent):
        parent = self._nodes.get(event.parent_node_id)
        child_depth = parent.depth + 1 if parent is not None else 1

        for child in event.children:
            existing = self._nodes.get(child.node_id)
            if existing is None:
                self._nodes[child.node_id] = ConceptNode(
                    node_id=child.node_id,
                    concept=child.concept,
                    parent_id=event.parent_node_id,
                    depth=child_depth,
                    status=NodeStatus.IDLE,
                    is_axiom=child.is_axiom,
                    research_notes=child.reasoning,
                )
                continue

            update = {"concept": child.concept, "is_axiom": child.is_axiom}
            if existing.parent_id is None and existing.depth > 0:
                update["parent_id"] = event.parent_node_id
            self._nodes[child.node_id] = existing.model_copy(update=update)


def derive_edges(nodes: Sequence[ConceptNode]) -> List[ConceptEdge]:
    """One edge per node whose parent is present in the node set"""

    known = {node.node_id for node in nodes}
    return [
        ConceptEdge(
            id=f"edge-{node.parent_id}-{node.node_id}",
            source=node.parent_id,
            target=node.node_id,
        )
        for node in nodes
        if node.parent_id is not None and node.parent_id in known
    ]


def build_concept_tree(turns: Sequence[Turn], freeze_structure: bool = True) -> ConceptTree:
    """Rebuild the concept tree from the full event log"""
    return ConceptTreeBuilder(freeze_structure=freeze_structure).build(turns)


def axiom_ids_in(turns: Sequence[Turn]) -> List[str]:
    """Distinct node ids asserted as axioms in the given turns, in first-seen order"""

    seen: List[str] = []
    for turn in turns:
        for part in turn.parts:
            if not isinstance(part, ToolInvocationPart):
                continue
            event = decode_concept_event(part)
            candidates: List[Optional[str]] = []
            if isinstance(event, UpsertEvent) and event.is_axiom:
                candidates.append(event.node_id)
            elif isinstance(event, BreakdownEvent):
                candidates.extend(child.node_id for child in event.children if child.is_axiom)
            for node_id in candidates:
                if node_id and node_id not in seen:
                    seen.append(node_id)
    return seen
