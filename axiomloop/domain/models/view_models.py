from typing import Dict, Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field
from enum import Enum


class StepKind(str, Enum):
    """Kind of a reconstructed progress step"""
    INITIALIZING = "initializing"
    THINKING = "thinking"
    TOOL_CALL = "tool-call"
    TOOL_RESULT = "tool-result"
    MILESTONE = "milestone"


class StepStatus(str, Enum):
    """Rendered status of a progress step"""
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class NodeStatus(str, Enum):
    """Research status reported for a concept node"""
    IDLE = "idle"
    LOADING = "loading"
    COMPLETED = "completed"


class ProgressStep(BaseModel):
    """One step of the linear progress log"""
    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Deterministic id derived from session and per-kind ordinal")
    kind: StepKind
    label: str
    status: StepStatus = Field(default=StepStatus.COMPLETED)
    tool_name: Optional[str] = None
    source_turn_index: int = Field(description="Index of the turn the step was derived from")
    detail: Optional[str] = Field(None, description="Untruncated content or error text")


class Session(BaseModel):
    """A user turn and every agent turn answering it"""
    model_config = ConfigDict(frozen=True)

    prompt_index: int
    user_message: str
    user_turn_index: int
    agent_turn_indices: List[int] = Field(default_factory=list)
    steps: List[ProgressStep] = Field(default_factory=list)
    is_active: bool = False
    completed: bool = True
    findings: int = 0
    axioms: int = 0
    sources: int = 0


class ConceptNode(BaseModel):
    """A concept in the research tree"""
    model_config = ConfigDict(frozen=True)

    node_id: str
    concept: str
    parent_id: Optional[str] = None
    depth: int = Field(default=0, ge=0)
    status: NodeStatus = Field(default=NodeStatus.IDLE)
    is_axiom: bool = False
    research_notes: Optional[str] = None


class ConceptEdge(BaseModel):
    """Parent to child edge, derived from node parent ids"""
    model_config = ConfigDict(frozen=True)

    id: str
    source: str
    target: str


class ConceptTree(BaseModel):
    """Concept tree reconstructed from the event log"""
    model_config = ConfigDict(frozen=True)

    nodes: List[ConceptNode] = Field(default_factory=list)
    edges: List[ConceptEdge] = Field(default_factory=list)

    def node(self, node_id: str) -> Optional[ConceptNode]:
        for node in self.nodes:
            if node.node_id == node_id:
                return node
        return None

    @property
    def root(self) -> Optional[ConceptNode]:
        for node in self.nodes:
            if node.parent_id is None and node.depth == 0:
                return node
        return None

    def children(self, node_id: str) -> List[ConceptNode]:
        return [node for node in self.nodes if node.parent_id == node_id]

    @property
    def dangling_node_ids(self) -> List[str]:
        """Nodes whose reported parent has not been seen yet"""
        known = {node.node_id for node in self.nodes}
        return [
            node.node_id for node in self.nodes
            if node.parent_id is not None and node.parent_id not in known
        ]

    @property
    def is_complete(self) -> bool:
        """Research is complete once the agent reports the root completed"""
        root = self.root
        return root is not None and root.status == NodeStatus.COMPLETED

    def completion_violations(self) -> List[str]:
        """Nodes reported completed although they are neither axioms nor have all children completed.

        The tree mirrors what the agent asserted; this only reports disagreements.
        """
        violations = []
        for node in self.nodes:
            if node.status != NodeStatus.COMPLETED or node.is_axiom:
                continue
            children = self.children(node.node_id)
            if not children or any(child.status != NodeStatus.COMPLETED for child in children):
                violations.append(node.node_id)
        return violations

    def stats(self) -> Dict[str, int]:
        axioms = sum(1 for node in self.nodes if node.is_axiom)
        return {
            "total": len(self.nodes),
            "axioms": axioms,
            "concepts": len(self.nodes) - axioms,
            "idle": sum(1 for node in self.nodes if node.status == NodeStatus.IDLE),
            "loading": sum(1 for node in self.nodes if node.status == NodeStatus.LOADING),
            "completed": sum(1 for node in self.nodes if node.status == NodeStatus.COMPLETED),
        }

    def max_depth(self) -> int:
        return max((node.depth for node in self.nodes), default=0)

    def knowledge_text(self) -> str:
        """Axioms rendered as a plain-text knowledge file"""
        return "\n\n".join(
            f"{node.concept}: {node.research_notes or 'Fundamental axiom'}"
            for node in self.nodes if node.is_axiom
        )

    def report(self, query: str) -> Dict[str, Any]:
        """JSON-ready summary of the research run"""
        stats = self.stats()
        root = self.root
        return {
            "query": query,
            "root": root.concept if root else None,
            "nodes": stats["total"],
            "axioms": stats["axioms"],
            "completed": stats["completed"],
            "max_depth": self.max_depth(),
            "is_complete": self.is_complete,
            "axiom_concepts": [node.concept for node in self.nodes if node.is_axiom],
        }
