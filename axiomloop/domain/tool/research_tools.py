"""
Tools the research agent calls to report its concept tree.

Field names are camelCase on purpose: they are the argument names the model
emits and the keys the tree builder reads back from the invocation.
"""

from typing import Dict, Any, List, Optional, Literal
from pydantic import BaseModel, Field
from langchain_core.tools import BaseTool, StructuredTool


class UpsertConceptNodeInput(BaseModel):
    nodeId: str = Field(description="Unique identifier for the node, e.g. node_0")
    concept: str = Field(description="The concept this node represents")
    parentId: Optional[str] = Field(None, description="Parent node id; null for the root")
    depth: int = Field(description="Depth level in the tree; the root has depth 0")
    status: Literal["idle", "loading", "completed"] = Field(
        description="idle (not started), loading (researching), completed (axiom or all children completed)"
    )
    isAxiom: bool = Field(description="Whether this concept is a fundamental axiom")
    notes: Optional[str] = Field(None, description="Research findings for this concept")


class BreakdownChildInput(BaseModel):
    nodeId: str = Field(description="Unique id for the child node")
    concept: str = Field(description="A smaller, more specific concept")
    isAxiom: bool = Field(description="Whether this is an axiom that needs no further breakdown")
    reasoning: str = Field(description="Why this concept is or is not an axiom")


class BreakdownConceptInput(BaseModel):
    parentNodeId: str = Field(description="The parent node id being broken down")
    concept: str = Field(description="The concept being broken down")
    summary: str = Field(description="Summary of the research findings about this concept")
    children: List[BreakdownChildInput] = Field(description="Sub-concepts derived from the concept")


class ResearchConceptInput(BaseModel):
    nodeId: str = Field(description="The node id being researched")
    concept: str = Field(description="The concept to research")
    searchQueries: List[str] = Field(description="Search queries covering the concept from several angles")


class EvaluateAxiomInput(BaseModel):
    nodeId: str = Field(description="The node id being evaluated")
    concept: str = Field(description="The concept to evaluate")
    researchFindings: str = Field(description="Research findings about this concept")
    isAxiom: bool = Field(description="Whether this concept is a fundamental axiom")
    reasoning: str = Field(description="Reasoning behind the determination")
    confidence: float = Field(ge=0, le=1, description="Confidence in the determination")


class GenerateReportInput(BaseModel):
    title: str = Field(description="Title of the research")
    summary: str = Field(description="Executive summary")
    keyFindings: List[str] = Field(description="Key findings")
    methodology: str = Field(description="Research methodology used")
    conclusions: str = Field(description="Main conclusions")
    totalNodes: int = Field(description="Total number of nodes in the research tree")
    axiomNodes: int = Field(description="Number of axiom nodes identified")
    researchDepth: int = Field(description="Maximum depth reached in the tree")


def upsert_concept_node(
    nodeId: str,
    concept: str,
    depth: int,
    status: str,
    isAxiom: bool,
    parentId: Optional[str] = None,
    notes: Optional[str] = None
) -> Dict[str, Any]:
    return {
        "nodeId": nodeId,
        "concept": concept,
        "parentId": parentId,
        "depth": depth,
        "status": status,
        "isAxiom": isAxiom,
        "notes": notes,
    }


def breakdown_concept(
    parentNodeId: str,
    concept: str,
    summary: str,
    children: List[Any]
) -> Dict[str, Any]:
    normalized = [
        child.model_dump() if isinstance(child, BaseModel) else dict(child)
        for child in children
    ]
    return {
        "parentNodeId": parentNodeId,
        "concept": concept,
        "summary": summary,
        "children": normalized,
        "message": f'Broke down "{concept}" into {len(normalized)} sub-concepts',
    }


def research_concept(nodeId: str, concept: str, searchQueries: List[str]) -> Dict[str, Any]:
    return {
        "nodeId": nodeId,
        "concept": concept,
        "searchQueries": searchQueries,
        "status": "Research queries prepared - run them with searchWeb",
    }


def evaluate_axiom(
    nodeId: str,
    concept: str,
    researchFindings: str,
    isAxiom: bool,
    reasoning: str,
    confidence: float
) -> Dict[str, Any]:
    verdict = "an axiom" if isAxiom else "requiring further breakdown"
    return {
        "nodeId": nodeId,
        "concept": concept,
        "researchFindings": researchFindings,
        "isAxiom": isAxiom,
        "reasoning": reasoning,
        "confidence": confidence,
        "evaluation": f'Evaluated "{concept}" as {verdict} with {round(confidence * 100)}% confidence',
    }


def generate_report(
    title: str,
    summary: str,
    keyFindings: List[str],
    methodology: str,
    conclusions: str,
    totalNodes: int,
    axiomNodes: int,
    researchDepth: int
) -> Dict[str, Any]:
    return {
        "title": title,
        "summary": summary,
        "keyFindings": keyFindings,
        "methodology": methodology,
        "conclusions": conclusions,
        "totalNodes": totalNodes,
        "axiomNodes": axiomNodes,
        "researchDepth": researchDepth,
        "status": "Research report generated",
    }


def build_research_tools() -> List[BaseTool]:
    """Tree-reporting tools of the research surface"""

    return [
        StructuredTool.from_function(
            func=upsert_concept_node,
            name="upsertConceptNode",
            description="Create or update a node of the research tree with its research status",
            args_schema=UpsertConceptNodeInput,
        ),
        StructuredTool.from_function(
            func=breakdown_concept,
            name="breakdownConcept",
            description="Break a researched concept down into smaller concepts or axioms",
            args_schema=BreakdownConceptInput,
        ),
        StructuredTool.from_function(
            func=research_concept,
            name="researchConcept",
            description="Plan the web searches used to research a concept",
            args_schema=ResearchConceptInput,
        ),
        StructuredTool.from_function(
            func=evaluate_axiom,
            name="evaluateAxiom",
            description="Decide whether a researched concept is a fundamental axiom",
            args_schema=EvaluateAxiomInput,
        ),
        StructuredTool.from_function(
            func=generate_report,
            name="generateReport",
            description="Generate the final research report once the root node is completed",
            args_schema=GenerateReportInput,
        ),
    ]
