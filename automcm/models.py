from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class Phase(str, Enum):
    idle = "idle"
    planning = "planning"
    modeling = "modeling"
    writing = "writing"


class ArtifactKind(str, Enum):
    code = "code"
    figure = "figure"
    latex = "latex"
    data = "data"
    document = "document"
    plan = "plan"
    model = "model"
    experiments = "experiments"
    analysis = "analysis"
    visualizations = "visualizations"


class CloneStatus(str, Enum):
    running = "running"
    completed = "completed"


class ArtifactRecord(BaseModel):
    id: str
    name: str
    kind: ArtifactKind
    path: str
    description: str = ""
    generated_by: str = "unknown"
    metadata: Dict[str, Any] = Field(default_factory=dict)
    timestamp: str
    version: int = Field(default=1, ge=1)


class ProblemMeta(BaseModel):
    title: str = Field(default="Untitled", description="Problem title shown in AUTOMCM.md")
    problem_id: Optional[str] = Field(default=None, description="Contest problem letter or identifier")
    year: Optional[int] = None
    source_path: Optional[str] = Field(default=None, description="Path of the extracted problem statement")


class PlanningResult(BaseModel):
    rag_analysis: str
    parse: str
    research: str
    plan: str


class ModelingResult(BaseModel):
    model: str
    code_extracted: bool = False
    experiments: Optional[str] = None
    visualizations: Optional[str] = None
    sensitivity: Optional[str] = None


class PaperValidation(BaseModel):
    word_count: int
    estimated_pages: int
    figure_count: int
    table_count: int
    equation_count: int
    section_count: int
    has_experimental_section: bool
    is_complete: bool


class WritingResult(BaseModel):
    paper: str
    compiled: bool = False
    expanded: bool = False
    validation: Optional[PaperValidation] = None


class WorkflowResult(BaseModel):
    plan: PlanningResult
    model: ModelingResult
    paper: WritingResult


class WorkflowState(BaseModel):
    """Checkpoint persisted at <workspace>/.workflow-state.json."""
    planning_complete: bool = False
    modeling_complete: bool = False
    writing_complete: bool = False
    phase: Phase = Phase.idle
    problem_title: Optional[str] = None
    planning: Optional[PlanningResult] = None
    modeling: Optional[ModelingResult] = None
    writing: Optional[WritingResult] = None
    analysis: Dict[str, Any] = Field(default_factory=dict)
    updated_at: Optional[str] = None


class ServiceStatus(BaseModel):
    is_running: bool
    phase: Phase
    has_workspace: bool


# API request models
class InitializeWorkspaceRequest(BaseModel):
    problem: ProblemMeta = Field(default_factory=ProblemMeta)


class PlanningRequest(BaseModel):
    problem_text: str = Field(..., min_length=1, description="Problem statement text")
    retries: Optional[int] = Field(default=None, ge=0, description="Override PLANNING_RETRIES")


class ModelingRequest(BaseModel):
    plan: Optional[str] = Field(default=None, description="Approved plan (defaults to the checkpointed plan)")


class WorkflowRunRequest(BaseModel):
    problem: ProblemMeta = Field(default_factory=ProblemMeta)
    problem_text: str = Field(..., min_length=1)


class ArtifactListResponse(BaseModel):
    artifacts: List[ArtifactRecord]
    stats: Dict[str, Any]
