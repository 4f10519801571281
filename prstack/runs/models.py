"""Run request and run record models."""

from typing import Any, Dict, List, Literal, Optional, Tuple
from pydantic import BaseModel, Field

from ..stack.models import (
    ExecResult, FeasibilityResult, FileSummary, Group, Plan, PRMeta, PartitionResult,
    PromptContext, PublishPreview, PublishResult, VerifyResult,
)

RunStatus = Literal["running", "done", "error", "canceled"]
PHASES = ["partitioning", "feasibility", "planning", "executing", "verifying", "done"]


class StackRequest(BaseModel):
    """Everything needed to split one pull request."""
    run_id: Optional[str] = None
    pr: PRMeta
    base_sha: str
    head_sha: str
    source_ref: Optional[str] = None
    groups: List[Group]
    changed_files: List[str] = Field(default_factory=list)
    file_summaries: List[FileSummary] = Field(default_factory=list)
    context: PromptContext = Field(default_factory=PromptContext)
    author: Optional[Tuple[str, str]] = None


class RunRecord(BaseModel):
    """The single serializable state of one stacking run."""
    run_id: str = Field(alias="runId")
    status: RunStatus = "running"
    phase: str = "partitioning"
    error: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)
    partition: Optional[PartitionResult] = None
    feasibility: Optional[FeasibilityResult] = None
    plan: Optional[Plan] = None
    exec_result: Optional[ExecResult] = Field(default=None, alias="execResult")
    verify_result: Optional[VerifyResult] = Field(default=None, alias="verifyResult")
    publish_result: Optional[PublishResult] = Field(default=None, alias="publishResult")
    publish_preview: Optional[PublishPreview] = Field(default=None, alias="publishPreview")
    started_at: str = Field(default="", alias="startedAt")
    finished_at: Optional[str] = Field(default=None, alias="finishedAt")

    class Config:
        """Pydantic config."""
        populate_by_name = True

    @property
    def finished(self) -> bool:
        return self.status != "running"

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)
