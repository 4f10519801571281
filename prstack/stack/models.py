"""Pydantic models for everything a stacking run produces."""

from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, Field, model_validator

WarningCategory = Literal[
    "assignment",
    "grouping",
    "coupling",
    "verification.scope",
    "verification.completeness",
    "system",
]
Severity = Literal["info", "warn"]
CleanupMode = Literal["close", "delete"]


class StructuredWarning(BaseModel):
    """A non-blocking finding carried forward for display."""
    category: WarningCategory
    severity: Severity = "warn"
    title: str
    message: str
    details: Optional[List[str]] = None


class Group(BaseModel):
    """A semantic cluster of changed files produced by the grouping stage."""
    id: str = ""
    name: str
    type: str = "feature"
    description: str = ""
    files: List[str] = Field(default_factory=list)
    depends_on: List[str] = Field(default_factory=list)
    pr_title: Optional[str] = None

    class Config:
        """Pydantic config."""
        extra = "allow"

    @model_validator(mode="after")
    def _default_id(self) -> "Group":
        if not self.id:
            self.id = self.name
        return self


class FileSummary(BaseModel):
    path: str
    status: str = "modified"
    summary: str = ""


class PromptContext(BaseModel):
    """Free-form context forwarded into the arbitration prompt."""
    commit_messages: List[str] = Field(default_factory=list)
    discussion: str = ""


class AmbiguousPath(BaseModel):
    path: str
    groups: List[str]


class Classification(BaseModel):
    """Result of counting how many groups claim each changed path."""
    exclusive: Dict[str, str] = Field(default_factory=dict)
    ambiguous: List[AmbiguousPath] = Field(default_factory=list)
    unassigned: List[str] = Field(default_factory=list)


class Reattribution(BaseModel):
    path: str
    from_groups: List[str]
    to_group: str
    reason: str = ""


class ForcedMerge(BaseModel):
    path: str
    from_group: str
    to_group: str
    rule: str = ""


class PartitionResult(BaseModel):
    """Resolved ownership of every changed file."""
    ownership: Dict[str, str] = Field(default_factory=dict)
    reattributed: List[Reattribution] = Field(default_factory=list)
    forced_merges: List[ForcedMerge] = Field(default_factory=list)
    shared_foundation: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)
    structured_warnings: List[StructuredWarning] = Field(default_factory=list)
    arbitrated: bool = False


class EdgeEvidence(BaseModel):
    path: str
    # Set for path-order edges: the commits that edited path in this order
    from_commit: Optional[str] = None
    to_commit: Optional[str] = None


class DependencyEdge(BaseModel):
    """Ordering constraint: `from` is applied before `to`."""
    from_: str = Field(alias="from")
    to: str
    kind: str
    evidence: Optional[EdgeEvidence] = None

    class Config:
        """Pydantic config."""
        populate_by_name = True

    def describe(self) -> str:
        reason = f" ({self.kind}: {self.evidence.path})" if self.evidence else f" ({self.kind})"
        return f"{self.from_} before {self.to}{reason}"


class CycleInfo(BaseModel):
    group_cycle: List[str]
    edge_cycle: List[DependencyEdge]


class FeasibilityResult(BaseModel):
    feasible: bool
    ordered_group_ids: List[str] = Field(default_factory=list)
    cycle: Optional[CycleInfo] = None
    edges: List[DependencyEdge] = Field(default_factory=list)
    # Soft hints left out because they contradicted stronger edges
    dropped_edges: List[DependencyEdge] = Field(default_factory=list)
    structured_warnings: List[StructuredWarning] = Field(default_factory=list)


class GroupStats(BaseModel):
    additions: int = 0
    deletions: int = 0
    files_added: int = 0
    files_modified: int = 0
    files_deleted: int = 0


class PlannedGroup(Group):
    """A group with its place in the stack."""
    deps: List[str] = Field(default_factory=list)
    order: int = 0
    stats: GroupStats = Field(default_factory=GroupStats)


class Plan(BaseModel):
    base_sha: str
    head_sha: str
    groups: List[PlannedGroup] = Field(default_factory=list)
    expected_trees: Dict[str, str] = Field(default_factory=dict)
    shared_foundation: Optional[str] = None
    structured_warnings: List[StructuredWarning] = Field(default_factory=list)


class GroupCommit(BaseModel):
    group_id: str
    commit_sha: str
    tree_sha: str
    branch_name: str
    pr_title: Optional[str] = None


class ExecResult(BaseModel):
    run_id: str
    source_copy_branch: str
    group_commits: List[GroupCommit] = Field(default_factory=list)
    final_tree_sha: str = ""
    verified: bool = False


class VerifyResult(BaseModel):
    verified: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    structured_warnings: List[StructuredWarning] = Field(default_factory=list)


class PRMeta(BaseModel):
    """The original pull request being split."""
    number: int
    title: str = ""
    url: str = ""
    base_branch: str = "main"
    body: str = ""


class PublishedBranch(BaseModel):
    name: str
    pushed: bool
    error: Optional[str] = None
    group_id: Optional[str] = None


class PublishedPR(BaseModel):
    group_id: str
    number: int
    url: str
    title: str
    base_branch: str
    head_branch: str


class PublishFailure(BaseModel):
    group_id: str
    stage: Literal["push", "create", "update"]
    message: str


class CleanupItem(BaseModel):
    group_id: str
    number: Optional[int] = None
    head_branch: str
    closed: bool = False
    branch_deleted: bool = False
    message: Optional[str] = None


class CleanupResult(BaseModel):
    mode: CleanupMode
    completed_at: str
    items: List[CleanupItem] = Field(default_factory=list)


class PublishResult(BaseModel):
    branches: List[PublishedBranch] = Field(default_factory=list)
    prs: List[PublishedPR] = Field(default_factory=list)
    failures: List[PublishFailure] = Field(default_factory=list)
    published_at: str = ""
    cleanup_result: Optional[CleanupResult] = Field(default=None, alias="cleanupResult")

    class Config:
        """Pydantic config."""
        populate_by_name = True


class PreviewItem(BaseModel):
    group_id: str
    order: int
    total: int
    title: str
    body: str
    base_branch: str
    head_branch: str
    dependency_names: List[str] = Field(default_factory=list)


class PublishPreview(BaseModel):
    template_path: Optional[str] = None
    items: List[PreviewItem] = Field(default_factory=list)
    generated_at: str = ""
