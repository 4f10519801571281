"""Pydantic models for config types."""

from typing import List, Optional
from pydantic import BaseModel, Field

DEFAULT_EDGE_KINDS = ["shared-file", "forced-merge", "declared", "import", "path-order"]

class RepoConfig(BaseModel):
    """Repository configuration."""
    github_remote: str = "origin"
    github_branch: str = "main"
    github_repo_owner: Optional[str] = None
    github_repo_name: Optional[str] = None
    branch_prefix: str = "prstack"

    class Config:
        """Pydantic config."""
        extra = "allow"

class UserConfig(BaseModel):
    """User configuration."""
    log_git_commands: bool = True
    author_name: Optional[str] = None
    author_email: Optional[str] = None

    class Config:
        """Pydantic config."""
        extra = "allow"

class ToolConfig(BaseModel):
    """Tool configuration."""
    concurrency: int = 4
    pretend: bool = False
    max_concurrent_runs: int = 2
    state_dir: Optional[str] = None
    edge_kinds: List[str] = Field(default_factory=lambda: list(DEFAULT_EDGE_KINDS))
    # Ask the model for conventional-commit PR titles after planning
    generate_titles: bool = False

    class Config:
        """Pydantic config."""
        extra = "allow"

class LLMConfig(BaseModel):
    """Arbitration model configuration."""
    api_key: Optional[str] = None
    model: str = "anthropic/claude-sonnet-4"
    base_url: str = "https://openrouter.ai/api/v1"
    timeout: float = 120.0
    max_tokens: int = 4096

    class Config:
        """Pydantic config."""
        extra = "allow"

class PrstackConfig(BaseModel):
    """Full prstack configuration."""
    repo: RepoConfig = Field(default_factory=RepoConfig)
    user: UserConfig = Field(default_factory=UserConfig)
    tool: ToolConfig = Field(default_factory=ToolConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)

    class Config:
        """Pydantic config."""
        extra = "allow"
