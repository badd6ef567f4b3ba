"""Pydantic models for config types."""

from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field

class RepoConfig(BaseModel):
    """Repository configuration."""
    github_remote: str = "origin"
    github_branch: str = "main"
    long_lived_branches: List[str] = Field(default_factory=lambda: ["main"])
    github_repo_owner: Optional[str] = None
    github_repo_name: Optional[str] = None

    class Config:
        """Pydantic config."""
        extra = "allow"

class UserConfig(BaseModel):
    """User configuration, including push credentials."""
    github_token: Optional[str] = None
    ssh_private_key_path: Optional[str] = None

    class Config:
        """Pydantic config."""
        extra = "allow"

class ToolConfig(BaseModel):
    """Tool configuration."""
    pretend: bool = False

    class Config:
        """Pydantic config."""
        extra = "allow"

class SttackConfig(BaseModel):
    """Full pysttack configuration."""
    repo: RepoConfig = Field(default_factory=RepoConfig)
    user: UserConfig = Field(default_factory=UserConfig)
    tool: ToolConfig = Field(default_factory=ToolConfig)
    state: Optional[Dict[str, Any]] = None

    class Config:
        """Pydantic config."""
        extra = "allow"

    @property
    def target_branch(self) -> str:
        """Branch the bottom PR of every stack is based on."""
        return self.repo.github_branch
