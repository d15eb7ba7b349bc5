"""Request and response models exchanged with the SessionHub service."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

UNLIMITED = -1


class EncryptionMode(str, Enum):
    """How a destination project stores session content."""

    ENHANCED = "enhanced"
    E2E_PERSONAL = "e2e_personal"
    E2E_TEAM = "e2e_team"

    @property
    def requires_e2e(self) -> bool:
        return self is not EncryptionMode.ENHANCED


class UserInfo(BaseModel):
    user_id: str
    email: str = ""
    subscription_tier: str = "free"


class Team(BaseModel):
    id: str
    name: str = ""


class Project(BaseModel):
    id: str
    name: str
    display_name: str = ""
    description: str | None = None
    git_remote: str | None = None
    team_id: str | None = None
    encryption_mode: EncryptionMode = EncryptionMode.ENHANCED
    metadata: dict[str, str] = Field(default_factory=dict)


class CreateProjectRequest(BaseModel):
    name: str
    display_name: str
    description: str | None = None
    git_remote: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)


class KeyMaterial(BaseModel):
    public_key: str = ""
    key_version: int = 1


class QuotaSnapshot(BaseModel):
    current_count: int = 0
    limit: int = 0
    remaining: int = 0
    subscription_tier: str = "free"

    @property
    def unlimited(self) -> bool:
        return self.limit == UNLIMITED


class WireInteraction(BaseModel):
    timestamp: str
    interaction_type: str
    content: str
    tool_name: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)
    input_tokens: int = 0
    output_tokens: int = 0


class UpsertSessionRequest(BaseModel):
    session_id: str
    project_name: str
    project_path: str | None = None
    start_time: str
    end_time: str | None = None
    name: str | None = None
    tool_name: str = "claude-code"
    git_branch: str | None = None
    type: str = "feature"
    input_tokens: int = 0
    output_tokens: int = 0
    cache_create_tokens: int = 0
    cache_read_tokens: int = 0
    plan_slug: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)

    encryption_status: str = "plaintext"
    encryption_version: int = 0
    interactions: list[WireInteraction] = Field(default_factory=list)
    todo_snapshots: list[dict[str, Any]] = Field(default_factory=list)
    plans: list[dict[str, Any]] = Field(default_factory=list)
    attachment_urls: list[dict[str, Any]] = Field(default_factory=list)
    sub_sessions_json: str | None = None

    encrypted_interactions: str | None = None
    encrypted_todo_snapshots: str | None = None
    encrypted_plans: str | None = None
    encrypted_sub_sessions: str | None = None
    encrypted_attachment_urls: str | None = None


class UpsertResult(BaseModel):
    session_id: str
    was_updated: bool = False
    new_interactions_count: int = 0
    analysis_triggered: bool = False
    observations_triggered: bool = False


class BatchResult(BaseModel):
    processed: int = 0
    failed: int = 0

    @property
    def success(self) -> bool:
        return self.failed == 0
