"""Normalized session data extracted from a transcript."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class InteractionKind(str, Enum):
    PROMPT = "prompt"
    RESPONSE = "response"
    TOOL_CALL = "tool_call"


class Interaction(BaseModel):
    """One prompt, response or tool invocation."""

    model_config = ConfigDict(frozen=True)

    timestamp: str
    kind: InteractionKind
    content: str
    tool_name: str | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None
    metadata: dict[str, str] = Field(default_factory=dict)


class ProgressSnapshot(BaseModel):
    """A todo list as written by the assistant at one point in time."""

    timestamp: str
    todos: list[dict[str, Any]]


class PlanSnapshot(BaseModel):
    timestamp: str
    plan: str


class AttachmentRef(BaseModel):
    """Reference to an image the user pasted into a prompt."""

    interaction_index: int
    type: str = "image"
    media_type: str
    size_bytes: int


class ModelUsage(BaseModel):
    models: list[str]
    primary_model: str | None
    model_usage: dict[str, int]
    model_switches: int


class PlanningInfo(BaseModel):
    planning_cycles: int
    exit_plan_timestamps: list[str]


class SubAgentRef(BaseModel):
    """A sub-agent spawned by a Task tool call in the parent transcript."""

    agent_id: str
    interaction_index: int
    task_description: str | None = None
    task_prompt: str | None = None


class SubSessionMessage(BaseModel):
    role: str
    content: str
    timestamp: str


class SubSession(BaseModel):
    agent_id: str
    task_description: str | None = None
    task_prompt: str | None = None
    interaction_index: int
    interactions: list[Interaction] = Field(default_factory=list)
    messages: list[SubSessionMessage] = Field(default_factory=list)
    start_time: str
    end_time: str | None = None
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class ParsedSession(BaseModel):
    """Everything recovered from one transcript file."""

    session_id: str
    start_time: str
    end_time: str
    cwd: str = ""
    git_branch: str = ""
    tool_name: str = "claude-code"
    plan_slug: str = ""
    interactions: list[Interaction] = Field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0
    cache_create_tokens: int = 0
    cache_read_tokens: int = 0

    progress_snapshots: list[ProgressSnapshot] = Field(default_factory=list)
    plans: list[PlanSnapshot] = Field(default_factory=list)
    attachments: list[AttachmentRef] = Field(default_factory=list)
    model_usage: ModelUsage | None = None
    planning: PlanningInfo | None = None
    languages: list[str] = Field(default_factory=list)
    sub_agents: list[SubAgentRef] = Field(default_factory=list)
    sub_sessions: list[SubSession] = Field(default_factory=list)

    def count(self, kind: InteractionKind) -> int:
        return sum(1 for i in self.interactions if i.kind == kind)
