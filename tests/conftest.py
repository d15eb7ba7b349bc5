"""Shared fixtures: an in-memory SessionService and transcript builders."""

import base64
import json
from collections.abc import Sequence

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from sessionhub.sync.models import (
    BatchResult,
    CreateProjectRequest,
    KeyMaterial,
    Project,
    QuotaSnapshot,
    Team,
    UpsertResult,
    UpsertSessionRequest,
    UserInfo,
    WireInteraction,
)


class FakeService:
    """In-memory SessionService that records every call."""

    def __init__(self):
        self.user: UserInfo | None = UserInfo(user_id="u1", email="dev@example.com")
        self.projects: list[Project] = []
        self.created: list[CreateProjectRequest] = []
        self.upserts: list[UpsertSessionRequest] = []
        self.batches: list[tuple[str, list[WireInteraction]]] = []
        self.quota: QuotaSnapshot | None = None
        self.quota_error: Exception | None = None
        self.user_key: KeyMaterial | None = None
        self.team_keys: dict[str, KeyMaterial] = {}
        self.teams: list[Team] = []
        self.upsert_errors: dict[str, Exception] = {}
        self.batch_errors: dict[int, Exception] = {}
        self.calls: list[str] = []
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def close(self):
        self.closed = True

    def validate_credential(self) -> UserInfo | None:
        self.calls.append("validate_credential")
        return self.user

    def get_projects(self) -> list[Project]:
        self.calls.append("get_projects")
        return list(self.projects)

    def create_project(self, request: CreateProjectRequest) -> Project:
        self.calls.append("create_project")
        self.created.append(request)
        project = Project(id=f"p{len(self.projects) + 1}", name=request.name, display_name=request.display_name)
        self.projects.append(project)
        return project

    def upsert_session(self, request: UpsertSessionRequest) -> UpsertResult:
        self.calls.append("upsert_session")
        if request.session_id in self.upsert_errors:
            raise self.upsert_errors[request.session_id]
        was_updated = any(u.session_id == request.session_id for u in self.upserts)
        self.upserts.append(request)
        return UpsertResult(
            session_id=request.session_id,
            was_updated=was_updated,
            new_interactions_count=len(request.interactions),
        )

    def append_interactions_batch(
        self, session_id: str, interactions: Sequence[WireInteraction]
    ) -> BatchResult:
        self.calls.append("append_interactions_batch")
        number = len(self.batches) + 1
        self.batches.append((session_id, list(interactions)))
        if number in self.batch_errors:
            raise self.batch_errors[number]
        return BatchResult(processed=len(interactions))

    def get_quota(self) -> QuotaSnapshot | None:
        self.calls.append("get_quota")
        if self.quota_error:
            raise self.quota_error
        return self.quota

    def get_user_public_key(self) -> KeyMaterial | None:
        self.calls.append("get_user_public_key")
        return self.user_key

    def get_team_public_key(self, team_id: str) -> KeyMaterial | None:
        self.calls.append(f"get_team_public_key:{team_id}")
        return self.team_keys.get(team_id)

    def list_teams(self) -> list[Team]:
        self.calls.append("list_teams")
        return list(self.teams)


@pytest.fixture
def service():
    return FakeService()


@pytest.fixture(scope="session")
def rsa_private_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def public_key_b64(rsa_private_key):
    der = rsa_private_key.public_key().public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return base64.b64encode(der).decode("ascii")


@pytest.fixture(autouse=True)
def isolated_dirs(tmp_path, monkeypatch):
    """Keep config and Claude project lookups inside tmp_path."""
    import sessionhub.config as config

    home = tmp_path / ".sessionhub"
    projects = tmp_path / ".claude" / "projects"
    monkeypatch.setattr(config, "SESSIONHUB_DIR", home)
    monkeypatch.setattr(config, "CONFIG_PATH", home / "config.json")
    monkeypatch.setattr(config, "CLAUDE_PROJECTS_DIR", projects)
    monkeypatch.delenv("SESSIONHUB_API_KEY", raising=False)
    monkeypatch.delenv("SESSIONHUB_BACKEND_URL", raising=False)
    return projects


SESSION_ID = "0b7c2a3e-1f2d-4c5b-9a8e-7d6c5b4a3f21"


def user_line(text, ts="2025-01-01T10:00:00Z", session_id=SESSION_ID, **extra):
    entry = {
        "type": "user",
        "timestamp": ts,
        "sessionId": session_id,
        "message": {"role": "user", "content": text},
        **extra,
    }
    return json.dumps(entry)


def assistant_line(
    content,
    ts="2025-01-01T10:00:05Z",
    input_tokens=0,
    output_tokens=0,
    model="claude-sonnet-4",
    session_id=SESSION_ID,
    **extra,
):
    entry = {
        "type": "assistant",
        "timestamp": ts,
        "sessionId": session_id,
        "message": {
            "role": "assistant",
            "model": model,
            "content": content,
            "usage": {"input_tokens": input_tokens, "output_tokens": output_tokens},
        },
        **extra,
    }
    return json.dumps(entry)


def tool_result_line(tool_use_id, result, ts="2025-01-01T10:00:07Z", session_id=SESSION_ID):
    return json.dumps(
        {
            "type": "user",
            "timestamp": ts,
            "sessionId": session_id,
            "message": {
                "role": "user",
                "content": [{"type": "tool_result", "tool_use_id": tool_use_id, "content": "ok"}],
            },
            "toolUseResult": result,
        }
    )


def write_transcript(path, lines):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines) + "\n")
    return path


@pytest.fixture
def two_exchanges():
    return [
        user_line("first question", ts="2025-01-01T10:00:00Z", cwd="/work/app", gitBranch="main"),
        assistant_line("first answer", ts="2025-01-01T10:00:05Z", input_tokens=10, output_tokens=5),
        user_line("second question", ts="2025-01-01T10:01:00Z"),
        assistant_line("second answer", ts="2025-01-01T10:01:05Z", input_tokens=10, output_tokens=5),
    ]
