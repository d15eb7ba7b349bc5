"""Turn parsed sessions into idempotent SessionHub upserts."""

import json
import logging
from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any

from sessionhub.errors import ServiceError
from sessionhub.sync.envelope import EnvelopeBuilder
from sessionhub.sync.models import BatchResult, Project, UpsertResult, UpsertSessionRequest, WireInteraction
from sessionhub.sync.service import SessionService
from sessionhub.transcript.models import Interaction, ParsedSession

logger = logging.getLogger(__name__)

CHUNK_SIZE = 500
INLINE_INTERACTION_LIMIT = 5000

# "debug" is checked before "bug", which it contains.
_SESSION_TYPE_KEYWORDS = (
    ("debugging", ("debug",)),
    ("bugfix", ("bug", "fix", "hotfix")),
    ("refactor", ("refactor",)),
    ("exploration", ("explore", "experiment")),
    ("feature", ("feature",)),
)


def serialize_metadata(metadata: Mapping[str, Any]) -> dict[str, str]:
    """Flatten metadata to the string-to-string map the service stores."""
    serialized = {}
    for key, value in metadata.items():
        if isinstance(value, str):
            serialized[key] = value
        elif isinstance(value, bool):
            serialized[key] = "true" if value else "false"
        elif value is None or isinstance(value, (int, float)):
            serialized[key] = str(value)
        else:
            serialized[key] = json.dumps(value)
    return serialized


def determine_session_type(session_name: str | None, git_branch: str | None) -> str:
    text = f"{session_name or ''} {git_branch or ''}".lower()
    for session_type, keywords in _SESSION_TYPE_KEYWORDS:
        if any(keyword in text for keyword in keywords):
            return session_type
    return "feature"


def default_session_name() -> str:
    return f"Imported Session - {datetime.now().astimezone().isoformat(timespec='seconds')}"


def to_wire_interaction(interaction: Interaction | WireInteraction) -> WireInteraction:
    if isinstance(interaction, WireInteraction):
        return interaction
    return WireInteraction(
        timestamp=interaction.timestamp,
        interaction_type=interaction.kind.value,
        content=interaction.content,
        tool_name=interaction.tool_name,
        metadata=dict(interaction.metadata),
        input_tokens=interaction.input_tokens or 0,
        output_tokens=interaction.output_tokens or 0,
    )


def field_groups(session: ParsedSession) -> dict[str, list[dict[str, Any]]]:
    """The sensitive parts of a session, as JSON-ready lists per group."""
    todo_snapshots = []
    for snapshot in session.progress_snapshots:
        todos = [
            {
                "content": todo.get("content"),
                "status": todo.get("status"),
                "active_form": todo.get("activeForm"),
            }
            for todo in snapshot.todos
            if isinstance(todo, dict)
        ]
        if snapshot.timestamp and todos:
            todo_snapshots.append({"timestamp": snapshot.timestamp, "todos": todos})

    return {
        "interactions": [
            to_wire_interaction(i).model_dump(mode="json", exclude_none=True)
            for i in session.interactions
        ],
        "todo_snapshots": todo_snapshots,
        "plans": [plan.model_dump() for plan in session.plans],
        "sub_sessions": [sub.model_dump(mode="json") for sub in session.sub_sessions],
        "attachment_urls": [ref.model_dump() for ref in session.attachments],
    }


def session_metadata(session: ParsedSession, import_source: str) -> dict[str, str]:
    metadata: dict[str, Any] = {
        "import_source": import_source,
        "original_session_id": session.session_id,
    }
    if session.cwd:
        metadata["cwd"] = session.cwd
    if session.languages:
        metadata["languages"] = session.languages
    if session.model_usage:
        metadata["model_info"] = session.model_usage.model_dump()
    if session.planning:
        metadata["planning_mode"] = session.planning.model_dump()
    return serialize_metadata(metadata)


class SyncClient:
    """Upsert sessions and append interaction batches."""

    def __init__(
        self,
        service: SessionService,
        envelopes: EnvelopeBuilder,
        chunk_size: int = CHUNK_SIZE,
        inline_limit: int = INLINE_INTERACTION_LIMIT,
    ):
        self.service = service
        self.envelopes = envelopes
        self.chunk_size = chunk_size
        self.inline_limit = inline_limit

    def build_request(
        self,
        session: ParsedSession,
        project: Project,
        project_path: str | None = None,
        session_name: str | None = None,
        import_source: str = "cli",
    ) -> UpsertSessionRequest:
        """Build the upsert request, sealing field groups if the project demands it.

        Raises EncryptionKeyUnavailable before anything is sent when an
        end-to-end project has no usable key.
        """
        session_name = session_name or default_session_name()
        groups = field_groups(session)
        sealed = self.envelopes.build(project.encryption_mode, groups, project.team_id)

        request = UpsertSessionRequest(
            session_id=session.session_id,
            project_name=project.name,
            project_path=project_path or session.cwd or None,
            start_time=session.start_time,
            end_time=session.end_time or None,
            name=session_name,
            tool_name=session.tool_name or "claude-code",
            git_branch=session.git_branch or None,
            type=determine_session_type(session_name, session.git_branch),
            input_tokens=session.input_tokens,
            output_tokens=session.output_tokens,
            cache_create_tokens=session.cache_create_tokens,
            cache_read_tokens=session.cache_read_tokens,
            plan_slug=session.plan_slug or None,
            metadata=session_metadata(session, import_source),
        )

        if sealed is not None:
            return request.model_copy(
                update={
                    "encryption_status": "encrypted",
                    "encryption_version": sealed.key_version,
                    **sealed.envelopes,
                }
            )

        return request.model_copy(
            update={
                "interactions": [WireInteraction.model_validate(i) for i in groups["interactions"]],
                "todo_snapshots": groups["todo_snapshots"],
                "plans": groups["plans"],
                "attachment_urls": groups["attachment_urls"],
                "sub_sessions_json": json.dumps(groups["sub_sessions"]) if groups["sub_sessions"] else None,
            }
        )

    def upsert_session(
        self,
        session: ParsedSession,
        project: Project,
        project_path: str | None = None,
        session_name: str | None = None,
        import_source: str = "cli",
    ) -> UpsertResult:
        """Create or update the session identified by its session id and project.

        Plaintext sessions with more than ``inline_limit`` interactions are sent
        without interactions, which then follow as chunked batches.
        """
        request = self.build_request(
            session,
            project,
            project_path=project_path,
            session_name=session_name,
            import_source=import_source,
        )

        deferred: list[WireInteraction] = []
        if request.encryption_status == "plaintext" and len(request.interactions) > self.inline_limit:
            deferred = request.interactions
            request = request.model_copy(update={"interactions": []})

        result = self.service.upsert_session(request)
        action = "updated" if result.was_updated else "created"
        note = " (encrypted)" if request.encryption_status == "encrypted" else ""
        logger.info(
            "Session %s: %s (%d interactions)%s",
            action,
            result.session_id,
            result.new_interactions_count,
            note,
        )

        if deferred:
            batch = self.append_interactions(result.session_id, deferred)
            if not batch.success:
                logger.warning(
                    "%d of %d interactions failed to append", batch.failed, len(deferred)
                )
            result = result.model_copy(
                update={"new_interactions_count": result.new_interactions_count + batch.processed}
            )
        return result

    def append_interactions(
        self,
        session_id: str,
        interactions: Sequence[Interaction | WireInteraction],
        chunk_size: int | None = None,
    ) -> BatchResult:
        """Append interactions in fixed-size chunks.

        A failed chunk counts all of its interactions as failed and does not
        stop the remaining chunks.
        """
        size = chunk_size or self.chunk_size
        wire = [to_wire_interaction(i) for i in interactions]
        processed = failed = 0

        for number, start in enumerate(range(0, len(wire), size), start=1):
            chunk = wire[start:start + size]
            try:
                result = self.service.append_interactions_batch(session_id, chunk)
            except ServiceError as exc:
                logger.error("Batch %d failed: %s", number, exc)
                failed += len(chunk)
                continue
            logger.info("Batch %d: %d processed", number, result.processed)
            processed += result.processed
            failed += result.failed

        return BatchResult(processed=processed, failed=failed)
