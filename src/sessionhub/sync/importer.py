"""Capture one session or import every transcript of a project."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from sessionhub.errors import SessionHubError
from sessionhub.sync.client import SyncClient
from sessionhub.sync.models import CreateProjectRequest, Project
from sessionhub.sync.project import detect_project
from sessionhub.sync.quota import QuotaGate
from sessionhub.sync.service import SessionService
from sessionhub.transcript.discovery import list_transcript_files
from sessionhub.transcript.models import InteractionKind
from sessionhub.transcript.parser import attach_sub_sessions, parse_transcript

logger = logging.getLogger(__name__)


def ensure_project(
    service: SessionService, project_name: str | None, project_path: str | Path
) -> Project:
    """Find the project by name or display name, creating it if absent.

    Without an explicit name, the name detected from ``project_path`` is used.
    """
    detected = detect_project(project_path)
    project_name = project_name or detected.name
    for project in service.get_projects():
        if project_name in (project.name, project.display_name):
            return project

    metadata = {"project_path": str(detected.path)}
    if detected.git_branch:
        metadata["git_branch"] = detected.git_branch
    logger.info("Creating project %s", project_name)
    return service.create_project(
        CreateProjectRequest(
            name=project_name,
            display_name=project_name,
            description=f"Auto-created project from CLI for {project_name}",
            git_remote=detected.git_remote,
            metadata=metadata,
        )
    )


@dataclass
class CaptureResult:
    session_id: str
    was_updated: bool
    new_interactions_count: int
    project_name: str
    session_name: str | None
    transcript_file: str
    input_tokens: int
    output_tokens: int
    cache_create_tokens: int
    cache_read_tokens: int
    prompts: int = 0
    responses: int = 0

    def to_payload(self) -> dict[str, Any]:
        return {
            "success": True,
            "sessionId": self.session_id,
            "wasUpdated": self.was_updated,
            "newInteractionsCount": self.new_interactions_count,
            "projectName": self.project_name,
            "sessionName": self.session_name,
            "transcriptFile": self.transcript_file,
            "totalInputTokens": self.input_tokens,
            "totalOutputTokens": self.output_tokens,
            "cacheCreateTokens": self.cache_create_tokens,
            "cacheReadTokens": self.cache_read_tokens,
            "prompts": self.prompts,
            "responses": self.responses,
        }


@dataclass
class FileResult:
    file: str
    success: bool
    session_id: str | None = None
    error: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"file": self.file, "success": self.success}
        if self.session_id:
            payload["sessionId"] = self.session_id
        if self.error:
            payload["error"] = self.error
        return payload


@dataclass
class ImportResult:
    project_name: str
    total_files: int
    results: list[FileResult] = field(default_factory=list)
    skipped_files: list[str] = field(default_factory=list)
    upgrade_url: str = ""

    @property
    def processed_files(self) -> int:
        return len(self.results)

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def error_count(self) -> int:
        return self.processed_files - self.success_count

    @property
    def was_limited(self) -> bool:
        return bool(self.skipped_files)

    @property
    def success(self) -> bool:
        return self.error_count == 0

    @property
    def failed_files(self) -> list[str]:
        return [r.file for r in self.results if not r.success]

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": self.success,
            "projectName": self.project_name,
            "totalFiles": self.total_files,
            "processedFiles": self.processed_files,
            "successCount": self.success_count,
            "errorCount": self.error_count,
            "wasLimited": self.was_limited,
            "results": [r.to_payload() for r in self.results],
        }
        if self.was_limited:
            payload["limitInfo"] = {
                "skippedCount": len(self.skipped_files),
                "upgradeUrl": self.upgrade_url,
            }
        return payload


@dataclass
class QuotaExceededResult:
    """The whole import was refused because no sessions remain."""

    current_count: int
    limit: int
    upgrade_url: str
    total_files: int

    success = False

    def to_payload(self) -> dict[str, Any]:
        return {
            "success": False,
            "error": "session_limit_exceeded",
            "message": f"Session limit reached ({self.current_count}/{self.limit} sessions)",
            "currentCount": self.current_count,
            "limit": self.limit,
            "upgradeUrl": self.upgrade_url,
            "totalFiles": self.total_files,
        }


class Importer:
    """Drive parse, quota, encryption and upsert for transcripts."""

    def __init__(self, service: SessionService, sync: SyncClient, quota: QuotaGate):
        self.service = service
        self.sync = sync
        self.quota = quota

    def capture(
        self,
        transcript: Path,
        project_path: str | Path,
        project_name: str | None = None,
        session_name: str | None = None,
        last_exchanges: int = 0,
    ) -> CaptureResult:
        """Sync a single transcript. Errors propagate to the caller.

        Quota is not checked here; the service enforces it per session.
        """
        transcript = Path(transcript)
        session = parse_transcript(transcript, last_exchanges=last_exchanges)
        session = attach_sub_sessions(session, transcript)

        project = ensure_project(self.service, project_name, project_path)
        result = self.sync.upsert_session(
            session,
            project,
            project_path=str(project_path),
            session_name=session_name,
            import_source="cli",
        )
        return CaptureResult(
            session_id=result.session_id,
            was_updated=result.was_updated,
            new_interactions_count=result.new_interactions_count,
            project_name=project.name,
            session_name=session_name,
            transcript_file=transcript.name,
            input_tokens=session.input_tokens,
            output_tokens=session.output_tokens,
            cache_create_tokens=session.cache_create_tokens,
            cache_read_tokens=session.cache_read_tokens,
            prompts=session.count(InteractionKind.PROMPT),
            responses=session.count(InteractionKind.RESPONSE),
        )

    def import_all(
        self,
        transcripts_dir: Path,
        project_path: str | Path,
        project_name: str | None = None,
    ) -> ImportResult | QuotaExceededResult:
        """Import every top-level transcript in ``transcripts_dir``.

        Files are processed one at a time in name order. A failure on one file
        is recorded and the rest continue.
        """
        files = list_transcript_files(Path(transcripts_dir))
        if not files:
            raise SessionHubError(f"No transcript files found in {transcripts_dir}")

        project = ensure_project(self.service, project_name, project_path)

        decision = self.quota.check(files)
        if decision.exceeded:
            snapshot = decision.snapshot
            return QuotaExceededResult(
                current_count=snapshot.current_count if snapshot else 0,
                limit=snapshot.limit if snapshot else 0,
                upgrade_url=decision.upgrade_url,
                total_files=len(files),
            )

        result = ImportResult(
            project_name=project.name,
            total_files=len(files),
            skipped_files=[f.name for f in decision.skipped],
            upgrade_url=decision.upgrade_url,
        )
        for path in decision.allowed:
            result.results.append(self._import_file(path, project, project_path))

        logger.info(
            "Imported %d/%d transcripts (%d failed)",
            result.success_count,
            result.processed_files,
            result.error_count,
        )
        return result

    def _import_file(self, path: Path, project: Project, project_path: str | Path) -> FileResult:
        try:
            session = attach_sub_sessions(parse_transcript(path), path)
            upserted = self.sync.upsert_session(
                session,
                project,
                project_path=str(project_path),
                import_source="cli_bulk",
            )
        except (SessionHubError, OSError) as exc:
            logger.error("Failed to import %s: %s", path.name, exc)
            return FileResult(file=path.name, success=False, error=str(exc))
        return FileResult(file=path.name, success=True, session_id=upserted.session_id)
