"""Parse Claude Code JSONL transcripts into ParsedSession models."""

import json
import logging
import math
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from sessionhub.errors import EmptyTranscript, TranscriptTooLarge
from sessionhub.transcript.models import (
    AttachmentRef,
    Interaction,
    InteractionKind,
    ModelUsage,
    ParsedSession,
    PlanningInfo,
    PlanSnapshot,
    ProgressSnapshot,
    SubAgentRef,
    SubSession,
    SubSessionMessage,
)
from sessionhub.transcript.records import (
    EXCLUDED_TOOLS,
    EXIT_PLAN_TOOL,
    TODO_TOOL,
    PromptRecord,
    RecordHeader,
    ResponseRecord,
    ToolCallRecord,
    ToolResultRecord,
    ToolUse,
    as_dict,
    as_str,
    classify,
    parse_line,
    read_header,
)
from sessionhub.transcript.window import filter_last_exchanges, recompute_tokens

logger = logging.getLogger(__name__)

MAX_TRANSCRIPT_BYTES = 100 * 1024 * 1024

CODE_EDIT_TOOLS = ("Edit", "Write", "MultiEdit")
SEARCH_TOOLS = ("Grep", "Glob")
TASK_TOOL = "Task"
WEB_SEARCH_TOOL = "WebSearch"

LANGUAGE_BY_EXTENSION = {
    ".js": "javascript",
    ".jsx": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".py": "python",
    ".java": "java",
    ".sol": "solidity",
    ".go": "go",
    ".rs": "rust",
    ".c": "c",
    ".cpp": "cpp",
    ".cc": "cpp",
    ".cxx": "cpp",
    ".swift": "swift",
    ".kt": "kotlin",
    ".kts": "kotlin",
    ".php": "php",
    ".rb": "ruby",
    ".sh": "shell",
    ".bash": "shell",
    ".sql": "sql",
    ".html": "html",
    ".htm": "html",
    ".css": "css",
    ".scss": "css",
    ".sass": "css",
}


def detect_language(file_path: str) -> str | None:
    return LANGUAGE_BY_EXTENSION.get(Path(file_path.lower()).suffix)


def essential_tool_input(name: str, tool_input: dict[str, Any]) -> dict[str, Any] | None:
    """Keep only the parts of a tool input worth syncing."""
    if name in CODE_EDIT_TOOLS:
        essential: dict[str, Any] = {"file_path": tool_input.get("file_path")}
        if name == "Write" and tool_input.get("content"):
            essential["content"] = tool_input["content"]
        if name == "Edit":
            essential["old_string"] = tool_input.get("old_string")
            essential["new_string"] = tool_input.get("new_string")
        if name == "MultiEdit" and tool_input.get("edits"):
            essential["edits"] = tool_input["edits"]
        return essential
    if name == "Bash" and tool_input.get("command"):
        return {"command": tool_input["command"]}
    if name in SEARCH_TOOLS and tool_input.get("pattern"):
        essential = {"pattern": tool_input["pattern"]}
        if tool_input.get("path"):
            essential["path"] = tool_input["path"]
        return essential
    if name == "Read" and tool_input.get("file_path"):
        return {"file_path": tool_input["file_path"]}
    if name == WEB_SEARCH_TOOL and tool_input.get("query"):
        return {"query": tool_input["query"]}

    common: dict[str, Any] = {}
    for key, limit in (("description", 300), ("prompt", 500), ("command", None), ("query", 500)):
        value = tool_input.get(key)
        if isinstance(value, str) and value:
            common[key] = value[:limit] if limit else value
    for key in ("questions", "subagent_type"):
        if tool_input.get(key):
            common[key] = tool_input[key]

    if name.startswith("mcp__"):
        for key, value in tool_input.items():
            if key in common:
                continue
            if isinstance(value, str) and len(value) < 1000:
                common[key] = value
            elif isinstance(value, (int, float, bool)):
                common[key] = value
            elif isinstance(value, list) and len(value) < 10:
                common[key] = value

    return common or None


@dataclass
class SessionHeader:
    """First-wins accumulator for session-level fields."""

    session_id: str = ""
    start_time: str = ""
    end_time: str = ""
    cwd: str = ""
    git_branch: str = ""
    slug: str = ""

    def absorb(self, header: RecordHeader) -> None:
        if header.timestamp:
            if not self.start_time:
                self.start_time = header.timestamp
            self.end_time = header.timestamp
        if not self.session_id:
            self.session_id = header.session_id
        if not self.cwd:
            self.cwd = header.cwd
        if not self.git_branch:
            self.git_branch = header.git_branch
        if not self.slug:
            self.slug = header.slug


class TranscriptParser:
    """Accumulate transcript lines, in order, into a ParsedSession."""

    def __init__(self, source_name: str = ""):
        self.source_name = source_name
        self.header = SessionHeader()
        self.interactions: list[Interaction] = []
        self.skipped_lines = 0

        self.input_tokens = 0
        self.output_tokens = 0
        self.cache_create_tokens = 0
        self.cache_read_tokens = 0

        self.progress_snapshots: list[ProgressSnapshot] = []
        self.plans: list[PlanSnapshot] = []
        self.attachments: list[AttachmentRef] = []
        self.exit_plan_timestamps: list[str] = []
        self.sub_agents: list[SubAgentRef] = []
        self.languages: set[str] = set()

        self._model_counts: Counter[str] = Counter()
        self._last_model = ""
        self._model_switches = 0
        self._tool_calls: dict[str, ToolUse] = {}

    def feed(self, line: str | bytes) -> None:
        entry = parse_line(line)
        if entry is None:
            self.skipped_lines += 1
            return

        header = read_header(entry)
        self.header.absorb(header)
        self._note_file_path(as_str(as_dict(entry.get("toolUseResult")).get("filePath")))

        record = classify(entry)
        if isinstance(record, PromptRecord):
            self._add_prompt(record, header.timestamp)
        elif isinstance(record, ResponseRecord):
            self._add_response(record, header.timestamp)
        elif isinstance(record, ToolCallRecord):
            self._add_hook_tool_call(record, header.timestamp)
        elif isinstance(record, ToolResultRecord):
            self._add_tool_results(record, header.timestamp)

    def feed_all(self, lines: Iterable[str | bytes]) -> "TranscriptParser":
        for line in lines:
            self.feed(line)
        return self

    def _note_file_path(self, file_path: Any) -> None:
        if isinstance(file_path, str) and file_path:
            language = detect_language(file_path)
            if language:
                self.languages.add(language)

    def _add_prompt(self, record: PromptRecord, timestamp: str) -> None:
        index = len(self.interactions)
        for image in record.images:
            self.attachments.append(
                AttachmentRef(
                    interaction_index=index,
                    media_type=image.media_type,
                    size_bytes=math.ceil(image.data_length * 0.75),
                )
            )
        self.interactions.append(
            Interaction(timestamp=timestamp, kind=InteractionKind.PROMPT, content=record.text)
        )

    def _add_response(self, record: ResponseRecord, timestamp: str) -> None:
        usage = record.usage
        self.input_tokens += usage.input_tokens
        self.output_tokens += usage.output_tokens
        self.cache_create_tokens += usage.cache_create_tokens
        self.cache_read_tokens += usage.cache_read_tokens

        if record.model:
            self._model_counts[record.model] += 1
            if self._last_model and self._last_model != record.model:
                self._model_switches += 1
            self._last_model = record.model

        if record.text:
            metadata = {
                "cache_creation_input_tokens": str(usage.cache_create_tokens),
                "cache_read_input_tokens": str(usage.cache_read_tokens),
            }
            if record.model:
                metadata["model"] = record.model
            self.interactions.append(
                Interaction(
                    timestamp=timestamp,
                    kind=InteractionKind.RESPONSE,
                    content=record.text,
                    input_tokens=usage.input_tokens,
                    output_tokens=usage.output_tokens,
                    metadata=metadata,
                )
            )

        for tool_use in record.tool_uses:
            self._note_file_path(tool_use.input.get("file_path"))
            if tool_use.name == TODO_TOOL:
                todos = tool_use.input.get("todos")
                if isinstance(todos, list):
                    self.progress_snapshots.append(ProgressSnapshot(timestamp=timestamp, todos=todos))
            elif tool_use.name == EXIT_PLAN_TOOL:
                self.exit_plan_timestamps.append(timestamp)
                plan = tool_use.input.get("plan")
                if isinstance(plan, str) and plan:
                    self.plans.append(PlanSnapshot(timestamp=timestamp, plan=plan))
            if tool_use.name in EXCLUDED_TOOLS:
                continue

            metadata = {"tool_name": tool_use.name, "hook_event": "PreToolUse"}
            essential = essential_tool_input(tool_use.name, tool_use.input)
            if essential:
                metadata["tool_input"] = json.dumps(essential)
            self.interactions.append(
                Interaction(
                    timestamp=timestamp,
                    kind=InteractionKind.TOOL_CALL,
                    content=f"Tool: {tool_use.name}",
                    tool_name=tool_use.name,
                    metadata=metadata,
                )
            )
            if tool_use.id:
                self._tool_calls[tool_use.id] = tool_use

    def _add_hook_tool_call(self, record: ToolCallRecord, timestamp: str) -> None:
        if record.tool_name in EXCLUDED_TOOLS:
            return
        metadata = {"tool_name": record.tool_name, "hook_event": record.hook_event}
        if record.tool_input:
            metadata["tool_input"] = json.dumps(record.tool_input)
        self.interactions.append(
            Interaction(
                timestamp=timestamp,
                kind=InteractionKind.TOOL_CALL,
                content=f"Tool: {record.tool_name}",
                tool_name=record.tool_name,
                metadata=metadata,
            )
        )
        if record.tool_use_id:
            self._tool_calls[record.tool_use_id] = ToolUse(
                id=record.tool_use_id, name=record.tool_name, input=record.tool_input
            )

    def _add_tool_results(self, record: ToolResultRecord, timestamp: str) -> None:
        result = record.result
        for tool_use_id in record.tool_use_ids:
            tool_use = self._tool_calls.get(tool_use_id)
            if tool_use is None:
                continue

            agent_id = as_str(result.get("agentId"))
            if tool_use.name == TASK_TOOL and agent_id:
                self.sub_agents.append(
                    SubAgentRef(
                        agent_id=agent_id,
                        interaction_index=len(self.interactions),
                        task_description=as_str(tool_use.input.get("description")) or None,
                        task_prompt=as_str(tool_use.input.get("prompt")) or None,
                    )
                )
                logger.info("Detected sub-agent: %s", agent_id)

            if not result:
                continue
            if tool_use.name in CODE_EDIT_TOOLS:
                response: dict[str, Any] = {
                    "filePath": result.get("filePath"),
                    "structuredPatch": result.get("structuredPatch"),
                }
                if tool_use.name == "Edit":
                    response["oldString"] = result.get("oldString")
                    response["newString"] = result.get("newString")
                content = f"Tool completed: {tool_use.name}"
            elif tool_use.name == WEB_SEARCH_TOOL:
                response = {"query": result.get("query"), "results": result.get("results")}
                content = f"WebSearch completed: {tool_use.input.get('query') or 'query'}"
            else:
                continue

            self.interactions.append(
                Interaction(
                    timestamp=timestamp,
                    kind=InteractionKind.TOOL_CALL,
                    content=content,
                    tool_name=tool_use.name,
                    metadata={
                        "tool_name": tool_use.name,
                        "hook_event": "PostToolUse",
                        "tool_response": json.dumps(response),
                    },
                )
            )

    def _model_usage(self) -> ModelUsage | None:
        if not self._model_counts:
            return None
        return ModelUsage(
            models=list(self._model_counts),
            primary_model=self._model_counts.most_common(1)[0][0],
            model_usage=dict(self._model_counts),
            model_switches=self._model_switches,
        )

    def finish(self, last_exchanges: int = 0) -> ParsedSession:
        """Build the session, applying the optional last-N-exchanges window."""
        if not self.header.start_time:
            raise EmptyTranscript(self.source_name or None)

        session_id = self.header.session_id
        if not session_id:
            session_id = Path(self.source_name).stem or "transcript"

        interactions = filter_last_exchanges(self.interactions, last_exchanges)
        input_tokens, output_tokens = self.input_tokens, self.output_tokens
        if last_exchanges > 0:
            input_tokens, output_tokens = recompute_tokens(interactions, input_tokens, output_tokens)
            logger.info(
                "Filtered to last %d exchanges: %d interactions",
                last_exchanges,
                len(interactions),
            )
        if self.skipped_lines:
            logger.debug("Skipped %d unparseable lines in %s", self.skipped_lines, self.source_name)

        return ParsedSession(
            session_id=session_id,
            start_time=self.header.start_time,
            end_time=self.header.end_time,
            cwd=self.header.cwd,
            git_branch=self.header.git_branch,
            plan_slug=self.header.slug,
            interactions=interactions,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cache_create_tokens=self.cache_create_tokens,
            cache_read_tokens=self.cache_read_tokens,
            progress_snapshots=self.progress_snapshots,
            plans=self.plans,
            attachments=self.attachments,
            model_usage=self._model_usage(),
            planning=(
                PlanningInfo(
                    planning_cycles=len(self.exit_plan_timestamps),
                    exit_plan_timestamps=self.exit_plan_timestamps,
                )
                if self.exit_plan_timestamps
                else None
            ),
            languages=sorted(self.languages),
            sub_agents=self.sub_agents,
        )


def parse_lines(
    lines: Iterable[str | bytes],
    source_name: str = "",
    last_exchanges: int = 0,
) -> ParsedSession:
    return TranscriptParser(source_name).feed_all(lines).finish(last_exchanges)


def parse_transcript(path: Path, last_exchanges: int = 0) -> ParsedSession:
    """Stream a transcript file from disk and parse it."""
    path = Path(path)
    size = path.stat().st_size
    if size > MAX_TRANSCRIPT_BYTES:
        raise TranscriptTooLarge(path, size, MAX_TRANSCRIPT_BYTES)

    with path.open("rb") as handle:
        return parse_lines(handle, source_name=path.name, last_exchanges=last_exchanges)


def parse_sub_agent_file(path: Path, ref: SubAgentRef) -> SubSession:
    """Parse a sub-agent transcript into a SubSession of its parent."""
    session = parse_transcript(path)
    messages = [
        SubSessionMessage(
            role="user" if interaction.kind == InteractionKind.PROMPT else "assistant",
            content=interaction.content,
            timestamp=interaction.timestamp,
        )
        for interaction in session.interactions
        if interaction.kind in (InteractionKind.PROMPT, InteractionKind.RESPONSE)
    ]
    sub_session = SubSession(
        agent_id=ref.agent_id,
        task_description=ref.task_description,
        task_prompt=ref.task_prompt,
        interaction_index=ref.interaction_index,
        interactions=session.interactions,
        messages=messages,
        start_time=session.start_time,
        end_time=session.end_time or None,
        input_tokens=session.input_tokens,
        output_tokens=session.output_tokens,
    )
    logger.info(
        "Parsed sub-agent %s: %d interactions, %d messages, %d tokens",
        ref.agent_id,
        len(sub_session.interactions),
        len(messages),
        sub_session.total_tokens,
    )
    return sub_session


def sub_agent_candidates(transcript_path: Path, session_id: str, agent_id: str) -> list[Path]:
    directory = transcript_path.parent
    name = f"agent-{agent_id}.jsonl"
    return [directory / name, directory / session_id / "subagents" / name]


def attach_sub_sessions(session: ParsedSession, transcript_path: Path) -> ParsedSession:
    """Parse sibling sub-agent transcripts referenced by the session.

    A missing or unusable sub-agent file is skipped; it never fails the parent.
    """
    sub_sessions = []
    for ref in session.sub_agents:
        for candidate in sub_agent_candidates(Path(transcript_path), session.session_id, ref.agent_id):
            if not candidate.is_file():
                continue
            try:
                sub_sessions.append(parse_sub_agent_file(candidate, ref))
            except (EmptyTranscript, TranscriptTooLarge, OSError) as exc:
                logger.warning("Skipping sub-agent %s: %s", ref.agent_id, exc)
            break
    return session.model_copy(update={"sub_sessions": sub_sessions})
