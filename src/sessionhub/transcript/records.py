"""Classify raw transcript lines into a closed set of record variants."""

import json
from dataclasses import dataclass, field
from typing import Any

# User-role text that is injected by the host rather than typed by the user.
SYSTEM_PREFIXES = (
    "<command-name>",
    "Caveat: The messages below were generated by the user while running local commands.",
)
SYSTEM_MARKERS = (
    "<local-command-stdout>",
    "<local-command-stderr>",
    "<system-reminder>",
    "Error opening memory file",
    "Cancelled memory editing",
)

# Plan-mode affordances; captured as snapshots, never as tool calls.
TODO_TOOL = "TodoWrite"
EXIT_PLAN_TOOL = "ExitPlanMode"
EXCLUDED_TOOLS = frozenset({TODO_TOOL, EXIT_PLAN_TOOL})

UNKNOWN_TOOL = "Unknown Tool"


@dataclass(frozen=True)
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0
    cache_create_tokens: int = 0
    cache_read_tokens: int = 0

    @classmethod
    def from_dict(cls, data: Any) -> "Usage":
        data = as_dict(data)
        return cls(
            input_tokens=as_int(data.get("input_tokens")),
            output_tokens=as_int(data.get("output_tokens")),
            cache_create_tokens=as_int(data.get("cache_creation_input_tokens")),
            cache_read_tokens=as_int(data.get("cache_read_input_tokens")),
        )


@dataclass(frozen=True)
class ToolUse:
    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ImageBlock:
    media_type: str
    data_length: int


@dataclass(frozen=True)
class RecordHeader:
    """Session-level fields any record may carry."""

    timestamp: str = ""
    session_id: str = ""
    cwd: str = ""
    git_branch: str = ""
    slug: str = ""


@dataclass(frozen=True)
class PromptRecord:
    text: str
    images: tuple[ImageBlock, ...] = ()


@dataclass(frozen=True)
class ResponseRecord:
    text: str
    usage: Usage
    model: str = ""
    tool_uses: tuple[ToolUse, ...] = ()


@dataclass(frozen=True)
class ToolCallRecord:
    """A hook-style tool invocation written directly into the log."""

    tool_name: str
    tool_input: dict[str, Any] = field(default_factory=dict)
    tool_use_id: str = ""
    hook_event: str = "PreToolUse"


@dataclass(frozen=True)
class ToolResultRecord:
    tool_use_ids: tuple[str, ...]
    result: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Unrecognized:
    pass


Record = PromptRecord | ResponseRecord | ToolCallRecord | ToolResultRecord | Unrecognized


def as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def as_str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def as_int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return 0
    return 0


def parse_line(line: str | bytes) -> dict | None:
    """Decode one log line; anything that is not a JSON object is None."""
    if isinstance(line, bytes):
        line = line.decode("utf-8", errors="replace")
    line = line.strip()
    if not line:
        return None
    try:
        entry = json.loads(line)
    except ValueError:
        return None
    return entry if isinstance(entry, dict) else None


def read_header(entry: dict) -> RecordHeader:
    return RecordHeader(
        timestamp=as_str(entry.get("timestamp")),
        session_id=as_str(entry.get("sessionId")),
        cwd=as_str(entry.get("cwd")),
        git_branch=as_str(entry.get("gitBranch")),
        slug=as_str(entry.get("slug")),
    )


def extract_text(content: Any) -> str:
    """Normalize string or typed-block message content to one string."""
    if isinstance(content, str):
        return content.strip()
    if not isinstance(content, list):
        return ""
    parts = []
    for block in content:
        if isinstance(block, str):
            text = block.strip()
        elif as_str(as_dict(block).get("type")).lower() == "text":
            text = as_str(block.get("text")).strip()
        else:
            continue
        if text:
            parts.append(text)
    return "\n".join(parts).strip()


def is_system_message(text: str) -> bool:
    stripped = text.strip()
    if not stripped:
        return True
    if stripped.startswith(SYSTEM_PREFIXES):
        return True
    return any(marker in stripped for marker in SYSTEM_MARKERS)


def _blocks(content: Any) -> list[dict]:
    if not isinstance(content, list):
        return []
    return [block for block in content if isinstance(block, dict)]


def _images(content: Any) -> tuple[ImageBlock, ...]:
    images = []
    for block in _blocks(content):
        source = as_dict(block.get("source"))
        data = as_str(source.get("data"))
        media_type = as_str(source.get("media_type"))
        if block.get("type") == "image" and source.get("type") == "base64" and data and media_type:
            images.append(ImageBlock(media_type=media_type, data_length=len(data)))
    return tuple(images)


def _tool_uses(content: Any) -> tuple[ToolUse, ...]:
    uses = []
    for block in _blocks(content):
        if as_str(block.get("type")).lower() != "tool_use":
            continue
        uses.append(
            ToolUse(
                id=as_str(block.get("id")),
                name=as_str(block.get("name")).strip() or UNKNOWN_TOOL,
                input=as_dict(block.get("input")),
            )
        )
    return tuple(uses)


def classify(entry: dict) -> Record:
    """Map one decoded log entry to its record variant.

    Unknown types and roles fall through to ``Unrecognized``.
    """
    record_type = as_str(entry.get("type")).lower()
    message = as_dict(entry.get("message"))
    role = as_str(message.get("role")).lower()
    content = message.get("content")

    if record_type in ("user", "human") and role == "user":
        tool_result_ids = tuple(
            as_str(block.get("tool_use_id"))
            for block in _blocks(content)
            if block.get("type") == "tool_result" and block.get("tool_use_id")
        )
        if tool_result_ids:
            return ToolResultRecord(
                tool_use_ids=tool_result_ids,
                result=as_dict(entry.get("toolUseResult")),
            )
        text = extract_text(content)
        if text and not is_system_message(text):
            return PromptRecord(text=text, images=_images(content))
        return Unrecognized()

    if record_type == "assistant" and role == "assistant":
        return ResponseRecord(
            text=extract_text(content),
            usage=Usage.from_dict(message.get("usage")),
            model=as_str(message.get("model")),
            tool_uses=_tool_uses(content),
        )

    if record_type == "tool" or entry.get("hook_event") == "PreToolUse":
        tool_name = as_str(entry.get("tool_name")) or as_str(as_dict(entry.get("tool")).get("name"))
        return ToolCallRecord(
            tool_name=tool_name or UNKNOWN_TOOL,
            tool_input=as_dict(entry.get("tool_input")),
            tool_use_id=as_str(entry.get("tool_use_id")),
            hook_event=as_str(entry.get("hook_event")) or "PreToolUse",
        )

    return Unrecognized()
