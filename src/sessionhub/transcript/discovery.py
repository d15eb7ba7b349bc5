"""Locate Claude Code transcript files on disk."""

import logging
import re
from pathlib import Path

logger = logging.getLogger(__name__)

SUB_AGENT_PREFIX = "agent-"
STUB_TRANSCRIPT_BYTES = 10_000
QUICK_SCAN_BYTES = 64 * 1024

_SESSION_ID_PATTERN = re.compile(r'"sessionId"\s*:\s*"([a-f0-9-]{36})"')


def is_sub_agent_transcript(path: Path) -> bool:
    return path.name.startswith(SUB_AGENT_PREFIX)


def list_transcript_files(directory: Path) -> list[Path]:
    """Top-level transcripts in a directory, sorted by name.

    Sub-agent logs (``agent-*.jsonl``) are excluded.
    """
    if not directory.is_dir():
        return []
    return sorted(
        p for p in directory.iterdir()
        if p.is_file() and p.suffix == ".jsonl" and not is_sub_agent_transcript(p)
    )


def quick_extract_session_id(path: Path) -> str | None:
    """Find the session id near the start of a transcript without parsing it."""
    try:
        with path.open("rb") as handle:
            head = handle.read(QUICK_SCAN_BYTES)
    except OSError:
        return None
    match = _SESSION_ID_PATTERN.search(head.decode("utf-8", errors="replace"))
    return match.group(1) if match else None


def find_latest_transcript(directory: Path, session_id: str | None = None) -> Path | None:
    """Pick the transcript for a session, else the most recently modified one.

    A matching file smaller than ``STUB_TRANSCRIPT_BYTES`` is treated as a
    stub left by /clear or resume and ignored in favour of the latest file.
    """
    files = list_transcript_files(directory)
    if not files:
        return None

    if session_id:
        for path in files:
            if quick_extract_session_id(path) != session_id:
                continue
            if path.stat().st_size >= STUB_TRANSCRIPT_BYTES:
                logger.info("Found transcript for session %s: %s", session_id, path.name)
                return path
            logger.warning("Session %s transcript is a stub, falling back to latest", session_id)
            break
        else:
            logger.warning("No transcript found for session %s, falling back to latest", session_id)

    return max(files, key=lambda p: p.stat().st_mtime)
