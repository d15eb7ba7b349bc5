"""Configuration, directory layout and logging setup for SessionHub sync."""

import json
import logging
import logging.handlers
import os
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError
from rich.console import Console
from rich.logging import RichHandler

logger = logging.getLogger(__name__)

SESSIONHUB_DIR = Path(os.environ.get("SESSIONHUB_HOME", Path.home() / ".sessionhub"))
CONFIG_PATH = SESSIONHUB_DIR / "config.json"
CLAUDE_DIR = Path(os.environ.get("CLAUDE_CONFIG_DIR", Path.home() / ".claude"))
CLAUDE_PROJECTS_DIR = CLAUDE_DIR / "projects"

DEFAULT_BACKEND_URL = "https://plugin.sessionhub.dev"


class Timeouts(BaseModel):
    """Per-call deadlines in seconds."""

    default: float = 30
    validate_credential: float = Field(default=15, alias="validate")
    projects: float = 20
    quota: float = 15
    keys: float = 10
    upsert: float = 60
    batch: float = 60

    model_config = {"populate_by_name": True}


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file_path: str | None = None
    max_bytes: int = 10_000_000
    backup_count: int = 3


class AppConfig(BaseModel):
    api_key: str = ""
    backend_url: str = DEFAULT_BACKEND_URL
    timeouts: Timeouts = Field(default_factory=Timeouts)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def ensure_dirs() -> None:
    """Ensure the SessionHub directory exists."""
    SESSIONHUB_DIR.mkdir(parents=True, exist_ok=True)


def load_config(path: Path | None = None) -> AppConfig:
    """Load config from disk, applying environment overrides.

    A missing or unreadable file yields defaults; the problem is logged, not raised.
    """
    path = path or CONFIG_PATH
    data: dict = {}
    if path.exists():
        try:
            data = json.loads(path.read_text())
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Could not load config file %s: %s", path, exc)

    try:
        config = AppConfig.model_validate(data)
    except ValidationError as exc:
        logger.warning("Invalid config file %s, using defaults: %s", path, exc)
        config = AppConfig()

    if env_key := os.environ.get("SESSIONHUB_API_KEY"):
        config.api_key = env_key
    if env_url := os.environ.get("SESSIONHUB_BACKEND_URL"):
        config.backend_url = env_url
    return config


def save_config(config: AppConfig, path: Path | None = None) -> Path:
    """Write config with owner-only permissions since it holds the API key."""
    path = path or CONFIG_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(config.model_dump_json(indent=2, by_alias=True) + "\n")
    path.chmod(0o600)
    return path


def validate_config(config: AppConfig) -> list[str]:
    issues = []
    if not config.api_key:
        issues.append("API key not configured. Run `sessionhub setup <api-key>` to configure.")
    if not config.backend_url:
        issues.append("Backend URL not configured.")
    return issues


def configure_logging(config: LoggingConfig, verbose: bool = False) -> None:
    """Route log records to stderr (and optionally a rotating file)."""
    root = logging.getLogger("sessionhub")
    root.handlers.clear()
    root.setLevel(logging.DEBUG if verbose else config.level.upper())
    root.propagate = False

    root.addHandler(
        RichHandler(console=Console(stderr=True), show_path=False, rich_tracebacks=True)
    )

    if config.file_path:
        file_handler = logging.handlers.RotatingFileHandler(
            config.file_path,
            maxBytes=config.max_bytes,
            backupCount=config.backup_count,
        )
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        root.addHandler(file_handler)


def claude_project_dir(project_path: str | Path) -> Path:
    """Directory where Claude Code keeps transcripts for a project.

    Path separators and underscores in the project path become hyphens.
    """
    name = str(project_path)
    for ch in ("/", "\\", "_"):
        name = name.replace(ch, "-")
    return CLAUDE_PROJECTS_DIR / name
