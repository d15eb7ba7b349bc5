"""Locate the project a working directory belongs to and name it."""

import json
import logging
import subprocess
import tomllib
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

# Files or directories whose presence marks a project root.
PROJECT_MARKERS = (
    ".git",
    "package.json",
    "pyproject.toml",
    "setup.py",
    "Cargo.toml",
    "go.mod",
    "pom.xml",
    "build.gradle",
    "CMakeLists.txt",
    "Makefile",
    ".project",
    "composer.json",
    "requirements.txt",
    "environment.yml",
    "Pipfile",
)

GIT_TIMEOUT = 5


@dataclass
class DetectedProject:
    path: Path
    name: str
    git_remote: str | None = None
    git_branch: str | None = None


def run_git(root: Path, *args: str) -> str | None:
    """Stripped stdout of ``git <args>`` run in ``root``, or None on any failure."""
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=root,
            capture_output=True,
            text=True,
            timeout=GIT_TIMEOUT,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        logger.debug("git %s failed in %s: %s", " ".join(args), root, exc)
        return None
    if result.returncode != 0:
        return None
    return result.stdout.strip() or None


def find_project_root(start: str | Path) -> Path:
    """Nearest directory at or above ``start`` holding a project marker.

    Falls back to ``start`` itself when no ancestor has one.
    """
    start = Path(start).resolve()
    for candidate in (start, *start.parents):
        if any((candidate / marker).exists() for marker in PROJECT_MARKERS):
            return candidate
    return start


def _read_json_name(path: Path) -> str | None:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None
    name = data.get("name") if isinstance(data, dict) else None
    return name if isinstance(name, str) and name else None


def _read_toml_name(path: Path, *tables: tuple[str, ...]) -> str | None:
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except (OSError, tomllib.TOMLDecodeError):
        return None
    for keys in tables:
        node = data
        for key in keys:
            node = node.get(key) if isinstance(node, dict) else None
        if isinstance(node, str) and node:
            return node
    return None


def _read_go_module(path: Path) -> str | None:
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError:
        return None
    for line in lines:
        line = line.strip()
        if line.startswith("module "):
            module = line[len("module "):].strip().strip('"')
            return module.rsplit("/", 1)[-1] or None
    return None


def repo_name_from_remote(remote: str | None) -> str | None:
    """``git@host:org/app.git`` -> ``app``. Remotes without a slash give None."""
    if not remote:
        return None
    remote = remote.removesuffix(".git")
    if "/" not in remote:
        return None
    return remote.rsplit("/", 1)[-1] or None


def extract_project_name(root: Path, git_remote: str | None = None) -> str:
    """Project name from the first manifest that declares one.

    Order: package.json, pyproject.toml, Cargo.toml, go.mod, the origin
    remote's repository name, then the directory name.
    """
    readers = (
        lambda: _read_json_name(root / "package.json"),
        lambda: _read_toml_name(root / "pyproject.toml", ("project", "name"), ("tool", "poetry", "name")),
        lambda: _read_toml_name(root / "Cargo.toml", ("package", "name")),
        lambda: _read_go_module(root / "go.mod"),
        lambda: repo_name_from_remote(git_remote),
    )
    for read in readers:
        name = read()
        if name:
            return name
    return root.name


def detect_project(path: str | Path) -> DetectedProject:
    root = find_project_root(path)
    remote = run_git(root, "remote", "get-url", "origin")
    project = DetectedProject(
        path=root,
        name=extract_project_name(root, remote),
        git_remote=remote,
        git_branch=run_git(root, "branch", "--show-current"),
    )
    logger.debug("Detected project %s at %s", project.name, project.path)
    return project
