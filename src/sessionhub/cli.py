"""SessionHub CLI - sync coding-assistant transcripts to SessionHub."""

import json
import os
import sys
import time
from pathlib import Path
from typing import Annotated, Any, Optional

import typer
from rich.console import Console
from rich.table import Table

from sessionhub import __version__
from sessionhub.config import (
    AppConfig,
    claude_project_dir,
    configure_logging,
    ensure_dirs,
    load_config,
    save_config,
    validate_config,
)
from sessionhub.errors import ServiceError, SessionHubError

app = typer.Typer(
    name="sessionhub",
    help="Capture coding-assistant transcripts into SessionHub.",
    no_args_is_help=True,
)
hook_app = typer.Typer(help="Host lifecycle hooks.")
app.add_typer(hook_app, name="hook")

console = Console()
err_console = Console(stderr=True)

ApiKeyOption = Annotated[Optional[str], typer.Option("--api-key", help="API key override")]
JsonOption = Annotated[bool, typer.Option("--json", help="Emit JSON output")]


def version_callback(value: bool) -> None:
    if value:
        console.print(f"sessionhub {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option("--version", "-v", callback=version_callback, is_eager=True),
    ] = None,
    verbose: Annotated[bool, typer.Option("--verbose", help="Debug logging")] = False,
) -> None:
    """SessionHub - sync Claude Code sessions."""
    ensure_dirs()
    configure_logging(load_config().logging, verbose=verbose)


def _load_authenticated_config(api_key: str | None) -> AppConfig:
    config = load_config()
    if api_key:
        config.api_key = api_key
    issues = validate_config(config)
    if issues:
        for issue in issues:
            err_console.print(f"[red]Error:[/red] {issue}")
        raise typer.Exit(1)
    return config


def _build_importer(config: AppConfig):
    from sessionhub.sync.client import SyncClient
    from sessionhub.sync.envelope import EnvelopeBuilder
    from sessionhub.sync.importer import Importer
    from sessionhub.sync.keys import KeyResolver
    from sessionhub.sync.quota import QuotaGate
    from sessionhub.sync.service import HttpSessionService

    service = HttpSessionService(config.api_key, config.backend_url, config.timeouts)
    sync = SyncClient(service, EnvelopeBuilder(KeyResolver(service)))
    return service, Importer(service, sync, QuotaGate(service))


def _emit(payload: dict[str, Any], as_json: bool) -> None:
    if as_json:
        typer.echo(json.dumps(payload, indent=2))
    else:
        console.print_json(data=payload)


def _fail(exc: Exception, as_json: bool) -> None:
    message = exc.friendly_message() if isinstance(exc, ServiceError) else str(exc)
    if as_json:
        payload: dict[str, Any] = {"success": False, "error": message}
        if isinstance(exc, ServiceError):
            payload["code"] = exc.code
        typer.echo(json.dumps(payload, indent=2))
    else:
        err_console.print(f"[red]Error:[/red] {message}")
    raise typer.Exit(1)


def _resolve_project_path(project_path: Path | None) -> Path:
    return (project_path or Path.cwd()).resolve()


# ── Setup commands ───────────────────────────────────────────────


@app.command("setup")
def setup(
    api_key: Annotated[str, typer.Argument(help="API key from sessionhub.dev/settings")],
    backend_url: Annotated[
        Optional[str], typer.Option("--backend-url", help="Override backend URL")
    ] = None,
) -> None:
    """Validate and store an API key."""
    from sessionhub.sync.service import HttpSessionService

    config = load_config()
    config.api_key = api_key
    if backend_url:
        config.backend_url = backend_url

    try:
        with HttpSessionService(api_key, config.backend_url, config.timeouts) as service:
            user = service.validate_credential()
    except ServiceError as exc:
        _fail(exc, False)
    if user is None:
        err_console.print("[red]Error:[/red] Invalid API key.")
        raise typer.Exit(1)

    path = save_config(config)
    console.print(f"[green]Authenticated as[/green] {user.email or user.user_id}")
    console.print(f"  Config: {path}")


@app.command("health")
def health(api_key: ApiKeyOption = None, as_json: JsonOption = False) -> None:
    """Check backend reachability and credentials."""
    from sessionhub.sync.service import HttpSessionService

    config = load_config()
    if api_key:
        config.api_key = api_key
    result: dict[str, Any] = {
        "ok": False,
        "backend": config.backend_url,
        "configured": bool(config.api_key),
        "backendReachable": False,
        "authenticated": False,
    }
    if config.api_key:
        started = time.monotonic()
        try:
            with HttpSessionService(config.api_key, config.backend_url, config.timeouts) as service:
                user = service.validate_credential()
            result["backendReachable"] = True
            result["authenticated"] = user is not None
            if user:
                result["userEmail"] = user.email
        except ServiceError as exc:
            result["error"] = exc.friendly_message()
        result["latencyMs"] = int((time.monotonic() - started) * 1000)
    else:
        result["error"] = "API key not configured"
    result["ok"] = result["authenticated"]

    if as_json:
        typer.echo(json.dumps(result, indent=2))
    else:
        icon = "[green]✓[/green]" if result["ok"] else "[red]✗[/red]"
        console.print(f"{icon} {config.backend_url}")
        if result.get("error"):
            console.print(f"  [dim]{result['error']}[/dim]")
    if not result["ok"]:
        raise typer.Exit(1)


# ── Sync commands ────────────────────────────────────────────────


@app.command("capture")
def capture(
    transcript: Annotated[
        Optional[Path], typer.Option("--transcript", "-t", help="Transcript JSONL path")
    ] = None,
    last: Annotated[int, typer.Option("--last", help="Only keep last N prompt-response exchanges")] = 0,
    project: Annotated[Optional[str], typer.Option("--project", help="Project name")] = None,
    session: Annotated[Optional[str], typer.Option("--session", help="Session name")] = None,
    project_path: Annotated[Optional[Path], typer.Option("--project-path", help="Project path")] = None,
    session_id: Annotated[Optional[str], typer.Option("--session-id", help="Session ID to capture")] = None,
    api_key: ApiKeyOption = None,
    as_json: JsonOption = False,
) -> None:
    """Capture the current (or a given) transcript as a session."""
    from sessionhub.transcript.discovery import find_latest_transcript

    config = _load_authenticated_config(api_key)
    resolved_path = _resolve_project_path(project_path)

    if transcript is None:
        transcript = find_latest_transcript(claude_project_dir(resolved_path), session_id)
        if transcript is None:
            _fail(SessionHubError("No transcript files found for project"), as_json)

    service, importer = _build_importer(config)
    try:
        result = importer.capture(
            transcript,
            resolved_path,
            project_name=project,
            session_name=session,
            last_exchanges=last,
        )
    except (SessionHubError, OSError) as exc:
        _fail(exc, as_json)
    finally:
        service.close()

    if as_json:
        _emit(result.to_payload(), True)
        return
    action = "Updated" if result.was_updated else "Created"
    console.print(f"[green]{action} session[/green] {result.session_id}")
    console.print(f"  Project: {result.project_name}")
    console.print(f"  Transcript: {result.transcript_file}")
    console.print(f"  New interactions: {result.new_interactions_count}")
    console.print(f"  Exchanges: {result.prompts} prompts / {result.responses} responses")
    console.print(f"  Tokens: {result.input_tokens} in / {result.output_tokens} out")


@app.command("import-all")
def import_all(
    path: Annotated[Optional[Path], typer.Option("--path", "-p", help="Project path")] = None,
    project: Annotated[Optional[str], typer.Option("--project", help="Project name")] = None,
    api_key: ApiKeyOption = None,
    as_json: JsonOption = False,
) -> None:
    """Import every transcript recorded for a project."""
    from sessionhub.sync.importer import QuotaExceededResult

    config = _load_authenticated_config(api_key)
    resolved_path = _resolve_project_path(path)

    service, importer = _build_importer(config)
    try:
        result = importer.import_all(
            claude_project_dir(resolved_path), resolved_path, project_name=project
        )
    except (SessionHubError, OSError) as exc:
        _fail(exc, as_json)
    finally:
        service.close()

    if isinstance(result, QuotaExceededResult):
        _emit(result.to_payload(), True)
        raise typer.Exit(1)

    if as_json:
        _emit(result.to_payload(), True)
    else:
        table = Table(title=f"Import: {result.project_name}")
        table.add_column("File", style="cyan")
        table.add_column("Status")
        table.add_column("Detail")
        for file_result in result.results:
            status = "[green]✓[/green]" if file_result.success else "[red]✗[/red]"
            table.add_row(file_result.file, status, file_result.session_id or file_result.error or "")
        console.print(table)
        console.print(
            f"{result.success_count}/{result.processed_files} imported, "
            f"{result.error_count} failed, {result.total_files} found"
        )
        if result.was_limited:
            console.print(
                f"[yellow]Quota reached: {len(result.skipped_files)} skipped.[/yellow] "
                f"Upgrade at {result.upgrade_url}"
            )
    if not result.success:
        raise typer.Exit(1)


@app.command("quota")
def quota(api_key: ApiKeyOption = None, as_json: JsonOption = False) -> None:
    """Show session quota."""
    from sessionhub.sync.service import HttpSessionService

    config = _load_authenticated_config(api_key)
    try:
        with HttpSessionService(config.api_key, config.backend_url, config.timeouts) as service:
            snapshot = service.get_quota()
    except ServiceError as exc:
        _fail(exc, as_json)

    if snapshot is None:
        _fail(SessionHubError("No quota information available"), as_json)
    payload = {
        "currentCount": snapshot.current_count,
        "limit": snapshot.limit,
        "remaining": snapshot.remaining,
        "unlimited": snapshot.unlimited,
        "subscriptionTier": snapshot.subscription_tier,
    }
    if as_json:
        _emit(payload, True)
    elif snapshot.unlimited:
        console.print(f"{snapshot.current_count} sessions ([green]unlimited[/green], {snapshot.subscription_tier})")
    else:
        console.print(
            f"{snapshot.current_count}/{snapshot.limit} sessions, "
            f"{snapshot.remaining} remaining ({snapshot.subscription_tier})"
        )


# ── Hook commands ────────────────────────────────────────────────


@hook_app.command("session-end")
def hook_session_end() -> None:
    """Capture the session named in hook input on stdin. Never blocks the host."""
    import logging

    logger = logging.getLogger("sessionhub.hook")
    try:
        hook_input = json.loads(sys.stdin.read() or "{}")
    except ValueError:
        hook_input = {}
    if not isinstance(hook_input, dict):
        hook_input = {}

    config = load_config()
    if validate_config(config):
        logger.warning("SessionHub not configured; skipping capture")
        return

    from sessionhub.transcript.discovery import find_latest_transcript

    project_path = Path(hook_input.get("cwd") or os.environ.get("CLAUDE_PROJECT_DIR") or Path.cwd())
    transcript = hook_input.get("transcript_path")
    transcript = Path(transcript) if transcript else find_latest_transcript(
        claude_project_dir(project_path), hook_input.get("session_id")
    )
    if transcript is None:
        logger.warning("No transcript found for %s", project_path)
        return

    service, importer = _build_importer(config)
    try:
        result = importer.capture(transcript, project_path)
        logger.info("Captured session %s", result.session_id)
    except (SessionHubError, OSError) as exc:
        logger.error("Session capture failed: %s", exc)
    finally:
        service.close()
