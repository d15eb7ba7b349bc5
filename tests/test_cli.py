"""Tests for the sessionhub command line."""

import json
import logging

import pytest
from typer.testing import CliRunner

from conftest import assistant_line, user_line, write_transcript
from sessionhub import __version__, cli, config
from sessionhub.errors import MalformedResponse
from sessionhub.sync import project as project_module
from sessionhub.sync import service as service_module
from sessionhub.sync.client import SyncClient
from sessionhub.sync.envelope import EnvelopeBuilder
from sessionhub.sync.importer import Importer
from sessionhub.sync.keys import KeyResolver
from sessionhub.sync.models import QuotaSnapshot
from sessionhub.sync.quota import QuotaGate

runner = CliRunner()


@pytest.fixture(autouse=True)
def wired(service, monkeypatch):
    """Route every CLI command to the in-memory service."""

    def build_importer(cfg):
        sync = SyncClient(service, EnvelopeBuilder(KeyResolver(service)))
        return service, Importer(service, sync, QuotaGate(service))

    monkeypatch.setattr(cli, "_build_importer", build_importer)
    monkeypatch.setattr(cli, "configure_logging", lambda *args, **kwargs: None)
    monkeypatch.setattr(service_module, "HttpSessionService", lambda *args, **kwargs: service)
    monkeypatch.setattr(project_module, "run_git", lambda root, *args: None)

    root = logging.getLogger("sessionhub")
    monkeypatch.setattr(root, "handlers", [logging.NullHandler()])
    monkeypatch.setattr(root, "propagate", False)
    return service


@pytest.fixture
def api_key(monkeypatch):
    monkeypatch.setenv("SESSIONHUB_API_KEY", "sk-test")


@pytest.fixture
def project_transcript(isolated_dirs, two_exchanges):
    return write_transcript(isolated_dirs / "-work-app" / "s.jsonl", two_exchanges)


class TestVersion:
    def test_version(self):
        result = runner.invoke(cli.app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout


class TestSetup:
    def test_saves_validated_key(self, service):
        result = runner.invoke(cli.app, ["setup", "sk-new"])
        assert result.exit_code == 0
        assert json.loads(config.CONFIG_PATH.read_text())["api_key"] == "sk-new"

    def test_rejects_unknown_key(self, service):
        service.user = None
        result = runner.invoke(cli.app, ["setup", "sk-bad"])
        assert result.exit_code == 1
        assert not config.CONFIG_PATH.exists()


class TestCapture:
    def test_capture_json(self, api_key, service, tmp_path, two_exchanges):
        path = write_transcript(tmp_path / "s.jsonl", two_exchanges)

        result = runner.invoke(
            cli.app,
            ["capture", "--transcript", str(path), "--last", "1", "--project-path", "/work/app", "--json"],
        )

        assert result.exit_code == 0
        payload = json.loads(result.stdout)
        assert payload["success"] is True
        assert payload["totalInputTokens"] == 10
        assert payload["totalOutputTokens"] == 5
        assert payload["prompts"] == 1
        assert len(service.upserts[0].interactions) == 2
        assert service.closed

    def test_capture_discovers_transcript(self, api_key, service, project_transcript):
        result = runner.invoke(cli.app, ["capture", "--project-path", "/work/app", "--json"])
        assert result.exit_code == 0
        assert json.loads(result.stdout)["transcriptFile"] == "s.jsonl"

    def test_capture_without_transcripts(self, api_key):
        result = runner.invoke(cli.app, ["capture", "--project-path", "/work/empty", "--json"])
        assert result.exit_code == 1
        assert json.loads(result.stdout)["success"] is False

    def test_capture_requires_api_key(self, service):
        result = runner.invoke(cli.app, ["capture", "--project-path", "/work/app"])
        assert result.exit_code == 1
        assert service.upserts == []


class TestImportAll:
    def test_import_json(self, api_key, service, project_transcript):
        result = runner.invoke(cli.app, ["import-all", "--path", "/work/app", "--json"])
        assert result.exit_code == 0
        payload = json.loads(result.stdout)
        assert payload["successCount"] == 1
        assert payload["wasLimited"] is False

    def test_quota_exceeded_exits_nonzero(self, api_key, service, project_transcript):
        service.quota = QuotaSnapshot(current_count=5, limit=5, remaining=0)
        result = runner.invoke(cli.app, ["import-all", "--path", "/work/app", "--json"])
        assert result.exit_code == 1
        assert json.loads(result.stdout)["error"] == "session_limit_exceeded"

    def test_partial_failure_exits_nonzero(self, api_key, service, isolated_dirs, project_transcript):
        (isolated_dirs / "-work-app" / "broken.jsonl").write_text("nope\n")
        result = runner.invoke(cli.app, ["import-all", "--path", "/work/app", "--json"])
        assert result.exit_code == 1
        payload = json.loads(result.stdout)
        assert payload["successCount"] == 1
        assert payload["errorCount"] == 1


class TestQuota:
    def test_quota_json(self, api_key, service):
        service.quota = QuotaSnapshot(current_count=3, limit=-1, remaining=0, subscription_tier="pro")
        result = runner.invoke(cli.app, ["quota", "--json"])
        assert result.exit_code == 0
        assert json.loads(result.stdout)["unlimited"] is True


class TestHealth:
    def test_not_configured(self):
        result = runner.invoke(cli.app, ["health", "--json"])
        assert result.exit_code == 1
        assert json.loads(result.stdout)["configured"] is False

    def test_authenticated(self, api_key):
        result = runner.invoke(cli.app, ["health", "--json"])
        assert result.exit_code == 0
        payload = json.loads(result.stdout)
        assert payload["authenticated"] is True
        assert "latencyMs" in payload


class TestHookSessionEnd:
    def test_captures_session(self, api_key, service, isolated_dirs):
        write_transcript(
            isolated_dirs / "-work-app" / "s.jsonl",
            [user_line("q", session_id="hook-session"), assistant_line("a", session_id="hook-session")],
        )
        stdin = json.dumps({"session_id": "hook-session", "cwd": "/work/app"})

        result = runner.invoke(cli.app, ["hook", "session-end"], input=stdin)

        assert result.exit_code == 0
        assert service.upserts[0].session_id == "hook-session"

    def test_malformed_reply_does_not_fail_host(self, api_key, service, isolated_dirs):
        write_transcript(
            isolated_dirs / "-work-app" / "s.jsonl",
            [user_line("q", session_id="hook-session"), assistant_line("a", session_id="hook-session")],
        )
        service.upsert_errors["hook-session"] = MalformedResponse("response body is not JSON", "UpsertSession")
        stdin = json.dumps({"session_id": "hook-session", "cwd": "/work/app"})

        result = runner.invoke(cli.app, ["hook", "session-end"], input=stdin)

        assert result.exit_code == 0
        assert service.upserts == []

    def test_never_fails_host(self, api_key, service):
        result = runner.invoke(cli.app, ["hook", "session-end"], input="not json")
        assert result.exit_code == 0
        assert service.upserts == []

    def test_unconfigured_is_noop(self, service):
        result = runner.invoke(cli.app, ["hook", "session-end"], input="{}")
        assert result.exit_code == 0
        assert service.calls == []
