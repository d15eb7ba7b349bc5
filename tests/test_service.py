"""Tests for the HTTP session service."""

import json

import httpx
import pytest

from sessionhub.config import Timeouts
from sessionhub.errors import (
    DeadlineExceeded,
    MalformedResponse,
    OnboardingRequired,
    PermissionDenied,
    ServiceError,
    SessionLimitExceeded,
    Unauthenticated,
    Unavailable,
    parse_session_limit_error,
)
from sessionhub.sync.models import CreateProjectRequest, UpsertSessionRequest, WireInteraction
from sessionhub.sync.service import HttpSessionService


def make_service(handler, **kwargs):
    return HttpSessionService(
        "sk-test", "https://api.example.test/", transport=httpx.MockTransport(handler), **kwargs
    )


class Recorder:
    def __init__(self, responses):
        self.responses = responses
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        method = request.url.path.rsplit("/", 1)[-1]
        status, body = self.responses.get(method, (404, {"message": "not found"}))
        return httpx.Response(status, json=body)


class TestHttpSessionService:
    def test_sends_bearer_and_rpc_path(self):
        recorder = Recorder({"GetProjects": (200, {"projects": [{"id": "p1", "name": "app"}]})})
        with make_service(recorder) as service:
            projects = service.get_projects()

        request = recorder.requests[0]
        assert request.method == "POST"
        assert request.url.path == "/rpc/GetProjects"
        assert request.headers["Authorization"] == "Bearer sk-test"
        assert projects[0].name == "app"

    def test_validate_credential(self):
        recorder = Recorder({"ValidateCredential": (200, {"user_id": "u1", "email": "a@b.c"})})
        with make_service(recorder) as service:
            user = service.validate_credential()
        assert user.email == "a@b.c"
        assert json.loads(recorder.requests[0].content) == {"api_key": "sk-test"}

    def test_unknown_credential_is_none(self):
        recorder = Recorder({"ValidateCredential": (401, {"message": "bad key"})})
        with make_service(recorder) as service:
            assert service.validate_credential() is None

    def test_not_found_lookups_are_none(self):
        with make_service(Recorder({})) as service:
            assert service.get_quota() is None
            assert service.get_user_public_key() is None
            assert service.get_team_public_key("t1") is None
            assert service.list_teams() == []

    def test_upsert_payload(self):
        recorder = Recorder({"UpsertSession": (200, {"session_id": "s1", "was_updated": True})})
        request = UpsertSessionRequest(
            session_id="s1",
            project_name="app",
            start_time="2025-01-01T10:00:00Z",
            interactions=[WireInteraction(timestamp="t", interaction_type="prompt", content="hi")],
        )
        with make_service(recorder) as service:
            result = service.upsert_session(request)

        body = json.loads(recorder.requests[0].content)
        assert body["session_id"] == "s1"
        assert body["interactions"][0]["content"] == "hi"
        assert "encrypted_interactions" not in body
        assert result.was_updated

    def test_create_project_and_batch(self):
        recorder = Recorder(
            {
                "CreateProject": (200, {"id": "p1", "name": "app"}),
                "AppendInteractionsBatch": (200, {"processed": 1, "failed": 0}),
            }
        )
        with make_service(recorder) as service:
            project = service.create_project(CreateProjectRequest(name="app", display_name="app"))
            batch = service.append_interactions_batch(
                "s1", [WireInteraction(timestamp="t", interaction_type="prompt", content="x")]
            )
        assert project.id == "p1"
        assert batch.processed == 1
        assert json.loads(recorder.requests[1].content)["session_id"] == "s1"

    @pytest.mark.parametrize(
        "status, error_class",
        [(401, Unauthenticated), (403, PermissionDenied), (503, Unavailable), (504, DeadlineExceeded), (500, ServiceError)],
    )
    def test_status_mapping(self, status, error_class):
        recorder = Recorder({"GetProjects": (status, {"message": "nope"})})
        with make_service(recorder) as service, pytest.raises(error_class) as exc_info:
            service.get_projects()
        assert exc_info.value.operation == "GetProjects"

    def test_session_limit_message(self):
        message = "session_limit_exceeded:current=10:limit=10:upgrade_url=https://x.test/up"
        recorder = Recorder({"UpsertSession": (429, {"message": message})})
        request = UpsertSessionRequest(session_id="s1", project_name="app", start_time="t")
        with make_service(recorder) as service, pytest.raises(SessionLimitExceeded) as exc_info:
            service.upsert_session(request)
        assert exc_info.value.current_count == 10
        assert exc_info.value.upgrade_url == "https://x.test/up"

    def test_onboarding_message(self):
        recorder = Recorder({"ListTeams": (412, {"message": "no team found for user"})})
        with make_service(recorder) as service, pytest.raises(OnboardingRequired):
            service.list_teams()

    def test_timeout_maps_to_deadline(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with make_service(handler) as service, pytest.raises(DeadlineExceeded):
            service.get_projects()

    def test_connection_error_maps_to_unavailable(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with make_service(handler) as service, pytest.raises(Unavailable):
            service.get_projects()

    def test_non_json_body_is_malformed(self):
        def handler(request):
            return httpx.Response(200, text="<html>gateway</html>")

        request = UpsertSessionRequest(session_id="s1", project_name="app", start_time="t")
        with make_service(handler) as service, pytest.raises(MalformedResponse) as exc_info:
            service.upsert_session(request)
        assert exc_info.value.operation == "UpsertSession"
        assert isinstance(exc_info.value, ServiceError)

    @pytest.mark.parametrize(
        "method, body",
        [
            ("UpsertSession", {"was_updated": True}),
            ("UpsertSession", ["s1"]),
            ("GetProjects", {"projects": [{"name": "no id"}]}),
            ("GetProjects", {"projects": "app"}),
        ],
    )
    def test_unexpected_shape_is_malformed(self, method, body):
        calls = {
            "UpsertSession": lambda s: s.upsert_session(
                UpsertSessionRequest(session_id="s1", project_name="app", start_time="t")
            ),
            "GetProjects": lambda s: s.get_projects(),
        }
        with make_service(Recorder({method: (200, body)})) as service:
            with pytest.raises(MalformedResponse) as exc_info:
                calls[method](service)
        assert exc_info.value.operation == method

    def test_per_call_timeouts(self):
        seen = []

        def handler(request):
            seen.append(request.extensions["timeout"]["read"])
            return httpx.Response(200, json={})

        with make_service(handler, timeouts=Timeouts(quota=7, keys=3)) as service:
            service.get_quota()
            service.get_user_public_key()
        assert seen == [7, 3]


class TestErrors:
    def test_parse_session_limit(self):
        error = parse_session_limit_error(
            "rpc error: session_limit_exceeded:current=5:limit=-1:upgrade_url=https://u.test", "UpsertSession"
        )
        assert error.limit == -1
        assert error.operation == "UpsertSession"

    def test_parse_other_message(self):
        assert parse_session_limit_error("boom") is None

    def test_friendly_messages(self):
        assert "sessionhub setup" in Unauthenticated("x").friendly_message()
        assert "Upgrade at" in SessionLimitExceeded(1, 1).friendly_message()
        assert "Unexpected response" in MalformedResponse("x", "GetQuota").friendly_message()
