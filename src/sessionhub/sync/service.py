"""The remote session service and its HTTP implementation."""

import logging
from collections.abc import Sequence
from typing import Any, Protocol, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from sessionhub import __version__
from sessionhub.config import Timeouts
from sessionhub.errors import (
    DeadlineExceeded,
    MalformedResponse,
    NotFound,
    OnboardingRequired,
    PermissionDenied,
    ResourceExhausted,
    ServiceError,
    Unauthenticated,
    Unavailable,
    is_onboarding_error,
    parse_session_limit_error,
)
from sessionhub.sync.models import (
    BatchResult,
    CreateProjectRequest,
    KeyMaterial,
    Project,
    QuotaSnapshot,
    Team,
    UpsertResult,
    UpsertSessionRequest,
    UserInfo,
    WireInteraction,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_ERRORS_BY_STATUS: dict[int, type[ServiceError]] = {
    401: Unauthenticated,
    403: PermissionDenied,
    404: NotFound,
    408: DeadlineExceeded,
    429: ResourceExhausted,
    502: Unavailable,
    503: Unavailable,
    504: DeadlineExceeded,
}


class SessionService(Protocol):
    """Operations the sync pipeline needs from SessionHub."""

    def validate_credential(self) -> UserInfo | None: ...

    def get_projects(self) -> list[Project]: ...

    def create_project(self, request: CreateProjectRequest) -> Project: ...

    def upsert_session(self, request: UpsertSessionRequest) -> UpsertResult: ...

    def append_interactions_batch(
        self, session_id: str, interactions: Sequence[WireInteraction]
    ) -> BatchResult: ...

    def get_quota(self) -> QuotaSnapshot | None: ...

    def get_user_public_key(self) -> KeyMaterial | None: ...

    def get_team_public_key(self, team_id: str) -> KeyMaterial | None: ...

    def list_teams(self) -> list[Team]: ...


def error_from_response(operation: str, response: httpx.Response) -> ServiceError:
    """Translate an HTTP error response into a ServiceError."""
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    message = str(body.get("message") or body.get("error") or response.text or response.reason_phrase)

    if limit_error := parse_session_limit_error(message, operation):
        return limit_error
    if is_onboarding_error(message):
        return OnboardingRequired(message, operation)
    error_class = _ERRORS_BY_STATUS.get(response.status_code, ServiceError)
    return error_class(message, operation)


class HttpSessionService:
    """SessionService over JSON HTTP calls, one POST per operation.

    Every call carries the bearer credential and an explicit deadline. Nothing
    is retried here.
    """

    def __init__(
        self,
        api_key: str,
        backend_url: str,
        timeouts: Timeouts | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.timeouts = timeouts or Timeouts()
        self.backend_url = backend_url.rstrip("/")
        self._client = httpx.Client(
            base_url=self.backend_url,
            headers={
                "Authorization": f"Bearer {api_key}",
                "User-Agent": f"sessionhub-sync/{__version__}",
            },
            transport=transport,
        )
        self._api_key = api_key

    def __enter__(self) -> "HttpSessionService":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def _call(self, method: str, payload: dict[str, Any], timeout: float) -> dict[str, Any]:
        try:
            response = self._client.post(f"/rpc/{method}", json=payload, timeout=timeout)
        except httpx.TimeoutException as exc:
            raise DeadlineExceeded(f"no response within {timeout:g}s", method) from exc
        except httpx.TransportError as exc:
            raise Unavailable(str(exc) or exc.__class__.__name__, method) from exc

        if response.is_error:
            raise error_from_response(method, response)
        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError as exc:
            raise MalformedResponse("response body is not JSON", method) from exc
        if not isinstance(data, dict):
            raise MalformedResponse("response body is not a JSON object", method)
        return data

    def _call_or_none(self, method: str, payload: dict[str, Any], timeout: float) -> dict[str, Any] | None:
        try:
            return self._call(method, payload, timeout)
        except NotFound:
            return None

    @staticmethod
    def _parse(model: type[ModelT], data: Any, method: str) -> ModelT:
        try:
            return model.model_validate(data)
        except ValidationError as exc:
            raise MalformedResponse(
                f"unexpected {model.__name__} shape ({exc.error_count()} errors)", method
            ) from exc

    def _parse_list(self, model: type[ModelT], data: dict[str, Any], key: str, method: str) -> list[ModelT]:
        items = data.get(key) or []
        if not isinstance(items, list):
            raise MalformedResponse(f"{key} is not a list", method)
        return [self._parse(model, item, method) for item in items]

    def validate_credential(self) -> UserInfo | None:
        try:
            data = self._call(
                "ValidateCredential", {"api_key": self._api_key}, self.timeouts.validate_credential
            )
        except (NotFound, Unauthenticated):
            return None
        return self._parse(UserInfo, data, "ValidateCredential")

    def get_projects(self) -> list[Project]:
        data = self._call_or_none("GetProjects", {}, self.timeouts.projects) or {}
        return self._parse_list(Project, data, "projects", "GetProjects")

    def create_project(self, request: CreateProjectRequest) -> Project:
        data = self._call("CreateProject", request.model_dump(exclude_none=True), self.timeouts.default)
        return self._parse(Project, data, "CreateProject")

    def upsert_session(self, request: UpsertSessionRequest) -> UpsertResult:
        data = self._call("UpsertSession", request.model_dump(mode="json", exclude_none=True), self.timeouts.upsert)
        return self._parse(UpsertResult, data, "UpsertSession")

    def append_interactions_batch(
        self, session_id: str, interactions: Sequence[WireInteraction]
    ) -> BatchResult:
        payload = {
            "session_id": session_id,
            "interactions": [i.model_dump(exclude_none=True) for i in interactions],
        }
        data = self._call("AppendInteractionsBatch", payload, self.timeouts.batch)
        return self._parse(BatchResult, data, "AppendInteractionsBatch")

    def get_quota(self) -> QuotaSnapshot | None:
        data = self._call_or_none("GetQuota", {}, self.timeouts.quota)
        return self._parse(QuotaSnapshot, data, "GetQuota") if data is not None else None

    def get_user_public_key(self) -> KeyMaterial | None:
        data = self._call_or_none("GetUserPublicKey", {}, self.timeouts.keys)
        return self._parse(KeyMaterial, data, "GetUserPublicKey") if data else None

    def get_team_public_key(self, team_id: str) -> KeyMaterial | None:
        data = self._call_or_none("GetTeamPublicKey", {"team_id": team_id}, self.timeouts.keys)
        return self._parse(KeyMaterial, data, "GetTeamPublicKey") if data else None

    def list_teams(self) -> list[Team]:
        data = self._call_or_none("ListTeams", {}, self.timeouts.default) or {}
        return self._parse_list(Team, data, "teams", "ListTeams")
