"""Exception hierarchy for transcript parsing and SessionHub sync."""

import re
from pathlib import Path

UPGRADE_URL = "https://sessionhub.dev/pricing"

_SESSION_LIMIT_PATTERN = re.compile(
    r"session_limit_exceeded:current=(\d+):limit=(-?\d+):upgrade_url=(\S+)"
)


class SessionHubError(Exception):
    """Base class for every error raised by sessionhub."""


class EmptyTranscript(SessionHubError):
    """A transcript yielded no timestamped records."""

    def __init__(self, path: str | Path | None = None):
        self.path = str(path) if path else None
        where = f": {self.path}" if self.path else ""
        super().__init__(f"Transcript has no timestamped content{where}")


class TranscriptTooLarge(SessionHubError):
    def __init__(self, path: str | Path, size: int, limit: int):
        self.path = str(path)
        self.size = size
        self.limit = limit
        super().__init__(f"Transcript file too large: {size} bytes (max {limit})")


class EncryptionKeyUnavailable(SessionHubError):
    """End-to-end encryption is required but no valid public key resolved."""

    def __init__(self, mode: str):
        self.mode = mode
        super().__init__(
            f"Project requires end-to-end encryption ({mode}) but no valid "
            "team or personal public key is available. Nothing was sent."
        )


class ServiceError(SessionHubError):
    """A remote call failed."""

    code = "unknown"

    def __init__(self, message: str, operation: str = ""):
        self.operation = operation
        self.message = message
        super().__init__(f"{operation} failed: {message}" if operation else message)

    def friendly_message(self) -> str:
        return str(self)


class NotFound(ServiceError):
    code = "not_found"


class Unauthenticated(ServiceError):
    code = "unauthenticated"

    def friendly_message(self) -> str:
        return "Invalid API key. Run `sessionhub setup <api-key>` with a key from https://sessionhub.dev/settings"


class PermissionDenied(ServiceError):
    code = "permission_denied"

    def friendly_message(self) -> str:
        return "Access denied. Your API key may not have permission for this operation."


class ResourceExhausted(ServiceError):
    code = "resource_exhausted"

    def friendly_message(self) -> str:
        return "Rate limit exceeded or quota exhausted. Please try again later."


class Unavailable(ServiceError):
    code = "unavailable"

    def friendly_message(self) -> str:
        return "Cannot reach SessionHub server. Check your internet connection and try again."


class DeadlineExceeded(ServiceError):
    code = "deadline_exceeded"

    def friendly_message(self) -> str:
        return "Request timed out. The server may be busy - please try again."


class SessionLimitExceeded(ResourceExhausted):
    """The service refused a session because the tenant quota is used up."""

    code = "session_limit_exceeded"

    def __init__(self, current_count: int, limit: int, upgrade_url: str = UPGRADE_URL, operation: str = ""):
        self.current_count = current_count
        self.limit = limit
        self.upgrade_url = upgrade_url
        super().__init__(
            f"Session limit reached ({current_count}/{limit} sessions)", operation
        )

    def friendly_message(self) -> str:
        return f"{self.message}. Upgrade at {self.upgrade_url}"


class MalformedResponse(ServiceError):
    """The service answered, but not with the expected JSON shape."""

    code = "malformed_response"

    def friendly_message(self) -> str:
        return "Unexpected response from SessionHub server. Please try again later."


class OnboardingRequired(ServiceError):
    code = "onboarding_required"

    def friendly_message(self) -> str:
        return "Please complete onboarding at https://sessionhub.dev to create or join a team"


def parse_session_limit_error(message: str, operation: str = "") -> SessionLimitExceeded | None:
    """Recognise the service's session-limit message, or return None."""
    match = _SESSION_LIMIT_PATTERN.search(message or "")
    if not match:
        return None
    return SessionLimitExceeded(
        current_count=int(match.group(1)),
        limit=int(match.group(2)),
        upgrade_url=match.group(3),
        operation=operation,
    )


def is_onboarding_error(message: str) -> bool:
    text = message or ""
    return "no team found" in text or "complete onboarding" in text
