"""Public key resolution for end-to-end encrypted projects."""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from sessionhub.errors import ServiceError
from sessionhub.sync.envelope import is_valid_public_key
from sessionhub.sync.models import KeyMaterial
from sessionhub.sync.service import SessionService

logger = logging.getLogger(__name__)

TEAM_KEY_TTL_SECONDS = 5 * 60


@dataclass(frozen=True)
class TeamKeyEntry:
    key: KeyMaterial
    fetched_at: float


class TeamKeyCache:
    """Process-local team key cache, invalidated only by age.

    Reads are lock-free; refreshes are serialized so one caller fetches while
    others wait for the new entry.
    """

    def __init__(self, ttl: float = TEAM_KEY_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[str, TeamKeyEntry] = {}
        self._lock = threading.Lock()

    def get(self, team_id: str) -> KeyMaterial | None:
        """The cached key if it is still within its TTL."""
        entry = self._entries.get(team_id)
        if entry is not None and self._clock() - entry.fetched_at < self.ttl:
            return entry.key
        return None

    def get_or_refresh(self, team_id: str, fetch: Callable[[], KeyMaterial | None]) -> KeyMaterial | None:
        key = self.get(team_id)
        if key is not None:
            return key
        with self._lock:
            key = self.get(team_id)
            if key is not None:
                return key
            key = fetch()
            if key is None:
                self._entries.pop(team_id, None)
                return None
            self._entries[team_id] = TeamKeyEntry(key=key, fetched_at=self._clock())
            return key


class KeyResolver:
    """Resolve the recipient key: team key first, then the caller's own key."""

    def __init__(self, service: SessionService, cache: TeamKeyCache | None = None):
        self.service = service
        self.cache = cache or TeamKeyCache()

    def resolve(self, team_id: str | None = None) -> KeyMaterial | None:
        team_key = self._team_key(team_id)
        if team_key is not None and is_valid_public_key(team_key.public_key):
            logger.info("Using team encryption key (version %d)", team_key.key_version)
            return team_key

        personal_key = self._personal_key()
        if personal_key is not None and is_valid_public_key(personal_key.public_key):
            logger.info("Using personal encryption key (version %d)", personal_key.key_version)
            return personal_key

        return None

    def _team_key(self, team_id: str | None) -> KeyMaterial | None:
        try:
            if team_id is None:
                teams = self.service.list_teams()
                if not teams:
                    return None
                team_id = teams[0].id
            return self.cache.get_or_refresh(
                team_id, lambda: self.service.get_team_public_key(team_id)
            )
        except ServiceError as exc:
            logger.warning("Team key lookup failed, trying personal key: %s", exc)
            return None

    def _personal_key(self) -> KeyMaterial | None:
        try:
            return self.service.get_user_public_key()
        except ServiceError as exc:
            logger.warning("Personal key lookup failed: %s", exc)
            return None
