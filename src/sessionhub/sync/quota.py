"""Pre-flight session quota check for bulk operations."""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Generic, TypeVar

from sessionhub.errors import UPGRADE_URL
from sessionhub.sync.models import QuotaSnapshot
from sessionhub.sync.service import SessionService

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class QuotaDecision(Generic[T]):
    """Which candidates may be attempted under the current quota."""

    allowed: list[T]
    skipped: list[T] = field(default_factory=list)
    snapshot: QuotaSnapshot | None = None
    exceeded: bool = False
    upgrade_url: str = UPGRADE_URL


class QuotaGate:
    def __init__(self, service: SessionService, upgrade_url: str = UPGRADE_URL):
        self.service = service
        self.upgrade_url = upgrade_url

    def check(self, candidates: Sequence[T]) -> QuotaDecision[T]:
        """Truncate ``candidates``, in their given order, to the remaining quota.

        The quota is fetched fresh on every call. No snapshot, or the
        unlimited sentinel, lets everything through.
        """
        candidates = list(candidates)
        snapshot = self.service.get_quota()
        if snapshot is None or snapshot.unlimited:
            return QuotaDecision(allowed=candidates, snapshot=snapshot, upgrade_url=self.upgrade_url)

        if snapshot.remaining <= 0:
            logger.warning(
                "Session limit reached (%d/%d sessions)", snapshot.current_count, snapshot.limit
            )
            return QuotaDecision(
                allowed=[],
                skipped=candidates,
                snapshot=snapshot,
                exceeded=True,
                upgrade_url=self.upgrade_url,
            )

        allowed = candidates[: snapshot.remaining]
        skipped = candidates[snapshot.remaining:]
        if skipped:
            logger.warning(
                "Quota allows %d of %d sessions; skipping %d",
                len(allowed),
                len(candidates),
                len(skipped),
            )
        return QuotaDecision(
            allowed=allowed, skipped=skipped, snapshot=snapshot, upgrade_url=self.upgrade_url
        )
