"""Tests for the bulk quota gate."""

import pytest

from sessionhub.errors import UPGRADE_URL, Unavailable
from sessionhub.sync.models import UNLIMITED, QuotaSnapshot
from sessionhub.sync.quota import QuotaGate


class TestQuotaGate:
    def test_unlimited_allows_everything(self, service):
        service.quota = QuotaSnapshot(current_count=500, limit=UNLIMITED, remaining=0)
        decision = QuotaGate(service).check(["a", "b"])
        assert decision.allowed == ["a", "b"]
        assert decision.skipped == []
        assert not decision.exceeded

    def test_no_snapshot_allows_everything(self, service):
        decision = QuotaGate(service).check(["a"])
        assert decision.allowed == ["a"]
        assert decision.snapshot is None

    def test_exhausted_quota(self, service):
        service.quota = QuotaSnapshot(current_count=10, limit=10, remaining=0)
        decision = QuotaGate(service).check(["a", "b"])
        assert decision.exceeded
        assert decision.allowed == []
        assert decision.skipped == ["a", "b"]
        assert decision.upgrade_url == UPGRADE_URL

    def test_truncates_in_order(self, service):
        service.quota = QuotaSnapshot(current_count=8, limit=10, remaining=2)
        decision = QuotaGate(service).check(["a", "b", "c", "d"])
        assert decision.allowed == ["a", "b"]
        assert decision.skipped == ["c", "d"]
        assert not decision.exceeded

    def test_enough_remaining(self, service):
        service.quota = QuotaSnapshot(current_count=1, limit=10, remaining=9)
        decision = QuotaGate(service).check(["a", "b"])
        assert decision.allowed == ["a", "b"]
        assert decision.skipped == []

    def test_quota_fetched_every_call(self, service):
        gate = QuotaGate(service)
        gate.check(["a"])
        gate.check(["a"])
        assert service.calls.count("get_quota") == 2

    def test_quota_error_propagates(self, service):
        service.quota_error = Unavailable("down", "GetQuota")
        with pytest.raises(Unavailable):
            QuotaGate(service).check(["a"])
