"""Тесты периодических задач."""

from datetime import timedelta

import pytest

from storeaudit.core.housekeeping import Housekeeper
from storeaudit.core.types import AuditStatus, MeteredAction


@pytest.fixture
def housekeeper(usage, service, cache, clock):
    return Housekeeper(usage, service, cache=cache, clock=clock)


class TestHousekeeper:

    @pytest.mark.asyncio
    async def test_reset_daily_usage(self, housekeeper, usage, usage_store, clock):
        await usage.increment("acc-1", MeteredAction.AUDIT_RUNS, 3)
        await usage.increment("acc-2", MeteredAction.META_UPDATES, 5)
        clock.advance(days=1)

        result = await housekeeper.reset_daily_usage()

        assert result.success
        assert result.count == 2
        records = await usage_store.list_records()
        assert all(r.day == usage.today() for r in records)
        assert all(r.get(action) == 0 for r in records for action in MeteredAction)

    @pytest.mark.asyncio
    async def test_reset_same_day_is_noop(self, housekeeper, usage):
        await usage.increment("acc-1", MeteredAction.AUDIT_RUNS, 3)
        result = await housekeeper.reset_daily_usage()
        assert result.count == 0
        assert (await usage.can_perform("acc-1", MeteredAction.AUDIT_RUNS)).used == 3

    @pytest.mark.asyncio
    async def test_reset_failure_reported(self, housekeeper, usage):
        async def broken():
            raise ConnectionError("store down")

        usage.reset_stale = broken
        result = await housekeeper.reset_daily_usage()

        assert not result.success
        assert "store down" in result.message
        assert result.count == 0

    @pytest.mark.asyncio
    async def test_reap_abandoned(self, housekeeper, service, repository, clock):
        started = await service.start_audit("acc-1")
        clock.advance(hours=2, seconds=1)

        result = await housekeeper.reap_abandoned_audits()

        assert result.success
        assert result.count == 1
        assert result.details["audit_ids"] == [started.audit.id]
        audit = await repository.get(started.audit.id)
        assert audit.status == AuditStatus.FAILED
        assert audit.completed_at == started.audit.created_at + timedelta(hours=2)

    @pytest.mark.asyncio
    async def test_nothing_to_reap(self, housekeeper, service):
        await service.start_audit("acc-1")
        result = await housekeeper.reap_abandoned_audits()
        assert result.count == 0

    def test_cleanup_cache(self, housekeeper, cache, clock):
        cache.set("content:acc-1:all", "x", ttl=60)
        cache.set("dashboard:acc-1:health-score", 80, ttl=600)
        clock.advance(seconds=61)

        result = housekeeper.cleanup_cache()

        assert result.count == 1
        assert len(cache) == 1

    def test_cleanup_without_cache(self, usage, service):
        assert Housekeeper(usage, service).cleanup_cache().count == 0

    @pytest.mark.asyncio
    async def test_run_all(self, housekeeper):
        results = await housekeeper.run_all()
        assert len(results) == 3
        assert all(r.success for r in results)
        data = results[0].to_dict()
        assert set(data) == {"success", "message", "count", "timestamp", "duration_ms", "details"}
