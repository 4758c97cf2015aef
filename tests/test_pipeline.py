"""Тесты CheckPipeline: параллельный запуск и graceful degradation."""

import asyncio

import pytest

from storeaudit.checks.base_check import BaseCheck
from storeaudit.checks.pipeline import CheckPipeline, default_checks
from storeaudit.core.models import StoreContent
from storeaudit.core.types import IssueType, Severity
from tests.factories import FailingCheck, clean_content, content_with_issues


class BrokenRunCheck(BaseCheck):
    """Падает вне _check, в самом run."""
    name = "broken_run"
    issue_type = IssueType.MIXED_CONTENT
    severity = Severity.MEDIUM

    async def run(self, content):
        raise RuntimeError("run exploded")

    async def _check(self, content):
        return []


class TrackingCheck(BaseCheck):
    name = "tracking"
    issue_type = IssueType.INDEXING_DIRECTIVE
    severity = Severity.LOW

    def __init__(self, tracker, name):
        super().__init__()
        self.tracker = tracker
        self.name = name

    async def _check(self, content):
        self.tracker["running"] += 1
        self.tracker["peak"] = max(self.tracker["peak"], self.tracker["running"])
        await asyncio.sleep(0.01)
        self.tracker["running"] -= 1
        return []


class TestCheckPipeline:

    @pytest.mark.asyncio
    async def test_default_checks(self):
        checks = default_checks()
        assert len(checks) == 7
        assert len({c.issue_type for c in checks}) == 7

    @pytest.mark.asyncio
    async def test_aggregates_issues_from_all_checks(self):
        result = await CheckPipeline(default_checks()).run(content_with_issues())

        assert len(result.succeeded) == 7
        assert result.failed == []
        assert not result.partial
        counts = result.severity_counts()
        assert counts[Severity.CRITICAL] == 1
        assert counts[Severity.HIGH] == 4
        assert counts[Severity.MEDIUM] == 3
        assert counts[Severity.LOW] == 0
        assert len(result.issues) == 8

    @pytest.mark.asyncio
    async def test_clean_content(self):
        result = await CheckPipeline(default_checks()).run(clean_content())
        assert result.issues == []
        assert result.any_succeeded

    @pytest.mark.asyncio
    async def test_failed_check_does_not_stop_others(self):
        pipeline = CheckPipeline([FailingCheck(), *default_checks()])
        result = await pipeline.run(content_with_issues())

        assert result.failed == ["failing"]
        assert result.partial
        assert result.any_succeeded
        assert len(result.issues) == 8

    @pytest.mark.asyncio
    async def test_exception_outside_check_is_isolated(self):
        result = await CheckPipeline([BrokenRunCheck(), FailingCheck()]).run(StoreContent())

        assert result.failed == ["broken_run", "failing"]
        assert not result.any_succeeded
        assert "run exploded" in result.results[0].error

    @pytest.mark.asyncio
    async def test_failed_check_issues_are_not_counted(self):
        result = await CheckPipeline([FailingCheck()]).run(content_with_issues())
        assert result.issues == []
        assert all(v == 0 for v in result.severity_counts().values())

    @pytest.mark.asyncio
    async def test_results_keep_check_order(self):
        checks = default_checks()
        result = await CheckPipeline(checks).run(content_with_issues())
        assert [r.check_name for r in result.results] == [c.name for c in checks]

    @pytest.mark.asyncio
    async def test_outcomes(self):
        result = await CheckPipeline([FailingCheck(), *default_checks()[:1]]).run(content_with_issues())
        outcomes = result.outcomes()
        assert outcomes[0].success is False
        assert outcomes[0].issue_count == 0
        assert outcomes[1].check_name == "missing_meta_titles"
        assert outcomes[1].issue_count == 1

    @pytest.mark.asyncio
    async def test_checks_run_concurrently(self):
        tracker = {"running": 0, "peak": 0}
        checks = [TrackingCheck(tracker, f"t{i}") for i in range(4)]
        await CheckPipeline(checks).run(StoreContent())
        assert tracker["peak"] == 4

    @pytest.mark.asyncio
    async def test_max_parallel_limits_batch(self):
        tracker = {"running": 0, "peak": 0}
        checks = [TrackingCheck(tracker, f"t{i}") for i in range(5)]
        result = await CheckPipeline(checks, max_parallel=2).run(StoreContent())
        assert tracker["peak"] == 2
        assert len(result.results) == 5

    @pytest.mark.asyncio
    async def test_empty_pipeline(self):
        result = await CheckPipeline([]).run(StoreContent())
        assert result.results == []
        assert not result.any_succeeded
