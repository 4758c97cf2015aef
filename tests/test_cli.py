"""Тесты CLI (typer CliRunner, всё в памяти)."""

import asyncio
import json
from contextlib import asynccontextmanager

import pytest
from typer.testing import CliRunner

import cli.main as cli_main
from storeaudit.config import Settings, get_settings
from storeaudit.core.content_sources import JsonFileContentProvider
from storeaudit.core.factory import build_services
from storeaudit.core.models import Account
from storeaudit.core.repository import InMemoryAccountDirectory

runner = CliRunner()

CONTENT = {
    "shopDomain": "demo.myshop.com",
    "products": [
        {
            "id": "p1",
            "title": "Blue Shirt",
            "handle": "blue-shirt",
            "seo": {"title": None, "description": "Soft cotton shirt"},
            "descriptionHtml": "<p>Soft cotton</p>",
            "images": [{"id": "img-1", "url": "https://cdn.example.com/1.jpg", "altText": "Blue shirt"}],
        },
    ],
}


@pytest.fixture(autouse=True)
def in_memory_settings(monkeypatch):
    monkeypatch.delenv("STOREAUDIT_REDIS_URL", raising=False)
    monkeypatch.setenv("STOREAUDIT_CONTENT_RETRY_DELAY_SECONDS", "0")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def content_file(tmp_path):
    path = tmp_path / "content.json"
    path.write_text(json.dumps(CONTENT), encoding="utf-8")
    return path


class TestAuditCommand:

    def test_audit_completes(self, content_file):
        result = runner.invoke(cli_main.app, ["audit", "acc-1", "--content", str(content_file)])

        assert result.exit_code == 0, result.output
        assert "COMPLETED" in result.output
        assert "missing_meta_titles" in result.output

    def test_audit_json(self, content_file):
        result = runner.invoke(cli_main.app, ["audit", "acc-1", "--content", str(content_file), "--json"])

        assert result.exit_code == 0, result.output
        assert '"status": "completed"' in result.output
        assert '"raw_score": 85' in result.output

    def test_unreadable_content_fails_audit(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")

        result = runner.invoke(cli_main.app, ["audit", "acc-1", "--content", str(path)])

        assert result.exit_code == 1
        assert "FAILED" in result.output
        assert "fetching" in result.output

    def test_rate_limited_exit_code(self, content_file, monkeypatch):
        services = build_services(
            Settings(),
            content_provider=JsonFileContentProvider(content_file),
            accounts=InMemoryAccountDirectory([Account(id="acc-1")]),
        )
        asyncio.run(services.audits.start_audit("acc-1"))

        @asynccontextmanager
        async def fake_open_services(content=None, account=None):
            yield services

        monkeypatch.setattr(cli_main, "open_services", fake_open_services)

        result = runner.invoke(cli_main.app, ["audit", "acc-1", "--content", str(content_file)])

        assert result.exit_code == 2
        assert "An audit is already in progress" in result.output


class TestOtherCommands:

    def test_usage(self):
        result = runner.invoke(cli_main.app, ["usage", "acc-1"])
        assert result.exit_code == 0, result.output
        assert "audit_runs" in result.output
        assert "Resets at" in result.output

    def test_history_empty(self):
        result = runner.invoke(cli_main.app, ["history", "acc-1"])
        assert result.exit_code == 0
        assert "No audits for acc-1" in result.output

    def test_reset_usage(self):
        result = runner.invoke(cli_main.app, ["reset-usage"])
        assert result.exit_code == 0
        assert "Reset usage for 0 accounts" in result.output

    def test_reap(self):
        result = runner.invoke(cli_main.app, ["reap"])
        assert result.exit_code == 0
        assert "Reaped 0 abandoned audits" in result.output
