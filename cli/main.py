"""
CLI интерфейс для storeaudit.

Использует Rich для вывода. Если задан STOREAUDIT_REDIS_URL, аудиты и
квоты хранятся в Redis и переживают перезапуск; иначе всё живёт в памяти
одного вызова.
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from storeaudit.config import get_settings
from storeaudit.core.content_sources import JsonFileContentProvider
from storeaudit.core.errors import StoreAuditError
from storeaudit.core.factory import Services, build_services
from storeaudit.core.models import Account, AuditOutcome, AuditProgress, QuotaExceeded, RateLimited
from storeaudit.core.redis_store import connect_redis
from storeaudit.core.repository import InMemoryAccountDirectory
from storeaudit.core.scoring import status_text
from storeaudit.core.types import AuditStatus, PlanTier

app = typer.Typer(
    name="storeaudit",
    help="storeaudit CLI: SEO-аудит магазина, квоты и обслуживание",
)
console = Console()

logger = logging.getLogger(__name__)

_STATUS_STYLE = {
    AuditStatus.PENDING: "yellow",
    AuditStatus.RUNNING: "blue",
    AuditStatus.COMPLETED: "green",
    AuditStatus.FAILED: "red",
}

_SEVERITY_STYLE = {
    "critical": "bold red",
    "high": "red",
    "medium": "yellow",
    "low": "dim",
}


def setup_logging(verbose: bool = False) -> None:
    """Настроить логирование."""
    level = logging.DEBUG if verbose else getattr(logging, get_settings().log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Подробные логи")):
    load_dotenv()
    setup_logging(verbose)


@asynccontextmanager
async def open_services(content: Optional[Path] = None, account: Optional[Account] = None):
    """Собрать сервисы на время одной команды."""
    settings = get_settings()
    client = await connect_redis(settings.redis_url) if settings.redis_url else None
    accounts = InMemoryAccountDirectory([account] if account else [])
    try:
        yield build_services(
            settings,
            content_provider=JsonFileContentProvider(content or Path(".")),
            accounts=accounts,
            redis_client=client,
        )
    finally:
        if client is not None:
            await client.aclose()


def _fmt(moment: Optional[datetime]) -> str:
    return moment.strftime("%Y-%m-%d %H:%M:%S") if moment else "-"


def _print_progress(progress: AuditProgress) -> None:
    console.print(f"[dim][{progress.percentage:>3}%] {progress.message}[/]")


def _render_outcome(outcome: AuditOutcome) -> None:
    audit = outcome.audit
    style = _STATUS_STYLE[audit.status]

    lines = [f"Status: [{style}]{audit.status.value.upper()}[/]"]
    if audit.status == AuditStatus.COMPLETED and outcome.health:
        lines.append(f"Score: [bold]{audit.score}[/] / 100 ({status_text(outcome.health.status)})")
        lines.append(f"Raw issue score: {audit.raw_score}")
    if audit.partial:
        lines.append("[yellow]Partial result: some checks failed[/]")
    if audit.error:
        lines.append(f"[red]Error ({audit.failed_stage}): {audit.error}[/]")
    lines.append(
        f"Issues: {audit.critical_issues} critical, {audit.high_issues} high, "
        f"{audit.medium_issues} medium, {audit.low_issues} low"
    )
    console.print(Panel("\n".join(lines), title=f"Audit {audit.id}"))

    if audit.checks:
        table = Table(title="Checks")
        table.add_column("Check", style="cyan")
        table.add_column("Result")
        table.add_column("Issues", justify="right")
        for check in audit.checks:
            result = "[green]ok[/]" if check.success else f"[red]{check.error}[/]"
            table.add_row(check.check_name, result, str(check.issue_count))
        console.print(table)

    if outcome.issues:
        table = Table(title="Issues")
        table.add_column("Severity")
        table.add_column("Type", style="cyan")
        table.add_column("Message")
        for issue in outcome.issues[:50]:
            severity = issue.severity.value
            table.add_row(f"[{_SEVERITY_STYLE[severity]}]{severity}[/]", issue.type.value, issue.message)
        console.print(table)
        if len(outcome.issues) > 50:
            console.print(f"[dim]... and {len(outcome.issues) - 50} more[/]")


@app.command()
def audit(
    account_id: str,
    content: Path = typer.Option(..., "--content", "-c", exists=True, help="JSON с товарами, коллекциями и страницами"),
    tier: PlanTier = typer.Option(PlanTier.FREE, "--tier", help="Тариф аккаунта"),
    sitemap: bool = typer.Option(False, "--sitemap", help="Sitemap уже сгенерирован"),
    metrics: bool = typer.Option(False, "--metrics", help="Аналитика подключена"),
    as_json: bool = typer.Option(False, "--json", help="Вывести результат в JSON"),
):
    """🔍 Запустить аудит аккаунта по контенту из файла."""

    account = Account(
        id=account_id,
        plan_tier=tier,
        sitemap_generated_at=datetime.now() if sitemap else None,
        metrics_connected=metrics,
    )

    async def run():
        async with open_services(content, account) as services:
            outcome = await services.audits.start_and_run(
                account_id, on_progress=None if as_json else _print_progress
            )
            await services.audits.wait_for_background_tasks()
            return outcome

    try:
        result = asyncio.run(run())
    except StoreAuditError as e:
        console.print(f"[red]❌ {e}[/]")
        raise typer.Exit(1)

    if isinstance(result, (RateLimited, QuotaExceeded)):
        console.print(f"[yellow]⏳ {result.message}[/]")
        raise typer.Exit(2)

    if as_json:
        payload = {
            "audit": result.audit.to_dict(),
            "issues": [issue.to_dict() for issue in result.issues],
            "health": result.health.to_dict() if result.health else None,
        }
        console.print_json(json.dumps(payload))
    else:
        _render_outcome(result)

    if not result.succeeded:
        raise typer.Exit(1)


@app.command()
def usage(
    account_id: str,
    tier: PlanTier = typer.Option(PlanTier.FREE, "--tier", help="Тариф аккаунта"),
):
    """📊 Показать дневные квоты аккаунта."""

    async def run():
        async with open_services() as services:
            return await services.usage.status(account_id, tier), services.usage.reset_at()

    status, reset_at = asyncio.run(run())

    table = Table(title=f"📊 Usage for {account_id} on {status.day}")
    table.add_column("Action", style="cyan")
    table.add_column("Used", justify="right")
    table.add_column("Limit", justify="right")
    table.add_column("Remaining", justify="right")
    table.add_column("%", justify="right")

    for action, item in status.actions.items():
        limit = "∞" if item.limit is None else str(item.limit)
        remaining = "∞" if item.remaining is None else str(item.remaining)
        style = "red" if item.limit is not None and item.used >= item.limit else (
            "yellow" if item.percentage >= 80 else "green"
        )
        table.add_row(action.value, str(item.used), limit, remaining, f"[{style}]{item.percentage}[/]")

    console.print(table)
    console.print(f"[dim]Resets at {_fmt(reset_at)} UTC[/]")


@app.command()
def history(account_id: str, limit: int = typer.Option(10, "--limit", "-n")):
    """📜 Последние аудиты аккаунта."""

    async def run():
        async with open_services() as services:
            return await services.audits.history(account_id, limit)

    items = asyncio.run(run())
    if not items:
        console.print(f"[dim]No audits for {account_id}[/]")
        return

    table = Table(title=f"📜 Audits for {account_id}")
    table.add_column("Created", style="dim")
    table.add_column("Status")
    table.add_column("Score", justify="right")
    table.add_column("Issues", justify="right")
    table.add_column("Duration", justify="right")

    for item in items:
        style = _STATUS_STYLE[item.status]
        status = f"[{style}]{item.status.value}[/]" + (" (partial)" if item.partial else "")
        duration = f"{item.duration_seconds:.1f}s" if item.duration_seconds is not None else "-"
        score = "-" if item.score is None else str(item.score)
        table.add_row(_fmt(item.created_at), status, score, str(item.total_issues), duration)

    console.print(table)


@app.command("reset-usage")
def reset_usage():
    """🔄 Сбросить вчерашние счётчики квот (ежедневная задача)."""

    async def run():
        async with open_services() as services:
            return await services.housekeeper.reset_daily_usage()

    result = asyncio.run(run())
    _print_job(result)


@app.command()
def reap():
    """🧹 Завершить брошенные аудиты как FAILED."""

    async def run():
        async with open_services() as services:
            result = await services.housekeeper.reap_abandoned_audits()
            await services.audits.wait_for_background_tasks()
            return result

    result = asyncio.run(run())
    _print_job(result)


def _print_job(result) -> None:
    if result.success:
        console.print(f"✅ {result.message} [dim]({result.duration_ms:.0f}ms)[/]")
    else:
        console.print(f"[red]❌ {result.message}[/]")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
