"""
Тестовые данные и фейковые зависимости, общие для всех тестов.
"""

from typing import List

from storeaudit.checks.base_check import BaseCheck
from storeaudit.core.models import (
    ActivityEvent,
    Collection,
    Image,
    Page,
    Product,
    StoreContent,
)
from storeaudit.core.types import IssueType, Severity


def make_product(pid: str, title: str = None, seo_title: str = "SEO title", seo_description: str = "SEO description",
                 description_html: str = "<p>Nice product</p>", images=None) -> Product:
    title = title or f"Product {pid}"
    return Product(
        id=pid,
        title=title,
        handle=title.lower().replace(" ", "-"),
        seo_title=seo_title if seo_title != "SEO title" else f"{title} | Shop",
        seo_description=seo_description,
        description_html=description_html,
        images=images if images is not None else [Image(id=f"img-{pid}", url="https://cdn.example.com/a.jpg", alt_text="Photo")],
    )


def clean_content() -> StoreContent:
    """Контент без единой проблемы."""
    return StoreContent(
        shop_domain="demo.myshop.com",
        products=[make_product("p1"), make_product("p2")],
        collections=[
            Collection(
                id="c1", title="Summer", handle="summer",
                seo_title="Summer collection", seo_description="All summer items",
                description_html="<p>Sunny</p>",
            )
        ],
        pages=[Page(id="pg1", title="About", handle="about", body_summary="About us", body="<p>We sell</p>")],
    )


def content_with_issues() -> StoreContent:
    """
    Проблемы:
    - p1 без meta title (critical)
    - p2 и p3 с одинаковым meta title (2 x high)
    - p3 без meta description (high)
    - p2 с двумя картинками без ALT (1 x medium)
    - p2 со ссылкой на http://localhost (high + medium) и http-картинкой в описании (medium)

    Итого: 1 critical, 4 high, 3 medium, 0 low -> raw 30.
    """
    return StoreContent(
        shop_domain="demo.myshop.com",
        products=[
            make_product("p1", title="Blue Shirt", seo_title=None),
            make_product(
                "p2",
                title="Red Shirt",
                seo_title="Best Shirt",
                description_html=(
                    '<p>See <a href="http://localhost:3000/products/red">preview</a></p>'
                    '<img src="http://cdn.example.com/red.jpg">'
                ),
                images=[
                    Image(id="i1", url="https://cdn.example.com/1.jpg", alt_text=""),
                    Image(id="i2", url="https://cdn.example.com/2.jpg", alt_text=None),
                ],
            ),
            make_product("p3", title="Green Shirt", seo_title="best shirt ", seo_description=None),
        ],
    )


class RecordingSink:
    """ActivitySink, запоминающий события."""

    def __init__(self):
        self.events: List[ActivityEvent] = []

    async def publish(self, event: ActivityEvent) -> None:
        self.events.append(event)


class FailingSink:
    async def publish(self, event: ActivityEvent) -> None:
        raise RuntimeError("sink is down")


class CountingProvider:
    """ContentProvider, считающий вызовы; может падать первые N раз."""

    def __init__(self, content: StoreContent, failures: int = 0, error: Exception = None):
        self.content = content
        self.failures = failures
        self.error = error or ConnectionError("provider unavailable")
        self.calls = 0

    async def fetch_content(self, account_id: str) -> StoreContent:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.content



class FailingCheck(BaseCheck):
    """Проверка, которая всегда падает."""
    name = "failing"
    issue_type = IssueType.BROKEN_LINK
    severity = Severity.HIGH

    async def _check(self, content):
        raise ValueError("unexpected markup")
