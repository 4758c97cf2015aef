"""
Битые ссылки в описаниях товаров и коллекций (HIGH).

По умолчанию только шаблоны, без сетевых запросов:
- старые числовые URL (/products/123)
- test-/sample-/demo-/deleted-/removed-/old- слаги
- localhost, 127.0.0.1, staging., домены .test

С probe_links=True абсолютные ссылки дополнительно проверяются HEAD-запросом
через httpx (с ограничением частоты).
"""

import re
from typing import Dict, List, Optional, Tuple

import httpx

from .base_check import BaseCheck
from .html import Link, extract_links
from storeaudit.core.models import Issue, StoreContent
from storeaudit.core.types import IssueType, ResourceType, Severity
from storeaudit.infrastructure.rate_limiter import RateLimiter, rate_limit

SUSPICIOUS_PATTERNS = [
    re.compile(r"/products/\d+$"),
    re.compile(r"/collections/\d+$"),
    re.compile(r"/(test|sample|demo|deleted|removed|old)-", re.IGNORECASE),
    re.compile(r"localhost", re.IGNORECASE),
    re.compile(r"127\.0\.0\.1"),
    re.compile(r"staging\.", re.IGNORECASE),
    re.compile(r"\.test/", re.IGNORECASE),
]

_SKIPPED_SCHEMES = ("mailto:", "tel:", "javascript:", "#")


def is_suspicious(href: str) -> bool:
    return any(pattern.search(href) for pattern in SUSPICIOUS_PATTERNS)


class BrokenLinksCheck(BaseCheck):
    name = "broken_links"
    issue_type = IssueType.BROKEN_LINK
    severity = Severity.HIGH

    def __init__(
        self,
        timeout_seconds: float = 30.0,
        probe_links: bool = False,
        probe_timeout_seconds: float = 5.0,
        limiter: Optional[RateLimiter] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(timeout_seconds)
        self.probe_links = probe_links
        self.probe_timeout_seconds = probe_timeout_seconds
        self.limiter = limiter
        self.client = client

    async def _check(self, content: StoreContent) -> List[Issue]:
        targets: List[Tuple[ResourceType, str, str, str, Optional[str]]] = []
        for product in content.products:
            targets.append((ResourceType.PRODUCT, product.id, product.title, product.handle, product.description_html))
        for collection in content.collections:
            targets.append((
                ResourceType.COLLECTION, collection.id, collection.title, collection.handle,
                collection.description_html,
            ))

        issues = []
        probe_cache: Dict[str, Optional[str]] = {}

        for resource_type, resource_id, title, handle, html in targets:
            for link in extract_links(html):
                reason = None
                if is_suspicious(link.href):
                    reason = "suspicious-pattern"
                elif self.probe_links:
                    reason = await self._probe(link, content.shop_domain, probe_cache)

                if reason is None:
                    continue

                issues.append(self._broken_issue(content, resource_type, resource_id, title, handle, link, reason))

        return issues

    def _broken_issue(self, content, resource_type, resource_id, title, handle, link: Link, reason: str) -> Issue:
        if resource_type == ResourceType.PRODUCT:
            message = f'Product "{title}" contains a potentially broken link'
            suggestion = (
                "Review and update the link in your product description. Broken links harm user "
                "experience and SEO. Consider removing or replacing it with a valid URL."
            )
        else:
            message = f'Collection "{title}" contains a potentially broken link'
            suggestion = (
                "Verify the link in your collection description and update or remove it if it's "
                "no longer valid."
            )
        return self.make_issue(
            content, resource_type, resource_id, title, handle,
            message=message,
            suggestion=suggestion,
            link_url=link.href,
            link_text=link.text,
            reason=reason,
        )

    # ==================== HTTP probe ====================

    @staticmethod
    def _absolute_url(href: str, shop_domain: Optional[str]) -> Optional[str]:
        if href.startswith(_SKIPPED_SCHEMES):
            return None
        if href.startswith(("http://", "https://")):
            return href
        if href.startswith("//"):
            return f"https:{href}"
        if href.startswith("/") and shop_domain:
            return f"https://{shop_domain}{href}"
        return None

    async def _probe(self, link: Link, shop_domain: Optional[str], probe_cache: Dict[str, Optional[str]]) -> Optional[str]:
        """None если ссылка жива, иначе причина ("http-404", "unreachable", "invalid-url")."""
        url = self._absolute_url(link.href, shop_domain)
        if url is None:
            return None
        if url in probe_cache:
            return probe_cache[url]

        if self.client is not None:
            reason = await self._request(self.client, url)
        else:
            async with httpx.AsyncClient(timeout=self.probe_timeout_seconds, follow_redirects=True) as client:
                reason = await self._request(client, url)

        probe_cache[url] = reason
        return reason

    async def _request(self, client: httpx.AsyncClient, url: str) -> Optional[str]:
        async with rate_limit(self.limiter):
            try:
                response = await client.head(url)
                if response.status_code == 405:
                    response = await client.get(url)
            except (httpx.InvalidURL, ValueError) as e:
                self.logger.info(f"Link check skipped malformed URL {url}: {e}")
                return "invalid-url"
            except httpx.HTTPError as e:
                self.logger.info(f"Link probe failed for {url}: {type(e).__name__}")
                return "unreachable"

        if response.status_code >= 400:
            return f"http-{response.status_code}"
        return None
