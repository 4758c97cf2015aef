"""Тесты отдельных SEO-проверок."""

import asyncio

import httpx
import pytest

from storeaudit.checks.alt_text import MissingAltTextCheck
from storeaudit.checks.base_check import BaseCheck, resource_url
from storeaudit.checks.broken_links import BrokenLinksCheck, is_suspicious
from storeaudit.checks.html import extract_links, find_insecure_urls, has_noindex
from storeaudit.checks.indexing import IndexingDirectivesCheck
from storeaudit.checks.meta_descriptions import MissingMetaDescriptionsCheck
from storeaudit.checks.meta_titles import DuplicateMetaTitlesCheck, MissingMetaTitlesCheck
from storeaudit.checks.mixed_content import MixedContentCheck
from storeaudit.core.models import Collection, Image, Page, StoreContent
from storeaudit.core.types import IssueType, ResourceType, Severity
from tests.factories import clean_content, content_with_issues, make_product


class TestCleanContent:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("check_cls", [
        MissingMetaTitlesCheck,
        DuplicateMetaTitlesCheck,
        MissingMetaDescriptionsCheck,
        MissingAltTextCheck,
        BrokenLinksCheck,
        MixedContentCheck,
        IndexingDirectivesCheck,
    ])
    async def test_no_issues(self, check_cls):
        result = await check_cls().run(clean_content())
        assert result.success
        assert result.issues == []


# ═══════════════════════════════════════════════════════
# META
# ═══════════════════════════════════════════════════════

class TestMetaTitles:

    @pytest.mark.asyncio
    async def test_missing_title(self):
        result = await MissingMetaTitlesCheck().run(content_with_issues())
        assert len(result.issues) == 1
        issue = result.issues[0]
        assert issue.type == IssueType.MISSING_META_TITLE
        assert issue.severity == Severity.CRITICAL
        assert issue.resource.id == "p1"
        assert issue.resource.url == "https://demo.myshop.com/products/blue-shirt"
        assert "Blue Shirt" in issue.message

    @pytest.mark.asyncio
    async def test_whitespace_title_is_missing(self):
        content = StoreContent(products=[make_product("p1", seo_title="   ")])
        result = await MissingMetaTitlesCheck().run(content)
        assert len(result.issues) == 1
        assert result.issues[0].resource.url is None

    @pytest.mark.asyncio
    async def test_untitled_page(self):
        content = StoreContent(pages=[Page(id="pg", title=None, handle="x", body="<p>hi</p>")])
        result = await MissingMetaTitlesCheck().run(content)
        assert result.issues[0].resource.label == "Untitled Page"
        assert result.issues[0].resource.type == ResourceType.PAGE

    @pytest.mark.asyncio
    async def test_duplicates_ignore_case_and_spaces(self):
        result = await DuplicateMetaTitlesCheck().run(content_with_issues())
        assert len(result.issues) == 2
        assert {i.resource.id for i in result.issues} == {"p2", "p3"}
        for issue in result.issues:
            assert issue.severity == Severity.HIGH
            assert issue.details["duplicate_count"] == 2
        by_id = {i.resource.id: i for i in result.issues}
        assert by_id["p2"].details["duplicate_with"] == ["Green Shirt"]

    @pytest.mark.asyncio
    async def test_duplicate_across_products_and_collections(self):
        content = StoreContent(
            products=[make_product("p1", seo_title="Summer")],
            collections=[Collection(id="c1", title="Summer", handle="summer", seo_title="summer")],
        )
        result = await DuplicateMetaTitlesCheck().run(content)
        assert {i.resource.type for i in result.issues} == {ResourceType.PRODUCT, ResourceType.COLLECTION}

    @pytest.mark.asyncio
    async def test_missing_description(self):
        content = StoreContent(
            products=[make_product("p1", seo_description="")],
            collections=[Collection(id="c1", title="C", handle="c", seo_title="C")],
            pages=[Page(id="pg", title="FAQ", handle="faq", body_summary=None, body="<p>x</p>")],
        )
        result = await MissingMetaDescriptionsCheck().run(content)
        assert [i.resource.type for i in result.issues] == [
            ResourceType.PRODUCT, ResourceType.COLLECTION, ResourceType.PAGE,
        ]
        assert all(i.severity == Severity.HIGH for i in result.issues)


# ═══════════════════════════════════════════════════════
# IMAGES
# ═══════════════════════════════════════════════════════

class TestAltText:

    @pytest.mark.asyncio
    async def test_one_issue_per_product(self):
        result = await MissingAltTextCheck().run(content_with_issues())
        assert len(result.issues) == 1
        issue = result.issues[0]
        assert issue.severity == Severity.MEDIUM
        assert issue.details["image_count"] == 2
        assert issue.details["image_ids"] == ["i1", "i2"]
        assert "2 images" in issue.message

    @pytest.mark.asyncio
    async def test_single_image_message(self):
        product = make_product("p1", images=[Image(id="i1", url="https://x/a.jpg")])
        result = await MissingAltTextCheck().run(StoreContent(products=[product]))
        assert "an image without ALT text" in result.issues[0].message


# ═══════════════════════════════════════════════════════
# LINKS
# ═══════════════════════════════════════════════════════

class TestHtmlHelpers:

    def test_extract_links(self):
        links = extract_links('<p><a href=" /pages/a ">A <b>bold</b></a><a>no href</a></p>')
        assert len(links) == 1
        assert links[0].href == "/pages/a"
        assert links[0].text == "Abold"

    def test_extract_links_empty(self):
        assert extract_links(None) == []
        assert extract_links("   ") == []

    def test_find_insecure_urls(self):
        html = (
            '<a href="http://a.com">A</a><a href="https://b.com">B</a>'
            '<img src="http://c.com/x.png"><iframe src="https://d.com"></iframe>'
        )
        found = find_insecure_urls(html)
        assert [link.href for link in found] == ["http://a.com", "http://c.com/x.png"]
        assert found[1].text == "(embedded resource)"

    def test_has_noindex(self):
        assert has_noindex('<meta name="robots" content="noindex, follow">')
        assert has_noindex('<meta name="GoogleBot" content="NOINDEX">')
        assert not has_noindex('<meta name="robots" content="index">')
        assert not has_noindex("<p>noindex</p>")

    @pytest.mark.parametrize("href", [
        "/products/12345",
        "/collections/99",
        "https://shop.com/products/test-shirt",
        "http://localhost:3000/x",
        "http://127.0.0.1/x",
        "https://staging.shop.com/x",
        "https://shop.test/x",
    ])
    def test_suspicious_patterns(self, href):
        assert is_suspicious(href)

    @pytest.mark.parametrize("href", [
        "/products/blue-shirt",
        "https://shop.com/collections/summer",
        "https://testing.com/page",
    ])
    def test_normal_links(self, href):
        assert not is_suspicious(href)

    def test_resource_url(self):
        assert resource_url("s.com", ResourceType.COLLECTION, "x") == "https://s.com/collections/x"
        assert resource_url(None, ResourceType.PAGE, "x") is None


class TestBrokenLinks:

    @pytest.mark.asyncio
    async def test_pattern_detection(self):
        result = await BrokenLinksCheck().run(content_with_issues())
        assert len(result.issues) == 1
        issue = result.issues[0]
        assert issue.resource.id == "p2"
        assert issue.details["reason"] == "suspicious-pattern"
        assert issue.details["link_url"] == "http://localhost:3000/products/red"

    @pytest.mark.asyncio
    async def test_collection_links_checked(self):
        content = StoreContent(collections=[Collection(
            id="c1", title="Old", handle="old", seo_title="Old",
            description_html='<a href="/collections/old-summer">x</a>',
        )])
        result = await BrokenLinksCheck().run(content)
        assert result.issues[0].resource.type == ResourceType.COLLECTION
        assert "Collection" in result.issues[0].message

    @pytest.mark.asyncio
    async def test_probe_reports_http_errors(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append((request.method, str(request.url)))
            if request.url.path == "/gone":
                return httpx.Response(404)
            if request.url.path == "/no-head":
                if request.method == "HEAD":
                    return httpx.Response(405)
                return httpx.Response(200)
            return httpx.Response(200)

        html = (
            '<a href="/gone">a</a><a href="/gone">again</a>'
            '<a href="https://ok.com/fine">b</a><a href="/no-head">c</a>'
            '<a href="mailto:x@y.z">mail</a>'
        )
        content = StoreContent(shop_domain="demo.myshop.com", products=[make_product("p1", description_html=html)])

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            check = BrokenLinksCheck(probe_links=True, client=client)
            result = await check.run(content)

        assert result.success
        assert [i.details["reason"] for i in result.issues] == ["http-404", "http-404"]
        # Один и тот же URL проверяется один раз
        assert requests.count(("HEAD", "https://demo.myshop.com/gone")) == 1
        assert ("GET", "https://demo.myshop.com/no-head") in requests
        assert not any("mailto" in url for _, url in requests)

    @pytest.mark.asyncio
    async def test_probe_unreachable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        content = StoreContent(products=[make_product("p1", description_html='<a href="https://down.com/">x</a>')])
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            result = await BrokenLinksCheck(probe_links=True, client=client).run(content)

        assert result.issues[0].details["reason"] == "unreachable"


    @pytest.mark.asyncio
    async def test_malformed_url_does_not_fail_check(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200)

        html = '<a href="http://localhost/old">a</a><a href="https://[::1">b</a><a href="https://ok.com/">c</a>'
        content = StoreContent(products=[make_product("p1", description_html=html)])
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            result = await BrokenLinksCheck(probe_links=True, client=client).run(content)

        assert result.success
        assert [i.details["reason"] for i in result.issues] == ["suspicious-pattern", "invalid-url"]
        assert result.issues[1].details["link_url"] == "https://[::1"


class TestMixedContent:

    @pytest.mark.asyncio
    async def test_links_and_embedded_resources(self):
        result = await MixedContentCheck().run(content_with_issues())
        assert len(result.issues) == 2
        assert {i.details["link_text"] for i in result.issues} == {"preview", "(embedded resource)"}
        assert all(i.severity == Severity.MEDIUM for i in result.issues)

    @pytest.mark.asyncio
    async def test_insecure_product_image(self):
        product = make_product("p1", images=[Image(id="i1", url="http://cdn.x/a.jpg", alt_text="a")])
        result = await MixedContentCheck().run(StoreContent(products=[product]))
        assert result.issues[0].details["image_id"] == "i1"


class TestIndexing:

    @pytest.mark.asyncio
    async def test_resources_without_seo_or_content(self):
        content = StoreContent(
            products=[make_product("p1", seo_title=None, seo_description=None, description_html="")],
            collections=[Collection(id="c1", title="Empty", handle="empty")],
            pages=[Page(id="pg", title="Blank", handle="blank")],
        )
        result = await IndexingDirectivesCheck().run(content)
        assert len(result.issues) == 3
        assert all(i.severity == Severity.LOW for i in result.issues)
        assert result.issues[0].details["has_description"] is False

    @pytest.mark.asyncio
    async def test_noindex_meta(self):
        html = '<meta name="robots" content="noindex"><p>Hidden</p>'
        content = StoreContent(
            products=[make_product("p1", description_html=html)],
            pages=[Page(id="pg", title="Secret", handle="secret", body_summary="s", body=html)],
        )
        result = await IndexingDirectivesCheck().run(content)
        assert [i.details["directive"] for i in result.issues] == ["noindex", "noindex"]


# ═══════════════════════════════════════════════════════
# ISOLATION
# ═══════════════════════════════════════════════════════

class ExplodingCheck(BaseCheck):
    name = "exploding"
    issue_type = IssueType.BROKEN_LINK
    severity = Severity.HIGH

    async def _check(self, content):
        raise RuntimeError("parser crashed")


class SlowCheck(BaseCheck):
    name = "slow"
    issue_type = IssueType.MIXED_CONTENT
    severity = Severity.MEDIUM

    async def _check(self, content):
        await asyncio.sleep(10)
        return []


class TestCheckIsolation:

    @pytest.mark.asyncio
    async def test_exception_becomes_failed_result(self):
        result = await ExplodingCheck().run(StoreContent())
        assert not result.success
        assert result.issues == []
        assert "parser crashed" in result.error
        assert "exploding" in result.error

    @pytest.mark.asyncio
    async def test_timeout_becomes_failed_result(self):
        result = await SlowCheck(timeout_seconds=0.01).run(StoreContent())
        assert not result.success
        assert "TimeoutError" in result.error
