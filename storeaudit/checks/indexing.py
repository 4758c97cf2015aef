"""
Ресурсы, которые могут не индексироваться (LOW).

Admin API не отдаёт meta robots напрямую, поэтому проверяем косвенно:
- товар/коллекция без SEO-данных и без описания
- страница без содержимого
- явный <meta name="robots" content="noindex"> внутри HTML описания
"""

from typing import List

from .base_check import BaseCheck, page_label
from .html import has_noindex, is_blank
from storeaudit.core.models import Issue, StoreContent
from storeaudit.core.types import IssueType, ResourceType, Severity

_NOINDEX_SUGGESTION = (
    "The description contains a robots noindex directive. Remove it unless this "
    "resource is intentionally hidden from search engines."
)


class IndexingDirectivesCheck(BaseCheck):
    name = "indexing_directives"
    issue_type = IssueType.INDEXING_DIRECTIVE
    severity = Severity.LOW

    async def _check(self, content: StoreContent) -> List[Issue]:
        issues = []

        for product in content.products:
            no_seo = is_blank(product.seo_title) and is_blank(product.seo_description)
            if no_seo and is_blank(product.description_html):
                issues.append(self.make_issue(
                    content, ResourceType.PRODUCT, product.id, product.title, product.handle,
                    message=f'Product "{product.title}" has no SEO data or content',
                    suggestion=(
                        "This product is missing both SEO information and description content, "
                        "which may prevent proper indexing. Add meta title, description, and "
                        "product content to improve search visibility."
                    ),
                    has_meta_title=not is_blank(product.seo_title),
                    has_meta_description=not is_blank(product.seo_description),
                    has_description=False,
                ))
            elif has_noindex(product.description_html):
                issues.append(self.make_issue(
                    content, ResourceType.PRODUCT, product.id, product.title, product.handle,
                    message=f'Product "{product.title}" contains a noindex directive',
                    suggestion=_NOINDEX_SUGGESTION,
                    directive="noindex",
                ))

        for collection in content.collections:
            no_seo = is_blank(collection.seo_title) and is_blank(collection.seo_description)
            if no_seo and is_blank(collection.description_html):
                issues.append(self.make_issue(
                    content, ResourceType.COLLECTION, collection.id, collection.title, collection.handle,
                    message=f'Collection "{collection.title}" has no SEO data or content',
                    suggestion=(
                        "Add SEO information and a description to ensure this collection can be "
                        "properly indexed by search engines."
                    ),
                    has_meta_title=not is_blank(collection.seo_title),
                    has_meta_description=not is_blank(collection.seo_description),
                    has_description=False,
                ))
            elif has_noindex(collection.description_html):
                issues.append(self.make_issue(
                    content, ResourceType.COLLECTION, collection.id, collection.title, collection.handle,
                    message=f'Collection "{collection.title}" contains a noindex directive',
                    suggestion=_NOINDEX_SUGGESTION,
                    directive="noindex",
                ))

        for page in content.pages:
            if is_blank(page.body) and is_blank(page.body_summary):
                issues.append(self.make_issue(
                    content, ResourceType.PAGE, page.id, page_label(page.title), page.handle,
                    message=f'Page "{page.title or "Untitled"}" has no content',
                    suggestion=(
                        "Pages without content provide no value to visitors or search engines. "
                        "Add meaningful content or consider removing this page."
                    ),
                    has_body=not is_blank(page.body),
                    has_body_summary=not is_blank(page.body_summary),
                ))
            elif has_noindex(page.body):
                issues.append(self.make_issue(
                    content, ResourceType.PAGE, page.id, page_label(page.title), page.handle,
                    message=f'Page "{page.title or "Untitled"}" contains a noindex directive',
                    suggestion=_NOINDEX_SUGGESTION,
                    directive="noindex",
                ))

        return issues
