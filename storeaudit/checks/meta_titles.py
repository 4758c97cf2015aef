"""
Meta title: отсутствующие (CRITICAL) и повторяющиеся (HIGH).

Страницы не имеют отдельного SEO title, для них используется заголовок
страницы.
"""

from collections import defaultdict
from typing import Dict, List

from .base_check import BaseCheck, page_label
from .html import is_blank
from storeaudit.core.models import Issue, StoreContent
from storeaudit.core.types import IssueType, ResourceType, Severity


class MissingMetaTitlesCheck(BaseCheck):
    name = "missing_meta_titles"
    issue_type = IssueType.MISSING_META_TITLE
    severity = Severity.CRITICAL

    async def _check(self, content: StoreContent) -> List[Issue]:
        issues = []

        for product in content.products:
            if is_blank(product.seo_title):
                issues.append(self.make_issue(
                    content, ResourceType.PRODUCT, product.id, product.title, product.handle,
                    message=f'Product "{product.title}" is missing a meta title',
                    suggestion=(
                        "Add a unique, descriptive meta title (50-60 characters) that includes "
                        "your target keywords. This appears in search results and browser tabs."
                    ),
                ))

        for collection in content.collections:
            if is_blank(collection.seo_title):
                issues.append(self.make_issue(
                    content, ResourceType.COLLECTION, collection.id, collection.title, collection.handle,
                    message=f'Collection "{collection.title}" is missing a meta title',
                    suggestion=(
                        "Add a descriptive meta title that includes relevant keywords and "
                        "describes the collection content."
                    ),
                ))

        for page in content.pages:
            if is_blank(page.title):
                issues.append(self.make_issue(
                    content, ResourceType.PAGE, page.id, page_label(page.title), page.handle,
                    message='Page "Untitled" is missing a meta title',
                    suggestion=(
                        "Add a clear, descriptive title for this page that tells visitors and "
                        "search engines what the page is about."
                    ),
                ))

        return issues


class DuplicateMetaTitlesCheck(BaseCheck):
    """Одинаковые meta title у товаров и коллекций (без учёта регистра и пробелов по краям)."""

    name = "duplicate_meta_titles"
    issue_type = IssueType.DUPLICATE_META_TITLE
    severity = Severity.HIGH

    async def _check(self, content: StoreContent) -> List[Issue]:
        # нормализованный title -> [(тип, id, название, handle)]
        groups: Dict[str, list] = defaultdict(list)

        for product in content.products:
            if not is_blank(product.seo_title):
                groups[product.seo_title.strip().lower()].append(
                    (ResourceType.PRODUCT, product.id, product.title, product.handle)
                )

        for collection in content.collections:
            if not is_blank(collection.seo_title):
                groups[collection.seo_title.strip().lower()].append(
                    (ResourceType.COLLECTION, collection.id, collection.title, collection.handle)
                )

        issues = []
        for meta_title, resources in groups.items():
            if len(resources) < 2:
                continue

            others = len(resources) - 1
            for resource_type, resource_id, title, handle in resources:
                kind = "Product" if resource_type == ResourceType.PRODUCT else "Collection"
                issues.append(self.make_issue(
                    content, resource_type, resource_id, title, handle,
                    message=f'{kind} "{title}" has a duplicate meta title: "{meta_title}"',
                    suggestion=(
                        f"This meta title is shared with {others} other "
                        f"{'resource' if others == 1 else 'resources'}. Create a unique meta "
                        f"title that distinguishes this {kind.lower()}."
                    ),
                    duplicate_with=[r[2] for r in resources if r[1] != resource_id],
                    duplicate_count=len(resources),
                ))

        return issues
