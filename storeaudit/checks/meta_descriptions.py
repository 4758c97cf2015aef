"""
Отсутствующие meta description (HIGH).
"""

from typing import List

from .base_check import BaseCheck, page_label
from .html import is_blank
from storeaudit.core.models import Issue, StoreContent
from storeaudit.core.types import IssueType, ResourceType, Severity


class MissingMetaDescriptionsCheck(BaseCheck):
    name = "missing_meta_descriptions"
    issue_type = IssueType.MISSING_META_DESCRIPTION
    severity = Severity.HIGH

    async def _check(self, content: StoreContent) -> List[Issue]:
        issues = []

        for product in content.products:
            if is_blank(product.seo_description):
                issues.append(self.make_issue(
                    content, ResourceType.PRODUCT, product.id, product.title, product.handle,
                    message=f'Product "{product.title}" is missing a meta description',
                    suggestion=(
                        "Add a compelling meta description (150-160 characters) that includes "
                        "keywords and encourages clicks. This appears in search results below the title."
                    ),
                ))

        for collection in content.collections:
            if is_blank(collection.seo_description):
                issues.append(self.make_issue(
                    content, ResourceType.COLLECTION, collection.id, collection.title, collection.handle,
                    message=f'Collection "{collection.title}" is missing a meta description',
                    suggestion=(
                        "Add a description that summarizes the collection content and includes "
                        "relevant keywords to improve search result appearance."
                    ),
                ))

        # У страниц описанием служит body_summary
        for page in content.pages:
            if is_blank(page.body_summary):
                label = page_label(page.title)
                issues.append(self.make_issue(
                    content, ResourceType.PAGE, page.id, label, page.handle,
                    message=f'Page "{page.title or "Untitled"}" is missing a meta description',
                    suggestion=(
                        "Add a brief summary of the page content that entices users to click "
                        "when they see it in search results."
                    ),
                ))

        return issues
