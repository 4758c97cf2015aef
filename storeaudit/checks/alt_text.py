"""
Картинки товаров без ALT (MEDIUM). Одна проблема на товар, сколько бы
картинок у него ни было без ALT.
"""

from typing import List

from .base_check import BaseCheck
from .html import is_blank
from storeaudit.core.models import Issue, StoreContent
from storeaudit.core.types import IssueType, ResourceType, Severity


class MissingAltTextCheck(BaseCheck):
    name = "missing_alt_text"
    issue_type = IssueType.MISSING_ALT_TEXT
    severity = Severity.MEDIUM

    async def _check(self, content: StoreContent) -> List[Issue]:
        issues = []

        for product in content.products:
            missing = [image for image in product.images if is_blank(image.alt_text)]
            if not missing:
                continue

            if len(missing) == 1:
                message = f'Product "{product.title}" has an image without ALT text'
            else:
                message = f'Product "{product.title}" has {len(missing)} images without ALT text'

            issues.append(self.make_issue(
                content, ResourceType.PRODUCT, product.id, product.title, product.handle,
                message=message,
                suggestion=(
                    "Add descriptive ALT text that explains what's in the image. Include product "
                    "name and key features. This helps visually impaired users and improves image SEO."
                ),
                image_count=len(missing),
                image_ids=[image.id for image in missing],
                image_urls=[image.url for image in missing],
            ))

        return issues
