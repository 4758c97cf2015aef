"""
HTTP (не HTTPS) ссылки и ресурсы в описаниях и картинках (MEDIUM).
"""

from typing import List

from .base_check import BaseCheck
from .html import find_insecure_urls
from storeaudit.core.models import Issue, StoreContent
from storeaudit.core.types import IssueType, ResourceType, Severity


class MixedContentCheck(BaseCheck):
    name = "mixed_content"
    issue_type = IssueType.MIXED_CONTENT
    severity = Severity.MEDIUM

    async def _check(self, content: StoreContent) -> List[Issue]:
        issues = []

        for product in content.products:
            for link in find_insecure_urls(product.description_html):
                issues.append(self.make_issue(
                    content, ResourceType.PRODUCT, product.id, product.title, product.handle,
                    message=f'Product "{product.title}" contains non-HTTPS link in description',
                    suggestion=(
                        "Update the link to use HTTPS instead of HTTP. Modern browsers may block "
                        'insecure content and show security warnings. Replace "http://" with "https://".'
                    ),
                    link_url=link.href,
                    link_text=link.text,
                ))

            for image in product.images:
                if image.url.lower().startswith("http://"):
                    issues.append(self.make_issue(
                        content, ResourceType.PRODUCT, product.id, product.title, product.handle,
                        message=f'Product "{product.title}" has an image with non-HTTPS URL',
                        suggestion=(
                            "Replace or re-upload the image using a secure HTTPS URL. Insecure "
                            "images may be blocked by browsers."
                        ),
                        image_id=image.id,
                        image_url=image.url,
                    ))

        for collection in content.collections:
            for link in find_insecure_urls(collection.description_html):
                issues.append(self.make_issue(
                    content, ResourceType.COLLECTION, collection.id, collection.title, collection.handle,
                    message=f'Collection "{collection.title}" contains non-HTTPS link in description',
                    suggestion=(
                        "Update the link to HTTPS to avoid security warnings and ensure all "
                        "resources load properly."
                    ),
                    link_url=link.href,
                    link_text=link.text,
                ))

        return issues
