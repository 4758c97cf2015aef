"""
Простые провайдеры контента: из JSON-файла и из готового объекта.

Настоящий клиент Admin API живёт вне библиотеки; формат файла совпадает
с его ответом (см. StoreContent.from_dict).
"""

import json
import logging
from pathlib import Path
from typing import Dict, Union

from .errors import ContentFetchError
from .models import StoreContent

logger = logging.getLogger(__name__)


class JsonFileContentProvider:
    """
    Один файл на все аккаунты либо каталог с файлами {account_id}.json.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def _file_for(self, account_id: str) -> Path:
        if self.path.is_dir():
            return self.path / f"{account_id}.json"
        return self.path

    async def fetch_content(self, account_id: str) -> StoreContent:
        path = self._file_for(account_id)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise ContentFetchError(f"Cannot read content for {account_id} from {path}: {e}") from e

        content = StoreContent.from_dict(data)
        logger.info(f"Loaded {content.total_resources} resources for account {account_id} from {path}")
        return content


class StaticContentProvider:
    """Отдаёт заранее заданный контент (по аккаунту)."""

    def __init__(self, content: Union[StoreContent, Dict[str, StoreContent]]):
        self.content = content

    async def fetch_content(self, account_id: str) -> StoreContent:
        if isinstance(self.content, StoreContent):
            return self.content
        try:
            return self.content[account_id]
        except KeyError:
            raise ContentFetchError(f"No content for account {account_id}") from None
