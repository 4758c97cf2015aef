"""
Разбор HTML описаний (BeautifulSoup).
"""

from dataclasses import dataclass
from typing import List, Optional

from bs4 import BeautifulSoup

EMBEDDED_RESOURCE_TEXT = "(embedded resource)"


@dataclass
class Link:
    href: str
    text: str


def _soup(html: Optional[str]) -> Optional[BeautifulSoup]:
    if not html or not html.strip():
        return None
    return BeautifulSoup(html, "html.parser")


def extract_links(html: Optional[str]) -> List[Link]:
    """Все <a href> с текстом ссылки (без вложенных тегов)."""
    soup = _soup(html)
    if soup is None:
        return []
    return [
        Link(href=a["href"].strip(), text=a.get_text(strip=True))
        for a in soup.find_all("a", href=True)
    ]


def find_insecure_urls(html: Optional[str]) -> List[Link]:
    """http:// в <a href> и в src любых тегов (картинки, скрипты, iframe)."""
    soup = _soup(html)
    if soup is None:
        return []

    found = []
    for a in soup.find_all("a", href=True):
        href = a["href"].strip()
        if href.lower().startswith("http://"):
            found.append(Link(href=href, text=a.get_text(strip=True)))

    for tag in soup.find_all(src=True):
        src = tag["src"].strip()
        if src.lower().startswith("http://"):
            found.append(Link(href=src, text=EMBEDDED_RESOURCE_TEXT))

    return found


def has_noindex(html: Optional[str]) -> bool:
    """<meta name="robots" content="...noindex..."> внутри HTML."""
    soup = _soup(html)
    if soup is None:
        return False
    for meta in soup.find_all("meta", attrs={"name": True}):
        if meta["name"].lower() in ("robots", "googlebot"):
            if "noindex" in (meta.get("content") or "").lower():
                return True
    return False


def is_blank(value: Optional[str]) -> bool:
    return value is None or value.strip() == ""
