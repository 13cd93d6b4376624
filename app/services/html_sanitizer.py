"""
Sales-notes sanitizing. Notes are stored as plain text.
"""

import re

from bs4 import BeautifulSoup

# Elements whose content must never reach the notes
DROPPED_TAGS = ["script", "style", "iframe", "object", "embed", "noscript"]


def sanitize_sales_notes(raw: str) -> str:
    """Strip markup from free-text notes and collapse whitespace."""
    if not raw:
        return ""
    if "<" not in raw and "&" not in raw:
        return re.sub(r"\s+", " ", raw).strip()

    soup = BeautifulSoup(raw, "html.parser")
    for tag in soup(DROPPED_TAGS):
        tag.decompose()
    text = soup.get_text(" ")
    return re.sub(r"\s+", " ", text).strip()
