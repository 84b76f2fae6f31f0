from __future__ import annotations

from collections.abc import Sequence
import re

BLANK_LINE_RE = re.compile(r"\n\s*\n")
CJK_RE = re.compile(r"[一-鿿㐀-䶿豈-﫿]")
LATIN_RE = re.compile(r"[A-Za-z]")


def split_paragraphs(content: str | Sequence[str] | None) -> list[str]:
    if content is None:
        return []
    if isinstance(content, str):
        candidates = BLANK_LINE_RE.split(content)
    else:
        candidates = list(content)
    paragraphs: list[str] = []
    for candidate in candidates:
        if not isinstance(candidate, str):
            continue
        trimmed = candidate.strip()
        if trimmed:
            paragraphs.append(trimmed)
    return paragraphs


def join_paragraphs(paragraphs: Sequence[str]) -> str:
    return "\n\n".join(paragraphs)


def count_words(text: str) -> int:
    """Whitespace tokens for Latin text, one word per character for CJK text."""
    if not text or not text.strip():
        return 0
    cjk_chars = len(CJK_RE.findall(text))
    if cjk_chars and cjk_chars >= len(LATIN_RE.findall(text)):
        return cjk_chars
    return len(text.split())
