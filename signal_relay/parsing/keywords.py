"""Keyword matching shared by the classifier and the modification extractor."""

import re
from functools import lru_cache
from typing import Iterable, Optional

NUMBER = r"(\d+(?:\.\d+)?)"


@lru_cache(maxsize=2048)
def keyword_pattern(keyword: str) -> "re.Pattern":
    """Whole-word, case-insensitive match; inner whitespace is flexible."""
    body = r"\s+".join(re.escape(part) for part in keyword.strip().split())
    return re.compile(r"(?<!\w)" + body + r"(?!\w)", re.IGNORECASE)


def find_keyword(text: str, keywords: Iterable[str]) -> Optional[str]:
    for kw in keywords:
        if kw and keyword_pattern(kw).search(text):
            return kw
    return None


def keyword_alternation(keywords: Iterable[str]) -> str:
    """Regex alternation for a keyword list, longest first."""
    parts = sorted({k.strip() for k in keywords if k and k.strip()}, key=len, reverse=True)
    return "|".join(r"\s+".join(re.escape(p) for p in k.split()) for k in parts)
