"""
Categorizer - Assigns a topical category to card content
"""

import re
from typing import List
from models.schemas import Category


def _words(text: str) -> List[str]:
    # Split on every whitespace character so empty input yields [""]
    return re.split(r"\s", text.lower())


def compare_score(text: str, other: str) -> float:
    """Word-overlap similarity between two strings, in [0, 1]."""
    words = _words(text)
    other_words = _words(other)
    common_words = set(words) & set(other_words)
    return len(common_words) / max(len(words), len(other_words), 1)


def match_category(content: str) -> Category:
    """Return the category for a piece of card content.

    An exact substring hit wins, checked in declaration order. Otherwise the
    category with the strictly highest word-overlap score is used, falling
    back to ``Category.OTHER``.
    """
    lowered = content.lower()

    for category in Category:
        if category.value in lowered:
            return category

    best_match = Category.OTHER
    highest_score = 0.0
    for category in Category:
        score = compare_score(content, category.value)
        if score > highest_score:
            highest_score = score
            best_match = category

    return best_match
