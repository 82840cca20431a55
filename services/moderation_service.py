"""
Moderation Service - Keyword denylist check for topics
"""

import logging
from typing import Iterable, Optional
from core.exceptions import BlockedContentError
import config


class ModerationService:
    """Rejects topics that contain a denylisted keyword."""

    def __init__(self, blocked_keywords: Iterable[str] = None):
        keywords = config.BLOCKED_KEYWORDS if blocked_keywords is None else blocked_keywords
        self.blocked_keywords = [keyword.lower() for keyword in keywords if keyword]

    def find_blocked_keyword(self, topic: str) -> Optional[str]:
        lowered = topic.lower()
        for keyword in self.blocked_keywords:
            if keyword in lowered:
                return keyword
        return None

    def check(self, topic: str):
        """Raise BlockedContentError when the topic hits the denylist."""
        keyword = self.find_blocked_keyword(topic)
        if keyword:
            logging.warning(f"Topic blocked by moderation keyword '{keyword}'")
            raise BlockedContentError(topic, keyword)

    def is_blocked(self, topic: str) -> bool:
        return self.find_blocked_keyword(topic) is not None
