"""
Exceptions - Error taxonomy for curriculum generation
"""


class CurriculumError(Exception):
    """Base class for curriculum generation errors."""


class ShapeMismatchError(CurriculumError):
    """The parsed response does not have the requested number of units."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Generated {actual} units instead of {expected}")


class TransportError(CurriculumError):
    """The model client call itself failed (network or provider error)."""


class BlockedContentError(CurriculumError):
    """The topic matched the moderation denylist."""

    def __init__(self, topic: str, keyword: str):
        self.topic = topic
        self.keyword = keyword
        super().__init__(f"Topic '{topic}' is not allowed")


class PersistenceError(CurriculumError):
    """Reading or writing the local curriculum cache failed."""
