"""
Data Models - Pydantic schemas for units, cards and generation outcomes
"""

import uuid
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional


def _new_id() -> str:
    return uuid.uuid4().hex


class Category(str, Enum):
    """Topical label for a card. Declaration order is the tie-break order."""
    TECHNOLOGY = "technology"
    SCIENCE = "science"
    HISTORY = "history"
    LITERATURE = "literature"
    ART = "art"
    MUSIC = "music"
    MATHEMATICS = "mathematics"
    BUSINESS = "business"
    NATURE = "nature"
    SPORTS = "sports"
    OTHER = "other"


class Card(BaseModel):
    """A single title + explanation learning fact."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id, description="Opaque unique identifier")
    title: str = Field(min_length=1, description="Short heading of the card")
    content: str = Field(min_length=1, description="Explanation shown on the card")
    category: Category = Field(Category.OTHER, description="Category derived from the content")


class Unit(BaseModel):
    """A themed group of learning cards."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id, description="Opaque unique identifier")
    title: str = Field(min_length=1, description="The unit heading")
    cards: List[Card] = Field(description="Ordered cards of the unit")


class GenerationStatus(str, Enum):
    ACCEPTED = "accepted"
    FAILED = "failed"
    BLOCKED = "blocked"
    CANCELLED = "cancelled"


class GenerationOutcome(BaseModel):
    """Terminal result of one generation call."""
    status: GenerationStatus
    topic: str
    units: List[Unit] = Field(default_factory=list)
    error: Optional[str] = None
    attempts: int = 0
    from_cache: bool = False


class SessionSnapshot(BaseModel):
    """Read-only view of the orchestrator session for presentation layers."""
    topic: str
    units: List[Unit]
    state: str
    retry_count: int
    progress: float
    loading: bool = False
    error: Optional[str] = None


# API request bodies
class TopicRequest(BaseModel):
    topic: str
    use_cache: bool = True
