"""
Chunk Parser - Turns (possibly partial) curriculum text into units and cards
"""

import logging
from typing import Callable, Dict, List, Optional
import config
from core.categorizer import match_category
from models.schemas import Card, Category, Unit

UNIT_DELIMITER = "---"
UNIT_TAG = "UNIT:"
TITLE_TAG = "TITLE:"
CONTENT_TAG = "CONTENT:"

PLACEHOLDER_TITLE = "Additional Information"
PLACEHOLDER_CONTENT = "More content for this part of the topic is not available right now."

TERMINAL_PUNCTUATION = (".", "!", "?")


def normalize_content(content: str) -> str:
    """Start with an uppercase letter and end with terminal punctuation."""
    content = content.strip()
    if not content:
        return content
    content = content[0].upper() + content[1:]
    if not content.endswith(TERMINAL_PUNCTUATION):
        content += "."
    return content


def placeholder_card() -> Card:
    return Card(title=PLACEHOLDER_TITLE, content=PLACEHOLDER_CONTENT, category=Category.OTHER)


class _BlockState:
    """Accumulators for one unit block while its lines are scanned."""

    def __init__(self):
        self.unit_title = ""
        self.current_title = ""
        self.current_content = ""
        self.cards: List[Card] = []

    def has_complete_pair(self) -> bool:
        return bool(self.current_title) and bool(self.current_content)


class ChunkParser:
    """Parses the line-tagged curriculum format produced by the model.

    The parser keeps no state between calls: callers pass the full text
    accumulated so far every time, so a growing stream can be re-parsed
    after each chunk.

    In strict mode every unit is padded with placeholder cards, or truncated,
    to exactly ``cards_per_unit`` cards. In lenient mode any unit with at
    least one card is accepted as-is.
    """

    def __init__(self, strict: bool = None, cards_per_unit: int = None, formal: bool = False):
        self.strict = config.STRICT_PARSING if strict is None else strict
        self.cards_per_unit = cards_per_unit or config.CARDS_PER_UNIT
        self.formal = formal
        self._tag_handlers: Dict[str, Callable[[_BlockState, str], None]] = {
            UNIT_TAG: self._handle_unit,
            TITLE_TAG: self._handle_title,
            CONTENT_TAG: self._handle_content,
        }

    def parse(self, text: str) -> List[Unit]:
        """Parse all units that are complete enough to show."""
        units = []
        for block in text.split(UNIT_DELIMITER):
            if not block.strip():
                continue
            unit = self._parse_block(block)
            if unit is not None:
                units.append(unit)
        return units

    def _parse_block(self, block: str) -> Optional[Unit]:
        state = _BlockState()

        for raw_line in block.splitlines():
            line = raw_line.strip()
            if not line:
                continue
            handler, remainder = self._dispatch(line)
            if handler is not None:
                handler(state, remainder)
            else:
                # Wrapped explanation from the previous CONTENT: line
                state.current_content = f"{state.current_content} {line}".strip()

        if state.has_complete_pair():
            self._finalize_card(state)

        cards = self._apply_card_rule(state.cards)
        if not state.unit_title or not cards:
            return None
        return Unit(title=state.unit_title, cards=cards)

    def _dispatch(self, line: str):
        for tag, handler in self._tag_handlers.items():
            if line.startswith(tag):
                return handler, line[len(tag):].strip()
        return None, line

    def _handle_unit(self, state: _BlockState, value: str):
        state.unit_title = value

    def _handle_title(self, state: _BlockState, value: str):
        if state.has_complete_pair():
            self._finalize_card(state)
            state.current_content = ""
        state.current_title = value

    def _handle_content(self, state: _BlockState, value: str):
        state.current_content = value

    def _finalize_card(self, state: _BlockState):
        content = normalize_content(state.current_content) if self.formal else state.current_content
        state.cards.append(Card(
            title=state.current_title,
            content=content,
            category=match_category(content),
        ))

    def _apply_card_rule(self, cards: List[Card]) -> List[Card]:
        if not cards:
            return []
        if not self.strict:
            return cards
        if len(cards) < self.cards_per_unit:
            logging.debug(f"Padding unit with {self.cards_per_unit - len(cards)} placeholder cards")
            cards = cards + [placeholder_card() for _ in range(self.cards_per_unit - len(cards))]
        return cards[:self.cards_per_unit]


def parse_units(text: str, strict: bool = True, formal: bool = False) -> List[Unit]:
    """Parse curriculum text with a one-off parser."""
    return ChunkParser(strict=strict, formal=formal).parse(text)
