from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from core.exceptions import TransportError  # noqa: E402


def unit_block(title: str, cards: int = 3) -> str:
    """Curriculum text for one unit in the model's line-tagged format."""
    lines = [f"UNIT: {title}"]
    for index in range(1, cards + 1):
        lines.append(f"TITLE: {title} point {index}")
        lines.append(f"CONTENT: Explanation {index} of {title}.")
    return "\n".join(lines)


def curriculum_text(unit_count: int, prefix: str = "Unit") -> str:
    return "\n---\n".join(unit_block(f"{prefix} {i}") for i in range(1, unit_count + 1)) + "\n---\n"


class StubLLMService:
    """Model client stub that replays canned responses in order.

    Each response is either a string (delivered whole or as one chunk per
    line when streamed), a list of chunks, or an exception to raise.
    """

    def __init__(self, responses):
        self.responses = list(responses)
        self.prompts = []

    def _next(self, prompt):
        self.prompts.append(prompt)
        response = self.responses[min(len(self.prompts), len(self.responses)) - 1]
        if isinstance(response, Exception):
            raise response
        return response

    @property
    def request_count(self) -> int:
        return len(self.prompts)

    async def generate_response(self, prompt, temperature=None):
        response = self._next(prompt)
        return response if isinstance(response, str) else "".join(response)

    async def stream_response(self, prompt, temperature=None):
        response = self._next(prompt)
        chunks = response.splitlines(keepends=True) if isinstance(response, str) else response
        for chunk in chunks:
            yield chunk


@pytest.fixture
def transport_error():
    return TransportError("provider unavailable")
