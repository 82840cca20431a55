"""
Prompts - Templates for curriculum generation requests
"""

from typing import List, Optional
from langchain_core.prompts import PromptTemplate
from models.schemas import Unit

PROMPT_STYLES = ("casual", "formal")

FORMAT_INSTRUCTIONS = """Format your response as follows:

UNIT: [Unit 1 Title]
TITLE: [Title for point 1]
CONTENT: [Explanation for point 1, keep it under 50 words]
TITLE: [Title for point 2]
CONTENT: [Explanation for point 2, keep it under 50 words]
TITLE: [Title for point 3]
CONTENT: [Explanation for point 3, keep it under 50 words]
---
UNIT: [Unit 2 Title]
... (repeat the structure for all {unit_count} units, separating units with a line containing only ---)"""

STYLE_INSTRUCTIONS = {
    "casual": "Write in a friendly, engaging tone that is easy to read on a phone screen.",
    "formal": (
        "Write in a formal, academic tone. Every explanation must be a complete sentence "
        "that starts with a capital letter and ends with a period."
    ),
}

CURRICULUM_TEMPLATE = PromptTemplate.from_template(
    """Create a structured microlearning curriculum for the topic: {topic}.
Provide exactly {unit_count} main units, each covering a unique aspect of the topic.
For each unit, provide exactly {cards_per_unit} key points or concepts.
{format_instructions}

Ensure each unit has a clear, distinct focus within the overall topic.
{style_instructions}
Do not use any markdown formatting. Use plain text only.
It is crucial that you provide exactly {unit_count} units, no more and no less."""
)

MORE_UNITS_TEMPLATE = PromptTemplate.from_template(
    """Continue a microlearning curriculum for the topic: {topic}.
The learner has already studied {existing_count} units:
{existing_titles}

Dive deeper: provide exactly {unit_count} new units that go beyond the existing ones.
Do not repeat or overlap with the units listed above.
For each unit, provide exactly {cards_per_unit} key points or concepts.
{format_instructions}

{style_instructions}
Do not use any markdown formatting. Use plain text only.
It is crucial that you provide exactly {unit_count} units, no more and no less."""
)


def _style_instructions(style: str) -> str:
    if style not in STYLE_INSTRUCTIONS:
        raise ValueError(f"Unknown prompt style '{style}', expected one of {PROMPT_STYLES}")
    return STYLE_INSTRUCTIONS[style]


def build_curriculum_prompt(topic: str, unit_count: int, style: str = "casual", cards_per_unit: int = 3) -> str:
    """Prompt for a brand new curriculum."""
    return CURRICULUM_TEMPLATE.format(
        topic=topic,
        unit_count=unit_count,
        cards_per_unit=cards_per_unit,
        format_instructions=FORMAT_INSTRUCTIONS.format(unit_count=unit_count),
        style_instructions=_style_instructions(style),
    )


def build_more_units_prompt(
    topic: str,
    unit_count: int,
    existing_units: Optional[List[Unit]] = None,
    style: str = "casual",
    cards_per_unit: int = 3,
) -> str:
    """Prompt for follow-up units that must not overlap the existing ones."""
    existing_units = existing_units or []
    existing_titles = "\n".join(f"- {unit.title}" for unit in existing_units) or "- (none)"
    return MORE_UNITS_TEMPLATE.format(
        topic=topic,
        unit_count=unit_count,
        existing_count=len(existing_units),
        existing_titles=existing_titles,
        cards_per_unit=cards_per_unit,
        format_instructions=FORMAT_INSTRUCTIONS.format(unit_count=unit_count),
        style_instructions=_style_instructions(style),
    )
