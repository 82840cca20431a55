"""
LLM Service - Handles OpenAI language model interactions
"""

import logging
from typing import AsyncIterator
import httpx
from openai import AsyncOpenAI, OpenAIError
import config
from core.exceptions import TransportError

SYSTEM_PROMPT = "You are an expert instructional designer who writes concise microlearning flash cards."

# Connection drops while reading a stream surface from httpx, not the SDK
TRANSPORT_ERRORS = (OpenAIError, httpx.HTTPError, OSError)


class LLMService:
    """Service for OpenAI LLM interactions."""

    def __init__(self, client: AsyncOpenAI = None, model: str = None):
        self.client = client or AsyncOpenAI(api_key=config.OPENAI_API_KEY)
        self.model = model or config.LLM_MODEL_NAME

    def _messages(self, prompt: str) -> list:
        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ]

    async def generate_response(self, prompt: str, temperature: float = None) -> str:
        """Get one complete response for a prompt."""
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=self._messages(prompt),
                temperature=config.LLM_TEMPERATURE if temperature is None else temperature,
            )
        except TRANSPORT_ERRORS as e:
            logging.error(f"Error getting LLM response: {e}")
            raise TransportError(str(e)) from e
        return response.choices[0].message.content or ""

    async def stream_response(self, prompt: str, temperature: float = None) -> AsyncIterator[str]:
        """Yield text fragments of a streamed response in arrival order."""
        try:
            stream = await self.client.chat.completions.create(
                model=self.model,
                messages=self._messages(prompt),
                temperature=config.LLM_TEMPERATURE if temperature is None else temperature,
                stream=True,
            )
            async for chunk in stream:
                if not chunk.choices:
                    continue
                text = chunk.choices[0].delta.content
                if text:
                    yield text
        except TRANSPORT_ERRORS as e:
            logging.error(f"Error streaming LLM response: {e}")
            raise TransportError(str(e)) from e
