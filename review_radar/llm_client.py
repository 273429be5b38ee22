"""
LLM Client — interface for talking to an OpenAI-compatible chat model.

Key concepts:
    - System prompt: Sets the model's role and the JSON shape we expect back.
    - User prompt: The actual data (changes per call).
    - Temperature: 0 = deterministic, 1 = creative. Low for analysis.
    - Structured output: JSON mode + pydantic validation, retried on bad replies.
"""

import json
import logging
from typing import AsyncIterator, TypeVar

import openai
from openai import AsyncOpenAI
from pydantic import BaseModel, ValidationError

from review_radar import config
from review_radar.errors import CallTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


class StructuredOutputError(Exception):
    """The model never produced JSON matching the schema within the retry budget."""


def schema_instructions(schema: type[BaseModel]) -> str:
    """Tell the model exactly which JSON shape to answer with."""
    return (
        "Respond ONLY with a JSON object matching this JSON schema. "
        "Use the exact property names shown.\n"
        f"{json.dumps(schema.model_json_schema(by_alias=True), indent=2)}"
    )


class LLMClient:
    """Thin async wrapper around the chat completions API."""

    def __init__(self, client: AsyncOpenAI | None = None,
                 model: str = config.LLM_MODEL,
                 timeout: float = config.LLM_TIMEOUT_SECONDS):
        self.model = model
        self.timeout = timeout
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        # Created lazily so importing the app never requires an API key
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=config.OPENAI_API_KEY,
                base_url=config.OPENAI_BASE_URL,
                timeout=self.timeout,
            )
        return self._client

    async def complete_json(self, system_prompt: str, user_prompt: str,
                            temperature: float = config.LLM_TEMPERATURE) -> str:
        """One JSON-mode completion. Returns the raw reply text."""
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=temperature,
                response_format={"type": "json_object"},
            )
        except openai.APITimeoutError as e:
            raise CallTimeoutError("LLM completion", self.timeout) from e
        return response.choices[0].message.content or ""

    async def generate(self, schema: type[T], system_prompt: str, user_prompt: str,
                       temperature: float = config.LLM_TEMPERATURE,
                       retries: int = config.STRUCTURED_RETRIES) -> T:
        """
        Ask for JSON matching `schema` and validate it.

        Invalid JSON or a schema mismatch is retried up to `retries` attempts in total;
        transport errors are not retried here and propagate as-is.
        """
        system = f"{system_prompt}\n\n{schema_instructions(schema)}"
        last_error: Exception | None = None

        for attempt in range(1, retries + 1):
            raw_text = await self.complete_json(system, user_prompt, temperature)
            try:
                return schema.model_validate_json(raw_text)
            except ValidationError as e:
                last_error = e
                logger.warning(
                    "%s reply failed validation (attempt %d/%d): %s",
                    schema.__name__, attempt, retries, e.errors()[:3],
                )

        raise StructuredOutputError(
            f"no valid {schema.__name__} after {retries} attempts: {last_error}"
        )

    async def stream_chat(self, messages: list[dict],
                          temperature: float = 0.7) -> AsyncIterator[str]:
        """Stream a chat completion, yielding text deltas as they arrive."""
        try:
            stream = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=temperature,
                stream=True,
            )
            async for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta.content
                if delta:
                    yield delta
        except openai.APITimeoutError as e:
            raise CallTimeoutError("LLM chat stream", self.timeout) from e
