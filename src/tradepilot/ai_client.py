"""Language model client.

A thin wrapper over the OpenAI chat completions API. One instance is built
at start-up and passed to every component that talks to the model.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, Optional

import openai
from openai import AsyncOpenAI

from .errors import AIClientError, AIResponseError
from .logging_config import get_logger

logger = get_logger("ai_client")

DEFAULT_MODEL = "gpt-4-turbo-preview"
DEFAULT_TIMEOUT_SECONDS = 60.0

_CODE_FENCE = re.compile(r"```(?:json)?\s*\n?|\n?```")


def parse_json_reply(content: Optional[str]) -> Dict[str, Any]:
    """Parse a model reply as a JSON object, tolerating markdown code fences."""
    if not content or not content.strip():
        raise AIResponseError("No response from AI")
    cleaned = _CODE_FENCE.sub("", content).strip()
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise AIResponseError(f"AI reply is not valid JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise AIResponseError("AI reply is not a JSON object")
    return parsed


class AIClient:
    """Chat completion calls with uniform error reporting.

    Every failure (missing key, API error, timeout, empty reply) is raised as
    :class:`AIClientError` so callers have a single exception to fall back on.
    """

    def __init__(
        self,
        client: Optional[Any] = None,
        *,
        model: str = DEFAULT_MODEL,
    ) -> None:
        self.client = client
        self.model = model
        self.calls = 0

    @classmethod
    def from_api_key(
        cls,
        api_key: Optional[str],
        *,
        model: str = DEFAULT_MODEL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> "AIClient":
        if not api_key:
            logger.warning("OpenAI API key not configured; AI features will use fallbacks")
            return cls(None, model=model)
        return cls(AsyncOpenAI(api_key=api_key, timeout=timeout, max_retries=0), model=model)

    @property
    def configured(self) -> bool:
        return self.client is not None

    async def complete(
        self,
        *,
        system: str,
        prompt: str,
        temperature: float,
        max_tokens: int,
        json_mode: bool = False,
        step: str = "unknown",
    ) -> str:
        """Run one chat completion and return the reply text."""
        if self.client is None:
            raise AIClientError("AI client not configured")

        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        self.calls += 1
        logger.debug(f"AI call step={step} model={self.model} json_mode={json_mode}")
        try:
            completion = await self.client.chat.completions.create(**kwargs)
        except openai.OpenAIError as exc:
            logger.warning(f"AI call failed step={step} error_type={type(exc).__name__}: {str(exc)[:200]}")
            raise AIClientError(str(exc)) from exc

        try:
            content = completion.choices[0].message.content
        except (AttributeError, IndexError) as exc:
            raise AIResponseError("Malformed completion response") from exc
        if not content:
            raise AIResponseError("No response from AI")
        return content.strip()

    async def complete_json(
        self,
        *,
        system: str,
        prompt: str,
        temperature: float,
        max_tokens: int,
        step: str = "unknown",
    ) -> Dict[str, Any]:
        """Run one chat completion in JSON mode and parse the reply."""
        content = await self.complete(
            system=system,
            prompt=prompt,
            temperature=temperature,
            max_tokens=max_tokens,
            json_mode=True,
            step=step,
        )
        return parse_json_reply(content)
