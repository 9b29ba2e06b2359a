"""
Async Claude client for style extraction.

Wraps ``AsyncAnthropic.messages.create`` for the one call shape the
extractor needs: a prompt that must come back as a JSON object. Calls are
retried with exponential backoff via ``@with_retry``; a reply that is not
valid JSON counts as a failed attempt.

When every attempt fails the last error propagates inside
``RetryExhaustedError``. The extractor decides whether that means the
service is unavailable or the content could not be analyzed.
"""

import json
import logging
import os
import re
from typing import Any, Dict, Optional

from anthropic import AsyncAnthropic

from digitalme.utils import with_retry

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-5"

JSON_INSTRUCTION = "IMPORTANT: Return ONLY valid JSON, no markdown, no explanation."

_FENCE_RE = re.compile(r"^```[\w-]*[ \t]*\n?(.*?)\n?```$", re.DOTALL)


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence (```json ... ```), if any."""
    cleaned = text.strip()
    match = _FENCE_RE.match(cleaned)
    return match.group(1).strip() if match else cleaned


class ClaudeClient:
    """JSON-returning Claude client with token accounting.

    Args:
        api_key: Anthropic API key; ``ANTHROPIC_API_KEY`` when omitted.
        model: Model identifier.

    Raises:
        KeyError: If no key is given and ``ANTHROPIC_API_KEY`` is unset.
    """

    def __init__(self, api_key: Optional[str] = None, model: str = DEFAULT_MODEL) -> None:
        self.client = AsyncAnthropic(api_key=api_key or os.environ["ANTHROPIC_API_KEY"])
        self.model = model
        self._usage: Dict[str, int] = {"input_tokens": 0, "output_tokens": 0}

    @with_retry(max_attempts=3, retryable_exceptions=(Exception,))
    async def generate_structured(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: int = 4096,
    ) -> Any:
        """
        Ask for a JSON reply and parse it.

        Runs at temperature 0.3 with an explicit JSON instruction appended
        to the prompt.

        Raises:
            RetryExhaustedError: When every attempt failed; ``last_error``
                is a ``json.JSONDecodeError`` if the model kept replying
                with something other than JSON.
        """
        request: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": 0.3,
            "messages": [{"role": "user", "content": f"{prompt}\n\n{JSON_INSTRUCTION}"}],
        }
        if system:
            request["system"] = system

        response = await self.client.messages.create(**request)
        self._usage["input_tokens"] += response.usage.input_tokens
        self._usage["output_tokens"] += response.usage.output_tokens
        logger.debug(
            "Claude %s: in=%d out=%d tokens",
            self.model,
            response.usage.input_tokens,
            response.usage.output_tokens,
        )
        return json.loads(strip_code_fences(response.content[0].text))

    @property
    def usage_stats(self) -> Dict[str, int]:
        """Cumulative token usage of this client."""
        return dict(self._usage)

    def reset_usage(self) -> None:
        self._usage = {"input_tokens": 0, "output_tokens": 0}


__all__ = [
    "ClaudeClient",
    "DEFAULT_MODEL",
    "strip_code_fences",
]
