"""
LLM Client — calls an OpenAI-compatible chat completions API and returns JSON.
"""

import asyncio
import json
import logging
import re
from typing import Optional

import httpx

from fixagent.config import Settings, settings as default_settings
from fixagent.errors import LLMError
from fixagent.usage import current_tracker

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = {429, 500, 502, 503, 504}


class LLMClient:
    """Structured (JSON) completions with usage accounting."""

    def __init__(
        self,
        config: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        backoff: float = 1.0,
    ):
        self.config = config or default_settings
        self.transport = transport
        self.backoff = backoff

    @property
    def enabled(self) -> bool:
        return bool(self.config.llm_api_key)

    async def complete_json(self, system: str, prompt: str, temperature: float = 0.0) -> dict:
        """
        Ask the model for a JSON object. Retries rate limits and server
        errors with exponential backoff; raises LLMError otherwise.
        """
        if not self.enabled:
            raise LLMError("No LLM API key configured")

        payload = {
            "model": self.config.llm_model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            "temperature": temperature,
            "response_format": {"type": "json_object"},
        }
        headers = {
            "Authorization": f"Bearer {self.config.llm_api_key}",
            "Content-Type": "application/json",
        }
        url = self.config.llm_base_url.rstrip("/") + "/chat/completions"

        attempt = 0
        while True:
            try:
                async with httpx.AsyncClient(timeout=self.config.llm_timeout, transport=self.transport) as client:
                    resp = await client.post(url, json=payload, headers=headers)
            except httpx.HTTPError as e:
                if attempt < self.config.llm_max_retries:
                    attempt += 1
                    await asyncio.sleep(self.backoff * 2 ** (attempt - 1))
                    continue
                raise LLMError(f"LLM request failed: {e}") from e

            if resp.status_code in RETRYABLE_STATUS and attempt < self.config.llm_max_retries:
                attempt += 1
                delay = self.backoff * 2 ** (attempt - 1)
                logger.warning(f"LLM API returned {resp.status_code}; retrying in {delay:.1f}s")
                await asyncio.sleep(delay)
                continue

            if resp.status_code != 200:
                logger.error(f"LLM API HTTP error {resp.status_code}: {resp.text[:500]}")
                raise LLMError(f"LLM API returned {resp.status_code}")
            break

        try:
            data = resp.json()
        except ValueError as e:
            logger.error(f"LLM API returned a non-JSON body: {resp.text[:300]}")
            raise LLMError(f"LLM response body is not JSON: {e}") from e
        if not isinstance(data, dict):
            raise LLMError("LLM response body is not a JSON object")

        self._record_usage(data.get("usage"))

        try:
            content = data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise LLMError(f"LLM returned no usable choice: {e!r}") from e
        if not isinstance(content, str):
            raise LLMError("LLM message content is not text")
        return self._parse_json(content)

    def _record_usage(self, usage) -> None:
        if not isinstance(usage, dict):
            usage = {}
        try:
            prompt_tokens = int(usage.get("prompt_tokens") or 0)
            completion_tokens = int(usage.get("completion_tokens") or 0)
        except (TypeError, ValueError):
            logger.warning(f"Ignoring malformed usage block: {usage}")
            prompt_tokens = completion_tokens = 0
        cost = (
            prompt_tokens / 1000 * self.config.llm_prompt_cost_per_1k
            + completion_tokens / 1000 * self.config.llm_completion_cost_per_1k
        )
        current_tracker().record(prompt_tokens, completion_tokens, cost)

    def _parse_json(self, content: str) -> dict:
        """Parse the reply, tolerating a ```json fenced block."""
        fenced = re.search(r"```(?:json)?\s*\n(.*?)```", content, re.DOTALL)
        if fenced:
            content = fenced.group(1)
        try:
            parsed = json.loads(content)
        except json.JSONDecodeError as e:
            raise LLMError(f"LLM reply is not valid JSON: {e}") from e
        if not isinstance(parsed, dict):
            raise LLMError("LLM reply is not a JSON object")
        return parsed
