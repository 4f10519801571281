"""LLM client used for ownership arbitration."""

import logging
from typing import Any, Dict, Optional

import httpx

from ..config.models import LLMConfig
from ..errors import StackError

logger = logging.getLogger(__name__)


class LLMError(StackError):
    """The completion request failed."""


class OpenRouterClient:
    """Chat-completions client for OpenRouter-compatible endpoints.

    One request per call. Callers decide whether a failed call is retried.
    """

    def __init__(self, config: LLMConfig, http_client: Optional[httpx.Client] = None):
        self.config = config
        self._http = http_client

    def _headers(self) -> Dict[str, str]:
        headers = {"content-type": "application/json"}
        if self.config.api_key:
            headers["authorization"] = f"Bearer {self.config.api_key}"
        return headers

    def complete(self, system: str, user: str) -> str:
        if not self.config.api_key:
            raise LLMError("No API key configured. Set OPENROUTER_API_KEY or llm.api_key in .prstack.yaml")

        url = f"{self.config.base_url.rstrip('/')}/chat/completions"
        req: Dict[str, Any] = {
            "model": self.config.model,
            "max_tokens": self.config.max_tokens,
            "temperature": 0,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
        }
        logger.info(f"> llm {self.config.model} ({len(user)} chars)")
        try:
            if self._http is not None:
                r = self._http.post(url, headers=self._headers(), json=req, timeout=self.config.timeout)
            else:
                with httpx.Client(timeout=self.config.timeout) as client:
                    r = client.post(url, headers=self._headers(), json=req)
        except httpx.HTTPError as e:
            raise LLMError(f"LLM request failed: {e}") from e

        if r.status_code >= 400:
            raise LLMError(f"LLM HTTP {r.status_code}: {r.text[:500]}")
        doc = r.json()
        try:
            content = doc["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise LLMError(f"Unexpected LLM response shape: {str(doc)[:500]}") from e
        if not isinstance(content, str):
            raise LLMError("LLM response content is not text")
        logger.debug(f"LLM response: {content[:500]}")
        return content
