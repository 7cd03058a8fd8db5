"""
LLM Gateway: text generation backend for recommendations.

Single provider (Anthropic Messages API) over httpx. Calls are bounded by
``llm_timeout_seconds``; any failure is raised as ExternalServiceError so
callers never mistake an outage for an empty answer.
"""

from typing import Optional

import httpx
import structlog

from sitegate.config import settings
from sitegate.errors import ExternalServiceError

logger = structlog.get_logger(__name__)

ANTHROPIC_API_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"


class LLMGateway:
    """Non-streaming text generation."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.anthropic_api_key
        self.model = model or settings.llm_model
        self.timeout = timeout or settings.llm_timeout_seconds
        self._transport = transport
        if not self.api_key:
            logger.warning("anthropic_api_key_missing", msg="generative recommendations unavailable")

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def generate(self, system: str, user_message: str, max_tokens: int = 1000) -> str:
        """Return the full text reply."""
        if not self.api_key:
            raise ExternalServiceError("text_generation", "no API key configured")

        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }
        payload = {
            "model": self.model,
            "max_tokens": max_tokens,
            "system": system,
            "messages": [{"role": "user", "content": user_message}],
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(ANTHROPIC_API_URL, json=payload, headers=headers)
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException as e:
            logger.error("llm_timeout", model=self.model)
            raise ExternalServiceError("text_generation", "request timed out", timeout=True) from e
        except httpx.HTTPStatusError as e:
            logger.error(
                "llm_api_error",
                status=e.response.status_code,
                body=e.response.text[:500],
            )
            raise ExternalServiceError(
                "text_generation", f"HTTP {e.response.status_code}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error("llm_generate_error", model=self.model, error=str(e))
            raise ExternalServiceError("text_generation", str(e)) from e

        text = "".join(
            block.get("text", "")
            for block in data.get("content", [])
            if block.get("type") == "text"
        )
        if not text.strip():
            raise ExternalServiceError("text_generation", "empty response")
        return text
