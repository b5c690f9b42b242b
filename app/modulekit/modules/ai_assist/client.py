from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

logger = logging.getLogger(__name__)

API_URL = "https://api.anthropic.com/v1/messages"
API_VERSION = "2023-06-01"


class AIServiceError(RuntimeError):
    pass


@dataclass
class Completion:
    text: str
    input_tokens: int = 0
    output_tokens: int = 0


class AnthropicClient:
    """Minimal Messages API client over httpx."""

    def __init__(self, api_key: str, model: str, *, timeout: float = 120.0, transport: httpx.BaseTransport | None = None) -> None:
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self._transport = transport

    def create_message(self, prompt: str, *, max_tokens: int = 8000) -> Completion:
        payload: dict[str, Any] = {
            "model": self.model,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": API_VERSION,
            "content-type": "application/json",
        }
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                resp = client.post(API_URL, json=payload, headers=headers)
                resp.raise_for_status()
                body = resp.json()
        except httpx.HTTPStatusError as e:
            logger.error("AI request failed with status %s", e.response.status_code)
            raise AIServiceError(f"AI service returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error("AI request failed: %s", e)
            raise AIServiceError(str(e)) from e

        text = "".join(block.get("text", "") for block in body.get("content", []) if block.get("type") == "text")
        usage = body.get("usage") or {}
        return Completion(text=text, input_tokens=int(usage.get("input_tokens") or 0), output_tokens=int(usage.get("output_tokens") or 0))
