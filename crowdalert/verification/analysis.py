"""
analysis.py — Generative analysis client (Gemini generateContent REST API).

Request:
    POST {GEMINI_BASE_URL}/models/{GEMINI_MODEL}:generateContent?key=...
    {
      "contents": [{
        "role": "user",
        "parts": [
          {"text": "<prompt>"},
          {"inline_data": {"mime_type": "video/mp4", "data": "<base64>"}}
        ]
      }]
    }

Response text is the concatenation of candidates[0].content.parts[].text.
A prompt blocked by safety filters comes back without candidates; that is
reported as an upstream failure so the verifier fails closed.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol

import httpx

from crowdalert.core.config import settings
from crowdalert.core.errors import UpstreamUnavailableError

logger = logging.getLogger(__name__)

SERVICE_NAME = "analysis"


class AnalysisClient(Protocol):
    """Anything that can answer a prompt about one inline media attachment."""

    async def generate(self, prompt: str, media_b64: str, mime_type: str) -> str:
        ...


class GeminiAnalysisClient:
    """
    Thin async client for Gemini ``generateContent``.

    Borrows its HTTP client; the API key is passed in, never read from a
    module-level global.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self._http = http_client
        self.api_key = api_key if api_key is not None else settings.GEMINI_API_KEY
        self.model = model or settings.GEMINI_MODEL
        self.base_url = (base_url or settings.GEMINI_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.ANALYSIS_TIMEOUT

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    @staticmethod
    def build_request(prompt: str, media_b64: str, mime_type: str) -> Dict[str, Any]:
        return {
            "contents": [{
                "role": "user",
                "parts": [
                    {"text": prompt},
                    {"inline_data": {"mime_type": mime_type, "data": media_b64}},
                ],
            }],
        }

    @staticmethod
    def extract_text(data: Dict[str, Any]) -> str:
        """Join the text parts of the first candidate."""
        candidates = data.get("candidates") or []
        if not candidates:
            feedback = data.get("promptFeedback")
            raise UpstreamUnavailableError(
                SERVICE_NAME, "no candidates returned",
                block_reason=feedback.get("blockReason") if isinstance(feedback, dict) else None,
            )
        if not isinstance(candidates, list) or not isinstance(candidates[0], dict):
            raise UpstreamUnavailableError(SERVICE_NAME, "malformed candidates")
        content = candidates[0].get("content") or {}
        parts = (content.get("parts") or []) if isinstance(content, dict) else None
        if not isinstance(parts, list):
            raise UpstreamUnavailableError(SERVICE_NAME, "malformed candidates")
        return "".join(p.get("text", "") for p in parts if isinstance(p, dict))

    async def generate(self, prompt: str, media_b64: str, mime_type: str) -> str:
        if not self.api_key:
            raise UpstreamUnavailableError(SERVICE_NAME, "GEMINI_API_KEY is not configured")

        try:
            response = await self._http.post(
                self.endpoint,
                params={"key": self.api_key},
                json=self.build_request(prompt, media_b64, mime_type),
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise UpstreamUnavailableError(
                SERVICE_NAME, f"HTTP {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise UpstreamUnavailableError(SERVICE_NAME, type(e).__name__) from e
        except ValueError as e:
            raise UpstreamUnavailableError(SERVICE_NAME, "invalid JSON body") from e

        if not isinstance(data, dict):
            raise UpstreamUnavailableError(SERVICE_NAME, "unexpected response shape")
        return self.extract_text(data)
