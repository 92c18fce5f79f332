"""
Gemini client for the narrative boundary.

One async call per narrative: the read-only brief goes in as the user
turn, the analyst rules as the system instruction. Anything that goes
wrong on the wire (non-200, timeout, connection reset) is reported as a
GeminiResult with status ERROR or TIMEOUT so the caller can fall back.
A missing API key is a configuration error and raises GeminiError.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Optional

import httpx

from oddsedge.config import get_settings

logger = logging.getLogger(__name__)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"
DEFAULT_MODEL = "gemini-2.0-flash"
ERROR_TEXT_LIMIT = 500


@dataclass
class GeminiResult:
    """Outcome of one generateContent call."""

    status: str  # COMPLETED, ERROR, TIMEOUT
    text: str
    exec_ms: int
    model_version: str
    tokens_in: int = 0
    tokens_out: int = 0
    raw_output: dict = field(default_factory=dict)
    error: Optional[str] = None
    finish_reason: Optional[str] = None  # STOP, MAX_TOKENS, SAFETY, ...


class GeminiError(Exception):
    """Raised for client misconfiguration (never for transport failures)."""


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def parse_candidate(data: dict) -> tuple[str, Optional[str]]:
    """First candidate's text and finishReason; empty text when the reply carries none."""
    candidates = data.get("candidates") or []
    if not candidates:
        return "", None
    first = candidates[0]
    parts = (first.get("content") or {}).get("parts") or []
    text = parts[0].get("text", "") if parts else ""
    return text, first.get("finishReason")


class GeminiClient:
    """Async narrative client. The httpx client is created lazily and reused."""

    def __init__(self, settings=None, transport: Optional[httpx.AsyncBaseTransport] = None):
        settings = settings or get_settings()
        self.api_key = (settings.GEMINI_API_KEY or "").strip()
        self.model = settings.GEMINI_MODEL or DEFAULT_MODEL
        self.timeout = settings.NARRATIVE_LLM_TIMEOUT_SECONDS
        self.max_tokens = settings.NARRATIVE_LLM_MAX_TOKENS
        self.temperature = settings.NARRATIVE_LLM_TEMPERATURE
        self.top_p = settings.NARRATIVE_LLM_TOP_P

        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None

    @property
    def endpoint(self) -> str:
        return f"{GEMINI_BASE_URL}/{self.model}:generateContent"

    async def _client(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                headers={"Content-Type": "application/json"},
                transport=self._transport,
            )
        return self._http

    async def close(self):
        if self._http is not None and not self._http.is_closed:
            await self._http.aclose()
        self._http = None

    def build_payload(
        self,
        prompt: str,
        system_instruction: Optional[str],
        json_response: bool,
        max_tokens: Optional[int],
        temperature: Optional[float],
    ) -> dict:
        config = {
            "maxOutputTokens": max_tokens or self.max_tokens,
            "temperature": self.temperature if temperature is None else temperature,
            "topP": self.top_p,
        }
        if json_response:
            config["responseMimeType"] = "application/json"

        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": config,
        }
        if system_instruction:
            payload["systemInstruction"] = {"parts": [{"text": system_instruction}]}
        return payload

    def _failure(self, status: str, start: float, error: str) -> GeminiResult:
        return GeminiResult(
            status=status,
            text="",
            exec_ms=_elapsed_ms(start),
            model_version=self.model,
            error=error,
        )

    async def generate(
        self,
        prompt: str,
        system_instruction: Optional[str] = None,
        json_response: bool = False,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> GeminiResult:
        """
        Run one generateContent request.

        Args:
            prompt: User turn (the brief plus instructions).
            system_instruction: Analyst rules.
            json_response: Request application/json output.
            max_tokens: Overrides NARRATIVE_LLM_MAX_TOKENS.
            temperature: Overrides NARRATIVE_LLM_TEMPERATURE.

        Returns:
            GeminiResult; status is COMPLETED only for a 200 reply.
        """
        if not self.api_key:
            raise GeminiError("GEMINI_API_KEY not configured")

        payload = self.build_payload(prompt, system_instruction, json_response, max_tokens, temperature)
        client = await self._client()
        start = time.perf_counter()

        try:
            response = await client.post(self.endpoint, params={"key": self.api_key}, json=payload)
        except httpx.TimeoutException:
            logger.error(f"[GEMINI] Timeout after {_elapsed_ms(start)}ms")
            return self._failure("TIMEOUT", start, "Request timed out")
        except httpx.HTTPError as e:
            logger.error(f"[GEMINI] Transport error: {e}")
            return self._failure("ERROR", start, str(e)[:ERROR_TEXT_LIMIT])

        if response.status_code != 200:
            body = response.text[:ERROR_TEXT_LIMIT]
            logger.error(f"[GEMINI] HTTP {response.status_code}: {body}")
            return self._failure("ERROR", start, f"HTTP {response.status_code}: {body}")

        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"[GEMINI] Reply is not JSON: {e}")
            return self._failure("ERROR", start, "Reply is not JSON")

        text, finish_reason = parse_candidate(data)
        usage = data.get("usageMetadata") or {}
        tokens_out = usage.get("candidatesTokenCount", 0)
        if finish_reason and finish_reason != "STOP":
            logger.warning(
                f"[GEMINI] finishReason={finish_reason} tokens_out={tokens_out} "
                f"max_tokens={payload['generationConfig']['maxOutputTokens']} text_len={len(text)}"
            )

        return GeminiResult(
            status="COMPLETED",
            text=text,
            exec_ms=_elapsed_ms(start),
            model_version=data.get("modelVersion", self.model),
            tokens_in=usage.get("promptTokenCount", 0),
            tokens_out=tokens_out,
            raw_output=data,
            finish_reason=finish_reason,
        )
