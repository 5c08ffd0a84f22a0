from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from ..models.errors import ErrorKind, ModelInvocationError
from .http import HttpClient

logger = logging.getLogger(__name__)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

_INVALID_KEY_MARKERS = ("api_key_invalid", "api key not valid", "api key expired", "unregistered callers")


def classify_status(status: int, body: str = "") -> ErrorKind:
    """Map a non-2xx generateContent response onto the error taxonomy."""
    text = (body or "").lower()
    if status in (401, 403) or "permission_denied" in text:
        return ErrorKind.invalid_credential
    if status == 400 and any(marker in text for marker in _INVALID_KEY_MARKERS):
        return ErrorKind.invalid_credential
    if status == 429 or "resource_exhausted" in text:
        return ErrorKind.quota_exceeded
    if status in (502, 503, 504) or "unavailable" in text or "overloaded" in text:
        return ErrorKind.service_overloaded
    return ErrorKind.unknown


def classify_exception(exc: BaseException) -> ErrorKind:
    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return ErrorKind.timeout
    if isinstance(exc, httpx.TransportError):
        return ErrorKind.network_error
    return ErrorKind.unknown


def extract_text(payload: Any) -> str:
    if not isinstance(payload, dict):
        return ""
    parts: list[str] = []
    for candidate in payload.get("candidates") or []:
        content = candidate.get("content") or {}
        for part in content.get("parts") or []:
            text = part.get("text")
            if text:
                parts.append(text)
        if parts:
            break
    return "".join(parts)


class GeminiInvoker:
    """Runs one prompt against one credential and classifies the outcome.

    Holds no per-call state; retries and key rotation belong to the caller.
    """

    def __init__(
        self,
        http: HttpClient,
        model: str = "gemini-2.5-flash",
        temperature: float = 0.4,
        max_output_tokens: int = 8192,
        base_url: str = GEMINI_BASE_URL,
    ) -> None:
        self.http = http
        self.model = model.removeprefix("models/")
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.base_url = base_url.rstrip("/")

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    def _body(self, prompt: str) -> dict:
        return {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self.temperature,
                "maxOutputTokens": self.max_output_tokens,
            },
        }

    async def _generate(self, prompt: str, credential: str) -> str:
        headers = {"x-goog-api-key": credential, "Content-Type": "application/json"}
        resp = await self.http.post(self.endpoint, json=self._body(prompt), headers=headers, retries=0)
        if resp.status_code >= 400:
            kind = classify_status(resp.status_code, resp.text)
            raise ModelInvocationError(kind, f"HTTP {resp.status_code}: {resp.text[:200]}", status=resp.status_code)

        try:
            payload = resp.json()
        except ValueError as exc:
            raise ModelInvocationError(ErrorKind.unknown, "response body was not JSON") from exc

        text = extract_text(payload)
        if not text.strip():
            reason = (payload.get("promptFeedback") or {}).get("blockReason") if isinstance(payload, dict) else None
            message = f"empty response (blocked: {reason})" if reason else "empty response from model"
            raise ModelInvocationError(ErrorKind.empty_response, message)
        return text

    async def invoke(self, prompt: str, credential: str, timeout_seconds: float) -> str:
        try:
            return await asyncio.wait_for(self._generate(prompt, credential), timeout=timeout_seconds)
        except ModelInvocationError:
            raise
        except asyncio.TimeoutError as exc:
            raise ModelInvocationError(ErrorKind.timeout, f"request timeout after {timeout_seconds:g} seconds") from exc
        except Exception as exc:
            kind = classify_exception(exc)
            logger.debug("model call failed", extra={"kind": kind.value, "error": str(exc)})
            raise ModelInvocationError(kind, str(exc) or exc.__class__.__name__) from exc
