"""Lightweight client for an OpenAI-compatible chat completions server (Ollama by default)."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Dict, Iterable, Optional

import requests

from config.settings import settings

logger = logging.getLogger(__name__)


class LLMClientError(RuntimeError):
    """Raised when the text-generation server fails or returns an error response."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class LLMClient:
    """Simple wrapper around the ``/v1/chat/completions`` HTTP API."""

    _SAFE_OPTION_KEYS = {
        "temperature",
        "top_p",
        "frequency_penalty",
        "presence_penalty",
        "max_tokens",
        "stop",
    }

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[int] = None,
        api_key: Optional[str] = None,
        max_retries: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        session: Optional[requests.Session] = None,
        sleep=time.sleep,
    ) -> None:
        url = base_url or getattr(settings, "llm_base_url", "http://127.0.0.1:11434")
        if not url.startswith("http"):
            url = f"http://{url}"
        self.base_url = url.rstrip("/")
        self.model = model or getattr(settings, "llm_model", "gpt-oss:20b")
        self.timeout = timeout or getattr(settings, "llm_timeout", 120)
        self.api_key = api_key or getattr(settings, "llm_api_key", None)
        if max_retries is None:
            max_retries = getattr(settings, "llm_max_retries", 2)
        self.max_retries = max(0, int(max_retries))
        if backoff_seconds is None:
            backoff_seconds = getattr(settings, "llm_retry_backoff_seconds", 2.0)
        self.backoff_seconds = max(0.0, float(backoff_seconds))
        self._session = session or requests.Session()
        self._sleep = sleep

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------
    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.base_url}{path}"
        headers = kwargs.pop("headers", {})
        headers.update(self._headers())
        try:
            response = self._session.request(
                method,
                url,
                headers=headers,
                timeout=self.timeout,
                **kwargs,
            )
            response.raise_for_status()
            return response
        except requests.HTTPError as exc:
            status_code = exc.response.status_code if exc.response is not None else None
            message = exc.response.text if exc.response is not None else str(exc)
            raise LLMClientError(message, status_code=status_code) from exc
        except requests.RequestException as exc:
            raise LLMClientError(str(exc)) from exc

    def _request_with_retry(self, method: str, path: str, **kwargs) -> requests.Response:
        attempts = self.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return self._request(method, path, **kwargs)
            except LLMClientError as exc:
                retryable = exc.status_code is None or exc.status_code >= 500 or exc.status_code == 429
                if not retryable or attempt >= attempts:
                    raise
                wait_seconds = self.backoff_seconds * (2 ** (attempt - 1))
                logger.warning(
                    "LLM request failed (attempt %s/%s): %s; retrying after %ss",
                    attempt,
                    attempts,
                    exc,
                    wait_seconds,
                )
                if wait_seconds:
                    self._sleep(wait_seconds)
        raise LLMClientError("LLM request failed")  # pragma: no cover - loop always returns or raises

    def _coerce_options(self, options: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        if not options:
            return {}
        return {key: value for key, value in options.items() if key in self._SAFE_OPTION_KEYS}

    @staticmethod
    def _coerce_message_content(payload: Dict[str, Any]) -> str:
        choices = payload.get("choices") or []
        if choices:
            first = choices[0] or {}
            message = first.get("message") or {}
            if isinstance(message, dict):
                content = message.get("content")
                if isinstance(content, str):
                    return content
        for key in ("text", "response", "output", "content"):
            value = payload.get(key)
            if isinstance(value, str):
                return value
        return ""

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def complete(
        self,
        messages: Iterable[Dict[str, Any]],
        *,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Send ``messages`` to the chat completions endpoint and return the reply text."""

        payload: Dict[str, Any] = {
            "model": model or self.model,
            "messages": list(messages),
            "stream": False,
        }
        payload.update(self._coerce_options(options))
        if temperature is None:
            temperature = getattr(settings, "llm_temperature", 0.2)
        payload["temperature"] = temperature
        response = self._request_with_retry("POST", "/v1/chat/completions", json=payload)
        try:
            data = response.json() if response.content else {}
        except ValueError as exc:
            raise LLMClientError(f"LLM server returned a non-JSON body: {exc}") from exc
        return self._coerce_message_content(data).strip()


_CLIENT_LOCK = threading.Lock()
_CLIENT: Optional[LLMClient] = None


def get_llm_client() -> LLMClient:
    """Return a process-wide LLM client."""

    global _CLIENT
    if _CLIENT is None:
        with _CLIENT_LOCK:
            if _CLIENT is None:
                _CLIENT = LLMClient()
    return _CLIENT


__all__ = ["LLMClient", "LLMClientError", "get_llm_client"]
