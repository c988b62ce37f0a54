"""HTTP client for the generative document-understanding model.

Talks to the Generative Language REST API with httpx. Timeouts are retried
with exponential backoff (tenacity); every other failure is mapped onto the
extraction error taxonomy and surfaced immediately.
"""

import base64
import logging
from typing import Protocol

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from config import settings
from errors import ModelTimeout, ModelUnavailable, QuotaExceeded, RateLimited

logger = logging.getLogger(__name__)


class ModelClient(Protocol):
    """What the pipeline needs from a model backend."""

    @property
    def model_id(self) -> str: ...

    def generate(
        self,
        prompt: str,
        document_bytes: bytes | None = None,
        mime_type: str | None = None,
        *,
        temperature: float,
        max_output_tokens: int,
        response_mime_type: str = "application/json",
    ) -> str: ...


class GeminiClient:
    """Generative Language API client with timeout retry."""

    def __init__(
        self,
        api_key: str | None = None,
        model_id: str | None = None,
        base_url: str | None = None,
        timeout: int | None = None,
        connect_timeout: int | None = None,
        retry_attempts: int | None = None,
        retry_delay: float | None = None,
        retry_backoff: float | None = None,
    ):
        self._api_key = api_key if api_key is not None else settings.GEMINI_API_KEY
        self._model_id = model_id or settings.GEMINI_MODEL_ID
        self._base_url = (base_url or settings.GEMINI_BASE_URL).rstrip("/")
        self._retry_attempts = retry_attempts if retry_attempts is not None else settings.MODEL_RETRY_ATTEMPTS
        self._retry_delay = retry_delay if retry_delay is not None else settings.MODEL_RETRY_DELAY
        self._retry_backoff = retry_backoff if retry_backoff is not None else settings.MODEL_RETRY_BACKOFF

        read_timeout = timeout if timeout is not None else settings.MODEL_TIMEOUT_SECONDS
        conn_timeout = connect_timeout if connect_timeout is not None else settings.MODEL_CONNECT_TIMEOUT

        self._client = httpx.Client(
            base_url=self._base_url,
            headers={"x-goog-api-key": self._api_key},
            timeout=httpx.Timeout(
                connect=float(conn_timeout),
                read=float(read_timeout),
                write=30.0,
                pool=30.0,
            ),
        )

    @property
    def model_id(self) -> str:
        return self._model_id

    def close(self):
        self._client.close()

    def generate(
        self,
        prompt: str,
        document_bytes: bytes | None = None,
        mime_type: str | None = None,
        *,
        temperature: float,
        max_output_tokens: int,
        response_mime_type: str = "application/json",
    ) -> str:
        """Send prompt (+ optional inline document), return the model's raw reply text.

        Raises ModelTimeout (after retries), QuotaExceeded, RateLimited or
        ModelUnavailable.
        """
        parts: list[dict] = [{"text": prompt}]
        if document_bytes:
            parts.append({"inline_data": {
                "mime_type": mime_type or "application/octet-stream",
                "data": base64.b64encode(document_bytes).decode(),
            }})

        payload = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {
                "temperature": temperature,
                "maxOutputTokens": max_output_tokens,
                "responseMimeType": response_mime_type,
            },
        }
        return self._generate_with_retry(payload)

    def _generate_with_retry(self, payload: dict) -> str:
        """Retry wrapper, configured per instance."""

        @retry(
            retry=retry_if_exception_type(ModelTimeout),
            stop=stop_after_attempt(self._retry_attempts),
            wait=wait_exponential(
                multiplier=self._retry_delay,
                exp_base=self._retry_backoff,
                max=60,
            ),
            reraise=True,
            before_sleep=lambda state: logger.warning(
                "Model call timed out, retrying in %.1fs (attempt %d/%d)",
                state.next_action.sleep,  # type: ignore[union-attr]
                state.attempt_number,
                self._retry_attempts,
            ),
        )
        def _do_generate() -> str:
            return self._send_generate(payload)

        return _do_generate()

    def _send_generate(self, payload: dict) -> str:
        """Send a single generateContent request."""
        path = f"/v1beta/models/{self._model_id}:generateContent"
        try:
            resp = self._client.post(path, json=payload)
        except httpx.TimeoutException as e:
            logger.warning("Model call timed out: %s", e)
            raise ModelTimeout(f"Model call timed out: {e}") from e
        except httpx.HTTPError as e:
            logger.error("Model service unreachable: %s", e)
            raise ModelUnavailable(f"Cannot reach model service: {e}") from e

        if resp.status_code != 200:
            raise _error_for_response(resp)

        try:
            body = resp.json()
        except ValueError as e:
            logger.error("Model service returned a non-JSON reply: %s", resp.text[:200])
            raise ModelUnavailable("Model service returned a non-JSON reply") from e
        return _reply_text(body)

    def health(self) -> dict:
        """Check that the model is reachable with the configured key."""
        try:
            resp = self._client.get(f"/v1beta/models/{self._model_id}", timeout=10.0)
        except httpx.HTTPError as e:
            logger.warning("Model health check failed: %s", e)
            return {"status": "unreachable", "error": str(e)}
        if resp.status_code != 200:
            return {"status": "error", "http_status": resp.status_code}
        return {"status": "ready", "model_id": self._model_id}


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text or f"HTTP {resp.status_code}"
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return error.get("message") or error.get("status") or f"HTTP {resp.status_code}"
    return f"HTTP {resp.status_code}"


def _error_for_response(resp: httpx.Response) -> Exception:
    message = _error_message(resp)
    lowered = message.lower()
    logger.error("Model service error %d: %s", resp.status_code, message)

    if resp.status_code == 429 or "rate limit" in lowered:
        if "quota" in lowered:
            return QuotaExceeded(message)
        return RateLimited(message)
    if "quota" in lowered:
        return QuotaExceeded(message)
    if resp.status_code in (401, 403) or "api key not valid" in lowered:
        return ModelUnavailable(f"Model rejected the API key: {message}")
    if resp.status_code in (408, 504):
        return ModelTimeout(message)
    return ModelUnavailable(message)


def _reply_text(body: dict) -> str:
    """Concatenate the text parts of the first candidate."""
    if not isinstance(body, dict):
        raise ModelUnavailable(f"Unexpected model reply envelope: {type(body).__name__}")
    candidates = body.get("candidates") or []
    if not candidates:
        reason = (body.get("promptFeedback") or {}).get("blockReason", "no candidates")
        raise ModelUnavailable(f"Model returned no reply: {reason}")
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "".join(part.get("text", "") for part in parts)
