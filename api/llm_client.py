"""
HTTP clients for the external language-model APIs.

LLMClient talks to an OpenAI-compatible chat-completions endpoint and
SummarizerClient to the Hugging Face summarizer space. Both use requests
with a timeout; the chat client retries on 429 and on network errors.
"""

import base64
import json
import logging
import time
from typing import Any, Dict, List, NamedTuple, Optional

import requests

from api.config import Settings


logger = logging.getLogger(__name__)


class MissingAPIKeyError(RuntimeError):
    """No API key is configured for the chat-completions API."""


class UpstreamError(Exception):
    """The upstream API answered with an error status or could not be reached."""

    def __init__(self, status_code: int, body: Any = None, message: Optional[str] = None):
        self.status_code = status_code
        self.body = body
        super().__init__(message or f"Upstream request failed with status {status_code}")


# ===== Message builders =====

def text_message(role: str, content: str) -> Dict[str, Any]:
    return {"role": role, "content": content}


def image_message(prompt: str, image_url: str) -> Dict[str, Any]:
    """User message carrying a text part and an image part."""
    return {
        "role": "user",
        "content": [
            {"type": "text", "text": prompt},
            {"type": "image_url", "image_url": {"url": image_url}},
        ],
    }


def to_data_url(content: bytes, mime_type: str) -> str:
    encoded = base64.b64encode(content).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


def extract_reply(data: Any, default: str = "", include_error: bool = False) -> str:
    """
    Pull the assistant text out of a chat-completions response.

    With include_error, an upstream error message is returned in place of
    the missing reply. Otherwise falls back to default.
    """
    if not isinstance(data, dict):
        return default

    choices = data.get("choices") or []
    if choices and isinstance(choices[0], dict):
        content = (choices[0].get("message") or {}).get("content")
        if content is not None:
            return content

    error = data.get("error")
    if include_error and isinstance(error, dict) and error.get("message") is not None:
        return error["message"]

    return default


def _parse_body(response: requests.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


# ===== Chat completions =====

class LLMClient:
    """Minimal client for POST {base_url}/chat/completions."""

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str,
        timeout_sec: int = 60,
        max_retries: int = 2,
        retry_delay: float = 1.0,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout_sec = timeout_sec
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.session = session or requests.Session()

    @classmethod
    def from_settings(cls, settings: Settings) -> "LLMClient":
        return cls(
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            timeout_sec=settings.llm_timeout_seconds,
            max_retries=settings.llm_max_retries,
        )

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key)

    def close(self) -> None:
        self.session.close()

    def create_completion(
        self,
        messages: List[Dict[str, Any]],
        model: str,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        raise_for_status: bool = True,
    ) -> Dict[str, Any]:
        """
        Send one chat-completions request.

        Args:
            messages: Chat messages in API format
            model: Model name
            max_tokens: Optional completion limit
            temperature: Optional sampling temperature
            raise_for_status: Raise UpstreamError on non-2xx (otherwise return the error body)

        Returns:
            Parsed JSON response

        Raises:
            MissingAPIKeyError: If no API key is configured
            UpstreamError: If the request fails after retries
        """
        if not self.api_key:
            raise MissingAPIKeyError("API key not set")

        payload: Dict[str, Any] = {"model": model, "messages": messages}
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        if temperature is not None:
            payload["temperature"] = temperature

        url = f"{self.base_url}/chat/completions"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        attempts = self.max_retries + 1
        for attempt in range(attempts):
            try:
                response = self.session.post(
                    url, headers=headers, json=payload, timeout=self.timeout_sec
                )
            except requests.Timeout:
                if attempt < attempts - 1:
                    logger.warning(f"LLM request timed out, retrying ({attempt + 1}/{self.max_retries})")
                    time.sleep(self.retry_delay)
                    continue
                raise UpstreamError(0, message="Request to AI service timed out")
            except requests.RequestException as e:
                if attempt < attempts - 1:
                    logger.warning(f"LLM network error, retrying ({attempt + 1}/{self.max_retries}): {e}")
                    time.sleep(self.retry_delay)
                    continue
                raise UpstreamError(0, message=f"Could not reach AI service: {e}") from e

            if response.status_code == 429 and attempt < attempts - 1:
                sleep_time = self.retry_delay * (2 ** attempt)
                logger.warning(f"LLM rate limited (429), waiting {sleep_time:.1f}s")
                time.sleep(sleep_time)
                continue

            body = _parse_body(response)
            if response.ok:
                if not isinstance(body, dict):
                    raise UpstreamError(response.status_code, body, "AI service returned a non-JSON response")
                return body

            logger.error(f"LLM API error: {response.status_code} {str(body)[:500]}")
            if raise_for_status:
                raise UpstreamError(response.status_code, body)
            return body if isinstance(body, dict) else {"error": {"message": str(body)}}

        # Only reachable when max_retries is negative
        raise UpstreamError(0, message="No request attempted")

    def chat(
        self,
        messages: List[Dict[str, Any]],
        model: str,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> str:
        """Send a completion request and return the assistant text ("" if absent)."""
        data = self.create_completion(messages, model, max_tokens=max_tokens, temperature=temperature)
        return extract_reply(data, default="")


# ===== Hugging Face summarizer =====

class SummaryResult(NamedTuple):
    status_code: int
    ok: bool
    body: str

    def parsed(self) -> Any:
        """The body as JSON, or None if it is not JSON."""
        try:
            return json.loads(self.body)
        except ValueError:
            return None


class SummarizerClient:
    """Relays text to a summarizer service that accepts {"text": ...}."""

    def __init__(self, url: str, timeout_sec: int = 60, session: Optional[requests.Session] = None):
        self.url = url
        self.timeout_sec = timeout_sec
        self.session = session or requests.Session()

    @classmethod
    def from_settings(cls, settings: Settings) -> "SummarizerClient":
        return cls(url=settings.hf_space_url, timeout_sec=settings.llm_timeout_seconds)

    def close(self) -> None:
        self.session.close()

    def summarize(self, text: Optional[str]) -> SummaryResult:
        # A missing text is left out of the body, not sent as null
        payload = {} if text is None else {"text": text}
        response = self.session.post(
            self.url,
            headers={"Content-Type": "application/json"},
            json=payload,
            timeout=self.timeout_sec,
        )
        return SummaryResult(status_code=response.status_code, ok=response.ok, body=response.text)
