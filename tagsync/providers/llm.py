"""
Tagging provider for OpenAI-compatible chat completion endpoints.
"""

import logging
from collections.abc import Mapping, Sequence
from typing import Optional

import httpx

from ..errors import ConfigurationError, TransportFailure
from ..types import Document, GenerationResult
from .base import TAGGING_SYSTEM_PROMPT, build_tagging_prompt, parse_tags_from_content

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
DEFAULT_TEMPERATURE = 0.2
DEFAULT_MAX_TOKENS = 1024


def create_http_client(
    proxy_url: Optional[str] = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> httpx.Client:
    """
    Build the HTTP client shared by every generation call in a run.

    The caller owns the client and closes it when the run ends.

    Raises:
        ConfigurationError: If the proxy URL is rejected
    """
    try:
        return httpx.Client(proxy=proxy_url, timeout=timeout)
    except (ValueError, TypeError) as e:
        raise ConfigurationError(f"Failed to initialize proxy ({proxy_url}): {e}") from e


class ChatCompletionTagging:
    """
    Tagging provider using an OpenAI-compatible ``/chat/completions`` API.

    One POST per call. HTTP errors, timeouts and connection failures are
    returned as ``TransportFailure`` on the result rather than raised.
    """

    SYSTEM_PROMPT = TAGGING_SYSTEM_PROMPT

    def __init__(
        self,
        client: httpx.Client,
        *,
        api_key: str,
        model: str,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        extra_headers: Optional[Mapping[str, str]] = None,
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int = DEFAULT_MAX_TOKENS,
    ):
        if not api_key:
            raise ConfigurationError(
                "TAG_SYNC_API_KEY is not set. Configure a valid API key in the environment or .env."
            )
        self._client = client
        self._api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.extra_headers = dict(extra_headers or {})
        self.temperature = temperature
        self.max_tokens = max_tokens

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/chat/completions"

    def _headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._api_key}",
        }
        headers.update(self.extra_headers)
        return headers

    def tag(
        self,
        document: Document,
        *,
        language: str,
        historical_tags: Sequence[str] = (),
    ) -> GenerationResult:
        """Generate tags for one document."""
        prompt = build_tagging_prompt(document, language, historical_tags)
        body = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": self.SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }

        try:
            resp = self._client.post(
                self.endpoint,
                json=body,
                headers=self._headers(),
                timeout=self.timeout,
            )
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as e:
            detail = e.response.text[:200] if e.response.text else ""
            return self._failure(
                document,
                TransportFailure(
                    f"HTTP {e.response.status_code}: {detail}",
                    status_code=e.response.status_code,
                ),
            )
        except httpx.TimeoutException as e:
            return self._failure(
                document, TransportFailure(f"Request timed out after {self.timeout}s: {e}")
            )
        except httpx.HTTPError as e:
            return self._failure(document, TransportFailure(f"Request failed: {e}"))
        except ValueError as e:
            return self._failure(document, TransportFailure(f"Invalid JSON response: {e}"))

        content = _message_content(data)
        tags = parse_tags_from_content(content)
        if not tags:
            logger.debug("No JSON array of tags in response for %s", document.id)
        return GenerationResult(
            document_id=document.id,
            tags=tags,
            raw=content,
            model=self.model,
        )

    def _failure(self, document: Document, error: TransportFailure) -> GenerationResult:
        return GenerationResult(document_id=document.id, error=error, model=self.model)


def _message_content(data: object) -> str:
    """``choices[0].message.content`` or empty string."""
    if not isinstance(data, dict):
        return ""
    choices = data.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return ""
    message = choices[0].get("message") or {}
    content = message.get("content") if isinstance(message, dict) else None
    return content if isinstance(content, str) else ""
