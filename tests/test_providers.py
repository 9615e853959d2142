"""Tests for tagsync.providers: prompt building, response parsing, HTTP adapter."""

from unittest.mock import MagicMock, patch

import httpx
import pytest

from tagsync.errors import ConfigurationError, ParseFailure, TransportFailure
from tagsync.providers import (
    ChatCompletionTagging,
    TaggingProvider,
    build_tagging_prompt,
    create_http_client,
    extract_json_array,
    parse_tags_from_content,
)
from tagsync.providers.base import language_label


class FakeResponse:
    """Minimal httpx.Response stand-in."""

    def __init__(self, status_code=200, json_data=None, text="", json_error=False):
        self.status_code = status_code
        self._json = json_data or {}
        self.text = text
        self._json_error = json_error

    def json(self):
        if self._json_error:
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        return self._json

    def raise_for_status(self):
        if self.status_code >= 400:
            raise httpx.HTTPStatusError(
                f"{self.status_code}",
                request=httpx.Request("POST", "http://test"),
                response=self,
            )


def completion(content):
    return FakeResponse(json_data={"choices": [{"message": {"role": "assistant", "content": content}}]})


@pytest.fixture
def mock_provider():
    """ChatCompletionTagging with a mocked httpx.Client."""
    http = MagicMock()
    provider = ChatCompletionTagging(
        http,
        api_key="test-key",
        model="test-model",
        base_url="https://api.example.com/v1/",
        timeout=12,
        extra_headers={"X-Org": "blog"},
    )
    return provider, http


class TestPrompt:
    def test_includes_document_and_known_tags(self, make_document):
        doc = make_document(title="Async IO", own_tags=["Python", "asyncio"], content="Event loops.\n")
        prompt = build_tagging_prompt(doc, "en", ["Concurrency"])
        assert "Article title: Async IO" in prompt
        assert "Front-matter tags: Python, asyncio" in prompt
        assert "Historical tags (tag index): Concurrency" in prompt
        assert "Event loops." in prompt
        assert "mainly in English" in prompt
        assert "JSON array" in prompt

    def test_placeholders_when_no_tags(self, make_document):
        prompt = build_tagging_prompt(make_document(), "zh")
        assert "Front-matter tags: (none)" in prompt
        assert "Historical tags (tag index): (none)" in prompt
        assert "mainly in Chinese" in prompt

    def test_language_labels(self):
        assert language_label("zh") == "Chinese"
        assert language_label("EN") == "English"
        assert language_label("ja") == "ja"


class TestResponseParsing:
    def test_first_array_after_prose(self):
        assert extract_json_array('Sure! Tags: ["a", "b"] and ["c"]') == ["a", "b"]

    def test_skips_brackets_that_are_not_json(self):
        assert extract_json_array('See [the docs](x). ["Rust"]') == ["Rust"]

    def test_array_inside_object(self):
        assert extract_json_array('{"tags": ["x", "y"]}') == ["x", "y"]

    def test_no_array_raises(self):
        with pytest.raises(ParseFailure):
            extract_json_array("no tags here")

    def test_parse_tags_stringifies_and_trims(self):
        assert parse_tags_from_content('[" Python ", 3, null, ""]') == ["Python", "3"]

    def test_parse_tags_unparsable_is_empty(self):
        assert parse_tags_from_content("I cannot help with that.") == []
        assert parse_tags_from_content("") == []


class TestChatCompletionTagging:
    def test_satisfies_protocol(self, mock_provider):
        provider, _ = mock_provider
        assert isinstance(provider, TaggingProvider)

    def test_requires_api_key(self):
        with pytest.raises(ConfigurationError, match="TAG_SYNC_API_KEY"):
            ChatCompletionTagging(MagicMock(), api_key="", model="m", base_url="https://x")

    def test_request_shape(self, mock_provider, make_document):
        provider, http = mock_provider
        http.post.return_value = completion('["Python"]')

        provider.tag(make_document(), language="zh", historical_tags=["Old"])

        http.post.assert_called_once()
        args, kwargs = http.post.call_args
        assert args[0] == "https://api.example.com/v1/chat/completions"
        body = kwargs["json"]
        assert body["model"] == "test-model"
        assert body["temperature"] == 0.2
        assert body["max_tokens"] == 1024
        assert [m["role"] for m in body["messages"]] == ["system", "user"]
        assert "Historical tags (tag index): Old" in body["messages"][1]["content"]
        assert kwargs["headers"]["Authorization"] == "Bearer test-key"
        assert kwargs["headers"]["Content-Type"] == "application/json"
        assert kwargs["headers"]["X-Org"] == "blog"
        assert kwargs["timeout"] == 12

    def test_returns_parsed_tags(self, mock_provider, make_document):
        provider, http = mock_provider
        http.post.return_value = completion('```json\n["FastAPI", "Python"]\n```')

        result = provider.tag(make_document(), language="en")

        assert result.ok
        assert result.tags == ["FastAPI", "Python"]
        assert result.model == "test-model"
        assert "FastAPI" in result.raw

    def test_unparsable_content_is_not_an_error(self, mock_provider, make_document):
        provider, http = mock_provider
        http.post.return_value = completion("No idea.")

        result = provider.tag(make_document(), language="en")

        assert result.ok
        assert result.tags == []

    def test_missing_choices_gives_empty_tags(self, mock_provider, make_document):
        provider, http = mock_provider
        http.post.return_value = FakeResponse(json_data={"choices": []})

        result = provider.tag(make_document(), language="en")

        assert result.ok
        assert result.tags == []

    def test_http_error_becomes_transport_failure(self, mock_provider, make_document):
        provider, http = mock_provider
        http.post.return_value = FakeResponse(status_code=429, text="rate limited")

        result = provider.tag(make_document(), language="en")

        assert not result.ok
        assert isinstance(result.error, TransportFailure)
        assert result.error.status_code == 429
        assert "HTTP 429: rate limited" in str(result.error)
        assert result.tags == []

    def test_timeout_becomes_transport_failure(self, mock_provider, make_document):
        provider, http = mock_provider
        http.post.side_effect = httpx.ReadTimeout("timed out")

        result = provider.tag(make_document(), language="en")

        assert isinstance(result.error, TransportFailure)
        assert "timed out" in str(result.error)

    def test_connection_error_becomes_transport_failure(self, mock_provider, make_document):
        provider, http = mock_provider
        http.post.side_effect = httpx.ConnectError("connection refused")

        result = provider.tag(make_document(), language="en")

        assert isinstance(result.error, TransportFailure)
        assert result.error.status_code is None

    def test_invalid_json_body_becomes_transport_failure(self, mock_provider, make_document):
        provider, http = mock_provider
        http.post.return_value = FakeResponse(json_error=True)

        result = provider.tag(make_document(), language="en")

        assert isinstance(result.error, TransportFailure)
        assert "Invalid JSON" in str(result.error)


class TestHttpClient:
    def test_applies_proxy_and_timeout(self):
        with patch("tagsync.providers.llm.httpx.Client") as MockClient:
            create_http_client("http://proxy.local:8080", 20)
        MockClient.assert_called_once_with(proxy="http://proxy.local:8080", timeout=20)

    def test_rejected_proxy_is_configuration_error(self):
        with patch("tagsync.providers.llm.httpx.Client", side_effect=ValueError("bad scheme")):
            with pytest.raises(ConfigurationError, match="proxy"):
                create_http_client("ftp://nope", 20)
