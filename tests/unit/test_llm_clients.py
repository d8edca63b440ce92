"""Unit tests for the language model and embedding clients."""

from __future__ import annotations

from unittest.mock import AsyncMock, Mock

import httpx
import pytest
from openai import APIConnectionError

from mneme.brain.embeddings import OpenAIEmbeddingProvider
from mneme.brain.llm_clients import LLMResponse, OpenAIChatClient


def _completion(content: str | None, total_tokens: int | None = 42) -> Mock:
    response = Mock()
    response.choices = [Mock()]
    response.choices[0].message.content = content
    if total_tokens is None:
        response.usage = None
    else:
        response.usage.total_tokens = total_tokens
    return response


class TestLLMResponse:
    """Tests for LLMResponse dataclass."""

    def test_response_str(self) -> None:
        response = LLMResponse(content="Test", model="openai/gpt-4o-mini")

        str_repr = str(response)
        assert "openai/gpt-4o-mini" in str_repr
        assert "content_length=4" in str_repr


class TestOpenAIChatClient:
    """Tests for OpenAIChatClient."""

    def test_init(self) -> None:
        client = OpenAIChatClient(model="test-model", api_key="sk-test", base_url="http://localhost:11434/v1")

        assert client.model == "test-model"
        assert client.base_url == "http://localhost:11434/v1"
        assert client.is_configured is True

    def test_unconfigured(self) -> None:
        assert OpenAIChatClient(model="test-model", api_key="").is_configured is False

    @pytest.mark.asyncio
    async def test_invoke_success(self) -> None:
        """Test a completion is unpacked into an LLMResponse."""
        client = OpenAIChatClient(model="test-model", api_key="sk-test")
        client._client.chat.completions.create = AsyncMock(return_value=_completion("User lives in Gothenburg"))

        response = await client.invoke([{"role": "user", "content": "Where do I live?"}])

        assert response.content == "User lives in Gothenburg"
        assert response.model == "test-model"
        assert response.tokens_used == 42
        assert response.latency_ms >= 0

    @pytest.mark.asyncio
    async def test_invoke_defaults_and_overrides(self) -> None:
        client = OpenAIChatClient(model="test-model", api_key="sk-test", temperature=0.2, max_tokens=512)
        client._client.chat.completions.create = AsyncMock(return_value=_completion("ok"))

        await client.invoke([{"role": "user", "content": "hi"}])
        defaults = client._client.chat.completions.create.call_args.kwargs
        await client.invoke([{"role": "user", "content": "hi"}], temperature=0.7, max_tokens=64)
        overrides = client._client.chat.completions.create.call_args.kwargs

        assert (defaults["temperature"], defaults["max_tokens"]) == (0.2, 512)
        assert (overrides["temperature"], overrides["max_tokens"]) == (0.7, 64)
        assert defaults["model"] == "test-model"

    @pytest.mark.asyncio
    async def test_invoke_empty_content(self) -> None:
        client = OpenAIChatClient(model="test-model", api_key="sk-test")
        client._client.chat.completions.create = AsyncMock(return_value=_completion(None, total_tokens=None))

        response = await client.invoke([{"role": "user", "content": "hi"}])

        assert response.content == ""
        assert response.tokens_used is None

    @pytest.mark.asyncio
    async def test_invoke_without_key(self) -> None:
        client = OpenAIChatClient(model="test-model", api_key="")

        with pytest.raises(RuntimeError, match="API key is required"):
            await client.invoke([{"role": "user", "content": "hi"}])

    @pytest.mark.asyncio
    async def test_connection_error_propagates(self) -> None:
        client = OpenAIChatClient(model="test-model", api_key="sk-test")
        error = APIConnectionError(request=httpx.Request("POST", "https://openrouter.ai/api/v1/chat/completions"))
        client._client.chat.completions.create = AsyncMock(side_effect=error)

        with pytest.raises(APIConnectionError):
            await client.invoke([{"role": "user", "content": "hi"}])

    @pytest.mark.asyncio
    async def test_close(self) -> None:
        client = OpenAIChatClient(model="test-model", api_key="sk-test")
        client._http_client.aclose = AsyncMock()

        async with client:
            pass

        client._http_client.aclose.assert_called_once()


class TestOpenAIEmbeddingProvider:
    """Tests for OpenAIEmbeddingProvider."""

    def test_is_configured(self) -> None:
        assert OpenAIEmbeddingProvider(api_key="sk-test").is_configured is True
        assert OpenAIEmbeddingProvider(api_key="").is_configured is False

    @pytest.mark.asyncio
    async def test_embed_batch_orders_by_index(self) -> None:
        """Test vectors are returned in input order even if the API reorders them."""
        provider = OpenAIEmbeddingProvider(model="embed-model", api_key="sk-test")
        response = Mock()
        response.data = [Mock(index=1, embedding=[0.0, 1.0]), Mock(index=0, embedding=[1.0, 0.0])]
        provider._client.embeddings.create = AsyncMock(return_value=response)

        vectors = await provider.embed_batch(["first", "second"])

        assert vectors == [[1.0, 0.0], [0.0, 1.0]]
        kwargs = provider._client.embeddings.create.call_args.kwargs
        assert kwargs == {"model": "embed-model", "input": ["first", "second"]}

    @pytest.mark.asyncio
    async def test_embed_single(self) -> None:
        provider = OpenAIEmbeddingProvider(api_key="sk-test")
        response = Mock()
        response.data = [Mock(index=0, embedding=[0.5, 0.5])]
        provider._client.embeddings.create = AsyncMock(return_value=response)

        assert await provider.embed("hello") == [0.5, 0.5]

    @pytest.mark.asyncio
    async def test_empty_batch_skips_request(self) -> None:
        provider = OpenAIEmbeddingProvider(api_key="sk-test")
        provider._client.embeddings.create = AsyncMock()

        assert await provider.embed_batch([]) == []
        provider._client.embeddings.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_close(self) -> None:
        provider = OpenAIEmbeddingProvider(api_key="sk-test")
        provider._http_client.aclose = AsyncMock()

        await provider.close()

        provider._http_client.aclose.assert_called_once()
