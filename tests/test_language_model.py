# tests/test_language_model.py
#
# Tests for the exponential backoff retry logic and provider fallback in
# OpenAIModelService. We mock the SDK clients to simulate API errors
# without making real calls.

import asyncio
import pytest
from unittest.mock import patch, AsyncMock, MagicMock

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from anthropic import APIStatusError
from services.language_model import OpenAIModelService, ServiceUnavailableError


def _make_api_error(status_code: int) -> APIStatusError:
    """Create a mock APIStatusError with the given status code."""
    mock_response = MagicMock()
    mock_response.status_code = status_code
    mock_response.headers = {}
    mock_response.json.return_value = {"error": {"type": "overloaded_error", "message": "Overloaded"}}
    return APIStatusError(
        message=f"Error code: {status_code}",
        response=mock_response,
        body={"error": {"type": "overloaded_error", "message": "Overloaded"}},
    )


def _embedding_response(vector):
    response = MagicMock()
    response.data = [MagicMock(embedding=vector)]
    return response


def _chat_response(text):
    response = MagicMock()
    response.choices = [MagicMock(message=MagicMock(content=text))]
    return response


def _anthropic_response(text):
    response = MagicMock()
    response.content = [MagicMock(text=text)]
    return response


def _service(primary=True, fallback=False):
    """A service with mocked SDK clients in place of the real ones."""
    service = OpenAIModelService(
        openrouter_api_key="",
        openai_api_key="sk-test" if primary else "",
        anthropic_api_key="sk-ant-test" if fallback else "",
    )
    if primary:
        service.primary_client = MagicMock()
        service.primary_client.embeddings.create = AsyncMock()
        service.primary_client.chat.completions.create = AsyncMock()
    if fallback:
        service.fallback_client = MagicMock()
        service.fallback_client.messages.create = AsyncMock()
    return service


class TestRetryLogic:
    """Tests for _with_retry() exponential backoff, driven through embed()."""

    def test_success_on_first_try(self):
        """API call succeeds immediately — no retries needed."""
        service = _service()
        service.primary_client.embeddings.create.return_value = _embedding_response([0.1, 0.2])

        result = asyncio.run(service.embed("hello"))

        assert result == [0.1, 0.2]
        assert service.primary_client.embeddings.create.await_count == 1

    @patch('services.language_model.asyncio.sleep', new_callable=AsyncMock)
    def test_retry_on_529_then_succeed(self, mock_sleep):
        """529 error on first attempt, success on second."""
        service = _service()
        service.primary_client.embeddings.create.side_effect = [
            _make_api_error(529), _embedding_response([0.5])
        ]

        result = asyncio.run(service.embed("hello"))

        assert result == [0.5]
        assert service.primary_client.embeddings.create.await_count == 2
        mock_sleep.assert_awaited_once()

    @patch('services.language_model.asyncio.sleep', new_callable=AsyncMock)
    def test_retry_on_429_then_succeed(self, mock_sleep):
        """429 rate limit error on first attempt, success on second."""
        service = _service()
        service.primary_client.chat.completions.create.side_effect = [
            _make_api_error(429), _chat_response("ok")
        ]

        result = asyncio.run(service.complete("system", "prompt"))

        assert result == "ok"
        assert service.primary_client.chat.completions.create.await_count == 2

    @patch('services.language_model.random.random', return_value=0.5)
    @patch('services.language_model.asyncio.sleep', new_callable=AsyncMock)
    def test_exponential_backoff_delays(self, mock_sleep, mock_random):
        """Verify backoff doubles with jitter: base * 2^attempt ± 25%."""
        service = _service()
        error_529 = _make_api_error(529)
        service.primary_client.embeddings.create.side_effect = [
            error_529, error_529, error_529, _embedding_response([1.0])
        ]

        result = asyncio.run(service.embed("hello"))

        assert result == [1.0]

        # With random()=0.5, jitter = base*0.25*(2*0.5-1) = 0, so delays are exact
        sleep_calls = [call.args[0] for call in mock_sleep.await_args_list]
        from config.settings import API_RETRY_BASE_DELAY
        expected = [API_RETRY_BASE_DELAY * (2 ** i) for i in range(3)]
        assert sleep_calls == expected

    @patch('config.settings.API_MAX_RETRIES', 3)
    @patch('services.language_model.asyncio.sleep', new_callable=AsyncMock)
    def test_exhausted_retries_raises(self, mock_sleep):
        """All retries exhausted — the error propagates to the caller."""
        service = _service()
        service.primary_client.embeddings.create.side_effect = _make_api_error(529)

        with pytest.raises(APIStatusError):
            asyncio.run(service.embed("hello"))

        # With API_MAX_RETRIES=3, should attempt 3 times
        assert service.primary_client.embeddings.create.await_count == 3

    @patch('services.language_model.asyncio.sleep', new_callable=AsyncMock)
    def test_non_retryable_error_raises_immediately(self, mock_sleep):
        """A 401 should NOT be retried — raise immediately."""
        service = _service()
        service.primary_client.embeddings.create.side_effect = _make_api_error(401)

        with pytest.raises(APIStatusError):
            asyncio.run(service.embed("hello"))

        assert service.primary_client.embeddings.create.await_count == 1
        mock_sleep.assert_not_awaited()

    @patch('services.language_model.asyncio.sleep', new_callable=AsyncMock)
    def test_on_retry_callback(self, mock_sleep):
        service = _service()
        service.on_retry = MagicMock()
        service.primary_client.embeddings.create.side_effect = [
            _make_api_error(503), _embedding_response([1.0])
        ]

        asyncio.run(service.embed("hello"))

        service.on_retry.assert_called_once()
        attempt, max_retries, delay = service.on_retry.call_args.args
        assert attempt == 1
        assert delay > 0


class TestProviderFallback:
    """Tests for provider selection and the Anthropic fallback."""

    def test_no_keys_is_unavailable(self):
        service = _service(primary=False)

        assert service.available is False
        with pytest.raises(ServiceUnavailableError):
            asyncio.run(service.embed("hello"))
        with pytest.raises(ServiceUnavailableError):
            asyncio.run(service.complete("system", "prompt"))

    def test_openrouter_preferred(self):
        service = OpenAIModelService(openrouter_api_key="or-test", openai_api_key="sk-test",
                                     anthropic_api_key="")
        assert service.primary_name == "OpenRouter"

    def test_anthropic_only_cannot_embed(self):
        service = _service(primary=False, fallback=True)

        assert service.available is True
        with pytest.raises(ServiceUnavailableError):
            asyncio.run(service.embed("hello"))

    def test_anthropic_only_completes(self):
        service = _service(primary=False, fallback=True)
        service.fallback_client.messages.create.return_value = _anthropic_response("from claude")

        assert asyncio.run(service.complete("system", "prompt")) == "from claude"

    def test_falls_back_when_primary_fails(self):
        service = _service(primary=True, fallback=True)
        service.primary_client.chat.completions.create.side_effect = _make_api_error(401)
        service.fallback_client.messages.create.return_value = _anthropic_response("fallback answer")

        result = asyncio.run(service.complete("system", "prompt"))

        assert result == "fallback answer"
        kwargs = service.fallback_client.messages.create.await_args.kwargs
        assert kwargs["system"] == "system"
        assert kwargs["messages"] == [{"role": "user", "content": "prompt"}]

    def test_primary_failure_without_fallback_raises(self):
        service = _service(primary=True, fallback=False)
        service.primary_client.chat.completions.create.side_effect = _make_api_error(401)

        with pytest.raises(APIStatusError):
            asyncio.run(service.complete("system", "prompt"))
