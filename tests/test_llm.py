"""Tests for the Anthropic-backed inference invoker.

Uses mocked Anthropic responses.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from wafr_engine.core.cancellation import CancellationToken
from wafr_engine.core.errors import InferenceFailure, InputValidationError, ResponseMalformed
from wafr_engine.core.llm import InferenceInvoker, parse_data_uri

from tests.fixtures_wafr import verdict_json


def _mock_anthropic_response(content_text, input_tokens=100, output_tokens=50):
    """Create a mock Anthropic messages.create response."""
    response = MagicMock()
    response.content = [MagicMock(type="text", text=content_text)]
    response.usage = MagicMock(input_tokens=input_tokens, output_tokens=output_tokens)
    return response


def _invoker(create):
    client = MagicMock()
    client.messages.create = create
    return InferenceInvoker(client=client, model="test-model", max_tokens=256), client


class TestParseDataUri:
    def test_valid(self):
        assert parse_data_uri("data:image/jpeg;base64,/9j/4AAQ") == ("image/jpeg", "/9j/4AAQ")

    def test_invalid(self):
        with pytest.raises(InputValidationError, match="Invalid image data format"):
            parse_data_uri("iVBORw0KGgo")


class TestInvoke:
    @pytest.mark.asyncio
    async def test_text_only_call(self):
        invoker, client = _invoker(AsyncMock(return_value=_mock_anthropic_response("hello")))

        text = await invoker.invoke("system text", "user text")

        assert text == "hello"
        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["model"] == "test-model"
        assert kwargs["max_tokens"] == 256
        assert kwargs["system"] == "system text"
        assert kwargs["messages"] == [
            {"role": "user", "content": [{"type": "text", "text": "user text"}]}
        ]

    @pytest.mark.asyncio
    async def test_image_block_precedes_text(self):
        invoker, client = _invoker(AsyncMock(return_value=_mock_anthropic_response("ok")))

        await invoker.invoke("system", "describe", image="data:image/png;base64,AAAA")

        content = client.messages.create.call_args.kwargs["messages"][0]["content"]
        assert content[0] == {
            "type": "image",
            "source": {"type": "base64", "media_type": "image/png", "data": "AAAA"},
        }
        assert content[1] == {"type": "text", "text": "describe"}

    @pytest.mark.asyncio
    async def test_invalid_image_is_input_error(self):
        invoker, client = _invoker(AsyncMock())

        with pytest.raises(InputValidationError):
            await invoker.invoke("system", "user", image="not-a-data-uri")
        client.messages.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_transport_error_is_wrapped(self):
        cause = RuntimeError("connection reset")
        invoker, _ = _invoker(AsyncMock(side_effect=cause))

        with pytest.raises(InferenceFailure) as exc_info:
            await invoker.invoke("system", "user")

        assert exc_info.value.cause is cause
        assert exc_info.value.recoverable is True
        assert "connection reset" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_empty_response(self):
        response = MagicMock()
        response.content = []
        invoker, _ = _invoker(AsyncMock(return_value=response))

        with pytest.raises(InferenceFailure, match="empty response"):
            await invoker.invoke("system", "user")

    @pytest.mark.asyncio
    async def test_first_text_block_is_used(self):
        response = _mock_anthropic_response("after thinking")
        response.content.insert(0, MagicMock(type="thinking", spec=["type", "thinking"]))
        invoker, _ = _invoker(AsyncMock(return_value=response))

        assert await invoker.invoke("system", "user") == "after thinking"

    @pytest.mark.asyncio
    async def test_no_text_block(self):
        response = MagicMock()
        response.content = [MagicMock(type="tool_use", spec=["type", "name", "input"])]
        invoker, _ = _invoker(AsyncMock(return_value=response))

        with pytest.raises(InferenceFailure, match="empty response"):
            await invoker.invoke("system", "user")

    @pytest.mark.asyncio
    async def test_called_once_without_retry(self):
        create = AsyncMock(side_effect=RuntimeError("throttled"))
        invoker, _ = _invoker(create)

        with pytest.raises(InferenceFailure):
            await invoker.invoke("system", "user")
        assert create.await_count == 1


class TestInvokeVerdicts:
    @pytest.mark.asyncio
    async def test_parses_payload(self):
        text = "Here is my analysis:\n" + verdict_json(["Use version control"]).replace("true", "True")
        invoker, _ = _invoker(AsyncMock(return_value=_mock_anthropic_response(text)))

        payload = await invoker.invoke_verdicts("system", "user")

        assert payload.best_practices[0].applied is True

    @pytest.mark.asyncio
    async def test_unparseable_payload(self):
        invoker, _ = _invoker(AsyncMock(return_value=_mock_anthropic_response("I cannot help")))

        with pytest.raises(ResponseMalformed):
            await invoker.invoke_verdicts("system", "user")


class TestInvokeCancellable:
    @pytest.mark.asyncio
    async def test_returns_text_when_not_cancelled(self):
        invoker, _ = _invoker(AsyncMock(return_value=_mock_anthropic_response("section")))

        assert await invoker.invoke_cancellable(CancellationToken(), "system", "user") == "section"

    @pytest.mark.asyncio
    async def test_cancellation_wins_race(self):
        async def slow_create(**kwargs):
            await asyncio.sleep(10)
            return _mock_anthropic_response("too late")

        invoker, _ = _invoker(AsyncMock(side_effect=slow_create))
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.01, token.cancel)

        assert await invoker.invoke_cancellable(token, "system", "user") is None
