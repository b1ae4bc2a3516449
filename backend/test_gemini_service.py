"""
Tests for the Gemini reasoning gateway.

The genai client is replaced with a mock; nothing here reaches the network.
"""
import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock

import pytest
from google.genai import errors as genai_errors

from context_assembler import assemble
from gemini_service import (
    FALLBACK_REPLY,
    GeminiReasoningGateway,
    extract_reply_text,
    to_contents,
)
from image_store import ImagePair
from query_classifier import QueryKind

PAIR = ImagePair(previous=b"\xff\xd8previous", current=b"\xff\xd8current")


def make_response(text):
    part = SimpleNamespace(text=text)
    candidate = SimpleNamespace(content=SimpleNamespace(parts=[part]))
    return SimpleNamespace(candidates=[candidate])


def make_gateway(generate, timeout_seconds=5.0):
    client = Mock()
    client.aio.models.generate_content = generate
    return GeminiReasoningGateway(client=client, model="test-model", timeout_seconds=timeout_seconds)


def visual_request():
    return assemble(QueryKind.VISUAL_CONTEXT, "what is in front of me", PAIR)


def test_returns_first_candidate_text():
    generate = AsyncMock(return_value=make_response("There is a chair ahead.\nNext step:\nWalk around it."))
    gateway = make_gateway(generate)

    reply = asyncio.run(gateway.send(visual_request()))

    assert reply == "There is a chair ahead.\nNext step:\nWalk around it."
    kwargs = generate.call_args.kwargs
    assert kwargs["model"] == "test-model"
    assert kwargs["config"].system_instruction == visual_request().system_instruction


def test_sends_images_in_previous_current_order():
    generate = AsyncMock(return_value=make_response("ok"))
    gateway = make_gateway(generate)

    asyncio.run(gateway.send(visual_request()))

    parts = generate.call_args.kwargs["contents"][0].parts
    images = [p.inline_data.data for p in parts if p.inline_data is not None]
    assert images == [PAIR.previous, PAIR.current]
    assert parts[0].text == "Previous view:"
    assert parts[-1].text == "User said: what is in front of me"


def test_general_request_has_no_inline_data():
    contents = to_contents(assemble(QueryKind.GENERAL_KNOWLEDGE, "what is the capital of France"))

    assert all(p.inline_data is None for p in contents[0].parts)


def test_server_error_returns_fallback():
    error = genai_errors.ServerError(500, {"error": {"code": 500, "message": "Internal", "status": "INTERNAL"}})
    gateway = make_gateway(AsyncMock(side_effect=error))

    assert asyncio.run(gateway.send(visual_request())) == FALLBACK_REPLY


def test_transport_error_returns_fallback():
    gateway = make_gateway(AsyncMock(side_effect=ConnectionError("network down")))

    assert asyncio.run(gateway.send(visual_request())) == FALLBACK_REPLY


def test_timeout_returns_fallback():
    async def slow(**kwargs):
        await asyncio.sleep(5)
        return make_response("too late")

    gateway = make_gateway(slow, timeout_seconds=0.01)

    assert asyncio.run(gateway.send(visual_request())) == FALLBACK_REPLY


@pytest.mark.parametrize("response", [
    SimpleNamespace(candidates=[]),
    SimpleNamespace(candidates=None),
    SimpleNamespace(),
    make_response(None),
    make_response("   "),
    {"unexpected": "body"},
])
def test_malformed_response_returns_fallback(response):
    gateway = make_gateway(AsyncMock(return_value=response))

    assert extract_reply_text(response) is None
    assert asyncio.run(gateway.send(visual_request())) == FALLBACK_REPLY


def test_missing_api_key(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)

    with pytest.raises(ValueError):
        GeminiReasoningGateway()
