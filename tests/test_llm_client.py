"""Tests for the provider clients, against a mocked HTTP transport."""
import json

import httpx
import pytest

from conftest import run
from docchat.llm_client import GeminiClient, OllamaClient, TaskType


@pytest.fixture
def transport(monkeypatch):
    """Route every httpx.AsyncClient through a handler set by the test."""
    requests = []
    state = {"handler": None}
    real_client = httpx.AsyncClient

    def handle(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return state["handler"](request)

    def client_factory(**kwargs):
        return real_client(transport=httpx.MockTransport(handle), **kwargs)

    monkeypatch.setattr(httpx, "AsyncClient", client_factory)

    def use(handler):
        state["handler"] = handler
        return requests

    return use


async def collect(stream):
    return [fragment async for fragment in stream]


def test_ollama_embed_prefixes_by_intent(transport):
    requests = transport(lambda request: httpx.Response(
        200, json={"embeddings": [[0.1, 0.2], [0.3, 0.4]]}
    ))
    client = OllamaClient(base_url="http://ollama", embedding_model="nomic", dimension=2)

    items = run(client.embed(["first", "second"], TaskType.RETRIEVAL_DOCUMENT))
    run(client.embed(["question"], TaskType.RETRIEVAL_QUERY))

    document_body = json.loads(requests[0].content)
    query_body = json.loads(requests[1].content)
    assert requests[0].url.path == "/api/embed"
    assert document_body["input"] == ["search_document: first", "search_document: second"]
    assert document_body["dimensions"] == 2
    assert query_body["input"] == ["search_query: question"]
    assert items == [{"index": 0, "embedding": [0.1, 0.2]}, {"index": 1, "embedding": [0.3, 0.4]}]


def test_ollama_stream_reads_ndjson(transport):
    lines = [
        {"response": "Hel", "done": False},
        {"response": "lo", "done": False},
        {"response": "", "done": True},
    ]
    body = "\n".join(json.dumps(line) for line in lines) + "\n"
    requests = transport(lambda request: httpx.Response(200, text=body))
    client = OllamaClient(base_url="http://ollama", chat_model="gemma")

    fragments = run(collect(client.generate_stream("prompt", {"temperature": 0.1})))

    payload = json.loads(requests[0].content)
    assert fragments == ["Hel", "lo"]
    assert payload["stream"] is True
    assert payload["options"]["temperature"] == 0.1


def test_ollama_stream_error_line_raises(transport):
    transport(lambda request: httpx.Response(200, text=json.dumps({"error": "model not found"})))
    client = OllamaClient(base_url="http://ollama")

    with pytest.raises(httpx.HTTPError):
        run(collect(client.generate_stream("prompt")))


def test_ollama_http_error_propagates(transport):
    transport(lambda request: httpx.Response(500, json={"error": "boom"}))
    client = OllamaClient(base_url="http://ollama")

    with pytest.raises(httpx.HTTPStatusError):
        run(client.generate("prompt"))


def test_gemini_embed_sends_task_type(transport):
    requests = transport(lambda request: httpx.Response(
        200, json={"embeddings": [{"values": [0.5, 0.5]}]}
    ))
    client = GeminiClient(
        api_key="secret", base_url="http://gemini", embedding_model="text-embedding-004", dimension=2
    )

    items = run(client.embed(["question"], TaskType.RETRIEVAL_QUERY))

    body = json.loads(requests[0].content)
    assert requests[0].url.path == "/models/text-embedding-004:batchEmbedContents"
    assert requests[0].headers["x-goog-api-key"] == "secret"
    assert body["requests"][0]["taskType"] == "RETRIEVAL_QUERY"
    assert body["requests"][0]["outputDimensionality"] == 2
    assert items == [{"index": 0, "embedding": [0.5, 0.5]}]


def test_gemini_stream_reads_server_sent_events(transport):
    def event(text):
        return "data: " + json.dumps({"candidates": [{"content": {"parts": [{"text": text}]}}]})

    body = "\n\n".join([event("The "), event("answer")]) + "\n\n"
    requests = transport(lambda request: httpx.Response(200, text=body))
    client = GeminiClient(api_key="secret", base_url="http://gemini", chat_model="gemini-flash")

    fragments = run(collect(client.generate_stream("prompt")))

    assert fragments == ["The ", "answer"]
    assert requests[0].url.params["alt"] == "sse"


def test_gemini_lists_model_names_without_prefix(transport):
    transport(lambda request: httpx.Response(
        200, json={"models": [{"name": "models/gemini-flash"}, {"name": "models/text-embedding-004"}]}
    ))
    client = GeminiClient(api_key="secret", base_url="http://gemini")

    assert run(client.list_models()) == ["gemini-flash", "text-embedding-004"]
