"""Tests for the chat orchestrator, blocking and streaming."""
import pytest

from conftest import run, seed_document
from docchat.chat import ChatConfig
from docchat.errors import (
    GenerationError,
    NotFoundError,
    RetrievalError,
    ValidationError,
)


async def collect(stream):
    return [fragment async for fragment in stream]


def test_blocking_chat_stores_both_turns(services, provider):
    async def scenario():
        document_id = await seed_document(services.database, [0.9, 0.3])
        result = await services.orchestrator.process_chat(
            "What is the diagnosis?", document_id
        )
        return result, await services.memory.get_history(result.session_id)

    result, history = run(scenario())

    assert result.response == "The answer is 42."
    assert [s.content for s in result.sources] == ["chunk with similarity 0.9"]
    assert [(m["role"], m["content"]) for m in history] == [
        ("user", "What is the diagnosis?"),
        ("assistant", "The answer is 42."),
    ]
    assert history[1]["metadata"]["sources"][0]["id"] == result.sources[0].id

    prompt = provider.prompts[0]
    assert "[Fragment 1 - Similarity: 90.0%]\nchunk with similarity 0.9" in prompt
    assert "No previous history." in prompt
    assert "What is the diagnosis?" in prompt


def test_new_session_gets_a_title_from_the_message(services):
    async def scenario():
        document_id = await seed_document(services.database, [0.9])
        result = await services.orchestrator.process_chat("Summarize   the report", document_id)
        return document_id, await services.memory.get_session(result.session_id)

    document_id, session = run(scenario())

    assert session["title"] == "Summarize the report"
    assert session["document_id"] == document_id


def test_user_message_is_stored_before_generation(services, provider):
    seen = []

    async def check_history():
        sessions = await services.memory.list_sessions()
        seen.extend(await services.memory.get_history(sessions[0]["id"]))

    provider.on_generate = check_history

    async def scenario():
        document_id = await seed_document(services.database, [0.9])
        await services.orchestrator.process_chat("Is it serious?", document_id)

    run(scenario())

    assert [(m["role"], m["content"]) for m in seen] == [("user", "Is it serious?")]


def test_follow_up_sees_previous_turns(services, provider):
    async def scenario():
        document_id = await seed_document(services.database, [0.9])
        first = await services.orchestrator.process_chat("First question", document_id)
        await services.orchestrator.process_chat(
            "Second question", document_id, first.session_id
        )

    run(scenario())

    assert "User: First question\n\nAssistant: The answer is 42." in provider.prompts[1]


def test_retrieval_failure_stores_nothing(services, provider):
    provider.embed_error = ConnectionError("provider down")

    async def scenario():
        document_id = await seed_document(services.database, [0.9])
        session_id = await services.memory.create_session(document_id=document_id)
        with pytest.raises(RetrievalError):
            await services.orchestrator.process_chat("Hello there", document_id, session_id)
        return await services.memory.get_history(session_id)

    assert run(scenario()) == []
    assert provider.prompts == []


def test_generation_failure_keeps_only_the_user_message(services, provider):
    provider.generate_error = RuntimeError("model crashed")

    async def scenario():
        document_id = await seed_document(services.database, [0.9])
        session_id = await services.memory.create_session(document_id=document_id)
        with pytest.raises(GenerationError):
            await services.orchestrator.process_chat("Hello there", document_id, session_id)
        return await services.memory.get_history(session_id)

    history = run(scenario())

    assert [m["role"] for m in history] == ["user"]


def test_invalid_requests_are_rejected(services):
    async def scenario():
        document_id = await seed_document(services.database, [0.9])
        other_id = await seed_document(services.database, [0.9], "other.pdf")
        session_id = await services.memory.create_session(document_id=other_id)

        with pytest.raises(ValidationError):
            await services.orchestrator.process_chat("   ", document_id)
        with pytest.raises(ValidationError):
            await services.orchestrator.process_chat("Hello", "")
        with pytest.raises(NotFoundError):
            await services.orchestrator.process_chat("Hello", document_id, "missing")
        with pytest.raises(ValidationError):
            await services.orchestrator.process_chat("Hello", document_id, session_id)

    run(scenario())


def test_stream_yields_fragments_and_stores_the_full_answer(services):
    created = []
    sources = []

    async def scenario():
        document_id = await seed_document(services.database, [0.9])
        fragments = await collect(services.orchestrator.process_chat_stream(
            "Explain the results",
            document_id,
            on_session_created=created.append,
            on_sources_retrieved=sources.append,
        ))
        return fragments, await services.memory.get_history(created[0])

    fragments, history = run(scenario())

    assert fragments == ["The answer ", "is 42."]
    assert len(created) == 1
    assert [c.content for c in sources[0]] == ["chunk with similarity 0.9"]
    assert [(m["role"], m["content"]) for m in history] == [
        ("user", "Explain the results"),
        ("assistant", "The answer is 42."),
    ]


def test_stream_with_existing_session_does_not_announce_it(services):
    created = []

    async def on_session_created(session_id):
        created.append(session_id)

    async def scenario():
        document_id = await seed_document(services.database, [0.9])
        session_id = await services.memory.create_session(document_id=document_id)
        await collect(services.orchestrator.process_chat_stream(
            "Hello there", document_id, session_id, on_session_created=on_session_created
        ))

    run(scenario())

    assert created == []


def test_stream_failure_midway_discards_the_partial_answer(services, provider):
    provider.fail_after = 1

    async def scenario():
        document_id = await seed_document(services.database, [0.9])
        session_id = await services.memory.create_session(document_id=document_id)
        received = []
        with pytest.raises(GenerationError):
            async for fragment in services.orchestrator.process_chat_stream(
                "Hello there", document_id, session_id
            ):
                received.append(fragment)
        return received, await services.memory.get_history(session_id)

    received, history = run(scenario())

    assert received == ["The answer "]
    assert [m["role"] for m in history] == ["user"]
    assert provider.stream_closed


def test_abandoned_stream_stores_no_answer(services, provider):
    async def scenario():
        document_id = await seed_document(services.database, [0.9])
        session_id = await services.memory.create_session(document_id=document_id)
        stream = services.orchestrator.process_chat_stream(
            "Hello there", document_id, session_id, ChatConfig(temperature=0.1)
        )
        first = await stream.__anext__()
        await stream.aclose()
        return first, await services.memory.get_history(session_id)

    first, history = run(scenario())

    assert first == "The answer "
    assert [m["role"] for m in history] == ["user"]
    assert provider.stream_closed
    assert provider.options[0] == {"temperature": 0.1}
