"""Tests for the chat orchestration in ChatEngine."""

from __future__ import annotations

import pytest

from brand_assistant.chat.engine import (
    ALREADY_REGISTERED,
    CONTEXT_PREAMBLE,
    EMPTY_KNOWLEDGE_BASE_NOTE,
    LEAD_SAVE_FAILED,
    ChatEngine,
    ClientInfo,
)
from brand_assistant.chat.lead_capture import LeadCaptureState
from brand_assistant.chat.llm import ChatModel
from brand_assistant.errors import ProviderError, StoreError, ValidationError
from brand_assistant.models import EmailRejection, EmailValidation
from brand_assistant.storage.leads import InMemoryLeadStore


QUESTION = "Do you run workshops for schools?"


class RejectingAuthority(InMemoryLeadStore):
    async def validate_email(self, email):
        return EmailValidation.rejected(EmailRejection.INVALID_FORMAT, "Mailbox does not exist")


class UnreachableAuthority(InMemoryLeadStore):
    async def validate_email(self, email):
        raise StoreError("validation service down")


class CrashingLeadStore(InMemoryLeadStore):
    async def insert(self, lead):
        raise ValueError("Expecting value")


class FailingChatModel(ChatModel):
    async def complete(self, messages):
        raise ProviderError("model unavailable")


class BrokenAnalytics:
    def log_chat(self, entry):
        raise StoreError("disk full")

    def record_knowledge_gap(self, question, best_score, session_id):
        raise StoreError("disk full")


def _engine(store, embedder, chat_model, memory, settings, **kwargs):
    return ChatEngine(
        store,
        embedder=embedder,
        chat_model=chat_model,
        memory=memory,
        settings=settings,
        **kwargs,
    )


# ------------------------------------------------------------------
# Validation
# ------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "message, error",
    [
        (None, "Message is required"),
        ("   ", "Message cannot be empty"),
        ("x" * 2001, "Message too long (max 2000 characters)"),
    ],
)
async def test_invalid_messages_rejected(engine, chat_model, message, error):
    with pytest.raises(ValidationError) as excinfo:
        await engine.ask(message)
    assert str(excinfo.value) == error
    assert chat_model.calls == []


# ------------------------------------------------------------------
# Retrieval and prompt assembly
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_empty_knowledge_base_note(engine, chat_model):
    await engine.ask(QUESTION)
    system_texts = [m.content for m in chat_model.calls[-1] if m.role == "system"]
    assert EMPTY_KNOWLEDGE_BASE_NOTE in system_texts


@pytest.mark.asyncio
async def test_context_and_sources(engine, store, embedder, chat_model):
    await store.upsert(
        "site_chunk_0",
        QUESTION,
        embedder.vector(QUESTION),
        {"url": "https://brand.test/workshops"},
    )

    response = await engine.ask(QUESTION)

    context = chat_model.calls[-1][1]
    assert context.role == "system"
    assert context.content.startswith(CONTEXT_PREAMBLE)
    assert QUESTION in context.content
    assert response.sources == ["https://brand.test/workshops"]
    assert len(response.references) == 1


@pytest.mark.asyncio
async def test_session_id_generated_and_kept(engine):
    first = await engine.ask(QUESTION)
    assert first.session_id
    second = await engine.ask("Do you also run workshops for adults?", session_id=first.session_id)
    assert second.session_id == first.session_id


@pytest.mark.asyncio
async def test_without_lead_store_no_directive(store, embedder, chat_model, memory, settings):
    engine = _engine(store, embedder, chat_model, memory, settings)

    response = await engine.ask(QUESTION)

    assert response.lead_state is None
    assert response.lead_form is None
    assert chat_model.last_user_message == QUESTION


@pytest.mark.asyncio
async def test_history_is_sent_to_model(engine, chat_model, memory):
    first = await engine.ask("Hello")
    await engine.ask(QUESTION, session_id=first.session_id)

    sent = chat_model.calls[-1]
    assert [m.role for m in sent[-3:]] == ["user", "assistant", "user"]
    assert sent[-3].content == "Hello"
    record = await memory.get(first.session_id)
    assert len(record.messages) == 4


@pytest.mark.asyncio
async def test_provider_error_propagates_without_saving(store, embedder, memory, settings):
    failing = _engine(store, embedder, FailingChatModel(), memory, settings)
    with pytest.raises(ProviderError):
        await failing.ask(QUESTION, session_id="s-fail")
    assert await memory.get("s-fail") is None


# ------------------------------------------------------------------
# Lead capture
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_lead_capture_conversation(engine, chat_model, lead_store, memory):
    first = await engine.ask("Hello")
    session = first.session_id
    assert first.lead_state is LeadCaptureState.NEED_NAME
    assert "Ask for their name" in chat_model.last_user_message
    assert first.lead_form is None

    second = await engine.ask("I'm Jordan Lee", session_id=session)
    assert second.lead_state is LeadCaptureState.NAME_JUST_PROVIDED
    assert "Hi Jordan Lee!" in chat_model.last_user_message

    third = await engine.ask("What services do you offer?", session_id=session)
    assert third.lead_state is LeadCaptureState.NEED_EMAIL
    assert third.lead_form.show
    assert third.lead_form.name == "Jordan Lee"

    fourth = await engine.ask("jordan@example.com", session_id=session)
    assert fourth.lead_state is LeadCaptureState.COMPLETE
    assert fourth.lead_captured is True
    assert fourth.lead_form is None

    assert len(lead_store.leads) == 1
    lead = lead_store.leads[0]
    assert lead.name == "Jordan Lee"
    assert lead.email == "jordan@example.com"
    assert lead.session_id == session
    assert lead.valid_email is True

    record = await memory.get(session)
    assert record.lead_info.name == "Jordan Lee"
    assert record.lead_info.email == "jordan@example.com"
    assert record.lead_capture_in_progress is False


@pytest.mark.asyncio
async def test_client_ip_recorded_on_lead(engine, lead_store):
    client = ClientInfo(ip_address="203.0.113.7")
    await engine.ask("My name is Sam", session_id="s1", client=client)
    await engine.ask("sam@example.com", session_id="s1", client=client)
    assert lead_store.leads[0].ip_address == "203.0.113.7"
    assert lead_store.leads[0].chat_context["message"] == "sam@example.com"


@pytest.mark.asyncio
async def test_disposable_email_shows_form(engine, chat_model, lead_store):
    await engine.ask("My name is Sam", session_id="s1")

    response = await engine.ask("sam@mailinator.com", session_id="s1")

    assert response.lead_state is LeadCaptureState.INVALID_EMAIL
    assert response.lead_form.show
    assert response.lead_form.email == "sam@mailinator.com"
    assert "non-disposable" in chat_model.last_user_message
    assert lead_store.leads == []

    fixed = await engine.ask("use sam@example.com instead", session_id="s1")
    assert fixed.lead_state is LeadCaptureState.COMPLETE
    assert lead_store.leads[0].email == "sam@example.com"


@pytest.mark.asyncio
async def test_later_turn_reports_duplicate(engine):
    await engine.ask("My name is Sam", session_id="s1")
    await engine.ask("sam@example.com", session_id="s1")

    later = await engine.ask("What are your prices?", session_id="s1")

    assert later.lead_state is LeadCaptureState.COMPLETE
    assert later.lead_captured is False
    assert later.lead_message == ALREADY_REGISTERED


@pytest.mark.asyncio
async def test_authority_rejection_wins(store, embedder, chat_model, memory, settings):
    authority = RejectingAuthority()
    engine = _engine(store, embedder, chat_model, memory, settings, lead_store=authority)
    await engine.ask("My name is Sam", session_id="s1")

    response = await engine.ask("sam@example.com", session_id="s1")

    assert response.lead_state is LeadCaptureState.INVALID_EMAIL
    assert "Mailbox does not exist" in chat_model.last_user_message
    assert authority.leads == []


@pytest.mark.asyncio
async def test_unreachable_authority_falls_back_to_local(store, embedder, chat_model, memory, settings):
    authority = UnreachableAuthority()
    engine = _engine(store, embedder, chat_model, memory, settings, lead_store=authority)
    await engine.ask("My name is Sam", session_id="s1")

    response = await engine.ask("sam@example.com", session_id="s1")

    assert response.lead_state is LeadCaptureState.COMPLETE
    assert response.lead_captured is True


@pytest.mark.asyncio
async def test_lead_save_failure_does_not_fail_turn(store, embedder, chat_model, memory, settings):
    engine = _engine(store, embedder, chat_model, memory, settings, lead_store=CrashingLeadStore())
    await engine.ask("My name is Sam", session_id="s1")

    response = await engine.ask("sam@example.com", session_id="s1")

    assert response.answer == "Happy to help!"
    assert response.lead_state is LeadCaptureState.COMPLETE
    assert response.lead_captured is False
    assert response.lead_message == LEAD_SAVE_FAILED
    assert len((await memory.get("s1")).messages) == 4


# ------------------------------------------------------------------
# Streaming and analytics
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_ask_stream_is_stateless(engine, memory):
    session_id, stream = await engine.ask_stream(QUESTION, session_id="stream-1")
    chunks = [chunk async for chunk in stream]

    assert session_id == "stream-1"
    assert "".join(chunks).strip() == "Happy to help!"
    assert await memory.get("stream-1") is None


@pytest.mark.asyncio
async def test_ask_stream_validates(engine):
    with pytest.raises(ValidationError):
        await engine.ask_stream("")


@pytest.mark.asyncio
async def test_log_interaction_records_chat_and_gap(engine, analytics):
    response = await engine.ask(QUESTION)
    await engine.log_interaction(response, ClientInfo(origin="https://brand.test"))

    summary = analytics.chat_summary(days=1)
    assert summary["summary"]["total_chats"] == 1
    gaps = analytics.list_knowledge_gaps()
    assert [gap.question for gap in gaps] == [QUESTION]
    assert gaps[0].sample_sessions == [response.session_id]


@pytest.mark.asyncio
async def test_no_gap_while_capture_in_progress(engine, analytics):
    first = await engine.ask("Hello")
    response = await engine.ask(QUESTION, session_id=first.session_id)

    await engine.log_interaction(response)

    assert analytics.list_knowledge_gaps() == []


@pytest.mark.asyncio
async def test_log_interaction_swallows_store_failures(engine):
    response = await engine.ask(QUESTION)
    engine.analytics = BrokenAnalytics()
    await engine.log_interaction(response)
