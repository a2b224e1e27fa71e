"""Chat orchestration for the brand assistant.

One call to :meth:`ChatEngine.ask` is one chat turn: load the session's
memory, retrieve context, decide the lead-capture state, call the chat model,
persist the updated memory and, once a valid email is known, save the lead.
Analytics and knowledge-gap logging happen afterwards in
:meth:`ChatEngine.log_interaction`, which never raises.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import AsyncIterator, Iterable, List, Optional, Tuple

from ..config import Settings
from ..errors import DuplicateEmailError, ValidationError
from ..models import ChatMessage, EmailValidation, LeadInfo, LeadRecord, SearchResult
from ..storage.analytics import AnalyticsStore, ChatLogEntry
from ..storage.kv import SqliteKeyValueStore, KeyValueStore
from ..storage.leads import LeadStore, SupabaseLeadStore
from ..storage.vector_store import VectorStore, create_vector_store
from ..utils.lead_detection import (
    DEFAULT_PATTERNS,
    ExtractedLeadInfo,
    LeadPatterns,
    extract_lead_info,
    load_patterns,
    validate_email,
)
from .gaps import best_score, is_knowledge_gap
from .lead_capture import DEFAULT_DIRECTIVES, LeadCaptureState, LeadDecision, LeadDirectives, decide
from .llm import ChatModel, EmbeddingBackend, OpenAIChatModel, OpenAIEmbedder
from .memory import ConversationMemory, accumulated_lead_info, history

logger = logging.getLogger(__name__)

CONTEXT_PREAMBLE = "Here is relevant information to help answer the user's question:\n\n"
CONTEXT_SEPARATOR = "\n\n---\n\n"
EMPTY_KNOWLEDGE_BASE_NOTE = (
    "Note: The knowledge base is currently empty. You can still respond to greetings "
    "and provide the contact information from your system prompt, but you won't have "
    "specific content about services, events, or other details."
)
ALREADY_REGISTERED = "This email has already been registered"
LEAD_SAVE_FAILED = "Failed to save lead information"
GAP_CONTEXT_MIN_SCORE = 0.3


@dataclass
class ClientInfo:
    """Request metadata recorded alongside leads and chat logs."""

    ip_address: Optional[str] = None
    origin: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass
class LeadForm:
    show: bool
    name: Optional[str] = None
    email: Optional[str] = None


@dataclass
class ChatResponse:
    answer: str
    session_id: str
    question: str
    sources: List[str] = field(default_factory=list)
    references: List[SearchResult] = field(default_factory=list)
    lead_state: Optional[LeadCaptureState] = None
    lead_captured: Optional[bool] = None
    lead_message: Optional[str] = None
    lead_form: Optional[LeadForm] = None
    capture_was_in_progress: bool = False
    response_time_ms: int = 0


class ChatEngine:
    """Glue together memory, retrieval, lead capture and generation."""

    def __init__(
        self,
        store: VectorStore,
        *,
        embedder: EmbeddingBackend | None = None,
        chat_model: ChatModel | None = None,
        memory: ConversationMemory | None = None,
        lead_store: LeadStore | None = None,
        analytics: AnalyticsStore | None = None,
        settings: Settings | None = None,
        patterns: LeadPatterns = DEFAULT_PATTERNS,
        directives: LeadDirectives = DEFAULT_DIRECTIVES,
    ) -> None:
        self.settings = settings or Settings()
        self.store = store
        self.embedder = embedder or OpenAIEmbedder(
            model=self.settings.embedding_model,
            dimensions=self.settings.embedding_dimensions,
            api_key=self.settings.openai_api_key,
            base_url=self.settings.openai_base_url,
        )
        self.chat_model = chat_model or OpenAIChatModel(
            model=self.settings.chat_model,
            temperature=self.settings.temperature,
            max_tokens=self.settings.max_tokens,
            api_key=self.settings.openai_api_key,
            base_url=self.settings.openai_base_url,
        )
        self.memory = memory
        self.lead_store = lead_store
        self.analytics = analytics
        self.patterns = patterns
        self.directives = directives

    @classmethod
    def from_settings(cls, settings: Settings, *, kv: KeyValueStore | None = None) -> "ChatEngine":
        """Wire up the production collaborators described by ``settings``."""

        kv = kv or SqliteKeyValueStore(settings.kv_path)
        patterns = load_patterns(settings.lead_patterns_path) if settings.lead_patterns_path else DEFAULT_PATTERNS
        lead_store = None
        if settings.lead_capture_enabled:
            lead_store = SupabaseLeadStore(
                settings.supabase_url,
                settings.supabase_anon_key,
                table=settings.leads_table,
                patterns=patterns,
            )
        return cls(
            create_vector_store(settings.vector_store, kv, index_dir=settings.index_dir),
            memory=ConversationMemory(
                kv,
                ttl_seconds=settings.conversation_ttl,
                max_messages=settings.max_history_messages,
            ),
            lead_store=lead_store,
            analytics=AnalyticsStore(settings.analytics_path),
            settings=settings,
            patterns=patterns,
        )

    @property
    def lead_capture_enabled(self) -> bool:
        return self.lead_store is not None

    # ------------------------------------------------------------------
    # Prompt assembly
    # ------------------------------------------------------------------
    def _validate_message(self, message: Optional[str]) -> str:
        if not isinstance(message, str):
            raise ValidationError("Message is required")
        question = message.strip()
        if not question:
            raise ValidationError("Message cannot be empty")
        limit = self.settings.max_message_length
        if len(question) > limit:
            raise ValidationError(f"Message too long (max {limit} characters)")
        return question

    def _build_context(self, results: Iterable[SearchResult], min_score: float) -> str:
        return CONTEXT_SEPARATOR.join(result.content for result in results if result.score > min_score)

    def _build_messages(
        self,
        question: str,
        results: List[SearchResult],
        previous: List[ChatMessage],
        *,
        min_score: float,
    ) -> List[ChatMessage]:
        messages = [ChatMessage(role="system", content=self.settings.system_prompt)]
        context = self._build_context(results, min_score)
        if context:
            messages.append(ChatMessage(role="system", content=CONTEXT_PREAMBLE + context))
        elif not results:
            messages.append(ChatMessage(role="system", content=EMPTY_KNOWLEDGE_BASE_NOTE))
        messages.extend(previous)
        messages.append(ChatMessage(role="user", content=question))
        return messages

    def _sources(self, results: Iterable[SearchResult]) -> List[str]:
        sources: List[str] = []
        for result in results:
            url = result.url
            if result.score > self.settings.source_min_score and url and url not in sources:
                sources.append(url)
        return sources

    # ------------------------------------------------------------------
    # Lead capture
    # ------------------------------------------------------------------
    async def _validate_email(self, email: str) -> EmailValidation:
        """Local check first; the lead store's authority has the final word."""

        local = validate_email(email, self.patterns)
        if not local.valid or self.lead_store is None:
            return local
        try:
            return await self.lead_store.validate_email(email)
        except Exception:
            logger.warning("Email validation authority failed; using local result", exc_info=True)
            return local

    async def _decide(self, accumulated: LeadInfo, extracted: ExtractedLeadInfo) -> LeadDecision:
        email = extracted.email or accumulated.email
        validation = await self._validate_email(email) if email else None
        return decide(accumulated, extracted, validation, self.directives)

    async def _save_lead(
        self,
        lead_info: LeadInfo,
        question: str,
        session_id: str,
        client: ClientInfo,
    ) -> Tuple[bool, Optional[str]]:
        lead = LeadRecord(
            email=lead_info.email,
            name=lead_info.name,
            phone=lead_info.phone,
            ip_address=client.ip_address,
            chat_context={
                "message": question[:500],
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
            valid_email=True,
            session_id=session_id,
        )
        try:
            await self.lead_store.insert(lead)
        except DuplicateEmailError:
            logger.info("Lead %s already registered", lead.email)
            return False, ALREADY_REGISTERED
        except Exception:
            logger.exception("Lead capture failed for session %s", session_id)
            return False, LEAD_SAVE_FAILED
        logger.info("Captured lead for session %s", session_id)
        return True, None

    # ------------------------------------------------------------------
    # Chat turns
    # ------------------------------------------------------------------
    async def ask(
        self,
        message: Optional[str],
        *,
        session_id: Optional[str] = None,
        client: Optional[ClientInfo] = None,
    ) -> ChatResponse:
        started = time.monotonic()
        question = self._validate_message(message)
        session_id = session_id or str(uuid.uuid4())
        client = client or ClientInfo()

        conversation = await self.memory.get(session_id) if self.memory else None
        previous = history(conversation)
        accumulated = accumulated_lead_info(conversation)
        was_in_progress = conversation.lead_capture_in_progress if conversation else False

        query_embedding = await self.embedder.embed(question)
        results = await self.store.search(query_embedding, self.settings.top_k)
        messages = self._build_messages(
            question, results, previous, min_score=self.settings.context_min_score
        )

        extracted = ExtractedLeadInfo()
        decision: Optional[LeadDecision] = None
        next_in_progress = was_in_progress
        if self.lead_capture_enabled:
            extracted = extract_lead_info(question, self.patterns)
            decision = await self._decide(accumulated, extracted)
            next_in_progress = decision.capture_in_progress
            last = messages[-1]
            messages[-1] = ChatMessage(role=last.role, content=f"{last.content}\n\n{decision.directive}")
            logger.debug("Session %s lead state: %s", session_id, decision.state.value)

        answer = await self.chat_model.complete(messages)

        current = LeadInfo(name=extracted.name, email=extracted.email, phone=extracted.phone)
        if self.memory:
            await self.memory.append(
                session_id, ChatMessage(role="user", content=question), current, next_in_progress
            )
            await self.memory.append(session_id, ChatMessage(role="assistant", content=answer))

        lead_captured: Optional[bool] = None
        lead_message: Optional[str] = None
        if decision is not None and decision.state is LeadCaptureState.COMPLETE:
            lead_captured, lead_message = await self._save_lead(
                accumulated.merge(current), question, session_id, client
            )

        lead_form = None
        if decision is not None and decision.show_form:
            lead_form = LeadForm(show=True, name=decision.name, email=decision.email)

        return ChatResponse(
            answer=answer,
            session_id=session_id,
            question=question,
            sources=self._sources(results),
            references=list(results),
            lead_state=decision.state if decision else None,
            lead_captured=lead_captured,
            lead_message=lead_message,
            lead_form=lead_form,
            capture_was_in_progress=was_in_progress,
            response_time_ms=int((time.monotonic() - started) * 1000),
        )

    async def ask_stream(
        self, message: Optional[str], *, session_id: Optional[str] = None
    ) -> Tuple[str, AsyncIterator[str]]:
        """Retrieve context and return the session id with a reply stream.

        Streaming turns are stateless: no memory and no lead capture.
        """

        question = self._validate_message(message)
        session_id = session_id or str(uuid.uuid4())
        query_embedding = await self.embedder.embed(question)
        results = await self.store.search(query_embedding, self.settings.top_k)
        messages = self._build_messages(
            question, results, [], min_score=self.settings.stream_context_min_score
        )
        return session_id, self.chat_model.complete_stream(messages)

    async def log_interaction(self, response: ChatResponse, client: Optional[ClientInfo] = None) -> None:
        """Best-effort analytics for a finished turn; failures are only logged."""

        if self.analytics is None:
            return
        client = client or ClientInfo()

        try:
            entry = ChatLogEntry(
                session_id=response.session_id,
                message=response.question,
                response=response.answer,
                response_time_ms=response.response_time_ms,
                context_chunks=sum(1 for r in response.references if r.score > GAP_CONTEXT_MIN_SCORE),
                origin=client.origin,
                user_agent=client.user_agent,
            )
            await asyncio.to_thread(self.analytics.log_chat, entry)
        except Exception:
            logger.exception("Failed to log chat for session %s", response.session_id)

        try:
            if is_knowledge_gap(response.question, response.references, response.capture_was_in_progress):
                await asyncio.to_thread(
                    self.analytics.record_knowledge_gap,
                    response.question,
                    best_score(response.references),
                    response.session_id,
                )
        except Exception:
            logger.exception("Failed to log knowledge gap for session %s", response.session_id)
