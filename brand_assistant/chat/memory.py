"""Per-session conversation memory kept in a key-value store."""

from __future__ import annotations

import json
import logging
import time
from typing import Callable, List, Optional

from ..models import ChatMessage, ConversationRecord, LeadInfo
from ..storage.kv import KeyValueStore

logger = logging.getLogger(__name__)

CONVERSATION_TTL = 60 * 60 * 24
MAX_MESSAGES = 10
KEY_PREFIX = "conversation:"


class ConversationMemory:
    """Trailing message window and lead details for each chat session.

    Records expire a fixed time after the last write, whatever the activity.
    Storage failures never fail a turn: a failed read is treated as an empty
    history and a failed write is logged.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        *,
        ttl_seconds: int = CONVERSATION_TTL,
        max_messages: int = MAX_MESSAGES,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.kv = kv
        self.ttl_seconds = ttl_seconds
        self.max_messages = max_messages
        self._clock = clock

    @staticmethod
    def key(session_id: str) -> str:
        return f"{KEY_PREFIX}{session_id}"

    async def get(self, session_id: str) -> Optional[ConversationRecord]:
        try:
            raw = await self.kv.get(self.key(session_id))
            if raw is None:
                return None
            return ConversationRecord.from_dict(json.loads(raw))
        except Exception:
            logger.exception("Error reading conversation %s", session_id)
            return None

    async def save(self, session_id: str, record: ConversationRecord) -> None:
        trimmed = ConversationRecord(
            messages=record.messages[-self.max_messages :],
            lead_info=record.lead_info,
            lead_capture_in_progress=record.lead_capture_in_progress,
            updated_at=self._clock(),
        )
        try:
            await self.kv.put(
                self.key(session_id),
                json.dumps(trimmed.to_dict()),
                ttl=self.ttl_seconds,
            )
        except Exception:
            logger.exception("Error saving conversation %s", session_id)

    async def append(
        self,
        session_id: str,
        message: ChatMessage,
        lead_info: Optional[LeadInfo] = None,
        lead_capture_in_progress: Optional[bool] = None,
    ) -> ConversationRecord:
        """Add ``message`` to the session and merge in new lead details.

        Lead fields only change when ``lead_info`` carries a non-empty value.
        ``lead_capture_in_progress=None`` keeps the previously stored flag.
        """

        existing = await self.get(session_id) or ConversationRecord(lead_info=LeadInfo())
        in_progress = (
            lead_capture_in_progress
            if lead_capture_in_progress is not None
            else existing.lead_capture_in_progress
        )
        updated = ConversationRecord(
            messages=[*existing.messages, message],
            lead_info=existing.lead_info.merge(lead_info),
            lead_capture_in_progress=in_progress,
        )
        await self.save(session_id, updated)
        updated.messages = updated.messages[-self.max_messages :]
        return updated


def history(record: Optional[ConversationRecord]) -> List[ChatMessage]:
    """User and assistant messages of a conversation, oldest first."""

    if record is None:
        return []
    return [message for message in record.messages if message.role in ("user", "assistant")]


def accumulated_lead_info(record: Optional[ConversationRecord]) -> LeadInfo:
    if record is None:
        return LeadInfo()
    return record.lead_info
