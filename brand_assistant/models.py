"""Core domain models for the brand assistant."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


@dataclass
class Document:
    """A raw document ingested from one of the knowledge sources."""

    id: str
    source: str
    content: str
    metadata: Dict[str, str] = field(default_factory=dict)


@dataclass
class Chunk:
    """A bounded slice of a document sized for embedding."""

    content: str
    index: int


@dataclass
class StoredVector:
    """A chunk persisted together with its embedding."""

    id: str
    content: str
    embedding: List[float]
    metadata: Optional[Dict[str, str]] = None


@dataclass
class SearchResult:
    """A retrieval result from the vector store."""

    content: str
    score: float
    metadata: Optional[Dict[str, str]] = None

    @property
    def url(self) -> Optional[str]:
        if self.metadata:
            return self.metadata.get("url")
        return None


@dataclass
class ChatMessage:
    role: str
    content: str


@dataclass
class LeadInfo:
    """Contact details accumulated over a conversation."""

    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None

    def merge(self, delta: Optional["LeadInfo"]) -> "LeadInfo":
        """Return a copy updated with the non-empty fields of ``delta``.

        A field is only overwritten when the new value is non-empty, so facts
        captured earlier in a session are never erased.
        """

        if delta is None:
            return LeadInfo(self.name, self.email, self.phone)
        return LeadInfo(
            name=delta.name or self.name,
            email=delta.email or self.email,
            phone=delta.phone or self.phone,
        )

    def to_dict(self) -> Dict[str, str]:
        return {key: value for key, value in asdict(self).items() if value}


@dataclass
class ConversationRecord:
    """Per-session conversation state persisted in the key-value store."""

    messages: List[ChatMessage] = field(default_factory=list)
    lead_info: LeadInfo = field(default_factory=LeadInfo)
    lead_capture_in_progress: bool = False
    updated_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "messages": [asdict(message) for message in self.messages],
            "leadInfo": self.lead_info.to_dict(),
            "leadCaptureInProgress": self.lead_capture_in_progress,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ConversationRecord":
        lead_info = payload.get("leadInfo") or {}
        return cls(
            messages=[ChatMessage(**item) for item in payload.get("messages", [])],
            lead_info=LeadInfo(
                name=lead_info.get("name"),
                email=lead_info.get("email"),
                phone=lead_info.get("phone"),
            ),
            lead_capture_in_progress=bool(payload.get("leadCaptureInProgress", False)),
            updated_at=float(payload.get("updatedAt", 0.0)),
        )


@dataclass
class LeadRecord:
    """A captured sales lead. ``email`` is unique across all leads."""

    email: str
    name: Optional[str] = None
    phone: Optional[str] = None
    ip_address: Optional[str] = None
    chat_context: Optional[Dict[str, str]] = None
    valid_email: Optional[bool] = None
    session_id: Optional[str] = None


class EmailRejection(str, Enum):
    INVALID_FORMAT = "invalid_format"
    DISPOSABLE_DOMAIN = "disposable_domain"


_REJECTION_REASONS = {
    EmailRejection.INVALID_FORMAT: "Invalid email format",
    EmailRejection.DISPOSABLE_DOMAIN: "Please use a non-disposable email address",
}


@dataclass
class EmailValidation:
    """Outcome of an email check; ``rejection`` is set when invalid."""

    valid: bool
    rejection: Optional[EmailRejection] = None
    message: Optional[str] = None

    @property
    def reason(self) -> Optional[str]:
        if self.message:
            return self.message
        if self.rejection is not None:
            return _REJECTION_REASONS[self.rejection]
        return None

    @classmethod
    def ok(cls) -> "EmailValidation":
        return cls(valid=True)

    @classmethod
    def rejected(cls, rejection: EmailRejection, message: Optional[str] = None) -> "EmailValidation":
        return cls(valid=False, rejection=rejection, message=message)


class GapStatus(str, Enum):
    ACTIVE = "active"
    RESOLVED = "resolved"


@dataclass
class KnowledgeGap:
    """A question the knowledge base could not answer with confidence."""

    id: int
    question: str
    question_normalized: str
    best_score: float
    occurrence_count: int
    first_seen_at: str
    last_seen_at: str
    sample_sessions: List[str] = field(default_factory=list)
    status: GapStatus = GapStatus.ACTIVE
    resolved_at: Optional[str] = None
    resolution_note: Optional[str] = None
