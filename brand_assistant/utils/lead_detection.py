"""Lead detection utilities.

Scan a single chat message for contact details (name, email, phone) and
validate email addresses. The patterns and word lists live in
:class:`LeadPatterns` so they can be tuned from a JSON file without touching
the extraction logic.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import FrozenSet, List, Optional, Pattern, Sequence

from ..models import EmailRejection, EmailValidation

MAX_EMAIL_LENGTH = 254
MIN_PHONE_DIGITS = 7

EMAIL_RE = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}", re.IGNORECASE)
EMAIL_SHAPE_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_RE = re.compile(r"(?:\+?\d{1,3}[-.\s]?)?\(?\d{1,4}\)?[-.\s]?\d{1,4}[-.\s]?\d{1,9}")
SPECIAL_CHARS_RE = re.compile(r"[@#$%^&*()+=\[\]{}|\\<>/]")

# Ordered by specificity, most explicit first.
DEFAULT_NAME_PATTERNS = (
    r"(?:my name is|name is)\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+)?)",
    # two words required so that "I am interested" is not a name
    r"(?:i'm|i am)\s+([A-Z][a-z]+\s+[A-Z][a-z]+)",
    r"this is\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+)?)",
    r"([A-Z][a-z]+(?:\s+[A-Z][a-z]+)?)\s+(?:here|speaking)",
    r"^([A-Z][a-z]+(?:\s+[A-Z][a-z]+)?)\s*[,.]?\s*(?:my email|email|here)",
    r"call me\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+)?)",
)

DEFAULT_NOT_NAMES = frozenset(
    """
    hi hello hey yes no ok okay thanks thank please
    help contact sales support info question inquiry
    interested demo pricing quote meeting call email
    subscribe register book schedule service services
    the a an is are was were be been being
    have has had do does did will would could should
    can may might must shall need want like more
    about with from your you me my i we us our
    what when where why how which who whom whose
    """.split()
)

DEFAULT_DISPOSABLE_DOMAINS = frozenset(
    {
        "mailinator.com",
        "guerrillamail.com",
        "tempmail.com",
        "10minutemail.com",
        "throwaway.email",
        "fakeinbox.com",
        "trashmail.com",
        "getnada.com",
        "temp-mail.org",
        "tempail.com",
        "mohmal.com",
        "dispostable.com",
        "maildrop.cc",
        "yopmail.com",
        "sharklasers.com",
        "guerrillamailblock.com",
        "pokemail.net",
        "spam4.me",
        "grr.la",
        "getairmail.com",
    }
)

DEFAULT_INTENT_KEYWORDS = (
    "interested",
    "want to learn",
    "learn more",
    "contact",
    "get in touch",
    "reach out",
    "demo",
    "pricing",
    "quote",
    "schedule",
    "meeting",
    "consultation",
    "partnership",
    "collaborate",
    "work together",
    "services",
    "hire",
    "book",
    "appointment",
    "call me",
    "call back",
    "speak to",
    "talk to",
    "sign up",
    "register",
    "subscribe",
)


@dataclass(frozen=True)
class LeadPatterns:
    """Tunable data driving the heuristic extractors."""

    name_patterns: Sequence[str] = DEFAULT_NAME_PATTERNS
    not_names: FrozenSet[str] = DEFAULT_NOT_NAMES
    disposable_domains: FrozenSet[str] = DEFAULT_DISPOSABLE_DOMAINS
    intent_keywords: Sequence[str] = DEFAULT_INTENT_KEYWORDS
    _compiled: List[Pattern[str]] = field(default_factory=list, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        self._compiled.extend(re.compile(pattern, re.IGNORECASE) for pattern in self.name_patterns)

    @property
    def compiled_name_patterns(self) -> List[Pattern[str]]:
        return self._compiled


DEFAULT_PATTERNS = LeadPatterns()


def load_patterns(path: str | Path) -> LeadPatterns:
    """Load extractor tuning data from a JSON file.

    Keys that are absent keep their built-in defaults. Word lists are matched
    case-insensitively.
    """

    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    unknown = set(payload) - {"name_patterns", "not_names", "disposable_domains", "intent_keywords"}
    if unknown:
        raise ValueError(f"Unknown lead pattern keys: {sorted(unknown)}")
    return LeadPatterns(
        name_patterns=tuple(payload.get("name_patterns", DEFAULT_NAME_PATTERNS)),
        not_names=frozenset(word.lower() for word in payload.get("not_names", DEFAULT_NOT_NAMES)),
        disposable_domains=frozenset(
            domain.lower() for domain in payload.get("disposable_domains", DEFAULT_DISPOSABLE_DOMAINS)
        ),
        intent_keywords=tuple(keyword.lower() for keyword in payload.get("intent_keywords", DEFAULT_INTENT_KEYWORDS)),
    )


@dataclass
class ExtractedLeadInfo:
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    has_lead_intent: bool = False


def detect_lead_intent(message: str, patterns: LeadPatterns = DEFAULT_PATTERNS) -> bool:
    """Return True when the message asks for sales contact or services."""

    lowered = message.lower()
    return any(keyword in lowered for keyword in patterns.intent_keywords)


def extract_email(text: str) -> Optional[str]:
    match = EMAIL_RE.search(text)
    return match.group(0).lower() if match else None


def extract_phone(text: str) -> Optional[str]:
    """Return the first phone-like number, reduced to digits and a leading plus."""

    match = PHONE_RE.search(text)
    if not match:
        return None
    cleaned = re.sub(r"[^\d+]", "", match.group(0))
    if len(re.sub(r"\D", "", cleaned)) < MIN_PHONE_DIGITS:
        return None
    return cleaned


def _contains_common_word(words: Sequence[str], patterns: LeadPatterns) -> bool:
    return any(word.lower() in patterns.not_names for word in words)


def extract_name(text: str, patterns: LeadPatterns = DEFAULT_PATTERNS) -> Optional[str]:
    """Extract a person's name from a message.

    Explicit phrasings ("my name is ...", "call me ...") are tried first, in
    order; a candidate containing a common word is skipped. Failing that, a
    short message of one to three plain words is taken to be the name itself.
    """

    for pattern in patterns.compiled_name_patterns:
        match = pattern.search(text)
        if match and match.group(1):
            candidate = match.group(1).strip()
            if not _contains_common_word(candidate.split(), patterns):
                return candidate

    trimmed = text.strip()
    words = trimmed.split()
    if not 1 <= len(words) <= 3:
        return None
    if _contains_common_word(words, patterns):
        return None
    if EMAIL_RE.search(trimmed) or "?" in trimmed or SPECIAL_CHARS_RE.search(trimmed):
        return None
    if not all(len(word) >= 2 for word in words):
        return None
    return " ".join(word[:1].upper() + word[1:].lower() for word in words)


def is_valid_email_format(email: str) -> bool:
    return bool(EMAIL_SHAPE_RE.match(email)) and len(email) <= MAX_EMAIL_LENGTH


def is_disposable_email(email: str, patterns: LeadPatterns = DEFAULT_PATTERNS) -> bool:
    _, _, domain = email.partition("@")
    return bool(domain) and domain.lower() in patterns.disposable_domains


def validate_email(email: str, patterns: LeadPatterns = DEFAULT_PATTERNS) -> EmailValidation:
    """Offline format and disposable-domain check."""

    if not is_valid_email_format(email):
        return EmailValidation.rejected(EmailRejection.INVALID_FORMAT)
    if is_disposable_email(email, patterns):
        return EmailValidation.rejected(EmailRejection.DISPOSABLE_DOMAIN)
    return EmailValidation.ok()


def extract_lead_info(message: str, patterns: LeadPatterns = DEFAULT_PATTERNS) -> ExtractedLeadInfo:
    return ExtractedLeadInfo(
        name=extract_name(message, patterns),
        email=extract_email(message),
        phone=extract_phone(message),
        has_lead_intent=detect_lead_intent(message, patterns),
    )


def has_contact_info(message: str) -> bool:
    """True when the message carries an email address or a phone number."""

    return bool(extract_email(message) or extract_phone(message))
