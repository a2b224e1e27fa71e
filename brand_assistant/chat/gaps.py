"""Knowledge-gap detection: questions retrieval could not answer well."""

from __future__ import annotations

import re
from typing import Sequence

from ..models import SearchResult
from ..utils.lead_detection import has_contact_info

GREETING_RE = re.compile(
    r"^(hi|hello|hey|hiya|howdy|good\s+(morning|afternoon|evening)|thanks|thank\s+you|ok|okay|yes|no|bye|goodbye)\b",
    re.IGNORECASE,
)
MIN_MESSAGE_LENGTH = 15
GAP_SCORE_THRESHOLD = 0.3


def normalize_question(question: str) -> str:
    """Lowercase, strip punctuation and collapse whitespace."""

    stripped = re.sub(r"[^\w\s]", "", question.lower().strip())
    return re.sub(r"\s+", " ", stripped).strip()


def is_noise(message: str) -> bool:
    """Greetings, acknowledgements, very short messages and contact details."""

    if len(message) < MIN_MESSAGE_LENGTH:
        return True
    if GREETING_RE.match(message.strip()):
        return True
    return has_contact_info(message)


def is_knowledge_gap(
    message: str,
    results: Sequence[SearchResult],
    lead_capture_in_progress: bool,
) -> bool:
    if lead_capture_in_progress:
        return False
    if is_noise(message):
        return False
    if not results:
        return True
    return all(result.score <= GAP_SCORE_THRESHOLD for result in results)


def best_score(results: Sequence[SearchResult]) -> float:
    return max((result.score for result in results), default=0.0)
