"""Tests for the SQLite analytics store."""

from __future__ import annotations

import pytest

from brand_assistant.models import GapStatus
from brand_assistant.storage.analytics import AnalyticsStore, ChatLogEntry


def _entry(session_id="s1", message="What are your prices?", **kwargs):
    return ChatLogEntry(
        session_id=session_id,
        message=message,
        response=kwargs.pop("response", "Our prices start at $10."),
        response_time_ms=kwargs.pop("response_time_ms", 120),
        context_chunks=kwargs.pop("context_chunks", 2),
        **kwargs,
    )


# ------------------------------------------------------------------
# Chat logs
# ------------------------------------------------------------------


def test_chat_summary_counts(analytics):
    analytics.log_chat(_entry("a"))
    analytics.log_chat(_entry("a", response_time_ms=80))
    analytics.log_chat(_entry("b", message="Where are you located?"))

    summary = analytics.chat_summary(days=7)

    assert summary["period"] == "7 days"
    assert summary["summary"]["total_chats"] == 3
    assert summary["summary"]["unique_sessions"] == 2
    assert summary["topQuestions"][0] == {"message": "What are your prices?", "count": 2}
    assert len(summary["daily"]) == 1
    assert len(summary["recentChats"]) == 3


def test_log_chat_truncates_long_text(analytics):
    analytics.log_chat(_entry(message="q" * 600, response="r" * 1500, origin="https://brand.test"))

    recent = analytics.chat_summary()["recentChats"][0]
    assert len(recent["message"]) == 500
    assert len(recent["response"]) == 1000


def test_in_memory_database():
    store = AnalyticsStore(":memory:")
    store.log_chat(_entry())
    assert store.chat_summary()["summary"]["total_chats"] == 1
    store.close()


# ------------------------------------------------------------------
# Knowledge gaps
# ------------------------------------------------------------------


def test_gap_deduplicated_on_normalized_question(analytics):
    analytics.record_knowledge_gap("What are your prices?", 0.1, "s1")
    gap = analytics.record_knowledge_gap("what are your PRICES", 0.2, "s2")

    assert gap.occurrence_count == 2
    assert gap.question == "What are your prices?"
    assert gap.question_normalized == "what are your prices"
    assert gap.sample_sessions == ["s1", "s2"]
    assert len(analytics.list_knowledge_gaps()) == 1


def test_gap_keeps_best_score(analytics):
    analytics.record_knowledge_gap("Do you ship abroad?", 0.1, "s1")
    analytics.record_knowledge_gap("Do you ship abroad?", 0.25, "s1")
    gap = analytics.record_knowledge_gap("Do you ship abroad?", 0.2, "s1")

    assert gap.best_score == pytest.approx(0.25)
    assert gap.sample_sessions == ["s1"]


def test_gap_sample_sessions_capped(analytics):
    for i in range(7):
        gap = analytics.record_knowledge_gap("Do you ship abroad?", 0.0, f"s{i}")

    assert gap.occurrence_count == 7
    assert gap.sample_sessions == ["s0", "s1", "s2", "s3", "s4"]


def test_resolved_gap_starts_fresh_row(analytics):
    first = analytics.record_knowledge_gap("Do you ship abroad?", 0.0, "s1")
    assert analytics.resolve_knowledge_gap(first.id, "Added shipping page")

    again = analytics.record_knowledge_gap("Do you ship abroad?", 0.0, "s2")

    assert again.id != first.id
    assert again.occurrence_count == 1
    resolved = analytics.list_knowledge_gaps(status="resolved")
    assert [gap.id for gap in resolved] == [first.id]
    assert resolved[0].status is GapStatus.RESOLVED
    assert resolved[0].resolution_note == "Added shipping page"
    assert resolved[0].resolved_at is not None


def test_resolving_twice_keeps_first_resolution(analytics):
    gap = analytics.record_knowledge_gap("Do you ship abroad?", 0.0, "s1")
    assert analytics.resolve_knowledge_gap(gap.id, "Added shipping page")

    assert analytics.resolve_knowledge_gap(gap.id, "Second note") is True

    [resolved] = analytics.list_knowledge_gaps(status="resolved")
    assert resolved.resolution_note == "Added shipping page"


def test_resolve_missing_gap(analytics):
    assert analytics.resolve_knowledge_gap(999) is False


def test_list_gaps_ordered_by_occurrences(analytics):
    for _ in range(3):
        analytics.record_knowledge_gap("Do you ship abroad?", 0.0, "s1")
    analytics.record_knowledge_gap("Is parking available?", 0.0, "s1")
    for _ in range(2):
        analytics.record_knowledge_gap("Can I bring my dog?", 0.0, "s1")

    gaps = analytics.list_knowledge_gaps()

    assert [gap.question for gap in gaps] == [
        "Do you ship abroad?",
        "Can I bring my dog?",
        "Is parking available?",
    ]
    assert len(analytics.list_knowledge_gaps(limit=2)) == 2


def test_list_gaps_rejects_unknown_status(analytics):
    with pytest.raises(ValueError):
        analytics.list_knowledge_gaps(status="archived")


def test_gap_summary(analytics):
    analytics.record_knowledge_gap("Do you ship abroad?", 0.2, "s1")
    analytics.record_knowledge_gap("Do you ship abroad?", 0.2, "s2")
    other = analytics.record_knowledge_gap("Is parking available?", 0.1, "s1")
    analytics.resolve_knowledge_gap(other.id)

    result = analytics.knowledge_gap_summary()

    assert result["summary"]["total_gaps"] == 2
    assert result["summary"]["active_gaps"] == 1
    assert result["summary"]["resolved_gaps"] == 1
    assert result["summary"]["total_occurrences"] == 3
    assert [gap["question"] for gap in result["topGaps"]] == ["Do you ship abroad?"]


def test_chat_summary_reports_active_gaps(analytics):
    analytics.record_knowledge_gap("Do you ship abroad?", 0.2, "s1")
    analytics.record_knowledge_gap("Do you ship abroad?", 0.2, "s2")

    gaps = analytics.chat_summary()["knowledgeGaps"]
    assert gaps == {"active_gaps": 1, "total_gap_occurrences": 2}
