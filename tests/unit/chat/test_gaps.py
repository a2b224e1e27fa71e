"""Tests for knowledge-gap detection."""

from __future__ import annotations

import pytest

from brand_assistant.chat.gaps import best_score, is_knowledge_gap, is_noise, normalize_question
from brand_assistant.models import SearchResult


def _results(*scores):
    return [SearchResult(content=f"chunk {i}", score=score) for i, score in enumerate(scores)]


def test_normalize_question():
    assert normalize_question("  What are   your PRICES?! ") == "what are your prices"


@pytest.mark.parametrize(
    "message",
    [
        "Hello",
        "hi",
        "thank you so much for that",
        "Good morning, anyone there?",
        "my email is a@b.co please",
        "okay then that works",
    ],
)
def test_noise(message):
    assert is_noise(message)


def test_real_question_is_not_noise():
    assert not is_noise("Do you run workshops for schools?")


def test_low_scores_are_a_gap():
    assert is_knowledge_gap("Do you run workshops for schools?", _results(0.2, 0.3), False)


def test_one_confident_result_is_not_a_gap():
    assert not is_knowledge_gap("Do you run workshops for schools?", _results(0.2, 0.31), False)


def test_no_results_is_a_gap():
    assert is_knowledge_gap("Do you run workshops for schools?", [], False)


def test_lead_capture_in_progress_suppresses_gap():
    assert not is_knowledge_gap("Do you run workshops for schools?", [], True)


def test_noise_is_never_a_gap():
    assert not is_knowledge_gap("Hello", [], False)


def test_best_score():
    assert best_score(_results(0.1, 0.25)) == 0.25
    assert best_score([]) == 0.0
