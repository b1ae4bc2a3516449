"""
Tests for the talk-mode query classifier.
"""
import pytest

from query_classifier import (
    ClassifierConfig,
    KeywordClassifier,
    QueryKind,
    always_visual_context,
    classify,
)


@pytest.mark.parametrize("text", [
    "who is the prime minister of India",
    "What is the capital of France?",
    "WHAT TIME IS IT",
    "when did the second world war end",
    "how far is the moon from earth",
    "what is the population of Japan",
    "what is the meaning of serendipity",
])
def test_general_knowledge_markers(text):
    assert classify(text) is QueryKind.GENERAL_KNOWLEDGE


@pytest.mark.parametrize("text", [
    "what is in front of me",
    "is there a car in front of me",
    "can I cross now",
    "where is the door",
    "read the sign",
    "",
])
def test_visual_questions(text):
    assert classify(text) is QueryKind.VISUAL_CONTEXT


def test_none_text_is_visual():
    assert classify(None) is QueryKind.VISUAL_CONTEXT


def test_custom_markers_replace_defaults():
    classifier = KeywordClassifier(ClassifierConfig(general_knowledge_markers=("Weather",)))

    assert classifier("what's the weather like") is QueryKind.GENERAL_KNOWLEDGE
    assert classifier("who is the prime minister of India") is QueryKind.VISUAL_CONTEXT


def test_always_visual_policy_ignores_text():
    assert always_visual_context("who is the prime minister of India") is QueryKind.VISUAL_CONTEXT
