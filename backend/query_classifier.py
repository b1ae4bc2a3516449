"""
Query Classifier for talk mode

Decides WHETHER a spoken question needs the camera at all.
The context assembler then decides WHAT goes into the request.

Keyword heuristic only: a false negative sends a factual question through the
vision branch, a false positive answers a visual question without images.
Both degrade, neither fails.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Tuple


class QueryKind(Enum):
    """Which branch of the talk flow a question takes."""
    GENERAL_KNOWLEDGE = "general_knowledge"
    VISUAL_CONTEXT = "visual_context"


# Any policy mapping utterance text to a QueryKind can be plugged into the controller
Classifier = Callable[[str], QueryKind]


@dataclass
class ClassifierConfig:
    """Tunable marker list for the keyword classifier."""
    general_knowledge_markers: Tuple[str, ...] = field(default_factory=lambda: (
        # Factual question forms
        "who is", "who was", "who invented", "who wrote", "who discovered",
        "who won", "what does the word", "meaning of", "define ", "definition of",
        "history of",
        # Named entities
        "capital of", "country", "countries", "prime minister", "president",
        "population", "currency of", "language of",
        # Temporal
        "what time is it", "what is the time", "what day is", "what is the date",
        "today's date", "what year", "when did", "when was",
        # Quantitative
        "how many days", "how many people live", "how far is", "distance between",
        "how old is", "square root", "multiplied by", "divided by", "percent of",
    ))


GENERAL_KNOWLEDGE_MARKERS: Tuple[str, ...] = ClassifierConfig().general_knowledge_markers


class KeywordClassifier:
    """Case-insensitive substring match against general-knowledge markers."""

    def __init__(self, config: ClassifierConfig | None = None):
        if config is None:
            config = ClassifierConfig()
        self.markers = tuple(m.lower() for m in config.general_knowledge_markers)

    def __call__(self, text: str) -> QueryKind:
        return self.classify(text)

    def classify(self, text: str) -> QueryKind:
        lowered = (text or "").lower()
        if any(marker in lowered for marker in self.markers):
            return QueryKind.GENERAL_KNOWLEDGE
        return QueryKind.VISUAL_CONTEXT


def classify(text: str) -> QueryKind:
    """Classify with the default marker list."""
    return _default_classifier.classify(text)


def always_visual_context(text: str) -> QueryKind:
    """
    Alternative policy: every question gets the image pair attached and the
    system prompt alone decides whether the images matter.
    """
    return QueryKind.VISUAL_CONTEXT


_default_classifier = KeywordClassifier()
