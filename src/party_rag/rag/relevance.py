"""
Relevance Classification

Maps a similarity score to a discrete bucket for display. Thresholds are
exclusive: a score equal to a threshold falls into the lower bucket.
"""

from __future__ import annotations

import enum

HIGH_SIMILARITY_THRESHOLD = 0.75
MEDIUM_SIMILARITY_THRESHOLD = 0.6
LOW_SIMILARITY_THRESHOLD = 0.5


class RelevanceLevel(str, enum.Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    VERY_LOW = "VERY_LOW"

    @property
    def note(self) -> str:
        """Label shown to end users alongside a citation."""
        return _NOTES[self]


_NOTES = {
    RelevanceLevel.HIGH: "Høy relevans",
    RelevanceLevel.MEDIUM: "Middels relevans",
    RelevanceLevel.LOW: "Lav relevans",
    RelevanceLevel.VERY_LOW: "Meget lav relevans",
}


def classify(similarity: float) -> RelevanceLevel:
    if similarity > HIGH_SIMILARITY_THRESHOLD:
        return RelevanceLevel.HIGH
    if similarity > MEDIUM_SIMILARITY_THRESHOLD:
        return RelevanceLevel.MEDIUM
    if similarity > LOW_SIMILARITY_THRESHOLD:
        return RelevanceLevel.LOW
    return RelevanceLevel.VERY_LOW


def get_relevance_note(similarity: float) -> str:
    return classify(similarity).note
