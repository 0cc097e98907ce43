from __future__ import annotations

import re
from collections.abc import Iterable

DEFAULT_TOPIC = "java"
DEFAULT_EXCLUSIONS = ("javascript", "java script", "java-script")


class RelevanceFilter:
    """
    Topic match on a vacancy title with a list of near-miss phrases removed first.

    "Senior JavaScript / Java developer" -> decoys replaced by a space -> "java" still found.
    Replacing with a space keeps the neighbours of a removed decoy from gluing into a match.
    """

    def __init__(self, topic: str = DEFAULT_TOPIC, exclusions: Iterable[str] = DEFAULT_EXCLUSIONS) -> None:
        topic = (topic or "").strip().lower()
        if not topic:
            raise ValueError("topic cannot be empty")
        self.topic = topic
        self.exclusions = tuple(e.strip().lower() for e in exclusions if e and e.strip())
        # Longest first so "java script" wins over a shorter overlapping phrase.
        ordered = sorted(self.exclusions, key=len, reverse=True)
        self._decoys = re.compile("|".join(re.escape(e) for e in ordered), re.IGNORECASE) if ordered else None

    def is_relevant(self, title: str) -> bool:
        text = (title or "").lower()
        if self._decoys is not None:
            text = self._decoys.sub(" ", text)
        return self.topic in text
