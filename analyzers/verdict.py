"""
Verdict labels and certainty phrasing shared by every analysis path.

=== Certainty phrases ===

Every justification stored for a report ends with exactly one of three fixed
phrases, chosen from the confidence score:

    score >= very_sure                  -> "I am very sure."
    research_more <= score < very_sure  -> "Research more."
    score < research_more               -> "Research more, but I don't think so."

The cut-offs (75 / 45) were tuned by hand and are not derived from any
calibration data, so they live in a small config object instead of being
hard-coded in the analyzers.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from enum import Enum


class Verdict(str, Enum):
    """Categorical assessment of how likely the claimed violation is."""

    CONFIRMED_VIOLATION = "CONFIRMED_VIOLATION"
    PROBABLE_VIOLATION = "PROBABLE_VIOLATION"
    INSUFFICIENT_EVIDENCE = "INSUFFICIENT_EVIDENCE"
    NO_VIOLATION_DETECTED = "NO_VIOLATION_DETECTED"

    @classmethod
    def parse(cls, value: object) -> "Verdict":
        """Map a model-provided label onto a Verdict; unknown -> INSUFFICIENT_EVIDENCE."""
        if isinstance(value, cls):
            return value
        label = re.sub(r"[\s\-]+", "_", str(value or "").strip()).upper()
        try:
            return cls(label)
        except ValueError:
            return cls.INSUFFICIENT_EVIDENCE


VERY_SURE = "I am very sure."
RESEARCH_MORE = "Research more."
RESEARCH_MORE_DOUBTFUL = "Research more, but I don't think so."

CERTAINTY_PHRASES = (VERY_SURE, RESEARCH_MORE, RESEARCH_MORE_DOUBTFUL)

_TRAILING_PUNCT_RE = re.compile(r"[.!?]+$")


@dataclass(frozen=True)
class CertaintyBands:
    """Score thresholds that select the closing certainty phrase."""

    very_sure: int = 75
    research_more: int = 45

    def __post_init__(self) -> None:
        if not 0 < self.research_more < self.very_sure <= 100:
            raise ValueError(
                f"Invalid certainty bands: research_more={self.research_more}, "
                f"very_sure={self.very_sure}"
            )

    def phrase_for(self, score: int) -> str:
        if score >= self.very_sure:
            return VERY_SURE
        if score >= self.research_more:
            return RESEARCH_MORE
        return RESEARCH_MORE_DOUBTFUL

    def enforce(self, text: str | None, score: int) -> str:
        """
        Return `text` guaranteed to end with the phrase for `score`.

        Text that already ends with the correct band phrase is kept as-is.
        Otherwise trailing sentence punctuation is stripped (along with any
        other certainty phrase the model wrote) and the band phrase appended.
        """
        text = (text or "").strip()
        phrase = self.phrase_for(score)
        if text.endswith(phrase):
            return text
        for other in CERTAINTY_PHRASES:
            if text.endswith(other):
                text = text[: -len(other)].rstrip()
                break
        text = _TRAILING_PUNCT_RE.sub("", text).rstrip()
        return f"{text} {phrase}" if text else phrase


def clamp_score(value: object) -> int:
    """Coerce a model-provided score into an int in [0, 100]; junk -> 0."""
    if isinstance(value, bool):
        return 0
    try:
        score = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(score):
        return 0
    return int(max(0, min(100, round(score))))
