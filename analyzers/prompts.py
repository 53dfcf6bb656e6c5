"""
Prompt templates for the vision analyzers.

Both prompts ask for JSON only. The violation prompt documents the confidence
bands and the certainty phrase rules so the model usually produces a
justification that already satisfies them; the analyzer still enforces the
phrase afterwards.
"""

from __future__ import annotations

from .verdict import (
    RESEARCH_MORE,
    RESEARCH_MORE_DOUBTFUL,
    VERY_SURE,
    CertaintyBands,
    Verdict,
)


PLATE_PROMPT = """\
Look at this image. Find any vehicle number plate.
Indian plates: white/yellow rectangle, black text e.g. HR26DQ5588 DL1CAB1234 MH12AB1234.
Even if it is slightly blurry or partial, try your very best to extract every readable character.

Respond with ONLY a JSON object:
{
  "detected_plate": "<plate string without spaces, e.g. HR26DQ5588, or null if absolutely no plate is visible>"
}"""


_VIOLATION_TEMPLATE = """\
You are a senior traffic violation analyst for the city traffic police.
{image_line}

Claimed violation: {category}
Reporter remarks: {remarks}

Task:
1. Decide whether the image visibly supports the claimed violation.
2. Give an integer confidence_score from 0 to 100 that a real traffic violation is shown:
   - 90-100: clear, undeniable evidence of the claimed violation
   - 70-89: strong evidence, minor ambiguity
   - 45-69: plausible but partially obscured or ambiguous
   - 20-44: weak evidence, the violation cannot be confirmed
   - 0-19: no violation visible or the image is irrelevant
3. Write ai_comments: 40-100 words describing what is visible and why you scored it that way.
   End ai_comments with "{very_sure}" if confidence_score >= {very_sure_at},
   "{research_more}" if it is {research_more_at}-{research_more_to},
   or "{doubtful}" if it is below {research_more_at}.
4. Choose exactly one verdict: {labels}.

Respond with ONLY a JSON object (no markdown, no text before or after it):
{{
  "confidence_score": <integer 0-100>,
  "verdict": "<{labels_pipe}>",
  "ai_comments": "<40-100 words>"
}}"""


def build_violation_prompt(
    category: str,
    remarks: str | None,
    *,
    has_image: bool,
    bands: CertaintyBands | None = None,
) -> str:
    """Render the violation-analysis prompt for one report."""
    bands = bands or CertaintyBands()
    labels = [v.value for v in Verdict]
    return _VIOLATION_TEMPLATE.format(
        image_line=(
            "Analyse the attached evidence image."
            if has_image
            else "No image could be loaded; assess the claim from the text alone and be conservative."
        ),
        category=category or "Unknown Violation",
        remarks=(remarks or "").strip() or "none",
        very_sure=VERY_SURE,
        research_more=RESEARCH_MORE,
        doubtful=RESEARCH_MORE_DOUBTFUL,
        very_sure_at=bands.very_sure,
        research_more_at=bands.research_more,
        research_more_to=bands.very_sure - 1,
        labels=", ".join(labels),
        labels_pipe="|".join(labels),
    )
