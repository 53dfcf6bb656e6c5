"""
ViolationAnalyzer: asks a vision model whether the evidence supports the
claimed violation and turns its answer into a typed ViolationAssessment.

=== Parse ladder ===

Large-model output is often malformed or truncated, so a bad answer is not
fatal. Stages, in order:

  1. json_mode - request with JSON response mode, parse the text directly.
  2. extracted - re-issue the prompt without JSON mode, strip markdown
                 fences, parse the first balanced {...} span.
  3. salvaged  - no balanced span (output cut mid-object): close the open
                 string, drop the dangling key, append the closing braces.
  4. fallback  - synthesize confidence 0 / INSUFFICIENT_EVIDENCE with an
                 excerpt of the raw text.

Whatever the stage, the justification ends with the certainty phrase for the
final score (see analyzers.verdict.CertaintyBands).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .base_analyzer import (
    ImagePayload,
    VisionBackend,
    find_balanced_object,
    parse_json_object,
    salvage_truncated_object,
    strip_fences,
)
from .prompts import build_violation_prompt
from .verdict import CertaintyBands, Verdict, clamp_score


logger = logging.getLogger(__name__)

PARSE_STAGES = ("json_mode", "extracted", "salvaged", "fallback")
DEFAULT_EXCERPT_CHARS = 50


class AnalysisError(RuntimeError):
    """Raised when the model produced no text at all on either request."""


# ---------------------------------------------------------------------------
# Result type
# ---------------------------------------------------------------------------

@dataclass
class ViolationAssessment:
    """Structured output of the violation analyzer."""

    confidence_score: int                   # [0, 100]
    verdict: Verdict
    justification: str                      # ends with a certainty phrase
    parse_stage: str = "json_mode"          # one of PARSE_STAGES

    # Meta
    parse_error: str | None = None
    raw_response: str = field(default="", repr=False)

    def to_dict(self) -> dict:
        return {
            "confidence_score": self.confidence_score,
            "verdict": self.verdict.value,
            "justification": self.justification,
            "parse_stage": self.parse_stage,
            "parse_error": self.parse_error,
        }

    @classmethod
    def from_model_output(
        cls,
        data: dict,
        bands: CertaintyBands,
        *,
        parse_stage: str,
        raw_response: str = "",
    ) -> "ViolationAssessment":
        """Normalise a parsed model object into a valid assessment."""
        score = clamp_score(data.get("confidence_score", data.get("confidence")))
        comments = data.get("ai_comments", data.get("justification"))
        comments = "" if comments is None else str(comments)
        return cls(
            confidence_score=score,
            verdict=Verdict.parse(data.get("verdict")),
            justification=bands.enforce(comments, score),
            parse_stage=parse_stage,
            raw_response=raw_response,
        )

    @classmethod
    def error_result(
        cls,
        raw_response: str,
        error: str,
        bands: CertaintyBands,
        excerpt_chars: int = DEFAULT_EXCERPT_CHARS,
    ) -> "ViolationAssessment":
        """Fallback when every parse stage failed."""
        excerpt = "".join(c for c in raw_response[:excerpt_chars] if c not in '"\r\n').strip()
        text = f"Analysis yielded partial response: {excerpt}..." if excerpt else "Analysis yielded no usable response."
        return cls(
            confidence_score=0,
            verdict=Verdict.INSUFFICIENT_EVIDENCE,
            justification=bands.enforce(text, 0),
            parse_stage="fallback",
            parse_error=error,
            raw_response=raw_response,
        )


# ---------------------------------------------------------------------------
# Analyzer
# ---------------------------------------------------------------------------

class ViolationAnalyzer:
    """Runs the violation prompt against a vision backend with staged recovery."""

    def __init__(
        self,
        backend: VisionBackend,
        bands: CertaintyBands | None = None,
        excerpt_chars: int = DEFAULT_EXCERPT_CHARS,
    ):
        self.backend = backend
        self.bands = bands or CertaintyBands()
        self.excerpt_chars = excerpt_chars

    async def analyze(
        self,
        image: ImagePayload | None,
        category: str,
        remarks: str | None = None,
    ) -> ViolationAssessment:
        """
        Main entry point. Never raises for malformed output; raises
        AnalysisError only when neither request returned any text.
        """
        prompt = build_violation_prompt(
            category, remarks, has_image=image is not None, bands=self.bands
        )

        # Stage 1: JSON response mode
        try:
            raw = await self.backend.generate(prompt, image, json_mode=True)
            data = parse_json_object(strip_fences(raw))
            logger.info("Violation analysis parsed in JSON mode")
            return ViolationAssessment.from_model_output(
                data, self.bands, parse_stage="json_mode", raw_response=raw
            )
        except Exception as exc:
            logger.warning("JSON-mode violation analysis failed, retrying as text: %s", exc)

        try:
            raw = await self.backend.generate(prompt, image, json_mode=False)
        except Exception as exc:
            raise AnalysisError(
                f"Vision model returned no analysis: {str(exc) or type(exc).__name__}"
            ) from exc

        return self.parse_text(raw)

    def parse_text(self, raw: str) -> ViolationAssessment:
        """Stages 2-4 of the ladder, applied to a free-text completion."""
        text = strip_fences(raw)

        # Stage 2: first balanced object
        span = find_balanced_object(text)
        if span is not None:
            try:
                data = parse_json_object(span)
                return ViolationAssessment.from_model_output(
                    data, self.bands, parse_stage="extracted", raw_response=raw
                )
            except ValueError as exc:
                return self._fallback(raw, f"Extracted object did not parse: {exc}")

        # Stage 3: truncated object
        salvaged = salvage_truncated_object(text)
        if salvaged is None:
            return self._fallback(raw, "No JSON object found in response")
        try:
            data = parse_json_object(salvaged)
        except ValueError as exc:
            return self._fallback(raw, f"Salvaged fragment did not parse: {exc}")
        logger.warning("Violation analysis recovered from a truncated response")
        return ViolationAssessment.from_model_output(
            data, self.bands, parse_stage="salvaged", raw_response=raw
        )

    def _fallback(self, raw: str, error: str) -> ViolationAssessment:
        logger.warning("Violation analysis unparseable, using fallback: %s", error)
        return ViolationAssessment.error_result(raw, error, self.bands, self.excerpt_chars)
