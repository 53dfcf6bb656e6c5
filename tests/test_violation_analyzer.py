"""Tests for the violation analyzer parse ladder and JSON salvage helpers."""

import asyncio
import json

import pytest

from analyzers.base_analyzer import (
    BackendError,
    ImagePayload,
    VisionBackend,
    find_balanced_object,
    salvage_truncated_object,
)
from analyzers.verdict import RESEARCH_MORE, RESEARCH_MORE_DOUBTFUL, VERY_SURE, Verdict
from analyzers.violation_analyzer import AnalysisError, ViolationAnalyzer


class DummyBackend(VisionBackend):
    """Returns scripted responses; an Exception instance in the script is raised."""

    name = "dummy"

    def __init__(self, *responses):
        super().__init__(timeout_s=1.0)
        self.responses = list(responses)
        self.calls = []

    async def _call_api(self, prompt, image, json_mode):
        self.calls.append({"prompt": prompt, "image": image, "json_mode": json_mode})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


IMAGE = ImagePayload(data=b"\xff\xd8fake-jpeg")

VALID = json.dumps({
    "confidence_score": 82,
    "verdict": "CONFIRMED_VIOLATION",
    "ai_comments": "The rider on the left has no helmet and the plate is visible. I am very sure.",
})


def run(coro):
    return asyncio.run(coro)


def test_json_mode_success():
    backend = DummyBackend(VALID)
    result = run(ViolationAnalyzer(backend).analyze(IMAGE, "No Helmet", "near the signal"))
    assert result.parse_stage == "json_mode"
    assert result.confidence_score == 82
    assert result.verdict is Verdict.CONFIRMED_VIOLATION
    assert result.justification.endswith(VERY_SURE)
    assert len(backend.calls) == 1
    assert backend.calls[0]["json_mode"] is True
    assert backend.calls[0]["image"] is IMAGE
    assert "No Helmet" in backend.calls[0]["prompt"]
    assert "near the signal" in backend.calls[0]["prompt"]


def test_json_in_fence_still_json_mode():
    backend = DummyBackend(f"```json\n{VALID}\n```")
    result = run(ViolationAnalyzer(backend).analyze(IMAGE, "No Helmet"))
    assert result.parse_stage == "json_mode"
    assert result.confidence_score == 82


def test_extracted_from_prose_on_second_request():
    prose = f"Sure! Here is my analysis:\n{VALID}\nLet me know if you need more."
    backend = DummyBackend("not json at all", prose)
    result = run(ViolationAnalyzer(backend).analyze(IMAGE, "No Helmet"))
    assert result.parse_stage == "extracted"
    assert result.confidence_score == 82
    assert [c["json_mode"] for c in backend.calls] == [True, False]


def test_json_mode_backend_error_falls_back_to_text():
    backend = DummyBackend(BackendError("json mode unsupported"), VALID)
    result = run(ViolationAnalyzer(backend).analyze(IMAGE, "No Helmet"))
    assert result.parse_stage == "extracted"
    assert result.verdict is Verdict.CONFIRMED_VIOLATION


def test_truncated_response_is_salvaged():
    truncated = '{"confidence_score": 67, "verdict": "PROBABLE_VIOLATION", "ai_comments": "Vehicle appears to cro'
    backend = DummyBackend("", truncated)
    result = run(ViolationAnalyzer(backend).analyze(IMAGE, "Signal Jumping"))
    assert result.parse_stage == "salvaged"
    assert result.confidence_score == 67
    assert result.verdict is Verdict.PROBABLE_VIOLATION
    assert result.justification.startswith("Vehicle appears to cro")
    assert result.justification.endswith(RESEARCH_MORE)


def test_truncated_after_verdict_key():
    truncated = '{"confidence_score": 30, "verdict":"PROB'
    analyzer = ViolationAnalyzer(DummyBackend())
    result = analyzer.parse_text(truncated)
    assert result.parse_stage == "salvaged"
    assert result.confidence_score == 30
    # Partial label is not a valid verdict.
    assert result.verdict is Verdict.INSUFFICIENT_EVIDENCE
    assert result.justification == RESEARCH_MORE_DOUBTFUL


def test_unparseable_text_uses_fallback():
    backend = DummyBackend("garbage", "The image shows a busy street with many cars")
    result = run(ViolationAnalyzer(backend).analyze(IMAGE, "Illegal Parking"))
    assert result.parse_stage == "fallback"
    assert result.confidence_score == 0
    assert result.verdict is Verdict.INSUFFICIENT_EVIDENCE
    assert result.justification.startswith("Analysis yielded partial response: The image shows")
    assert result.justification.endswith(RESEARCH_MORE_DOUBTFUL)
    assert result.parse_error


def test_values_are_clamped_and_invalid_verdict_defaults():
    data = json.dumps({"confidence_score": 140, "verdict": "DEFINITELY", "ai_comments": "Clear."})
    result = run(ViolationAnalyzer(DummyBackend(data)).analyze(IMAGE, "Overspeeding"))
    assert result.confidence_score == 100
    assert result.verdict is Verdict.INSUFFICIENT_EVIDENCE
    assert result.justification == f"Clear {VERY_SURE}"


def test_missing_phrase_is_appended():
    data = json.dumps({"confidence_score": 50, "verdict": "PROBABLE_VIOLATION", "ai_comments": "Looks parked on the footpath."})
    result = run(ViolationAnalyzer(DummyBackend(data)).analyze(IMAGE, "Illegal Parking"))
    assert result.justification == f"Looks parked on the footpath {RESEARCH_MORE}"


def test_no_text_on_either_request_raises():
    backend = DummyBackend(BackendError("boom"), BackendError("still boom"))
    with pytest.raises(AnalysisError):
        run(ViolationAnalyzer(backend).analyze(IMAGE, "No Helmet"))


def test_text_only_prompt_when_image_missing():
    backend = DummyBackend(VALID)
    run(ViolationAnalyzer(backend).analyze(None, "No Helmet"))
    assert backend.calls[0]["image"] is None
    assert "No image could be loaded" in backend.calls[0]["prompt"]


def test_find_balanced_object_ignores_braces_in_strings():
    text = 'prefix {"a": "has } brace", "b": {"c": 1}} suffix'
    assert json.loads(find_balanced_object(text)) == {"a": "has } brace", "b": {"c": 1}}
    assert find_balanced_object('{"a": 1') is None
    assert find_balanced_object("no object") is None


def test_salvage_closes_arrays_and_drops_dangling_key():
    assert json.loads(salvage_truncated_object('{"a": [1, 2')) == {"a": [1, 2]}
    assert json.loads(salvage_truncated_object('{"a": 1, "b":')) == {"a": 1}
    assert json.loads(salvage_truncated_object('{"a": 1,')) == {"a": 1}
    assert salvage_truncated_object("nothing here") is None


def test_overflowing_score_stays_on_the_ladder():
    raw = 'Here: {"confidence_score": 1e999, "verdict": "PROBABLE_VIOLATION", "ai_comments": "Car on the footpath."}'
    result = ViolationAnalyzer(DummyBackend()).parse_text(raw)
    assert result.parse_stage == "extracted"
    assert result.confidence_score == 0
    assert result.verdict is Verdict.PROBABLE_VIOLATION
    assert result.justification.endswith(RESEARCH_MORE_DOUBTFUL)


def test_overflowing_score_in_json_mode():
    backend = DummyBackend('{"confidence_score": Infinity, "verdict": "CONFIRMED_VIOLATION", "ai_comments": "x"}')
    result = run(ViolationAnalyzer(backend).analyze(IMAGE, "No Helmet"))
    assert result.parse_stage == "json_mode"
    assert result.confidence_score == 0
