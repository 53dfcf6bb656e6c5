"""Tests for verdict labels, score clamping and certainty phrasing."""

import pytest

from analyzers.verdict import (
    CERTAINTY_PHRASES,
    RESEARCH_MORE,
    RESEARCH_MORE_DOUBTFUL,
    VERY_SURE,
    CertaintyBands,
    Verdict,
    clamp_score,
)


def test_phrase_bands_cover_every_score():
    bands = CertaintyBands()
    for score in range(0, 101):
        text = bands.enforce("The rider is not wearing a helmet.", score)
        if score >= 75:
            assert text.endswith(VERY_SURE)
        elif score >= 45:
            assert text.endswith(RESEARCH_MORE)
            assert not text.endswith(RESEARCH_MORE_DOUBTFUL)
        else:
            assert text.endswith(RESEARCH_MORE_DOUBTFUL)


def test_enforce_keeps_correct_phrase():
    bands = CertaintyBands()
    text = "Helmet clearly missing. I am very sure."
    assert bands.enforce(text, 90) == text


def test_enforce_replaces_wrong_phrase():
    bands = CertaintyBands()
    out = bands.enforce("Helmet clearly missing. I am very sure.", 30)
    assert out == "Helmet clearly missing Research more, but I don't think so."
    assert sum(out.count(p) for p in CERTAINTY_PHRASES) == 1


def test_enforce_does_not_confuse_overlapping_phrases():
    bands = CertaintyBands()
    # "Research more." is not a suffix of the doubtful phrase, and vice versa.
    out = bands.enforce("Blurry frame. Research more, but I don't think so.", 60)
    assert out.endswith(" Research more.")
    assert "don't think so" not in out


def test_enforce_empty_text_is_just_the_phrase():
    bands = CertaintyBands()
    assert bands.enforce("", 80) == VERY_SURE
    assert bands.enforce(None, 10) == RESEARCH_MORE_DOUBTFUL


def test_custom_bands():
    bands = CertaintyBands(very_sure=90, research_more=20)
    assert bands.phrase_for(89) == RESEARCH_MORE
    assert bands.phrase_for(90) == VERY_SURE
    assert bands.phrase_for(19) == RESEARCH_MORE_DOUBTFUL


@pytest.mark.parametrize("very_sure,research_more", [(45, 75), (50, 50), (101, 45), (75, 0)])
def test_invalid_bands_rejected(very_sure, research_more):
    with pytest.raises(ValueError):
        CertaintyBands(very_sure=very_sure, research_more=research_more)


def test_verdict_parse():
    assert Verdict.parse("CONFIRMED_VIOLATION") is Verdict.CONFIRMED_VIOLATION
    assert Verdict.parse("probable violation") is Verdict.PROBABLE_VIOLATION
    assert Verdict.parse("no-violation-detected") is Verdict.NO_VIOLATION_DETECTED
    assert Verdict.parse("MAYBE") is Verdict.INSUFFICIENT_EVIDENCE
    assert Verdict.parse(None) is Verdict.INSUFFICIENT_EVIDENCE


@pytest.mark.parametrize(
    "value,expected",
    [(82, 82), ("67", 67), (150, 100), (-5, 0), (55.6, 56), ("high", 0), (None, 0),
     (True, 0), (float("nan"), 0)],
)
def test_clamp_score(value, expected):
    assert clamp_score(value) == expected


@pytest.mark.parametrize("value", [float("inf"), float("-inf"), "1e999", "-Infinity"])
def test_clamp_score_non_finite_is_zero(value):
    assert clamp_score(value) == 0
