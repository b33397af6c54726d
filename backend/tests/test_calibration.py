import math

import pytest

from engine.calibration import CONFIDENCE_FLOOR, calibrate_confidence, derive_band
from models.documents import CalibrationInput


def _clean(**kw) -> CalibrationInput:
    base = dict(base_confidence=0.9, tier="TIER1_ANCHOR", tax_year=2024, text_length=5000)
    base.update(kw)
    return CalibrationInput(**base)


@pytest.mark.parametrize(
    "score,band",
    [(0.99, "HIGH"), (0.88, "HIGH"), (0.87, "MEDIUM"), (0.75, "MEDIUM"), (0.74, "LOW"), (0.10, "LOW")],
)
def test_band_boundaries(score, band) -> None:
    assert derive_band(score) == band


def test_clean_input_keeps_base() -> None:
    r = calibrate_confidence(_clean())
    assert r.confidence == 0.9
    assert r.band == "HIGH"
    assert r.penalties == []


def test_each_penalty_applies() -> None:
    assert calibrate_confidence(_clean(confusion_candidates=["PFS"])).confidence == 0.8
    assert calibrate_confidence(_clean(form_numbers=["1120", "1065"])).confidence == 0.75
    assert calibrate_confidence(_clean(form_numbers=["1120", " 1120 "])).confidence == 0.9
    assert calibrate_confidence(_clean(tax_year=None)).confidence == 0.85
    assert calibrate_confidence(_clean(tax_year=None, detected_years=[2023])).confidence == 0.9
    assert calibrate_confidence(_clean(text_length=199)).confidence == 0.8
    assert calibrate_confidence(_clean(text_length=200)).confidence == 0.9


def test_result_stays_in_bounds() -> None:
    worst = calibrate_confidence(CalibrationInput(
        base_confidence=0.2, confusion_candidates=["X"], form_numbers=["A", "B"], text_length=0,
    ))
    assert worst.confidence == CONFIDENCE_FLOOR
    assert worst.band == "LOW"
    assert set(worst.penalties) == {"AMBIGUITY", "MULTI_FORM", "NO_YEAR_SIGNAL", "LOW_TEXT_DENSITY"}

    best = calibrate_confidence(_clean(base_confidence=1.5))
    assert best.confidence == 0.99


def test_tier_ceiling() -> None:
    assert calibrate_confidence(_clean(base_confidence=0.98, tier="TIER3_LLM")).confidence == 0.92
    assert calibrate_confidence(_clean(base_confidence=0.98, tier="FALLBACK")).confidence == 0.5


def test_non_finite_base_is_zero() -> None:
    r = calibrate_confidence(_clean(base_confidence=math.nan))
    assert r.raw_confidence == 0.0
    assert r.confidence == CONFIDENCE_FLOOR


def test_adding_a_penalty_never_raises_confidence() -> None:
    for base in (0.3, 0.55, 0.8, 0.95):
        plain = calibrate_confidence(_clean(base_confidence=base)).confidence
        penalized = calibrate_confidence(_clean(base_confidence=base, confusion_candidates=["LEASE"])).confidence
        assert penalized <= plain
