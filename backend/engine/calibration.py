"""
Classification confidence calibration.

Raw classifier confidence is optimistic. Structural signals that correlate with
misclassification subtract fixed penalties; the result is clamped and banded.
"""

from __future__ import annotations

import math
from typing import List

from models.documents import CalibrationInput, CalibrationResult

AMBIGUITY_PENALTY = 0.10
MULTI_FORM_PENALTY = 0.15
NO_YEAR_PENALTY = 0.05
LOW_TEXT_PENALTY = 0.10
LOW_TEXT_THRESHOLD = 200

CONFIDENCE_FLOOR = 0.10
CONFIDENCE_CEILING = 0.99

TIER_CEILINGS = {
    "TIER1_ANCHOR": 0.99,
    "TIER2_STRUCTURAL": 0.95,
    "TIER3_LLM": 0.92,
    "FALLBACK": 0.50,
}

HIGH_BAND_MIN = 0.88
MEDIUM_BAND_MIN = 0.75


def derive_band(score: float) -> str:
    if score >= HIGH_BAND_MIN:
        return "HIGH"
    if score >= MEDIUM_BAND_MIN:
        return "MEDIUM"
    return "LOW"


def _penalties(inp: CalibrationInput) -> List[tuple]:
    out = []
    if any((c or "").strip() for c in inp.confusion_candidates):
        out.append(("AMBIGUITY", AMBIGUITY_PENALTY))
    forms = {f.strip().upper() for f in inp.form_numbers if f and f.strip()}
    if len(forms) > 1:
        out.append(("MULTI_FORM", MULTI_FORM_PENALTY))
    if inp.tax_year is None and not inp.detected_years:
        out.append(("NO_YEAR_SIGNAL", NO_YEAR_PENALTY))
    if inp.text_length < LOW_TEXT_THRESHOLD:
        out.append(("LOW_TEXT_DENSITY", LOW_TEXT_PENALTY))
    return out


def calibrate_confidence(inp: CalibrationInput) -> CalibrationResult:
    base = inp.base_confidence if math.isfinite(inp.base_confidence) else 0.0
    base = min(1.0, max(0.0, base))
    penalties = _penalties(inp)
    score = base - sum(amount for _, amount in penalties)
    ceiling = min(CONFIDENCE_CEILING, TIER_CEILINGS.get((inp.tier or "").upper(), CONFIDENCE_CEILING))
    score = round(min(ceiling, max(CONFIDENCE_FLOOR, score)), 4)
    return CalibrationResult(
        confidence=score,
        band=derive_band(score),
        raw_confidence=base,
        penalties=[name for name, _ in penalties],
    )
