# src/routine_alerts/alerts/risk_classifier.py

from __future__ import annotations

"""
Weather risk classification.

classify() is a pure function of (due time, samples, tolerance, threshold):
no I/O, no clock, no mutation. It never raises for well-formed inputs; samples
that do not look like ForecastSample values are treated as "no data".
"""

import math
from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from ..weather.models import ForecastSample, WeatherCondition

DEFAULT_TOLERANCE_SECONDS = 3600.0
DEFAULT_PROBABILITY_THRESHOLD = 0.4

ADVERSE_CONDITIONS = frozenset({WeatherCondition.RAIN, WeatherCondition.STORM, WeatherCondition.DRIZZLE})


class RiskReason(StrEnum):
    PROBABILITY = "probability"
    CONDITION = "condition"


@dataclass(slots=True, frozen=True)
class AlertDecision:
    at_risk: bool
    sample: ForecastSample | None = None
    location_name: str | None = None
    reason: RiskReason | None = None


def _is_well_formed(sample: Any) -> bool:
    if not isinstance(sample, ForecastSample):
        return False
    ts = sample.sample_ts
    if isinstance(ts, bool) or not isinstance(ts, (int, float)) or not math.isfinite(ts):
        return False
    if not isinstance(sample.condition, WeatherCondition):
        return False
    pop = sample.precipitation_probability
    if pop is None:
        return True
    if isinstance(pop, bool) or not isinstance(pop, (int, float)):
        return False
    return math.isfinite(pop) and 0.0 <= pop <= 1.0


def risk_reason(sample: ForecastSample, probability_threshold: float) -> RiskReason | None:
    """
    Why a single sample counts as adverse, or None.

    Probability is the canonical signal; the condition group is the fallback for
    entries without probability data (and still counts when both are present).
    """
    pop = sample.precipitation_probability
    if pop is not None and pop >= probability_threshold:
        return RiskReason.PROBABILITY
    if sample.condition in ADVERSE_CONDITIONS:
        return RiskReason.CONDITION
    return None


def classify(
    due_ts: float,
    samples: Iterable[Any],
    *,
    tolerance_seconds: float = DEFAULT_TOLERANCE_SECONDS,
    probability_threshold: float = DEFAULT_PROBABILITY_THRESHOLD,
    location_name: str | None = None,
) -> AlertDecision:
    """
    Decide whether adverse weather is expected around due_ts.

    Considers samples with |sample_ts - due_ts| <= tolerance_seconds (inclusive).
    Candidates are scanned closest-to-due first (earlier sample wins a tie) and
    the scan stops at the first adverse one.
    """
    tol = abs(float(tolerance_seconds))
    window = [
        s for s in samples
        if _is_well_formed(s) and abs(float(s.sample_ts) - due_ts) <= tol
    ]
    window.sort(key=lambda s: (abs(float(s.sample_ts) - due_ts), s.sample_ts))

    for sample in window:
        reason = risk_reason(sample, probability_threshold)
        if reason is not None:
            return AlertDecision(at_risk=True, sample=sample, location_name=location_name, reason=reason)

    return AlertDecision(at_risk=False, location_name=location_name)
