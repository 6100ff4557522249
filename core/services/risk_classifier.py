"""
Threshold-based neuropathy risk classification.

Two pure steps:
- aggregate: reduce a batch of glove readings to per-signal means
- classify_metrics: walk an ordered rule table, first match wins

Any single channel below its floor is enough to escalate the tier. Confidence
is a fixed value per tier, not an estimate derived from the data.
"""

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

import structlog

from core.domain.errors import InvalidInput
from core.domain.models import AggregateMetrics, Classification, Measurement, RiskLevel

logger = structlog.get_logger(__name__)

_SIGNALS = ("pressure", "temperature", "emg")


@dataclass(frozen=True)
class RiskRule:
    """One row of the rule table. Matches when any mean is strictly below its floor."""

    risk: RiskLevel
    diagnosis: str
    confidence: float
    recommendations: tuple[str, ...]
    max_pressure: float = -math.inf
    max_temperature: float = -math.inf
    max_emg: float = -math.inf

    def matches(self, metrics: AggregateMetrics) -> bool:
        return (
            metrics.avg_pressure < self.max_pressure
            or metrics.avg_temperature < self.max_temperature
            or metrics.avg_emg < self.max_emg
        )


# Evaluated top to bottom; the last rule is the catch-all.
RISK_RULES: tuple[RiskRule, ...] = (
    RiskRule(
        risk=RiskLevel.HIGH,
        diagnosis="Suspected diabetic neuropathy",
        confidence=0.87,
        recommendations=(
            "Specialist consultation recommended",
            "Increased monitoring required",
            "Consider supplementary testing",
        ),
        max_pressure=50.0,
        max_temperature=30.0,
        max_emg=20.0,
    ),
    RiskRule(
        risk=RiskLevel.MODERATE,
        diagnosis="Possible early signs",
        confidence=0.78,
        recommendations=("Regular monitoring", "Re-evaluate in 1 month"),
        max_pressure=70.0,
        max_temperature=32.0,
        max_emg=40.0,
    ),
)

DEFAULT_RULE = RiskRule(
    risk=RiskLevel.LOW,
    diagnosis="Normal",
    confidence=0.95,
    recommendations=("Continue routine follow-up",),
)


def ensure_finite(measurement: Measurement) -> None:
    """Reject readings carrying NaN or infinity before they reach storage."""
    bad = [name for name in _SIGNALS if not math.isfinite(getattr(measurement, name))]
    if bad:
        raise InvalidInput(
            "measurement values must be finite",
            details={"fields": bad, "timestamp": measurement.timestamp.isoformat()},
        )


def aggregate(measurements: Sequence[Measurement]) -> AggregateMetrics:
    """
    Arithmetic mean of each signal across the batch.

    Raises:
        InvalidInput: if the batch is empty or any reading is non-finite.
    """
    if not measurements:
        raise InvalidInput("measurements must be non-empty")

    totals = dict.fromkeys(_SIGNALS, 0.0)
    for measurement in measurements:
        ensure_finite(measurement)
        for name in _SIGNALS:
            totals[name] += getattr(measurement, name)

    count = len(measurements)
    return AggregateMetrics(
        avg_pressure=totals["pressure"] / count,
        avg_temperature=totals["temperature"] / count,
        avg_emg=totals["emg"] / count,
    )


def match_rule(metrics: AggregateMetrics, rules: Iterable[RiskRule] = RISK_RULES) -> RiskRule:
    for rule in rules:
        if rule.matches(metrics):
            return rule
    return DEFAULT_RULE


def classify_metrics(metrics: AggregateMetrics) -> Classification:
    """Map the three means to a risk tier. Pure: same means, same answer."""
    rule = match_rule(metrics)
    return Classification(
        risk=rule.risk,
        diagnosis=rule.diagnosis,
        confidence=rule.confidence,
        recommendations=rule.recommendations,
    )


def classify(measurements: Sequence[Measurement]) -> tuple[AggregateMetrics, Classification]:
    """Aggregate then classify a non-empty batch of readings."""
    metrics = aggregate(measurements)
    classification = classify_metrics(metrics)

    logger.debug(
        "measurements_classified",
        count=len(measurements),
        avg_pressure=round(metrics.avg_pressure, 3),
        avg_temperature=round(metrics.avg_temperature, 3),
        avg_emg=round(metrics.avg_emg, 3),
        risk=classification.risk.value,
    )
    return metrics, classification
