"""
Anomaly Detection
=================

Compares a company's observed metrics against stage bounds using
FEATHERED tolerance zones, so severity is graded rather than binary.

ZONES (for a bound pair [min, max]):
====================================
- within:   [min + innerBuffer, max - innerBuffer]       no anomaly
- warning:  inside [min, max] but within innerBuffer      LOW (early signal)
- tolerance: outside a hard bound, inside the soft bound  capped at MEDIUM
- beyond:   outside the soft bound                        full ratio severity

    innerBuffer = (max - min) * inner
    softMin     = min - min * outer
    softMax     = max + max * outer

GUARANTEES:
===========
- Pure function of (company, stage params, now); no I/O
- Anomalies are recomputed every run and never stored
- Anomaly identity is type + entity id
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
import math
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from ..contracts.base import EntityRef, Severity, days_between, round_half_up
from ..contracts.records import Company
from ..raw.stage_params import StageParams, next_stage, previous_stage, stage_params
from .runway import company_runway


# =============================================================================
# TYPES
# =============================================================================

class AnomalyType(Enum):
    RUNWAY_BELOW_MIN = "RUNWAY_BELOW_MIN"
    RUNWAY_ABOVE_MAX = "RUNWAY_ABOVE_MAX"
    BURN_BELOW_MIN = "BURN_BELOW_MIN"
    BURN_ABOVE_MAX = "BURN_ABOVE_MAX"
    EMPLOYEES_BELOW_MIN = "EMPLOYEES_BELOW_MIN"
    EMPLOYEES_ABOVE_MAX = "EMPLOYEES_ABOVE_MAX"
    REVENUE_BELOW_MIN = "REVENUE_BELOW_MIN"
    REVENUE_ABOVE_MAX = "REVENUE_ABOVE_MAX"
    REVENUE_MISSING_REQUIRED = "REVENUE_MISSING_REQUIRED"
    RAISE_BELOW_MIN = "RAISE_BELOW_MIN"
    RAISE_ABOVE_MAX = "RAISE_ABOVE_MAX"
    STAGE_MISMATCH_METRICS = "STAGE_MISMATCH_METRICS"
    NRR_BELOW_THRESHOLD = "NRR_BELOW_THRESHOLD"
    GROSS_MARGIN_BELOW_THRESHOLD = "GROSS_MARGIN_BELOW_THRESHOLD"
    CAC_ABOVE_THRESHOLD = "CAC_ABOVE_THRESHOLD"
    HIRING_PLAN_BEHIND = "HIRING_PLAN_BEHIND"
    LOGO_RETENTION_LOW = "LOGO_RETENTION_LOW"
    GRR_BELOW_THRESHOLD = "GRR_BELOW_THRESHOLD"
    NPS_BELOW_THRESHOLD = "NPS_BELOW_THRESHOLD"
    OPEN_POSITIONS_ABOVE_MAX = "OPEN_POSITIONS_ABOVE_MAX"
    PAYING_CUSTOMERS_BELOW_MIN = "PAYING_CUSTOMERS_BELOW_MIN"
    ACV_BELOW_MIN = "ACV_BELOW_MIN"
    ACV_ABOVE_MAX = "ACV_ABOVE_MAX"
    RAISED_TO_DATE_LOW = "RAISED_TO_DATE_LOW"
    LAST_RAISE_UNDERSIZE = "LAST_RAISE_UNDERSIZE"
    COMPANY_AGE_STAGE_MISMATCH = "COMPANY_AGE_STAGE_MISMATCH"


class Direction(Enum):
    WITHIN = "within"
    WARNING = "warning"
    BELOW = "below"
    ABOVE = "above"
    MISSING = "missing"


@dataclass
class ToleranceConfig:
    """Feathering for one metric. Mutable so callers can tune it."""
    inner: float = 0.15
    outer: float = 0.20
    symmetric: bool = False
    critical_floor: Optional[float] = None


TOLERANCE_CONFIG: Dict[str, ToleranceConfig] = {
    "runway": ToleranceConfig(inner=0.15, outer=0.20, symmetric=False, critical_floor=3),
    "burn": ToleranceConfig(inner=0.10, outer=0.25, symmetric=True),
    "employees": ToleranceConfig(inner=0.20, outer=0.30, symmetric=True),
    "revenue": ToleranceConfig(inner=0.15, outer=0.25),
    "round_target": ToleranceConfig(inner=0.10, outer=0.30, symmetric=True),
    "nrr": ToleranceConfig(inner=0.10, outer=0.15),
    "gross_margin": ToleranceConfig(inner=0.15, outer=0.20),
    "cac": ToleranceConfig(inner=0.10, outer=0.25),
    "logo_retention": ToleranceConfig(inner=0.10, outer=0.15),
    "grr": ToleranceConfig(),
    "nps": ToleranceConfig(),
    "open_positions": ToleranceConfig(),
    "paying_customers": ToleranceConfig(),
    "acv": ToleranceConfig(),
    "raised_to_date": ToleranceConfig(),
    "last_raise_amount": ToleranceConfig(),
    "founded": ToleranceConfig(symmetric=True),
}

DEFAULT_TOLERANCE = ToleranceConfig()


@dataclass(frozen=True)
class FeatheredDeviation:
    """Where a value sits relative to a feathered bound pair."""
    direction: Direction
    ratio: Optional[float] = None
    feathered_ratio: Optional[float] = None
    in_tolerance_zone: bool = False
    tolerance_position: float = 0.0
    position: Optional[float] = None
    deviation: float = 0.0
    bound_approaching: Optional[str] = None
    soft_min: Optional[float] = None
    soft_max: Optional[float] = None


_EVIDENCE_KEYS: Tuple[Tuple[str, str], ...] = (
    ("actual", "actual"),
    ("min", "min"),
    ("max", "max"),
    ("target", "target"),
    ("ratio", "ratio"),
    ("feathered_ratio", "featheredRatio"),
    ("in_tolerance_zone", "inToleranceZone"),
    ("gap", "gap"),
    ("excess", "excess"),
    ("critical_floor", "criticalFloor"),
    ("early_warning", "earlyWarning"),
    ("required", "required"),
    ("direction", "direction"),
    ("current_stage", "currentStage"),
    ("suggested_stage", "suggestedStage"),
    ("metrics_above_max", "metricsAboveMax"),
    ("metrics_below_min", "metricsBelowMin"),
    ("feathered", "feathered"),
    ("explain", "explain"),
)


@dataclass(frozen=True)
class Evidence:
    """Why an anomaly fired. Unset fields are omitted on output."""
    explain: str
    actual: Optional[float] = None
    min: Optional[float] = None
    max: Optional[float] = None
    target: Optional[float] = None
    ratio: Optional[float] = None
    feathered_ratio: Optional[float] = None
    in_tolerance_zone: Optional[bool] = None
    gap: Optional[float] = None
    excess: Optional[float] = None
    critical_floor: Optional[float] = None
    early_warning: Optional[bool] = None
    required: Optional[bool] = None
    direction: Optional[str] = None
    current_stage: Optional[str] = None
    suggested_stage: Optional[str] = None
    metrics_above_max: Optional[int] = None
    metrics_below_min: Optional[int] = None
    feathered: Optional[bool] = None

    def to_dict(self) -> dict:
        return {
            wire: getattr(self, attr)
            for attr, wire in _EVIDENCE_KEYS
            if getattr(self, attr) is not None
        }


@dataclass(frozen=True)
class Anomaly:
    anomaly_id: str
    type: AnomalyType
    entity_ref: EntityRef
    severity: Severity
    metric: str
    evidence: Evidence
    detected_at: datetime

    def to_dict(self) -> dict:
        return {
            "anomalyId": self.anomaly_id,
            "type": self.type.value,
            "entityRef": self.entity_ref.to_dict(),
            "severity": int(self.severity),
            "metric": self.metric,
            "evidence": self.evidence.to_dict(),
            "detectedAt": self.detected_at.isoformat(),
        }


@dataclass(frozen=True)
class AnomalySummary:
    total: int
    critical: int
    high: int
    medium: int
    low: int
    metrics: Tuple[str, ...]
    stage: str
    by_metric: Tuple[Tuple[str, int], ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class AnomalyReport:
    company_id: str
    anomalies: Tuple[Anomaly, ...]
    summary: AnomalySummary


@dataclass(frozen=True)
class PortfolioAnomalyReport:
    by_company: Tuple[Tuple[str, AnomalyReport], ...]
    total: int
    critical: int
    high: int
    medium: int
    low: int
    top_anomalies: Tuple[Anomaly, ...]
    by_metric: Tuple[Tuple[str, int], ...]


# =============================================================================
# FEATHERED DEVIATION
# =============================================================================

def feathered_deviation(
    value: Optional[float],
    min_value: float,
    max_value: float,
    tolerance: Optional[ToleranceConfig] = None,
) -> FeatheredDeviation:
    """
    Classify a value against [min, max] with feathered edges.

    Inside a tolerance band the effective ratio is pulled toward 1.0 in
    proportion to how close the value is to the hard bound.
    """
    tolerance = tolerance or DEFAULT_TOLERANCE
    if value is None:
        return FeatheredDeviation(direction=Direction.MISSING)

    value_range = max_value - min_value
    inner_buffer = value_range * tolerance.inner
    outer_low = min_value * tolerance.outer
    outer_high = max_value * tolerance.outer
    soft_min = min_value - outer_low
    soft_max = max_value + outer_high
    warning_min = min_value + inner_buffer
    warning_max = max_value - inner_buffer

    if warning_min <= value <= warning_max:
        position = (value - min_value) / value_range if value_range else 0.5
        return FeatheredDeviation(
            direction=Direction.WITHIN, ratio=1.0, feathered_ratio=1.0,
            position=position, soft_min=soft_min, soft_max=soft_max,
        )

    if min_value <= value < warning_min:
        tp = (warning_min - value) / inner_buffer if inner_buffer else 0.0
        return FeatheredDeviation(
            direction=Direction.WARNING,
            ratio=value / min_value if min_value else 1.0,
            feathered_ratio=1 - tp * 0.3,
            in_tolerance_zone=True,
            tolerance_position=tp,
            bound_approaching="min",
            soft_min=soft_min, soft_max=soft_max,
        )

    if warning_max < value <= max_value:
        tp = (value - warning_max) / inner_buffer if inner_buffer else 0.0
        return FeatheredDeviation(
            direction=Direction.WARNING,
            ratio=value / max_value if max_value else 1.0,
            feathered_ratio=1 - tp * 0.3,
            in_tolerance_zone=True,
            tolerance_position=tp,
            bound_approaching="max",
            soft_min=soft_min, soft_max=soft_max,
        )

    if soft_min <= value < min_value:
        tp = (min_value - value) / outer_low if outer_low else 1.0
        raw_ratio = value / min_value if min_value else 0.0
        return FeatheredDeviation(
            direction=Direction.BELOW,
            ratio=raw_ratio,
            feathered_ratio=1 - tp * (1 - raw_ratio),
            in_tolerance_zone=True,
            tolerance_position=tp,
            deviation=min_value - value,
            soft_min=soft_min, soft_max=soft_max,
        )

    if max_value < value <= soft_max:
        tp = (value - max_value) / outer_high if outer_high else 1.0
        raw_ratio = value / max_value if max_value else math.inf
        return FeatheredDeviation(
            direction=Direction.ABOVE,
            ratio=raw_ratio,
            feathered_ratio=1 + tp * (raw_ratio - 1),
            in_tolerance_zone=True,
            tolerance_position=tp,
            deviation=value - max_value,
            soft_min=soft_min, soft_max=soft_max,
        )

    if value < soft_min:
        raw_ratio = value / min_value if min_value else 0.0
        return FeatheredDeviation(
            direction=Direction.BELOW, ratio=raw_ratio, feathered_ratio=raw_ratio,
            in_tolerance_zone=False, tolerance_position=1.0,
            deviation=min_value - value,
            soft_min=soft_min, soft_max=soft_max,
        )

    if value > soft_max:
        raw_ratio = value / max_value if max_value else math.inf
        return FeatheredDeviation(
            direction=Direction.ABOVE, ratio=raw_ratio, feathered_ratio=raw_ratio,
            in_tolerance_zone=False, tolerance_position=1.0,
            deviation=value - max_value,
            soft_min=soft_min, soft_max=soft_max,
        )

    # Degenerate bounds (inner buffers crossing); treat as within
    return FeatheredDeviation(direction=Direction.WITHIN, ratio=1.0, feathered_ratio=1.0)


def severity_for(deviation: FeatheredDeviation) -> Optional[Severity]:
    """
    Map a feathered deviation to severity.

    Tolerance-zone detections never exceed MEDIUM.
    """
    if deviation.direction is Direction.WITHIN:
        return None
    if deviation.direction is Direction.WARNING:
        return Severity.LOW
    if deviation.direction is Direction.MISSING:
        return Severity.MEDIUM

    ratio = deviation.feathered_ratio if deviation.feathered_ratio is not None else deviation.ratio

    if deviation.in_tolerance_zone:
        if deviation.direction is Direction.BELOW:
            return Severity.MEDIUM if ratio < 0.5 else Severity.LOW
        return Severity.MEDIUM if ratio > 2 else Severity.LOW

    if deviation.direction is Direction.BELOW:
        if ratio < 0.25:
            return Severity.CRITICAL
        if ratio < 0.5:
            return Severity.HIGH
        if ratio < 0.75:
            return Severity.MEDIUM
        return Severity.LOW

    if ratio > 3:
        return Severity.CRITICAL
    if ratio > 2:
        return Severity.HIGH
    if ratio > 1.5:
        return Severity.MEDIUM
    return Severity.LOW


def tolerance_for(metric: str) -> ToleranceConfig:
    return TOLERANCE_CONFIG.get(metric, DEFAULT_TOLERANCE)


# =============================================================================
# FORMATTING
# =============================================================================

def _num(value: float) -> str:
    return f"{value:g}"


def _thousands(value: float) -> str:
    return f"${value / 1000:.0f}K"


def _millions(value: float) -> str:
    return f"${value / 1_000_000:.1f}M"


def _tolerance_suffix(deviation: FeatheredDeviation) -> str:
    return " (within tolerance)" if deviation.in_tolerance_zone else ""


# =============================================================================
# DETECTOR PLUMBING
# =============================================================================

@dataclass(frozen=True)
class _Finding:
    type: AnomalyType
    severity: Severity
    metric: str
    evidence: Evidence


def _make_anomaly(company: Company, finding: _Finding, now: datetime) -> Anomaly:
    return Anomaly(
        anomaly_id=f"{finding.type.value}-{company.id}",
        type=finding.type,
        entity_ref=company.entity_ref,
        severity=finding.severity,
        metric=finding.metric,
        evidence=finding.evidence,
        detected_at=now,
    )


def _graded(
    anomaly_type: AnomalyType,
    metric: str,
    deviation: FeatheredDeviation,
    actual: float,
    min_value: float,
    max_value: float,
    explain: str,
    **extra,
) -> _Finding:
    return _Finding(
        type=anomaly_type,
        severity=severity_for(deviation),
        metric=metric,
        evidence=Evidence(
            actual=actual, min=min_value, max=max_value,
            ratio=deviation.ratio, feathered_ratio=deviation.feathered_ratio,
            explain=explain, feathered=True, **extra,
        ),
    )


# =============================================================================
# PRIMARY METRIC DETECTORS
# =============================================================================

def detect_runway(company: Company, params: StageParams, now: datetime) -> List[_Finding]:
    tolerance = tolerance_for("runway")
    runway = company_runway(company, now)
    if runway.value is None or math.isinf(runway.value):
        return []
    value = runway.value

    if tolerance.critical_floor is not None and value < tolerance.critical_floor:
        return [_Finding(
            type=AnomalyType.RUNWAY_BELOW_MIN,
            severity=Severity.CRITICAL,
            metric="runway",
            evidence=Evidence(
                actual=value, min=params.runway_min, max=params.runway_max,
                target=params.runway_target,
                critical_floor=tolerance.critical_floor,
                ratio=value / params.runway_min,
                gap=params.runway_min - value,
                explain=(
                    f"Runway {value:.1f} months is critically low "
                    f"(below {_num(tolerance.critical_floor)} month floor)"
                ),
                feathered=False,
            ),
        )]

    deviation = feathered_deviation(value, params.runway_min, params.runway_max, tolerance)
    findings = []

    if deviation.direction is Direction.BELOW:
        qualifier = "slightly below" if deviation.in_tolerance_zone else "below"
        findings.append(_graded(
            AnomalyType.RUNWAY_BELOW_MIN, "runway", deviation,
            value, params.runway_min, params.runway_max,
            f"Runway {value:.1f} months is {qualifier} stage minimum of "
            f"{_num(params.runway_min)} months{_tolerance_suffix(deviation)}",
            target=params.runway_target,
            gap=params.runway_min - value,
            in_tolerance_zone=deviation.in_tolerance_zone,
        ))

    if deviation.direction is Direction.WARNING and deviation.bound_approaching == "min":
        findings.append(_Finding(
            type=AnomalyType.RUNWAY_BELOW_MIN,
            severity=Severity.LOW,
            metric="runway",
            evidence=Evidence(
                actual=value, min=params.runway_min, max=params.runway_max,
                target=params.runway_target,
                ratio=deviation.ratio, feathered_ratio=deviation.feathered_ratio,
                in_tolerance_zone=True,
                direction=deviation.direction.value,
                explain=(
                    f"Runway {value:.1f} months is approaching stage minimum of "
                    f"{_num(params.runway_min)} months"
                ),
                feathered=True,
                early_warning=True,
            ),
        ))

    if (deviation.direction is Direction.ABOVE and not deviation.in_tolerance_zone
            and deviation.ratio > 1.5):
        findings.append(_Finding(
            type=AnomalyType.RUNWAY_ABOVE_MAX,
            severity=Severity.LOW,
            metric="runway",
            evidence=Evidence(
                actual=value, min=params.runway_min, max=params.runway_max,
                ratio=deviation.ratio,
                explain=(
                    f"Runway {value:.1f} months exceeds stage norm of "
                    f"{_num(params.runway_max)} months - consider deploying capital"
                ),
                feathered=True,
            ),
        ))
    return findings


def detect_burn(company: Company, params: StageParams, now: datetime) -> List[_Finding]:
    if company.burn is None:
        return []
    burn = company.burn
    deviation = feathered_deviation(burn, params.burn_min, params.burn_max, tolerance_for("burn"))
    findings = []

    if (deviation.direction is Direction.BELOW and not deviation.in_tolerance_zone
            and deviation.ratio < 0.5):
        findings.append(_Finding(
            type=AnomalyType.BURN_BELOW_MIN,
            severity=Severity.LOW,
            metric="burn",
            evidence=Evidence(
                actual=burn, min=params.burn_min, max=params.burn_max,
                ratio=deviation.ratio, feathered_ratio=deviation.feathered_ratio,
                explain=(
                    f"Burn {_thousands(burn)}/mo is below stage typical of "
                    f"{_thousands(params.burn_min)}-{_thousands(params.burn_max)}/mo"
                ),
                feathered=True,
            ),
        ))

    if deviation.direction is Direction.ABOVE:
        if deviation.in_tolerance_zone:
            explain = (f"Burn {_thousands(burn)}/mo is slightly above stage typical of "
                       f"{_thousands(params.burn_max)}/mo (within tolerance)")
        else:
            explain = (f"Burn {_thousands(burn)}/mo exceeds stage maximum of "
                       f"{_thousands(params.burn_max)}/mo")
        findings.append(_graded(
            AnomalyType.BURN_ABOVE_MAX, "burn", deviation,
            burn, params.burn_min, params.burn_max, explain,
            excess=burn - params.burn_max,
            in_tolerance_zone=deviation.in_tolerance_zone,
        ))
    return findings


def detect_employees(company: Company, params: StageParams, now: datetime) -> List[_Finding]:
    if company.employees is None:
        return []
    employees = company.employees
    deviation = feathered_deviation(
        employees, params.employees_min, params.employees_max, tolerance_for("employees")
    )
    findings = []

    if deviation.direction is Direction.BELOW:
        qualifier = "slightly below" if deviation.in_tolerance_zone else "below"
        findings.append(_graded(
            AnomalyType.EMPLOYEES_BELOW_MIN, "employees", deviation,
            employees, params.employees_min, params.employees_max,
            f"Team size {_num(employees)} is {qualifier} stage minimum of "
            f"{_num(params.employees_min)}{_tolerance_suffix(deviation)}",
            gap=params.employees_min - employees,
            in_tolerance_zone=deviation.in_tolerance_zone,
        ))

    if deviation.direction is Direction.ABOVE and not deviation.in_tolerance_zone:
        findings.append(_graded(
            AnomalyType.EMPLOYEES_ABOVE_MAX, "employees", deviation,
            employees, params.employees_min, params.employees_max,
            f"Team size {_num(employees)} exceeds stage typical of {_num(params.employees_max)}",
            excess=employees - params.employees_max,
        ))
    return findings


def detect_revenue(company: Company, params: StageParams, now: datetime) -> List[_Finding]:
    revenue = company.effective_revenue

    if params.revenue_required and revenue == 0:
        return [_Finding(
            type=AnomalyType.REVENUE_MISSING_REQUIRED,
            severity=Severity.HIGH,
            metric="revenue",
            evidence=Evidence(
                actual=0, min=params.revenue_min, required=True,
                explain=f"No revenue reported but revenue is expected at {company.stage} stage",
            ),
        )]
    if revenue == 0:
        return []

    deviation = feathered_deviation(
        revenue, params.revenue_min, params.revenue_max, tolerance_for("revenue")
    )
    findings = []

    if deviation.direction is Direction.BELOW and params.revenue_required:
        qualifier = "slightly below" if deviation.in_tolerance_zone else "below"
        findings.append(_graded(
            AnomalyType.REVENUE_BELOW_MIN, "revenue", deviation,
            revenue, params.revenue_min, params.revenue_max,
            f"Revenue {_millions(revenue)} is {qualifier} stage minimum of "
            f"{_millions(params.revenue_min)}{_tolerance_suffix(deviation)}",
            gap=params.revenue_min - revenue,
            in_tolerance_zone=deviation.in_tolerance_zone,
        ))

    if (deviation.direction is Direction.ABOVE and not deviation.in_tolerance_zone
            and deviation.ratio > 2):
        findings.append(_Finding(
            type=AnomalyType.REVENUE_ABOVE_MAX,
            severity=Severity.LOW,
            metric="revenue",
            evidence=Evidence(
                actual=revenue, min=params.revenue_min, max=params.revenue_max,
                ratio=deviation.ratio,
                explain=(f"Revenue {_millions(revenue)} exceeds stage typical - "
                         f"may be ready for next round"),
                feathered=True,
            ),
        ))
    return findings


def detect_fundraise(company: Company, params: StageParams, now: datetime) -> List[_Finding]:
    if not company.raising or not company.round_target:
        return []
    target = company.round_target
    deviation = feathered_deviation(
        target, params.raise_min, params.raise_max, tolerance_for("round_target")
    )
    findings = []

    if deviation.direction is Direction.BELOW and not deviation.in_tolerance_zone:
        findings.append(_Finding(
            type=AnomalyType.RAISE_BELOW_MIN,
            severity=Severity.MEDIUM,
            metric="roundTarget",
            evidence=Evidence(
                actual=target, min=params.raise_min, max=params.raise_max,
                ratio=deviation.ratio, feathered_ratio=deviation.feathered_ratio,
                explain=(f"Raise target {_millions(target)} is below stage typical of "
                         f"{_millions(params.raise_min)}"),
                feathered=True,
            ),
        ))

    if deviation.direction is Direction.ABOVE and not deviation.in_tolerance_zone:
        findings.append(_graded(
            AnomalyType.RAISE_ABOVE_MAX, "roundTarget", deviation,
            target, params.raise_min, params.raise_max,
            f"Raise target {_millions(target)} exceeds stage typical of {_millions(params.raise_max)}",
        ))
    return findings


# =============================================================================
# SECONDARY METRIC DETECTORS
# =============================================================================

@dataclass(frozen=True)
class SecondaryRule:
    """One-sided bound check on a secondary operating metric."""
    metric: str
    anomaly_type: AnomalyType
    direction: Direction
    describe: Callable[[float, float], str]
    require_positive_min: bool = False


SECONDARY_RULES: Tuple[SecondaryRule, ...] = (
    SecondaryRule(
        "nrr", AnomalyType.NRR_BELOW_THRESHOLD, Direction.BELOW,
        lambda v, b: f"NRR {_num(v)}% is below stage minimum of {_num(b)}%",
    ),
    SecondaryRule(
        "gross_margin", AnomalyType.GROSS_MARGIN_BELOW_THRESHOLD, Direction.BELOW,
        lambda v, b: f"Gross margin {_num(v)}% is below stage minimum of {_num(b)}%",
    ),
    SecondaryRule(
        "cac", AnomalyType.CAC_ABOVE_THRESHOLD, Direction.ABOVE,
        lambda v, b: f"CAC ${_num(v)} exceeds stage maximum of ${_num(b)}",
    ),
    SecondaryRule(
        "logo_retention", AnomalyType.LOGO_RETENTION_LOW, Direction.BELOW,
        lambda v, b: f"Logo retention {_num(v)}% is below stage minimum of {_num(b)}%",
    ),
    SecondaryRule(
        "grr", AnomalyType.GRR_BELOW_THRESHOLD, Direction.BELOW,
        lambda v, b: f"GRR {_num(v)}% is below stage minimum of {_num(b)}%",
    ),
    SecondaryRule(
        "nps", AnomalyType.NPS_BELOW_THRESHOLD, Direction.BELOW,
        lambda v, b: f"NPS {_num(v)} is below stage minimum of {_num(b)}",
    ),
    SecondaryRule(
        "open_positions", AnomalyType.OPEN_POSITIONS_ABOVE_MAX, Direction.ABOVE,
        lambda v, b: f"Open positions {_num(v)} exceeds stage maximum of {_num(b)}",
    ),
    SecondaryRule(
        "paying_customers", AnomalyType.PAYING_CUSTOMERS_BELOW_MIN, Direction.BELOW,
        lambda v, b: f"Paying customers {_num(v)} is below stage minimum of {_num(b)}",
        require_positive_min=True,
    ),
    SecondaryRule(
        "raised_to_date", AnomalyType.RAISED_TO_DATE_LOW, Direction.BELOW,
        lambda v, b: f"Raised to date {_millions(v)} is below stage minimum of {_millions(b)}",
        require_positive_min=True,
    ),
    SecondaryRule(
        "last_raise_amount", AnomalyType.LAST_RAISE_UNDERSIZE, Direction.BELOW,
        lambda v, b: f"Last raise {_millions(v)} is below stage minimum of {_millions(b)}",
        require_positive_min=True,
    ),
)


def detect_secondary(company: Company, params: StageParams, now: datetime) -> List[_Finding]:
    findings = []
    for rule in SECONDARY_RULES:
        value = getattr(company, rule.metric)
        if value is None:
            continue
        min_value, max_value = params.bounds(rule.metric)
        if rule.require_positive_min and not min_value > 0:
            continue
        deviation = feathered_deviation(value, min_value, max_value, tolerance_for(rule.metric))
        if deviation.direction is not rule.direction:
            continue
        bound = min_value if rule.direction is Direction.BELOW else max_value
        findings.append(_graded(
            rule.anomaly_type, rule.metric, deviation,
            value, min_value, max_value, rule.describe(value, bound),
        ))
    return findings


def detect_hiring_plan(company: Company, params: StageParams, now: datetime) -> List[_Finding]:
    if company.employees is None or not company.target_headcount:
        return []
    if company.employees >= company.target_headcount * 0.7:
        return []
    ratio = company.employees / company.target_headcount
    return [_Finding(
        type=AnomalyType.HIRING_PLAN_BEHIND,
        severity=Severity.HIGH if ratio < 0.5 else Severity.MEDIUM,
        metric="hiring_plan",
        evidence=Evidence(
            actual=company.employees, target=company.target_headcount,
            ratio=ratio,
            gap=company.target_headcount - company.employees,
            explain=(f"Headcount {_num(company.employees)} is "
                     f"{round_half_up((1 - ratio) * 100):.0f}% below target of "
                     f"{_num(company.target_headcount)}"),
            feathered=True,
        ),
    )]


def detect_acv(company: Company, params: StageParams, now: datetime) -> List[_Finding]:
    if company.acv is None:
        return []
    acv = company.acv
    deviation = feathered_deviation(acv, params.acv_min, params.acv_max, tolerance_for("acv"))
    if deviation.direction is Direction.BELOW and params.acv_min > 0:
        return [_graded(
            AnomalyType.ACV_BELOW_MIN, "acv", deviation, acv, params.acv_min, params.acv_max,
            f"ACV ${acv:,.0f} is below stage minimum of ${params.acv_min:,.0f}",
        )]
    if deviation.direction is Direction.ABOVE:
        return [_graded(
            AnomalyType.ACV_ABOVE_MAX, "acv", deviation, acv, params.acv_min, params.acv_max,
            f"ACV ${acv:,.0f} exceeds stage maximum of ${params.acv_max:,.0f}",
        )]
    return []


def detect_company_age(company: Company, params: StageParams, now: datetime) -> List[_Finding]:
    if company.founded is None:
        return []
    years = days_between(company.founded, now) / 365.25
    deviation = feathered_deviation(
        years, params.founded_years_min, params.founded_years_max, tolerance_for("founded")
    )
    if deviation.direction not in (Direction.BELOW, Direction.ABOVE):
        return []
    relation = "young" if deviation.direction is Direction.BELOW else "old"
    return [_graded(
        AnomalyType.COMPANY_AGE_STAGE_MISMATCH, "founded", deviation,
        round_half_up(years, 1), params.founded_years_min, params.founded_years_max,
        (f"Company age {years:.1f} years is {relation} for {company.stage} stage "
         f"(expected {_num(params.founded_years_min)}-{_num(params.founded_years_max)} years)"),
        direction=deviation.direction.value,
    )]


DETECTORS: Tuple[Callable[[Company, StageParams, datetime], List[_Finding]], ...] = (
    detect_runway,
    detect_burn,
    detect_employees,
    detect_revenue,
    detect_fundraise,
    detect_secondary,
    detect_hiring_plan,
    detect_acv,
    detect_company_age,
)


# =============================================================================
# STAGE MISMATCH
# =============================================================================

def detect_stage_mismatch(company: Company, findings: Sequence[_Finding]) -> List[_Finding]:
    """Meta-anomaly when several metrics point to a different stage."""
    above = sum(
        1 for f in findings
        if "ABOVE_MAX" in f.type.value and f.severity >= Severity.MEDIUM
    )
    below = sum(
        1 for f in findings
        if "BELOW_MIN" in f.type.value and f.severity >= Severity.MEDIUM
    )
    mismatches = []

    if above >= 2:
        suggested = next_stage(company.stage)
        mismatches.append(_Finding(
            type=AnomalyType.STAGE_MISMATCH_METRICS,
            severity=Severity.LOW,
            metric="stage",
            evidence=Evidence(
                current_stage=company.stage,
                suggested_stage=suggested.value if suggested else None,
                metrics_above_max=above,
                explain=(f"{above} metrics exceed {company.stage} bounds - may be ready for "
                         f"{suggested.value if suggested else 'growth stage'}"),
            ),
        ))

    if below >= 2:
        suggested = previous_stage(company.stage)
        mismatches.append(_Finding(
            type=AnomalyType.STAGE_MISMATCH_METRICS,
            severity=Severity.MEDIUM,
            metric="stage",
            evidence=Evidence(
                current_stage=company.stage,
                suggested_stage=suggested.value if suggested else None,
                metrics_below_min=below,
                explain=f"{below} metrics below {company.stage} bounds - verify stage classification",
            ),
        ))
    return mismatches


# =============================================================================
# PUBLIC API
# =============================================================================

def _count_by_metric(anomalies: Sequence[Anomaly]) -> Tuple[Tuple[str, int], ...]:
    counts: Dict[str, int] = {}
    for anomaly in anomalies:
        counts[anomaly.metric] = counts.get(anomaly.metric, 0) + 1
    return tuple(sorted(counts.items()))


def _by_severity(anomalies: Sequence[Anomaly], severity: Severity) -> int:
    return sum(1 for a in anomalies if a.severity == severity)


def detect_anomalies(
    company: Company,
    now: datetime,
    params: Optional[StageParams] = None,
) -> AnomalyReport:
    """
    Run every detector for one company.

    Anomalies are sorted by severity descending; detectors' own order is
    kept among equal severities.
    """
    params = params or stage_params(company.stage)
    findings: List[_Finding] = []
    for detector in DETECTORS:
        findings.extend(detector(company, params, now))
    findings.extend(detect_stage_mismatch(company, findings))

    anomalies = sorted(
        (_make_anomaly(company, f, now) for f in findings),
        key=lambda a: -int(a.severity),
    )

    summary = AnomalySummary(
        total=len(anomalies),
        critical=_by_severity(anomalies, Severity.CRITICAL),
        high=_by_severity(anomalies, Severity.HIGH),
        medium=_by_severity(anomalies, Severity.MEDIUM),
        low=_by_severity(anomalies, Severity.LOW),
        metrics=tuple(sorted({a.metric for a in anomalies})),
        stage=company.stage,
        by_metric=_count_by_metric(anomalies),
    )
    return AnomalyReport(company_id=company.id, anomalies=tuple(anomalies), summary=summary)


def detect_portfolio_anomalies(companies: Sequence[Company], now: datetime) -> PortfolioAnomalyReport:
    reports = [(c.id, detect_anomalies(c, now)) for c in companies]
    everything = sorted(
        (a for _, report in reports for a in report.anomalies),
        key=lambda a: -int(a.severity),
    )
    return PortfolioAnomalyReport(
        by_company=tuple(reports),
        total=len(everything),
        critical=_by_severity(everything, Severity.CRITICAL),
        high=_by_severity(everything, Severity.HIGH),
        medium=_by_severity(everything, Severity.MEDIUM),
        low=_by_severity(everything, Severity.LOW),
        top_anomalies=tuple(everything[:10]),
        by_metric=_count_by_metric(everything),
    )


def significant_anomalies(
    anomalies: Sequence[Anomaly],
    threshold: Severity = Severity.MEDIUM,
) -> Tuple[Anomaly, ...]:
    return tuple(a for a in anomalies if a.severity >= threshold)
