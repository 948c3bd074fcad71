"""
Anomaly Detection Tests
=======================

Feathered bounds grade severity instead of flipping at a hard edge.

PROPERTIES UNDER TEST:
======================
1. Severity never decreases as a value moves further past a bound
2. Tolerance-zone detections never exceed MEDIUM
3. The runway critical floor overrides stage-relative grading
"""

import pytest
from hypothesis import given, strategies as st

from portfolio_engine.contracts.base import Severity
from portfolio_engine.derive.anomalies import (
    AnomalyType, Direction, ToleranceConfig, detect_anomalies,
    feathered_deviation, severity_for,
)
from portfolio_engine.raw.stage_params import stage_params

from tests.fixtures import NOW, make_company


def severity_rank(value, min_value, max_value, tolerance):
    severity = severity_for(feathered_deviation(value, min_value, max_value, tolerance))
    return -1 if severity is None else int(severity)


def runway_anomalies(company):
    return [a for a in detect_anomalies(company, NOW).anomalies if a.metric == "runway"]


tolerances = st.builds(
    ToleranceConfig,
    inner=st.floats(min_value=0.05, max_value=0.3),
    outer=st.floats(min_value=0.05, max_value=0.6),
)


# =============================================================================
# FEATHERED DEVIATION
# =============================================================================

class TestFeatheredDeviation:
    """Zones for Seed runway: min 9, max 18, inner 0.15, outer 0.20."""

    tolerance = ToleranceConfig(inner=0.15, outer=0.20)

    def test_within_band(self):
        deviation = feathered_deviation(14, 9, 18, self.tolerance)
        assert deviation.direction is Direction.WITHIN
        assert severity_for(deviation) is None

    def test_warning_zone_near_min(self):
        # warningMin = 9 + 0.15 * 9 = 10.35
        deviation = feathered_deviation(10, 9, 18, self.tolerance)
        assert deviation.direction is Direction.WARNING
        assert deviation.in_tolerance_zone is True
        assert deviation.bound_approaching == "min"
        assert severity_for(deviation) is Severity.LOW

    def test_tolerance_zone_below_min(self):
        # softMin = 9 - 9 * 0.2 = 7.2
        deviation = feathered_deviation(8, 9, 18, self.tolerance)
        assert deviation.direction is Direction.BELOW
        assert deviation.in_tolerance_zone is True
        assert deviation.ratio < deviation.feathered_ratio < 1.0

    def test_beyond_soft_bound_uses_raw_ratio(self):
        deviation = feathered_deviation(2, 9, 18, self.tolerance)
        assert deviation.in_tolerance_zone is False
        assert deviation.feathered_ratio == pytest.approx(2 / 9)
        assert severity_for(deviation) is Severity.CRITICAL

    def test_missing_value(self):
        deviation = feathered_deviation(None, 9, 18, self.tolerance)
        assert deviation.direction is Direction.MISSING
        assert severity_for(deviation) is Severity.MEDIUM


# =============================================================================
# PROPERTIES
# =============================================================================

class TestSeverityProperties:

    @given(
        tolerance=tolerances,
        min_value=st.floats(min_value=1, max_value=1_000),
        width=st.floats(min_value=1, max_value=1_000),
        a=st.floats(min_value=0, max_value=1),
        b=st.floats(min_value=0, max_value=1),
    )
    def test_severity_monotonic_below_min(self, tolerance, min_value, width, a, b):
        """Further below the bound is never less severe."""
        max_value = min_value + width
        near, far = sorted((a, b), reverse=True)
        near_value, far_value = near * min_value, far * min_value
        assert severity_rank(far_value, min_value, max_value, tolerance) >= \
            severity_rank(near_value, min_value, max_value, tolerance)

    @given(
        tolerance=tolerances,
        min_value=st.floats(min_value=1, max_value=1_000),
        width=st.floats(min_value=1, max_value=1_000),
        a=st.floats(min_value=1, max_value=10),
        b=st.floats(min_value=1, max_value=10),
    )
    def test_severity_monotonic_above_max(self, tolerance, min_value, width, a, b):
        max_value = min_value + width
        near, far = sorted((a, b))
        assert severity_rank(far * max_value, min_value, max_value, tolerance) >= \
            severity_rank(near * max_value, min_value, max_value, tolerance)

    @given(
        tolerance=tolerances,
        min_value=st.floats(min_value=0.5, max_value=1_000),
        width=st.floats(min_value=0.5, max_value=1_000),
        value=st.floats(min_value=0, max_value=5_000),
    )
    def test_tolerance_zone_capped_at_medium(self, tolerance, min_value, width, value):
        deviation = feathered_deviation(value, min_value, min_value + width, tolerance)
        if deviation.in_tolerance_zone:
            assert severity_for(deviation) <= Severity.MEDIUM

    @given(
        cash=st.integers(min_value=0, max_value=20_000_000),
        burn=st.integers(min_value=1, max_value=2_000_000),
        employees=st.integers(min_value=1, max_value=500),
    )
    def test_detected_tolerance_anomalies_capped(self, cash, burn, employees):
        company = make_company(cash=float(cash), burn=float(burn), employees=float(employees))
        for anomaly in detect_anomalies(company, NOW).anomalies:
            if anomaly.evidence.in_tolerance_zone:
                assert anomaly.severity <= Severity.MEDIUM


# =============================================================================
# SCENARIOS
# =============================================================================

class TestRunwayScenarios:

    def test_runway_critical_floor(self):
        """Seed, cash 150K, burn 75K: 2 months is under the 3-month floor."""
        company = make_company(cash=150_000.0, burn=75_000.0)
        found = runway_anomalies(company)

        assert len(found) == 1
        anomaly = found[0]
        assert anomaly.type is AnomalyType.RUNWAY_BELOW_MIN
        assert anomaly.severity is Severity.CRITICAL
        evidence = anomaly.evidence.to_dict()
        assert evidence["feathered"] is False
        assert "featheredRatio" not in evidence
        assert evidence["actual"] == 2.0

    def test_runway_in_tolerance_warning(self):
        params = stage_params("Seed")
        assert params.runway_min == 9
        company = make_company(cash=1_000_000.0, burn=100_000.0)
        found = runway_anomalies(company)

        assert len(found) == 1
        anomaly = found[0]
        assert anomaly.severity is Severity.LOW
        evidence = anomaly.evidence.to_dict()
        assert evidence["direction"] == "warning"
        assert evidence["inToleranceZone"] is True

    def test_healthy_runway_has_no_anomaly(self):
        assert runway_anomalies(make_company(cash=2_800_000.0, burn=200_000.0)) == []

    def test_missing_runway_inputs_are_not_an_error(self):
        assert runway_anomalies(make_company(cash=None, burn=None)) == []

    def test_anomaly_identity_and_time(self):
        company = make_company("zeta", cash=150_000.0, burn=75_000.0)
        anomaly = runway_anomalies(company)[0]
        assert anomaly.anomaly_id == "RUNWAY_BELOW_MIN-zeta"
        assert anomaly.detected_at == NOW

    def test_anomalies_sorted_by_severity(self):
        company = make_company(cash=150_000.0, burn=75_000.0, employees=200.0)
        severities = [a.severity for a in detect_anomalies(company, NOW).anomalies]
        assert severities == sorted(severities, reverse=True)
