"""
Metric Facts
============

A metric fact is a single observed measurement at a point in time. Raw
data only: no derivations, no computed values.

Also holds the mutual-exclusion table: metric pairs that describe the same
quantity at different granularity and so may not both appear on one raw
record.
"""

from __future__ import annotations
from typing import Any, Dict, List, Mapping, Sequence, Tuple

from ..contracts.base import parse_timestamp


REQUIRED_FACT_FIELDS = ("id", "companyId", "metricKey", "value", "unit", "source", "asOf")
ALLOWED_FACT_FIELDS = frozenset(REQUIRED_FACT_FIELDS) | {"notes"}

RAW_METRIC_KEYS = (
    "cash", "burn", "arr", "mrr", "revenue",
    "employees", "customers", "churn_rate",
    "gross_margin", "nps", "dau", "mau",
    "pipeline_value", "deals_active",
    "raised_to_date", "last_raise_amount",
)

FORBIDDEN_METRIC_KEYS = (
    "runway", "runway_months", "ltv_cac_ratio", "acv",
    "goalDamage", "projectedGoalDamage",
    "healthScore", "rankScore", "trajectory",
    "snapshot", "velocity", "probability",
)

VALID_UNITS = (
    "usd", "usd_monthly", "usd_annual",
    "count", "percentage", "ratio",
    "months", "days", "score",
)

VALID_SOURCES = (
    "manual", "spreadsheet", "api", "meeting_transcript",
    "email", "crm_sync", "bank_sync", "founder_update",
)

# Same quantity, different granularity
MUTUALLY_EXCLUSIVE_METRICS: Tuple[Tuple[str, str], ...] = (
    ("revenue", "arr"),
    ("mrr", "arr"),
    ("burn", "annualBurn"),
)

# Fact keys that populate a company snapshot field when it is absent
FACT_TO_COMPANY_FIELD: Dict[str, str] = {
    "cash": "cash",
    "burn": "burn",
    "arr": "arr",
    "revenue": "revenue",
    "employees": "employees",
    "customers": "paying_customers",
    "gross_margin": "gross_margin",
    "nps": "nps",
    "raised_to_date": "raised_to_date",
    "last_raise_amount": "last_raise_amount",
}


def validate_metric_fact(fact: Mapping[str, Any]) -> List[str]:
    errors = []
    for name in REQUIRED_FACT_FIELDS:
        if fact.get(name) is None:
            errors.append(f"Missing required field: {name}")

    key = fact.get("metricKey")
    if key in FORBIDDEN_METRIC_KEYS:
        errors.append(f"Forbidden derived metricKey: {key}")

    unit = fact.get("unit")
    if unit is not None and unit not in VALID_UNITS:
        errors.append(f"Invalid unit: {unit}. Must be one of: {', '.join(VALID_UNITS)}")

    value = fact.get("value")
    if value is not None and (isinstance(value, bool) or not isinstance(value, (int, float))):
        errors.append(f"value must be a number, got {type(value).__name__}")

    for name in sorted(fact):
        if name not in ALLOWED_FACT_FIELDS:
            errors.append(f"Unexpected field: {name}")
    return errors


def mutual_exclusion_violations(record: Mapping[str, Any], path: str) -> List[str]:
    """Metric pairs that both appear on one record."""
    violations = []
    for first, second in MUTUALLY_EXCLUSIVE_METRICS:
        if record.get(first) is not None and record.get(second) is not None:
            violations.append(f"{path}: both '{first}' and '{second}' present")
    return violations


def latest_facts(facts: Sequence[Mapping[str, Any]], company_id: str) -> Dict[str, Mapping[str, Any]]:
    """
    Latest fact per metric key for one company.

    Ties on asOf keep the fact with the greater id so the choice does not
    depend on input order.
    """
    latest: Dict[str, Tuple[Any, str, Mapping[str, Any]]] = {}
    for fact in facts:
        if fact.get("companyId") != company_id or fact.get("metricKey") is None:
            continue
        as_of = parse_timestamp(fact["asOf"])
        key = fact["metricKey"]
        candidate = (as_of, str(fact.get("id", "")), fact)
        current = latest.get(key)
        if current is None or candidate[:2] > current[:2]:
            latest[key] = candidate
    return {key: entry[2] for key, entry in latest.items()}
