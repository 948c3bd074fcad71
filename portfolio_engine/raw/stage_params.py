"""
Stage Parameters
================

Single source of truth for stage-appropriate metric bounds.

Pre-seed/Seed companies are expected to carry 12-18 months of runway,
Series A onward 18-24. Burn bounds derive from the raise range: raise / 12
for the first two stages, raise / 24 afterwards.

Used by:
- derive.anomalies (bounds checks)
- predict.goal_from_anomaly / predict.suggested_goals (stage templates)
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

from ..contracts.records import GoalType


class Stage(Enum):
    PRE_SEED = "Pre-seed"
    SEED = "Seed"
    SERIES_A = "Series A"
    SERIES_B = "Series B"
    SERIES_C = "Series C"
    SERIES_D = "Series D"


STAGES: Tuple[Stage, ...] = (
    Stage.PRE_SEED,
    Stage.SEED,
    Stage.SERIES_A,
    Stage.SERIES_B,
    Stage.SERIES_C,
    Stage.SERIES_D,
)

DEFAULT_STAGE = Stage.SEED


@dataclass(frozen=True)
class StageParams:
    """Bounds for "normal" metrics at one stage. Money in USD, rates in %."""
    stage: Stage

    raise_min: float
    raise_max: float
    burn_min: float
    burn_max: float
    employees_min: float
    employees_max: float
    runway_min: float
    runway_max: float
    runway_target: float
    revenue_min: float
    revenue_max: float
    revenue_required: bool

    nrr_min: float
    nrr_max: float
    gross_margin_min: float
    gross_margin_max: float
    cac_min: float
    cac_max: float
    logo_retention_min: float
    logo_retention_max: float
    grr_min: float
    grr_max: float
    nps_min: float
    nps_max: float
    open_positions_min: float
    open_positions_max: float
    paying_customers_min: float
    paying_customers_max: float
    acv_min: float
    acv_max: float
    raised_to_date_min: float
    raised_to_date_max: float
    last_raise_amount_min: float
    last_raise_amount_max: float
    founded_years_min: float
    founded_years_max: float

    def bounds(self, metric: str) -> Tuple[float, float]:
        """(min, max) for a metric key such as 'nrr' or 'gross_margin'."""
        return getattr(self, f"{metric}_min"), getattr(self, f"{metric}_max")


STAGE_PARAMS: Dict[Stage, StageParams] = {
    Stage.PRE_SEED: StageParams(
        stage=Stage.PRE_SEED,
        raise_min=500_000, raise_max=5_000_000,
        burn_min=500_000 / 12, burn_max=5_000_000 / 12,
        employees_min=2, employees_max=8,
        runway_min=6, runway_max=18, runway_target=12,
        revenue_min=0, revenue_max=100_000, revenue_required=False,
        nrr_min=0, nrr_max=150,
        gross_margin_min=0, gross_margin_max=90,
        cac_min=0, cac_max=5_000,
        logo_retention_min=0, logo_retention_max=100,
        grr_min=0, grr_max=100,
        nps_min=0, nps_max=100,
        open_positions_min=0, open_positions_max=4,
        paying_customers_min=0, paying_customers_max=25,
        acv_min=0, acv_max=50_000,
        raised_to_date_min=0, raised_to_date_max=5_000_000,
        last_raise_amount_min=0, last_raise_amount_max=5_000_000,
        founded_years_min=0, founded_years_max=3,
    ),
    Stage.SEED: StageParams(
        stage=Stage.SEED,
        raise_min=2_000_000, raise_max=10_000_000,
        burn_min=2_000_000 / 12, burn_max=10_000_000 / 12,
        employees_min=5, employees_max=20,
        runway_min=9, runway_max=18, runway_target=12,
        revenue_min=0, revenue_max=2_000_000, revenue_required=False,
        nrr_min=90, nrr_max=160,
        gross_margin_min=50, gross_margin_max=90,
        cac_min=0, cac_max=15_000,
        logo_retention_min=75, logo_retention_max=100,
        grr_min=75, grr_max=100,
        nps_min=20, nps_max=100,
        open_positions_min=0, open_positions_max=10,
        paying_customers_min=5, paying_customers_max=200,
        acv_min=5_000, acv_max=100_000,
        raised_to_date_min=1_000_000, raised_to_date_max=15_000_000,
        last_raise_amount_min=1_500_000, last_raise_amount_max=10_000_000,
        founded_years_min=1, founded_years_max=5,
    ),
    Stage.SERIES_A: StageParams(
        stage=Stage.SERIES_A,
        raise_min=5_000_000, raise_max=25_000_000,
        burn_min=5_000_000 / 24, burn_max=25_000_000 / 24,
        employees_min=15, employees_max=50,
        runway_min=12, runway_max=24, runway_target=18,
        revenue_min=500_000, revenue_max=5_000_000, revenue_required=True,
        nrr_min=100, nrr_max=150,
        gross_margin_min=60, gross_margin_max=90,
        cac_min=0, cac_max=25_000,
        logo_retention_min=80, logo_retention_max=100,
        grr_min=80, grr_max=100,
        nps_min=30, nps_max=100,
        open_positions_min=0, open_positions_max=20,
        paying_customers_min=20, paying_customers_max=1_000,
        acv_min=10_000, acv_max=150_000,
        raised_to_date_min=5_000_000, raised_to_date_max=40_000_000,
        last_raise_amount_min=4_000_000, last_raise_amount_max=25_000_000,
        founded_years_min=2, founded_years_max=7,
    ),
    Stage.SERIES_B: StageParams(
        stage=Stage.SERIES_B,
        raise_min=15_000_000, raise_max=50_000_000,
        burn_min=15_000_000 / 24, burn_max=50_000_000 / 24,
        employees_min=40, employees_max=120,
        runway_min=18, runway_max=30, runway_target=24,
        revenue_min=3_000_000, revenue_max=20_000_000, revenue_required=True,
        nrr_min=105, nrr_max=150,
        gross_margin_min=65, gross_margin_max=90,
        cac_min=0, cac_max=40_000,
        logo_retention_min=85, logo_retention_max=100,
        grr_min=85, grr_max=100,
        nps_min=30, nps_max=100,
        open_positions_min=0, open_positions_max=40,
        paying_customers_min=75, paying_customers_max=5_000,
        acv_min=20_000, acv_max=250_000,
        raised_to_date_min=20_000_000, raised_to_date_max=100_000_000,
        last_raise_amount_min=12_000_000, last_raise_amount_max=50_000_000,
        founded_years_min=3, founded_years_max=9,
    ),
    Stage.SERIES_C: StageParams(
        stage=Stage.SERIES_C,
        raise_min=50_000_000, raise_max=150_000_000,
        burn_min=50_000_000 / 24, burn_max=150_000_000 / 24,
        employees_min=100, employees_max=350,
        runway_min=18, runway_max=36, runway_target=24,
        revenue_min=15_000_000, revenue_max=75_000_000, revenue_required=True,
        nrr_min=110, nrr_max=150,
        gross_margin_min=65, gross_margin_max=90,
        cac_min=0, cac_max=60_000,
        logo_retention_min=88, logo_retention_max=100,
        grr_min=88, grr_max=100,
        nps_min=35, nps_max=100,
        open_positions_min=0, open_positions_max=80,
        paying_customers_min=200, paying_customers_max=20_000,
        acv_min=30_000, acv_max=400_000,
        raised_to_date_min=60_000_000, raised_to_date_max=300_000_000,
        last_raise_amount_min=40_000_000, last_raise_amount_max=150_000_000,
        founded_years_min=4, founded_years_max=12,
    ),
    Stage.SERIES_D: StageParams(
        stage=Stage.SERIES_D,
        raise_min=100_000_000, raise_max=300_000_000,
        burn_min=100_000_000 / 24, burn_max=300_000_000 / 24,
        employees_min=300, employees_max=1000,
        runway_min=24, runway_max=48, runway_target=30,
        revenue_min=50_000_000, revenue_max=250_000_000, revenue_required=True,
        nrr_min=110, nrr_max=150,
        gross_margin_min=70, gross_margin_max=90,
        cac_min=0, cac_max=80_000,
        logo_retention_min=90, logo_retention_max=100,
        grr_min=90, grr_max=100,
        nps_min=40, nps_max=100,
        open_positions_min=0, open_positions_max=150,
        paying_customers_min=500, paying_customers_max=100_000,
        acv_min=40_000, acv_max=600_000,
        raised_to_date_min=150_000_000, raised_to_date_max=800_000_000,
        last_raise_amount_min=80_000_000, last_raise_amount_max=300_000_000,
        founded_years_min=5, founded_years_max=15,
    ),
}


# =============================================================================
# STAGE LOOKUP
# =============================================================================

def parse_stage(stage: object) -> Optional[Stage]:
    if isinstance(stage, Stage):
        return stage
    for candidate in STAGES:
        if candidate.value == stage:
            return candidate
    return None


def stage_params(stage: object) -> StageParams:
    """Params for a stage; unknown stages fall back to Seed."""
    return STAGE_PARAMS[parse_stage(stage) or DEFAULT_STAGE]


def stage_index(stage: object) -> int:
    parsed = parse_stage(stage)
    return STAGES.index(parsed) if parsed else -1


def is_stage_before(a: object, b: object) -> bool:
    return stage_index(a) < stage_index(b)


def next_stage(stage: object) -> Optional[Stage]:
    idx = stage_index(stage)
    if idx < 0 or idx >= len(STAGES) - 1:
        return None
    return STAGES[idx + 1]


def previous_stage(stage: object) -> Optional[Stage]:
    idx = stage_index(stage)
    if idx <= 0:
        return None
    return STAGES[idx - 1]


# =============================================================================
# STAGE GOAL TEMPLATES
# =============================================================================

@dataclass(frozen=True)
class GoalTemplate:
    type: GoalType
    name: str
    unlocks: str
    priority: int


STAGE_GOAL_TEMPLATES: Dict[Stage, Tuple[GoalTemplate, ...]] = {
    Stage.PRE_SEED: (
        GoalTemplate(GoalType.PRODUCT, "MVP Launch", "Seed readiness", 1),
        GoalTemplate(GoalType.PRODUCT, "Beta Users", "Early traction", 2),
        GoalTemplate(GoalType.FUNDRAISE, "Seed Round", "Growth capital", 3),
    ),
    Stage.SEED: (
        GoalTemplate(GoalType.REVENUE, "First Revenue", "PMF signal", 1),
        GoalTemplate(GoalType.PRODUCT, "Product-Market Fit", "Series A readiness", 2),
        GoalTemplate(GoalType.HIRING, "Engineering Team", "Product velocity", 3),
        GoalTemplate(GoalType.REVENUE, "ARR Target", "Series A metrics", 4),
        GoalTemplate(GoalType.FUNDRAISE, "Series A Round", "Scale capital", 5),
    ),
    Stage.SERIES_A: (
        GoalTemplate(GoalType.REVENUE, "Revenue Growth", "Series B metrics", 1),
        GoalTemplate(GoalType.OPERATIONAL, "Unit Economics", "Scalable model", 2),
        GoalTemplate(GoalType.HIRING, "Go-to-Market Team", "Sales velocity", 3),
        GoalTemplate(GoalType.PARTNERSHIP, "Strategic Partners", "Distribution", 4),
        GoalTemplate(GoalType.FUNDRAISE, "Series B Round", "Expansion capital", 5),
    ),
    Stage.SERIES_B: (
        GoalTemplate(GoalType.REVENUE, "ARR Milestone", "Market leadership", 1),
        GoalTemplate(GoalType.OPERATIONAL, "Market Expansion", "TAM capture", 2),
        GoalTemplate(GoalType.HIRING, "Executive Team", "Organizational scale", 3),
        GoalTemplate(GoalType.FUNDRAISE, "Series C Round", "Dominance capital", 4),
    ),
    Stage.SERIES_C: (
        GoalTemplate(GoalType.REVENUE, "Revenue Target", "IPO readiness", 1),
        GoalTemplate(GoalType.OPERATIONAL, "International", "Global presence", 2),
        GoalTemplate(GoalType.OPERATIONAL, "Profitability Path", "Sustainability", 3),
    ),
    Stage.SERIES_D: (
        GoalTemplate(GoalType.OPERATIONAL, "Market Leadership", "Category winner", 1),
        GoalTemplate(GoalType.OPERATIONAL, "IPO Preparation", "Public markets", 2),
    ),
}


def stage_goal_templates(stage: object) -> Tuple[GoalTemplate, ...]:
    return STAGE_GOAL_TEMPLATES[parse_stage(stage) or DEFAULT_STAGE]
