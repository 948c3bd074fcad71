"""
Runway Derivation

Pure function: (cash, burn, as-of dates, now) -> RunwayDerivation.
A runtime derivation; the result is never stored on the company.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple

from ..contracts.base import days_between, round_half_up
from ..contracts.records import Company


MAX_STALE_DAYS = 30


@dataclass(frozen=True)
class RunwayDerivation:
    value: Optional[float]
    confidence: float
    inputs_used: Tuple[str, ...]
    inputs_missing: Tuple[str, ...]
    staleness_penalty: float
    explain: str

    @property
    def is_known(self) -> bool:
        return self.value is not None


def _staleness(as_of: Optional[datetime], now: datetime) -> float:
    if as_of is None:
        return 0.0
    age_days = days_between(as_of, now)
    return min(age_days / MAX_STALE_DAYS, 1.0)


def derive_runway(
    cash: Optional[float],
    burn: Optional[float],
    cash_as_of: Optional[datetime],
    burn_as_of: Optional[datetime],
    now: datetime,
) -> RunwayDerivation:
    """Runway in months at the current burn."""
    used = tuple(name for name, v in (("cash", cash), ("burn", burn)) if v is not None)
    missing = tuple(name for name, v in (("cash", cash), ("burn", burn)) if v is None)
    staleness = max(0.0, _staleness(cash_as_of, now), _staleness(burn_as_of, now))

    if missing:
        return RunwayDerivation(
            value=None, confidence=0.0,
            inputs_used=used, inputs_missing=missing,
            staleness_penalty=staleness,
            explain=f"Cannot compute runway: missing {', '.join(missing)}",
        )

    if burn <= 0:
        return RunwayDerivation(
            value=float("inf"), confidence=0.5,
            inputs_used=used, inputs_missing=missing,
            staleness_penalty=staleness,
            explain="Infinite runway (burn is zero or negative)",
        )

    if cash < 0:
        return RunwayDerivation(
            value=0.0, confidence=0.9,
            inputs_used=used, inputs_missing=missing,
            staleness_penalty=staleness,
            explain="Zero runway (cash is negative)",
        )

    runway = cash / burn
    return RunwayDerivation(
        value=round_half_up(runway, 1),
        confidence=max(0.0, 1 - staleness * 0.5),
        inputs_used=used, inputs_missing=missing,
        staleness_penalty=staleness,
        explain=f"{round_half_up(runway):.0f} months runway at current burn rate",
    )


def company_runway(company: Company, now: datetime) -> RunwayDerivation:
    return derive_runway(
        company.cash,
        company.burn,
        company.cash_as_of or company.as_of,
        company.burn_as_of or company.as_of,
        now,
    )
