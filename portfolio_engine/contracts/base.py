"""
Base Contracts and Shared Types

These are the foundational types used across all layers.
All types here are IMMUTABLE and represent pure data.

BOUNDARY ENFORCEMENT:
=====================
- This module is importable from every layer
- It MUST NOT import from raw/derive/predict/decide/runtime/gate
- All types are frozen dataclasses or Enums
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Optional, Tuple
from enum import Enum, IntEnum, auto
import math


# =============================================================================
# ERROR STATES (Explicit, never silent)
# =============================================================================

class ErrorCode(Enum):
    """
    Explicit error codes for deterministic error handling.
    Every error state is enumerated.
    """
    # Missing data (non-fatal, downgrades confidence)
    MISSING_METRIC = auto()
    INSUFFICIENT_HISTORY = auto()

    # Schema violations
    INVALID_TIMESTAMP = auto()
    MALFORMED_RECORD = auto()
    UNKNOWN_GOAL_TYPE = auto()
    INVALID_ENTITY_REF = auto()
    FORBIDDEN_FIELD = auto()

    # Invariant violations
    GRAPH_CYCLE = auto()
    UNKNOWN_DEPENDENCY = auto()
    LAYER_VIOLATION = auto()
    DUPLICATE_RANKING_AUTHORITY = auto()
    NON_DETERMINISTIC = auto()

    # Referential integrity
    UNKNOWN_ENTITY = auto()
    DUPLICATE_ID = auto()

    # Execution
    NODE_FAILED = auto()


@dataclass(frozen=True)
class Error:
    """
    Immutable error representation with full context.
    Errors are data, not exceptions - they can be stored and reported.
    """
    code: ErrorCode
    message: str
    timestamp: datetime
    context: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)

    def with_context(self, key: str, value: str) -> Error:
        """Return new Error with additional context (immutable)."""
        return Error(
            code=self.code,
            message=self.message,
            timestamp=self.timestamp,
            context=self.context + ((key, value),)
        )

    def to_dict(self) -> dict:
        return {
            "code": self.code.name,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "context": {k: v for k, v in self.context},
        }


@dataclass(frozen=True)
class Result:
    """
    Generic result type for operations that can fail.
    Either contains a value OR an error, never both.
    """
    value: Optional[object] = None
    error: Optional[Error] = None

    @property
    def is_success(self) -> bool:
        return self.error is None

    @property
    def is_failure(self) -> bool:
        return self.error is not None

    @staticmethod
    def success(value: object) -> Result:
        return Result(value=value, error=None)

    @staticmethod
    def failure(error: Error) -> Result:
        return Result(value=None, error=error)


# =============================================================================
# SEVERITY
# =============================================================================

class Severity(IntEnum):
    """Anomaly / issue severity. Ordered, so comparisons are meaningful."""
    LOW = 0
    MEDIUM = 1
    HIGH = 2
    CRITICAL = 3


# =============================================================================
# ENTITY REFERENCES (closed variant set)
# =============================================================================

class EntityType(Enum):
    COMPANY = "company"
    FIRM = "firm"
    DEAL = "deal"
    ROUND = "round"
    PERSON = "person"


class EntityRole(Enum):
    PRIMARY = "primary"
    TARGET = "target"
    PARTICIPANT = "participant"


@dataclass(frozen=True)
class EntityRef:
    """
    Typed reference to an entity by id.

    References are id-indexed lookups, never live object pointers, so
    goal/issue/action graphs stay acyclic at the data level.
    """
    type: EntityType
    id: str
    role: EntityRole = EntityRole.PRIMARY

    def __post_init__(self):
        if not isinstance(self.type, EntityType):
            raise ValueError(f"EntityRef type must be EntityType, got {self.type!r}")
        if not self.id or not isinstance(self.id, str):
            raise ValueError("EntityRef id must be a non-empty string")
        if not isinstance(self.role, EntityRole):
            raise ValueError(f"EntityRef role must be EntityRole, got {self.role!r}")

    @staticmethod
    def company(company_id: str, role: EntityRole = EntityRole.PRIMARY) -> EntityRef:
        return EntityRef(type=EntityType.COMPANY, id=company_id, role=role)

    def describe(self) -> str:
        """Human label; exhaustive over EntityType."""
        if self.type is EntityType.COMPANY:
            return f"company {self.id}"
        if self.type is EntityType.FIRM:
            return f"firm {self.id}"
        if self.type is EntityType.DEAL:
            return f"deal {self.id}"
        if self.type is EntityType.ROUND:
            return f"round {self.id}"
        if self.type is EntityType.PERSON:
            return f"person {self.id}"
        raise ValueError(f"Unhandled entity type: {self.type}")

    def to_dict(self) -> dict:
        return {"type": self.type.value, "id": self.id, "role": self.role.value}


# =============================================================================
# NUMERIC HELPERS
# =============================================================================

def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


# =============================================================================
# TIMESTAMPS
# =============================================================================

def ensure_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: object) -> datetime:
    """
    Parse an ISO 8601 date or datetime into an aware UTC datetime.

    Raises ValueError for anything unparseable; callers at the raw boundary
    decide whether that is a schema failure or a hard stop.
    """
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if not isinstance(value, str) or not value:
        raise ValueError(f"Invalid timestamp: {value!r}")
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        return ensure_utc(datetime.fromisoformat(text))
    except ValueError:
        raise ValueError(f"Invalid timestamp format: {value!r}. Must be ISO 8601.") from None


def days_between(start: datetime, end: datetime) -> float:
    """Signed fractional days from start to end."""
    return (ensure_utc(end) - ensure_utc(start)).total_seconds() / 86400.0


def round_half_up(value: float, digits: int = 0) -> float:
    """Round halves away from zero for positive values (not banker's rounding)."""
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor
