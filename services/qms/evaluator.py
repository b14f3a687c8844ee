"""
Measurement scoring and verdict aggregation.

Pure functions, no database access. A measurement spec is either numeric
(optional lower/upper limits, inclusive) or textual (an expected token
compared case-insensitively after trimming).
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Iterable, Union

from app.core.errors import ValidationError


class Result(str, Enum):
    OK = "ok"
    RET = "ret"
    PENDING = "pending"


@dataclass(frozen=True)
class NumericSpec:
    lower: Decimal | None = None
    upper: Decimal | None = None


@dataclass(frozen=True)
class TextualSpec:
    expected: str


MeasurementSpec = Union[NumericSpec, TextualSpec]


@dataclass(frozen=True)
class ItemOutcome:
    item_id: str
    result: Result
    is_critical: bool = False


@dataclass(frozen=True)
class Verdict:
    result: Result
    pending_items: tuple[str, ...] = field(default_factory=tuple)
    failed_items: tuple[str, ...] = field(default_factory=tuple)
    critical_vetoes: tuple[str, ...] = field(default_factory=tuple)


def is_absent(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, float):
        return math.isnan(value)
    if isinstance(value, Decimal):
        return value.is_nan()
    return False


def parse_numeric(value: Any) -> Decimal | None:
    """Return the measured number, or None when nothing was measured."""
    if is_absent(value):
        return None
    if isinstance(value, bool):
        raise ValidationError("Measured value must be a number", {"value": str(value)})
    if isinstance(value, Decimal):
        parsed = value
    elif isinstance(value, (int, float)):
        parsed = Decimal(str(value))
    elif isinstance(value, str):
        try:
            parsed = Decimal(value.strip())
        except InvalidOperation:
            raise ValidationError(f"Measured value '{value}' is not a number", {"value": value})
    else:
        raise ValidationError("Measured value must be a number", {"value": repr(value)})
    if parsed.is_nan():
        return None
    if parsed.is_infinite():
        raise ValidationError("Measured value must be finite", {"value": str(value)})
    return parsed


def evaluate(spec: MeasurementSpec, value: Any) -> Result:
    if isinstance(spec, TextualSpec):
        if is_absent(value):
            return Result.PENDING
        if str(value).strip().casefold() == spec.expected.strip().casefold():
            return Result.OK
        return Result.RET

    measured = parse_numeric(value)
    if measured is None:
        return Result.PENDING
    if spec.lower is not None and measured < spec.lower:
        return Result.RET
    if spec.upper is not None and measured > spec.upper:
        return Result.RET
    return Result.OK


def aggregate(outcomes: Iterable[ItemOutcome]) -> Verdict:
    """Pending beats everything; a critical ret vetoes; any ret rejects."""
    outcomes = list(outcomes)
    pending = tuple(o.item_id for o in outcomes if o.result == Result.PENDING)
    failed = tuple(o.item_id for o in outcomes if o.result == Result.RET)
    vetoes = tuple(o.item_id for o in outcomes if o.result == Result.RET and o.is_critical)

    if pending:
        result = Result.PENDING
    elif failed:
        result = Result.RET
    else:
        result = Result.OK
    return Verdict(result=result, pending_items=pending, failed_items=failed, critical_vetoes=vetoes)
