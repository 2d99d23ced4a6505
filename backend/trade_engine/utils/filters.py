"""
Typed filter expressions for the reporting endpoints.

Filters are a small AST instead of free-form query strings:

  {"kind": "and", "clauses": [
      {"kind": "field", "field": "risk_score", "op": "gt", "value": 0.5},
      {"kind": "or", "clauses": [
          {"kind": "field", "field": "trade_count", "op": "ge", "value": 10},
          {"kind": "not", "clause": {"kind": "field", "field": "is_suspicious", "op": "eq", "value": false}}
      ]}
  ]}

Field names are checked against the record model before evaluation.
"""

from __future__ import annotations

import operator
from enum import Enum
from typing import Any, Annotated, Callable, Dict, Iterable, List, Literal, Set, Union

from pydantic import BaseModel, Field


class Operator(str, Enum):
    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GE = "ge"
    LT = "lt"
    LE = "le"
    IN = "in"
    CONTAINS = "contains"


_COMPARE: Dict[Operator, Callable[[Any, Any], bool]] = {
    Operator.EQ: operator.eq,
    Operator.NE: operator.ne,
    Operator.GT: operator.gt,
    Operator.GE: operator.ge,
    Operator.LT: operator.lt,
    Operator.LE: operator.le,
    Operator.IN: lambda actual, expected: actual in expected,
    Operator.CONTAINS: lambda actual, expected: expected in actual,
}


class FieldFilter(BaseModel):
    kind: Literal["field"] = "field"
    field: str
    op: Operator
    value: Any


class AndFilter(BaseModel):
    kind: Literal["and"] = "and"
    clauses: List["FilterExpr"]


class OrFilter(BaseModel):
    kind: Literal["or"] = "or"
    clauses: List["FilterExpr"]


class NotFilter(BaseModel):
    kind: Literal["not"] = "not"
    clause: "FilterExpr"


FilterExpr = Annotated[
    Union[FieldFilter, AndFilter, OrFilter, NotFilter],
    Field(discriminator="kind"),
]

AndFilter.model_rebuild()
OrFilter.model_rebuild()
NotFilter.model_rebuild()


def referenced_fields(expr: FilterExpr) -> Set[str]:
    if isinstance(expr, FieldFilter):
        return {expr.field}
    if isinstance(expr, NotFilter):
        return referenced_fields(expr.clause)
    fields: Set[str] = set()
    for clause in expr.clauses:
        fields |= referenced_fields(clause)
    return fields


def validate_fields(expr: FilterExpr, model: type[BaseModel]) -> None:
    """Raise ``ValueError`` for any field the record model does not have."""
    unknown = referenced_fields(expr) - set(model.model_fields)
    if unknown:
        raise ValueError(f"Unknown filter field(s): {', '.join(sorted(unknown))}")


def evaluate(expr: FilterExpr, record: Dict[str, Any]) -> bool:
    if isinstance(expr, FieldFilter):
        actual = record.get(expr.field)
        if actual is None:
            return expr.op == Operator.EQ and expr.value is None
        try:
            return bool(_COMPARE[expr.op](actual, expr.value))
        except TypeError:
            return False
    if isinstance(expr, AndFilter):
        return all(evaluate(c, record) for c in expr.clauses)
    if isinstance(expr, OrFilter):
        return any(evaluate(c, record) for c in expr.clauses)
    return not evaluate(expr.clause, record)


def apply_filter(expr: FilterExpr, records: Iterable[BaseModel]) -> List[BaseModel]:
    return [r for r in records if evaluate(expr, r.model_dump(mode="json"))]
