"""
Query interpreter for the list and fetch endpoints.

Request parameters arrive as text (``where``, ``sort`` and ``select`` hold
JSON in the document-store dialect, ``skip``/``limit`` hold integers,
``count`` holds ``"true"``). ``parse_list_params`` validates all of them up
front and compiles them into a ``QueryPlan`` bound to one model;
``run_query`` executes the plan. Any problem with the parameters raises
``MalformedQuery`` before the store is touched.

Execution order is filter, sort, skip, limit, then projection. Projection is
applied to the materialized documents, so it can never change which
documents match or their order.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, List, Optional

import pydantic
from sqlalchemy import Boolean, DateTime, String, and_, cast, false, func, not_, or_, select, true
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub.core.database import as_utc_naive
from taskhub.core.errors import MalformedQuery, NotFound

logger = logging.getLogger(__name__)

_DATETIME = pydantic.TypeAdapter(datetime)

_COMPARISONS = {
    "$eq": lambda col, v: col == v,
    "$ne": lambda col, v: col != v,
    "$gt": lambda col, v: col > v,
    "$gte": lambda col, v: col >= v,
    "$lt": lambda col, v: col < v,
    "$lte": lambda col, v: col <= v,
}
_LOGICAL = ("$and", "$or", "$nor")
MAX_FILTER_DEPTH = 32
# largest value a signed 64-bit OFFSET/LIMIT accepts
MAX_PAGINATION = 2**63 - 1
_SORT_DIRECTIONS = {
    1: False,
    -1: True,
    "1": False,
    "-1": True,
    "asc": False,
    "ascending": False,
    "desc": True,
    "descending": True,
}


@dataclass(frozen=True)
class Projection:
    fields: frozenset
    inclusive: bool

    def apply(self, document: dict) -> dict:
        if self.inclusive:
            return {k: v for k, v in document.items() if k in self.fields}
        return {k: v for k, v in document.items() if k not in self.fields}


@dataclass
class QueryPlan:
    model: Any
    criteria: Any
    order_by: List[Any]
    projection: Optional[Projection] = None
    skip: int = 0
    limit: int = 0  # 0 means no limit
    count: bool = False


def load_json_param(name: str, raw: str) -> dict:
    try:
        value = json.loads(raw)
    except RecursionError:
        raise MalformedQuery(f"'{name}' is nested too deeply") from None
    except (TypeError, ValueError) as e:
        raise MalformedQuery(f"'{name}' is not valid JSON: {e}") from None
    if not isinstance(value, dict):
        raise MalformedQuery(f"'{name}' must be a JSON object")
    return value


def _column(model, field: str):
    attr = model.FIELDS.get(field)
    if attr is None:
        raise MalformedQuery(f"Unknown field '{field}'")
    return getattr(model, attr)


def _coerce(model, field: str, value):
    column_type = model.__table__.c[model.FIELDS[field]].type
    if isinstance(column_type, Boolean):
        if not isinstance(value, bool):
            raise MalformedQuery(f"'{field}' expects a boolean")
        return value
    if isinstance(column_type, DateTime):
        if isinstance(value, bool) or not isinstance(value, (str, int, float)):
            raise MalformedQuery(f"'{field}' expects a date")
        try:
            return as_utc_naive(_DATETIME.validate_python(value))
        except pydantic.ValidationError:
            raise MalformedQuery(f"'{field}' expects a date, got {value!r}") from None
    if isinstance(column_type, String):
        if not isinstance(value, str):
            raise MalformedQuery(f"'{field}' expects a string")
        return value
    raise MalformedQuery(f"'{field}' cannot be filtered")


def _list_operand(field: str, op: str, value) -> list:
    if not isinstance(value, list):
        raise MalformedQuery(f"'{op}' on '{field}' expects a list")
    return value


def _array_contains(column, field: str, value):
    if not isinstance(value, str):
        raise MalformedQuery(f"'{field}' holds strings")
    # elements are stored as a JSON list; a quoted element only matches whole
    return cast(column, String).contains(json.dumps(value), autoescape=True)


def _array_equals(column, field: str, value):
    if not all(isinstance(v, str) for v in value):
        raise MalformedQuery(f"'{field}' holds strings")
    # same serialization the JSON column writes
    return cast(column, String) == json.dumps(value)


def _array_match(column, field: str, value):
    """Document-store equality: a list matches exactly, a scalar means contains."""
    if isinstance(value, list):
        return _array_equals(column, field, value)
    return _array_contains(column, field, value)


def _array_clause(model, field: str, condition):
    column = _column(model, field)
    if not _is_operator_dict(condition):
        return _array_match(column, field, condition)
    parts = []
    for op, value in condition.items():
        if op == "$eq":
            parts.append(_array_match(column, field, value))
        elif op == "$ne":
            parts.append(not_(_array_match(column, field, value)))
        elif op in ("$in", "$nin"):
            items = _list_operand(field, op, value)
            any_of = or_(false(), *(_array_match(column, field, v) for v in items))
            parts.append(any_of if op == "$in" else not_(any_of))
        elif op == "$size":
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise MalformedQuery(f"'$size' on '{field}' expects a non-negative integer")
            parts.append(func.json_array_length(column) == value)
        else:
            raise MalformedQuery(f"Operator '{op}' is not supported on '{field}'")
    return and_(*parts)


def _is_operator_dict(condition) -> bool:
    if not isinstance(condition, dict) or not condition:
        return False
    ops = [k.startswith("$") for k in condition]
    if all(ops):
        return True
    if any(ops):
        raise MalformedQuery("Cannot mix operators and fields in one condition")
    return False


def _field_clause(model, field: str, condition):
    if field in model.ARRAY_FIELDS:
        return _array_clause(model, field, condition)
    column = _column(model, field)
    if not _is_operator_dict(condition):
        return column == _coerce(model, field, condition)

    parts = []
    for op, value in condition.items():
        if op in _COMPARISONS:
            parts.append(_COMPARISONS[op](column, _coerce(model, field, value)))
        elif op == "$in":
            items = [_coerce(model, field, v) for v in _list_operand(field, op, value)]
            parts.append(column.in_(items))
        elif op == "$nin":
            items = [_coerce(model, field, v) for v in _list_operand(field, op, value)]
            parts.append(column.not_in(items))
        else:
            raise MalformedQuery(f"Unknown operator '{op}'")
    return and_(*parts)


def compile_filter(model, where: dict, depth: int = 0):
    """Translate a ``where`` object into a SQLAlchemy boolean clause."""
    if depth > MAX_FILTER_DEPTH:
        raise MalformedQuery(f"Filter is nested deeper than {MAX_FILTER_DEPTH} levels")
    clauses = []
    for key, value in where.items():
        if key in _LOGICAL:
            if not isinstance(value, list) or not value:
                raise MalformedQuery(f"'{key}' expects a non-empty list")
            subs = []
            for sub in value:
                if not isinstance(sub, dict):
                    raise MalformedQuery(f"'{key}' expects a list of objects")
                subs.append(compile_filter(model, sub, depth + 1))
            if key == "$and":
                clauses.append(and_(*subs))
            elif key == "$or":
                clauses.append(or_(*subs))
            else:
                clauses.append(not_(or_(*subs)))
        elif key.startswith("$"):
            raise MalformedQuery(f"Unknown operator '{key}'")
        else:
            clauses.append(_field_clause(model, key, value))
    return and_(true(), *clauses)


def compile_sort(model, sort: dict) -> list:
    order_by = []
    for field, direction in sort.items():
        if field in model.ARRAY_FIELDS:
            raise MalformedQuery(f"Cannot sort on '{field}'")
        column = _column(model, field)
        key = direction.lower() if isinstance(direction, str) else direction
        if isinstance(key, bool) or not isinstance(key, (int, str)) or key not in _SORT_DIRECTIONS:
            raise MalformedQuery(f"Invalid sort direction for '{field}': {direction!r}")
        order_by.append(column.desc() if _SORT_DIRECTIONS[key] else column.asc())
    if "_id" not in sort:
        # stable pagination
        order_by.append(model.id.asc())
    return order_by


def compile_projection(model, spec: dict) -> Optional[Projection]:
    if not spec:
        return None
    include, exclude = set(), set()
    for field, flag in spec.items():
        if field not in model.FIELDS:
            raise MalformedQuery(f"Unknown field '{field}'")
        if flag in (1, True, "1"):
            include.add(field)
        elif flag in (0, False, "0"):
            exclude.add(field)
        else:
            raise MalformedQuery(f"Invalid projection for '{field}': {flag!r}")

    if (include - {"_id"}) and (exclude - {"_id"}):
        raise MalformedQuery("Projection cannot mix inclusion and exclusion")
    if include - {"_id"} or not exclude:
        if "_id" not in exclude:
            include.add("_id")
        return Projection(frozenset(include), inclusive=True)
    return Projection(frozenset(exclude), inclusive=False)


def _non_negative_int(name: str, raw: str) -> int:
    try:
        value = int(str(raw).strip())
    except ValueError:
        raise MalformedQuery(f"'{name}' must be an integer") from None
    if value < 0:
        raise MalformedQuery(f"'{name}' must not be negative")
    if value > MAX_PAGINATION:
        raise MalformedQuery(f"'{name}' must be at most {MAX_PAGINATION}")
    return value


def parse_select(model, select_param: Optional[str]) -> Optional[Projection]:
    if not select_param:
        return None
    return compile_projection(model, load_json_param("select", select_param))


def parse_list_params(
    model,
    where: Optional[str] = None,
    sort: Optional[str] = None,
    select_param: Optional[str] = None,
    skip: Optional[str] = None,
    limit: Optional[str] = None,
    count: Optional[str] = None,
) -> QueryPlan:
    criteria = compile_filter(model, load_json_param("where", where)) if where else true()
    order_by = compile_sort(model, load_json_param("sort", sort) if sort else {})
    return QueryPlan(
        model=model,
        criteria=criteria,
        order_by=order_by,
        projection=parse_select(model, select_param),
        skip=_non_negative_int("skip", skip) if skip else 0,
        limit=_non_negative_int("limit", limit) if limit else 0,
        count=(count or "").lower() == "true",
    )


async def run_query(session: AsyncSession, plan: QueryPlan):
    """Returns the matching count in count mode, otherwise a list of documents."""
    if plan.count:
        stmt = select(func.count()).select_from(plan.model).where(plan.criteria)
        return (await session.execute(stmt)).scalar_one()

    stmt = select(plan.model).where(plan.criteria).order_by(*plan.order_by)
    if plan.skip:
        stmt = stmt.offset(plan.skip)
    if plan.limit:
        stmt = stmt.limit(plan.limit)
    rows = (await session.execute(stmt)).scalars().all()
    logger.debug("%s query returned %d rows", plan.model.__name__, len(rows))

    documents = [row.to_document() for row in rows]
    if plan.projection is not None:
        documents = [plan.projection.apply(doc) for doc in documents]
    return documents


async def fetch_document(session: AsyncSession, model, object_id: str, select_param: Optional[str] = None) -> dict:
    """Single document by id. Only ``select`` applies here."""
    projection = parse_select(model, select_param)
    row = await session.get(model, object_id)
    if row is None:
        raise NotFound(f"{model.__name__} not found")
    document = row.to_document()
    return projection.apply(document) if projection is not None else document
