"""Resource collections: the read/aggregate/write-back surface the query engine
and the aggregate maintainer run against.

Records leave this module as plain dicts keyed by API field names
(``createdAt``, ``averageCost``, ``bootcamp``); the snake_case column keys stay
inside the models.
"""

from __future__ import annotations

import math
import uuid
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Protocol

from sqlalchemy import asc, desc, func, or_, select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.inspection import inspect as sa_inspect
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.sql.sqltypes import JSON

from app.core.errors import StoreTimeout, StoreUnavailable, ValidationError
from app.schemas.query import Expansion, FilterExpression, SortClause

# Never serialized, filtered, sorted or projected, whatever the model.
HIDDEN_ATTRS = frozenset({"password_hash"})

AGGREGATE_FUNCTIONS = {
    "avg": func.avg,
    "sum": func.sum,
    "min": func.min,
    "max": func.max,
    "count": func.count,
}

_TIMEOUT_MARKERS = ("timeout", "timed out", "canceling statement")

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1


class ResourceCollection(Protocol):
    def count(self, filter: FilterExpression) -> int:
        ...

    def find(
        self,
        filter: FilterExpression,
        *,
        projection: frozenset[str] | None = None,
        sort: Sequence[SortClause] = (),
        skip: int = 0,
        limit: int | None = None,
        expand: Sequence[Expansion] = (),
    ) -> list[dict[str, Any]]:
        ...

    def find_by_id(self, record_id: Any, *, expand: Sequence[Expansion] = ()) -> dict[str, Any] | None:
        ...

    def aggregate(
        self,
        group_key: str,
        metric_field: str,
        function: str = "avg",
        *,
        match: FilterExpression | None = None,
    ) -> dict[Any, float | None]:
        ...

    def update_by_id(self, record_id: Any, values: dict[str, Any]) -> bool:
        ...


def attr_to_field(attr: str) -> str:
    if attr.endswith("_id") and attr != "id":
        attr = attr[: -len("_id")]
    head, *rest = attr.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def serialize_value(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: serialize_value(val) for key, val in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize_value(item) for item in value]
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, Decimal):
        return float(value)
    return value


def _is_timeout(exc: Exception) -> bool:
    orig = getattr(exc, "orig", None)
    if getattr(orig, "sqlstate", None) == "57014" or getattr(orig, "pgcode", None) == "57014":
        return True
    text = str(orig or exc).lower()
    return any(marker in text for marker in _TIMEOUT_MARKERS)


@contextmanager
def store_call(operation: str, resource: str) -> Iterator[None]:
    try:
        yield
    except PoolTimeoutError as exc:
        raise StoreTimeout(f"Store timed out during {operation} on {resource}") from exc
    except OperationalError as exc:
        if _is_timeout(exc):
            raise StoreTimeout(f"Store timed out during {operation} on {resource}") from exc
        raise StoreUnavailable(f"Store unavailable during {operation} on {resource}") from exc


def _bad_filter_value(field: str, kind: str) -> ValidationError:
    return ValidationError(f'Invalid filter value for field "{field}" ({kind})', field=field)


def _coerce_bool(field: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value or "").strip().lower()
    if text in {"1", "true", "yes", "y"}:
        return True
    if text in {"0", "false", "no", "n"}:
        return False
    raise _bad_filter_value(field, "boolean")


def _coerce_number(field: str, value: Any, python_type: type) -> Any:
    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        raw = value
    else:
        raw = str(value).strip()
        if not raw:
            raise _bad_filter_value(field, "number")
    try:
        number = python_type(str(raw) if python_type is Decimal and isinstance(raw, float) else raw)
    except (ValueError, TypeError, OverflowError, InvalidOperation):
        raise _bad_filter_value(field, "number")
    # Out-of-range literals would otherwise fail inside the driver.
    if python_type is int and not INT64_MIN <= number <= INT64_MAX:
        raise _bad_filter_value(field, "number")
    if python_type is float and not math.isfinite(number):
        raise _bad_filter_value(field, "number")
    if python_type is Decimal and not number.is_finite():
        raise _bad_filter_value(field, "number")
    return number


def _coerce_date(field: str, value: Any) -> date:
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    text = str(value or "").strip()
    try:
        if "T" in text or " " in text:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        return date.fromisoformat(text)
    except ValueError:
        raise _bad_filter_value(field, "date")


def _coerce_datetime(field: str, value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value or "").strip()
        try:
            if _is_date_only_literal(text):
                parsed = datetime.combine(date.fromisoformat(text), datetime.min.time())
            else:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            raise _bad_filter_value(field, "datetime")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _is_date_only_literal(raw: Any) -> bool:
    if isinstance(raw, date) and not isinstance(raw, datetime):
        return True
    if not isinstance(raw, str):
        return False
    text = raw.strip()
    if not text or "T" in text or " " in text:
        return False
    try:
        date.fromisoformat(text)
        return True
    except ValueError:
        return False


def _python_type(column: Any) -> type | None:
    try:
        return column.type.python_type
    except NotImplementedError:
        return None


def coerce_value(field: str, column: Any, value: Any) -> Any:
    python_type = _python_type(column)
    if python_type is uuid.UUID:
        if isinstance(value, uuid.UUID):
            return value
        try:
            return uuid.UUID(str(value or "").strip())
        except ValueError:
            raise _bad_filter_value(field, "id")
    if python_type is bool:
        return _coerce_bool(field, value)
    if python_type in {int, float, Decimal}:
        return _coerce_number(field, value, python_type)
    if python_type is date:
        return _coerce_date(field, value)
    if python_type is datetime:
        return _coerce_datetime(field, value)
    return value


def _day_range(attr: Any, start: datetime) -> Any:
    # A date-only literal on a datetime field covers the whole UTC day.
    return (attr >= start) & (attr < start + timedelta(days=1))


@dataclass(frozen=True)
class _Relation:
    field: str
    attr: str
    target: type
    uselist: bool
    select: tuple[str, ...]


class SqlCollection:
    """A :class:`ResourceCollection` over one mapped SQLAlchemy model."""

    def __init__(self, db: Session, model: type):
        self.db = db
        self.model = model
        self.name = model.__tablename__
        self._columns = field_columns(model)

    # -- field resolution -------------------------------------------------

    def _column(self, field: str, purpose: str):
        column = self._columns.get(field)
        if column is None:
            raise ValidationError(f'Unknown field "{field}" for {purpose} on {self.name}', field=field)
        return column

    def _filterable(self, field: str, purpose: str):
        column = self._column(field, purpose)
        if isinstance(column.type, JSON):
            raise ValidationError(f'Field "{field}" cannot be used for {purpose}', field=field)
        return column

    def _conditions(self, filter: FilterExpression | None) -> list[Any]:
        conditions: list[Any] = []
        for clause in (filter.clauses if filter is not None else ()):
            column = self._filterable(clause.field, "filtering")
            attr = getattr(self.model, column.key)
            whole_day = _python_type(column) is datetime
            if clause.op == "$in":
                days = [item for item in clause.value if whole_day and _is_date_only_literal(item)]
                exact = [coerce_value(clause.field, column, item) for item in clause.value if item not in days]
                options = [_day_range(attr, coerce_value(clause.field, column, item)) for item in days]
                if exact:
                    options.append(attr.in_(exact))
                conditions.append(or_(*options))
                continue
            value = coerce_value(clause.field, column, clause.value)
            if clause.op == "$eq" and whole_day and _is_date_only_literal(clause.value):
                conditions.append(_day_range(attr, value))
            elif clause.op == "$eq":
                conditions.append(attr == value)
            elif clause.op == "$gt":
                conditions.append(attr > value)
            elif clause.op == "$gte":
                conditions.append(attr >= value)
            elif clause.op == "$lt":
                conditions.append(attr < value)
            elif clause.op == "$lte":
                conditions.append(attr <= value)
        return conditions

    def _order_by(self, sort: Sequence[SortClause]) -> list[Any]:
        order = []
        for clause in sort:
            attr = getattr(self.model, self._filterable(clause.field, "sorting").key)
            order.append(asc(attr) if clause.dir == "asc" else desc(attr))
        # Stable paging across equal sort keys.
        order.append(asc(self.model.id))
        return order

    def _projected(self, projection: frozenset[str] | None) -> list[str]:
        if projection is None:
            return list(self._columns)
        for field in projection:
            self._column(field, "selection")
        return ["id", *[field for field in self._columns if field in projection and field != "id"]]

    def _relations(self, expand: Sequence[Expansion], fields: list[str]) -> list[_Relation]:
        mapper = sa_inspect(self.model)
        by_field = {attr_to_field(rel.key): rel for rel in mapper.relationships}
        relations = []
        for expansion in expand:
            rel = by_field.get(expansion.field)
            if rel is None:
                raise ValueError(f"{self.name} has no relation {expansion.field!r}")
            target_columns = field_columns(rel.mapper.class_)
            unknown = [name for name in expansion.select if name not in target_columns]
            if unknown:
                raise ValueError(f"{rel.mapper.class_.__tablename__} has no fields {unknown!r}")
            # A relation backed by a foreign key column is only inlined when that column is selected.
            if expansion.field in self._columns and expansion.field not in fields:
                continue
            relations.append(
                _Relation(
                    field=expansion.field,
                    attr=rel.key,
                    target=rel.mapper.class_,
                    uselist=bool(rel.uselist),
                    select=tuple(expansion.select),
                )
            )
        return relations

    # -- serialization ----------------------------------------------------

    def _serialize(self, row: Any, fields: list[str], relations: list[_Relation]) -> dict[str, Any]:
        record = {field: serialize_value(getattr(row, self._columns[field].key)) for field in fields}
        for relation in relations:
            related = getattr(row, relation.attr)
            if relation.uselist:
                record[relation.field] = [_related_record(item, relation.select) for item in related]
            else:
                record[relation.field] = _related_record(related, relation.select) if related is not None else None
        return record

    # -- collection interface ----------------------------------------------

    def count(self, filter: FilterExpression | None = None) -> int:
        stmt = select(func.count()).select_from(self.model).where(*self._conditions(filter))
        with store_call("count", self.name):
            return int(self.db.execute(stmt).scalar_one())

    def find(
        self,
        filter: FilterExpression | None = None,
        *,
        projection: frozenset[str] | None = None,
        sort: Sequence[SortClause] = (),
        skip: int = 0,
        limit: int | None = None,
        expand: Sequence[Expansion] = (),
    ) -> list[dict[str, Any]]:
        fields = self._projected(projection)
        relations = self._relations(expand, fields)
        stmt = select(self.model).where(*self._conditions(filter)).order_by(*self._order_by(sort))
        for relation in relations:
            stmt = stmt.options(selectinload(getattr(self.model, relation.attr)))
        if skip:
            stmt = stmt.offset(skip)
        if limit is not None:
            stmt = stmt.limit(limit)
        with store_call("find", self.name):
            rows = self.db.execute(stmt).scalars().all()
            return [self._serialize(row, fields, relations) for row in rows]

    def find_by_id(self, record_id: Any, *, expand: Sequence[Expansion] = ()) -> dict[str, Any] | None:
        try:
            key = record_id if isinstance(record_id, uuid.UUID) else uuid.UUID(str(record_id))
        except ValueError:
            return None
        fields = self._projected(None)
        relations = self._relations(expand, fields)
        with store_call("find_by_id", self.name):
            row = self.db.get(self.model, key)
            if row is None:
                return None
            return self._serialize(row, fields, relations)

    def aggregate(
        self,
        group_key: str,
        metric_field: str,
        function: str = "avg",
        *,
        match: FilterExpression | None = None,
    ) -> dict[Any, float | None]:
        fn = AGGREGATE_FUNCTIONS.get(function)
        if fn is None:
            raise ValueError(f"Unsupported aggregate function {function!r}")
        group_attr = getattr(self.model, self._filterable(group_key, "grouping").key)
        metric_attr = getattr(self.model, self._filterable(metric_field, "aggregation").key)
        stmt = select(group_attr, fn(metric_attr)).where(*self._conditions(match)).group_by(group_attr)
        with store_call("aggregate", self.name):
            rows = self.db.execute(stmt).all()
        return {group: (float(value) if value is not None else None) for group, value in rows}

    def update_by_id(self, record_id: Any, values: dict[str, Any]) -> bool:
        assignments = {self._column(field, "update").key: value for field, value in values.items()}
        key = coerce_value("id", self._columns["id"], record_id)
        stmt = update(self.model).where(self.model.id == key).values(**assignments)
        with store_call("update", self.name):
            result = self.db.execute(stmt)
        return bool(result.rowcount)


def field_columns(model: type) -> dict[str, Any]:
    mapper = sa_inspect(model)
    return {attr_to_field(column.key): column for column in mapper.columns if column.key not in HIDDEN_ATTRS}


def _related_record(row: Any, select_fields: tuple[str, ...]) -> dict[str, Any]:
    columns = field_columns(type(row))
    fields = ["id", *[field for field in select_fields if field != "id"]] if select_fields else list(columns)
    return {field: serialize_value(getattr(row, columns[field].key)) for field in fields}
