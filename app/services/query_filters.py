"""Translation of raw list-endpoint query parameters into a :class:`FilterExpression`.

Comparison operators arrive either bracketed in the key (``price[gte]=100``, as
sent by browsers and most HTTP clients) or already nested by a form parser
(``{"price": {"gte": "100"}}``). Both shapes are inspected key by key; operator
tokens are looked up in ``OPERATORS`` and anything else is rejected.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from app.core.errors import ValidationError
from app.schemas.query import FilterClause, FilterExpression

RESERVED_PARAMS = frozenset({"select", "sort", "page", "limit"})

OPERATORS = {
    "gt": "$gt",
    "gte": "$gte",
    "lt": "$lt",
    "lte": "$lte",
    "in": "$in",
}

_BRACKETED_KEY_RE = re.compile(r"^(?P<field>[A-Za-z_][A-Za-z0-9_.]*)\[(?P<op>[^\[\]]*)\]$")
_FIELD_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_.]*$")


def _split_key(key: str) -> tuple[str, str | None]:
    match = _BRACKETED_KEY_RE.fullmatch(key)
    if match:
        return match.group("field"), match.group("op")
    if not _FIELD_RE.fullmatch(key):
        raise ValidationError(f'Malformed filter parameter "{key}"', field=key)
    return key, None


def _operand(op: str, raw: Any) -> Any:
    if op != "$in":
        return raw
    if isinstance(raw, (list, tuple)):
        return tuple(part for item in raw for part in str(item).split(","))
    # Duplicates are kept; membership is unaffected by them.
    return tuple(str(raw).split(","))


def _clause(field: str, token: str, raw: Any) -> FilterClause:
    op = OPERATORS.get(token)
    if op is None:
        raise ValidationError(f'Unknown filter operator "{token}" for field "{field}"', field=field)
    if op != "$in" and isinstance(raw, (list, tuple)):
        raise ValidationError(f'Duplicate "{token}" condition for field "{field}"', field=field)
    return FilterClause(field=field, op=op, value=_operand(op, raw))


def translate(raw_params: Mapping[str, Any]) -> FilterExpression:
    clauses: list[FilterClause] = []
    seen: set[tuple[str, str]] = set()

    def add(clause: FilterClause) -> None:
        marker = (clause.field, clause.op)
        if marker in seen:
            raise ValidationError(f'Duplicate "{clause.op[1:]}" condition for field "{clause.field}"', field=clause.field)
        seen.add(marker)
        clauses.append(clause)

    for key, value in raw_params.items():
        key = str(key)
        if key in RESERVED_PARAMS:
            continue
        field, token = _split_key(key)
        if field in RESERVED_PARAMS or field in OPERATORS:
            raise ValidationError(f'Field name "{field}" collides with a reserved query parameter', field=field)

        if token is not None:
            add(_clause(field, token, value))
        elif isinstance(value, Mapping):
            if not value:
                raise ValidationError(f'Empty condition for field "{field}"', field=field)
            for nested_token, nested_value in value.items():
                if isinstance(nested_value, Mapping):
                    raise ValidationError(f'Nested condition too deep for field "{field}"', field=field)
                add(_clause(field, str(nested_token), nested_value))
        elif isinstance(value, (list, tuple)):
            raise ValidationError(f'Repeated value for field "{field}"; use "{field}[in]" instead', field=field)
        else:
            add(FilterClause(field=field, op="$eq", value=value))

    return FilterExpression(clauses=tuple(clauses))
