from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from app.core.config import settings
from app.core.errors import ValidationError
from app.db.collection import ResourceCollection
from app.schemas.query import (
    DEFAULT_SORT,
    Expansion,
    PageInfo,
    PagedResult,
    PageWindow,
    QuerySpec,
    SortClause,
)
from app.services.query_filters import translate

_LOG = logging.getLogger("app.query")


def _split_list(raw: Any) -> list[str]:
    return [item.strip() for item in str(raw or "").split(",") if item.strip()]


def _single(raw_params: Mapping[str, Any], name: str) -> Any:
    raw = raw_params.get(name)
    if isinstance(raw, (list, tuple)):
        raise ValidationError(f'Query parameter "{name}" may be given only once', field=name)
    return raw


def _positive_int(name: str, raw: Any) -> int:
    text = str(raw).strip()
    try:
        value = int(text)
    except (TypeError, ValueError):
        raise ValidationError(f'Query parameter "{name}" must be a positive integer', field=name)
    if value < 1:
        raise ValidationError(f'Query parameter "{name}" must be a positive integer', field=name)
    return value


def parse_projection(raw: Any) -> frozenset[str] | None:
    if raw is None:
        return None
    fields = _split_list(raw)
    if not fields:
        raise ValidationError('Query parameter "select" must list at least one field', field="select")
    return frozenset(fields)


def parse_sort(raw: Any) -> tuple[SortClause, ...]:
    if raw is None:
        return DEFAULT_SORT
    items = _split_list(raw)
    if not items:
        raise ValidationError('Query parameter "sort" must list at least one field', field="sort")
    clauses: list[SortClause] = []
    for item in items:
        descending = item.startswith("-")
        field = item[1:].strip() if descending else item
        if not field or field.startswith("-"):
            raise ValidationError(f'Malformed sort field "{item}"', field="sort")
        clauses.append(SortClause(field=field, dir="desc" if descending else "asc"))
    return tuple(clauses)


def build_query_spec(
    raw_params: Mapping[str, Any],
    expansions: Sequence[Expansion] = (),
    *,
    default_page_size: int | None = None,
    max_page_size: int | None = None,
) -> QuerySpec:
    """Build the per-request query value from raw query parameters.

    ``expansions`` is the route's own declaration of which relations may be
    inlined; nothing in ``raw_params`` can add to it.
    """
    ceiling = int(max_page_size or settings.QUERY_MAX_PAGE_SIZE)
    page_size = int(default_page_size or settings.QUERY_DEFAULT_PAGE_SIZE)

    page = _positive_int("page", _single(raw_params, "page")) if "page" in raw_params else 1
    if "limit" in raw_params:
        page_size = _positive_int("limit", _single(raw_params, "limit"))
    if page_size > ceiling:
        page_size = ceiling

    return QuerySpec(
        filter=translate(raw_params),
        projection=parse_projection(_single(raw_params, "select")),
        sort=parse_sort(_single(raw_params, "sort")),
        page=page,
        page_size=page_size,
        expansions=tuple(expansions),
    )


def paginate(total: int, page: int, page_size: int) -> PageInfo:
    has_next = page * page_size < total
    has_previous = page > 1
    return PageInfo(
        has_previous=has_previous,
        previous=PageWindow(page=page - 1, limit=page_size) if has_previous else None,
        has_next=has_next,
        next=PageWindow(page=page + 1, limit=page_size) if has_next else None,
    )


def execute_query(spec: QuerySpec, collection: ResourceCollection) -> PagedResult:
    # Count and fetch are separate reads; without snapshot isolation the total
    # may lag the page under concurrent writes.
    total = collection.count(spec.filter)
    # Past the last record the window is empty, and the raw offset may not fit the store's integer type.
    data = collection.find(
        spec.filter,
        projection=spec.projection,
        sort=spec.sort,
        skip=min(spec.skip, total),
        limit=spec.page_size,
        expand=spec.expansions,
    )
    _LOG.debug(
        "query total=%s page=%s page_size=%s returned=%s",
        total,
        spec.page,
        spec.page_size,
        len(data),
    )
    return PagedResult(total=total, data=data, pagination=paginate(total, spec.page, spec.page_size))
