from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Op = Literal["$eq", "$gt", "$gte", "$lt", "$lte", "$in"]
Dir = Literal["asc", "desc"]


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class FilterClause(_Frozen):
    field: str
    op: Op
    value: Any


class FilterExpression(_Frozen):
    clauses: tuple[FilterClause, ...] = ()

    @classmethod
    def equals(cls, field: str, value: Any) -> "FilterExpression":
        return cls(clauses=(FilterClause(field=field, op="$eq", value=value),))

    @property
    def fields(self) -> list[str]:
        seen: list[str] = []
        for clause in self.clauses:
            if clause.field not in seen:
                seen.append(clause.field)
        return seen

    def as_dict(self) -> dict[str, Any]:
        """Store-convention form: ``{field: literal}`` or ``{field: {"$gte": ..., "$lte": ...}}``."""
        out: dict[str, Any] = {}
        for field in self.fields:
            ops = {c.op: c.value for c in self.clauses if c.field == field}
            if list(ops) == ["$eq"]:
                out[field] = ops["$eq"]
            else:
                out[field] = ops
        return out


class SortClause(_Frozen):
    field: str
    dir: Dir


class Expansion(_Frozen):
    field: str
    select: tuple[str, ...] = ()


DEFAULT_SORT = (SortClause(field="createdAt", dir="desc"),)


class QuerySpec(_Frozen):
    filter: FilterExpression = FilterExpression()
    projection: frozenset[str] | None = None  # None means every exposed field
    sort: tuple[SortClause, ...] = DEFAULT_SORT
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=25, ge=1)
    expansions: tuple[Expansion, ...] = ()

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.page_size


class PageWindow(_Frozen):
    page: int
    limit: int


class PageInfo(_Frozen):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    has_previous: bool
    previous: PageWindow | None = None
    has_next: bool
    next: PageWindow | None = None


class PagedResult(BaseModel):
    total: int = Field(ge=0)
    data: list[dict[str, Any]]
    pagination: PageInfo

    def envelope(self) -> dict[str, Any]:
        return {
            "success": True,
            "count": self.total,
            "pagination": self.pagination.model_dump(by_alias=True, exclude_none=True),
            "data": self.data,
        }
