"""Derived parent aggregates (bootcamp average cost / average rating).

Every qualifying child mutation triggers a full recomputation over the
parent's current children through the collection's grouped aggregate; there
is no running average to drift. Recomputations are not serialized: two racing
writers leave whichever value landed last, and the next qualifying mutation
rewrites it from durable state.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import AppError
from app.db.collection import SqlCollection, attr_to_field
from app.models.bootcamp import Bootcamp
from app.models.course import Course
from app.models.review import Review
from app.schemas.query import FilterExpression

logger = logging.getLogger(__name__)

# Written when the last child is removed: the mean of nothing is undefined.
EMPTY_AGGREGATE = None


def ceil_to_ten(value: float) -> int:
    # Trim float noise from the database average before rounding up.
    return int(math.ceil(round(value, 6) / 10.0) * 10)


def unrounded(value: float) -> float:
    return float(value)


ROUNDING_POLICIES: dict[str, Callable[[float], Any]] = {
    "ceil_to_10": ceil_to_ten,
    "none": unrounded,
}


class MutationKind(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    REMOVED = "removed"


@dataclass(frozen=True)
class AggregateDependency:
    name: str
    child_model: type
    group_key: str
    metric_field: str
    parent_model: type
    parent_field: str
    function: str = "avg"
    rounding: str = "none"

    @property
    def child_collection(self) -> str:
        return self.child_model.__tablename__

    def finalize(self, raw: float | None) -> Any:
        if raw is None or math.isnan(raw):
            return EMPTY_AGGREGATE
        return ROUNDING_POLICIES[self.rounding](raw)


AGGREGATE_DEPENDENCIES: tuple[AggregateDependency, ...] = (
    AggregateDependency(
        name="bootcamp_average_cost",
        child_model=Course,
        group_key="bootcamp",
        metric_field="tuition",
        parent_model=Bootcamp,
        parent_field="averageCost",
        rounding="ceil_to_10",
    ),
    AggregateDependency(
        name="bootcamp_average_rating",
        child_model=Review,
        group_key="bootcamp",
        metric_field="rating",
        parent_model=Bootcamp,
        parent_field="averageRating",
    ),
)

DEPENDENCIES_BY_NAME = {dep.name: dep for dep in AGGREGATE_DEPENDENCIES}

# Fields no request payload may set directly.
DERIVED_PARENT_FIELDS = frozenset(dep.parent_field for dep in AGGREGATE_DEPENDENCIES)


def dependencies_for(child_model: type) -> list[AggregateDependency]:
    return [dep for dep in AGGREGATE_DEPENDENCIES if dep.child_model is child_model]


@dataclass(frozen=True)
class ChildMutation:
    kind: MutationKind
    child: dict[str, Any]
    dependency: AggregateDependency
    previous: dict[str, Any] | None = field(default=None)

    def parents_to_recompute(self) -> list[Any]:
        current = self.child.get(self.dependency.group_key)
        if self.kind is not MutationKind.UPDATED or self.previous is None:
            return [current] if current is not None else []
        before = self.previous.get(self.dependency.group_key)
        metric_changed = self.previous.get(self.dependency.metric_field) != self.child.get(self.dependency.metric_field)
        if before != current:
            return [value for value in (before, current) if value is not None]
        return [current] if metric_changed and current is not None else []


def snapshot(row: Any) -> dict[str, Any]:
    """Field values of a child row keyed by API field name, for event payloads."""
    return {attr_to_field(column.key): getattr(row, column.key) for column in row.__table__.columns}


def compute_aggregate(db: Session, dependency: AggregateDependency, parent_id: Any) -> Any:
    children = SqlCollection(db, dependency.child_model)
    groups = children.aggregate(
        dependency.group_key,
        dependency.metric_field,
        dependency.function,
        match=FilterExpression.equals(dependency.group_key, parent_id),
    )
    raw = next(iter(groups.values()), None)
    return dependency.finalize(raw)


def recompute_aggregate(db: Session, dependency: AggregateDependency, parent_id: Any) -> bool:
    """Recompute and write back one parent's aggregate; failures are logged, never raised."""
    try:
        value = compute_aggregate(db, dependency, parent_id)
        updated = SqlCollection(db, dependency.parent_model).update_by_id(parent_id, {dependency.parent_field: value})
        db.commit()
    except (AppError, SQLAlchemyError):
        db.rollback()
        logger.warning(
            "aggregate write-back failed dependency=%s parent=%s",
            dependency.name,
            parent_id,
            exc_info=True,
        )
        return False
    if not updated:
        logger.info("aggregate parent missing dependency=%s parent=%s", dependency.name, parent_id)
    return updated


def _schedule_detached(dependency: AggregateDependency, parent_id: Any) -> None:
    from app.workers.tasks.aggregates import recompute_aggregate_task

    try:
        recompute_aggregate_task.delay(dependency.name, str(parent_id))
    except Exception:
        # The child write already committed; a lost recompute heals on the next mutation.
        logger.warning(
            "aggregate recompute dispatch failed dependency=%s parent=%s",
            dependency.name,
            parent_id,
            exc_info=True,
        )


def on_child_mutated(db: Session, event: ChildMutation) -> None:
    """Must be called only after the child mutation has been committed."""
    for parent_id in event.parents_to_recompute():
        if settings.aggregate_recompute_detached:
            _schedule_detached(event.dependency, parent_id)
        else:
            recompute_aggregate(db, event.dependency, parent_id)


def dispatch_child_mutation(
    db: Session,
    kind: MutationKind,
    child: dict[str, Any],
    child_model: type,
    previous: dict[str, Any] | None = None,
) -> None:
    for dependency in dependencies_for(child_model):
        on_child_mutated(db, ChildMutation(kind=kind, child=child, dependency=dependency, previous=previous))
