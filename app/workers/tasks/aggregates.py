from __future__ import annotations

from uuid import UUID

from app.db.session import SessionLocal
from app.services.aggregates import DEPENDENCIES_BY_NAME, recompute_aggregate
from app.workers.celery_app import celery_app


@celery_app.task(name="app.workers.tasks.aggregates.recompute_aggregate")
def recompute_aggregate_task(dependency_name: str, parent_id: str) -> dict:
    dependency = DEPENDENCIES_BY_NAME.get(dependency_name)
    if dependency is None:
        return {"dependency": dependency_name, "parent": parent_id, "updated": False, "reason": "unknown_dependency"}
    try:
        parent_uuid = UUID(str(parent_id))
    except ValueError:
        return {"dependency": dependency_name, "parent": parent_id, "updated": False, "reason": "invalid_parent_id"}
    db = SessionLocal()
    try:
        updated = recompute_aggregate(db, dependency, parent_uuid)
        return {"dependency": dependency_name, "parent": str(parent_uuid), "updated": bool(updated)}
    finally:
        db.close()
