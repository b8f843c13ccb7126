from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.api.v1.common import commit_or_409, list_resource, load_or_404, record
from app.core.deps import ensure_owner_or_admin, require_role
from app.db.collection import SqlCollection
from app.db.session import get_db
from app.models.bootcamp import Bootcamp
from app.models.course import Course
from app.models.user import User
from app.schemas.query import DEFAULT_SORT, Expansion, FilterExpression
from app.schemas.resources import CourseCreate, CourseUpdate
from app.services.aggregates import MutationKind, dispatch_child_mutation, snapshot

router = APIRouter()
bootcamp_router = APIRouter()

EXPANSIONS = (Expansion(field="bootcamp", select=("name", "description")),)
DUPLICATE_TITLE = "A course with that title already exists"


@router.get("")
def get_courses(request: Request, db: Session = Depends(get_db)):
    return list_resource(db, Course, request, EXPANSIONS)


@router.get("/{course_id}")
def get_course(course_id: str, db: Session = Depends(get_db)):
    row = load_or_404(db, Course, course_id, "course")
    return record(db, Course, row.id, EXPANSIONS)


@router.put("/{course_id}")
def update_course(
    course_id: str,
    payload: CourseUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_role("publisher", "admin")),
):
    row = load_or_404(db, Course, course_id, "course")
    ensure_owner_or_admin(user, row.user_id, "course")
    previous = snapshot(row)
    for key, value in payload.model_dump(exclude_unset=True, exclude_none=True).items():
        setattr(row, key, value)
    db.add(row)
    commit_or_409(db, DUPLICATE_TITLE)
    dispatch_child_mutation(db, MutationKind.UPDATED, snapshot(row), Course, previous=previous)
    return record(db, Course, row.id, EXPANSIONS)


@router.delete("/{course_id}")
def delete_course(
    course_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(require_role("publisher", "admin")),
):
    row = load_or_404(db, Course, course_id, "course")
    ensure_owner_or_admin(user, row.user_id, "course")
    removed = snapshot(row)
    db.delete(row); db.commit()
    dispatch_child_mutation(db, MutationKind.REMOVED, removed, Course)
    return {"success": True, "data": {}}


@bootcamp_router.get("/{bootcamp_id}/courses")
def get_bootcamp_courses(bootcamp_id: str, db: Session = Depends(get_db)):
    bootcamp = load_or_404(db, Bootcamp, bootcamp_id, "bootcamp")
    rows = SqlCollection(db, Course).find(FilterExpression.equals("bootcamp", bootcamp.id), sort=DEFAULT_SORT)
    return {"success": True, "count": len(rows), "data": rows}


@bootcamp_router.post("/{bootcamp_id}/courses", status_code=201)
def create_course(
    bootcamp_id: str,
    payload: CourseCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_role("publisher", "admin")),
):
    bootcamp = load_or_404(db, Bootcamp, bootcamp_id, "bootcamp")
    ensure_owner_or_admin(user, bootcamp.user_id, "bootcamp")
    row = Course(**payload.model_dump(), bootcamp_id=bootcamp.id, user_id=user.id)
    db.add(row)
    commit_or_409(db, DUPLICATE_TITLE)
    dispatch_child_mutation(db, MutationKind.CREATED, snapshot(row), Course)
    return record(db, Course, row.id, EXPANSIONS)
