from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from app.api.v1.common import commit_or_409, list_resource, load_or_404, record
from app.core.deps import ensure_owner_or_admin, require_role
from app.db.collection import SqlCollection
from app.db.session import get_db
from app.models.bootcamp import Bootcamp
from app.models.review import Review
from app.models.user import User
from app.schemas.query import DEFAULT_SORT, Expansion, FilterExpression
from app.schemas.resources import ReviewCreate, ReviewUpdate
from app.services.aggregates import MutationKind, dispatch_child_mutation, snapshot

router = APIRouter()
bootcamp_router = APIRouter()

EXPANSIONS = (Expansion(field="bootcamp", select=("name", "description")),)
ALREADY_REVIEWED = "You have already reviewed this bootcamp"


@router.get("")
def get_reviews(request: Request, db: Session = Depends(get_db)):
    return list_resource(db, Review, request, EXPANSIONS)


@router.get("/{review_id}")
def get_review(review_id: str, db: Session = Depends(get_db)):
    row = load_or_404(db, Review, review_id, "review")
    return record(db, Review, row.id, EXPANSIONS)


@router.put("/{review_id}")
def update_review(
    review_id: str,
    payload: ReviewUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_role("user", "admin")),
):
    row = load_or_404(db, Review, review_id, "review")
    ensure_owner_or_admin(user, row.user_id, "review")
    previous = snapshot(row)
    for key, value in payload.model_dump(exclude_unset=True, exclude_none=True).items():
        setattr(row, key, value)
    db.add(row); db.commit()
    dispatch_child_mutation(db, MutationKind.UPDATED, snapshot(row), Review, previous=previous)
    return record(db, Review, row.id, EXPANSIONS)


@router.delete("/{review_id}")
def delete_review(
    review_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(require_role("user", "admin")),
):
    row = load_or_404(db, Review, review_id, "review")
    ensure_owner_or_admin(user, row.user_id, "review")
    removed = snapshot(row)
    db.delete(row); db.commit()
    dispatch_child_mutation(db, MutationKind.REMOVED, removed, Review)
    return {"success": True, "data": {}}


@bootcamp_router.get("/{bootcamp_id}/reviews")
def get_bootcamp_reviews(bootcamp_id: str, db: Session = Depends(get_db)):
    bootcamp = load_or_404(db, Bootcamp, bootcamp_id, "bootcamp")
    rows = SqlCollection(db, Review).find(FilterExpression.equals("bootcamp", bootcamp.id), sort=DEFAULT_SORT)
    return {"success": True, "count": len(rows), "data": rows}


@bootcamp_router.post("/{bootcamp_id}/reviews", status_code=201)
def create_review(
    bootcamp_id: str,
    payload: ReviewCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_role("user", "admin")),
):
    bootcamp = load_or_404(db, Bootcamp, bootcamp_id, "bootcamp")
    exists = db.query(Review).filter(Review.bootcamp_id == bootcamp.id, Review.user_id == user.id).first()
    if exists is not None:
        raise HTTPException(status_code=409, detail=ALREADY_REVIEWED)
    row = Review(**payload.model_dump(), bootcamp_id=bootcamp.id, user_id=user.id)
    db.add(row)
    commit_or_409(db, ALREADY_REVIEWED)
    dispatch_child_mutation(db, MutationKind.CREATED, snapshot(row), Review)
    return record(db, Review, row.id, EXPANSIONS)
