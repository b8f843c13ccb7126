from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from app.api.v1.common import commit_or_409, list_resource, load_or_404, record
from app.core.deps import ensure_owner_or_admin, require_role
from app.db.session import get_db
from app.models.bootcamp import Bootcamp, slugify
from app.models.user import User
from app.schemas.query import Expansion
from app.schemas.resources import BootcampCreate, BootcampUpdate

router = APIRouter()

LIST_EXPANSIONS = (Expansion(field="courses", select=("title", "tuition", "weeks")),)
DUPLICATE_NAME = "A bootcamp with that name already exists"


@router.get("")
def get_bootcamps(request: Request, db: Session = Depends(get_db)):
    return list_resource(db, Bootcamp, request, LIST_EXPANSIONS)


@router.get("/{bootcamp_id}")
def get_bootcamp(bootcamp_id: str, db: Session = Depends(get_db)):
    row = load_or_404(db, Bootcamp, bootcamp_id, "bootcamp")
    return record(db, Bootcamp, row.id)


@router.post("", status_code=201)
def create_bootcamp(
    payload: BootcampCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_role("publisher", "admin")),
):
    # A publisher runs a single bootcamp; admins may add any number.
    if user.role != "admin" and db.query(Bootcamp).filter(Bootcamp.user_id == user.id).first() is not None:
        raise HTTPException(status_code=400, detail=f"The user with ID {user.id} has already published a bootcamp")
    row = Bootcamp(**payload.model_dump(), slug=slugify(payload.name), user_id=user.id)
    db.add(row)
    commit_or_409(db, DUPLICATE_NAME)
    return record(db, Bootcamp, row.id)


@router.put("/{bootcamp_id}")
def update_bootcamp(
    bootcamp_id: str,
    payload: BootcampUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_role("publisher", "admin")),
):
    row = load_or_404(db, Bootcamp, bootcamp_id, "bootcamp")
    ensure_owner_or_admin(user, row.user_id, "bootcamp")
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    for key, value in changes.items():
        setattr(row, key, value)
    if "name" in changes:
        row.slug = slugify(row.name)
    db.add(row)
    commit_or_409(db, DUPLICATE_NAME)
    return record(db, Bootcamp, row.id)


@router.delete("/{bootcamp_id}")
def delete_bootcamp(
    bootcamp_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(require_role("publisher", "admin")),
):
    row = load_or_404(db, Bootcamp, bootcamp_id, "bootcamp")
    ensure_owner_or_admin(user, row.user_id, "bootcamp")
    # Courses and reviews go with the bootcamp; no parent is left to aggregate onto.
    db.delete(row); db.commit()
    return {"success": True, "data": {}}
