from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from app.api.v1.common import commit_or_409, list_resource, load_or_404, record
from app.core.deps import require_role
from app.core.security import hash_password
from app.db.session import get_db
from app.models.user import User
from app.schemas.resources import UserCreate, UserUpdate

router = APIRouter()

DUPLICATE_EMAIL = "User already exists"


@router.get("")
def get_users(request: Request, db: Session = Depends(get_db), admin: User = Depends(require_role("admin"))):
    return list_resource(db, User, request)


@router.get("/{user_id}")
def get_user(user_id: str, db: Session = Depends(get_db), admin: User = Depends(require_role("admin"))):
    row = load_or_404(db, User, user_id, "user")
    return record(db, User, row.id)


@router.post("", status_code=201)
def create_user(payload: UserCreate, db: Session = Depends(get_db), admin: User = Depends(require_role("admin"))):
    data = payload.model_dump()
    password = data.pop("password")
    row = User(**data, password_hash=hash_password(password))
    db.add(row)
    commit_or_409(db, DUPLICATE_EMAIL)
    return record(db, User, row.id)


@router.put("/{user_id}")
def update_user(
    user_id: str,
    payload: UserUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_role("admin")),
):
    row = load_or_404(db, User, user_id, "user")
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    password = changes.pop("password", None)
    for key, value in changes.items():
        setattr(row, key, value)
    if password:
        row.password_hash = hash_password(password)
    db.add(row)
    commit_or_409(db, DUPLICATE_EMAIL)
    return record(db, User, row.id)


@router.delete("/{user_id}")
def delete_user(user_id: str, db: Session = Depends(get_db), admin: User = Depends(require_role("admin"))):
    row = load_or_404(db, User, user_id, "user")
    if row.id == admin.id:
        raise HTTPException(status_code=400, detail="Administrators cannot delete their own account")
    db.delete(row)
    commit_or_409(db, "User still owns bootcamps, courses or reviews")
    return {"success": True, "data": {}}
