from __future__ import annotations

from typing import Any
from uuid import UUID

from fastapi import HTTPException, Request
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.db.collection import SqlCollection
from app.schemas.query import Expansion
from app.services.resource_query import build_query_spec, execute_query


def query_params(request: Request) -> dict[str, Any]:
    """Query string as a mapping; a key sent more than once maps to the list of its values."""
    params: dict[str, Any] = {}
    for key, value in request.query_params.multi_items():
        if key not in params:
            params[key] = value
        elif isinstance(params[key], list):
            params[key].append(value)
        else:
            params[key] = [params[key], value]
    return params


def list_resource(db: Session, model: type, request: Request, expansions: tuple[Expansion, ...] = ()) -> dict[str, Any]:
    spec = build_query_spec(query_params(request), expansions)
    return execute_query(spec, SqlCollection(db, model)).envelope()


def parse_id_or_404(raw: str, what: str) -> UUID:
    try:
        return UUID(str(raw or "").strip())
    except ValueError:
        raise HTTPException(status_code=404, detail=f"No {what} with the id of {raw}")


def load_or_404(db: Session, model: type, raw_id: str, what: str):
    row = db.get(model, parse_id_or_404(raw_id, what))
    if row is None:
        raise HTTPException(status_code=404, detail=f"No {what} with the id of {raw_id}")
    return row


def record(db: Session, model: type, row_id: Any, expansions: tuple[Expansion, ...] = ()) -> dict[str, Any]:
    data = SqlCollection(db, model).find_by_id(row_id, expand=expansions)
    return {"success": True, "data": data}


def commit_or_409(db: Session, detail: str) -> None:
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail=detail)
