"""Load or wipe the JSON fixtures in ``app/data``.

    python -m app.scripts.seed --import
    python -m app.scripts.seed --destroy
"""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Any

from sqlalchemy import delete
from sqlalchemy.orm import Session

from app.core.security import hash_password
from app.db.collection import coerce_value, field_columns
from app.db.session import SessionLocal
from app.models.bootcamp import Bootcamp, slugify
from app.models.course import Course
from app.models.review import Review
from app.models.user import User
from app.services.aggregates import AGGREGATE_DEPENDENCIES, recompute_aggregate

DATA_DIR = Path(__file__).resolve().parent.parent / "data"

# Parents before children on import, the reverse on destroy.
FIXTURES: tuple[tuple[str, type], ...] = (
    ("users.json", User),
    ("bootcamps.json", Bootcamp),
    ("courses.json", Course),
    ("reviews.json", Review),
)

_LOG = logging.getLogger("app.seed")


def load_fixture(name: str, data_dir: Path = DATA_DIR) -> list[dict[str, Any]]:
    with open(data_dir / name, encoding="utf-8") as fh:
        return json.load(fh)


def _row_kwargs(model: type, item: dict[str, Any]) -> dict[str, Any]:
    columns = field_columns(model)
    kwargs: dict[str, Any] = {}
    for field, value in item.items():
        if model is User and field == "password":
            kwargs["password_hash"] = hash_password(str(value))
            continue
        column = columns.get(field)
        if column is None:
            raise ValueError(f"{model.__tablename__} fixture has unknown field {field!r}")
        kwargs[column.key] = coerce_value(field, column, value) if value is not None else None
    return kwargs


def import_fixtures(db: Session, data_dir: Path = DATA_DIR) -> dict[str, int]:
    counts: dict[str, int] = {}
    for name, model in FIXTURES:
        items = load_fixture(name, data_dir)
        for item in items:
            kwargs = _row_kwargs(model, item)
            if model is Bootcamp and "slug" not in kwargs:
                kwargs["slug"] = slugify(kwargs["name"])
            db.add(model(**kwargs))
        db.flush()
        counts[model.__tablename__] = len(items)
    db.commit()

    for dependency in AGGREGATE_DEPENDENCIES:
        parent_ids = [row_id for (row_id,) in db.query(dependency.parent_model.id).all()]
        for parent_id in parent_ids:
            recompute_aggregate(db, dependency, parent_id)
    return counts


def destroy_fixtures(db: Session) -> None:
    for _, model in reversed(FIXTURES):
        db.execute(delete(model))
    db.commit()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Seed or wipe the bootcamp directory database")
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("-i", "--import", dest="do_import", action="store_true", help="import JSON fixtures")
    group.add_argument("-d", "--destroy", dest="do_destroy", action="store_true", help="delete all records")
    args = parser.parse_args(argv)

    db = SessionLocal()
    try:
        if args.do_import:
            counts = import_fixtures(db)
            print("data imported: " + ", ".join(f"{table}={count}" for table, count in counts.items()))
        else:
            destroy_fixtures(db)
            print("data destroyed")
    except Exception:
        db.rollback()
        _LOG.exception("seed failed")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    main()
