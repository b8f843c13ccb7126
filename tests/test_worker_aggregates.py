import os
import unittest
from decimal import Decimal
from unittest import mock
from uuid import uuid4

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")

from app.models import registry  # noqa: F401
from app.models.bootcamp import Bootcamp
from app.models.course import Course
from app.models.review import Review
from app.models.user import User
from app.workers.tasks import aggregates as aggregate_tasks


class WorkerAggregateTaskTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.engine = create_engine(
            "sqlite+pysqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        cls.SessionLocal = sessionmaker(bind=cls.engine, autocommit=False, autoflush=False)
        User.__table__.create(bind=cls.engine)
        Bootcamp.__table__.create(bind=cls.engine)
        Course.__table__.create(bind=cls.engine)
        Review.__table__.create(bind=cls.engine)

    @classmethod
    def tearDownClass(cls):
        Review.__table__.drop(bind=cls.engine)
        Course.__table__.drop(bind=cls.engine)
        Bootcamp.__table__.drop(bind=cls.engine)
        User.__table__.drop(bind=cls.engine)
        cls.engine.dispose()

    def setUp(self):
        with self.SessionLocal() as db:
            owner = User(name="Owner", email="owner@example.com", role="publisher", password_hash="hashed")
            db.add(owner)
            db.flush()
            bootcamp = Bootcamp(name="Worker Camp", slug="worker-camp", description="d", careers=[], user_id=owner.id)
            db.add(bootcamp)
            db.flush()
            for title, tuition in (("A", 95), ("B", 100)):
                db.add(
                    Course(
                        title=title,
                        description="c",
                        weeks="4",
                        tuition=Decimal(tuition),
                        minimum_skill="beginner",
                        bootcamp_id=bootcamp.id,
                        user_id=owner.id,
                    )
                )
            db.commit()
            self.bootcamp_id = bootcamp.id

    def tearDown(self):
        with self.SessionLocal() as db:
            for model in (Review, Course, Bootcamp, User):
                db.query(model).delete()
            db.commit()

    def test_task_recomputes_from_durable_state(self):
        with mock.patch.object(aggregate_tasks, "SessionLocal", self.SessionLocal):
            result = aggregate_tasks.recompute_aggregate_task("bootcamp_average_cost", str(self.bootcamp_id))
        self.assertEqual(
            result,
            {"dependency": "bootcamp_average_cost", "parent": str(self.bootcamp_id), "updated": True},
        )
        with self.SessionLocal() as db:
            self.assertEqual(db.get(Bootcamp, self.bootcamp_id).average_cost, 100)

    def test_unknown_dependency(self):
        result = aggregate_tasks.recompute_aggregate_task("bootcamp_median", str(self.bootcamp_id))
        self.assertFalse(result["updated"])
        self.assertEqual(result["reason"], "unknown_dependency")

    def test_invalid_parent_id(self):
        result = aggregate_tasks.recompute_aggregate_task("bootcamp_average_rating", "not-a-uuid")
        self.assertEqual(result["reason"], "invalid_parent_id")

    def test_missing_parent(self):
        with mock.patch.object(aggregate_tasks, "SessionLocal", self.SessionLocal):
            result = aggregate_tasks.recompute_aggregate_task("bootcamp_average_cost", str(uuid4()))
        self.assertFalse(result["updated"])

    def test_task_is_registered_under_stable_name(self):
        self.assertEqual(aggregate_tasks.recompute_aggregate_task.name, "app.workers.tasks.aggregates.recompute_aggregate")
