import os
import unittest
from decimal import Decimal
from unittest import mock
from uuid import uuid4

from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")

from app.core.config import settings
from app.models import registry  # noqa: F401
from app.models.bootcamp import Bootcamp
from app.models.course import Course
from app.models.review import Review
from app.models.user import User
from app.services import aggregates
from app.services.aggregates import (
    DEPENDENCIES_BY_NAME,
    DERIVED_PARENT_FIELDS,
    ChildMutation,
    MutationKind,
    ceil_to_ten,
    compute_aggregate,
    dispatch_child_mutation,
    recompute_aggregate,
    snapshot,
)

COST = DEPENDENCIES_BY_NAME["bootcamp_average_cost"]
RATING = DEPENDENCIES_BY_NAME["bootcamp_average_rating"]


class RoundingTests(unittest.TestCase):
    def test_ceil_to_ten(self):
        self.assertEqual(ceil_to_ten(20.0), 20)
        self.assertEqual(ceil_to_ten(20.0000000001), 20)
        self.assertEqual(ceil_to_ten(21.67), 30)
        self.assertEqual(ceil_to_ten(0.5), 10)

    def test_finalize_maps_empty_to_sentinel(self):
        self.assertIsNone(COST.finalize(None))
        self.assertIsNone(RATING.finalize(float("nan")))
        self.assertEqual(RATING.finalize(7.5), 7.5)

    def test_derived_fields(self):
        self.assertEqual(DERIVED_PARENT_FIELDS, frozenset({"averageCost", "averageRating"}))


class ChildMutationTests(unittest.TestCase):
    def setUp(self):
        self.parent = uuid4()

    def test_create_and_remove_touch_their_parent(self):
        for kind in (MutationKind.CREATED, MutationKind.REMOVED):
            event = ChildMutation(kind=kind, child={"bootcamp": self.parent, "tuition": 1}, dependency=COST)
            self.assertEqual(event.parents_to_recompute(), [self.parent])

    def test_update_without_metric_change_is_skipped(self):
        event = ChildMutation(
            kind=MutationKind.UPDATED,
            child={"bootcamp": self.parent, "tuition": 5, "weeks": "9"},
            previous={"bootcamp": self.parent, "tuition": 5, "weeks": "8"},
            dependency=COST,
        )
        self.assertEqual(event.parents_to_recompute(), [])

    def test_update_with_metric_change(self):
        event = ChildMutation(
            kind=MutationKind.UPDATED,
            child={"bootcamp": self.parent, "tuition": 6},
            previous={"bootcamp": self.parent, "tuition": 5},
            dependency=COST,
        )
        self.assertEqual(event.parents_to_recompute(), [self.parent])

    def test_group_move_recomputes_both_parents(self):
        new_parent = uuid4()
        event = ChildMutation(
            kind=MutationKind.UPDATED,
            child={"bootcamp": new_parent, "rating": 5},
            previous={"bootcamp": self.parent, "rating": 5},
            dependency=RATING,
        )
        self.assertEqual(event.parents_to_recompute(), [self.parent, new_parent])


class AggregateMaintenanceTests(unittest.TestCase):
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
        self.db = self.SessionLocal()
        owner = User(name="Owner", email="owner@example.com", role="publisher", password_hash="hashed")
        self.db.add(owner)
        self.db.flush()
        self.owner_id = owner.id
        self.first = Bootcamp(name="First", slug="first", description="d", careers=[], user_id=owner.id)
        self.second = Bootcamp(name="Second", slug="second", description="d", careers=[], user_id=owner.id)
        self.db.add_all([self.first, self.second])
        self.db.commit()
        self.first_id, self.second_id = self.first.id, self.second.id

    def tearDown(self):
        self.db.rollback()
        for model in (Review, Course, Bootcamp, User):
            self.db.query(model).delete()
        self.db.commit()
        self.db.close()

    def _add_course(self, tuition, bootcamp_id=None, title=None):
        row = Course(
            title=title or f"Course {uuid4().hex[:8]}",
            description="c",
            weeks="4",
            tuition=Decimal(str(tuition)),
            minimum_skill="beginner",
            bootcamp_id=bootcamp_id or self.first_id,
            user_id=self.owner_id,
        )
        self.db.add(row)
        self.db.commit()
        dispatch_child_mutation(self.db, MutationKind.CREATED, snapshot(row), Course)
        return row

    def _average_cost(self, bootcamp_id):
        self.db.expire_all()
        return self.db.get(Bootcamp, bootcamp_id).average_cost

    def test_mean_of_ten_twenty_thirty_is_twenty(self):
        for tuition in (10, 20, 30):
            self._add_course(tuition)
        self.assertEqual(self._average_cost(self.first_id), 20)

    def test_rounding_is_applied_to_the_mean(self):
        for tuition in (11, 19, 30):
            self._add_course(tuition)
        self.assertEqual(self._average_cost(self.first_id), 20)

    def test_last_removal_writes_sentinel(self):
        row = self._add_course(400)
        removed = snapshot(row)
        self.db.delete(row)
        self.db.commit()
        dispatch_child_mutation(self.db, MutationKind.REMOVED, removed, Course)
        self.assertIsNone(self._average_cost(self.first_id))

    def test_rating_is_unrounded(self):
        user_ids = []
        for index in range(3):
            user = User(name=f"R{index}", email=f"r{index}@example.com", role="user", password_hash="hashed")
            self.db.add(user)
            self.db.flush()
            user_ids.append(user.id)
        for user_id, rating in zip(user_ids, (7, 8, 8)):
            self.db.add(Review(title="t", text="x", rating=rating, bootcamp_id=self.first_id, user_id=user_id))
        self.db.commit()
        self.assertTrue(recompute_aggregate(self.db, RATING, self.first_id))
        self.db.expire_all()
        self.assertAlmostEqual(self.db.get(Bootcamp, self.first_id).average_rating, 23 / 3)

    def test_moving_a_course_recomputes_both_bootcamps(self):
        self._add_course(100)
        moving = self._add_course(300)
        self._add_course(1000, bootcamp_id=self.second_id)
        self.assertEqual(self._average_cost(self.first_id), 200)
        self.assertEqual(self._average_cost(self.second_id), 1000)

        previous = snapshot(moving)
        moving.bootcamp_id = self.second_id
        self.db.commit()
        dispatch_child_mutation(self.db, MutationKind.UPDATED, snapshot(moving), Course, previous=previous)

        self.assertEqual(self._average_cost(self.first_id), 100)
        self.assertEqual(self._average_cost(self.second_id), 650)

    def test_recompute_converges_to_durable_state(self):
        for tuition in (100, 200, 600):
            self._add_course(tuition)
        self.db.get(Bootcamp, self.first_id).average_cost = 1
        self.db.commit()
        self._add_course(300)
        self.assertEqual(self._average_cost(self.first_id), compute_aggregate(self.db, COST, self.first_id))
        self.assertEqual(self._average_cost(self.first_id), 300)

    def test_missing_parent_is_not_an_error(self):
        self.assertFalse(recompute_aggregate(self.db, COST, uuid4()))

    def test_write_back_failure_is_logged_not_raised(self):
        self._add_course(100)
        failure = OperationalError("UPDATE", {}, Exception("could not connect to server"))
        with mock.patch.object(aggregates.SqlCollection, "update_by_id", side_effect=failure):
            with self.assertLogs("app.services.aggregates", level="WARNING") as logs:
                self.assertFalse(recompute_aggregate(self.db, COST, self.first_id))
        self.assertIn("bootcamp_average_cost", logs.output[0])
        self.assertEqual(self._average_cost(self.first_id), 100)

    def test_detached_mode_dispatches_task(self):
        with mock.patch.object(settings, "AGGREGATE_RECOMPUTE_MODE", "detached"):
            with mock.patch("app.workers.tasks.aggregates.recompute_aggregate_task") as task:
                self._add_course(500)
        task.delay.assert_called_once_with("bootcamp_average_cost", str(self.first_id))
        self.assertIsNone(self._average_cost(self.first_id))

    def test_detached_dispatch_failure_is_logged(self):
        with mock.patch.object(settings, "AGGREGATE_RECOMPUTE_MODE", "detached"):
            with mock.patch("app.workers.tasks.aggregates.recompute_aggregate_task") as task:
                task.delay.side_effect = ConnectionError("broker down")
                with self.assertLogs("app.services.aggregates", level="WARNING"):
                    self._add_course(500)
