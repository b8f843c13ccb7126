import os
import unittest

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")

from app.core.errors import ValidationError
from app.schemas.query import DEFAULT_SORT, Expansion, FilterExpression, SortClause
from app.services.resource_query import build_query_spec, execute_query, paginate


class _ListCollection:
    """In-memory collection honouring skip/limit only."""

    def __init__(self, rows):
        self.rows = rows
        self.calls = []
        self.skips = []

    def count(self, filter):
        self.calls.append("count")
        return len(self.rows)

    def find(self, filter, *, projection=None, sort=(), skip=0, limit=None, expand=()):
        self.calls.append("find")
        self.skips.append(skip)
        window = self.rows[skip:]
        return list(window[:limit] if limit is not None else window)


class PaginateTests(unittest.TestCase):
    def test_first_middle_last_pages(self):
        first = paginate(total=5, page=1, page_size=2)
        self.assertFalse(first.has_previous)
        self.assertIsNone(first.previous)
        self.assertTrue(first.has_next)
        self.assertEqual((first.next.page, first.next.limit), (2, 2))

        middle = paginate(total=5, page=2, page_size=2)
        self.assertTrue(middle.has_previous and middle.has_next)
        self.assertEqual(middle.previous.page, 1)

        last = paginate(total=5, page=3, page_size=2)
        self.assertTrue(last.has_previous)
        self.assertFalse(last.has_next)
        self.assertIsNone(last.next)

    def test_exact_fit_has_no_next(self):
        self.assertFalse(paginate(total=4, page=2, page_size=2).has_next)

    def test_empty_result(self):
        info = paginate(total=0, page=1, page_size=25)
        self.assertFalse(info.has_next)
        self.assertFalse(info.has_previous)

    def test_past_the_end_still_links_back(self):
        info = paginate(total=3, page=9, page_size=2)
        self.assertTrue(info.has_previous)
        self.assertEqual(info.previous.page, 8)
        self.assertFalse(info.has_next)


class BuildQuerySpecTests(unittest.TestCase):
    def test_defaults(self):
        spec = build_query_spec({}, default_page_size=25, max_page_size=100)
        self.assertEqual(spec.page, 1)
        self.assertEqual(spec.page_size, 25)
        self.assertEqual(spec.skip, 0)
        self.assertEqual(spec.sort, DEFAULT_SORT)
        self.assertIsNone(spec.projection)
        self.assertEqual(spec.filter, FilterExpression())

    def test_controls_are_parsed(self):
        spec = build_query_spec(
            {"select": "name, description", "sort": "-averageCost,name", "page": "3", "limit": "10", "housing": "true"},
            (Expansion(field="courses", select=("title",)),),
        )
        self.assertEqual(spec.projection, frozenset({"name", "description"}))
        self.assertEqual(
            spec.sort,
            (SortClause(field="averageCost", dir="desc"), SortClause(field="name", dir="asc")),
        )
        self.assertEqual(spec.skip, 20)
        self.assertEqual(spec.filter.as_dict(), {"housing": "true"})
        self.assertEqual(spec.expansions[0].field, "courses")

    def test_limit_is_clamped(self):
        spec = build_query_spec({"limit": "5000"}, max_page_size=100)
        self.assertEqual(spec.page_size, 100)

    def test_non_positive_or_non_numeric_controls_are_rejected(self):
        for params in ({"page": "0"}, {"page": "-1"}, {"limit": "0"}, {"limit": "ten"}, {"page": "1.5"}):
            with self.assertRaises(ValidationError, msg=str(params)):
                build_query_spec(params)

    def test_empty_select_or_sort_is_rejected(self):
        for params in ({"select": ""}, {"select": " , "}, {"sort": ""}, {"sort": "-"}, {"sort": "--name"}):
            with self.assertRaises(ValidationError, msg=str(params)):
                build_query_spec(params)

    def test_repeated_controls_are_rejected(self):
        for name in ("page", "limit", "select", "sort"):
            with self.assertRaises(ValidationError, msg=name):
                build_query_spec({name: ["1", "2"]})

    def test_query_spec_is_immutable(self):
        spec = build_query_spec({})
        with self.assertRaises(Exception):
            spec.page = 2


class ExecuteQueryTests(unittest.TestCase):
    def test_counts_then_reads_window(self):
        collection = _ListCollection([{"id": n} for n in range(5)])
        result = execute_query(build_query_spec({"page": "2", "limit": "2"}), collection)
        self.assertEqual(collection.calls, ["count", "find"])
        self.assertEqual(result.total, 5)
        self.assertEqual(result.data, [{"id": 2}, {"id": 3}])
        self.assertEqual(
            result.envelope(),
            {
                "success": True,
                "count": 5,
                "pagination": {
                    "hasPrevious": True,
                    "previous": {"page": 1, "limit": 2},
                    "hasNext": True,
                    "next": {"page": 3, "limit": 2},
                },
                "data": [{"id": 2}, {"id": 3}],
            },
        )

    def test_page_past_the_end_is_empty_not_an_error(self):
        result = execute_query(build_query_spec({"page": "4", "limit": "2"}), _ListCollection([{"id": 1}]))
        self.assertEqual(result.total, 1)
        self.assertEqual(result.data, [])
        self.assertTrue(result.pagination.has_previous)

    def test_huge_page_is_empty_and_offset_stays_bounded(self):
        collection = _ListCollection([{"id": n} for n in range(3)])
        page = "101010101010101010101010101010"
        result = execute_query(build_query_spec({"page": page, "limit": "25"}), collection)
        self.assertEqual(result.data, [])
        self.assertEqual(result.total, 3)
        self.assertEqual(collection.skips, [3])
        self.assertTrue(result.pagination.has_previous)
        self.assertFalse(result.pagination.has_next)
