"""
Unit tests for the shared filter matcher.

Tests cover:
- Equality, operators and logical combinators
- Ordering and windowing
- Unique value checks
"""

import pytest

from dbaas.masterdb_server.store.base import ASCENDING, DESCENDING, DuplicateKeyError
from dbaas.masterdb_server.store.query import (
    apply_set,
    check_unique,
    matches,
    sort_documents,
    window,
)


class TestMatches:
    """Tests for matches()."""

    DOC = {
        "name": "Pune",
        "population": 7_000_000,
        "active": True,
        "tags": ["west", "metro"],
        "meta": {"state": "MH"},
        "fields": [{"type": "string"}, {"type": "master", "masterType": "country"}],
    }

    def test_empty_query_matches(self):
        assert matches(self.DOC, {})
        assert matches(self.DOC, None)

    def test_equality(self):
        assert matches(self.DOC, {"name": "Pune"})
        assert not matches(self.DOC, {"name": "pune"})

    def test_dotted_path(self):
        assert matches(self.DOC, {"meta.state": "MH"})

    def test_missing_field_equals_none(self):
        assert matches(self.DOC, {"district": None})
        assert not matches(self.DOC, {"district": "x"})

    def test_array_membership(self):
        assert matches(self.DOC, {"tags": "metro"})
        assert not matches(self.DOC, {"tags": "east"})

    def test_bool_is_not_int(self):
        assert not matches(self.DOC, {"active": 1})
        assert matches(self.DOC, {"active": True})

    def test_comparisons(self):
        assert matches(self.DOC, {"population": {"$gt": 1_000_000, "$lte": 7_000_000}})
        assert not matches(self.DOC, {"population": {"$lt": 10}})
        assert not matches(self.DOC, {"name": {"$gt": 5}})

    def test_in_and_nin(self):
        assert matches(self.DOC, {"name": {"$in": ["Mumbai", "Pune"]}})
        assert matches(self.DOC, {"name": {"$nin": ["Mumbai"]}})
        assert not matches(self.DOC, {"tags": {"$nin": ["west"]}})

    def test_ne_and_exists(self):
        assert matches(self.DOC, {"name": {"$ne": "Mumbai"}})
        assert matches(self.DOC, {"meta": {"$exists": True}})
        assert matches(self.DOC, {"district": {"$exists": False}})

    def test_regex_with_options(self):
        assert matches(self.DOC, {"name": {"$regex": "pu", "$options": "i"}})
        assert not matches(self.DOC, {"name": {"$regex": "pu"}})
        assert not matches(self.DOC, {"population": {"$regex": "7"}})

    def test_elem_match(self):
        assert matches(self.DOC, {"fields": {"$elemMatch": {"type": "master"}}})
        assert not matches(self.DOC, {"fields": {"$elemMatch": {"type": "date"}}})

    def test_logical_operators(self):
        assert matches(self.DOC, {"$or": [{"name": "Mumbai"}, {"name": "Pune"}]})
        assert not matches(self.DOC, {"$and": [{"name": "Pune"}, {"active": False}]})
        assert matches(self.DOC, {"$nor": [{"name": "Mumbai"}]})

    def test_unsupported_operator(self):
        with pytest.raises(ValueError, match="Unsupported query operator"):
            matches(self.DOC, {"name": {"$where": "1"}})
        with pytest.raises(ValueError):
            matches(self.DOC, {"$text": {"$search": "x"}})

    @pytest.mark.parametrize(
        "query",
        [
            {"name": {"$regex": "("}},
            {"name": {"$regex": 5}},
            {"name": {"$regex": "P", "$options": 1}},
            {"name": {"$in": 5}},
            {"name": {"$nin": "Pune"}},
            {"$and": 5},
            {"$or": [5]},
            {"$nor": {"name": "Pune"}},
            {"fields": {"$elemMatch": "string"}},
        ],
    )
    def test_malformed_operands(self, query):
        """Bad operands surface as ValueError, never as another exception type."""
        with pytest.raises(ValueError):
            matches(self.DOC, query)


class TestOrdering:
    """Tests for sort_documents() and window()."""

    def test_sort_ascending_and_descending(self):
        docs = [{"n": 2}, {"n": 1}, {"n": 3}]

        assert [d["n"] for d in sort_documents(docs, [("n", ASCENDING)])] == [1, 2, 3]
        assert [d["n"] for d in sort_documents(docs, [("n", DESCENDING)])] == [3, 2, 1]

    def test_sort_is_stable(self):
        docs = [{"k": 1, "id": "a"}, {"k": 0, "id": "b"}, {"k": 1, "id": "c"}]

        ordered = sort_documents(docs, [("k", ASCENDING)])
        assert [d["id"] for d in ordered] == ["b", "a", "c"]

    def test_sort_mixed_types(self):
        docs = [{"v": "x"}, {"v": 2}, {}, {"v": None}]

        ordered = sort_documents(docs, [("v", ASCENDING)])
        assert ordered == [{}, {"v": None}, {"v": 2}, {"v": "x"}]

    def test_no_sort_keeps_order(self):
        docs = [{"n": 2}, {"n": 1}]
        assert sort_documents(docs, None) == docs

    def test_window(self):
        docs = [{"n": i} for i in range(25)]

        page = window(docs, skip=20, limit=10)
        assert [d["n"] for d in page] == [20, 21, 22, 23, 24]
        assert window(docs, skip=0, limit=None) == docs


class TestUniqueness:
    """Tests for check_unique() and apply_set()."""

    def test_duplicate_raises(self):
        with pytest.raises(DuplicateKeyError) as exc_info:
            check_unique("city", {"code": "PNQ"}, [{"code": "BOM"}, {"code": "PNQ"}], ["code"])
        assert exc_info.value.field == "code"
        assert exc_info.value.value == "PNQ"

    def test_none_is_never_duplicate(self):
        check_unique("city", {"code": None}, [{"code": None}], ["code"])
        check_unique("city", {}, [{}], ["code"])

    def test_bool_does_not_collide_with_number(self):
        check_unique("flags", {"rank": True}, [{"rank": 1}], ["rank"])
        check_unique("flags", {"rank": 0}, [{"rank": False}], ["rank"])
        with pytest.raises(DuplicateKeyError):
            check_unique("flags", {"rank": True}, [{"rank": True}], ["rank"])

    def test_apply_set_copies(self):
        original = {"a": 1, "b": 2}
        updated = apply_set(original, {"b": 3, "c": 4})

        assert updated == {"a": 1, "b": 3, "c": 4}
        assert original == {"a": 1, "b": 2}
