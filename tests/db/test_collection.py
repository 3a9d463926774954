from __future__ import annotations

import pytest

from safedoc.errors import StoreConflictError, StoreError, UsageError


def test_insert_returns_generated_primary_key(customers) -> None:
    first = customers.insert({"name": "a"})
    second = customers.insert({"name": "b"})

    assert first is not None and second is not None
    assert first != second
    assert customers.find_one({"_id": first})["name"] == "a"


def test_insert_returns_supplied_primary_key(customers) -> None:
    assert customers.insert({"_id": 42, "name": "a"}) == 42
    assert customers.find_one({"_id": 42})["name"] == "a"


def test_duplicate_insert_raises_store_error_not_conflict(customers) -> None:
    customers.insert({"_id": 1, "name": "a"})

    with pytest.raises(StoreError) as info:
        customers.insert({"_id": 1, "name": "b"})

    assert not isinstance(info.value, StoreConflictError)
    assert info.value.__cause__ is not None


def test_update_returns_matched_count(customers) -> None:
    customers.insert({"_id": 1, "name": "a", "status": 2})
    customers.insert({"_id": 2, "name": "b", "status": 2})
    customers.insert({"_id": 3, "name": "c", "status": 3})

    assert customers.update({"status": 2}, {"status": 1}) == 2
    assert customers.count({"status": 1}) == 2
    assert customers.update({"_id": 999}, {"status": 5}) == 0


def test_update_condition_supports_in_and_null(customers) -> None:
    customers.insert({"_id": 1, "name": None})
    customers.insert({"_id": 2, "name": "b"})
    customers.insert({"_id": 3, "name": "c"})

    assert customers.update({"name": None}, {"status": 7}) == 1
    assert customers.find_one({"_id": 1})["status"] == 7

    assert customers.update({"_id": [2, 3]}, {"status": 8}) == 2
    assert customers.count({"status": 8}) == 2


def test_update_inc_applies_relative_to_stored_value(customers) -> None:
    customers.insert({"_id": 1, "age": 10})

    assert customers.update({"_id": 1}, {"$inc": {"age": 5}, "name": "x"}) == 1

    row = customers.find_one({"_id": 1})
    assert row["age"] == 15
    assert row["name"] == "x"


def test_update_requires_values(customers) -> None:
    with pytest.raises(UsageError):
        customers.update({"_id": 1}, {})


def test_unknown_field_raises_usage_error(customers) -> None:
    with pytest.raises(UsageError, match="nope"):
        customers.find({"nope": 1})
    with pytest.raises(UsageError, match="nope"):
        customers.insert({"nope": 1})


def test_remove_returns_deleted_count(customers) -> None:
    customers.insert({"_id": 1, "status": 3})
    customers.insert({"_id": 2, "status": 3})
    customers.insert({"_id": 3, "status": 1})

    assert customers.remove({"status": 3}) == 2
    assert customers.remove({"status": 3}) == 0
    assert customers.count() == 1


def test_find_returns_dicts(customers) -> None:
    customers.insert({"_id": 1, "name": "a"})
    customers.insert({"_id": 2, "name": "b"})

    rows = customers.find({"_id": [1, 2]})
    assert sorted(row["name"] for row in rows) == ["a", "b"]
    assert all(isinstance(row, dict) for row in rows)
    assert customers.find_one({"_id": 3}) is None


def test_unknown_collection_raises_usage_error(connection) -> None:
    with pytest.raises(UsageError, match="does not exist"):
        connection.collection("no_such_collection_here")


def test_invalid_collection_name_is_rejected(connection) -> None:
    with pytest.raises(ValueError):
        connection.collection("order-item")


def test_find_and_modify_returns_new_document(customers) -> None:
    customers.insert({"_id": 1, "name": "a"})

    doc = customers.find_and_modify({"_id": 1}, {"name": "b"})

    assert doc is not None
    assert doc["name"] == "b"
    assert customers.find_one({"_id": 1})["name"] == "b"


def test_find_and_modify_can_return_old_document(customers) -> None:
    customers.insert({"_id": 1, "name": "a"})

    doc = customers.find_and_modify({"_id": 1}, {"name": "b"}, {"new": False})

    assert doc["name"] == "a"
    assert customers.find_one({"_id": 1})["name"] == "b"


def test_find_and_modify_returns_none_when_nothing_matches(customers) -> None:
    assert customers.find_and_modify({"_id": 404}, {"name": "b"}) is None
    assert customers.count() == 0
