from __future__ import annotations

import logging

from safedoc.db.models import OpKind


def test_batch_save_queues_insert_for_new_documents(Customer, customers) -> None:
    for name in ("a", "b", "c"):
        assert Customer({"name": name}).batch_save() is None

    assert Customer.has_batch_insert()
    assert not Customer.has_batch_update()
    assert customers.count() == 0

    result = Customer.flush_batch_insert()

    assert result.inserted_count == 3
    assert not Customer.has_batch_insert()
    assert sorted(row["name"] for row in customers.find()) == ["a", "b", "c"]


def test_batch_insert_does_not_mark_document_persisted(Customer) -> None:
    customer = Customer({"name": "a"})
    customer.batch_insert()
    Customer.flush_batch_insert()

    assert customer.is_new


def test_batch_insert_without_dirty_attributes_queues_primary_key(Customer, customers) -> None:
    customer = Customer.instantiate({"_id": 5, "name": "a"})
    customer.batch_insert()

    queue = Customer.get_db().batches._queues[(Customer, OpKind.INSERT)]
    assert queue.command.documents[0].values == {"_id": 5}
    Customer.flush_batch_insert()
    assert customers.find_one({"_id": 5}) is not None


def test_batch_save_queues_update_for_loaded_documents(Customer, customers) -> None:
    customers.insert({"_id": 1, "name": "a"})
    customers.insert({"_id": 2, "name": "b"})
    first, second = Customer.find_all()

    first["name"] = "a2"
    first.batch_save()
    second.batch_save()  # nothing dirty

    assert Customer.get_db().batches.pending(Customer, OpKind.UPDATE) == 1
    result = Customer.flush_batch_update()

    assert result.updated_count == 1
    assert customers.find_one({"_id": 1})["name"] == "a2"
    assert customers.find_one({"_id": 2})["name"] == "b"


def test_batch_update_all_queues_bulk_condition(Customer, customers) -> None:
    customers.insert({"_id": 1, "status": 2})
    customers.insert({"_id": 2, "status": 2})

    Customer.batch_update_all({"status": 1}, {"status": 2})
    assert Customer.has_batch_update()

    assert Customer.flush_batch_update().updated_count == 2
    assert customers.count({"status": 1}) == 2


def test_batch_delete(Customer, customers) -> None:
    customers.insert({"_id": 1})
    customers.insert({"_id": 2})

    for customer in Customer.find_all():
        customer.batch_delete()

    assert Customer.has_batch_delete()
    assert Customer.flush_batch_delete().deleted_count == 2
    assert customers.count() == 0


def test_auto_flush_uses_class_batch_size(document_factory, customers) -> None:
    Customer = document_factory("Customer", batch_insert_size=2)

    assert Customer({"name": "a"}).batch_insert() is None
    result = Customer({"name": "b"}).batch_insert()

    assert result.inserted_count == 2
    assert not Customer.has_batch_insert()
    assert customers.count() == 2


def test_flush_with_nothing_queued_returns_none(Customer) -> None:
    assert Customer.flush_batch_insert() is None
    assert Customer.flush_batch_update() is None
    assert Customer.flush_batch_delete() is None


def test_closing_connection_warns_about_unflushed_batches(Customer, caplog) -> None:
    Customer({"name": "a"}).batch_insert()

    with caplog.at_level(logging.WARNING, logger="safedoc.db.batch"):
        Customer.get_db().close()

    assert any(
        "Customer" in r.getMessage() and "insert" in r.getMessage() for r in caplog.records
    )
