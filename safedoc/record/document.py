from __future__ import annotations

import dataclasses
import logging
import re
import time
from collections.abc import Callable
from typing import Any, ClassVar, Mapping

from ..config import StubbornLockConfig
from ..db.collection import Collection
from ..db.connection import DocumentConnection
from ..db.locking.document_lock import DEFAULT_LOCK_FIELD, DocumentLock
from ..db.locking.stubborn import StubbornDocumentLock
from ..db.models import BatchResult, Op, OpKind
from ..errors import StaleWriteError, UsageError

logger = logging.getLogger(__name__)

DEFAULT_SCENARIO = "default"


def _camel_to_id(name: str) -> str:
    # a run of capitals is one word: HTTPServer -> http_server
    return re.sub(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])", "_", name).lower()


class Document:
    """
    Base class for objects mapped to documents of one collection.

    Subclasses bind a connection and may override the class-level settings:

        class Customer(Document):
            db = connection
            transactions_map = {"checkout": Op.UPDATE | Op.DELETE}

            @classmethod
            def optimistic_lock(cls):
                return "version"

    Attribute values are read and written with item access
    (customer["name"] = "A"). The old-attribute snapshot holds what was last
    persisted; it is None for documents that were never saved, which is what
    makes a document "new".
    """

    db: ClassVar[DocumentConnection | None] = None
    collection: ClassVar[str | None] = None
    primary_key_fields: ClassVar[tuple[str, ...]] = ("_id",)
    lock_field: ClassVar[str] = DEFAULT_LOCK_FIELD
    transactions_map: ClassVar[Mapping[str, Op]] = {}

    # None means the connection's BatchConfig value (500 by default)
    batch_insert_size: ClassVar[int | None] = None
    batch_update_size: ClassVar[int | None] = None
    batch_delete_size: ClassVar[int | None] = None

    def __init__(self, attributes: Mapping[str, Any] | None = None, scenario: str = DEFAULT_SCENARIO) -> None:
        self._attributes: dict[str, Any] = dict(attributes or {})
        self._old_attributes: dict[str, Any] | None = None
        self.scenario = scenario

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._attributes!r})"

    # -- class configuration -------------------------------------------------

    @classmethod
    def get_db(cls) -> DocumentConnection:
        if cls.db is None:
            raise UsageError(f"{cls.__qualname__} is not bound to a DocumentConnection")
        return cls.db

    @classmethod
    def collection_name(cls) -> str:
        """The collection name; 'OrderItem' maps to 'order_item' unless `collection` is set."""
        return cls.collection or _camel_to_id(cls.__name__)

    @classmethod
    def get_collection(cls) -> Collection:
        return cls.get_db().collection(cls.collection_name())

    @classmethod
    def primary_key(cls) -> list[str]:
        return list(cls.primary_key_fields)

    @classmethod
    def optimistic_lock(cls) -> str | None:
        """
        Name of the version attribute used for optimistic locking, or None
        (the default) to disable it.
        """
        return None

    @classmethod
    def transactions(cls) -> Mapping[str, Op]:
        """Scenario name -> operations that must run inside a transaction."""
        return cls.transactions_map

    # -- attributes ----------------------------------------------------------

    def __getitem__(self, name: str) -> Any:
        return self._attributes[name]

    def __setitem__(self, name: str, value: Any) -> None:
        self._attributes[name] = value

    def __contains__(self, name: str) -> bool:
        return name in self._attributes

    def get(self, name: str, default: Any = None) -> Any:
        return self._attributes.get(name, default)

    @property
    def attributes(self) -> dict[str, Any]:
        return dict(self._attributes)

    @property
    def old_attributes(self) -> dict[str, Any] | None:
        return None if self._old_attributes is None else dict(self._old_attributes)

    def get_old_attribute(self, name: str) -> Any:
        return (self._old_attributes or {}).get(name)

    @property
    def is_new(self) -> bool:
        return self._old_attributes is None

    def dirty_attributes(self, names: list[str] | None = None) -> dict[str, Any]:
        """Attributes that differ from the old-attribute snapshot."""
        old = self._old_attributes
        dirty = {}
        for name, value in self._attributes.items():
            if names is not None and name not in names:
                continue
            if old is None or name not in old or old[name] != value:
                dirty[name] = value
        return dirty

    def get_primary_key(self) -> Any:
        """The primary key value, or a name -> value dict for composite keys."""
        keys = self.primary_key()
        if len(keys) == 1:
            return self._attributes.get(keys[0])
        return {key: self._attributes.get(key) for key in keys}

    def old_primary_key(self) -> dict[str, Any]:
        """
        The primary key as last persisted, as a condition.

        Raises:
            UsageError: If the document has no persisted primary key
        """
        old = self._old_attributes or {}
        condition = {}
        for key in self.primary_key():
            if key not in old:
                raise UsageError(f"{type(self).__qualname__} does not have a persisted primary key {key!r}")
            condition[key] = old[key]
        return condition

    def _primary_key_values(self) -> dict[str, Any]:
        return {
            key: self._attributes[key]
            for key in self.primary_key()
            if self._attributes.get(key) is not None
        }

    @classmethod
    def instantiate(cls, row: Mapping[str, Any]) -> "Document":
        """Create a non-new document from a stored row."""
        document = cls(row)
        document._old_attributes = dict(row)
        return document

    # -- hooks ---------------------------------------------------------------

    def validate(self, attribute_names: list[str] | None = None) -> bool:
        return True

    def before_save(self, insert: bool) -> bool:
        return True

    def after_save(self, insert: bool, changed_attributes: dict[str, Any]) -> None:
        pass

    def before_delete(self) -> bool:
        return True

    def after_delete(self) -> None:
        pass

    # -- transactional dispatch ----------------------------------------------

    def is_transactional(self, op: Op) -> bool:
        return bool(self.transactions().get(self.scenario, 0) & op)

    def _dispatch(self, op: Op, routine: Callable[[], Any]) -> Any:
        if not self.is_transactional(op):
            return routine()

        # a rolled back write must leave the document as it was
        attributes = dict(self._attributes)
        old_attributes = None if self._old_attributes is None else dict(self._old_attributes)
        try:
            with self.get_db().transaction():
                return routine()
        except BaseException:
            self._attributes = attributes
            self._old_attributes = old_attributes
            raise

    def save(self, run_validation: bool = True, attribute_names: list[str] | None = None) -> bool | int:
        if self.is_new:
            return self.insert(run_validation, attribute_names)
        return self.update(run_validation, attribute_names)

    def insert(self, run_validation: bool = True, attributes: list[str] | None = None) -> bool:
        """
        Insert the document into its collection.

        Only dirty attributes are written; when nothing is dirty the primary
        key attributes that are set are written instead. A primary key
        generated by the store is copied back into the document.

        Returns:
            True on success, False if validation or before_save() vetoed
        """
        if run_validation and not self.validate(attributes):
            return False
        return self._dispatch(Op.INSERT, lambda: self._insert_internal(attributes))

    def _insert_values(self, attributes: list[str] | None = None) -> dict[str, Any]:
        values = self.dirty_attributes(attributes)
        if not values:
            values = self._primary_key_values()
        return values

    def _insert_internal(self, attributes: list[str] | None = None) -> bool:
        if not self.before_save(True):
            return False

        values = self._insert_values(attributes)
        new_id = self.get_collection().insert(values)
        keys = self.primary_key()
        if new_id is not None and len(keys) == 1:
            self._attributes[keys[0]] = new_id
            values[keys[0]] = new_id

        changed_attributes = dict.fromkeys(values)
        self._old_attributes = dict(values)
        self.after_save(True, changed_attributes)
        return True

    def update(self, run_validation: bool = True, attribute_names: list[str] | None = None) -> bool | int:
        """
        Save dirty attributes of a loaded document.

        Returns:
            The affected document count (0 when nothing was dirty), or False if
            validation or before_save() vetoed

        Raises:
            StaleWriteError: If optimistic locking is enabled and the stored
                document changed since it was loaded
        """
        if run_validation and not self.validate(attribute_names):
            logger.info("%s not updated due to validation error.", type(self).__qualname__)
            return False
        return self._dispatch(Op.UPDATE, lambda: self._update_internal(attribute_names))

    def _update_internal(self, attribute_names: list[str] | None = None) -> bool | int:
        if not self.before_save(False):
            return False

        values = self.dirty_attributes(attribute_names)
        if not values:
            self.after_save(False, values)
            return 0

        condition = self.old_primary_key()
        lock = self.optimistic_lock()
        if lock is not None:
            current = self._attributes.get(lock)
            if lock not in values:
                values[lock] = (current or 0) + 1
            condition[lock] = current

        # 0 rows is a legitimate result when locking is disabled
        rows = self.get_collection().update(condition, values)
        if lock is not None and not rows:
            raise StaleWriteError(f"The {type(self).__qualname__} being updated is outdated.")

        if lock is not None:
            self._attributes[lock] = values[lock]

        changed_attributes = {}
        for name, value in values.items():
            changed_attributes[name] = self.get_old_attribute(name)
            self._old_attributes[name] = value
        self.after_save(False, changed_attributes)
        return rows

    def delete(self) -> bool | int:
        """
        Delete the document from its collection.

        Returns:
            The deleted document count, which may be 0 when locking is disabled
            and the document is already gone, or False if before_delete() vetoed

        Raises:
            StaleWriteError: If optimistic locking is enabled and the stored
                document changed or disappeared since it was loaded
        """
        return self._dispatch(Op.DELETE, self._delete_internal)

    def _delete_internal(self) -> bool | int:
        if not self.before_delete():
            return False

        condition = self.old_primary_key()
        lock = self.optimistic_lock()
        if lock is not None:
            condition[lock] = self._attributes.get(lock)

        rows = self.get_collection().remove(condition)
        if lock is not None and not rows:
            raise StaleWriteError(f"The {type(self).__qualname__} being deleted is outdated.")

        self._old_attributes = None
        self.after_delete()
        return rows

    def equals(self, other: "Document") -> bool:
        """
        True if both documents are persisted and refer to the same document
        of the same collection.
        """
        if self.is_new or other.is_new:
            return False
        return (
            self.collection_name() == other.collection_name()
            and self.get_primary_key() == other.get_primary_key()
        )

    # -- collection-wide operations ------------------------------------------

    @classmethod
    def update_all(
        cls,
        attributes: Mapping[str, Any],
        condition: Mapping[str, Any] | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> int:
        """
        Update every matching document, e.g. Customer.update_all({"status": 1}, {"status": 2}).
        """
        return cls.get_collection().update(condition, attributes, options)

    @classmethod
    def update_all_counters(
        cls,
        counters: Mapping[str, Any],
        condition: Mapping[str, Any] | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> int:
        """Add each delta to its counter; use negative values to decrement."""
        return cls.get_collection().update(condition, {"$inc": dict(counters)}, options)

    @classmethod
    def delete_all(
        cls,
        condition: Mapping[str, Any] | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> int:
        """WARNING: without a condition every document of the collection is deleted."""
        return cls.get_collection().remove(condition, options)

    @classmethod
    def find_one(cls, condition: Mapping[str, Any]) -> "Document | None":
        row = cls.get_collection().find_one(condition)
        return None if row is None else cls.instantiate(row)

    @classmethod
    def find_all(cls, condition: Mapping[str, Any] | None = None) -> list["Document"]:
        return [cls.instantiate(row) for row in cls.get_collection().find(condition)]

    @classmethod
    def exists(cls, condition: Mapping[str, Any]) -> bool:
        return cls.get_collection().count(condition) > 0

    @classmethod
    def find_and_check(cls, condition: Mapping[str, Any]) -> tuple["Document | None", bool]:
        document = cls.find_one(condition)
        return document, document is not None

    # -- batching ------------------------------------------------------------

    def batch_save(self) -> BatchResult | None:
        if self.is_new:
            return self.batch_insert()
        return self.batch_update()

    def batch_insert(self) -> BatchResult | None:
        """
        Queue an insert of this document.

        The document is not marked as persisted; batched writes report no
        per-document outcome.

        Returns:
            The flush result if the queue reached its batch size, None otherwise
        """
        return self.get_db().batches.enqueue_insert(type(self), self._insert_values())

    def batch_update(self) -> BatchResult | None:
        """Queue an update of the dirty attributes; nothing is queued if none are dirty."""
        values = self.dirty_attributes()
        if not values:
            return None
        return self.get_db().batches.enqueue_update(type(self), self.old_primary_key(), values)

    def batch_delete(self) -> BatchResult | None:
        return self.get_db().batches.enqueue_delete(type(self), self.old_primary_key())

    @classmethod
    def batch_update_all(
        cls,
        attributes: Mapping[str, Any],
        condition: Mapping[str, Any] | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> BatchResult | None:
        return cls.get_db().batches.enqueue_update_all(cls, condition, attributes, options)

    @classmethod
    def has_batch_insert(cls) -> bool:
        return cls.get_db().batches.has_pending(cls, OpKind.INSERT)

    @classmethod
    def has_batch_update(cls) -> bool:
        return cls.get_db().batches.has_pending(cls, OpKind.UPDATE)

    @classmethod
    def has_batch_delete(cls) -> bool:
        return cls.get_db().batches.has_pending(cls, OpKind.DELETE)

    @classmethod
    def flush_batch_insert(cls) -> BatchResult | None:
        return cls.get_db().batches.flush(cls, OpKind.INSERT)

    @classmethod
    def flush_batch_update(cls) -> BatchResult | None:
        return cls.get_db().batches.flush(cls, OpKind.UPDATE)

    @classmethod
    def flush_batch_delete(cls) -> BatchResult | None:
        return cls.get_db().batches.flush(cls, OpKind.DELETE)

    # -- document locks ------------------------------------------------------

    @classmethod
    def lock_document(
        cls,
        id_value: Any,
        options: Mapping[str, Any] | None = None,
        db: DocumentConnection | None = None,
    ) -> "Document | None":
        """
        Lock a document inside the open transaction (like SELECT ... FOR UPDATE).

        Raises:
            UsageError: If db (or the class connection) has no open transaction
        """
        lock = DocumentLock(db or cls.get_db(), cls.collection_name(), cls.primary_key()[0], cls.lock_field)
        row = lock.acquire(id_value, options)
        return None if row is None else cls.instantiate(row)

    @classmethod
    def stubborn_lock_document(
        cls,
        id_value: Any,
        options: Mapping[str, Any] | None = None,
        db: DocumentConnection | None = None,
        config: StubbornLockConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> "Document | None":
        """
        Lock a document in a new transaction, retrying while it is contended.

        The transaction is left open on the connection's bound session for the
        caller to commit. See StubbornDocumentLock.
        """
        config = config or StubbornLockConfig()
        if options is not None:
            config = dataclasses.replace(config, modify_options=options)
        lock = StubbornDocumentLock(
            db or cls.get_db(),
            cls.collection_name(),
            cls.primary_key()[0],
            cls.lock_field,
            config=config,
            sleep=sleep,
        )
        row = lock.acquire(id_value)
        return None if row is None else cls.instantiate(row)
