"""Durable client-side cache and pending-operation queue.

Server entities (categories, expenses) and sync metadata live in one sqlite
file as JSON records keyed per collection. Mutations that still have to reach
the server are kept in an auto-incrementing queue table, so FIFO order is the
order of the queue ids.
"""

import json
import logging
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path

from ..errors import StorageError


logger = logging.getLogger(__name__)

KEY_FIELDS = {
    "categories": "id",
    "expenses": "id",
    "metadata": "key",
}
PENDING_OPERATIONS = "pendingOperations"
LAST_SYNC_KEY = "lastSyncTime"
SYNC_PENDING = "pending"
SYNC_SYNCED = "synced"

SCHEMA = """
CREATE TABLE IF NOT EXISTS records (
    collection TEXT NOT NULL,
    record_key TEXT NOT NULL,
    value TEXT NOT NULL,
    PRIMARY KEY (collection, record_key)
);
CREATE TABLE IF NOT EXISTS pending_operations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    type TEXT NOT NULL,
    entity TEXT NOT NULL,
    entity_id TEXT,
    data TEXT,
    timestamp INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_pending_operations_timestamp ON pending_operations(timestamp);
CREATE INDEX IF NOT EXISTS idx_pending_operations_type ON pending_operations(type);
"""


def now_ms():
    return int(time.time() * 1000)


def _encode_key(value):
    return json.dumps(value)


def _operation_from_row(row):
    return {
        "id": row["id"],
        "type": row["type"],
        "entity": row["entity"],
        "entityId": json.loads(row["entity_id"]) if row["entity_id"] is not None else None,
        "data": json.loads(row["data"]) if row["data"] is not None else None,
        "timestamp": row["timestamp"],
    }


class LocalStore:
    def __init__(self, path):
        self.path = str(path)
        try:
            if self.path != ":memory:":
                Path(self.path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.path)
            self._conn.row_factory = sqlite3.Row
            with self._conn:
                self._conn.executescript(SCHEMA)
        except (sqlite3.Error, OSError) as exc:
            raise StorageError(f"Unable to open local store at {self.path}: {exc}") from exc
        logger.debug("Opened local store at %s", self.path)

    def close(self):
        self._conn.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    @contextmanager
    def _transaction(self):
        try:
            with self._conn:
                yield self._conn
        except sqlite3.Error as exc:
            raise StorageError(f"Local store write failed: {exc}") from exc

    def _query(self, sql, params=()):
        try:
            return self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise StorageError(f"Local store read failed: {exc}") from exc

    def _key_field(self, collection):
        try:
            return KEY_FIELDS[collection]
        except KeyError:
            raise ValueError(f"Unknown collection: {collection}") from None

    def _record_key(self, collection, record):
        field = self._key_field(collection)
        if record.get(field) is None:
            raise ValueError(f"{collection} records need a '{field}' value")
        return _encode_key(record[field])

    def _upsert(self, conn, collection, record):
        conn.execute(
            """
            INSERT INTO records (collection, record_key, value) VALUES (?, ?, ?)
            ON CONFLICT (collection, record_key) DO UPDATE SET value = excluded.value
            """,
            (collection, self._record_key(collection, record), json.dumps(record)),
        )

    # Generic keyed-collection access.

    def get_all(self, collection):
        if collection == PENDING_OPERATIONS:
            return self.list_pending_operations()
        self._key_field(collection)
        rows = self._query(
            "SELECT value FROM records WHERE collection = ? ORDER BY rowid",
            (collection,),
        )
        return [json.loads(row["value"]) for row in rows]

    def get_by_id(self, collection, record_id):
        if collection == PENDING_OPERATIONS:
            rows = self._query("SELECT * FROM pending_operations WHERE id = ?", (record_id,))
            return _operation_from_row(rows[0]) if rows else None
        self._key_field(collection)
        rows = self._query(
            "SELECT value FROM records WHERE collection = ? AND record_key = ?",
            (collection, _encode_key(record_id)),
        )
        return json.loads(rows[0]["value"]) if rows else None

    def put(self, collection, record):
        if collection == PENDING_OPERATIONS:
            raise ValueError("Use enqueue_pending_operation() to add pending operations")
        with self._transaction() as conn:
            self._upsert(conn, collection, record)
        return record[self._key_field(collection)]

    def bulk_put(self, collection, records):
        if collection == PENDING_OPERATIONS:
            raise ValueError("Use enqueue_pending_operation() to add pending operations")
        with self._transaction() as conn:
            for record in records:
                self._upsert(conn, collection, record)

    def delete(self, collection, record_id):
        if collection == PENDING_OPERATIONS:
            self.dequeue_pending_operation(record_id)
            return
        self._key_field(collection)
        with self._transaction() as conn:
            conn.execute(
                "DELETE FROM records WHERE collection = ? AND record_key = ?",
                (collection, _encode_key(record_id)),
            )

    def clear(self, collection):
        if collection == PENDING_OPERATIONS:
            self.clear_pending_operations()
            return
        self._key_field(collection)
        with self._transaction() as conn:
            conn.execute("DELETE FROM records WHERE collection = ?", (collection,))

    def replace_collection(self, collection, server_records):
        """Swap a cached collection for the server's copy in one transaction.

        For expenses, records still marked pending are returned to the caller
        as they were before the clear; they are not written back.
        """
        pending = []
        if collection == "expenses":
            pending = [
                record for record in self.get_all(collection)
                if record.get("syncStatus") == SYNC_PENDING
            ]
            server_records = [{**record, "syncStatus": SYNC_SYNCED} for record in server_records]

        with self._transaction() as conn:
            conn.execute("DELETE FROM records WHERE collection = ?", (collection,))
            for record in server_records:
                self._upsert(conn, collection, record)
        return pending

    # Collection helpers.

    def get_categories(self):
        return self.get_all("categories")

    def get_expenses(self):
        return sorted(self.get_all("expenses"), key=lambda item: item.get("date") or "", reverse=True)

    # Pending operation queue.

    def enqueue_pending_operation(self, operation):
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO pending_operations (type, entity, entity_id, data, timestamp)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    operation["type"],
                    operation["entity"],
                    _encode_key(operation["entityId"]) if operation.get("entityId") is not None else None,
                    json.dumps(operation["data"]) if operation.get("data") is not None else None,
                    now_ms(),
                ),
            )
        return cursor.lastrowid

    def dequeue_pending_operation(self, operation_id):
        with self._transaction() as conn:
            conn.execute("DELETE FROM pending_operations WHERE id = ?", (operation_id,))

    def list_pending_operations(self):
        rows = self._query("SELECT * FROM pending_operations ORDER BY id")
        return [_operation_from_row(row) for row in rows]

    def clear_pending_operations(self):
        with self._transaction() as conn:
            conn.execute("DELETE FROM pending_operations")

    # Metadata.

    def get_metadata(self, key):
        record = self.get_by_id("metadata", key)
        return record["value"] if record else None

    def set_metadata(self, key, value):
        self.put("metadata", {"key": key, "value": value})

    def get_last_sync_time(self):
        return self.get_metadata(LAST_SYNC_KEY)

    def set_last_sync_time(self, timestamp):
        self.set_metadata(LAST_SYNC_KEY, timestamp)
