"""Replays queued offline mutations against the ledger API.

One ``SyncManager`` owns the sync state for a local store. A sync pass drains
the pending-operation queue in FIFO order, then refreshes the cached
categories and expenses from the server. Only one pass runs at a time; a
trigger that arrives while a pass is running, or while offline, is dropped and
the next trigger tries again.

There is no conflict resolution: a queued edit is replayed as-is and the pull
that follows is last-writer-wins.
"""

import logging

from ..errors import SyncError
from .local_store import now_ms


logger = logging.getLogger(__name__)

OPERATION_METHODS = {
    "create": "POST",
    "update": "PUT",
    "delete": "DELETE",
}
ENTITY_COLLECTIONS = {
    "category": "categories",
    "categories": "categories",
    "expense": "expenses",
    "expenses": "expenses",
}
SYNC_REQUIRED = "SYNC_REQUIRED"

SYNC_START = "sync-start"
SYNC_COMPLETE = "sync-complete"
SYNC_ERROR = "sync-error"
ONLINE_STATUS = "online-status"


def operation_request(operation):
    """Map a pending operation to ``(method, path, payload)``."""
    op_type = operation.get("type")
    if op_type not in OPERATION_METHODS:
        raise ValueError(f"Unknown operation type: {op_type}")
    collection = ENTITY_COLLECTIONS.get(operation.get("entity"))
    if collection is None:
        raise ValueError(f"Unknown entity: {operation.get('entity')}")

    if op_type == "create":
        return "POST", f"/api/{collection}", operation.get("data") or {}

    entity_id = operation.get("entityId")
    if entity_id is None:
        raise ValueError(f"{op_type} operations need an entityId")
    path = f"/api/{collection}/{entity_id}"
    if op_type == "update":
        return "PUT", path, operation.get("data") or {}
    return "DELETE", path, None


class SyncState:
    def __init__(self, online=True):
        self.online = online
        self.syncing = False
        self.cancelled = False


class SyncManager:
    def __init__(self, store, api, online=True):
        self.store = store
        self.api = api
        self.state = SyncState(online=online)
        self._listeners = []

    @property
    def is_online(self):
        return self.state.online

    @property
    def is_syncing(self):
        return self.state.syncing

    def on_sync(self, callback):
        """Register ``callback(event, data)``; returns an unsubscribe function."""
        self._listeners.append(callback)

        def unsubscribe():
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def notify(self, event, data=None):
        for listener in list(self._listeners):
            listener(event, data)

    def handle_online(self):
        logger.info("Back online")
        self.state.online = True
        self.notify(ONLINE_STATUS, True)
        return self.sync_all()

    def handle_offline(self):
        logger.info("Gone offline")
        self.state.online = False
        self.notify(ONLINE_STATUS, False)

    def handle_message(self, message):
        if isinstance(message, dict) and message.get("type") == SYNC_REQUIRED:
            return self.sync_all()
        return False

    def check_online(self):
        online = self.api.ping()
        if online != self.state.online:
            if online:
                self.handle_online()
            else:
                self.handle_offline()
        return online

    def cancel(self):
        if self.state.syncing:
            logger.info("Cancelling sync in progress")
            self.state.cancelled = True

    def sync_all(self):
        """Run one drain-then-pull pass. Returns True when the pass completed."""
        if self.state.syncing or not self.state.online:
            logger.info("Skip sync - already syncing or offline")
            return False

        self.state.syncing = True
        self.state.cancelled = False
        logger.info("Starting full sync")

        try:
            self.notify(SYNC_START)
            pushed, failed = self.push_pending_changes()
            if self.state.cancelled:
                raise SyncError("sync cancelled")
            self.pull_from_server()
            self.store.set_last_sync_time(now_ms())
        except Exception as exc:
            logger.exception("Sync failed")
            self.state.syncing = False
            self.notify(SYNC_ERROR, exc)
            return False
        finally:
            self.state.syncing = False
            self.state.cancelled = False

        logger.info("Sync completed: %s pushed, %s still queued", pushed, failed)
        self.notify(SYNC_COMPLETE, {"pushed": pushed, "failed": failed})
        return True

    def push_pending_changes(self):
        operations = self.store.list_pending_operations()
        logger.info("Processing %s pending operations", len(operations))

        pushed = failed = 0
        for operation in operations:
            if self.state.cancelled:
                break
            try:
                self.execute_pending_operation(operation)
            except (SyncError, ValueError) as exc:
                failed += 1
                logger.warning(
                    "Failed operation %s %s (queue id %s): %s",
                    operation["type"],
                    operation["entity"],
                    operation["id"],
                    exc,
                )
                continue
            self.store.dequeue_pending_operation(operation["id"])
            pushed += 1
            logger.info("Completed operation: %s %s", operation["type"], operation["entity"])
        return pushed, failed

    def execute_pending_operation(self, operation):
        method, path, payload = operation_request(operation)
        return self.api.request(method, path, payload)

    def pull_from_server(self):
        logger.info("Pulling data from server")
        categories = self.api.list_categories()
        self.store.replace_collection("categories", categories)
        logger.info("Synced %s categories", len(categories))

        expenses = self.api.list_expenses()
        unsynced = self.store.replace_collection("expenses", expenses)
        logger.info("Synced %s expenses", len(expenses))
        self._reapply_queued(unsynced)

    def _reapply_queued(self, unsynced_expenses):
        """Keep the cache in line with operations that are still queued."""
        queued = {"categories": {}, "expenses": {}}
        for operation in self.store.list_pending_operations():
            collection = ENTITY_COLLECTIONS.get(operation["entity"])
            if collection and operation.get("entityId") is not None:
                queued[collection][operation["entityId"]] = operation["type"]

        restored = [
            record for record in unsynced_expenses
            if queued["expenses"].get(record.get("id")) in ("create", "update")
        ]
        if restored:
            self.store.bulk_put("expenses", restored)
            logger.info("Kept %s unsynced local expenses", len(restored))

        for collection, entries in queued.items():
            for entity_id, op_type in entries.items():
                if op_type == "delete":
                    self.store.delete(collection, entity_id)

    def queue_operation(self, op_type, entity, data=None, entity_id=None):
        operation = {"type": op_type, "entity": entity, "data": data, "entityId": entity_id}
        operation_request(operation)
        operation_id = self.store.enqueue_pending_operation(operation)
        logger.info("Queued operation: %s %s", op_type, entity)

        if self.state.online:
            self.sync_all()
        else:
            logger.info("Offline; operation %s waits for the next sync", operation_id)
        return operation_id
