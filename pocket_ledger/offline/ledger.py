import random
import string

from .local_store import SYNC_PENDING, now_ms


TEMP_ID_PREFIX = "temp_"


def generate_temp_id():
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"{TEMP_ID_PREFIX}{now_ms()}_{suffix}"


def is_temp_id(value):
    return isinstance(value, str) and value.startswith(TEMP_ID_PREFIX)


class OfflineLedger:
    """Optimistic client-side mutations.

    Each change is written to the local store first and then queued on the
    sync manager, which pushes it right away when online.
    """

    def __init__(self, store, sync_manager):
        self.store = store
        self.sync = sync_manager

    def categories(self):
        return self.store.get_categories()

    def expenses(self):
        return self.store.get_expenses()

    def _add(self, collection, entity, data):
        temp_id = generate_temp_id()
        record = {**data, "id": temp_id, "syncStatus": SYNC_PENDING}
        self.store.put(collection, record)
        self.sync.queue_operation("create", entity, data=dict(data), entity_id=temp_id)
        return record

    def _require_server_id(self, record_id):
        if is_temp_id(record_id):
            raise ValueError(f"{record_id} has not reached the server yet; sync before changing it")

    def _update(self, collection, entity, record_id, changes):
        self._require_server_id(record_id)
        current = self.store.get_by_id(collection, record_id) or {"id": record_id}
        record = {**current, **changes, "id": record_id, "syncStatus": SYNC_PENDING}
        self.store.put(collection, record)
        self.sync.queue_operation("update", entity, data=dict(changes), entity_id=record_id)
        return record

    def _remove(self, collection, entity, record_id):
        self._require_server_id(record_id)
        self.store.delete(collection, record_id)
        self.sync.queue_operation("delete", entity, entity_id=record_id)

    def add_category(self, name, color=None, icon=None):
        data = {"name": name}
        if color:
            data["color"] = color
        if icon:
            data["icon"] = icon
        return self._add("categories", "category", data)

    def update_category(self, category_id, **changes):
        return self._update("categories", "category", category_id, changes)

    def remove_category(self, category_id):
        self._remove("categories", "category", category_id)

    def add_expense(self, amount, category_id, date=None, description=None, tx_type="expense", person_name=None):
        data = {"amount": amount, "categoryId": category_id, "type": tx_type}
        if date:
            data["date"] = date
        if description:
            data["description"] = description
        if person_name:
            data["personName"] = person_name
        return self._add("expenses", "expense", data)

    def update_expense(self, expense_id, **changes):
        return self._update("expenses", "expense", expense_id, changes)

    def remove_expense(self, expense_id):
        self._remove("expenses", "expense", expense_id)
