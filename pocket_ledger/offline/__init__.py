from .api_client import ApiClient
from .ledger import OfflineLedger
from .local_store import LocalStore
from .sync import SyncManager

__all__ = ["ApiClient", "LocalStore", "OfflineLedger", "SyncManager"]
