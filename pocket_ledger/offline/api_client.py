import logging

import requests

from ..errors import SyncError


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


class ApiClient:
    """Thin JSON client for the ledger REST API."""

    def __init__(self, base_url, timeout=DEFAULT_TIMEOUT, session=None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def url(self, path):
        return f"{self.base_url}/{path.lstrip('/')}"

    def request(self, method, path, payload=None):
        try:
            response = self.session.request(
                method,
                self.url(path),
                json=payload,
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise SyncError(f"{method} {path} failed: {exc}") from exc

        if not 200 <= response.status_code < 300:
            raise SyncError(
                f"{method} {path} returned {response.status_code}",
                status_code=response.status_code,
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise SyncError(f"{method} {path} returned invalid JSON", status_code=response.status_code) from exc

    def list_categories(self):
        return self.request("GET", "/api/categories")

    def list_expenses(self):
        return self.request("GET", "/api/expenses")

    def ping(self):
        try:
            self.request("GET", "/health/db")
        except SyncError as exc:
            logger.debug("Ping failed: %s", exc)
            return False
        return True

    def close(self):
        self.session.close()
