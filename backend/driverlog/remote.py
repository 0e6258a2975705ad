"""HTTP client for the remote document store that mirrors local data."""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import urljoin

import requests

from .schemas import Day, Driver, LocationRate, PayrollSettings
from .utils import chunked

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 450


class MirrorError(RuntimeError):
    """Failure while talking to the remote store."""

    def __init__(self, message: str, *, response: Optional[requests.Response] = None) -> None:
        super().__init__(message)
        self.response = response


def _stamp(payload: Dict[str, Any]) -> Dict[str, Any]:
    payload["updated_at"] = dt.datetime.now(dt.timezone.utc).isoformat()
    return payload


class RemoteMirror:
    """Pushes days, settings, the rate table and the roster to the remote store.

    Without a ``base_url`` the mirror is disabled: pushes do nothing and
    pulls come back empty.
    """

    def __init__(
        self,
        base_url: Optional[str],
        token: Optional[str] = None,
        timeout: int = 15,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        self.base_url = base_url.rstrip("/") + "/" if base_url else None
        self.token = token
        self.timeout = timeout
        self.batch_size = batch_size

    @property
    def enabled(self) -> bool:
        return self.base_url is not None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _request(self, method: str, path: str, **kwargs):
        url = urljoin(self.base_url, path.lstrip("/"))
        kwargs.setdefault("timeout", self.timeout)
        headers = kwargs.setdefault("headers", {})
        headers.update(self._headers())
        try:
            response = requests.request(method, url, **kwargs)
        except requests.RequestException as exc:
            raise MirrorError(str(exc)) from exc

        if response.status_code == 404 and method == "GET":
            return None
        if response.status_code >= 400:
            raise MirrorError(f"Remote error {response.status_code}: {response.text}", response=response)

        if response.headers.get("Content-Type", "").startswith("application/json"):
            return response.json()
        return None

    # ------------------------------------------------------------------
    # Days
    # ------------------------------------------------------------------
    def upsert_day(self, driver_id: str, day: Day) -> None:
        if not self.enabled:
            return
        payload = _stamp(day.model_dump(mode="json"))
        self._request("PUT", f"drivers/{driver_id}/days/{day.id}", json=payload)

    def delete_day(self, driver_id: str, day_id: str) -> None:
        if not self.enabled:
            return
        self._request("DELETE", f"drivers/{driver_id}/days/{day_id}")

    def upsert_days(self, driver_id: str, days: Sequence[Day]) -> int:
        """Bulk upsert in batches of at most ``batch_size`` days; returns the batch count."""
        if not self.enabled or not days:
            return 0
        batches = 0
        for batch in chunked(days, self.batch_size):
            payload = {"days": [_stamp(day.model_dump(mode="json")) for day in batch]}
            self._request("POST", f"drivers/{driver_id}/days:batch", json=payload)
            batches += 1
            logger.info("Mirrored batch of %d day(s) for driver %s", len(batch), driver_id)
        return batches

    def fetch_days(self, driver_id: str) -> List[Day]:
        if not self.enabled:
            return []
        data = self._request("GET", f"drivers/{driver_id}/days") or []
        if isinstance(data, dict):
            data = data.get("days", [])
        return [Day.model_validate(item) for item in data]

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------
    def push_settings(self, driver_id: str, settings: PayrollSettings) -> None:
        if not self.enabled:
            return
        payload = _stamp({"settings": settings.model_dump(mode="json")})
        self._request("PUT", f"drivers/{driver_id}/settings", json=payload)

    def fetch_settings(self, driver_id: str) -> Optional[PayrollSettings]:
        if not self.enabled:
            return None
        data = self._request("GET", f"drivers/{driver_id}/settings")
        if not data or not data.get("settings"):
            return None
        return PayrollSettings.model_validate(data["settings"])

    # ------------------------------------------------------------------
    # Shared configuration
    # ------------------------------------------------------------------
    def push_locations(self, locations: Sequence[LocationRate]) -> None:
        if not self.enabled:
            return
        payload = _stamp({"data": [location.model_dump(mode="json") for location in locations]})
        self._request("PUT", "config/locations", json=payload)

    def fetch_locations(self) -> List[LocationRate]:
        if not self.enabled:
            return []
        data = self._request("GET", "config/locations") or {}
        return [LocationRate.model_validate(item) for item in data.get("data", [])]

    def push_drivers(self, drivers: Sequence[Driver]) -> None:
        if not self.enabled:
            return
        payload = _stamp({"data": [driver.model_dump(mode="json") for driver in drivers]})
        self._request("PUT", "config/drivers", json=payload)

    def fetch_drivers(self) -> List[Driver]:
        if not self.enabled:
            return []
        data = self._request("GET", "config/drivers") or {}
        return [Driver.model_validate(item) for item in data.get("data", [])]
