"""
Remote Gateway

Talks to the inventory/CRM backend and returns decoded row lists:

- fetch_discount_codes() -> [{CardCode, Inn, Name, MobileNumber, DateOfBirth,
                              DiscountPercentage, IsDeleted}]
- fetch_catalog()        -> [{VendorCode, ProductName, Brand, Color, ...}]
- fetch_stock(sku)       -> [{VendorCode, Price, SalePrice, Quantity,
                              Warehouses: [{Location, Quantity}]}]

The gateway never retries. Retrying is left to whoever drives the sync
(the step protocol client or the next scheduled run).
"""
from __future__ import annotations

import time
from typing import Any, Optional

import requests
from requests.auth import HTTPBasicAuth
from flask import current_app

from ..errors import RemoteFault, RemoteUnavailable, RowError


class RemoteGateway:
    """Contract for the remote backend. Subclasses return normalized rows."""

    def fetch_discount_codes(self) -> list[dict[str, Any]]:
        raise NotImplementedError

    def fetch_catalog(self) -> list[dict[str, Any]]:
        raise NotImplementedError

    def fetch_stock(self, sku_filter: Optional[str] = None) -> list[dict[str, Any]]:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Row normalization
# ---------------------------------------------------------------------------

def clean_string(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return ""
    return " ".join(str(value).split())


def to_float(value: Any) -> float:
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        s = value.strip().replace(" ", "").replace(",", ".")
        try:
            return float(s)
        except ValueError:
            return 0.0
    return 0.0


def to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    return str(value or "").strip().lower() in {"1", "true", "yes", "y"}


def normalize_discount(value: Any) -> int:
    return max(0, int(to_float(value)))


def normalize_date(value: Any) -> str:
    """Keep the YYYY-MM-DD prefix of remote timestamps ("1990-05-17T00:00:00")."""
    s = clean_string(value)
    return s[:10] if len(s) >= 10 else ""


def as_rows(payload: Any, container: str) -> list[dict[str, Any]]:
    """
    Extract the row list from a payload.

    Accepts a bare list, {"rows": [...]}, {container: [...]} and the
    single-row case where the backend returns one object instead of a list.
    """
    if isinstance(payload, dict):
        if "fault" in payload:
            raise RemoteFault(f"Remote fault: {clean_string(payload.get('fault'))}")
        if container in payload:
            payload = payload[container]
        elif "rows" in payload:
            payload = payload["rows"]
    if isinstance(payload, dict):
        payload = [payload]
    if not isinstance(payload, list):
        raise RemoteFault(f"Unexpected payload for {container}")
    return [row for row in payload if isinstance(row, dict)]


def parse_discount_row(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "CardCode": clean_string(row.get("CardCode")),
        "Inn": clean_string(row.get("Inn")),
        "Name": clean_string(row.get("Name")),
        "MobileNumber": clean_string(row.get("MobileNumber")),
        "DateOfBirth": normalize_date(row.get("DateOfBirth")),
        "DiscountPercentage": normalize_discount(row.get("DiscountPercentage")),
        "IsDeleted": to_bool(row.get("IsDeleted")),
    }


def parse_catalog_row(row: dict[str, Any], fields: tuple[str, ...] = ()) -> dict[str, Any]:
    parsed = {
        "VendorCode": clean_string(row.get("VendorCode")),
        "ProductName": clean_string(row.get("ProductName")),
    }
    for name in fields:
        parsed[name] = clean_string(row.get(name))
    if "Branch" in row:
        parsed["Branch"] = clean_string(row.get("Branch"))
    return parsed


def parse_stock_row(row: dict[str, Any]) -> dict[str, Any]:
    warehouses = row.get("Warehouses") or []
    if isinstance(warehouses, dict):
        warehouses = [warehouses]
    return {
        "VendorCode": clean_string(row.get("VendorCode")),
        "Quantity": to_float(row.get("Quantity")),
        "Price": row.get("Price"),
        "SalePrice": row.get("SalePrice"),
        "Warehouses": [
            {"Location": clean_string(w.get("Location")), "Quantity": to_float(w.get("Quantity"))}
            for w in warehouses
            if isinstance(w, dict)
        ],
    }


class HttpGateway(RemoteGateway):
    """JSON-over-HTTP gateway with basic auth."""

    def __init__(
        self,
        base_url: str,
        username: str = "",
        password: str = "",
        timeout: int = 60,
        catalog_fields: tuple[str, ...] = (),
        session: requests.Session | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.auth = HTTPBasicAuth(username, password) if username else None
        self.timeout = timeout
        self.catalog_fields = tuple(catalog_fields)
        self.http = session or requests.Session()

    @classmethod
    def from_config(cls, config) -> "HttpGateway":
        return cls(
            base_url=config.get("ERPSYNC_REMOTE_URL", ""),
            username=config.get("ERPSYNC_REMOTE_USER", ""),
            password=config.get("ERPSYNC_REMOTE_PASSWORD", ""),
            timeout=int(config.get("ERPSYNC_REMOTE_TIMEOUT", 60)),
            catalog_fields=tuple(config.get("ERPSYNC_ATTRIBUTE_MAPPING") or ()),
        )

    def _get(self, endpoint: str, params: dict | None = None) -> Any:
        if not self.base_url:
            raise RemoteUnavailable("Remote URL is not configured")

        url = f"{self.base_url}/{endpoint}"
        start = time.monotonic()
        try:
            response = self.http.get(url, params=params, auth=self.auth, timeout=self.timeout)
        except (requests.ConnectionError, requests.Timeout) as exc:
            raise RemoteUnavailable(f"{endpoint}: {exc}") from exc
        except requests.RequestException as exc:
            raise RemoteFault(f"{endpoint}: {exc}") from exc

        elapsed_ms = int((time.monotonic() - start) * 1000)
        current_app.logger.info("Remote GET %s -> %s in %dms", endpoint, response.status_code, elapsed_ms)

        if response.status_code in (401, 403) or response.status_code >= 500:
            raise RemoteUnavailable(f"{endpoint}: HTTP {response.status_code}")
        if response.status_code >= 400:
            raise RemoteFault(f"{endpoint}: HTTP {response.status_code}: {response.text[:200]}")
        try:
            return response.json()
        except ValueError as exc:
            raise RemoteFault(f"{endpoint}: response is not JSON") from exc

    def fetch_discount_codes(self) -> list[dict[str, Any]]:
        rows = as_rows(self._get("cards"), "cards")
        return [parse_discount_row(r) for r in rows]

    def fetch_catalog(self) -> list[dict[str, Any]]:
        rows = as_rows(self._get("products"), "products")
        return [parse_catalog_row(r, self.catalog_fields) for r in rows]

    def fetch_stock(self, sku_filter: Optional[str] = None) -> list[dict[str, Any]]:
        params = {"vendor_code": sku_filter} if sku_filter else None
        rows = as_rows(self._get("products/stock", params=params), "stock")
        return [parse_stock_row(r) for r in rows]


def row_key(row: dict[str, Any], field: str = "VendorCode") -> str:
    """Stable upsert key of a decoded row; RowError when it is missing."""
    key = clean_string(row.get(field))
    if not key:
        raise RowError(f"Row without {field}")
    return key
