# Overview: Thin httpx client for the Square endpoints the sync engine needs.

from __future__ import annotations

import uuid

import httpx

SQUARE_API_BASE = {
    "sandbox": "https://connect.squareupsandbox.com",
    "production": "https://connect.squareup.com",
}

DEFAULT_API_VERSION = "2023-10-18"
CATALOG_OBJECT_TYPES = ["ITEM", "ITEM_VARIATION", "CATEGORY"]
WEBHOOK_API_VERSION = "2023-10-18"
WEBHOOK_SUBSCRIPTION_NAME = "LobbyTrace Inventory Sync"
MAX_PAGES = 100


class SquareAPIError(Exception):
    """Raised when Square is unreachable or answers with a non-2xx status."""
    def __init__(self, message: str, status_code: int | None = None, details: list | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details or []


class SquareClient:
    """
    Request/response calls only; no retries. Callers surface failures.

    transport is injectable so tests can use httpx.MockTransport.
    """

    def __init__(
        self,
        access_token: str,
        environment: str = "sandbox",
        *,
        api_version: str = DEFAULT_API_VERSION,
        timeout: float = 15.0,
        transport: httpx.BaseTransport | None = None,
    ):
        if not access_token:
            raise SquareAPIError("Square access token is not configured")
        if environment not in SQUARE_API_BASE:
            raise SquareAPIError(f"Unknown Square environment: {environment}")
        self.environment = environment
        self._client = httpx.Client(
            base_url=SQUARE_API_BASE[environment],
            headers={
                "Authorization": f"Bearer {access_token}",
                "Square-Version": api_version,
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def _request(self, method: str, path: str, json: dict | None = None) -> dict:
        try:
            response = self._client.request(method, path, json=json)
        except httpx.HTTPError as exc:
            raise SquareAPIError(f"Square request failed: {exc}") from exc

        if response.status_code >= 400:
            details = []
            try:
                details = response.json().get("errors") or []
            except ValueError:
                pass
            detail = "; ".join(e.get("detail") or e.get("code", "") for e in details if isinstance(e, dict))
            message = f"Square API {method} {path} returned {response.status_code}"
            if detail:
                message = f"{message}: {detail}"
            raise SquareAPIError(message, status_code=response.status_code, details=details)

        try:
            return response.json()
        except ValueError as exc:
            raise SquareAPIError(f"Square API {method} {path} returned invalid JSON") from exc

    def list_locations(self) -> list[dict]:
        return self._request("GET", "/v2/locations").get("locations") or []

    def test_connection(self) -> bool:
        try:
            self.list_locations()
        except SquareAPIError:
            return False
        return True

    def search_catalog(self, object_types: list[str] | None = None) -> list[dict]:
        """All non-deleted catalog objects of the given types, following cursors."""
        body = {
            "object_types": object_types or CATALOG_OBJECT_TYPES,
            "include_deleted_objects": False,
        }
        objects: list[dict] = []
        for _ in range(MAX_PAGES):
            data = self._request("POST", "/v2/catalog/search", json=body)
            objects.extend(data.get("objects") or [])
            cursor = data.get("cursor")
            if not cursor:
                break
            body = {**body, "cursor": cursor}
        return objects

    def batch_retrieve_inventory_counts(
        self,
        catalog_object_ids: list[str] | None,
        location_id: str,
        states: list[str] | None = None,
    ) -> list[dict]:
        body: dict = {
            "location_ids": [location_id],
            "states": states or ["IN_STOCK"],
        }
        if catalog_object_ids:
            body["catalog_object_ids"] = list(catalog_object_ids)
        counts: list[dict] = []
        for _ in range(MAX_PAGES):
            data = self._request("POST", "/v2/inventory/counts/batch-retrieve", json=body)
            counts.extend(data.get("counts") or [])
            cursor = data.get("cursor")
            if not cursor:
                break
            body = {**body, "cursor": cursor}
        return counts

    def retrieve_order(self, order_id: str) -> dict:
        if not order_id:
            raise SquareAPIError("order id is required")
        order = self._request("GET", f"/v2/orders/{order_id}").get("order")
        if not isinstance(order, dict):
            raise SquareAPIError(f"Square order {order_id} not found", status_code=404)
        return order

    def create_webhook_subscription(
        self,
        notification_url: str,
        event_types: list[str],
        name: str = WEBHOOK_SUBSCRIPTION_NAME,
    ) -> dict:
        """Register a webhook subscription. The response carries its signature_key."""
        if not notification_url:
            raise SquareAPIError("notification url is required")
        body = {
            "idempotency_key": uuid.uuid4().hex,
            "subscription": {
                "name": name,
                "event_types": list(event_types),
                "notification_url": notification_url,
                "api_version": WEBHOOK_API_VERSION,
            },
        }
        subscription = self._request("POST", "/v2/webhooks/subscriptions", json=body).get("subscription")
        if not isinstance(subscription, dict) or not subscription.get("id"):
            raise SquareAPIError("Square did not return a webhook subscription")
        return subscription

    def delete_webhook_subscription(self, subscription_id: str) -> None:
        if not subscription_id:
            raise SquareAPIError("subscription id is required")
        self._request("DELETE", f"/v2/webhooks/subscriptions/{subscription_id}")
