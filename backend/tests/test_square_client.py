"""
Square API client tests against httpx.MockTransport.
"""

import json

import httpx
import pytest

from lobbytrace.services.square_client import SquareAPIError, SquareClient


def _client(handler, **kwargs):
    return SquareClient("EAAA-token", "sandbox", transport=httpx.MockTransport(handler), **kwargs)


class TestSquareClient:

    def test_headers_and_base_url(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"locations": [{"id": "LOC-1"}]})

        with _client(handler, api_version="2024-01-18") as client:
            assert client.list_locations() == [{"id": "LOC-1"}]

        request = seen[0]
        assert request.url.host == "connect.squareupsandbox.com"
        assert request.headers["Authorization"] == "Bearer EAAA-token"
        assert request.headers["Square-Version"] == "2024-01-18"

    def test_search_catalog_follows_cursor(self):
        pages = [
            {"objects": [{"id": "A"}], "cursor": "next"},
            {"objects": [{"id": "B"}]},
        ]
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json=pages[len(bodies) - 1])

        with _client(handler) as client:
            objects = client.search_catalog()

        assert [o["id"] for o in objects] == ["A", "B"]
        assert "cursor" not in bodies[0]
        assert bodies[1]["cursor"] == "next"
        assert bodies[0]["include_deleted_objects"] is False

    def test_inventory_counts_body(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"counts": [{"catalog_object_id": "V1", "quantity": "3"}]})

        with _client(handler) as client:
            counts = client.batch_retrieve_inventory_counts(["V1"], "LOC-1")

        assert counts[0]["quantity"] == "3"
        assert bodies[0] == {"location_ids": ["LOC-1"], "states": ["IN_STOCK"], "catalog_object_ids": ["V1"]}

    def test_error_carries_square_details(self):
        def handler(request):
            return httpx.Response(401, json={"errors": [{"code": "UNAUTHORIZED", "detail": "Bad token"}]})

        with _client(handler) as client:
            with pytest.raises(SquareAPIError) as exc_info:
                client.list_locations()

        assert exc_info.value.status_code == 401
        assert "Bad token" in str(exc_info.value)
        assert exc_info.value.details[0]["code"] == "UNAUTHORIZED"

    def test_network_error_wrapped(self):
        def handler(request):
            raise httpx.ConnectError("boom", request=request)

        with _client(handler) as client:
            assert client.test_connection() is False

    def test_retrieve_order(self):
        def handler(request):
            assert request.url.path == "/v2/orders/O-1"
            return httpx.Response(200, json={"order": {"id": "O-1", "state": "COMPLETED"}})

        with _client(handler) as client:
            assert client.retrieve_order("O-1")["state"] == "COMPLETED"

    def test_requires_token_and_known_environment(self):
        with pytest.raises(SquareAPIError):
            SquareClient("", "sandbox")
        with pytest.raises(SquareAPIError):
            SquareClient("token", "staging")

    def test_create_webhook_subscription(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"subscription": {"id": "wbhk_1", "signature_key": "k"}})

        with _client(handler) as client:
            subscription = client.create_webhook_subscription(
                "https://shop.example.test/squareWebhook", ["order.created"])

        assert subscription["id"] == "wbhk_1"
        body = json.loads(seen[0].content)
        assert seen[0].url.path == "/v2/webhooks/subscriptions"
        assert body["idempotency_key"]
        assert body["subscription"]["api_version"] == "2023-10-18"
        assert body["subscription"]["event_types"] == ["order.created"]

    def test_create_webhook_subscription_requires_id_in_response(self):
        def handler(request):
            return httpx.Response(200, json={})

        with _client(handler) as client:
            with pytest.raises(SquareAPIError):
                client.create_webhook_subscription("https://shop.example.test/squareWebhook", ["order.created"])
            with pytest.raises(SquareAPIError):
                client.create_webhook_subscription("", ["order.created"])

    def test_delete_webhook_subscription(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={})

        with _client(handler) as client:
            client.delete_webhook_subscription("wbhk_1")

        assert seen[0].method == "DELETE"
        assert seen[0].url.path == "/v2/webhooks/subscriptions/wbhk_1"
