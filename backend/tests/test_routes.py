"""
Tests for the HTTP surface: auth, scan, receptions, ateliers, movements,
tracking checks, orders and the SSE endpoint.
"""
import asyncio
import json
from decimal import Decimal

import pytest
from sqlalchemy import select, func

from app.core.config import settings
from app.models import Order, StockMovement


class TestAuth:

    @pytest.mark.asyncio
    async def test_missing_token(self, client):
        resp = await client.get("/api/inventory/receptions")
        assert resp.status_code == 401
        assert resp.json()["error"] == "AUTH_REQUIRED"

    @pytest.mark.asyncio
    async def test_invalid_token(self, client, auth_headers):
        resp = await client.get("/api/inventory/receptions", headers=auth_headers(token="garbage"))
        assert resp.status_code == 401
        assert resp.json()["error"] == "INVALID_TOKEN"

    @pytest.mark.asyncio
    async def test_role_not_allowed(self, client, auth_headers):
        resp = await client.get("/api/inventory/receptions", headers=auth_headers("CONFIRMATRICE"))
        assert resp.status_code == 403
        assert "message_fr" in resp.json()

    @pytest.mark.asyncio
    async def test_stock_manager_allowed(self, client, auth_headers):
        resp = await client.get("/api/inventory/receptions", headers=auth_headers("STOCK_MANAGER"))
        assert resp.status_code == 200
        assert resp.json() == []


class TestScan:

    @pytest.mark.asyncio
    async def test_add_accessory(self, client, catalog, stock, auth_headers):
        resp = await client.post(
            "/api/products/scan",
            json={"barcode": "CAP01", "action": "add"},
            headers=auth_headers(),
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["product"]["old_stock"] == 0
        assert body["product"]["new_stock"] == 1
        assert body["product"]["reference"] == "CAP01"
        assert body["message_fr"]
        assert await stock.product("CAP01") == 1

    @pytest.mark.asyncio
    async def test_remove_at_zero(self, client, catalog, stock, auth_headers):
        resp = await client.post(
            "/api/products/scan",
            json={"barcode": "CAP01", "action": "remove"},
            headers=auth_headers(),
        )
        assert resp.status_code == 400
        assert resp.json()["message"] == "Cannot remove stock. Stock is already 0."
        assert await stock.product("CAP01") == 0
        assert await client_movements_count(stock.db) == 0

    @pytest.mark.asyncio
    async def test_sized_scan_returns_size_and_image(self, client, catalog, stock, auth_headers):
        resp = await client.post(
            "/api/products/scan",
            json={"barcode": "TS001-M", "action": "remove", "operation_type": "sortie", "tracking_number": "YAL-1"},
            headers=auth_headers(),
        )
        assert resp.status_code == 200
        product = resp.json()["product"]
        assert product["size"] == "M"
        assert (product["old_stock"], product["new_stock"]) == (10, 9)
        assert product["image"] == "https://cdn.example.com/ts001.jpg"
        assert await stock.product("TS001") == await stock.sizes_total("TS001") == 12
        assert await client_movements_count(stock.db) == 1

    @pytest.mark.asyncio
    async def test_unknown_product_is_404(self, client, catalog, auth_headers):
        resp = await client.post(
            "/api/products/scan",
            json={"barcode": "NOPE-M", "action": "add"},
            headers=auth_headers(),
        )
        assert resp.status_code == 404
        assert resp.json()["error"] == "PRODUCT_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_unmatched_size_is_404(self, client, catalog, auth_headers):
        resp = await client.post(
            "/api/products/scan",
            json={"barcode": "TS001-XXL", "action": "add"},
            headers=auth_headers(),
        )
        assert resp.status_code == 404
        assert resp.json()["error"] == "SIZE_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_invalid_action_is_400(self, client, catalog, auth_headers):
        resp = await client.post(
            "/api/products/scan",
            json={"barcode": "CAP01", "action": "double"},
            headers=auth_headers(),
        )
        assert resp.status_code == 400


async def client_movements_count(db) -> int:
    return await db.scalar(select(func.count(StockMovement.id)))


class TestReceptions:

    @pytest.mark.asyncio
    async def test_create_returns_outcome(self, client, catalog, stock, auth_headers):
        atelier_id = catalog["atelier"].id
        resp = await client.post(
            "/api/inventory/receptions",
            json={
                "atelier_id": atelier_id,
                "notes": "Livraison du lundi",
                "items": [
                    {"product_name": "T-shirt Loud", "reference": "TS001", "size": "M", "quantity": 5},
                    {"product_name": "Inconnu", "reference": "ZZZ", "size": "M", "quantity": 1},
                    {"product_name": "Sans ref", "quantity": 2},
                ],
            },
            headers=auth_headers("STOCK_MANAGER"),
        )
        assert resp.status_code == 201
        body = resp.json()
        assert [r["status"] for r in body["results"]] == ["success", "failed", "skipped"]
        assert (body["applied"], body["rejected"], body["skipped"]) == (1, 1, 1)
        assert body["fully_applied"] is False
        assert Decimal(body["reception"]["total_cost"]) == Decimal("5000")
        assert body["reception"]["payment_status"] == "pending"
        assert body["reception"]["status"] == "completed"
        assert len(body["reception"]["items"]) == 3
        assert await stock.size("TS001", "M") == 15

    @pytest.mark.asyncio
    async def test_unknown_atelier_is_400(self, client, catalog, auth_headers):
        resp = await client.post(
            "/api/inventory/receptions",
            json={"atelier_id": 999, "items": [{"product_name": "X", "quantity": 1}]},
            headers=auth_headers(),
        )
        assert resp.status_code == 400
        assert resp.json()["message_fr"] == "Atelier introuvable"

    @pytest.mark.asyncio
    async def test_empty_items_is_422(self, client, catalog, auth_headers):
        resp = await client.post(
            "/api/inventory/receptions",
            json={"atelier_id": catalog["atelier"].id, "items": []},
            headers=auth_headers(),
        )
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_patch_delete_and_list(self, client, catalog, stock, auth_headers):
        atelier_id = catalog["atelier"].id
        created = await client.post(
            "/api/inventory/receptions",
            json={"atelier_id": atelier_id, "items": [
                {"product_name": "Casquette Loud", "reference": "CAP01", "quantity": 10},
            ]},
            headers=auth_headers(),
        )
        reception_id = created.json()["reception"]["id"]

        patched = await client.patch(
            f"/api/inventory/receptions/{reception_id}",
            json={"amount_paid": "1000"},
            headers=auth_headers(),
        )
        assert patched.status_code == 200
        assert patched.json()["payment_status"] == "partial"

        listed = await client.get("/api/inventory/receptions", headers=auth_headers())
        assert [r["id"] for r in listed.json()] == [reception_id]

        deleted = await client.delete(f"/api/inventory/receptions/{reception_id}", headers=auth_headers())
        assert deleted.status_code == 204
        assert await stock.product("CAP01") == 10

        missing = await client.delete(f"/api/inventory/receptions/{reception_id}", headers=auth_headers())
        assert missing.status_code == 404


class TestAteliers:

    @pytest.mark.asyncio
    async def test_create_list_and_duplicate(self, client, auth_headers):
        created = await client.post("/api/ateliers", json={"name": "  Atelier Sétif "}, headers=auth_headers())
        assert created.status_code == 201
        assert created.json()["name"] == "Atelier Sétif"

        await client.post("/api/ateliers", json={"name": "Atelier Alger"}, headers=auth_headers())
        listed = await client.get("/api/ateliers", headers=auth_headers())
        assert [a["name"] for a in listed.json()] == ["Atelier Alger", "Atelier Sétif"]

        duplicate = await client.post("/api/ateliers", json={"name": "Atelier Sétif"}, headers=auth_headers())
        assert duplicate.status_code == 409

    @pytest.mark.asyncio
    async def test_delete_refused_when_receptions_exist(self, client, catalog, auth_headers):
        atelier_id = catalog["atelier"].id
        await client.post(
            "/api/inventory/receptions",
            json={"atelier_id": atelier_id, "items": [{"product_name": "X", "quantity": 1}]},
            headers=auth_headers(),
        )
        resp = await client.delete(f"/api/ateliers/{atelier_id}", headers=auth_headers())
        assert resp.status_code == 409
        assert "Impossible de supprimer" in resp.json()["message_fr"]

    @pytest.mark.asyncio
    async def test_delete(self, client, auth_headers):
        created = await client.post("/api/ateliers", json={"name": "Atelier Blida"}, headers=auth_headers())
        atelier_id = created.json()["id"]

        assert (await client.delete(f"/api/ateliers/{atelier_id}", headers=auth_headers())).status_code == 204
        assert (await client.delete(f"/api/ateliers/{atelier_id}", headers=auth_headers())).status_code == 404


class TestMovementsAndTracking:

    @pytest.mark.asyncio
    async def test_record_and_list(self, client, auth_headers):
        resp = await client.post(
            "/api/inventory/movements",
            json={"operation_type": "retour", "product_name": "T-shirt Loud", "quantity": 2, "tracking_number": "YAL-5"},
            headers=auth_headers(),
        )
        assert resp.status_code == 201
        assert resp.json()["type"] == "in"

        listed = await client.get("/api/inventory/movements", params={"type": "in"}, headers=auth_headers())
        assert len(listed.json()) == 1

        empty = await client.get("/api/inventory/movements", params={"operation_type": "sortie"}, headers=auth_headers())
        assert empty.json() == []

    @pytest.mark.asyncio
    async def test_list_limit_is_clamped(self, client, auth_headers, monkeypatch):
        monkeypatch.setattr(settings, "MOVEMENTS_MAX_LIMIT", 1)
        for name in ("A", "B"):
            await client.post(
                "/api/inventory/movements",
                json={"type": "in", "product_name": name, "quantity": 1},
                headers=auth_headers(),
            )
        resp = await client.get("/api/inventory/movements", params={"limit": 50000}, headers=auth_headers())
        assert resp.status_code == 200
        assert len(resp.json()) == 1

    @pytest.mark.asyncio
    async def test_echange_without_type_is_400(self, client, auth_headers):
        resp = await client.post(
            "/api/inventory/movements",
            json={"operation_type": "echange", "product_name": "X", "quantity": 1},
            headers=auth_headers(),
        )
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_validate_tracking_per_category(self, client, auth_headers):
        await client.post(
            "/api/inventory/movements",
            json={"operation_type": "sortie", "product_name": "T-shirt Loud", "size": "M",
                  "quantity": 1, "tracking_number": "YAL-42"},
            headers=auth_headers(),
        )

        sortie = await client.get(
            "/api/inventory/validate-tracking",
            params={"tracking_number": "YAL-42", "operation_type": "sortie"},
            headers=auth_headers(),
        )
        assert sortie.json()["valid"] is False

        retour = await client.get(
            "/api/inventory/validate-tracking",
            params={"tracking_number": "YAL-42", "operation_type": "retour"},
            headers=auth_headers(),
        )
        assert retour.json()["valid"] is True

        lookup = await client.get(
            "/api/inventory/lookup-sortie-by-tracking",
            params={"tracking_number": "YAL-42"},
            headers=auth_headers(),
        )
        body = lookup.json()
        assert body["found"] is True
        assert body["items"][0]["size"] == "M"


class TestOrders:

    @staticmethod
    def _order(product_id, size=None, quantity=1, **extra):
        payload = {
            "customer_name": "Amine B.",
            "customer_phone": "0555123456",
            "delivery_type": "HOME_DELIVERY",
            "delivery_address": "12 rue Didouche Mourad, Alger",
            "items": [{"product_id": product_id, "size": size, "quantity": quantity}],
        }
        payload.update(extra)
        return payload

    @pytest.mark.asyncio
    async def test_deferred_policy_leaves_stock_and_notifies(self, client, catalog, stock, hub, monkeypatch):
        monkeypatch.setattr(settings, "ORDER_STOCK_POLICY", "deferred")
        product_id = catalog["tshirt"].id
        admin_stream = hub.register(1, "ADMIN")
        admin_stream._queue.get_nowait()

        resp = await client.post("/api/orders", json=self._order(product_id, "M", 2))
        assert resp.status_code == 201
        body = resp.json()
        assert body["order_number"] == "ORD-000001"
        assert Decimal(body["subtotal"]) == Decimal("5000")
        assert Decimal(body["delivery_fee"]) == Decimal("500")
        assert Decimal(body["total"]) == Decimal("5500")
        assert body["stock_policy"] == "deferred"
        assert await stock.size("TS001", "M") == 10

        event = admin_stream._queue.get_nowait()
        assert event["type"] == "new_order"
        assert event["order_number"] == "ORD-000001"
        assert event["customer_name"] == "Amine B."

        second = await client.post("/api/orders", json=self._order(product_id, "S", delivery_type="PICKUP"))
        assert second.json()["order_number"] == "ORD-000002"
        assert Decimal(second.json()["delivery_fee"]) == Decimal("0")

    @pytest.mark.asyncio
    async def test_reserve_policy_decrements(self, client, catalog, stock, monkeypatch):
        monkeypatch.setattr(settings, "ORDER_STOCK_POLICY", "reserve")
        product_id = catalog["tshirt"].id

        resp = await client.post("/api/orders", json=self._order(product_id, "M", 3))
        assert resp.status_code == 201
        assert await stock.size("TS001", "M") == 7
        assert await stock.product("TS001") == await stock.sizes_total("TS001")

    @pytest.mark.asyncio
    async def test_reserve_policy_refuses_shortage(self, client, catalog, stock, db, monkeypatch):
        monkeypatch.setattr(settings, "ORDER_STOCK_POLICY", "reserve")
        product_id = catalog["tshirt"].id

        resp = await client.post("/api/orders", json=self._order(product_id, "L", 1))
        assert resp.status_code == 400
        assert resp.json()["error"] == "STOCK_ERROR"
        assert await db.scalar(select(func.count(Order.id))) == 0

    @pytest.mark.asyncio
    async def test_unknown_size_is_404(self, client, catalog, monkeypatch):
        monkeypatch.setattr(settings, "ORDER_STOCK_POLICY", "deferred")
        resp = await client.post("/api/orders", json=self._order(catalog["tshirt"].id, "XXL"))
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_get_order_requires_staff(self, client, catalog, auth_headers, monkeypatch):
        monkeypatch.setattr(settings, "ORDER_STOCK_POLICY", "deferred")
        created = await client.post("/api/orders", json=self._order(catalog["cap"].id))
        order_id = created.json()["id"]

        assert (await client.get(f"/api/orders/{order_id}")).status_code == 401
        resp = await client.get(f"/api/orders/{order_id}", headers=auth_headers("CONFIRMATRICE"))
        assert resp.status_code == 200
        assert resp.json()["items"][0]["product_name"] == "Casquette Loud"


class TestSSE:

    @pytest.mark.asyncio
    async def test_requires_token(self, client):
        resp = await client.get("/api/sse/notifications")
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_rejects_customer_role(self, client, auth_headers):
        token = auth_headers("CUSTOMER")["Authorization"].split(" ", 1)[1]
        resp = await client.get("/api/sse/notifications", params={"token": token})
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_stream_starts_with_connected_event_and_unregisters_on_end(self, client, hub, auth_headers):
        token = auth_headers("CONFIRMATRICE", user_id=9)["Authorization"].split(" ", 1)[1]
        request = asyncio.create_task(client.get("/api/sse/notifications", params={"token": token}))

        for _ in range(200):
            if hub.user_client_count(9):
                break
            await asyncio.sleep(0.01)
        assert hub.user_client_count(9) == 1

        # ending the stream runs the route's cleanup, as a dropped client does
        (stream,) = hub._clients["9"]
        stream.close()
        resp = await asyncio.wait_for(request, timeout=5)

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        assert resp.headers["cache-control"] == "no-cache"
        first_frame = resp.text.split("\n\n")[0]
        assert first_frame.startswith("data: ")
        event = json.loads(first_frame[len("data: "):])
        assert event["type"] == "connected"
        assert event["user_id"] == "9"
        assert event["user_role"] == "CONFIRMATRICE"
        assert hub.user_client_count(9) == 0
        assert hub.total_clients() == 0

    @pytest.mark.asyncio
    async def test_status(self, client, hub, auth_headers):
        hub.register(3, "ADMIN")
        resp = await client.get("/api/sse/status", headers=auth_headers())
        assert resp.status_code == 200
        assert resp.json() == {"connected_clients": 1, "connected_users": ["3"], "relay": False}


class TestHealth:

    @pytest.mark.asyncio
    async def test_health(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["database"] == "connected"
