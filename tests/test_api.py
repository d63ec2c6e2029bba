"""
HTTP API tests against an in-memory backend.
"""

import asyncio
import json

import httpx
import pytest
from fastapi.testclient import TestClient

from canteen.main import create_app
from canteen.services.storage import MockKeyValueStore

VENDOR = {"X-User-Role": "vendor"}
STUDENT = {"X-User-Role": "student"}


@pytest.fixture
def storage() -> MockKeyValueStore:
    return MockKeyValueStore()


@pytest.fixture
def client(storage):
    with TestClient(create_app(storage=storage)) as test_client:
        yield test_client


def add_menu_item(client, vendor_id="v1", **fields) -> dict:
    body = {"name": "Pizza", "price": "8.99", **fields}
    response = client.post(f"/api/vendors/{vendor_id}/menu", json=body, headers=VENDOR)
    assert response.status_code == 201, response.text
    return response.json()


# =============================================================================
# ROOT & HEALTH
# =============================================================================

def test_root(client):
    assert client.get("/").json()["health"] == "/health"


def test_health(client, storage):
    data = client.get("/health").json()
    assert data["status"] == "operational"
    assert data["storage_backend"] == "memory"
    assert data["menu_loaded"] is True

    storage.fail_reads = True
    assert client.get("/health").json()["status"] == "degraded"


def test_startup_read_failure_still_serves():
    storage = MockKeyValueStore()
    storage.fail_reads = True

    with TestClient(create_app(storage=storage)) as client:
        assert client.get("/health").json()["menu_loaded"] is False
        assert client.get("/api/vendors/v1/menu").json()["items"] == []


# =============================================================================
# MENU
# =============================================================================

def test_create_and_list_menu(client):
    created = add_menu_item(client, description="Cheese")

    assert created["price"] == "8.99"
    assert created["category"] == "Default"

    listing = client.get("/api/vendors/v1/menu").json()
    assert listing["total"] == 1
    assert listing["items"][0]["id"] == created["id"]


def test_menu_writes_require_vendor_role(client):
    body = {"name": "Tea", "price": 1}

    assert client.post("/api/vendors/v1/menu", json=body).status_code == 403
    assert client.post("/api/vendors/v1/menu", json=body, headers=STUDENT).status_code == 403
    assert client.post("/api/vendors/v1/menu", json=body, headers={"X-User-Role": "chef"}).status_code == 201
    assert client.post("/api/vendors/v1/menu", json=body, headers={"X-User-Role": "admin"}).status_code == 400


def test_invalid_menu_item(client):
    response = client.post("/api/vendors/v1/menu", json={"name": "Tea", "price": "abc"}, headers=VENDOR)
    assert response.status_code == 422


def test_failed_write_returns_503(client, storage):
    storage.fail_writes = True

    response = client.post("/api/vendors/v1/menu", json={"name": "Tea", "price": 1}, headers=VENDOR)

    assert response.status_code == 503
    assert response.json()["error"] == "Storage unavailable"
    assert client.get("/api/vendors/v1/menu").json()["total"] == 0


def test_update_availability_and_delete(client):
    item = add_menu_item(client)
    url = f"/api/vendors/v1/menu/{item['id']}"

    replaced = client.put(url, json={"name": "Veg Pizza", "price": 7}, headers=VENDOR)
    assert replaced.json()["name"] == "Veg Pizza"

    toggled = client.patch(f"{url}/availability", json={"available": False}, headers=VENDOR)
    assert toggled.json()["available"] is False

    assert client.delete(url, headers=VENDOR).status_code == 204
    assert client.delete(url, headers=VENDOR).status_code == 204
    assert client.put(url, json={"name": "X", "price": 1}, headers=VENDOR).status_code == 404
    assert client.patch(f"{url}/availability", json={"available": True}, headers=VENDOR).status_code == 404


def test_available_only_filter(client):
    add_menu_item(client, name="On")
    add_menu_item(client, name="Off", available=False)

    listing = client.get("/api/vendors/v1/menu", params={"available_only": True}).json()
    assert [item["name"] for item in listing["items"]] == ["On"]


def test_reload_picks_up_external_changes(client, storage):
    add_menu_item(client)
    catalog = json.loads(storage.data["canteen_menu_catalog"])
    catalog["v2"] = catalog["v1"]
    client.portal.call(storage.set, "canteen_menu_catalog", json.dumps(catalog))

    assert client.get("/api/vendors/v2/menu").json()["total"] == 0

    reloaded = client.post("/api/menu/reload").json()
    assert reloaded == {"success": True, "vendors": 2, "items": 2}
    assert client.get("/api/vendors/v2/menu").json()["total"] == 1


def test_clear_menu(client):
    add_menu_item(client)
    assert client.delete("/api/menu", headers=VENDOR).status_code == 204
    assert client.get("/api/vendors/v1/menu").json()["total"] == 0


# =============================================================================
# QR
# =============================================================================

def test_qr_requires_menu_items(client):
    assert client.get("/api/vendors/v1/qr", headers=VENDOR).status_code == 409

    add_menu_item(client)
    data = client.get("/api/vendors/v1/qr", params={"vendor_name": "North"}, headers=VENDOR).json()

    assert data["shop_payload"] == "ezyeats-shop:v1"
    assert json.loads(data["menu_payload"])["canteenName"] == "North"


def test_qr_resolve(client):
    resolved = client.post("/api/qr/resolve", json={"payload": "ezyeats-shop:v1"}).json()
    assert resolved["vendor_id"] == "v1"
    assert resolved["kind"] == "shop"

    bad = client.post("/api/qr/resolve", json={"payload": "nonsense"})
    assert bad.status_code == 400


# =============================================================================
# CART
# =============================================================================

def test_cart_flow(client):
    pizza = add_menu_item(client, "A")
    tea = add_menu_item(client, "B", name="Tea", price="1.50")
    url = "/api/carts/s1"

    client.post(f"{url}/items", json={"vendor_id": "A", "item_id": pizza["id"]})
    cart = client.post(f"{url}/items", json={"vendor_id": "A", "item_id": pizza["id"]}).json()["cart"]

    assert cart["vendor_id"] == "A"
    assert cart["total_price"] == "17.98"
    assert cart["item_count"] == 2

    cart = client.post(f"{url}/items", json={"vendor_id": "B", "item_id": tea["id"]}).json()["cart"]
    assert cart["vendor_id"] == "B"
    assert [line["item_id"] for line in cart["lines"]] == [tea["id"]]

    cart = client.put(f"{url}/items/{tea['id']}", json={"quantity": 3}).json()["cart"]
    assert cart["total_price"] == "4.50"

    cart = client.post(f"{url}/items/{tea['id']}/increment").json()["cart"]
    assert cart["item_count"] == 4

    cart = client.post(f"{url}/items/{tea['id']}/decrement").json()["cart"]
    assert cart["item_count"] == 3

    cart = client.delete(f"{url}/items/{tea['id']}").json()["cart"]
    assert cart["lines"] == []
    assert cart["vendor_id"] is None


def test_cart_rejects_unknown_and_unavailable_items(client):
    item = add_menu_item(client, available=False)

    missing = client.post("/api/carts/s1/items", json={"vendor_id": "v1", "item_id": "nope"})
    assert missing.status_code == 404

    unavailable = client.post("/api/carts/s1/items", json={"vendor_id": "v1", "item_id": item["id"]})
    assert unavailable.status_code == 409


def test_unknown_session_reads_empty(client):
    cart = client.get("/api/carts/nobody").json()["cart"]
    assert cart == {"vendor_id": None, "lines": [], "total_price": "0.00", "item_count": 0}


def test_clear_cart(client):
    item = add_menu_item(client)
    client.post("/api/carts/s1/items", json={"vendor_id": "v1", "item_id": item["id"]})

    assert client.delete("/api/carts/s1").status_code == 204
    assert client.get("/api/carts/s1").json()["cart"]["item_count"] == 0


def test_emptied_cart_frees_its_session(client):
    item = add_menu_item(client)
    carts = client.app.state.carts

    client.post("/api/carts/s1/items", json={"vendor_id": "v1", "item_id": item["id"]})
    assert "s1" in carts

    client.post(f"/api/carts/s1/items/{item['id']}/decrement")
    assert "s1" not in carts

    client.post("/api/carts/s2/items", json={"vendor_id": "v1", "item_id": item["id"]})
    client.put(f"/api/carts/s2/items/{item['id']}", json={"quantity": 0})
    client.post("/api/carts/s3/items", json={"vendor_id": "v1", "item_id": "nope"})
    assert len(carts) == 0


def test_quantity_limits_return_422(client):
    item = add_menu_item(client)
    url = f"/api/carts/s1/items/{item['id']}"
    client.post("/api/carts/s1/items", json={"vendor_id": "v1", "item_id": item["id"]})

    assert client.put(url, json={"quantity": 100}).status_code == 422
    assert client.put(url, json={"quantity": 0.5}).status_code == 422

    assert client.put(url, json={"quantity": 99}).status_code == 200
    assert client.post(f"{url}/increment").status_code == 422
    again = client.post("/api/carts/s1/items", json={"vendor_id": "v1", "item_id": item["id"]})
    assert again.status_code == 422

    assert client.get("/api/carts/s1").json()["cart"]["item_count"] == 99


# =============================================================================
# CONCURRENT WRITES
# =============================================================================

@pytest.mark.asyncio
async def test_concurrent_menu_writes_keep_every_item():
    storage = MockKeyValueStore(min_latency=0.01, max_latency=0.02)
    app = create_app(storage=storage)
    names = [f"Dish {n}" for n in range(6)]

    async with app.router.lifespan_context(app):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            responses = await asyncio.gather(*[
                client.post(
                    f"/api/vendors/{'v1' if n % 2 else 'v2'}/menu",
                    json={"name": name, "price": "2.00"},
                    headers=VENDOR,
                )
                for n, name in enumerate(names)
            ])
            listed = [
                item["name"]
                for vendor_id in ("v1", "v2")
                for item in (await client.get(f"/api/vendors/{vendor_id}/menu")).json()["items"]
            ]

    assert [response.status_code for response in responses] == [201] * len(names)
    assert sorted(listed) == sorted(names)

    stored = json.loads(storage.data["canteen_menu_catalog"])
    assert sorted(item["name"] for items in stored.values() for item in items) == sorted(names)


# =============================================================================
# CHECKOUT & ORDERS
# =============================================================================

def fill_cart(client, session_id="s1", vendor_id="v1") -> list[dict]:
    pizza = add_menu_item(client, vendor_id)
    tea = add_menu_item(client, vendor_id, name="Tea", price="1.50")
    for item in (pizza, pizza, tea):
        response = client.post(
            f"/api/carts/{session_id}/items",
            json={"vendor_id": vendor_id, "item_id": item["id"]},
        )
        assert response.status_code == 200, response.text
    return [pizza, tea]


def test_checkout_creates_order_and_empties_cart(client, storage):
    fill_cart(client)

    response = client.post("/api/carts/s1/checkout", json={"customer_name": " Asha ", "special_instructions": ""})

    assert response.status_code == 201, response.text
    order = response.json()
    assert order["status"] == "pending"
    assert order["vendor_id"] == "v1"
    assert order["total_amount"] == "19.48"
    assert order["item_count"] == 3
    assert order["customer_name"] == "Asha"
    assert order["special_instructions"] is None

    assert client.get("/api/carts/s1").json()["cart"]["item_count"] == 0
    assert "s1" not in client.app.state.carts
    assert json.loads(storage.data["canteen_orders:v1"])[0]["id"] == order["id"]


def test_checkout_without_body(client):
    fill_cart(client)
    assert client.post("/api/carts/s1/checkout").status_code == 201


def test_checkout_empty_cart_is_conflict(client, storage):
    assert client.post("/api/carts/nobody/checkout").status_code == 409
    assert not any(key.startswith("canteen_orders:") for key in storage.data)


def test_checkout_rejects_unavailable_item(client):
    _, tea = fill_cart(client)
    client.patch(f"/api/vendors/v1/menu/{tea['id']}/availability", json={"available": False}, headers=VENDOR)

    response = client.post("/api/carts/s1/checkout")

    assert response.status_code == 409
    assert client.get("/api/carts/s1").json()["cart"]["item_count"] == 3


def test_checkout_storage_failure_keeps_cart(client, storage):
    fill_cart(client)
    storage.fail_writes = True

    assert client.post("/api/carts/s1/checkout").status_code == 503
    assert client.get("/api/carts/s1").json()["cart"]["item_count"] == 3

    storage.fail_writes = False
    assert client.post("/api/carts/s1/checkout").status_code == 201


def test_vendor_order_queue(client):
    fill_cart(client, "s1")
    first = client.post("/api/carts/s1/checkout").json()
    fill_cart(client, "s2")
    client.post("/api/carts/s2/checkout")

    assert client.get("/api/vendors/v1/orders").status_code == 403

    listing = client.get("/api/vendors/v1/orders", headers=VENDOR).json()
    assert listing["total"] == 2
    assert listing["orders"][0]["id"] == first["id"]

    status_url = f"/api/vendors/v1/orders/{first['id']}/status"
    accepted = client.patch(status_url, json={"status": "accepted"}, headers=VENDOR)
    assert accepted.status_code == 200
    assert accepted.json()["accepted_at"] is not None

    filtered = client.get("/api/vendors/v1/orders", params={"status": "accepted"}, headers=VENDOR).json()
    assert [order["id"] for order in filtered["orders"]] == [first["id"]]

    bad_filter = client.get("/api/vendors/v1/orders", params={"status": "eaten"}, headers=VENDOR)
    assert bad_filter.status_code == 400

    receipt = client.get(f"/api/vendors/v1/orders/{first['id']}").json()
    assert receipt["status"] == "accepted"


def test_order_status_transitions(client):
    fill_cart(client)
    order = client.post("/api/carts/s1/checkout").json()
    status_url = f"/api/vendors/v1/orders/{order['id']}/status"

    assert client.patch(status_url, json={"status": "accepted"}).status_code == 403
    assert client.patch(status_url, json={"status": "ready"}, headers=VENDOR).status_code == 409
    assert client.patch(status_url, json={"status": "served"}, headers=VENDOR).status_code == 422

    for status in ("accepted", "preparing", "ready", "completed"):
        response = client.patch(status_url, json={"status": status}, headers=VENDOR)
        assert response.status_code == 200, response.text
        assert response.json()["status"] == status

    assert client.patch(status_url, json={"status": "cancelled"}, headers=VENDOR).status_code == 409


def test_unknown_order_is_404(client):
    assert client.get("/api/vendors/v1/orders/missing").status_code == 404
    missing = client.patch(
        "/api/vendors/v1/orders/missing/status",
        json={"status": "accepted"},
        headers=VENDOR,
    )
    assert missing.status_code == 404
