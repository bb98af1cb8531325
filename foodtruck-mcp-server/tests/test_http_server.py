import base64

import pytest
from fastapi.testclient import TestClient

from foodtruck_server.context import AppContext
from foodtruck_server.http_server import create_app

ADDRESS = {
    "street": "Rua das Flores",
    "number": "123",
    "district": "Centro",
    "city": "Sao Paulo",
    "state": "SP",
    "postal_code": "01000-000",
}


@pytest.fixture
def ctx(settings, storage, backend, menu, customer, admin_user):
    return AppContext(settings, storage, backend)


@pytest.fixture
def client(ctx):
    with TestClient(create_app(context=ctx)) as client:
        yield client


def login(client, email="ana@example.com", password="secret123"):
    response = client.post("/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200
    return response.json()


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "authenticated": False, "loading": False}


def test_root_lists_endpoints(client):
    data = client.get("/").json()

    assert data["name"] == "Foodtruck MCP Server"
    assert "cart" in data["endpoints"]


@pytest.mark.parametrize("path", ["/profile", "/orders", "/addresses"])
def test_account_endpoints_need_sign_in(client, path):
    assert client.get(path).status_code == 401


def test_login(client):
    data = login(client)

    assert data["success"]
    assert data["redirect"] == "/home"
    assert data["notifications"][-1]["message"] == "Signed in successfully!"
    status = client.get("/auth/status").json()
    assert status["authenticated"]
    assert status["email"] == "ana@example.com"
    assert not status["is_admin"]


def test_login_with_invalid_form(client):
    response = client.post("/auth/login", json={"email": "not-an-email", "password": ""})

    assert response.status_code == 422
    assert set(response.json()["errors"]) == {"email", "password"}


def test_login_with_wrong_password(client):
    response = client.post("/auth/login", json={"email": "ana@example.com", "password": "nope-nope"})

    assert response.status_code == 200
    assert not response.json()["success"]


def test_profile(client):
    login(client)

    response = client.put("/profile", json={"name": "Ana Maria", "phone": "(11) 90000-1111"})
    profile = client.get("/profile").json()

    assert response.json()["success"]
    assert profile["profile"]["name"] == "Ana Maria"
    assert profile["user"]["id"] == "user-ana"


def test_customers_cannot_use_admin_endpoints(client):
    login(client)

    assert client.get("/admin/dashboard").status_code == 403


def test_menu(client):
    categories = client.get("/categories").json()
    burgers = client.get("/categories/cat-burgers/products").json()
    featured = client.get("/products/featured").json()

    assert categories["count"] == 2
    assert [p["id"] for p in burgers["products"]] == ["p-bacon", "p-classic"]
    assert burgers["products"][0]["price"] == "30.50"
    assert [p["id"] for p in featured["products"]] == ["p-classic"]


def test_unknown_product_and_category(client):
    assert client.get("/products/nope").status_code == 404
    assert client.get("/categories/nope/products").status_code == 404


def test_cart(client):
    added = client.post("/cart/add", json={"product_id": "p-classic", "quantity": 2, "note": "no onions"})
    cart = client.get("/cart").json()

    assert added.json()["quantity"] == 2
    assert added.json()["notifications"][0]["message"] == "Product added to cart!"
    assert cart["item_count"] == 2
    assert cart["total"] == "50.00"
    assert cart["order_total"] == "55.00"
    assert cart["items"][0]["note"] == "no onions"
    assert client.get("/products/p-classic").json()["in_cart"] == 2

    client.post("/cart/update", json={"product_id": "p-classic", "quantity": 0})
    assert client.get("/cart").json()["items"] == []


def test_cart_rejects_bad_additions(client):
    assert client.post("/cart/add", json={"product_id": "p-veggie"}).status_code == 400
    assert client.post("/cart/add", json={"product_id": "p-soda", "quantity": 0}).status_code == 400
    assert client.post("/cart/add", json={"product_id": "nope"}).status_code == 404
    assert client.post("/cart/add", json={"quantity": 1}).status_code == 422


def test_clear_cart(client):
    client.post("/cart/add", json={"product_id": "p-soda"})

    assert client.delete("/cart").json()["success"]
    assert client.get("/cart").json()["item_count"] == 0


def test_checkout(client):
    login(client)
    address = client.post("/addresses", json=ADDRESS).json()["address"]
    client.post("/cart/add", json={"product_id": "p-bacon"})

    response = client.post("/checkout", json={"address_id": address["id"]})

    data = response.json()
    assert data["success"]
    assert data["order"]["total"] == "35.50"
    assert data["notifications"][-1]["message"] == "Order placed successfully!"
    orders = client.get("/orders").json()
    assert orders["count"] == 1
    assert orders["orders"][0]["items"][0]["product_name"] == "Bacon Burger"
    assert client.get(f"/orders/{data['order']['id']}").status_code == 200
    assert client.get("/orders/nope").status_code == 404


def test_address_validation(client):
    login(client)

    response = client.post("/addresses", json={**ADDRESS, "city": ""})

    assert response.status_code == 422
    assert response.json()["errors"] == {"city": "City is required"}


def test_logout_empties_cart(client):
    login(client)
    client.post("/cart/add", json={"product_id": "p-soda"})

    data = client.post("/auth/logout").json()

    assert data["success"]
    assert client.get("/cart").json()["item_count"] == 0


def test_admin_product_management(client, backend):
    login(client, "chef@example.com")
    image = {
        "filename": "fries.jpg",
        "content_base64": base64.b64encode(b"jpeg-bytes").decode(),
        "content_type": "image/jpeg",
    }

    created = client.post(
        "/admin/products",
        json={"name": "Fries", "description": "Crispy", "price": "12.00", "category_id": "cat-burgers", "image": image},
    )

    assert created.status_code == 200
    product = created.json()["product"]
    assert product["image_url"].endswith(".jpg")
    [(content, content_type)] = backend.bucket("imagens").files.values()
    assert content == b"jpeg-bytes"
    assert content_type == "image/jpeg"

    toggled = client.post(f"/admin/products/{product['id']}/toggle-featured").json()
    assert toggled["product"]["featured"]

    missing = client.put(
        "/admin/products/missing",
        json={"name": "Ghost", "description": "x", "price": "1", "category_id": "cat-drinks"},
    )
    assert missing.status_code == 404


def test_admin_product_validation(client):
    login(client, "chef@example.com")

    response = client.post(
        "/admin/products", json={"name": "", "description": "", "price": "5", "category_id": "cat-drinks"}
    )

    assert response.status_code == 422
    assert set(response.json()["errors"]) == {"name", "description"}


def test_admin_orders(client, backend):
    backend.table("pedidos").seed(
        {"id": "o-1", "user_id": "user-ana", "status": "pending", "total": "20.00", "endereco_entrega": "Rua A, 1"}
    )
    login(client, "chef@example.com")

    dashboard = client.get("/admin/dashboard").json()
    updated = client.put("/admin/orders/o-1/status", json={"status": "preparing"})
    preparing = client.get("/admin/orders", params={"status": "preparing"}).json()

    assert dashboard["total_sales"] == "20.00"
    assert dashboard["pending_orders"] == 1
    assert updated.json()["notifications"][-1]["message"] == "Status updated to Preparing"
    assert [o["id"] for o in preparing["orders"]] == ["o-1"]
    assert client.put("/admin/orders/o-1/status", json={"status": "lost"}).status_code == 422


def test_admin_sponsors(client):
    login(client, "chef@example.com")
    first = client.post(
        "/admin/sponsors", json={"name": "Brewery", "logo_url": "b.png", "website": "https://b.test"}
    ).json()["sponsor"]
    second = client.post(
        "/admin/sponsors", json={"name": "Bakery", "logo_url": "k.png", "website": "https://k.test"}
    ).json()["sponsor"]

    moved = client.post(f"/admin/sponsors/{second['id']}/move", json={"direction": "up"}).json()

    assert [s["name"] for s in moved["sponsors"]] == ["Bakery", "Brewery"]
    assert client.post(f"/admin/sponsors/{first['id']}/move", json={"direction": "left"}).status_code == 400
    assert [s["name"] for s in client.get("/sponsors").json()["sponsors"]] == ["Bakery", "Brewery"]


def test_admin_settings(client):
    login(client, "chef@example.com")

    response = client.put("/admin/settings", json={"app_name": "Burger Truck"})

    assert response.json()["config"]["app_name"] == "Burger Truck"
    assert client.get("/config").json()["app_name"] == "Burger Truck"


def test_mcp_tools_listing(client):
    tools = client.get("/mcp/tools").json()["tools"]

    names = [tool["name"] for tool in tools]
    assert "foodtruck_add_to_cart" in names
    assert "foodtruck_admin_save_settings" in names
    assert len(names) == len(set(names))
