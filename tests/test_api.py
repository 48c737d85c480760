from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from service_ledger.main import app


@pytest.fixture
def client():
    # Tables are created by the engine fixture, so the lifespan hook is not needed
    return TestClient(app)


def create_product(client, name="Filtro", stock="10"):
    response = client.post("/api/v1/products", json={"name": name, "stock": stock, "sale_price": "25,00"})
    assert response.status_code == 201
    return response.json()


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_create_and_get_product(client):
    product = create_product(client)
    assert Decimal(product["stock"]) == Decimal("10")
    assert Decimal(product["sale_price"]) == Decimal("25")

    response = client.get(f"/api/v1/products/{product['id']}")
    assert response.status_code == 200
    assert response.json()["name"] == "Filtro"

    assert client.get("/api/v1/products/missing").status_code == 404


def test_batch_movements(client):
    product = create_product(client)

    response = client.post("/api/v1/products/movements", json={
        "items": [{"product_id": product["id"], "quantity": 3}],
        "direction": "saida",
    })
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert Decimal(body["outcomes"][0]["current_stock"]) == Decimal("7")

    response = client.post("/api/v1/products/movements", json={
        "items": [{"product_id": product["id"], "quantity": 30}],
        "direction": "saida",
    })
    assert response.status_code == 409
    assert "Insufficient stock" in response.json()["detail"]

    response = client.post("/api/v1/products/movements", json={
        "items": [{"product_id": "missing", "quantity": 1}],
        "direction": "entrada",
    })
    assert response.status_code == 404

    movements = client.get("/api/v1/products/movements", params={"product_id": product["id"]}).json()
    assert [m["origin"] for m in movements] == ["manual", "ajuste_sistema"]


def test_single_product_movement(client):
    product = create_product(client, stock="2")

    response = client.post(
        f"/api/v1/products/{product['id']}/movements", json={"quantity": "1,5", "direction": "entrada"}
    )
    assert response.status_code == 200
    assert Decimal(response.json()["outcomes"][0]["current_stock"]) == Decimal("3.5")

    response = client.post(
        f"/api/v1/products/{product['id']}/movements", json={"quantity": 0, "direction": "entrada"}
    )
    assert response.status_code == 400


def test_service_realized_lifecycle(client):
    product = create_product(client, stock="5")

    response = client.post("/api/v1/services/realized", json={
        "client_name": "Oficina Silva",
        "service_name": "Revisão",
        "value": "100",
        "items": [{"product_id": product["id"], "quantity": 2, "price": 25}],
    })
    assert response.status_code == 201
    record = response.json()["record"]
    assert Decimal(record["total_value"]) == Decimal("150")

    response = client.put(f"/api/v1/services/realized/{record['id']}", json={
        "client_name": "Oficina Silva",
        "service_name": "Revisão",
        "value": "100",
        "items": [{"product_id": product["id"], "quantity": 9, "price": 25}],
    })
    assert response.status_code == 409

    response = client.post(f"/api/v1/services/realized/{record['id']}/settle", json={"channel": "PIX"})
    assert response.status_code == 200
    assert response.json()["already_billed"] is False
    assert response.json()["movement"]["channel"] == "PIX"

    response = client.post(f"/api/v1/services/realized/{record['id']}/settle")
    assert response.json()["already_billed"] is True

    fetched = client.get(f"/api/v1/services/realized/{record['id']}").json()
    assert fetched["status"] == "concluido"
    assert len(fetched["items"]) == 1

    stock = client.get(f"/api/v1/products/{product['id']}").json()["stock"]
    assert Decimal(stock) == Decimal("3")

    assert client.delete(f"/api/v1/services/realized/{record['id']}").status_code == 200
    assert client.get(f"/api/v1/services/realized/{record['id']}").status_code == 404


def test_service_realized_validation_and_not_found(client):
    response = client.post("/api/v1/services/realized", json={"service_name": "Revisão"})
    assert response.status_code == 400

    assert client.post("/api/v1/services/realized/missing/settle").status_code == 404
    assert client.delete("/api/v1/services/realized/missing").status_code == 404
