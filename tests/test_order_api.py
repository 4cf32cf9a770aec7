"""Integration tests for the order service endpoints."""

import json

import pytest
from fastapi.testclient import TestClient

from services.order_service import main
from services.order_service.models import Base, OutboxEvent
from shared.database import make_session_factory, session_dependency

ADDRESS = {
    "name": "Asha Rao",
    "phone": "9876543210",
    "address_line1": "12 MG Road",
    "city": "Bengaluru",
    "state": "Karnataka",
    "pincode": "560001",
}

CART_ITEMS = [
    {"_id": "1", "name": "Laptop", "price": 1000, "image": "/img/laptop.jpg", "stock": 10, "quantity": 2, "sku": "LAP-1"},
]


@pytest.fixture()
def session_factory():
    engine, factory = make_session_factory("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield factory
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def client(session_factory):
    main.app.dependency_overrides[main.get_db] = session_dependency(session_factory)
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


def _create(client, **overrides):
    body = {"user_id": "user-42", "items": CART_ITEMS, "shipping_address": ADDRESS, "payment_method": "UPI"}
    body.update(overrides)
    return client.post("/orders", json=body)


def _outbox_types(session_factory):
    db = session_factory()
    try:
        return [e.event_type for e in db.query(OutboxEvent).order_by(OutboxEvent.created_at).all()]
    finally:
        db.close()


class TestCreateOrderEndpoint:
    def test_creates_priced_order(self, client, session_factory):
        response = _create(client)
        assert response.status_code == 201
        data = response.json()
        assert data["order_id"].startswith("VD")
        assert len(data["order_id"]) == 12
        assert data["subtotal"] == 2000
        assert data["gst"] == 360
        assert data["shipping"] == 0
        assert data["total"] == 2360
        assert data["status"] == "Pending"
        assert data["payment_status"] == "Pending"
        assert data["items"][0]["product_id"] == "1"
        assert _outbox_types(session_factory) == ["order.created"]

    def test_client_prices_are_ignored_in_favour_of_items(self, client):
        data = _create(client, total_amount=1).json()
        assert data["total"] == 2360

    def test_discount(self, client):
        assert _create(client, discount=360).json()["total"] == 2000

    def test_weight_and_distance_surcharges(self, client):
        items = [{**CART_ITEMS[0], "price": 200, "quantity": 1}]
        data = _create(client, items=items, weight=3, distance=800).json()
        assert data["shipping"] == 49 + 20 + 20
        assert data["total"] == 200 + 36 + 89

    def test_empty_items_rejected(self, client):
        assert _create(client, items=[]).status_code == 422

    def test_invalid_phone_rejected(self, client):
        assert _create(client, shipping_address={**ADDRESS, "phone": "12345"}).status_code == 422

    def test_unknown_payment_method_rejected(self, client):
        assert _create(client, payment_method="Cheque").status_code == 422


class TestGetOrderEndpoints:
    def test_get_order(self, client):
        order_id = _create(client).json()["order_id"]
        response = client.get(f"/orders/{order_id}")
        assert response.status_code == 200
        assert response.json()["order_id"] == order_id

    def test_get_missing_order(self, client):
        assert client.get("/orders/VD0000000000").status_code == 404

    def test_user_orders(self, client):
        first = _create(client).json()["order_id"]
        second = _create(client).json()["order_id"]
        data = client.get("/orders/user/user-42").json()
        assert data["total_orders"] == 2
        assert [o["order_id"] for o in data["orders"]] == [second, first]

    def test_user_without_orders(self, client):
        assert client.get("/orders/user/nobody").json() == {"user_id": "nobody", "orders": [], "total_orders": 0}


class TestStatusEndpoint:
    def test_update_status(self, client, session_factory):
        order_id = _create(client).json()["order_id"]
        response = client.put(f"/orders/{order_id}/status", json={"status": "Out for Delivery"})
        assert response.status_code == 200
        assert response.json()["status"] == "Out for Delivery"
        assert "order.status_changed" in _outbox_types(session_factory)

    def test_invalid_status(self, client):
        order_id = _create(client).json()["order_id"]
        assert client.put(f"/orders/{order_id}/status", json={"status": "Lost"}).status_code == 422

    def test_missing_order(self, client):
        assert client.put("/orders/VD0000000000/status", json={"status": "Shipped"}).status_code == 404


class TestCancelEndpoint:
    @pytest.mark.parametrize("status", ["Pending", "Confirmed", "Processing"])
    def test_cancel_allowed_before_shipping(self, client, session_factory, status):
        order_id = _create(client).json()["order_id"]
        if status != "Pending":
            client.put(f"/orders/{order_id}/status", json={"status": status})

        response = client.put(f"/orders/{order_id}/cancel", json={"reason": "Ordered by mistake"})
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "Cancelled"
        assert data["cancellation_reason"] == "Ordered by mistake"

        db = session_factory()
        try:
            event = db.query(OutboxEvent).filter(OutboxEvent.event_type == "order.cancelled").one()
            assert json.loads(event.event_data)["cancelled_by"] == "customer"
        finally:
            db.close()

    @pytest.mark.parametrize("status", ["Shipped", "Delivered", "Cancelled"])
    def test_cancel_refused_afterwards(self, client, status):
        order_id = _create(client).json()["order_id"]
        client.put(f"/orders/{order_id}/status", json={"status": status})
        response = client.put(f"/orders/{order_id}/cancel", json={"reason": "Too late"})
        assert response.status_code == 409

    def test_cancel_missing_order(self, client):
        assert client.put("/orders/VD0000000000/cancel", json={}).status_code == 404
