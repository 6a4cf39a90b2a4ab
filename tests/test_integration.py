import pytest
from fastapi.testclient import TestClient

from clinic_payments.main import app as fastapi_app
from clinic_payments.models import CartItem, Order, PaymentEvent, User
import clinic_payments.auth
import clinic_payments.routes

from conftest import TestingSessionLocal


@pytest.fixture
def client(monkeypatch, gateway):
    monkeypatch.setattr("clinic_payments.routes.SessionLocal", TestingSessionLocal)
    fastapi_app.dependency_overrides[clinic_payments.routes.get_gateway] = lambda: gateway
    with TestClient(fastapi_app) as c:
        yield c
    fastapi_app.dependency_overrides.clear()


def act_as(user_id):
    fastapi_app.dependency_overrides[clinic_payments.auth.verify_token] = lambda: user_id


def test_full_order_lifecycle_integration(client, make_user, make_product, add_to_cart, razorpay, sign):
    """
    1. Checkout the cart (API -> DB)
    2. Initiate payment (API -> DB + Razorpay faked)
    3. Confirm with the gateway signature (API -> DB)
    """
    user = make_user(address="12 MG Road, Pune", phone="9800000000")
    add_to_cart(user, make_product("200", name="Brahmi oil"), quantity=2)
    add_to_cart(user, make_product("300", name="Tulsi tea"), quantity=1)
    act_as(user.id)

    # --- 1. CHECKOUT ---
    checkout = client.post("/cart/checkout", json={})
    assert checkout.status_code == 200
    order_id = checkout.json()["id"]
    assert checkout.json()["total"] == "700.00"
    assert checkout.json()["payment_status"] == "pending"

    # --- 2. INITIATE ---
    initiated = client.post(
        "/payments/initiate",
        json={"purchasable_kind": "product_order", "purchasable_id": order_id},
    )
    assert initiated.status_code == 200
    remote_order_id = initiated.json()["remote_order_id"]
    assert initiated.json()["amount"] == 70000
    assert razorpay.orders[0]["notes"]["kind"] == "product_order"

    # Something lands in the cart while the user is paying
    add_to_cart(user, make_product("80", name="Neem soap"), quantity=1)

    # --- 3. CONFIRM ---
    confirmed = client.post("/payments/confirm", json={
        "purchasable_kind": "product_order",
        "purchasable_id": order_id,
        "remote_order_id": remote_order_id,
        "remote_payment_id": "pay_live_1",
        "signature": sign(remote_order_id, "pay_live_1"),
    })
    assert confirmed.status_code == 200
    assert confirmed.json()["status"] == "paid"

    db = TestingSessionLocal()
    order = db.get(Order, order_id)
    assert order.payment_status == "paid"
    assert order.remote_order_id == remote_order_id
    assert order.remote_payment_id == "pay_live_1"
    assert db.query(CartItem).filter_by(user_id=user.id).count() == 0
    assert [e.event for e in db.query(PaymentEvent).order_by(PaymentEvent.id)] == ["initiated", "paid"]
    db.close()


def test_appointment_booking_and_doctor_confirmation(client, make_user, make_doctor, sign):
    patient = make_user()
    doctor = make_doctor(fee="1500")
    act_as(patient.id)

    booked = client.post("/appointments", json={
        "doctor_id": doctor.id,
        "scheduled_at": "2026-11-02T10:30:00",
        "mode": "online",
    })
    assert booked.status_code == 200
    appointment_id = booked.json()["id"]
    assert booked.json()["fee"] == "1500.00"

    # Doctor can't accept an unpaid booking
    act_as(doctor.id)
    early = client.post(f"/appointments/{appointment_id}/confirm")
    assert early.status_code == 409
    assert early.json()["code"] == "payment_incomplete"

    act_as(patient.id)
    remote_order_id = client.post(
        "/payments/initiate",
        json={"purchasable_kind": "appointment", "purchasable_id": appointment_id},
    ).json()["remote_order_id"]
    paid = client.post("/payments/confirm", json={
        "purchasable_kind": "appointment",
        "purchasable_id": appointment_id,
        "remote_order_id": remote_order_id,
        "remote_payment_id": "pay_appt_1",
        "signature": sign(remote_order_id, "pay_appt_1"),
    })
    assert paid.status_code == 200
    assert paid.json()["status"] == "paid"

    act_as(doctor.id)
    accepted = client.post(f"/appointments/{appointment_id}/confirm")
    assert accepted.status_code == 200
    assert accepted.json()["status"] == "confirmed"
    assert accepted.json()["payment_status"] == "paid"


def test_tier_upgrade_integration(client, make_user, sign):
    user = make_user()
    act_as(user.id)

    initiated = client.post(
        "/payments/initiate",
        json={"purchasable_kind": "tier_upgrade", "purchasable_id": user.id},
    )
    assert initiated.status_code == 200
    assert initiated.json()["amount"] == 99900
    remote_order_id = initiated.json()["remote_order_id"]

    client.post("/payments/confirm", json={
        "purchasable_kind": "tier_upgrade",
        "purchasable_id": user.id,
        "remote_order_id": remote_order_id,
        "remote_payment_id": "pay_up_1",
        "signature": sign(remote_order_id, "pay_up_1"),
    })

    db = TestingSessionLocal()
    assert db.get(User, user.id).account_type == "pro"
    db.close()

    again = client.post(
        "/payments/initiate",
        json={"purchasable_kind": "tier_upgrade", "purchasable_id": user.id},
    )
    assert again.status_code == 409
    assert again.json()["code"] == "already_paid"


def test_initiate_database_integrity_on_gateway_error(client, make_user, make_product, add_to_cart, razorpay):
    """If Razorpay fails, the order keeps no remote order id and nothing is logged as initiated."""
    user = make_user(address="12 MG Road, Pune", phone="9800000000")
    add_to_cart(user, make_product("250"))
    act_as(user.id)
    order_id = client.post("/cart/checkout", json={}).json()["id"]
    razorpay.outage = "error"

    response = client.post(
        "/payments/initiate",
        json={"purchasable_kind": "product_order", "purchasable_id": order_id},
    )

    assert response.status_code == 503
    db = TestingSessionLocal()
    order = db.get(Order, order_id)
    assert order.remote_order_id is None
    assert order.payment_status == "pending"
    assert db.query(PaymentEvent).count() == 0
    db.close()
