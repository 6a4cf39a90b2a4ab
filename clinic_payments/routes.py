from datetime import datetime
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from clinic_payments.appointments import confirm_appointment, request_appointment
from clinic_payments.auth import verify_token
from clinic_payments.checkout import CheckoutAssembler
from clinic_payments.config import get_settings
from clinic_payments.database import SessionLocal
from clinic_payments.gateway import RazorpayGateway
from clinic_payments.orchestrator import PaymentOrchestrator
from clinic_payments.purchasables import PurchasableRegistry, PurchaseKind

router = APIRouter()


class InitiateRequest(BaseModel):
    purchasable_kind: PurchaseKind
    purchasable_id: str


class ConfirmRequest(BaseModel):
    purchasable_kind: PurchaseKind
    purchasable_id: str
    remote_order_id: str
    remote_payment_id: str
    signature: str


class FailRequest(BaseModel):
    purchasable_kind: PurchaseKind
    purchasable_id: str
    reason: Optional[str] = None


class CheckoutRequest(BaseModel):
    address: Optional[str] = None
    phone: Optional[str] = None


class AppointmentRequest(BaseModel):
    doctor_id: str
    scheduled_at: datetime
    mode: str = Field(default="online", pattern="^(online|offline)$")
    notes: Optional[str] = None


def get_gateway(request: Request) -> RazorpayGateway:
    return request.app.state.gateway


def get_registry() -> PurchasableRegistry:
    return PurchasableRegistry(get_settings())


def _appointment_out(appointment) -> dict:
    return {
        "id": appointment.id,
        "doctor_id": appointment.doctor_id,
        "scheduled_at": appointment.scheduled_at.isoformat(),
        "mode": appointment.mode,
        "fee": str(Decimal(appointment.fee)),
        "status": appointment.status,
        "payment_status": appointment.payment_status,
    }


@router.get("/payments/key")
def gateway_key(gateway: RazorpayGateway = Depends(get_gateway)):
    return {"key_id": gateway.key_id}


@router.post("/payments/initiate")
def initiate_payment(
    request: InitiateRequest,
    user_id: str = Depends(verify_token),
    gateway: RazorpayGateway = Depends(get_gateway),
    registry: PurchasableRegistry = Depends(get_registry),
):
    db = SessionLocal()
    try:
        orchestrator = PaymentOrchestrator(db, gateway, registry, get_settings())
        initiation = orchestrator.initiate(user_id, request.purchasable_id, request.purchasable_kind)
    finally:
        db.close()

    return {
        "remote_order_id": initiation.remote_order_id,
        "amount": initiation.amount,
        "currency": initiation.currency,
        "key_id": initiation.key_id,
    }


@router.post("/payments/confirm")
def confirm_payment(
    request: ConfirmRequest,
    user_id: str = Depends(verify_token),
    gateway: RazorpayGateway = Depends(get_gateway),
    registry: PurchasableRegistry = Depends(get_registry),
):
    db = SessionLocal()
    try:
        orchestrator = PaymentOrchestrator(db, gateway, registry, get_settings())
        outcome = orchestrator.confirm(
            user_id,
            request.purchasable_id,
            request.purchasable_kind,
            request.remote_order_id,
            request.remote_payment_id,
            request.signature,
        )
    finally:
        db.close()

    return {
        "status": outcome.status,
        "purchasable_kind": request.purchasable_kind.value,
        "purchasable_id": request.purchasable_id,
    }


@router.post("/payments/fail")
def fail_payment(
    request: FailRequest,
    user_id: str = Depends(verify_token),
    gateway: RazorpayGateway = Depends(get_gateway),
    registry: PurchasableRegistry = Depends(get_registry),
):
    db = SessionLocal()
    try:
        orchestrator = PaymentOrchestrator(db, gateway, registry, get_settings())
        outcome = orchestrator.fail(
            user_id, request.purchasable_id, request.purchasable_kind, request.reason
        )
    finally:
        db.close()

    return {"status": outcome.status}


@router.get("/payments/{kind}/{purchasable_id}/remote")
def remote_payment(
    kind: PurchaseKind,
    purchasable_id: str,
    user_id: str = Depends(verify_token),
    gateway: RazorpayGateway = Depends(get_gateway),
    registry: PurchasableRegistry = Depends(get_registry),
):
    db = SessionLocal()
    try:
        orchestrator = PaymentOrchestrator(db, gateway, registry, get_settings())
        details = orchestrator.reconcile(user_id, purchasable_id, kind)
    finally:
        db.close()

    return {
        "id": details.id,
        "order_id": details.order_id,
        "amount": details.amount,
        "currency": details.currency,
        "status": details.status,
        "method": details.method,
    }


@router.post("/cart/checkout")
def checkout(request: CheckoutRequest, user_id: str = Depends(verify_token)):
    db = SessionLocal()
    try:
        order = CheckoutAssembler(db).checkout(user_id, request.address, request.phone)
        return {
            "id": order.id,
            "total": str(Decimal(order.total)),
            "payment_status": order.payment_status,
            "items": [
                {
                    "product_id": item.product_id,
                    "name": item.name,
                    "price": str(Decimal(item.price)),
                    "quantity": item.quantity,
                }
                for item in order.items
            ],
        }
    finally:
        db.close()


@router.post("/appointments")
def create_appointment(request: AppointmentRequest, user_id: str = Depends(verify_token)):
    db = SessionLocal()
    try:
        appointment = request_appointment(
            db, user_id, request.doctor_id, request.scheduled_at, request.mode, request.notes
        )
        return _appointment_out(appointment)
    finally:
        db.close()


@router.post("/appointments/{appointment_id}/confirm")
def doctor_confirm_appointment(appointment_id: str, doctor_id: str = Depends(verify_token)):
    db = SessionLocal()
    try:
        return _appointment_out(confirm_appointment(db, doctor_id, appointment_id))
    finally:
        db.close()
