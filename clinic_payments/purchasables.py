"""Per-kind behaviour of everything that can be paid for.

The orchestrator never touches a record directly; it goes through the
handler registered for the purchase kind, so the state machine stays the
same for appointments, product orders and tier upgrades.
"""
import enum
import logging
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from clinic_payments.config import Settings
from clinic_payments.errors import AlreadyPaid, Forbidden, NotFound
from clinic_payments.models import (
    Appointment,
    CartItem,
    Order,
    PaymentStatus,
    User,
    utcnow,
)

logger = logging.getLogger(__name__)


class PurchaseKind(str, enum.Enum):
    APPOINTMENT = "appointment"
    PRODUCT_ORDER = "product_order"
    TIER_UPGRADE = "tier_upgrade"


@dataclass
class Purchasable:
    kind: PurchaseKind
    id: str
    owner_id: str
    record: Any


class PurchasableHandler:
    kind: PurchaseKind
    receipt_prefix: str
    label: str

    def load(self, db: Session, purchasable_id: str) -> Purchasable:
        raise NotImplementedError

    def due_amount(self, purchasable: Purchasable) -> Decimal:
        raise NotImplementedError

    def assert_ownership(self, purchasable: Purchasable, acting_user_id: str) -> None:
        if str(purchasable.owner_id) != str(acting_user_id):
            raise Forbidden()

    def assert_not_already_paid(self, purchasable: Purchasable) -> None:
        if self.payment_status(purchasable) == PaymentStatus.PAID.value:
            raise AlreadyPaid()

    def payment_status(self, purchasable: Purchasable) -> str:
        raise NotImplementedError

    def remote_order_id(self, purchasable: Purchasable) -> Optional[str]:
        raise NotImplementedError

    def remote_payment_id(self, purchasable: Purchasable) -> Optional[str]:
        raise NotImplementedError

    def attach_remote_order(self, db: Session, purchasable: Purchasable, remote_order_id: str) -> Purchasable:
        raise NotImplementedError

    def apply_paid(
        self, db: Session, purchasable: Purchasable, remote_payment_id: str, remote_signature: str
    ) -> bool:
        """Mark paid unless already paid. False means another confirmation won."""
        raise NotImplementedError

    def apply_failed(self, db: Session, purchasable: Purchasable) -> bool:
        """Mark failed unless already paid."""
        raise NotImplementedError

    def metadata(self, purchasable: Purchasable) -> dict[str, Any]:
        return {}


class EnvelopeHandler(PurchasableHandler):
    """Kinds whose record carries the payment envelope columns itself."""

    model: Any

    def load(self, db, purchasable_id):
        record = db.get(self.model, purchasable_id)
        if record is None:
            raise NotFound(f"{self.label} not found")
        return Purchasable(kind=self.kind, id=record.id, owner_id=record.user_id, record=record)

    def payment_status(self, purchasable):
        return purchasable.record.payment_status

    def remote_order_id(self, purchasable):
        return purchasable.record.remote_order_id

    def remote_payment_id(self, purchasable):
        return purchasable.record.remote_payment_id

    def attach_remote_order(self, db, purchasable, remote_order_id):
        record = purchasable.record
        record.remote_order_id = remote_order_id
        record.payment_status = PaymentStatus.PENDING.value
        db.commit()
        return purchasable

    def apply_paid(self, db, purchasable, remote_payment_id, remote_signature):
        return self._update_unless_paid(
            db,
            purchasable,
            remote_payment_id=remote_payment_id,
            remote_signature=remote_signature,
            payment_status=PaymentStatus.PAID.value,
        )

    def apply_failed(self, db, purchasable):
        return self._update_unless_paid(db, purchasable, payment_status=PaymentStatus.FAILED.value)

    def _update_unless_paid(self, db: Session, purchasable: Purchasable, **values) -> bool:
        # Conditional write: of two racing requests only one sees rowcount 1.
        result = db.execute(
            update(self.model)
            .where(
                self.model.id == purchasable.id,
                self.model.payment_status != PaymentStatus.PAID.value,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            return False
        db.commit()
        db.refresh(purchasable.record)
        return True


class AppointmentHandler(EnvelopeHandler):
    kind = PurchaseKind.APPOINTMENT
    receipt_prefix = "appt_"
    label = "Appointment"
    model = Appointment

    def due_amount(self, purchasable):
        return Decimal(purchasable.record.fee or 0)

    def metadata(self, purchasable):
        return {"doctorId": purchasable.record.doctor_id}

    # Paying never advances the appointment status; the doctor confirms separately.


class ProductOrderHandler(EnvelopeHandler):
    kind = PurchaseKind.PRODUCT_ORDER
    receipt_prefix = "ord_"
    label = "Order"
    model = Order

    def due_amount(self, purchasable):
        return Decimal(purchasable.record.total or 0)

    def apply_paid(self, db, purchasable, remote_payment_id, remote_signature):
        if not super().apply_paid(db, purchasable, remote_payment_id, remote_signature):
            return False
        self._clear_cart(db, purchasable.owner_id)
        return True

    def _clear_cart(self, db: Session, user_id: str) -> None:
        # Payment is already committed; a failure here must not undo it.
        try:
            db.query(CartItem).filter(CartItem.user_id == user_id).delete(synchronize_session=False)
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("Could not clear cart for user %s after order payment", user_id)


class TierUpgradeHandler(PurchasableHandler):
    """Upgrade to the pro tier; the purchasable id is the user id."""

    kind = PurchaseKind.TIER_UPGRADE
    receipt_prefix = "upg_"
    label = "User"

    def __init__(self, price: Decimal, days: int):
        self.price = Decimal(price)
        self.days = days

    def load(self, db, purchasable_id):
        user = db.get(User, purchasable_id)
        if user is None:
            raise NotFound("User not found")
        return Purchasable(kind=self.kind, id=user.id, owner_id=user.id, record=user)

    def due_amount(self, purchasable):
        return self.price

    def assert_not_already_paid(self, purchasable):
        user = purchasable.record
        if user.account_type == "pro" and (
            user.pro_expires_at is None or user.pro_expires_at > utcnow()
        ):
            raise AlreadyPaid("Already a Pro user")

    def payment_status(self, purchasable):
        return purchasable.record.upgrade_payment_status or PaymentStatus.PENDING.value

    def remote_order_id(self, purchasable):
        return purchasable.record.upgrade_order_id

    def remote_payment_id(self, purchasable):
        return purchasable.record.upgrade_payment_id

    def attach_remote_order(self, db, purchasable, remote_order_id):
        user = purchasable.record
        user.upgrade_order_id = remote_order_id
        user.upgrade_payment_id = None
        user.upgrade_signature = None
        user.upgrade_payment_status = PaymentStatus.PENDING.value
        db.commit()
        return purchasable

    def apply_paid(self, db, purchasable, remote_payment_id, remote_signature):
        return self._update_unless_paid(
            db,
            purchasable,
            account_type="pro",
            pro_expires_at=utcnow() + timedelta(days=self.days),
            upgrade_payment_id=remote_payment_id,
            upgrade_signature=remote_signature,
            upgrade_payment_status=PaymentStatus.PAID.value,
        )

    def apply_failed(self, db, purchasable):
        return self._update_unless_paid(
            db, purchasable, upgrade_payment_status=PaymentStatus.FAILED.value
        )

    def _update_unless_paid(self, db: Session, purchasable: Purchasable, **values) -> bool:
        result = db.execute(
            update(User)
            .where(
                User.id == purchasable.id,
                or_(
                    User.upgrade_payment_status.is_(None),
                    User.upgrade_payment_status != PaymentStatus.PAID.value,
                ),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            return False
        db.commit()
        db.refresh(purchasable.record)
        return True

    def metadata(self, purchasable):
        return {"from": purchasable.record.account_type, "to": "pro"}


class PurchasableRegistry:
    def __init__(self, settings: Settings):
        self._handlers: dict[PurchaseKind, PurchasableHandler] = {
            PurchaseKind.APPOINTMENT: AppointmentHandler(),
            PurchaseKind.PRODUCT_ORDER: ProductOrderHandler(),
            PurchaseKind.TIER_UPGRADE: TierUpgradeHandler(
                settings.pro_tier_price, settings.pro_tier_days
            ),
        }

    def handler_for(self, kind) -> PurchasableHandler:
        try:
            return self._handlers[PurchaseKind(kind)]
        except (KeyError, ValueError):
            raise NotFound(f"Unknown purchase kind: {kind}") from None
