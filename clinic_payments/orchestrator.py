"""Payment state machine shared by every purchase kind.

    no remote order -> remote order created (pending) -> paid (terminal)
                                                      -> failed (re-initiable)

Every call re-reads the purchasable; there is no locking. The paid and
failed writes are conditional on the row not being paid yet, so of two
racing confirmations only one records a paid event, and concurrent
initiations simply leave the last minted remote order as the confirmable one.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from clinic_payments.config import Settings
from clinic_payments.errors import (
    AlreadyPaid,
    InvalidAmount,
    InvalidSignature,
    NotFound,
    OrderMismatch,
)
from clinic_payments.gateway import RazorpayGateway, RemotePaymentDetails, make_receipt
from clinic_payments.models import PaymentEvent, PaymentStatus
from clinic_payments.purchasables import Purchasable, PurchasableRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Initiation:
    remote_order_id: str
    amount: int
    currency: str
    key_id: str


@dataclass(frozen=True)
class Outcome:
    purchasable: Purchasable
    status: str


class PaymentOrchestrator:
    def __init__(
        self,
        db: Session,
        gateway: RazorpayGateway,
        registry: PurchasableRegistry,
        settings: Settings,
    ):
        self.db = db
        self.gateway = gateway
        self.registry = registry
        self.settings = settings

    def initiate(self, acting_user_id: str, purchasable_id: str, kind) -> Initiation:
        handler = self.registry.handler_for(kind)
        purchasable = handler.load(self.db, purchasable_id)
        handler.assert_ownership(purchasable, acting_user_id)
        handler.assert_not_already_paid(purchasable)

        amount = handler.due_amount(purchasable)
        if amount <= 0:
            raise InvalidAmount(f"Invalid {handler.label.lower()} amount")

        metadata = {
            "purchasableId": purchasable.id,
            "actingUserId": acting_user_id,
            "kind": purchasable.kind.value,
            **handler.metadata(purchasable),
        }
        # Nothing is written before the gateway answers, so a timeout here is safely retryable.
        remote_order = self.gateway.create_remote_order(
            amount,
            self.settings.currency,
            make_receipt(handler.receipt_prefix),
            metadata,
        )

        self._record(purchasable, "initiated", remote_order_id=remote_order.id, amount=remote_order.amount)
        handler.attach_remote_order(self.db, purchasable, remote_order.id)
        logger.info(
            "Initiated %s %s with remote order %s (%s %s)",
            purchasable.kind.value, purchasable.id, remote_order.id,
            remote_order.amount, remote_order.currency,
        )

        return Initiation(
            remote_order_id=remote_order.id,
            amount=remote_order.amount,
            currency=remote_order.currency,
            key_id=self.gateway.key_id,
        )

    def confirm(
        self,
        acting_user_id: str,
        purchasable_id: str,
        kind,
        remote_order_id: str,
        remote_payment_id: str,
        signature: str,
    ) -> Outcome:
        handler = self.registry.handler_for(kind)
        purchasable = handler.load(self.db, purchasable_id)
        handler.assert_ownership(purchasable, acting_user_id)

        stored_order_id = handler.remote_order_id(purchasable)
        if not stored_order_id or stored_order_id != remote_order_id:
            logger.warning(
                "Rejected confirmation for %s %s: remote order id does not match",
                purchasable.kind.value, purchasable.id,
            )
            raise OrderMismatch("remote order id mismatch")

        if not self.gateway.verify_signature(remote_order_id, remote_payment_id, signature):
            logger.warning(
                "Rejected confirmation for %s %s: signature check failed",
                purchasable.kind.value, purchasable.id,
            )
            raise InvalidSignature("signature mismatch")

        if handler.payment_status(purchasable) == PaymentStatus.PAID.value:
            return self._repeated_confirmation(handler, purchasable, remote_payment_id)

        self._record(
            purchasable, "paid",
            remote_order_id=remote_order_id, remote_payment_id=remote_payment_id,
        )
        if not handler.apply_paid(self.db, purchasable, remote_payment_id, signature):
            # A concurrent confirmation was written first; its event stands alone.
            purchasable = handler.load(self.db, purchasable_id)
            return self._repeated_confirmation(handler, purchasable, remote_payment_id)
        logger.info(
            "Confirmed %s %s paid with %s", purchasable.kind.value, purchasable.id, remote_payment_id
        )
        return Outcome(purchasable, PaymentStatus.PAID.value)

    def fail(self, acting_user_id: str, purchasable_id: str, kind, reason: Optional[str] = None) -> Outcome:
        handler = self.registry.handler_for(kind)
        purchasable = handler.load(self.db, purchasable_id)
        handler.assert_ownership(purchasable, acting_user_id)

        if handler.payment_status(purchasable) == PaymentStatus.PAID.value:
            logger.info(
                "Ignoring failure report for paid %s %s", purchasable.kind.value, purchasable.id
            )
            return Outcome(purchasable, PaymentStatus.PAID.value)

        self._record(
            purchasable, "failed",
            remote_order_id=handler.remote_order_id(purchasable), reason=reason,
        )
        if not handler.apply_failed(self.db, purchasable):
            logger.info(
                "Ignoring failure report for %s %s paid meanwhile", purchasable.kind.value, purchasable.id
            )
            return Outcome(handler.load(self.db, purchasable_id), PaymentStatus.PAID.value)
        logger.warning(
            "Payment failed for %s %s: %s", purchasable.kind.value, purchasable.id, reason
        )
        return Outcome(purchasable, PaymentStatus.FAILED.value)

    def reconcile(self, acting_user_id: str, purchasable_id: str, kind) -> RemotePaymentDetails:
        handler = self.registry.handler_for(kind)
        purchasable = handler.load(self.db, purchasable_id)
        handler.assert_ownership(purchasable, acting_user_id)

        remote_payment_id = handler.remote_payment_id(purchasable)
        if not remote_payment_id:
            raise NotFound("No payment recorded")
        return self.gateway.fetch_remote_payment(remote_payment_id)

    def _repeated_confirmation(self, handler, purchasable: Purchasable, remote_payment_id: str) -> Outcome:
        if handler.remote_payment_id(purchasable) != remote_payment_id:
            logger.warning(
                "Rejected confirmation for paid %s %s with a different payment id",
                purchasable.kind.value, purchasable.id,
            )
            raise AlreadyPaid()
        logger.info("Repeated confirmation for %s %s ignored", purchasable.kind.value, purchasable.id)
        return Outcome(purchasable, PaymentStatus.PAID.value)

    def _record(self, purchasable: Purchasable, event: str, **fields) -> None:
        # Flushed by the handler's commit together with the state change.
        self.db.add(
            PaymentEvent(
                kind=purchasable.kind.value,
                purchasable_id=purchasable.id,
                user_id=purchasable.owner_id,
                event=event,
                **fields,
            )
        )
