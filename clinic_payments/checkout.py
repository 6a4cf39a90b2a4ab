import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from clinic_payments.errors import EmptyCart, MissingDeliveryInfo, NotFound
from clinic_payments.models import Order, OrderItem, PaymentStatus, User

logger = logging.getLogger(__name__)


class CheckoutAssembler:
    """Turns a user's cart into a pending product order."""

    def __init__(self, db: Session):
        self.db = db

    def checkout(
        self, acting_user_id: str, address: Optional[str] = None, phone: Optional[str] = None
    ) -> Order:
        user = self.db.get(User, acting_user_id)
        if user is None:
            raise NotFound("User not found")

        cart = list(user.cart)
        if not cart:
            raise EmptyCart()

        address = address or user.address
        phone = phone or user.phone
        if not address or not phone:
            raise MissingDeliveryInfo()

        items = []
        total = Decimal("0")
        for entry in cart:
            product = entry.product
            quantity = entry.quantity or 1
            price = Decimal(product.price or 0)
            total += price * quantity
            # Snapshot name and price so later catalog edits can't touch this order.
            items.append(
                OrderItem(product_id=product.id, name=product.name, price=price, quantity=quantity)
            )

        order = Order(
            user_id=user.id,
            address=address,
            phone=phone,
            total=total,
            items=items,
            payment_status=PaymentStatus.PENDING.value,
        )
        self.db.add(order)

        user.cart.clear()
        user.address = address
        user.phone = phone
        self.db.commit()
        self.db.refresh(order)

        logger.info("Placed order %s for user %s, total %s", order.id, user.id, total)
        return order
