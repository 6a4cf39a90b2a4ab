import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship

from clinic_payments.database import Base


def utcnow() -> datetime:
    # Naive UTC, SQLite drops tzinfo on the way back anyway.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return uuid.uuid4().hex


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class PaymentEnvelope:
    """Gateway bookkeeping shared by every stored purchasable."""

    remote_order_id = Column(String, index=True)           # Razorpay order_...
    remote_payment_id = Column(String)                     # Razorpay pay_...
    remote_signature = Column(String)
    payment_status = Column(String, nullable=False, default=PaymentStatus.PENDING.value)


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True)
    phone = Column(String)
    address = Column(String)
    account_type = Column(String, nullable=False, default="free")   # free | pro
    pro_expires_at = Column(DateTime)

    # Envelope for the pending tier upgrade, if any
    upgrade_order_id = Column(String)
    upgrade_payment_id = Column(String)
    upgrade_signature = Column(String)
    upgrade_payment_status = Column(String)

    cart = relationship("CartItem", back_populates="user", cascade="all, delete-orphan")


class Doctor(Base):
    __tablename__ = "doctors"

    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    fee = Column(Numeric(10, 2), nullable=False, default=0)


class Product(Base):
    __tablename__ = "products"

    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    price = Column(Numeric(10, 2), nullable=False, default=0)


class CartItem(Base):
    __tablename__ = "cart_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    product_id = Column(String, ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)

    user = relationship("User", back_populates="cart")
    product = relationship("Product")


class Appointment(PaymentEnvelope, Base):
    __tablename__ = "appointments"

    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    doctor_id = Column(String, ForeignKey("doctors.id"), nullable=False, index=True)
    scheduled_at = Column(DateTime, nullable=False)
    mode = Column(String, nullable=False, default="online")        # online | offline
    fee = Column(Numeric(10, 2), nullable=False, default=0)
    status = Column(String, nullable=False, default="requested")   # requested | confirmed | cancelled
    notes = Column(Text)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class Order(PaymentEnvelope, Base):
    __tablename__ = "orders"

    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    address = Column(String, nullable=False)
    phone = Column(String, nullable=False)
    total = Column(Numeric(12, 2), nullable=False)
    status = Column(String, nullable=False, default="placed")   # placed | shipped | delivered | cancelled
    created_at = Column(DateTime, nullable=False, default=utcnow)

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")


class OrderItem(Base):
    """Line item frozen at checkout time."""

    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String, ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(String, ForeignKey("products.id"))
    name = Column(String, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    quantity = Column(Integer, nullable=False)

    order = relationship("Order", back_populates="items")


class PaymentEvent(Base):
    __tablename__ = "payment_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    kind = Column(String, nullable=False)
    purchasable_id = Column(String, nullable=False, index=True)
    user_id = Column(String, nullable=False)
    event = Column(String, nullable=False)                 # initiated | paid | failed
    remote_order_id = Column(String)
    remote_payment_id = Column(String)
    amount = Column(Integer)                               # minor units
    reason = Column(Text)
    created_at = Column(DateTime, nullable=False, default=utcnow)
