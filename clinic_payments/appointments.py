import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from clinic_payments.errors import Forbidden, NotFound, PaymentIncomplete
from clinic_payments.models import Appointment, Doctor, PaymentStatus, User

logger = logging.getLogger(__name__)


def request_appointment(
    db: Session,
    acting_user_id: str,
    doctor_id: str,
    scheduled_at: datetime,
    mode: str = "online",
    notes: Optional[str] = None,
) -> Appointment:
    doctor = db.get(Doctor, doctor_id)
    if doctor is None:
        raise NotFound("Doctor not found")
    if db.get(User, acting_user_id) is None:
        raise NotFound("Patient not found")

    appointment = Appointment(
        user_id=acting_user_id,
        doctor_id=doctor.id,
        scheduled_at=scheduled_at,
        mode=mode,
        fee=Decimal(doctor.fee or 0),
        notes=notes,
        payment_status=PaymentStatus.PENDING.value,
    )
    db.add(appointment)
    db.commit()
    db.refresh(appointment)
    return appointment


def confirm_appointment(db: Session, acting_doctor_id: str, appointment_id: str) -> Appointment:
    """Doctor accepts a booking. Only allowed once the patient has paid."""
    appointment = db.get(Appointment, appointment_id)
    if appointment is None:
        raise NotFound("Appointment not found")
    if str(appointment.doctor_id) != str(acting_doctor_id):
        raise Forbidden("Not allowed")
    if appointment.payment_status != PaymentStatus.PAID.value:
        raise PaymentIncomplete()

    appointment.status = "confirmed"
    db.commit()
    logger.info("Doctor %s confirmed appointment %s", acting_doctor_id, appointment_id)
    return appointment
