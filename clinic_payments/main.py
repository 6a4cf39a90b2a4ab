import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from clinic_payments import models  # noqa: F401  registers tables
from clinic_payments.config import get_settings
from clinic_payments.database import Base, engine
from clinic_payments.errors import PaymentError
from clinic_payments.gateway import RazorpayGateway
from clinic_payments.routes import router

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Clinic Payments Service")

# Missing gateway credentials stop the process here rather than per request.
app.state.gateway = RazorpayGateway.from_settings(settings)
logger.info("Razorpay gateway configured for key %s", settings.razorpay_key_id)

app.include_router(router)

Base.metadata.create_all(bind=engine)


@app.exception_handler(PaymentError)
async def payment_error_handler(request: Request, exc: PaymentError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code, "retryable": exc.retryable},
    )
