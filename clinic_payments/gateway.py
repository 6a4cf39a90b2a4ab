"""Razorpay adapter: order creation, payment lookup and signature checks."""
import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

import httpx

from clinic_payments.config import Settings
from clinic_payments.errors import GatewayUnavailable

logger = logging.getLogger(__name__)

RECEIPT_MAX_LENGTH = 40


@dataclass(frozen=True)
class RemoteOrder:
    id: str
    amount: int          # minor units, handed to the checkout widget unchanged
    currency: str


@dataclass(frozen=True)
class RemotePaymentDetails:
    id: str
    order_id: Optional[str]
    amount: int
    currency: str
    status: str
    method: Optional[str] = None


def to_minor_units(amount) -> int:
    """Rupees to paise (x100), rounded half-up."""
    value = Decimal(str(amount)) * 100
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def make_receipt(prefix: str) -> str:
    return f"{prefix}{int(time.time() * 1000)}"[:RECEIPT_MAX_LENGTH]


class RazorpayGateway:
    def __init__(
        self,
        key_id: str,
        key_secret: str,
        *,
        base_url: str = "https://api.razorpay.com/v1",
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        if not key_id or not key_secret:
            raise GatewayUnavailable(
                "Razorpay is not configured. Set RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET"
            )
        self.key_id = key_id
        self._key_secret = key_secret
        self._client = httpx.Client(
            base_url=base_url,
            auth=(key_id, key_secret),
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings, transport: Optional[httpx.BaseTransport] = None):
        return cls(
            settings.razorpay_key_id,
            settings.razorpay_key_secret,
            base_url=settings.razorpay_base_url,
            timeout=settings.gateway_timeout_seconds,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def create_remote_order(
        self, amount, currency: str, receipt: str, metadata: dict[str, Any]
    ) -> RemoteOrder:
        payload = {
            "amount": to_minor_units(amount),
            "currency": currency,
            "receipt": receipt[:RECEIPT_MAX_LENGTH],
            "notes": {key: str(value) for key, value in metadata.items()},
        }
        data = self._request("POST", "/orders", json=payload)
        try:
            return RemoteOrder(id=data["id"], amount=int(data["amount"]), currency=data["currency"])
        except (KeyError, TypeError, ValueError) as exc:
            logger.error("Razorpay order response is malformed")
            raise GatewayUnavailable() from exc

    def fetch_remote_payment(self, remote_payment_id: str) -> RemotePaymentDetails:
        data = self._request("GET", f"/payments/{remote_payment_id}")
        try:
            return RemotePaymentDetails(
                id=data["id"],
                order_id=data.get("order_id"),
                amount=int(data["amount"]),
                currency=data["currency"],
                status=data["status"],
                method=data.get("method"),
            )
        except (AttributeError, KeyError, TypeError, ValueError) as exc:  # .get on a non-dict body
            logger.error("Razorpay payment %s response is malformed", remote_payment_id)
            raise GatewayUnavailable() from exc

    def verify_signature(self, remote_order_id: str, remote_payment_id: str, signature: str) -> bool:
        if not self._key_secret:
            # Unconfigured secret is a failed check, never a skipped one.
            logger.error("Signature verification attempted without a key secret")
            return False
        if not signature:
            return False
        # surrogatepass: lone surrogates in client input must compare unequal, not raise.
        expected = hmac.new(
            self._key_secret.encode("utf-8"),
            f"{remote_order_id}|{remote_payment_id}".encode("utf-8", "surrogatepass"),
            hashlib.sha256,
        ).hexdigest()
        return hmac.compare_digest(
            expected.encode("ascii"), signature.encode("utf-8", "surrogatepass")
        )

    def _request(self, method: str, url: str, **kwargs) -> dict[str, Any]:
        try:
            response = self._client.request(method, url, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.TimeoutException as exc:
            logger.error("Razorpay %s %s timed out", method, url)
            raise GatewayUnavailable("Payment gateway timed out") from exc
        except httpx.HTTPStatusError as exc:
            logger.error(
                "Razorpay %s %s returned %s", method, url, exc.response.status_code
            )
            raise GatewayUnavailable() from exc
        except httpx.HTTPError as exc:
            logger.error("Razorpay %s %s failed: %s", method, url, exc)
            raise GatewayUnavailable() from exc
        except ValueError as exc:
            logger.error("Razorpay %s %s returned a non-JSON body", method, url)
            raise GatewayUnavailable() from exc
