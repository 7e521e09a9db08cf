"""
Payment gateway adapter.

Amounts cross this boundary as Decimal GHS and are converted to pesewas for
the provider. Every provider failure surfaces as ExternalServiceFailure; the
caller decides whether local state may change.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional
import asyncio
import hashlib
import hmac
import logging

import httpx

from app.core.config import settings
from app.core.exceptions import ExternalServiceFailure

logger = logging.getLogger(__name__)


def to_pesewas(amount_ghs: Decimal) -> int:
    """GHS -> pesewas (minor unit)"""
    return int((Decimal(amount_ghs) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_pesewas(amount: int) -> Decimal:
    return (Decimal(amount) / 100).quantize(Decimal("0.01"))


@dataclass
class CheckoutSession:
    authorization_url: str
    reference: str


# Charge statuses that will never turn into a payment. Anything else short of
# "success" (ongoing, pending, processing, send_otp, ...) is still in progress,
# e.g. a mobile money prompt waiting on the buyer's phone.
FAILED_CHARGE_STATUSES = frozenset({"failed", "abandoned", "reversed"})

# Transfer statuses meaning the money has left (or is leaving) the balance
SENT_TRANSFER_STATUSES = frozenset({"success", "pending", "processing", "otp", "received"})


@dataclass
class VerificationResult:
    reference: str
    successful: bool
    amount_ghs: Decimal
    gateway_status: str

    @property
    def failed(self) -> bool:
        return not self.successful and self.gateway_status in FAILED_CHARGE_STATUSES


class PaymentGateway(ABC):
    """Interface the escrow services depend on"""

    @abstractmethod
    async def initialize_payment(
        self,
        email: str,
        amount_ghs: Decimal,
        reference: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> CheckoutSession:
        ...

    @abstractmethod
    async def verify_payment(self, reference: str) -> VerificationResult:
        ...

    @abstractmethod
    async def refund_payment(self, funding_reference: str, amount_ghs: Decimal) -> str:
        ...

    @abstractmethod
    async def payout(self, name: str, phone: str, amount_ghs: Decimal, reference: str, reason: str) -> str:
        """Send ``amount_ghs`` to the seller; a repeated ``reference`` pays once"""

    @abstractmethod
    def verify_webhook_signature(self, body: bytes, signature: Optional[str]) -> bool:
        ...


class PaystackGateway(PaymentGateway):
    """Paystack REST API (https://paystack.com/docs/api)"""

    def __init__(
        self,
        secret_key: str = None,
        base_url: str = None,
        timeout: float = None,
        max_retries: int = None,
        transport: httpx.AsyncBaseTransport = None,
    ):
        self.secret_key = secret_key if secret_key is not None else settings.PAYSTACK_SECRET_KEY
        self.base_url = (base_url or settings.PAYSTACK_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.PAYMENT_GATEWAY_TIMEOUT_SECONDS
        self.max_retries = max(1, max_retries or settings.PAYMENT_GATEWAY_MAX_RETRIES)
        self._transport = transport

    async def _request(
        self,
        method: str,
        path: str,
        payload: Dict[str, Any] = None,
        missing_ok: bool = False,
    ) -> Optional[Dict[str, Any]]:
        """
        Call Paystack and return the ``data`` member of its response.
        With ``missing_ok`` a not-found lookup returns None instead of raising.
        """
        if not self.secret_key:
            raise ExternalServiceFailure("Payment gateway not configured")

        headers = {"Authorization": f"Bearer {self.secret_key}"}
        last_error = None
        async with httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout, transport=self._transport
        ) as client:
            for attempt in range(1, self.max_retries + 1):
                try:
                    response = await client.request(method, path, json=payload, headers=headers)
                    if missing_ok and response.status_code in (400, 404):
                        return None
                    if response.status_code >= 500:
                        last_error = f"HTTP {response.status_code}"
                        logger.warning(f"Paystack {method} {path} attempt {attempt} failed: {last_error}")
                    else:
                        response.raise_for_status()
                        body = response.json()
                        if not body.get("status"):
                            raise ExternalServiceFailure(body.get("message") or "Payment gateway rejected the request")
                        return body.get("data") or {}
                except httpx.TransportError as e:
                    last_error = str(e) or e.__class__.__name__
                    logger.warning(f"Paystack {method} {path} attempt {attempt} failed: {last_error}")
                except httpx.HTTPStatusError as e:
                    logger.error(f"Paystack {method} {path} rejected: {e.response.status_code} {e.response.text}")
                    raise ExternalServiceFailure(f"Payment gateway error: HTTP {e.response.status_code}")

                if attempt < self.max_retries:
                    await asyncio.sleep(0.2 * attempt)

        raise ExternalServiceFailure(f"Payment gateway unavailable: {last_error}")

    async def initialize_payment(self, email, amount_ghs, reference, metadata=None) -> CheckoutSession:
        data = await self._request("POST", "/transaction/initialize", {
            "email": email,
            "amount": to_pesewas(amount_ghs),
            "currency": "GHS",
            "reference": reference,
            "callback_url": settings.PAYSTACK_CALLBACK_URL,
            "metadata": metadata or {},
        })
        return CheckoutSession(authorization_url=data["authorization_url"], reference=data.get("reference", reference))

    async def verify_payment(self, reference: str) -> VerificationResult:
        data = await self._request("GET", f"/transaction/verify/{reference}")
        return VerificationResult(
            reference=data.get("reference", reference),
            successful=data.get("status") == "success",
            amount_ghs=from_pesewas(int(data.get("amount", 0))),
            gateway_status=data.get("status", "unknown"),
        )

    async def refund_payment(self, funding_reference: str, amount_ghs: Decimal) -> str:
        data = await self._request("POST", "/refund", {
            "transaction": funding_reference,
            "amount": to_pesewas(amount_ghs),
        })
        return str(data.get("id", funding_reference))

    async def find_transfer(self, reference: str) -> Optional[Dict[str, Any]]:
        return await self._request("GET", f"/transfer/verify/{reference}", missing_ok=True)

    async def payout(self, name, phone, amount_ghs, reference, reason) -> str:
        # A transfer sent earlier whose local commit was lost
        existing = await self.find_transfer(reference)
        if existing:
            transfer_status = existing.get("status")
            if transfer_status in SENT_TRANSFER_STATUSES:
                logger.warning(f"Transfer {reference} already {transfer_status} at Paystack; not sending again")
                return existing.get("transfer_code", reference)
            raise ExternalServiceFailure(
                f"Earlier transfer {reference} is {transfer_status}; payout needs manual review"
            )

        recipient = await self._request("POST", "/transferrecipient", {
            "type": "mobile_money",
            "name": name,
            "account_number": phone,
            "bank_code": "MTN",
            "currency": "GHS",
        })
        data = await self._request("POST", "/transfer", {
            "source": "balance",
            "amount": to_pesewas(amount_ghs),
            "recipient": recipient["recipient_code"],
            "reference": reference,
            "reason": reason,
        })
        return data.get("transfer_code", reference)

    def verify_webhook_signature(self, body: bytes, signature: Optional[str]) -> bool:
        if not signature or not self.secret_key:
            return False
        expected = hmac.new(self.secret_key.encode(), body, hashlib.sha512).hexdigest()
        return hmac.compare_digest(expected, signature)


def get_payment_gateway() -> PaymentGateway:
    """FastAPI dependency; overridden in tests"""
    return PaystackGateway()
