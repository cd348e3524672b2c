"""HTTP client for the external payment gateway.

Two calls matter to the booking flow: creating a charge intent for a
milestone, and turning a webhook body into a confirmation for the ledger.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Optional

import httpx

from ..core.config import settings
from ..utils.errors import GatewayUnavailableError, ValidationError
from ..utils.metrics import incr
from .payment_ledger import GatewayConfirmation

logger = logging.getLogger(__name__)


def _is_transient(resp: httpx.Response) -> bool:
    return resp.status_code == 429 or resp.status_code >= 500


class PaymentGateway:
    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        client: Optional[httpx.Client] = None,
        max_retries: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.base_url = (base_url or settings.PAYMENT_GATEWAY_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.PAYMENT_GATEWAY_API_KEY
        self.client = client or httpx.Client(timeout=settings.PAYMENT_GATEWAY_TIMEOUT_SECONDS)
        self.max_retries = max_retries if max_retries is not None else settings.PAYMENT_GATEWAY_MAX_RETRIES
        self.backoff_seconds = (
            backoff_seconds if backoff_seconds is not None else settings.PAYMENT_GATEWAY_BACKOFF_SECONDS
        )
        self._sleep = sleep

    def _headers(self, idempotency_key: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Idempotency-Key": idempotency_key,
        }

    def create_charge_intent(
        self,
        amount: Decimal,
        currency: str,
        idempotency_key: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> str:
        """Return the gateway's intent id for a charge.

        Transient failures (network errors, 429, 5xx) are retried with the
        same idempotency key and a linear backoff. Other HTTP errors are not
        retried.
        """
        payload = {
            "amount": str(amount),
            "currency": currency,
            "metadata": metadata or {},
        }
        last_error: Optional[str] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                resp = self.client.post(
                    f"{self.base_url}/charge-intents",
                    json=payload,
                    headers=self._headers(idempotency_key),
                )
            except httpx.TransportError as exc:
                last_error = str(exc)
            else:
                if not _is_transient(resp):
                    if resp.is_error:
                        logger.error(
                            "Gateway rejected charge intent key=%s status=%s",
                            idempotency_key,
                            resp.status_code,
                        )
                        raise GatewayUnavailableError(
                            "Payment gateway rejected the charge",
                            {"status": str(resp.status_code)},
                        )
                    intent_id = (resp.json() or {}).get("intent_id")
                    if not intent_id:
                        raise GatewayUnavailableError("Payment gateway returned no intent id")
                    incr("payments.gateway.intent_created_total")
                    return str(intent_id)
                last_error = f"HTTP {resp.status_code}"
            incr("payments.gateway.retry_total")
            logger.warning(
                "Gateway attempt %s/%s failed key=%s err=%s",
                attempt,
                self.max_retries,
                idempotency_key,
                last_error,
            )
            if attempt < self.max_retries:
                self._sleep(self.backoff_seconds * attempt)
        raise GatewayUnavailableError(
            "Payment gateway unavailable; flagged for manual review",
            {"idempotency_key": idempotency_key, "last_error": last_error or ""},
        )

    @staticmethod
    def confirm_webhook(payload: dict[str, Any]) -> GatewayConfirmation:
        """Parse a webhook body into a confirmation."""
        data = payload.get("data") if isinstance(payload.get("data"), dict) else payload
        transaction_id = str(data.get("transaction_id") or "").strip()
        if not transaction_id:
            raise ValidationError("Webhook is missing a transaction id", {"transaction_id": "required"})
        try:
            amount = Decimal(str(data.get("amount")))
        except (InvalidOperation, TypeError):
            raise ValidationError("Webhook amount is not a number", {"amount": str(data.get("amount"))})
        return GatewayConfirmation(
            transaction_id=transaction_id,
            intent_id=(str(data["intent_id"]) if data.get("intent_id") else None),
            status=str(data.get("status") or ""),
            amount=amount,
            currency=str(data.get("currency") or "").upper(),
        )


def sign_payload(raw: bytes, secret: str) -> str:
    return hmac.new(key=secret.encode("utf-8"), msg=raw, digestmod=hashlib.sha512).hexdigest()


def verify_signature(raw: bytes, signature: Optional[str], secret: Optional[str] = None) -> bool:
    """Check ``X-Gateway-Signature``. An empty secret disables verification."""
    secret = settings.PAYMENT_WEBHOOK_SECRET if secret is None else secret
    if not secret:
        return True
    if not signature:
        return False
    return hmac.compare_digest(sign_payload(raw, secret), signature)


_gateway: Optional[PaymentGateway] = None


def get_payment_gateway() -> PaymentGateway:
    """FastAPI dependency returning the process-wide gateway client."""
    global _gateway
    if _gateway is None:
        _gateway = PaymentGateway()
    return _gateway
