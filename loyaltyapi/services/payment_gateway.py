import logging
from abc import ABC, abstractmethod
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional

import httpx

from loyaltyapi.config import Settings
from loyaltyapi.core.exceptions import ExternalServiceError, PaymentFailedError
from loyaltyapi.schemas.payments import ChargeResult, MerchantPayoutProfile

logger = logging.getLogger(__name__)


class PaymentGateway(ABC):
    """결제 대행사 인터페이스"""

    @abstractmethod
    def charge(
        self,
        payout: MerchantPayoutProfile,
        amount: Decimal,
        currency: str,
        idempotency_key: Optional[str] = None,
        description: Optional[str] = None,
    ) -> ChargeResult:
        """
        가맹점 결제 수단으로 청구

        Raises:
            PaymentFailedError: 결제 대행사가 청구를 거절한 경우
            ExternalServiceError: 결제 대행사에 연결할 수 없는 경우
        """

    @abstractmethod
    def refund(self, confirmation_id: str, reason: Optional[str] = None) -> str:
        """청구 취소(환불). 환불 ID 반환"""


def to_minor_units(amount: Decimal) -> int:
    """달러 금액을 센트 정수로 변환"""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class StripePaymentGateway(PaymentGateway):
    """Stripe PaymentIntents API 를 이용한 오프세션 청구"""

    _PAYMENT_INTENTS_PATH = "/v1/payment_intents"
    _REFUNDS_PATH = "/v1/refunds"

    def __init__(self, settings: Settings, transport: Optional[httpx.BaseTransport] = None):
        self._base_url = settings.STRIPE_API_BASE_URL.rstrip("/")
        self._secret_key = settings.STRIPE_SECRET_KEY
        self._timeout = httpx.Timeout(settings.PAYMENT_TIMEOUT_SECONDS, connect=5.0)
        self._transport = transport

    def _post(
        self, path: str, data: Dict[str, Any], idempotency_key: Optional[str] = None
    ) -> Dict[str, Any]:
        if not self._secret_key:
            raise ExternalServiceError("Payment processor is not configured")

        headers = {}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key

        try:
            with httpx.Client(
                base_url=self._base_url,
                timeout=self._timeout,
                auth=(self._secret_key, ""),
                transport=self._transport,
            ) as client:
                response = client.post(path, data=data, headers=headers)
        except httpx.TimeoutException as exc:
            logger.error(f"Payment processor timeout on {path}")
            raise ExternalServiceError("Payment processor timeout") from exc
        except httpx.RequestError as exc:
            logger.warning(f"Payment processor request error on {path}: {exc}")
            raise ExternalServiceError("Payment processor unavailable") from exc

        if response.status_code == 429 or response.status_code >= 500:
            raise ExternalServiceError(
                f"Payment processor unavailable (HTTP {response.status_code})"
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise ExternalServiceError("Invalid response from payment processor") from exc

        if response.status_code >= 400:
            error = payload.get("error") or {}
            message = error.get("message") or f"HTTP {response.status_code}"
            raise PaymentFailedError(
                message,
                details={"code": error.get("code"), "decline_code": error.get("decline_code")},
            )
        return payload

    def charge(
        self,
        payout: MerchantPayoutProfile,
        amount: Decimal,
        currency: str,
        idempotency_key: Optional[str] = None,
        description: Optional[str] = None,
    ) -> ChargeResult:
        data = {
            "amount": to_minor_units(amount),
            "currency": currency,
            "payment_method": payout.payment_method_id,
            "confirm": "true",
            "off_session": "true",
        }
        if payout.stripe_customer_id:
            data["customer"] = payout.stripe_customer_id
        if description:
            data["description"] = description

        payload = self._post(self._PAYMENT_INTENTS_PATH, data, idempotency_key)

        status = payload.get("status")
        if status != "succeeded":
            raise PaymentFailedError(
                f"Payment not completed (status: {status})",
                details={"payment_intent": payload.get("id")},
            )

        logger.info(
            f"Charged merchant {payout.restaurant_id} {amount} {currency}: {payload.get('id')}"
        )
        return ChargeResult(
            confirmation_id=payload["id"],
            amount=amount,
            currency=currency,
            status=status,
        )

    def refund(self, confirmation_id: str, reason: Optional[str] = None) -> str:
        data = {"payment_intent": confirmation_id}
        if reason:
            data["metadata[reason]"] = reason[:500]
        payload = self._post(
            self._REFUNDS_PATH, data, idempotency_key=f"refund_{confirmation_id}"
        )
        logger.info(f"Refunded payment {confirmation_id}: {payload.get('id')}")
        return payload["id"]
