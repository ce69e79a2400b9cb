"""Card-payment provider integration (Stripe PaymentIntents over HTTPS)."""
import logging
from typing import Dict, Optional

import requests

from .errors import ExternalServiceError

logger = logging.getLogger(__name__)


class StripeGateway:
    def __init__(self, secret_key: str, api_base: str = "https://api.stripe.com"):
        self.secret_key = (secret_key or "").strip()
        self.api_base = api_base.rstrip("/")

    def _headers(self) -> Dict[str, str]:
        if not self.secret_key:
            raise ExternalServiceError("Payment provider is not configured.")
        return {"Authorization": f"Bearer {self.secret_key}"}

    def _handle_response(self, response, action: str) -> Dict:
        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code >= 400:
            error_message = ""
            if isinstance(body, dict):
                error_message = (body.get("error") or {}).get("message", "")
            logger.error(
                "Stripe %s failed (%s): %s",
                action,
                response.status_code,
                error_message or response.text,
            )
            raise ExternalServiceError(
                f"Failed to {action}.", details=error_message or None
            )
        return body if isinstance(body, dict) else {}

    def create_intent(
        self, amount: int, currency: str, metadata: Optional[Dict[str, str]] = None
    ) -> Dict[str, object]:
        payload = {
            "amount": int(amount),
            "currency": currency,
            "payment_method_types[]": "card",
        }
        for key, value in (metadata or {}).items():
            if value is not None:
                payload[f"metadata[{key}]"] = str(value)

        try:
            response = requests.post(
                f"{self.api_base}/v1/payment_intents",
                data=payload,
                headers=self._headers(),
            )
        except requests.RequestException as exc:
            logger.error("Stripe create payment intent error: %s", exc)
            raise ExternalServiceError("Failed to reach the payment provider.")

        intent = self._handle_response(response, "create payment intent")
        return {
            "id": intent.get("id"),
            "client_secret": intent.get("client_secret"),
            "amount": intent.get("amount", amount),
            "currency": intent.get("currency", currency),
            "status": intent.get("status"),
        }

    def retrieve_intent(self, intent_id: str) -> Dict[str, object]:
        try:
            response = requests.get(
                f"{self.api_base}/v1/payment_intents/{intent_id}",
                headers=self._headers(),
            )
        except requests.RequestException as exc:
            logger.error("Stripe retrieve payment intent error: %s", exc)
            raise ExternalServiceError("Failed to reach the payment provider.")

        intent = self._handle_response(response, "retrieve payment intent")
        return {
            "id": intent.get("id"),
            "amount": intent.get("amount"),
            "currency": intent.get("currency"),
            "status": intent.get("status"),
        }
