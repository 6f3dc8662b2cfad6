"""Razorpay payment gateway integration."""

import hashlib
import hmac
import logging
from dataclasses import dataclass
from datetime import datetime

import requests

from telemed_settlement.config import GATEWAY_TIMEOUT_SECONDS, RAZORPAY_API_URL, gateway_credentials
from telemed_settlement.errors import ConfigurationError, GatewayError

logger = logging.getLogger(__name__)


@dataclass
class GatewayOrder:
    order_id: str
    amount: int  # minor units
    currency: str
    receipt: str | None = None


@dataclass
class GatewayPayment:
    payment_id: str
    status: str
    amount_captured: float
    amount_refunded: float
    method: str | None = None
    captured_at: str | None = None
    captured: bool = False

    @property
    def is_captured(self) -> bool:
        return self.status == "captured" or self.captured

    @property
    def is_fully_refunded(self) -> bool:
        return self.amount_captured > 0 and self.amount_refunded >= self.amount_captured


@dataclass
class GatewayRefund:
    refund_id: str
    status: str
    amount: float
    created_at: str


def to_minor_units(amount: float) -> int:
    """Convert a currency amount to paise (rounded to 2 decimals first)."""
    return int(round(round(amount, 2) * 100))


def from_minor_units(amount_minor: int | None) -> float:
    return (amount_minor or 0) / 100


def _timestamp(epoch_seconds) -> str | None:
    if not epoch_seconds:
        return None
    return datetime.fromtimestamp(epoch_seconds).isoformat()


def expected_signature(order_id: str, payment_id: str, secret: str) -> str:
    """HMAC-SHA256 of "order_id|payment_id", hex encoded."""
    body = f"{order_id}|{payment_id}".encode()
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def signature_matches(order_id: str, payment_id: str, signature: str, secret: str) -> bool:
    """Constant-time comparison of a client-supplied checkout signature."""
    return hmac.compare_digest(expected_signature(order_id, payment_id, secret), signature or "")


class RazorpayGateway:
    """Thin client for the three gateway calls the settlement engine needs."""

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        api_url: str = RAZORPAY_API_URL,
        timeout: float = GATEWAY_TIMEOUT_SECONDS,
    ):
        self.key_id = key_id
        self.key_secret = key_secret
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout

    @classmethod
    def from_env(cls) -> "RazorpayGateway":
        """Build a gateway from RAZORPAY_KEY_ID / RAZORPAY_KEY_SECRET."""
        key_id, key_secret = gateway_credentials()
        if not key_id or not key_secret:
            raise ConfigurationError("Razorpay credentials missing")
        return cls(key_id, key_secret)

    def create_order(self, amount_minor: int, currency: str, receipt: str) -> GatewayOrder:
        data = self._request("POST", "/orders", {
            "amount": amount_minor,
            "currency": currency,
            "receipt": receipt,
        })
        return GatewayOrder(
            order_id=self._require_id(data, "POST /orders"),
            amount=data.get("amount", amount_minor),
            currency=data.get("currency", currency),
            receipt=data.get("receipt", receipt),
        )

    def fetch_payment(self, payment_id: str) -> GatewayPayment:
        data = self._request("GET", f"/payments/{payment_id}")
        return GatewayPayment(
            payment_id=data.get("id", payment_id),
            status=data.get("status", "unknown"),
            amount_captured=from_minor_units(data.get("amount")),
            amount_refunded=from_minor_units(data.get("amount_refunded")),
            method=data.get("method"),
            captured_at=_timestamp(data.get("created_at")),
            captured=bool(data.get("captured")),
        )

    def refund(self, payment_id: str, amount_minor: int, notes: dict | None = None) -> GatewayRefund:
        payload = {"amount": amount_minor, "speed": "normal"}
        if notes:
            # Gateway notes only accept flat string values
            payload["notes"] = {k: str(v) for k, v in notes.items()}
        data = self._request("POST", f"/payments/{payment_id}/refund", payload)
        return GatewayRefund(
            refund_id=self._require_id(data, f"POST /payments/{payment_id}/refund"),
            status=data.get("status", "processed"),
            amount=from_minor_units(data.get("amount", amount_minor)),
            created_at=_timestamp(data.get("created_at")) or datetime.now().isoformat(),
        )

    def _request(self, method: str, path: str, payload: dict | None = None) -> dict:
        url = f"{self.api_url}{path}"
        try:
            response = requests.request(
                method,
                url,
                json=payload,
                auth=(self.key_id, self.key_secret),
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout:
            raise GatewayError(f"Gateway request timed out: {method} {path}")
        except requests.exceptions.ConnectionError:
            raise GatewayError(f"Failed to connect to gateway: {method} {path}")
        except requests.exceptions.RequestException as e:
            raise GatewayError(f"Gateway request failed: {e}")

        if response.status_code == 401:
            raise ConfigurationError("Gateway rejected credentials")
        if response.status_code >= 400:
            raise GatewayError(
                f"Gateway error {response.status_code}: {self._error_description(response)}",
                status_code=response.status_code,
                path=path,
            )

        try:
            data = response.json()
        except ValueError:
            raise GatewayError(f"Unexpected gateway response format for {method} {path}")
        if not isinstance(data, dict):
            raise GatewayError(f"Unexpected gateway response format for {method} {path}")
        return data

    @staticmethod
    def _require_id(data: dict, call: str) -> str:
        entity_id = data.get("id")
        if not entity_id:
            logger.error("Gateway response to %s has no id: %s", call, data)
            raise GatewayError(f"Unexpected gateway response for {call}: missing id")
        return entity_id

    @staticmethod
    def _error_description(response) -> str:
        try:
            return response.json().get("error", {}).get("description") or response.text
        except ValueError:
            return response.text
