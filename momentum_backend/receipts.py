"""
App Store receipt verification.

Receipts are posted to Apple's verifyReceipt endpoint. A receipt sent to
the wrong environment is retried once against the other one (21007 means a
sandbox receipt hit production, 21008 the reverse). The response is reduced
to a simple entitlement: whether the latest subscription period is still
running, and which product it belongs to.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import requests

from momentum_backend.types import utcnow

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30  # seconds

PRODUCTION_URL = "https://buy.itunes.apple.com/verifyReceipt"
SANDBOX_URL = "https://sandbox.itunes.apple.com/verifyReceipt"

STATUS_OK = 0
STATUS_SANDBOX_RECEIPT_ON_PRODUCTION = 21007
STATUS_PRODUCTION_RECEIPT_ON_SANDBOX = 21008

STATUS_MESSAGES = {
    21000: "The request to the App Store was not made using the HTTP POST request method.",
    21001: "This status code is no longer sent by the App Store.",
    21002: "The data in the receipt-data property was malformed or the service experienced a temporary issue. Try again.",
    21003: "The receipt could not be authenticated.",
    21004: "The shared secret you provided does not match the shared secret on file for your account.",
    21005: "The receipt server was temporarily unable to provide the receipt. Try again.",
    21006: "This receipt is valid but the subscription has expired.",
    21007: "This receipt is from the test environment, but it was sent to the production environment for verification.",
    21008: "This receipt is from the production environment, but it was sent to the test environment for verification.",
    21009: "Internal data access error. Try again later.",
    21010: "The user account cannot be found or has been deleted.",
}
UNKNOWN_STATUS_MESSAGE = "The App Store returned an unknown status code."


class ReceiptConfigurationError(RuntimeError):
    """Raised when the shared secret is not configured."""


class ReceiptTransportError(RuntimeError):
    """Raised when the App Store endpoint cannot be reached or returns an HTTP error."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def describe_status(status: Optional[int]) -> Optional[str]:
    """Return the human-readable error for an App Store status, None for success."""
    if status is not None and status == STATUS_OK:
        return None
    return STATUS_MESSAGES.get(status, UNKNOWN_STATUS_MESSAGE)


@dataclass
class Entitlement:
    is_active: bool
    status: Optional[int] = None
    product_id: Optional[str] = None
    original_purchase_date: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    environment: Optional[str] = None
    error: Optional[str] = None

    def as_dict(self) -> dict:
        return {
            "isActive": self.is_active,
            "productId": self.product_id,
            "originalPurchaseDate": (
                self.original_purchase_date.isoformat()
                if self.original_purchase_date
                else None
            ),
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
            "environment": self.environment,
            "status": self.status,
            "error": self.error,
        }


def _ms(value) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _status(payload: dict) -> Optional[int]:
    # A missing or garbled status is never read as success.
    value = payload.get("status")
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _expires_ms(item: dict) -> int:
    return _ms(item.get("expires_date_ms") or item.get("expires_date"))


def _from_ms(value) -> Optional[datetime]:
    ms = _ms(value)
    if not ms:
        return None
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def map_entitlement(payload: dict, now: Optional[datetime] = None) -> Entitlement:
    """
    Reduce a verifyReceipt response to an entitlement.

    Only the transaction with the latest expiry counts, and it is active only
    while its expiry lies strictly in the future.
    """
    status = _status(payload)
    environment = payload.get("environment")
    error = describe_status(status)
    if error:
        return Entitlement(
            is_active=False, status=status, environment=environment, error=error
        )

    info = payload.get("latest_receipt_info") or []
    if not info:
        return Entitlement(is_active=False, status=status, environment=environment)

    latest = max(info, key=_expires_ms)
    now = now or utcnow()
    expires_ms = _expires_ms(latest)
    now_ms = int(now.timestamp() * 1000)
    return Entitlement(
        is_active=expires_ms > now_ms,
        status=status,
        product_id=latest.get("product_id"),
        original_purchase_date=_from_ms(latest.get("original_purchase_date_ms")),
        expires_at=_from_ms(expires_ms),
        environment=environment,
    )


class AppleReceiptVerifier:
    """Client for Apple's verifyReceipt endpoints."""

    def __init__(
        self,
        shared_secret: Optional[str],
        *,
        production_url: str = PRODUCTION_URL,
        sandbox_url: str = SANDBOX_URL,
        start_environment: str = "production",
        timeout: float = REQUEST_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.shared_secret = shared_secret
        self.production_url = production_url
        self.sandbox_url = sandbox_url
        self.start_environment = start_environment
        self.timeout = timeout
        self.session = session or requests.Session()

    def _url_for(self, environment: str) -> str:
        return self.sandbox_url if environment == "sandbox" else self.production_url

    def _post(self, url: str, receipt: str) -> dict:
        body = {
            "receipt-data": receipt,
            "password": self.shared_secret,
            "exclude-old-transactions": True,
        }
        try:
            response = self.session.post(url, json=body, timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except requests.HTTPError as exc:
            status_code = exc.response.status_code if exc.response is not None else None
            raise ReceiptTransportError(
                f"App Store verification failed with HTTP {status_code}",
                status_code=status_code,
            ) from exc
        except (requests.RequestException, ValueError) as exc:
            raise ReceiptTransportError(
                f"App Store verification request failed: {exc}"
            ) from exc
        if not isinstance(payload, dict):
            raise ReceiptTransportError(
                "App Store verification returned an unexpected "
                f"{type(payload).__name__} body",
                status_code=response.status_code,
            )
        return payload

    def verify_raw(self, receipt: str) -> dict:
        """Post the receipt, retrying once in the other environment if Apple asks."""
        if not self.shared_secret:
            raise ReceiptConfigurationError(
                "Server not configured (APPLE_SHARED_SECRET missing)"
            )

        payload = self._post(self._url_for(self.start_environment), receipt)
        status = _ms(payload.get("status"))
        if status == STATUS_SANDBOX_RECEIPT_ON_PRODUCTION:
            logger.info("Sandbox receipt sent to production, retrying against sandbox")
            payload = self._post(self.sandbox_url, receipt)
        elif status == STATUS_PRODUCTION_RECEIPT_ON_SANDBOX:
            logger.info("Production receipt sent to sandbox, retrying against production")
            payload = self._post(self.production_url, receipt)
        return payload

    def verify(self, receipt: str, now: Optional[datetime] = None) -> Entitlement:
        entitlement = map_entitlement(self.verify_raw(receipt), now)
        if entitlement.error:
            logger.warning(
                "App Store returned status %s: %s", entitlement.status, entitlement.error
            )
        return entitlement
