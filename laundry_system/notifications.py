"""Customer notification channels (SMS gateway and log-only fallback)."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Mapping, Optional, Protocol

import httpx

from .exceptions import NotificationError

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    LOAD_COMPLETED = "load-completed"
    DISPOSAL_WARNING = "disposal-warning"


class Notifier(Protocol):
    """Anything able to deliver a templated message to a customer contact."""

    def notify(
        self, contact: str, kind: NotificationKind, payload: Mapping[str, Any]
    ) -> None:
        ...


def render_message(kind: NotificationKind, payload: Mapping[str, Any]) -> str:
    """Build the customer-facing text for ``kind`` from ``payload``."""

    customer = payload.get("customer_name") or "Customer"
    order = payload.get("transaction_id", "")
    store = payload.get("store_name") or "our shop"
    address = payload.get("address") or ""
    where = f" Address: {address}" if address else ""

    if kind == NotificationKind.LOAD_COMPLETED:
        service = payload.get("service_type") or "laundry"
        return (
            f"Hi {customer}! Your {service} service (Order: {order}) has been "
            f"COMPLETED and is ready for pickup.{where} Thank you for choosing {store}!"
        )

    if kind == NotificationKind.DISPOSAL_WARNING:
        days = int(payload.get("days_until_disposal", 0))
        if days <= 0:
            return (
                f"Hi {customer}! FINAL WARNING: Your laundry (Order: {order}) will be "
                f"DISPOSED TODAY if not claimed. Please claim immediately at {store}!{where}"
            )
        if days == 1:
            return (
                f"Hi {customer}! URGENT: Your laundry (Order: {order}) will be "
                f"DISPOSED TOMORROW if not claimed. Please claim immediately at {store}!{where}"
            )
        return (
            f"Hi {customer}! REMINDER: Your laundry (Order: {order}) will be disposed "
            f"in {days} days if not claimed. Please claim at {store}!{where}"
        )

    raise ValueError(f"Unsupported notification kind: {kind!r}")


class LoggingNotifier:
    """Fallback channel used when no SMS gateway is configured."""

    def notify(
        self, contact: str, kind: NotificationKind, payload: Mapping[str, Any]
    ) -> None:
        logger.info(f"[{kind.value}] to {contact}: {render_message(kind, payload)}")


class SmsGatewayNotifier:
    """Posts ``{"phone", "message"}`` JSON to an HTTP SMS gateway."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 10.0,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        if not url:
            raise ValueError("SMS gateway url is required")
        self._url = url
        self._client = http_client or httpx.Client(timeout=timeout)
        self._owns_client = http_client is None

    def notify(
        self, contact: str, kind: NotificationKind, payload: Mapping[str, Any]
    ) -> None:
        if not contact:
            raise NotificationError("No contact number on record")
        message = render_message(kind, payload)
        try:
            response = self._client.post(
                self._url, json={"phone": contact, "message": message}
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise NotificationError(f"SMS delivery to {contact} failed: {exc}") from exc
        logger.info(f"SMS {kind.value} sent to {contact} (status {response.status_code})")

    def close(self) -> None:
        if self._owns_client:
            self._client.close()


__all__ = [
    "NotificationKind",
    "Notifier",
    "render_message",
    "LoggingNotifier",
    "SmsGatewayNotifier",
]
