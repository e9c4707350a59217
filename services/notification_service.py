"""
Notification service.

The core decides who is told what; delivery is somebody else's job:
- NotificationSink delivers one notification over one channel. Channels are
  fanned out independently, so a failing SMS gateway never blocks the portal.
- WebhookPublisher POSTs signed JSON events to the configured webhook URL and
  records every attempt in the store.

Nothing in this module raises to its caller. Notifications are side effects
of operations that have already committed.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from concurrent.futures import Executor
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, List, Mapping, Optional, Protocol
from uuid import UUID, uuid4

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from domain.notification import (
    WEBHOOK_EVENTS,
    Notification,
    NotificationChannel,
    NotificationEvent,
    NotificationPriority,
    WebhookDelivery,
)
from domain.time import utc_now
from repositories.store import MarketplaceStore

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Webhook-Signature"


def sign_payload(body: bytes, secret: str) -> str:
    """HMAC-SHA256 of the raw request body, hex encoded."""

    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_webhook_signature(body: bytes, signature: str, secret: str) -> bool:
    """Constant-time check of an X-Webhook-Signature header value."""

    if not secret:
        return False
    expected = sign_payload(body, secret)
    return hmac.compare_digest(expected, (signature or "").strip().lower())


def _encode(envelope: Mapping[str, Any]) -> bytes:
    return json.dumps(envelope, separators=(",", ":"), sort_keys=True, default=str).encode("utf-8")


def build_session(total_retries: int = 2) -> requests.Session:
    """requests Session that retries transient gateway errors on POST."""

    session = requests.Session()
    retries = Retry(
        total=total_retries,
        backoff_factor=0.5,
        status_forcelist=[502, 503, 504],
        allowed_methods=["POST"],
    )
    session.mount("http://", HTTPAdapter(max_retries=retries))
    session.mount("https://", HTTPAdapter(max_retries=retries))
    return session


class NotificationSink(Protocol):
    def deliver(self, notification: Notification, channel: NotificationChannel) -> None: ...


class LoggingNotificationSink:
    """Default sink: writes each channel delivery to the log."""

    def deliver(self, notification: Notification, channel: NotificationChannel) -> None:
        logger.info(
            "[%s] %s -> %s: %s (%s)",
            channel.value,
            notification.event.value,
            notification.recipient_id,
            notification.title,
            notification.priority.value,
        )


class WebhookPublisher:
    """
    Signed webhook delivery.

    Each publish() is one POST of {"event", "data", "timestamp"}; the outcome,
    success or not, is stored as a WebhookDelivery for retry_failed_webhooks().
    """

    def __init__(
        self,
        store: MarketplaceStore,
        url: str,
        secret: str,
        timeout_seconds: float = 10.0,
        session: Optional[requests.Session] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._url = url
        self._secret = secret
        self._timeout_seconds = timeout_seconds
        self._session = session if session is not None else build_session()
        self._clock = clock

    def publish(self, event: NotificationEvent, data: Mapping[str, Any]) -> Optional[WebhookDelivery]:
        envelope = {
            "event": event.value,
            "data": dict(data),
            "timestamp": self._clock().isoformat(),
        }
        body = _encode(envelope)
        delivery = WebhookDelivery(
            delivery_id=uuid4(),
            event=event,
            url=self._url,
            payload=envelope,
            signature=sign_payload(body, self._secret),
            attempts=0,
        )
        delivery = self._attempt(delivery, body)

        try:
            self._store.insert_webhook_delivery(delivery)
        except Exception:
            logger.exception("Failed to record webhook delivery %s", delivery.delivery_id)
        return delivery

    def retry_failed_webhooks(self, max_attempts: int = 5, limit: int = 100) -> int:
        """Re-send undelivered webhooks below max_attempts. Returns how many now succeeded."""

        try:
            pending = self._store.list_failed_webhook_deliveries(max_attempts, limit)
        except Exception:
            logger.exception("Failed to list failed webhook deliveries")
            return 0

        delivered = 0
        for delivery in pending:
            retried = self._attempt(delivery, _encode(delivery.payload))
            try:
                self._store.update_webhook_delivery(retried)
            except Exception:
                logger.exception("Failed to update webhook delivery %s", delivery.delivery_id)
            if retried.delivered:
                delivered += 1

        if pending:
            logger.info("Webhook retry: %d/%d delivered", delivered, len(pending))
        return delivered

    def _attempt(self, delivery: WebhookDelivery, body: bytes) -> WebhookDelivery:
        headers = {
            "Content-Type": "application/json",
            SIGNATURE_HEADER: delivery.signature,
        }
        attempted_at = self._clock()
        try:
            response = self._session.post(
                delivery.url, data=body, headers=headers, timeout=self._timeout_seconds
            )
        except requests.RequestException as e:
            logger.warning("Webhook %s to %s failed: %s", delivery.event.value, delivery.url, e)
            return replace(
                delivery,
                attempts=delivery.attempts + 1,
                status_code=None,
                response_body=str(e),
                last_attempt_at=attempted_at,
            )

        if not 200 <= response.status_code < 300:
            logger.warning(
                "Webhook %s to %s returned HTTP %s", delivery.event.value, delivery.url, response.status_code
            )
        return replace(
            delivery,
            attempts=delivery.attempts + 1,
            status_code=response.status_code,
            response_body=(response.text or "")[:2000],
            last_attempt_at=attempted_at,
        )


def _money(value: Decimal) -> str:
    return f"{value:.2f}"


class MarketplaceNotifier:
    """
    Facade the core services call after their state changes commit.

    Every method swallows and logs its own failures.
    """

    def __init__(
        self,
        sink: NotificationSink,
        publisher: Optional[WebhookPublisher] = None,
        executor: Optional[Executor] = None,
    ) -> None:
        """
        executor: when given, webhooks are published on it instead of the
        calling thread. Undelivered webhooks are picked up by
        WebhookPublisher.retry_failed_webhooks either way.
        """

        self._sink = sink
        self._publisher = publisher
        self._executor = executor

    def notify(self, notification: Notification) -> List[NotificationChannel]:
        """Fan out over every channel. Returns the channels that failed."""

        failed: List[NotificationChannel] = []
        for channel in notification.channels:
            try:
                self._sink.deliver(notification, channel)
            except Exception:
                logger.exception(
                    "Notification %s via %s to %s failed",
                    notification.event.value,
                    channel.value,
                    notification.recipient_id,
                )
                failed.append(channel)

        if notification.event in WEBHOOK_EVENTS and self._publisher is not None:
            if self._executor is None:
                self._publish(notification.event, notification.payload)
            else:
                try:
                    self._executor.submit(self._publish, notification.event, notification.payload)
                except RuntimeError:
                    logger.exception("Webhook executor unavailable, dropping %s", notification.event.value)
        return failed

    def _publish(self, event: NotificationEvent, payload: Mapping[str, Any]) -> None:
        try:
            self._publisher.publish(event, payload)
        except Exception:
            logger.exception("Webhook publish for %s failed", event.value)

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)

    def offer_expiring_soon(
        self, partner_id: UUID, quote_id: UUID, quote_number: str, minutes_remaining: int
    ) -> None:
        self._safe_notify(
            Notification(
                recipient_id=partner_id,
                title="Quote expiring soon",
                message=(
                    f"Quote {quote_number} expires in {minutes_remaining} minutes. "
                    "Your offer is still pending."
                ),
                event=NotificationEvent.OFFER_EXPIRING_SOON,
                channels=(NotificationChannel.PORTAL, NotificationChannel.EMAIL),
                priority=NotificationPriority.HIGH,
                payload={"quoteId": str(quote_id), "minutesRemaining": minutes_remaining},
            )
        )

    def lead_payment_failed(
        self, partner_id: UUID, quote_id: UUID, required: Decimal, available: Decimal
    ) -> None:
        self._safe_notify(
            Notification(
                recipient_id=partner_id,
                title="Lead payment failed",
                message=(
                    f"Insufficient wallet balance to bid on this quote. "
                    f"Required: {_money(required)}, Available: {_money(available)}. Please recharge."
                ),
                event=NotificationEvent.LEAD_PAYMENT_FAILED,
                channels=(NotificationChannel.PORTAL, NotificationChannel.EMAIL, NotificationChannel.SMS),
                priority=NotificationPriority.URGENT,
                payload={
                    "partnerId": str(partner_id),
                    "quoteId": str(quote_id),
                    "requiredAmount": _money(required),
                    "availableBalance": _money(available),
                },
            )
        )

    def offers_available(
        self,
        shipper_id: UUID,
        quote_id: UUID,
        quote_number: str,
        offer_id: UUID,
        partner_id: UUID,
        price: Decimal,
        lead_cost: Decimal,
    ) -> None:
        self._safe_notify(
            Notification(
                recipient_id=shipper_id,
                title="New offer received",
                message=f"A new offer of {_money(price)} was received for quote {quote_number}.",
                event=NotificationEvent.QUOTE_OFFERS_AVAILABLE,
                channels=(NotificationChannel.PORTAL, NotificationChannel.EMAIL),
                priority=NotificationPriority.MEDIUM,
                payload={
                    "quoteId": str(quote_id),
                    "offerId": str(offer_id),
                    "partnerId": str(partner_id),
                    "price": _money(price),
                    "leadCost": _money(lead_cost),
                },
            )
        )

    def quote_expired(self, shipper_id: UUID, quote_id: UUID, quote_number: str, offers_expired: int) -> None:
        self._safe_notify(
            Notification(
                recipient_id=shipper_id,
                title="Quote expired",
                message=f"Quote {quote_number} expired with {offers_expired} pending offers.",
                event=NotificationEvent.QUOTE_EXPIRED,
                channels=(NotificationChannel.PORTAL,),
                priority=NotificationPriority.LOW,
                payload={"quoteId": str(quote_id), "offersExpired": offers_expired},
            )
        )

    def low_wallet_balance(self, partner_id: UUID, balance: Decimal, threshold: Decimal) -> None:
        self._safe_notify(
            Notification(
                recipient_id=partner_id,
                title="Low wallet balance",
                message=(
                    f"Your lead wallet balance is {_money(balance)}, at or below your alert "
                    f"threshold of {_money(threshold)}. Recharge to keep bidding."
                ),
                event=NotificationEvent.LOW_WALLET_BALANCE,
                channels=(NotificationChannel.PORTAL, NotificationChannel.EMAIL, NotificationChannel.WHATSAPP),
                priority=NotificationPriority.HIGH,
                payload={"balance": _money(balance), "threshold": _money(threshold)},
            )
        )

    def _safe_notify(self, notification: Notification) -> None:
        try:
            self.notify(notification)
        except Exception:
            logger.exception("Failed to send %s notification", notification.event.value)


__all__ = [
    "SIGNATURE_HEADER",
    "LoggingNotificationSink",
    "MarketplaceNotifier",
    "NotificationSink",
    "WebhookPublisher",
    "build_session",
    "sign_payload",
    "verify_webhook_signature",
]
