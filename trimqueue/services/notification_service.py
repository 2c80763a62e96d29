"""
Push Notification Service
Queues customer and shop notifications during a scheduling transaction and
delivers them after the transaction commits, as a background task that does
not hold up the response.

Delivery is best-effort: failures are logged and never reach the caller, and
subscriptions the push service reports as gone (404/410) are pruned.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from fastapi import BackgroundTasks
from pywebpush import WebPushException, webpush
from requests import RequestException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import (
    CUSTOMER_DASHBOARD_URL,
    PUSH_REQUEST_TIMEOUT_SECONDS,
    PUSH_TTL_SECONDS,
    SHOP_DASHBOARD_URL,
    VAPID_PRIVATE_KEY,
    VAPID_SUBJECT,
)
from ..database import SessionLocal
from ..exceptions import NotificationDeliveryError
from ..models import NotificationTarget, PushSubscription

logger = logging.getLogger(__name__)


class PushSender(Protocol):
    async def send(self, subscription: dict, payload: dict) -> None:
        """Deliver one payload; raise NotificationDeliveryError on failure"""


class WebPushSender:
    """
    Delivers payloads through the Web Push protocol with pywebpush.

    Payloads are encrypted (aes128gcm) for the subscription's p256dh/auth
    keys and each request is signed with the VAPID private key.
    """

    def __init__(
        self,
        vapid_private_key: str = VAPID_PRIVATE_KEY,
        vapid_subject: str = VAPID_SUBJECT,
        timeout: float = PUSH_REQUEST_TIMEOUT_SECONDS,
        ttl: int = PUSH_TTL_SECONDS,
    ):
        self.vapid_private_key = vapid_private_key
        self.vapid_subject = vapid_subject
        self.timeout = timeout
        self.ttl = ttl

    async def send(self, subscription: dict, payload: dict) -> None:
        if not self.vapid_private_key:
            raise NotificationDeliveryError("VAPID_PRIVATE_KEY is not configured")
        try:
            # pywebpush is blocking; keep the event loop free
            await asyncio.to_thread(
                webpush,
                subscription_info=subscription,
                data=json.dumps(payload),
                vapid_private_key=self.vapid_private_key,
                # webpush adds aud/exp to the claims it is given
                vapid_claims={"sub": self.vapid_subject},
                timeout=self.timeout,
                ttl=self.ttl,
            )
        except WebPushException as e:
            status_code = e.response.status_code if e.response is not None else None
            raise NotificationDeliveryError(
                f"push service rejected the notification: {e.message}", status_code=status_code
            ) from e
        except RequestException as e:
            raise NotificationDeliveryError(f"push request failed: {e}") from e


_push_sender: PushSender = WebPushSender()


def get_push_sender() -> PushSender:
    """FastAPI dependency returning the process-wide push sender"""
    return _push_sender


@dataclass(frozen=True)
class PendingNotification:
    target: NotificationTarget
    target_id: int
    payload: dict


class NotificationTrigger:
    """Outbox of notifications produced by one unit of work"""

    def __init__(self, sender: Optional[PushSender] = None):
        self.sender = sender or get_push_sender()
        self.pending: list[PendingNotification] = []

    def notify_customer(
        self,
        customer_id: Optional[int],
        title: str,
        body: str,
        booking_id: int,
        type: str,
        url: str = CUSTOMER_DASHBOARD_URL,
    ) -> None:
        self._queue(NotificationTarget.CUSTOMER, customer_id, title, body, booking_id, type, url)

    def notify_shop(
        self,
        shop_id: Optional[int],
        title: str,
        body: str,
        booking_id: int,
        type: str,
        url: str = SHOP_DASHBOARD_URL,
    ) -> None:
        self._queue(NotificationTarget.SHOP, shop_id, title, body, booking_id, type, url)

    def _queue(self, target, target_id, title, body, booking_id, type, url) -> None:
        if not target_id:
            logger.debug(f"⚠️ Skipping {type} notification: no {target.value} id")
            return
        self.pending.append(
            PendingNotification(
                target=target,
                target_id=target_id,
                payload={"title": title, "body": body, "url": url, "bookingId": booking_id, "type": type},
            )
        )

    def discard(self) -> None:
        """Drop queued notifications (the transaction rolled back)"""
        if self.pending:
            logger.debug(f"Discarding {len(self.pending)} queued notifications")
        self.pending = []

    def schedule(
        self, background_tasks: BackgroundTasks, session_factory: Callable[[], Session] = SessionLocal
    ) -> None:
        """
        Hand the queued notifications to a background task that runs after
        the response is sent, with a session of its own. Call only after commit.
        """
        if not self.pending:
            return
        outbox = NotificationTrigger(self.sender)
        outbox.pending, self.pending = self.pending, []
        background_tasks.add_task(outbox.dispatch_in_session, session_factory)

    async def dispatch_in_session(self, session_factory: Callable[[], Session] = SessionLocal) -> dict:
        db = session_factory()
        try:
            return await self.dispatch(db)
        finally:
            db.close()

    async def dispatch(self, db: Session) -> dict:
        """
        Deliver every queued notification concurrently. Call only after commit.

        Returns:
            dict: counts of sent, skipped, failed and pruned deliveries
        """
        pending, self.pending = self.pending, []
        summary = {"sent": 0, "skipped": 0, "failed": 0, "pruned": 0}

        deliveries = []
        for notification in pending:
            subscription = self._resolve(db, notification)
            if subscription is None:
                summary["skipped"] += 1
            else:
                deliveries.append(
                    (notification, subscription, subscription.id, dict(subscription.subscription_data))
                )

        outcomes = await asyncio.gather(
            *(self._send(notification, data) for notification, _, _, data in deliveries)
        )

        # Session work stays sequential; only the pushes overlap
        pruned = set()
        for (notification, subscription, subscription_id, _), outcome in zip(deliveries, outcomes):
            if outcome == "gone":
                if subscription_id in pruned or _prune(db, subscription, _describe(notification)):
                    pruned.add(subscription_id)
                    outcome = "pruned"
                else:
                    outcome = "failed"
            summary[outcome] += 1

        if pending:
            logger.info(f"📨 Notification dispatch summary: {summary}")
        return summary

    def _resolve(self, db: Session, notification: PendingNotification) -> Optional[PushSubscription]:
        target = _describe(notification)
        subscription = get_subscription(db, notification.target, notification.target_id)
        if subscription is None:
            logger.debug(f"No push subscription found for {target}")
            return None
        if not (subscription.subscription_data or {}).get("endpoint"):
            logger.error(f"❌ Invalid subscription data for {target}")
            return None
        return subscription

    async def _send(self, notification: PendingNotification, data: dict) -> str:
        target = _describe(notification)
        try:
            await self.sender.send(data, notification.payload)
            logger.info(f"✅ Push notification '{notification.payload['type']}' sent to {target}")
            return "sent"
        except NotificationDeliveryError as e:
            logger.error(f"❌ Error sending push notification to {target}: {e}")
            return "gone" if e.is_gone else "failed"
        except Exception as e:
            # Delivery must never fail the scheduling call that triggered it
            logger.error(f"❌ Unexpected push failure for {target}: {e}")
            return "failed"


def _describe(notification: PendingNotification) -> str:
    return f"{notification.target.value} {notification.target_id}"


def _prune(db: Session, subscription: PushSubscription, target: str) -> bool:
    try:
        db.delete(subscription)
        db.commit()
        logger.info(f"🧹 Subscription for {target} expired. Removed from DB.")
        return True
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"❌ Failed to prune subscription for {target}: {e}")
        return False


# Subscription storage
def get_subscription(db: Session, target: NotificationTarget, target_id: int) -> Optional[PushSubscription]:
    return (
        db.query(PushSubscription)
        .filter(PushSubscription.target_kind == target, PushSubscription.target_id == target_id)
        .first()
    )


def save_subscription(db: Session, target: NotificationTarget, target_id: int, subscription: dict) -> PushSubscription:
    """Create or replace the subscription of a customer or shop"""
    existing = get_subscription(db, target, target_id)
    if existing:
        existing.endpoint = subscription["endpoint"]
        existing.subscription_data = subscription
        record = existing
    else:
        record = PushSubscription(
            target_kind=target,
            target_id=target_id,
            endpoint=subscription["endpoint"],
            subscription_data=subscription,
        )
        db.add(record)
    db.commit()
    db.refresh(record)
    logger.info(f"🔔 Push subscription saved for {target.value} {target_id}")
    return record


def remove_subscription(db: Session, target: NotificationTarget, target_id: int) -> bool:
    existing = get_subscription(db, target, target_id)
    if not existing:
        return False
    db.delete(existing)
    db.commit()
    logger.info(f"🔕 Push subscription removed for {target.value} {target_id}")
    return True
