"""Web Push subscription endpoints for customers and shops"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..config import VAPID_PUBLIC_KEY
from ..database import get_db
from ..domain.directory.repository import DirectoryRepository
from ..domain.scheduling.schemas import PushSubscriptionData, SubscriptionStatus
from ..exceptions import NotFoundError
from ..models import NotificationTarget
from ..services.notification_service import (
    get_subscription,
    remove_subscription,
    save_subscription,
)
from ..shared.validators import validate_positive_id

router = APIRouter(prefix="/subscriptions", tags=["Push Subscriptions"])


@router.get("/vapid-public-key")
async def get_vapid_public_key():
    """Application server key the browser needs for PushManager.subscribe"""
    if not VAPID_PUBLIC_KEY:
        raise NotFoundError("Push notifications are not configured")
    return {"publicKey": VAPID_PUBLIC_KEY}


def _ensure_target(db: Session, target: NotificationTarget, target_id: int) -> None:
    validate_positive_id(target_id, f"{target.value}_id")
    repo = DirectoryRepository()
    exists = (
        repo.get_customer(db, target_id)
        if target == NotificationTarget.CUSTOMER
        else repo.get_shop(db, target_id)
    )
    if not exists:
        raise NotFoundError(f"{target.value.capitalize()} not found")


def _subscribe(db: Session, target: NotificationTarget, target_id: int, data: PushSubscriptionData) -> dict:
    _ensure_target(db, target, target_id)
    save_subscription(db, target, target_id, data.model_dump())
    return {"message": "Subscription saved successfully"}


def _unsubscribe(db: Session, target: NotificationTarget, target_id: int) -> dict:
    _ensure_target(db, target, target_id)
    if not remove_subscription(db, target, target_id):
        raise NotFoundError("Subscription not found")
    return {"message": "Unsubscribed successfully"}


def _status(db: Session, target: NotificationTarget, target_id: int) -> SubscriptionStatus:
    _ensure_target(db, target, target_id)
    return SubscriptionStatus(subscribed=get_subscription(db, target, target_id) is not None)


@router.post("/customers/{customer_id}")
async def subscribe_customer(customer_id: int, data: PushSubscriptionData, db: Session = Depends(get_db)):
    """Register (or replace) a customer's push subscription"""
    return _subscribe(db, NotificationTarget.CUSTOMER, customer_id, data)


@router.delete("/customers/{customer_id}")
async def unsubscribe_customer(customer_id: int, db: Session = Depends(get_db)):
    return _unsubscribe(db, NotificationTarget.CUSTOMER, customer_id)


@router.get("/customers/{customer_id}", response_model=SubscriptionStatus)
async def customer_subscription_status(customer_id: int, db: Session = Depends(get_db)):
    return _status(db, NotificationTarget.CUSTOMER, customer_id)


@router.post("/shops/{shop_id}")
async def subscribe_shop(shop_id: int, data: PushSubscriptionData, db: Session = Depends(get_db)):
    """Register (or replace) a shop's push subscription"""
    return _subscribe(db, NotificationTarget.SHOP, shop_id, data)


@router.delete("/shops/{shop_id}")
async def unsubscribe_shop(shop_id: int, db: Session = Depends(get_db)):
    return _unsubscribe(db, NotificationTarget.SHOP, shop_id)


@router.get("/shops/{shop_id}", response_model=SubscriptionStatus)
async def shop_subscription_status(shop_id: int, db: Session = Depends(get_db)):
    return _status(db, NotificationTarget.SHOP, shop_id)
