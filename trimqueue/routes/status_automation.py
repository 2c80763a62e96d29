"""
API endpoint for status automation and analytics
"""

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session, sessionmaker

from ..database import get_db, get_session_factory
from ..domain.directory.repository import DirectoryRepository
from ..domain.scheduling.repository import BookingRepository
from ..domain.scheduling.router import get_now
from ..exceptions import NotFoundError
from ..services.notification_service import NotificationTrigger, PushSender, get_push_sender
from ..services.status_automation import update_booking_statuses
from ..shared.validators import validate_positive_id

router = APIRouter(prefix="/status", tags=["status"])


class StatusSummary(BaseModel):
    booked: int
    in_service: int
    completed: int
    cancelled: int


class AutomationResult(BaseModel):
    booked_to_in_service: int
    in_service_to_completed: int
    booked_to_missed: int
    total_updated: int
    rescheduled_after_missed: int = 0


@router.get("/analytics", response_model=StatusSummary)
async def get_status_analytics(shop_id: int = Query(...), db: Session = Depends(get_db)):
    """Get count of bookings by status for a shop"""
    validate_positive_id(shop_id, "shop_id")
    if not DirectoryRepository().get_shop(db, shop_id):
        raise NotFoundError("Shop not found")
    return StatusSummary(**BookingRepository().status_breakdown(db, shop_id=shop_id))


@router.post("/automation/run", response_model=AutomationResult)
async def run_status_automation(
    background_tasks: BackgroundTasks,
    now=Depends(get_now),
    db: Session = Depends(get_db),
    session_factory: sessionmaker = Depends(get_session_factory),
    sender: PushSender = Depends(get_push_sender),
):
    """
    Manually trigger status automation
    (Normally run by the in-process ticker or the arq worker)
    """
    notifier = NotificationTrigger(sender)
    result = update_booking_statuses(db, now, notifier)
    notifier.schedule(background_tasks, session_factory)
    return AutomationResult(**result)
