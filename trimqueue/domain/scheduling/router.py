"""Scheduling router - FastAPI endpoints for bookings and live queues"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session, sessionmaker

from ...database import get_db, get_session_factory
from ...models import Booking, BookingStatus
from ...services.notification_service import PushSender, get_push_sender
from ...shared.clock import (
    display_times,
    format_12h,
    format_24h,
    format_hhmm,
    format_timestamp,
    minutes_until,
    utc_now,
)
from .cascade import Reschedule
from .schemas import (
    BookingCreate,
    BookingListItem,
    BookingListQuery,
    BookingListResponse,
    BookingResponse,
    CancelledBookingInfo,
    CancelResponse,
    CheckInRequest,
    CustomerCancelRequest,
    DelayRequest,
    DelayResponse,
    EmployeeQueue,
    FormattedTimes,
    Pagination,
    QueueEntry,
    QueueInfo,
    QueueView,
    RescheduledBooking,
    ServiceLine,
    ShopCancelRequest,
    YourBooking,
)
from .service import BookingPage, BookingService, EmployeeQueueResult, QueueResult

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Scheduling"])


def get_now():
    """Request-scoped 'now', captured once and threaded through the operation"""
    return utc_now()


def get_booking_service(
    db: Session = Depends(get_db), sender: PushSender = Depends(get_push_sender)
) -> BookingService:
    """Dependency injection for BookingService"""
    return BookingService(db, sender)


# ============================================================================
# RESPONSE BUILDERS
# ============================================================================


def _service_lines(booking: Booking) -> list[ServiceLine]:
    return [
        ServiceLine(id=s["id"], name=s["name"], duration_minutes=s["duration_minutes"])
        for s in (booking.services or [])
    ]


def _booking_response(
    booking: Booking, queue_position: Optional[int] = None, estimated_wait_time: Optional[str] = None
) -> BookingResponse:
    return BookingResponse(
        booking_id=booking.id,
        shop_id=booking.shop_id,
        employee_id=booking.employee_id,
        customer_id=booking.customer_id,
        status=BookingStatus(booking.status).value,
        services=_service_lines(booking),
        service_duration_minutes=booking.service_duration_minutes,
        join_time=booking.join_time,
        end_time=booking.end_time,
        shop_name=booking.shop.name if booking.shop else None,
        employee_name=booking.employee.name if booking.employee else None,
        customer_name=booking.customer_name,
        queue_position=queue_position,
        estimated_wait_time=estimated_wait_time,
        formatted_times=FormattedTimes(**display_times(booking.join_time, booking.end_time)),
    )


def _rescheduled(plan: list[Reschedule]) -> list[RescheduledBooking]:
    return [
        RescheduledBooking(
            booking_id=move.booking_id,
            old_join_time=move.old_join_time,
            new_join_time=move.new_join_time,
            new_join_time_display=format_12h(move.new_join_time),
        )
        for move in plan
    ]


def _cancel_response(booking: Booking, plan: list[Reschedule]) -> CancelResponse:
    return CancelResponse(
        message="Booking cancelled successfully",
        cancelled_booking=CancelledBookingInfo(
            booking_id=booking.id,
            status=BookingStatus(booking.status).value,
            cancelled_by=booking.cancelled_by.value if booking.cancelled_by else None,
            original_join_time=format_24h(booking.join_time),
            original_end_time=format_24h(booking.end_time),
        ),
        rescheduled=_rescheduled(plan),
    )


def _employee_queue(result: EmployeeQueueResult) -> EmployeeQueue:
    estimate = result.estimate
    by_id = {b.id: b for b in result.bookings}

    entries = [
        QueueEntry(
            booking_id=slot.booking_id,
            position=slot.position,
            customer_name=by_id[slot.booking_id].customer_name,
            status=slot.status.value,
            join_time=format_hhmm(by_id[slot.booking_id].join_time),
            expected_end_time=format_hhmm(by_id[slot.booking_id].end_time),
            estimated_start=format_hhmm(slot.estimated_start),
        )
        for slot in estimate.slots
    ]

    your_booking = None
    if estimate.customer_booking_id is not None:
        mine = by_id[estimate.customer_booking_id]
        your_booking = YourBooking(
            booking_id=mine.id,
            join_time=format_hhmm(mine.join_time),
            service_duration=f"{mine.service_duration_minutes} minutes",
            expected_end_time=format_hhmm(mine.end_time),
            status=BookingStatus(mine.status).value,
            services=_service_lines(mine),
        )

    return EmployeeQueue(
        employee_id=result.employee.id,
        employee_name=result.employee.name,
        is_active=result.employee.is_active,
        queue_info=QueueInfo(
            total_people_in_queue=estimate.queue_length,
            queue_position=estimate.next_position,
            estimated_wait_minutes=estimate.estimated_wait_minutes,
            estimated_wait_time=estimate.estimated_wait_display,
            current_status=estimate.current_status,
            customer_queue_position=estimate.customer_position,
        ),
        entries=entries,
        your_booking=your_booking,
    )


def _queue_view(result: QueueResult) -> QueueView:
    return QueueView(
        shop_id=result.shop.id,
        shop_name=result.shop.name,
        employees=[_employee_queue(e) for e in result.employees],
        timestamp=format_timestamp(result.now),
    )


def _time_info(booking: Booking, now) -> str:
    status = BookingStatus(booking.status)
    if status == BookingStatus.BOOKED:
        wait = minutes_until(booking.join_time, now)
        return f"Starts in {wait} minutes" if wait > 0 else "Starting now"
    elif status == BookingStatus.IN_SERVICE:
        return f"In service, ends in {minutes_until(booking.end_time, now)} minutes"
    elif status == BookingStatus.COMPLETED:
        return "Completed"
    return "Cancelled"


def _booking_list(page: BookingPage) -> BookingListResponse:
    return BookingListResponse(
        bookings=[
            BookingListItem(
                booking_id=b.id,
                shop_id=b.shop_id,
                shop_name=b.shop.name if b.shop else None,
                employee_id=b.employee_id,
                employee_name=b.employee.name if b.employee else None,
                customer_id=b.customer_id,
                customer_name=b.customer_name,
                status=BookingStatus(b.status).value,
                services=_service_lines(b),
                service_duration_minutes=b.service_duration_minutes,
                formatted_times=FormattedTimes(**display_times(b.join_time, b.end_time)),
                time_info=_time_info(b, page.now),
            )
            for b in page.bookings
        ],
        pagination=Pagination(
            total=page.total, limit=page.limit, offset=page.offset, has_more=page.has_more
        ),
        status_breakdown=page.status_breakdown,
        last_status_update=format_timestamp(page.now),
    )


# ============================================================================
# BOOKINGS
# ============================================================================


@router.post("/bookings", response_model=BookingResponse, status_code=201)
async def create_booking(
    data: BookingCreate,
    background_tasks: BackgroundTasks,
    now=Depends(get_now),
    session_factory: sessionmaker = Depends(get_session_factory),
    service: BookingService = Depends(get_booking_service),
):
    """Book one or more services with an employee; the earliest feasible slot is assigned"""
    result = service.create_booking(
        data.shop_id, data.employee_id, data.customer_id, data.service_ids, now
    )
    service.notifier.schedule(background_tasks, session_factory)
    return _booking_response(result.booking, result.queue_position, result.estimated_wait_time)


@router.post("/bookings/cancel", response_model=CancelResponse)
async def cancel_booking_by_customer(
    data: CustomerCancelRequest,
    background_tasks: BackgroundTasks,
    now=Depends(get_now),
    session_factory: sessionmaker = Depends(get_session_factory),
    service: BookingService = Depends(get_booking_service),
):
    """Customer cancels their own booking"""
    result = service.cancel_booking(data.booking_id, now, customer_id=data.customer_id)
    service.notifier.schedule(background_tasks, session_factory)
    return _cancel_response(result.booking, result.rescheduled)


@router.post("/shop/bookings/cancel", response_model=CancelResponse)
async def cancel_booking_by_shop(
    data: ShopCancelRequest,
    background_tasks: BackgroundTasks,
    now=Depends(get_now),
    session_factory: sessionmaker = Depends(get_session_factory),
    service: BookingService = Depends(get_booking_service),
):
    """Shop cancels one of its bookings"""
    result = service.cancel_booking(data.booking_id, now, shop_id=data.shop_id)
    service.notifier.schedule(background_tasks, session_factory)
    return _cancel_response(result.booking, result.rescheduled)


@router.put("/shop/bookings/{booking_id}/delay", response_model=DelayResponse)
async def delay_booking(
    booking_id: int,
    data: DelayRequest,
    background_tasks: BackgroundTasks,
    now=Depends(get_now),
    session_factory: sessionmaker = Depends(get_session_factory),
    service: BookingService = Depends(get_booking_service),
):
    """Extend a service that is running long and push later bookings back"""
    result = service.extend_booking(booking_id, data.shop_id, data.delay_minutes, now)
    service.notifier.schedule(background_tasks, session_factory)
    return DelayResponse(
        message=f"Booking extended by {data.delay_minutes} minutes",
        booking_id=result.booking.id,
        new_end_time=format_24h(result.booking.end_time),
        new_service_duration_minutes=result.booking.service_duration_minutes,
        rescheduled=_rescheduled(result.rescheduled),
    )


@router.post("/shop/bookings/{booking_id}/check-in", response_model=BookingResponse)
async def check_in_booking(
    booking_id: int,
    data: CheckInRequest,
    background_tasks: BackgroundTasks,
    now=Depends(get_now),
    session_factory: sessionmaker = Depends(get_session_factory),
    service: BookingService = Depends(get_booking_service),
):
    """Shop marks a booked customer as started"""
    booking = service.check_in_booking(booking_id, data.shop_id, now)
    service.notifier.schedule(background_tasks, session_factory)
    return _booking_response(booking)


# ============================================================================
# QUEUES
# ============================================================================


@router.get("/queue/shops/{shop_id}", response_model=QueueView)
async def get_shop_queue(
    shop_id: int,
    background_tasks: BackgroundTasks,
    customer_id: Optional[int] = Query(None),
    now=Depends(get_now),
    session_factory: sessionmaker = Depends(get_session_factory),
    service: BookingService = Depends(get_booking_service),
):
    """Live queue of every employee of a shop"""
    result = service.list_queue(now, shop_id=shop_id, customer_id=customer_id)
    service.notifier.schedule(background_tasks, session_factory)
    return _queue_view(result)


@router.get("/queue/employees/{employee_id}", response_model=QueueView)
async def get_employee_queue(
    employee_id: int,
    background_tasks: BackgroundTasks,
    customer_id: Optional[int] = Query(None),
    now=Depends(get_now),
    session_factory: sessionmaker = Depends(get_session_factory),
    service: BookingService = Depends(get_booking_service),
):
    """Live queue of a single employee"""
    result = service.list_queue(now, employee_id=employee_id, customer_id=customer_id)
    service.notifier.schedule(background_tasks, session_factory)
    return _queue_view(result)


# ============================================================================
# BOOKING LISTINGS
# ============================================================================


@router.get("/customers/{customer_id}/bookings", response_model=BookingListResponse)
async def get_customer_bookings(
    customer_id: int,
    background_tasks: BackgroundTasks,
    status: Optional[str] = Query(None),
    date: Optional[date] = Query(None),
    shop_id: Optional[int] = Query(None),
    employee_id: Optional[int] = Query(None),
    limit: int = Query(50),
    offset: int = Query(0),
    sort_by: str = Query("join_time"),
    sort_order: str = Query("DESC"),
    now=Depends(get_now),
    session_factory: sessionmaker = Depends(get_session_factory),
    service: BookingService = Depends(get_booking_service),
):
    """All bookings of a customer with filters, sorting and pagination"""
    query = BookingListQuery(
        status=status,
        date=date,
        shop_id=shop_id,
        employee_id=employee_id,
        limit=limit,
        offset=offset,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    page = service.list_bookings(
        now,
        customer_id=customer_id,
        shop_id=query.shop_id,
        employee_id=query.employee_id,
        status=query.status,
        on_date=query.date,
        limit=query.limit,
        offset=query.offset,
        sort_by=query.sort_by,
        descending=query.descending,
    )
    service.notifier.schedule(background_tasks, session_factory)
    return _booking_list(page)


@router.get("/shops/{shop_id}/bookings", response_model=BookingListResponse)
async def get_shop_bookings(
    shop_id: int,
    background_tasks: BackgroundTasks,
    status: Optional[str] = Query(None),
    date: Optional[date] = Query(None),
    employee_id: Optional[int] = Query(None),
    limit: int = Query(50),
    offset: int = Query(0),
    sort_by: str = Query("join_time"),
    sort_order: str = Query("DESC"),
    now=Depends(get_now),
    session_factory: sessionmaker = Depends(get_session_factory),
    service: BookingService = Depends(get_booking_service),
):
    """All bookings of a shop with filters, sorting and pagination"""
    query = BookingListQuery(
        status=status,
        date=date,
        employee_id=employee_id,
        limit=limit,
        offset=offset,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    page = service.list_bookings(
        now,
        shop_id=shop_id,
        employee_id=query.employee_id,
        status=query.status,
        on_date=query.date,
        limit=query.limit,
        offset=query.offset,
        sort_by=query.sort_by,
        descending=query.descending,
    )
    service.notifier.schedule(background_tasks, session_factory)
    return _booking_list(page)
