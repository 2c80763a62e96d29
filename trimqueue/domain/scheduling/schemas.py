"""Scheduling domain schemas - Pydantic models for validation"""

from datetime import date as date_type
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator


class BookingCreate(BaseModel):
    """Schema for creating a booking (customer_id 0 or null for walk-ins)"""

    shop_id: int
    employee_id: int
    customer_id: Optional[int] = None
    service_ids: list[int]


class CustomerCancelRequest(BaseModel):
    customer_id: int
    booking_id: int


class ShopCancelRequest(BaseModel):
    shop_id: int
    booking_id: int


class DelayRequest(BaseModel):
    """Schema for extending a running-long booking"""

    shop_id: int
    delay_minutes: int


class CheckInRequest(BaseModel):
    shop_id: int


class ServiceLine(BaseModel):
    id: int
    name: str
    duration_minutes: int


class FormattedTimes(BaseModel):
    join_time: str
    end_time: str
    join_time_display: str
    end_time_display: str


class BookingResponse(BaseModel):
    """Schema for booking response"""

    booking_id: int
    shop_id: int
    employee_id: int
    customer_id: Optional[int]
    status: str
    services: list[ServiceLine]
    service_duration_minutes: int
    join_time: datetime
    end_time: datetime
    shop_name: Optional[str] = None
    employee_name: Optional[str] = None
    customer_name: Optional[str] = None
    queue_position: Optional[int] = None
    estimated_wait_time: Optional[str] = None
    formatted_times: FormattedTimes


class RescheduledBooking(BaseModel):
    booking_id: int
    old_join_time: datetime
    new_join_time: datetime
    new_join_time_display: str


class CancelledBookingInfo(BaseModel):
    booking_id: int
    status: str
    cancelled_by: Optional[str]
    original_join_time: str
    original_end_time: str


class CancelResponse(BaseModel):
    message: str
    cancelled_booking: CancelledBookingInfo
    rescheduled: list[RescheduledBooking] = []


class DelayResponse(BaseModel):
    message: str
    booking_id: int
    new_end_time: str
    new_service_duration_minutes: int
    rescheduled: list[RescheduledBooking] = []


class QueueInfo(BaseModel):
    total_people_in_queue: int
    queue_position: int
    estimated_wait_minutes: int
    estimated_wait_time: str
    current_status: str
    customer_queue_position: Optional[int] = None


class QueueEntry(BaseModel):
    booking_id: int
    position: int
    customer_name: str
    status: str
    join_time: str
    expected_end_time: str
    estimated_start: str


class YourBooking(BaseModel):
    booking_id: int
    join_time: str
    service_duration: str
    expected_end_time: str
    status: str
    services: list[ServiceLine]


class EmployeeQueue(BaseModel):
    employee_id: int
    employee_name: str
    is_active: bool
    queue_info: QueueInfo
    entries: list[QueueEntry] = []
    your_booking: Optional[YourBooking] = None


class QueueView(BaseModel):
    shop_id: int
    shop_name: str
    employees: list[EmployeeQueue]
    timestamp: str


class BookingListQuery(BaseModel):
    """Filters shared by the customer and shop booking listings"""

    status: Optional[Literal["booked", "in_service", "completed", "cancelled"]] = None
    date: Optional[date_type] = None
    shop_id: Optional[int] = None
    employee_id: Optional[int] = None
    limit: int = Field(default=50)
    offset: int = Field(default=0)
    sort_by: Literal["join_time", "end_time", "status"] = "join_time"
    sort_order: str = "DESC"

    @field_validator("limit")
    @classmethod
    def clamp_limit(cls, v):
        return min(max(v, 1), 100)

    @field_validator("offset")
    @classmethod
    def clamp_offset(cls, v):
        return max(v, 0)

    @property
    def descending(self) -> bool:
        return self.sort_order.upper() != "ASC"


class BookingListItem(BaseModel):
    booking_id: int
    shop_id: int
    shop_name: Optional[str]
    employee_id: int
    employee_name: Optional[str]
    customer_id: Optional[int]
    customer_name: str
    status: str
    services: list[ServiceLine]
    service_duration_minutes: int
    formatted_times: FormattedTimes
    time_info: str


class Pagination(BaseModel):
    total: int
    limit: int
    offset: int
    has_more: bool


class BookingListResponse(BaseModel):
    bookings: list[BookingListItem]
    pagination: Pagination
    status_breakdown: dict[str, int]
    last_status_update: str


class PushSubscriptionKeys(BaseModel):
    p256dh: str
    auth: str


class PushSubscriptionData(BaseModel):
    endpoint: str
    expirationTime: Optional[float] = None
    keys: PushSubscriptionKeys


class SubscriptionStatus(BaseModel):
    subscribed: bool
