import enum

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


class BookingStatus(str, enum.Enum):
    """Closed set of booking states

    booked -> in_service -> completed
    booked -> cancelled (customer, shop or missed)
    in_service -> cancelled (customer or shop)
    """

    BOOKED = "booked"
    IN_SERVICE = "in_service"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self in (BookingStatus.COMPLETED, BookingStatus.CANCELLED)


ACTIVE_STATUSES = (BookingStatus.BOOKED, BookingStatus.IN_SERVICE)


class CancelledBy(str, enum.Enum):
    CUSTOMER = "customer"
    SHOP = "shop"
    SYSTEM = "system"


class NotificationTarget(str, enum.Enum):
    CUSTOMER = "customer"
    SHOP = "shop"


def _enum_column(enum_cls, **kwargs):
    return Column(
        Enum(
            enum_cls,
            native_enum=False,
            length=20,
            validate_strings=True,
            values_callable=lambda members: [m.value for m in members],
        ),
        **kwargs,
    )


employee_services = Table(
    "employee_services",
    Base.metadata,
    Column("employee_id", Integer, ForeignKey("employees.id", ondelete="CASCADE"), primary_key=True),
    Column("service_id", Integer, ForeignKey("services.id", ondelete="CASCADE"), primary_key=True),
)


class Shop(Base):
    __tablename__ = "shops"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    address = Column(String(500), nullable=True)
    phone = Column(String(50), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    employees = relationship("Employee", back_populates="shop")
    services = relationship("Service", back_populates="shop")


class Employee(Base):
    __tablename__ = "employees"

    id = Column(Integer, primary_key=True, index=True)
    shop_id = Column(Integer, ForeignKey("shops.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    shop = relationship("Shop", back_populates="employees")
    services = relationship("Service", secondary=employee_services, back_populates="employees")


class Customer(Base):
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    phone = Column(String(50), nullable=True)
    created_at = Column(DateTime, server_default=func.now())


class Service(Base):
    __tablename__ = "services"

    id = Column(Integer, primary_key=True, index=True)
    shop_id = Column(Integer, ForeignKey("shops.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    duration_minutes = Column(Integer, nullable=False)

    shop = relationship("Shop", back_populates="services")
    employees = relationship("Employee", secondary=employee_services, back_populates="services")


class Booking(Base):
    """One customer's visit with one employee.

    join_time/end_time are naive UTC instants and always satisfy
    end_time == join_time + service_duration_minutes.
    """

    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    shop_id = Column(Integer, ForeignKey("shops.id"), nullable=False, index=True)
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=False)
    # NULL for walk-in customers
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=True, index=True)

    # Snapshot of the booked services: [{"id", "name", "duration_minutes"}]
    services = Column(JSON, nullable=False, default=list)
    service_duration_minutes = Column(Integer, nullable=False)

    join_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    status = _enum_column(BookingStatus, nullable=False, default=BookingStatus.BOOKED)

    cancelled_by = _enum_column(CancelledBy, nullable=True)
    cancellation_reason = Column(String(50), nullable=True)  # customer_cancelled, shop_cancelled, missed

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    shop = relationship("Shop")
    employee = relationship("Employee")
    customer = relationship("Customer")

    __table_args__ = (
        Index("ix_bookings_employee_status_join", "employee_id", "status", "join_time"),
    )

    @property
    def customer_name(self) -> str:
        return self.customer.name if self.customer else "Walk-in Customer"


class PushSubscription(Base):
    """Web Push subscription of a customer or a shop (one per target)"""

    __tablename__ = "push_subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    target_kind = _enum_column(NotificationTarget, nullable=False)
    target_id = Column(Integer, nullable=False)
    endpoint = Column(String(1000), nullable=False)
    subscription_data = Column(JSON, nullable=False)  # {"endpoint", "keys": {"p256dh", "auth"}}
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("target_kind", "target_id", name="uq_push_subscription_target"),
    )
