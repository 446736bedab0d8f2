"""Booking, status history, and availability data models."""

from datetime import date, datetime, time
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from carwash.schemas.customer_schema import Customer
from carwash.schemas.resource_schema import VehicleSize


class BookingStatus(str, Enum):
    """Lifecycle status of a booking."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


TERMINAL_STATUSES = frozenset(
    {BookingStatus.COMPLETED, BookingStatus.CANCELLED, BookingStatus.NO_SHOW}
)


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"


class ActorRole(str, Enum):
    """Who is asking for a status change."""

    CUSTOMER = "customer"
    STAFF = "staff"
    ADMIN = "admin"
    SYSTEM = "system"


class Booking(BaseModel):
    """
    A reserved wash.

    Instances are frozen: the store hands out snapshots, and every change
    goes through ``model_copy(update=...)`` inside a store transaction.
    ``end_time`` is derived from the service duration once at creation.
    """

    model_config = ConfigDict(frozen=True)

    id: int
    service_id: int
    date: date
    start_time: time
    end_time: time
    duration_minutes: int
    price_cents: int
    status: BookingStatus = BookingStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.PENDING
    customer: Customer
    vehicle_size: VehicleSize = VehicleSize.MEDIUM
    vehicle_description: Optional[str] = None
    license_plate: Optional[str] = None
    notes: Optional[str] = None
    confirmation_code: str
    assigned_bay_id: Optional[int] = None
    assigned_at: Optional[datetime] = None
    assigned_by: Optional[str] = None
    payment_id: Optional[str] = None
    cancellation_reason: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.date, self.start_time)

    @property
    def ends_at(self) -> datetime:
        return datetime.combine(self.date, self.end_time)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class BookingStatusHistory(BaseModel):
    """One append-only audit row per status change."""

    model_config = ConfigDict(frozen=True)

    id: int
    booking_id: int
    from_status: Optional[BookingStatus] = None
    to_status: BookingStatus
    actor: str
    actor_role: ActorRole
    reason: Optional[str] = None
    notes: Optional[str] = None
    compensation: bool = False
    created_at: datetime


class BookingRequest(BaseModel):
    """Validated booking intake data."""

    service_id: int
    date: date
    start_time: time
    customer: Customer
    vehicle_size: VehicleSize = VehicleSize.MEDIUM
    vehicle_description: Optional[str] = None
    license_plate: Optional[str] = None
    notes: Optional[str] = None


class BookingOptions(BaseModel):
    """Per-call switches for ``BookingService.create_booking``."""

    skip_availability_check: bool = False
    require_payment: bool = False
    send_confirmation: bool = True
    actor: str = "system"
    actor_role: ActorRole = ActorRole.SYSTEM


class TimeSlot(BaseModel):
    """One candidate start time on the daily grid."""

    time: str
    available: bool
    capacity: int
    remaining_capacity: int


class SweepResult(BaseModel):
    """Outcome of one no-show sweep."""

    processed: int = 0
    transitioned: list[int] = Field(default_factory=list)
    failed: dict[int, str] = Field(default_factory=dict)


class WorkflowValidation(BaseModel):
    """Outcome of replaying a booking's status history."""

    booking_id: int
    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
