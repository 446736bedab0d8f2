"""
Booking creation and cancellation.

``create_booking`` runs in one of two modes:

1. No payment: one transaction under the slot lock applies the intake rules,
   the capacity check, inserts the booking with a unique confirmation code,
   and writes the initial history row.
2. With payment: a saga of create -> charge -> finalize -> notify, where a
   failed step compensates the ones before it.

In both modes bay assignment runs afterwards in its own transaction and is
best-effort: a booking without a bay is still a booking.
"""

from datetime import date, time
from typing import Any, Callable, Optional

from carwash.booking.saga import SagaContext, SagaRunner, SagaStep
from carwash.config import BookingConfigProvider, BookingConfiguration, settings
from carwash.errors import (
    BookingNotFoundError,
    InvalidBookingRequestError,
    SlotUnavailableError,
)
from carwash.events import BOOKING_CREATED, EventBus, LifecycleEvent
from carwash.integrations.notifications import (
    BOOKING_CANCELLATION,
    BOOKING_CONFIRMATION,
    Notifier,
)
from carwash.integrations.payments import PaymentGateway
from carwash.logging_context import get_operation_logger, new_operation_id, set_operation_id
from carwash.scheduling.allocator import BayAllocator
from carwash.scheduling.availability import (
    competing_bookings,
    require_active_service,
    slot_capacity,
    slot_lock_key,
)
from carwash.scheduling.clock import Clock, add_minutes, format_hhmm, system_clock
from carwash.scheduling.conflicts import count_overlapping
from carwash.scheduling.rules import BookingRulePipeline
from carwash.schemas.booking_schema import (
    ActorRole,
    Booking,
    BookingOptions,
    BookingRequest,
    BookingStatus,
    PaymentStatus,
    TERMINAL_STATUSES,
)
from carwash.schemas.payment_schema import PaymentReceipt, PaymentRequest, RefundReceipt
from carwash.schemas.resource_schema import Service
from carwash.storage.base import BookingStore, booking_lock_key
from carwash.utils import generate_confirmation_code, is_valid_confirmation_code
from carwash.workflow.status_workflow import StatusWorkflow

logger = get_operation_logger(__name__)

MAX_CODE_ATTEMPTS = 10
SYSTEM_ACTOR = "system"


class BookingService:
    """Entry point for creating, cancelling, and looking up bookings."""

    def __init__(
        self,
        store: BookingStore,
        events: Optional[EventBus] = None,
        notifier: Optional[Notifier] = None,
        payments: Optional[PaymentGateway] = None,
        config_provider: Optional[BookingConfigProvider] = None,
        clock: Clock = system_clock,
        runner: Optional[SagaRunner] = None,
        code_generator: Callable[[], str] = generate_confirmation_code,
    ) -> None:
        self._store = store
        self._events = events
        self._notifier = notifier
        self._payments = payments
        self._config_provider = config_provider or BookingConfigProvider(store)
        self._clock = clock
        self._runner = runner or SagaRunner(
            max_attempts=settings.saga.max_attempts,
            backoff_seconds=settings.saga.retry_backoff_seconds,
        )
        self._generate_code = code_generator
        self._rules = BookingRulePipeline(store)
        self.workflow = StatusWorkflow(store, events, self._config_provider, clock)
        self.allocator = BayAllocator(store, events, clock)

    # --- Creation ---

    def create_booking(
        self,
        request: BookingRequest,
        payment: Optional[PaymentRequest] = None,
        options: Optional[BookingOptions] = None,
    ) -> Booking:
        """
        Create a booking for the requested slot.

        Args:
            request: Validated intake data (service, date, time, customer, vehicle).
            payment: Card reference to charge. Selects the saga mode when given.
            options: Per-call switches, see ``BookingOptions``.

        Returns:
            The booking as persisted after bay assignment.

        Raises:
            ServiceNotFoundError: Unknown or inactive service.
            BookingRuleError: Holiday, closed, outside hours, lead time, advance window.
            SlotUnavailableError: The slot is at capacity.
            PaymentError: The charge was declined (the booking is cancelled).
        """
        options = options or BookingOptions()
        if payment is None and options.require_payment:
            raise InvalidBookingRequestError("Payment details are required for this booking")

        config = self._config_provider.load()
        if payment is None:
            set_operation_id(new_operation_id("booking"))
            booking = self._insert_booking(
                request, options, config, confirm=config.auto_confirm
            )
            booking = self._assign_bay(booking, config)
            if options.send_confirmation:
                self._notify(BOOKING_CONFIRMATION, booking)
            return booking

        booking = self._create_with_payment(request, payment, options, config)
        return self._assign_bay(booking, config)

    def _unique_code(self) -> str:
        for _ in range(MAX_CODE_ATTEMPTS):
            code = self._generate_code()
            if not self._store.confirmation_code_exists(code):
                return code
            logger.warning("Confirmation code collision on %s, regenerating", code)
        raise RuntimeError(f"Could not generate a unique confirmation code in {MAX_CODE_ATTEMPTS} tries")

    def _end_time(self, start: time, duration_minutes: int) -> time:
        try:
            return add_minutes(start, duration_minutes)
        except ValueError:
            raise InvalidBookingRequestError(
                f"A {duration_minutes}-minute wash starting at {format_hhmm(start)} "
                "would run past midnight",
                start_time=format_hhmm(start),
            ) from None

    def _insert_booking(
        self,
        request: BookingRequest,
        options: BookingOptions,
        config: BookingConfiguration,
        confirm: bool,
    ) -> Booking:
        service = require_active_service(self._store, request.service_id)
        day, start = request.date, request.start_time
        end = self._end_time(start, service.duration_minutes)

        with self._store.transaction(slot_lock_key(day, service.id, config.capacity_policy)) as tx:
            now = self._clock()
            if not options.skip_availability_check:
                self._rules.enforce(day, start, end, config, now)
                self._check_capacity(day, start, end, service, config)

            booking = Booking(
                id=self._store.allocate_booking_id(),
                service_id=service.id,
                date=day,
                start_time=start,
                end_time=end,
                duration_minutes=service.duration_minutes,
                price_cents=service.price_cents,
                status=BookingStatus.PENDING,
                customer=request.customer,
                vehicle_size=request.vehicle_size,
                vehicle_description=request.vehicle_description,
                license_plate=request.license_plate,
                notes=request.notes,
                confirmation_code=self._unique_code(),
                created_at=now,
            )
            self._store.insert_booking(booking)
            self.workflow.record_creation(booking, options.actor, options.actor_role)
            created = booking
            tx.on_commit(lambda: self._publish_created(created, options.actor))

            if confirm:
                booking = self.workflow.execute(
                    booking.id,
                    BookingStatus.CONFIRMED,
                    actor=SYSTEM_ACTOR,
                    role=ActorRole.SYSTEM,
                    notes="Auto-confirmed",
                )

        logger.info(
            "Created booking %s (%s) for service %s on %s at %s",
            booking.id, booking.confirmation_code, service.id, day, format_hhmm(start),
        )
        return booking

    def _check_capacity(
        self,
        day: date,
        start: time,
        end: time,
        service: Service,
        config: BookingConfiguration,
        exclude_booking_id: Optional[int] = None,
    ) -> None:
        capacity = slot_capacity(self._store, service, config.capacity_policy)
        existing = [
            b for b in competing_bookings(self._store, day, service, config.capacity_policy)
            if b.id != exclude_booking_id
        ]
        if count_overlapping(start, end, existing) >= capacity:
            logger.info(
                "Slot %s on %s full for service %s (capacity %d)",
                format_hhmm(start), day, service.id, capacity,
            )
            raise SlotUnavailableError(day, start, service.id)

    def _assign_bay(self, booking: Booking, config: BookingConfiguration) -> Booking:
        if not config.auto_bay_assignment or booking.status in TERMINAL_STATUSES:
            return booking
        try:
            if not self.allocator.auto_assign(booking.id, assigned_by=SYSTEM_ACTOR):
                logger.warning("Booking %s left without a bay", booking.id)
        except Exception as e:
            logger.warning("Bay assignment failed for booking %s: %s", booking.id, e)
        return self._store.get_booking(booking.id) or booking

    def _create_with_payment(
        self,
        request: BookingRequest,
        payment: PaymentRequest,
        options: BookingOptions,
        config: BookingConfiguration,
    ) -> Booking:
        if self._payments is None:
            raise InvalidBookingRequestError("No payment gateway configured")

        def create(ctx: SagaContext) -> Booking:
            return self._insert_booking(request, options, config, confirm=False)

        def release(ctx: SagaContext, booking: Booking) -> None:
            current = self._store.get_booking(booking.id)
            if current is None or current.is_terminal:
                return
            self.workflow.execute(
                booking.id,
                BookingStatus.CANCELLED,
                actor=SYSTEM_ACTOR,
                role=ActorRole.SYSTEM,
                reason="Booking could not be completed",
                notes=f"Compensation for saga {ctx.saga_id}",
            )

        def charge(ctx: SagaContext) -> PaymentReceipt:
            booking: Booking = ctx.step_results["create"]
            amount = payment.amount_cents if payment.amount_cents is not None else booking.price_cents
            return self._payments.charge(payment, amount, idempotency_key=ctx.saga_id)

        def refund(ctx: SagaContext, receipt: PaymentReceipt) -> None:
            self._payments.refund(receipt.payment_id, receipt.amount_cents)
            booking: Booking = ctx.step_results["create"]
            self._set_payment(booking.id, PaymentStatus.REFUNDED, receipt.payment_id)

        def finalize(ctx: SagaContext) -> Booking:
            booking: Booking = ctx.step_results["create"]
            receipt: PaymentReceipt = ctx.step_results["charge"]
            with self._store.transaction(booking_lock_key(booking.id)):
                self._set_payment(booking.id, PaymentStatus.PAID, receipt.payment_id)
                return self.workflow.execute(
                    booking.id,
                    BookingStatus.CONFIRMED,
                    actor=SYSTEM_ACTOR,
                    role=ActorRole.SYSTEM,
                    notes=f"Payment {receipt.payment_id} captured",
                )

        def notify(ctx: SagaContext) -> None:
            if options.send_confirmation:
                self._notify(BOOKING_CONFIRMATION, ctx.step_results["finalize"])

        execution = self._runner.run(
            "create_booking",
            [
                SagaStep("create", create, compensate=release),
                SagaStep("charge", charge, compensate=refund, retryable=True),
                SagaStep("finalize", finalize),
                SagaStep("notify", notify),
            ],
            metadata={"service_id": request.service_id, "date": request.date.isoformat()},
        )
        return execution.context.step_results["finalize"]

    def _set_payment(
        self, booking_id: int, status: PaymentStatus, payment_id: Optional[str] = None
    ) -> Booking:
        with self._store.transaction(booking_lock_key(booking_id)):
            booking = self._store.get_booking(booking_id)
            if booking is None:
                raise BookingNotFoundError(booking_id)
            updates: dict[str, Any] = {"payment_status": status, "updated_at": self._clock()}
            if payment_id is not None:
                updates["payment_id"] = payment_id
            return self._store.update_booking(booking.model_copy(update=updates))

    # --- Cancellation ---

    def cancel_booking(
        self,
        booking_id: int,
        actor: str,
        role: ActorRole,
        reason: str,
        refund_amount_cents: Optional[int] = None,
    ) -> Booking:
        """
        Cancel a booking and refund a captured payment.

        Saga: validate -> transition -> refund -> notify. A failed refund
        restores the previous status; the refund is reversed if a later step
        fails.

        Raises:
            BookingNotFoundError: Unknown booking.
            InvalidTransitionError: Already terminal, missing reason, or deadline passed.
            PaymentError: The refund failed (the booking keeps its previous status).
        """

        def validate(ctx: SagaContext) -> Booking:
            return self.workflow.ensure_allowed(booking_id, BookingStatus.CANCELLED, role, reason)

        def transition(ctx: SagaContext) -> Booking:
            return self.workflow.execute(
                booking_id, BookingStatus.CANCELLED, actor=actor, role=role, reason=reason
            )

        def restore(ctx: SagaContext, cancelled: Booking) -> None:
            previous: Booking = ctx.step_results["validate"]
            self._restore_status(previous, ctx.saga_id)

        def refund(ctx: SagaContext) -> Optional[RefundReceipt]:
            booking: Booking = ctx.step_results["transition"]
            if booking.payment_status != PaymentStatus.PAID or not booking.payment_id:
                return None
            if self._payments is None:
                raise InvalidBookingRequestError("No payment gateway configured for refund")
            amount = refund_amount_cents if refund_amount_cents is not None else booking.price_cents
            receipt = self._payments.refund(booking.payment_id, amount)
            self._set_payment(booking_id, PaymentStatus.REFUNDED)
            return receipt

        def reverse_refund(ctx: SagaContext, receipt: Optional[RefundReceipt]) -> None:
            if receipt is None:
                return
            self._payments.reverse_refund(receipt.refund_id)
            self._set_payment(booking_id, PaymentStatus.PAID)

        def notify(ctx: SagaContext) -> None:
            self._notify(BOOKING_CANCELLATION, self._store.get_booking(booking_id))

        self._runner.run(
            "cancel_booking",
            [
                SagaStep("validate", validate),
                SagaStep("transition", transition, compensate=restore),
                SagaStep("refund", refund, compensate=reverse_refund),
                SagaStep("notify", notify),
            ],
            metadata={"booking_id": booking_id, "actor": actor},
        )
        return self._store.get_booking(booking_id)

    def _restore_status(self, previous: Booking, saga_id: str) -> Booking:
        """Put a cancelled booking back, provided nobody has taken its slot since."""
        config = self._config_provider.load()
        service = self._store.get_service(previous.service_id)
        slot_key = slot_lock_key(previous.date, previous.service_id, config.capacity_policy)
        with self._store.transaction(slot_key):
            if service is not None:
                self._check_capacity(
                    previous.date,
                    previous.start_time,
                    previous.end_time,
                    service,
                    config,
                    exclude_booking_id=previous.id,
                )
            return self.workflow.restore_status(
                previous.id,
                previous.status,
                actor=SYSTEM_ACTOR,
                reason=f"Cancellation rolled back by saga {saga_id}",
            )

    # --- Queries ---

    def get_booking(self, booking_id: int) -> Booking:
        booking = self._store.get_booking(booking_id)
        if booking is None:
            raise BookingNotFoundError(booking_id)
        return booking

    def get_booking_by_confirmation_code(self, code: str) -> Booking:
        normalized = code.strip().upper()
        if not is_valid_confirmation_code(normalized):
            raise BookingNotFoundError(code)
        booking = self._store.get_booking_by_code(normalized)
        if booking is None:
            raise BookingNotFoundError(code)
        return booking

    def get_upcoming_bookings(self, limit: int = 10) -> list[Booking]:
        """Active bookings that have not started yet, soonest first."""
        now = self._clock()
        upcoming = [
            b for b in self._store.list_bookings_from(now.date(), exclude_statuses=TERMINAL_STATUSES)
            if b.starts_at >= now
        ]
        return upcoming[:limit]

    # --- Side effects ---

    def _publish_created(self, booking: Booking, actor: str) -> None:
        if self._events is None:
            return
        self._events.publish(
            LifecycleEvent(
                name=BOOKING_CREATED,
                booking=booking,
                occurred_at=booking.created_at,
                new_status=booking.status,
                actor=actor,
            )
        )

    def _notify(self, kind: str, booking: Optional[Booking]) -> None:
        if self._notifier is None or booking is None:
            return
        payload = {
            "confirmation_code": booking.confirmation_code,
            "customer_name": booking.customer.name,
            "service_id": booking.service_id,
            "date": booking.date.isoformat(),
            "start_time": format_hhmm(booking.start_time),
            "status": booking.status.value,
        }
        try:
            self._notifier.send(kind, booking.customer.email, payload)
        except Exception as e:
            logger.warning(
                "Notification %s for booking %s failed: %s", kind, booking.id, e
            )
