"""
Payment gateway interface and an in-memory gateway for local runs and tests.

Charges take an idempotency key so a retried saga step never captures twice.
"""

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from typing import Optional

from carwash.errors import PaymentError
from carwash.scheduling.clock import Clock, system_clock
from carwash.schemas.payment_schema import PaymentReceipt, PaymentRequest, RefundReceipt

logger = logging.getLogger(__name__)


class PaymentGateway(ABC):
    @abstractmethod
    def charge(self, request: PaymentRequest, amount_cents: int, idempotency_key: str) -> PaymentReceipt:
        """Capture ``amount_cents``. Raises PaymentError when declined."""

    @abstractmethod
    def refund(self, payment_id: str, amount_cents: int) -> RefundReceipt:
        """Refund part or all of a captured payment."""

    @abstractmethod
    def reverse_refund(self, refund_id: str) -> None:
        """Cancel a refund issued by a saga that later failed."""


class MockPaymentGateway(PaymentGateway):
    """
    Deterministic gateway.

    ``declined_methods`` always fail with PaymentError. ``transient_failures``
    makes the next N charges raise ConnectionError, to exercise retries.
    """

    def __init__(
        self,
        declined_methods: Optional[set[str]] = None,
        transient_failures: int = 0,
        clock: Clock = system_clock,
    ) -> None:
        self.declined_methods = set(declined_methods or ())
        self.transient_failures = transient_failures
        self.fail_refunds = False
        self.charges: dict[str, PaymentReceipt] = {}
        self.refunds: dict[str, RefundReceipt] = {}
        self.charge_attempts = 0
        self._by_key: dict[str, str] = {}
        self._clock = clock
        self._lock = threading.Lock()

    def charge(self, request: PaymentRequest, amount_cents: int, idempotency_key: str) -> PaymentReceipt:
        with self._lock:
            self.charge_attempts += 1
            if self.transient_failures > 0:
                self.transient_failures -= 1
                raise ConnectionError("Payment provider timed out")
            if request.payment_method_id in self.declined_methods:
                raise PaymentError(
                    f"Card declined for {request.customer_email}",
                    payment_method_id=request.payment_method_id,
                )
            existing = self._by_key.get(idempotency_key)
            if existing is not None:
                return self.charges[existing]

            receipt = PaymentReceipt(
                payment_id=f"pay_{uuid.uuid4().hex[:12]}",
                amount_cents=amount_cents,
                currency=request.currency,
                captured_at=self._clock(),
            )
            self.charges[receipt.payment_id] = receipt
            self._by_key[idempotency_key] = receipt.payment_id
        logger.info("Captured %d %s as %s", amount_cents, request.currency, receipt.payment_id)
        return receipt

    def refund(self, payment_id: str, amount_cents: int) -> RefundReceipt:
        with self._lock:
            if self.fail_refunds:
                raise PaymentError(f"Refund rejected for {payment_id}", payment_id=payment_id)
            charge = self.charges.get(payment_id)
            if charge is None:
                raise PaymentError(f"Unknown payment {payment_id}", payment_id=payment_id)
            already = sum(r.amount_cents for r in self.refunds.values() if r.payment_id == payment_id)
            if already + amount_cents > charge.amount_cents:
                raise PaymentError(
                    f"Refund of {amount_cents} exceeds captured amount for {payment_id}",
                    payment_id=payment_id,
                )
            receipt = RefundReceipt(
                refund_id=f"re_{uuid.uuid4().hex[:12]}",
                payment_id=payment_id,
                amount_cents=amount_cents,
                created_at=self._clock(),
            )
            self.refunds[receipt.refund_id] = receipt
        logger.info("Refunded %d on %s as %s", amount_cents, payment_id, receipt.refund_id)
        return receipt

    def reverse_refund(self, refund_id: str) -> None:
        with self._lock:
            if self.refunds.pop(refund_id, None) is None:
                raise PaymentError(f"Unknown refund {refund_id}", refund_id=refund_id)
        logger.info("Reversed refund %s", refund_id)

    def refunded_total(self, payment_id: str) -> int:
        return sum(r.amount_cents for r in self.refunds.values() if r.payment_id == payment_id)
