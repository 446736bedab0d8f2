from carwash.booking.orchestrator import BookingService
from carwash.booking.saga import SagaContext, SagaExecution, SagaRunner, SagaStep

__all__ = ["BookingService", "SagaRunner", "SagaStep", "SagaContext", "SagaExecution"]
