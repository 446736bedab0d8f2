"""
Generic saga runner.

A saga is an ordered list of ``SagaStep`` records. The runner executes them
in order, storing each result in ``SagaContext.step_results`` under the
step name so later steps and compensations can use it. When a step fails,
every step that already succeeded is compensated in reverse order, then the
original exception is raised to the caller.

Usage:
    runner = SagaRunner(max_attempts=3, backoff_seconds=0.5)
    execution = runner.run("create_booking", [
        SagaStep("create", create, compensate=cancel),
        SagaStep("charge", charge, compensate=refund, retryable=True),
    ])
    booking = execution.context.step_results["create"]
"""

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from carwash.errors import BookingError
from carwash.logging_context import get_operation_logger, new_operation_id, set_operation_id

logger = get_operation_logger(__name__)


@dataclass
class SagaContext:
    """State shared by every step of one saga run."""

    saga_id: str
    saga_name: str
    step_results: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class SagaStep:
    """One named unit of work and its optional undo."""

    name: str
    execute: Callable[[SagaContext], Any]
    compensate: Optional[Callable[[SagaContext, Any], None]] = None
    retryable: bool = False


@dataclass
class SagaExecution:
    """What happened during one saga run."""

    context: SagaContext
    executed_steps: list[str] = field(default_factory=list)
    compensated_steps: list[str] = field(default_factory=list)
    compensation_failures: dict[str, str] = field(default_factory=dict)
    failed_step: Optional[str] = None
    error: Optional[Exception] = None
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.error is None


class SagaRunner:
    """Runs sagas; owns retries, failure detection, and reverse compensation."""

    def __init__(
        self,
        max_attempts: int = 3,
        backoff_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep

    def execute(
        self,
        name: str,
        steps: list[SagaStep],
        metadata: Optional[dict[str, Any]] = None,
    ) -> SagaExecution:
        """Run a saga and report the outcome without raising."""
        saga_id = new_operation_id("saga")
        set_operation_id(saga_id)
        context = SagaContext(saga_id=saga_id, saga_name=name, metadata=dict(metadata or {}))
        execution = SagaExecution(context=context)
        started = time.monotonic()

        logger.info("Starting saga %s with %d steps", name, len(steps))
        completed: list[SagaStep] = []
        for step in steps:
            try:
                context.step_results[step.name] = self._run_step(step, context)
            except Exception as e:
                logger.error("Saga %s failed at step '%s': %s", name, step.name, e)
                execution.failed_step = step.name
                execution.error = e
                self._compensate(list(reversed(completed)), execution)
                break
            completed.append(step)
            execution.executed_steps.append(step.name)
            logger.debug("Saga %s: step '%s' completed", name, step.name)

        execution.duration_seconds = time.monotonic() - started
        if execution.succeeded:
            logger.info("Saga %s completed in %.3fs", name, execution.duration_seconds)
        else:
            logger.error(
                "Saga %s rolled back: %d compensated, %d compensation failures",
                name, len(execution.compensated_steps), len(execution.compensation_failures),
            )
        return execution

    def run(
        self,
        name: str,
        steps: list[SagaStep],
        metadata: Optional[dict[str, Any]] = None,
    ) -> SagaExecution:
        """
        Run a saga, raising the failing step's own exception on failure.

        Raises:
            Exception: Whatever the failing step raised, after compensation.
        """
        execution = self.execute(name, steps, metadata)
        if execution.error is not None:
            raise execution.error
        return execution

    def _run_step(self, step: SagaStep, context: SagaContext) -> Any:
        attempts = self.max_attempts if step.retryable else 1
        attempt = 1
        while True:
            try:
                return step.execute(context)
            except BookingError:
                # Domain errors are final, only infrastructure failures are retried.
                raise
            except Exception as e:
                if attempt >= attempts:
                    raise
                delay = self.backoff_seconds * (2 ** (attempt - 1))
                logger.warning(
                    "Step '%s' failed (attempt %d/%d), retrying in %.2fs: %s",
                    step.name, attempt, attempts, delay, e,
                )
                self._sleep(delay)
                attempt += 1

    def _compensate(self, steps: list[SagaStep], execution: SagaExecution) -> None:
        context = execution.context
        for step in steps:
            if step.compensate is None:
                continue
            try:
                step.compensate(context, context.step_results.get(step.name))
            except Exception as e:
                logger.critical(
                    "Compensation for step '%s' of saga %s failed, manual intervention "
                    "required: %s",
                    step.name, context.saga_id, e,
                )
                execution.compensation_failures[step.name] = str(e)
            else:
                execution.compensated_steps.append(step.name)
                logger.info("Compensated step '%s'", step.name)
