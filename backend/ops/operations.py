"""
Explicit operation objects with cancellation.

An Operation wraps one unit of work (usually a command call) and moves
through PENDING -> RUNNING -> SUCCEEDED | FAILED, or to CANCELLED if it is
cancelled before it finishes. Done-callbacks apply the outcome (for
example publish a notification); they never run for a cancelled
operation, and never run once the owning scope is closed, so a result
that arrives after its requester went away is dropped instead of applied.

An OperationScope owns the operations started for one request. The
request-scope middleware closes it when the response is produced, which
cancels anything still pending.

Usage:
    scope = OperationScope(notifications)
    op = scope.start("create_invoice", create_invoice, actor, **data)
    op.add_done_callback(lambda o: ...)
    result = op.run().result()
    ...
    scope.close()
"""
import logging
import threading
from enum import Enum
from typing import Any, Callable, List, Optional

from ops.notifications import NotificationCenter

logger = logging.getLogger(__name__)


class OperationState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class OperationCancelled(Exception):
    """Raised when the result of a cancelled operation is requested."""


class Operation:
    def __init__(self, name: str, fn: Callable, *args, scope: "OperationScope" = None, **kwargs):
        self.name = name
        self._fn = fn
        self._args = args
        self._kwargs = kwargs
        self._scope = scope
        self._lock = threading.Lock()
        self._callbacks: List[Callable[["Operation"], None]] = []
        self.state = OperationState.PENDING
        self._result: Any = None
        self._error: Optional[BaseException] = None

    def __repr__(self):
        return f"<Operation {self.name} {self.state.value}>"

    @property
    def done(self) -> bool:
        return self.state in (
            OperationState.SUCCEEDED,
            OperationState.FAILED,
            OperationState.CANCELLED,
        )

    @property
    def cancelled(self) -> bool:
        return self.state == OperationState.CANCELLED

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    def cancel(self) -> bool:
        """
        Cancel the operation. Returns False if it already finished.

        A running operation cannot be interrupted, but once cancelled its
        outcome is discarded and its callbacks are not invoked.
        """
        with self._lock:
            if self.state in (OperationState.SUCCEEDED, OperationState.FAILED):
                return False
            self.state = OperationState.CANCELLED
            self._callbacks.clear()
        return True

    def add_done_callback(self, callback: Callable[["Operation"], None]) -> None:
        """Run `callback(self)` once the operation finishes (immediately if it has)."""
        with self._lock:
            if not self.done:
                self._callbacks.append(callback)
                return
            if self.cancelled:
                return
        self._invoke(callback)

    def run(self) -> "Operation":
        with self._lock:
            if self.state != OperationState.PENDING:
                return self
            self.state = OperationState.RUNNING

        try:
            result = self._fn(*self._args, **self._kwargs)
        except Exception as exc:
            outcome, value, error = OperationState.FAILED, None, exc
        else:
            outcome, value, error = OperationState.SUCCEEDED, result, None

        with self._lock:
            if self.state == OperationState.CANCELLED:
                logger.info("Discarding result of cancelled operation", extra={"operation": self.name})
                return self
            self.state = outcome
            self._result = value
            self._error = error
            callbacks, self._callbacks = self._callbacks, []

        for callback in callbacks:
            self._invoke(callback)
        return self

    def result(self):
        """Return the operation's value, re-raising its error if it failed."""
        if self.state == OperationState.CANCELLED:
            raise OperationCancelled(f"Operation {self.name} was cancelled.")
        if self.state == OperationState.FAILED:
            raise self._error
        if self.state != OperationState.SUCCEEDED:
            raise RuntimeError(f"Operation {self.name} has not finished.")
        return self._result

    def _invoke(self, callback) -> None:
        if self._scope is not None and self._scope.closed:
            return
        callback(self)


class OperationScope:
    """Owns the operations of one request (or one job)."""

    def __init__(self, notifications: Optional[NotificationCenter] = None):
        self.notifications = notifications if notifications is not None else NotificationCenter()
        self._operations: List[Operation] = []
        self.closed = False

    def start(self, name: str, fn: Callable, *args, **kwargs) -> Operation:
        if self.closed:
            raise RuntimeError("Cannot start an operation in a closed scope.")
        operation = Operation(name, fn, *args, scope=self, **kwargs)
        self._operations.append(operation)
        return operation

    @property
    def operations(self) -> List[Operation]:
        return list(self._operations)

    def close(self) -> int:
        """Cancel every unfinished operation; returns how many were cancelled."""
        cancelled = 0
        for operation in self._operations:
            if not operation.done and operation.cancel():
                cancelled += 1
        self.closed = True
        return cancelled


def _publish_outcome(notifications: NotificationCenter, success_message, failure_message):
    def callback(operation: Operation) -> None:
        if operation.state == OperationState.FAILED:
            notifications.error(str(operation.error) or failure_message)
            return
        result = operation.result()
        if getattr(result, "success", True):
            if success_message:
                notifications.success(success_message)
        else:
            notifications.error(getattr(result, "error", None) or failure_message)

    return callback


def execute_command(
    request,
    command: Callable,
    *args,
    success_message: str = None,
    failure_message: str = "Operation failed",
    **kwargs,
):
    """
    Run a command as an operation of the request's scope.

    Publishes a success notification, or a failure notification carrying the
    command's error (falling back to `failure_message`), then returns the
    CommandResult. Exceptions raised by the command propagate to the view.
    """
    scope = getattr(request, "operations", None)
    if scope is None:
        scope = OperationScope(getattr(request, "notifications", None))

    operation = scope.start(command.__name__, command, *args, **kwargs)
    operation.add_done_callback(
        _publish_outcome(scope.notifications, success_message, failure_message)
    )
    return operation.run().result()
