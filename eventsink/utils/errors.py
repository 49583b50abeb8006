"""
Pipeline error taxonomy.

MalformedPayloadError   - required top-level shape missing; fatal for that event.
PersistenceError        - storage write/read failed; propagates in direct mode,
                          becomes a whole-batch re-queue in batched mode.
DeliveryLoggingError    - audit row could not be written; never propagated.
BatchFlushError         - the final drain-on-stop flush failed.
AccumulatorClosedError  - a record was offered to a stopped accumulator.
"""
from typing import Optional


class EventSinkError(Exception):
    """Base class for all pipeline errors."""


class MalformedPayloadError(EventSinkError):
    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"Malformed {source} payload: {reason}")


class PersistenceError(EventSinkError):
    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"{operation} failed{detail}")


class DeliveryLoggingError(EventSinkError):
    pass


class BatchFlushError(EventSinkError):
    def __init__(self, pending: int, cause: Optional[BaseException] = None):
        self.pending = pending
        self.cause = cause
        super().__init__(
            f"Final flush failed with {pending} events still buffered: {cause}"
        )


class AccumulatorClosedError(EventSinkError):
    """add() after stop(); nothing would flush the record."""
