"""Common module — shared utilities for the leave ledger."""

from leave_ledger.common.audit import (
    AuditEvent,
    AuditMixin,
    AuditSink,
    AuditTrail,
    DatabaseAuditSink,
    create_audit_entry,
    record_best_effort,
)
from leave_ledger.common.constants import (
    ACTIVE_STATES,
    AllocationMode,
    ConsumptionState,
    DecisionAction,
    LeaveUnit,
    LedgerAction,
    MinUnit,
)
from leave_ledger.common.exceptions import (
    AppException,
    BlackoutDateError,
    ClosedDayError,
    ConflictError,
    InsufficientBalanceError,
    NotFoundException,
    TransientError,
    ValidationException,
    register_exception_handlers,
)

__all__ = [
    # Audit
    "AuditEvent",
    "AuditMixin",
    "AuditSink",
    "AuditTrail",
    "DatabaseAuditSink",
    "create_audit_entry",
    "record_best_effort",
    # Constants / Enums
    "ACTIVE_STATES",
    "AllocationMode",
    "ConsumptionState",
    "DecisionAction",
    "LeaveUnit",
    "LedgerAction",
    "MinUnit",
    # Exceptions
    "AppException",
    "BlackoutDateError",
    "ClosedDayError",
    "ConflictError",
    "InsufficientBalanceError",
    "NotFoundException",
    "TransientError",
    "ValidationException",
    "register_exception_handlers",
]
