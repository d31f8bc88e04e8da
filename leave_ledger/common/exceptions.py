"""Custom exceptions and RFC 7807 Problem Detail error handlers."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

BASE_ERROR_URI = "https://leave-ledger.local/errors"


# ── Exception hierarchy ─────────────────────────────────────────────

class AppException(Exception):
    """Base for all application exceptions → RFC 7807 JSON."""

    retryable: bool = False

    def __init__(
        self,
        status_code: int,
        error_type: str,
        title: str,
        detail: str,
        errors: Optional[dict[str, Any]] = None,
    ) -> None:
        self.status_code = status_code
        self.error_type = error_type
        self.title = title
        self.detail = detail
        self.errors = errors
        super().__init__(detail)


class NotFoundException(AppException):
    """404 — entity not found."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            status_code=404,
            error_type="not-found",
            title=f"{entity_type} Not Found",
            detail=f"{entity_type} with id '{entity_id}' does not exist.",
        )


class ConflictError(AppException):
    """409 — the ledger is not in a state that allows the operation."""

    def __init__(self, reason: str, detail: str) -> None:
        self.reason = reason
        super().__init__(
            status_code=409,
            error_type="conflict",
            title="Conflict",
            detail=detail,
            errors={"reason": [reason]},
        )


class ValidationException(AppException):
    """422 — business-logic validation failures."""

    def __init__(
        self,
        errors: dict[str, list[str]],
        *,
        reason: str = "invalid",
    ) -> None:
        self.reason = reason
        super().__init__(
            status_code=422,
            error_type="validation-error",
            title="Validation Error",
            detail="One or more fields failed validation.",
            errors=errors,
        )


class ClosedDayError(AppException):
    """422 — a requested date is not a business day."""

    def __init__(self, day: date) -> None:
        self.day = day
        super().__init__(
            status_code=422,
            error_type="closed-day",
            title="Closed Day",
            detail=f"{day.isoformat()} is not a business day.",
            errors={"date": [day.isoformat()]},
        )


class BlackoutDateError(AppException):
    """422 — a requested date is blacked out by leave policy."""

    def __init__(self, day: date) -> None:
        self.day = day
        super().__init__(
            status_code=422,
            error_type="blackout-date",
            title="Blackout Date",
            detail=f"Leave cannot be taken on {day.isoformat()}.",
            errors={"date": [day.isoformat()]},
        )


class InsufficientBalanceError(AppException):
    """422 — grants cannot cover the hours needed on a date."""

    def __init__(self, day: date, shortfall: Decimal) -> None:
        self.day = day
        self.shortfall = shortfall
        super().__init__(
            status_code=422,
            error_type="insufficient-balance",
            title="Insufficient Balance",
            detail=(
                f"Insufficient leave balance on {day.isoformat()}: "
                f"short by {shortfall} hours."
            ),
            errors={"date": [day.isoformat()], "shortfall": [str(shortfall)]},
        )


class TransientError(AppException):
    """503 — lock timeout or serialization failure; safe to retry."""

    retryable = True

    def __init__(
        self,
        detail: str = "The ledger is busy. Please retry the operation.",
    ) -> None:
        super().__init__(
            status_code=503,
            error_type="transient",
            title="Service Busy",
            detail=detail,
        )


# ── RFC 7807 builder ────────────────────────────────────────────────

def _build_problem_detail(exc: AppException, request: Request) -> dict[str, Any]:
    body: dict[str, Any] = {
        "type": f"{BASE_ERROR_URI}/{exc.error_type}",
        "title": exc.title,
        "status": exc.status_code,
        "detail": exc.detail,
        "instance": str(request.url.path),
    }
    if exc.errors:
        body["errors"] = exc.errors
    if exc.retryable:
        body["retryable"] = True
    return body


# ── FastAPI handlers ────────────────────────────────────────────────

async def _handle_app_exception(
    request: Request,
    exc: AppException,
) -> JSONResponse:
    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(
        status_code=exc.status_code,
        content=_build_problem_detail(exc, request),
        media_type="application/problem+json",
        headers=headers,
    )


async def _handle_validation_error(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    field_errors: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = err.get("loc", ())
        name = (
            ".".join(str(p) for p in loc[1:])
            if len(loc) > 1
            else str(loc[0]) if loc else "unknown"
        )
        field_errors.setdefault(name, []).append(err.get("msg", "Invalid value"))

    return JSONResponse(
        status_code=422,
        content={
            "type": f"{BASE_ERROR_URI}/validation-error",
            "title": "Validation Error",
            "status": 422,
            "detail": "Request validation failed.",
            "instance": str(request.url.path),
            "errors": field_errors,
        },
        media_type="application/problem+json",
    )


# ── Registration helper (called from main.py) ──────────────────────

def register_exception_handlers(app: FastAPI) -> None:
    """Attach all custom exception handlers to the FastAPI app."""
    app.add_exception_handler(AppException, _handle_app_exception)          # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_validation_error)  # type: ignore[arg-type]
