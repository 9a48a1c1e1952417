"""Leave tracker exceptions and their RFC 7807 problem+json rendering.

Every error a client can see is an ``AppException`` subclass; subclasses
only declare ``status_code`` / ``error_type`` / ``title`` and how the
detail and per-field ``errors`` are built.
"""

from __future__ import annotations

from typing import Any, ClassVar, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

BASE_ERROR_URI = "https://leave-tracker.local/errors"
PROBLEM_JSON = "application/problem+json"


# ── Exception hierarchy ─────────────────────────────────────────────

class AppException(Exception):
    """Base for all application exceptions → RFC 7807 JSON."""

    status_code: ClassVar[int] = 500
    error_type: ClassVar[str] = "internal-error"
    title: ClassVar[str] = "Internal Error"

    def __init__(
        self,
        detail: str,
        errors: Optional[dict[str, list[str]]] = None,
    ) -> None:
        self.detail = detail
        self.errors = errors
        super().__init__(detail)

    def to_problem(self, instance: str) -> dict[str, Any]:
        return _problem(
            self.status_code, self.error_type, self.title, self.detail, instance, self.errors,
        )


class NotFoundException(AppException):
    """404 — user, leave request or TOIL entry does not exist."""

    status_code = 404
    error_type = "not-found"
    title = "Not Found"

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        self.entity_type = entity_type
        super().__init__(f"{entity_type} with id '{entity_id}' does not exist.")


class ForbiddenException(AppException):
    """403 — wrong role, or acting on someone else's request."""

    status_code = 403
    error_type = "forbidden"
    title = "Forbidden"

    def __init__(
        self,
        detail: str = "You do not have permission to perform this action.",
    ) -> None:
        super().__init__(detail)


class ConflictError(AppException):
    """409 — the pending set or a row changed underneath a bulk decision."""

    status_code = 409
    error_type = "conflict"
    title = "Conflict"

    def __init__(
        self,
        detail: str = "Request state changed during processing. Please refresh and try again.",
        errors: Optional[dict[str, list[str]]] = None,
    ) -> None:
        super().__init__(detail, errors)


class ValidationException(AppException):
    """422 — a leave rule refused the operation; ``errors`` says which."""

    status_code = 422
    error_type = "validation-error"
    title = "Validation Error"

    def __init__(self, errors: dict[str, list[str]]) -> None:
        super().__init__("One or more fields failed validation.", errors)

    @property
    def messages(self) -> list[str]:
        """Flattened list of every message, in field order."""
        return [msg for msgs in (self.errors or {}).values() for msg in msgs]


class FeatureDisabledException(ValidationException):
    """A leave type or TOIL surface is switched off by its feature flag."""

    error_type = "feature-disabled"

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__({field: [message]})


class InvalidTransitionException(ValidationException):
    """A request status move the lifecycle does not allow."""

    error_type = "invalid-transition"

    def __init__(self, current: Any, target: Any, message: str) -> None:
        self.current = current
        self.target = target
        super().__init__({"status": [message]})


# ── RFC 7807 builder ────────────────────────────────────────────────

def _problem(
    status: int,
    error_type: str,
    title: str,
    detail: Any,
    instance: str,
    errors: Optional[dict[str, list[str]]] = None,
) -> dict[str, Any]:
    body: dict[str, Any] = {
        "type": f"{BASE_ERROR_URI}/{error_type}",
        "title": title,
        "status": status,
        "detail": detail,
        "instance": instance,
    }
    if errors:
        body["errors"] = errors
    return body


# ── FastAPI handlers ────────────────────────────────────────────────

async def _handle_app_exception(
    request: Request,
    exc: AppException,
) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_problem(str(request.url.path)),
        media_type=PROBLEM_JSON,
    )


async def _handle_http_exception(
    request: Request,
    exc: StarletteHTTPException,
) -> JSONResponse:
    """Auth failures (401) and routing errors in the same envelope."""
    titles = {401: "Unauthorized", 404: "Not Found", 405: "Method Not Allowed"}
    return JSONResponse(
        status_code=exc.status_code,
        content=_problem(
            exc.status_code,
            "unauthorized" if exc.status_code == 401 else "http-error",
            titles.get(exc.status_code, "HTTP Error"),
            exc.detail,
            str(request.url.path),
        ),
        media_type=PROBLEM_JSON,
        headers=getattr(exc, "headers", None),
    )


async def _handle_validation_error(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    field_errors: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = err.get("loc", ())
        # drop the leading "body" / "query" segment
        name = ".".join(str(p) for p in loc[1:]) if len(loc) > 1 else str(loc[0]) if loc else "unknown"
        field_errors.setdefault(name, []).append(err.get("msg", "Invalid value"))

    return JSONResponse(
        status_code=422,
        content=_problem(
            422, "validation-error", "Validation Error",
            "Request validation failed.", str(request.url.path), field_errors,
        ),
        media_type=PROBLEM_JSON,
    )


# ── Registration helper (called from main.py) ──────────────────────

def register_exception_handlers(app: FastAPI) -> None:
    """Attach all custom exception handlers to the FastAPI app."""
    app.add_exception_handler(AppException, _handle_app_exception)          # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, _handle_http_exception)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_validation_error)  # type: ignore[arg-type]
