"""Error taxonomy of the leave engine and its RFC 7807 rendering.

Every failure the engine reports on purpose derives from ``AppException``.
Subclasses pin the HTTP status, the problem ``type`` slug and the title;
instances supply the detail and, where useful, per-field messages.
Database errors are not wrapped and reach the caller unchanged.
"""

from __future__ import annotations

from typing import Any, ClassVar, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

BASE_ERROR_URI = "https://leave-engine.local/errors"
PROBLEM_JSON = "application/problem+json"


class AppException(Exception):
    status_code: ClassVar[int] = 500
    error_type: ClassVar[str] = "internal-error"
    default_title: ClassVar[str] = "Internal Error"

    def __init__(
        self,
        detail: str,
        *,
        title: Optional[str] = None,
        errors: Optional[dict[str, Any]] = None,
    ) -> None:
        self.detail = detail
        self.title = title or self.default_title
        self.errors = errors
        super().__init__(detail)

    def to_problem(self, instance: str) -> dict[str, Any]:
        body: dict[str, Any] = {
            "type": f"{BASE_ERROR_URI}/{self.error_type}",
            "title": self.title,
            "status": self.status_code,
            "detail": self.detail,
            "instance": instance,
        }
        if self.errors:
            body["errors"] = self.errors
        return body


class NotFoundException(AppException):
    """Employee, request, balance or approver does not exist."""

    status_code = 404
    error_type = "not-found"

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(
            f"{entity_type} with id '{entity_id}' does not exist.",
            title=f"{entity_type} Not Found",
        )
        self.entity_type = entity_type


class ConflictError(AppException):
    """A unique value is already taken."""

    status_code = 409
    error_type = "conflict"
    default_title = "Conflict"

    def __init__(self, field: str, value: Any) -> None:
        super().__init__(
            f"An entry with {field}='{value}' already exists.",
            errors={field: [f"'{value}' is already in use."]},
        )


class ForbiddenException(AppException):
    status_code = 403
    error_type = "forbidden"
    default_title = "Forbidden"

    def __init__(
        self, detail: str = "You do not have permission to perform this action."
    ) -> None:
        super().__init__(detail)


class ValidationException(AppException):
    """Business-rule failures.

    ``errors`` maps a field (or rule) name to every message raised against
    it; ``warnings`` carries the non-fatal findings of the same run.
    """

    status_code = 422
    error_type = "validation-error"
    default_title = "Validation Error"

    def __init__(
        self,
        errors: dict[str, list[str]],
        warnings: Optional[list[str]] = None,
    ) -> None:
        super().__init__("One or more fields failed validation.", errors=errors)
        self.warnings = list(warnings or [])

    @property
    def reasons(self) -> list[str]:
        return [msg for msgs in self.errors.values() for msg in msgs]

    def to_problem(self, instance: str) -> dict[str, Any]:
        body = super().to_problem(instance)
        if self.warnings:
            body["warnings"] = self.warnings
        return body


class StateConflictException(AppException):
    """The entity is no longer in the status the transition starts from."""

    status_code = 409
    error_type = "state-conflict"
    default_title = "State Conflict"

    def __init__(self, entity_type: str, entity_id: Any, current: str, action: str) -> None:
        super().__init__(
            f"Cannot {action} {entity_type} '{entity_id}': current status is '{current}'.",
            errors={"status": [current]},
        )
        self.current = current


class LedgerConflictException(AppException):
    """A conditional balance update matched no row."""

    status_code = 409
    error_type = "ledger-conflict"
    default_title = "Ledger Conflict"


# ── FastAPI handlers ────────────────────────────────────────────────

def _problem_response(status_code: int, body: dict[str, Any]) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=body, media_type=PROBLEM_JSON)


async def _handle_app_exception(request: Request, exc: AppException) -> JSONResponse:
    return _problem_response(exc.status_code, exc.to_problem(request.url.path))


def _field_name(loc: tuple) -> str:
    # loc starts with the source ("body", "query", "path") unless it is the only part
    if len(loc) > 1:
        return ".".join(str(part) for part in loc[1:])
    return str(loc[0]) if loc else "unknown"


async def _handle_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    field_errors: dict[str, list[str]] = {}
    for err in exc.errors():
        field_errors.setdefault(_field_name(tuple(err.get("loc", ()))), []).append(
            err.get("msg", "Invalid value")
        )

    return _problem_response(
        422,
        {
            "type": f"{BASE_ERROR_URI}/{ValidationException.error_type}",
            "title": ValidationException.default_title,
            "status": 422,
            "detail": "Request validation failed.",
            "instance": request.url.path,
            "errors": field_errors,
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppException, _handle_app_exception)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_validation_error)  # type: ignore[arg-type]
