from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from django.db.models import ProtectedError
from rest_framework import status
from rest_framework.exceptions import (
    APIException,
    AuthenticationFailed,
    MethodNotAllowed,
    NotAuthenticated,
    NotFound,
    ParseError,
    PermissionDenied,
    Throttled,
    ValidationError,
)
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

logger = logging.getLogger(__name__)

GENERIC_SERVER_ERROR_MESSAGE = "An unexpected error occurred."

EXCEPTION_CODE_MAP: dict[type[Exception], str] = {
    ValidationError: "validation_error",
    NotAuthenticated: "not_authenticated",
    AuthenticationFailed: "authentication_failed",
    PermissionDenied: "permission_denied",
    NotFound: "not_found",
    MethodNotAllowed: "method_not_allowed",
    ParseError: "parse_error",
    Throttled: "throttled",
}


class DomainError(Exception):
    """A business rule rejected the operation.

    Raised from service code, outside of any serializer, and rendered by
    `custom_exception_handler` with the subclass's code, message and status.
    """

    code = "domain_error"
    message = "The request could not be processed."
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, reason: str, details: dict | None = None):
        self.reason = reason
        self.details = details or {}
        super().__init__(reason)


def build_error_envelope(*, code: str, message: str, errors: Any, status_code: int) -> dict[str, Any]:
    return {
        "code": code,
        "message": message,
        "errors": errors,
        "status": status_code,
    }


def error_response(
    *,
    code: str,
    message: str,
    errors: Any = None,
    status_code: int = status.HTTP_400_BAD_REQUEST,
) -> Response:
    return Response(
        build_error_envelope(code=code, message=message, errors=errors, status_code=status_code),
        status=status_code,
    )


def _view_name(context: dict[str, Any]) -> str:
    view = context.get("view")
    return view.__class__.__name__ if view is not None else "unknown"


def _domain_error_response(exc: DomainError, context: dict[str, Any]) -> Response:
    logger.warning("domain_error reason=%s view=%s", exc.reason, _view_name(context))
    return error_response(
        code=exc.code,
        message=exc.message,
        errors=exc.details or {"reason": exc.reason},
        status_code=exc.status_code,
    )


def _protected_record_response(exc: ProtectedError) -> Response:
    # PROTECT foreign keys: a supplier with products, a client or product with sales.
    blocker = next(iter(exc.protected_objects), None)
    return error_response(
        code="protected_record",
        message="This record is still referenced and cannot be deleted.",
        errors={"referenced_by": str(blocker._meta.verbose_name_plural)} if blocker is not None else None,
    )


def custom_exception_handler(exc: Exception, context: dict[str, Any]) -> Response:
    if isinstance(exc, DomainError):
        return _domain_error_response(exc, context)
    if isinstance(exc, ProtectedError):
        return _protected_record_response(exc)

    response = drf_exception_handler(exc, context)
    if response is None:
        logger.exception("Unhandled API exception in %s", _view_name(context))
        return error_response(
            code="internal_server_error",
            message=GENERIC_SERVER_ERROR_MESSAGE,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    response.data = build_error_envelope(
        code=_build_code(exc),
        message=_build_message(exc, response.data),
        errors=_normalize_errors(response.data),
        status_code=response.status_code,
    )
    return response


def _build_code(exc: Exception) -> str:
    for exception_type, stable_code in EXCEPTION_CODE_MAP.items():
        if isinstance(exc, exception_type):
            return stable_code
    return str(getattr(exc, "default_code", "api_error"))


def _build_message(exc: Exception, data: Any) -> str:
    if isinstance(exc, ValidationError):
        return "Validation failed."

    detail = data.get("detail") if isinstance(data, Mapping) else data if isinstance(data, str) else None
    if detail:
        return str(detail)
    if isinstance(exc, APIException):
        return str(exc.detail)
    return GENERIC_SERVER_ERROR_MESSAGE


def _normalize_errors(data: Any) -> Any:
    if isinstance(data, Mapping):
        return None if set(data.keys()) == {"detail"} else data
    if isinstance(data, Sequence) and not isinstance(data, str):
        return data
    return None
