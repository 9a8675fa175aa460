"""Service-level exceptions.

Services raise these (or a plain `ValueError` for bad input); controllers
translate them into HTTP errors with `http_error`. Every class derives
from `ValueError` so code written against the plain `ValueError`
contract keeps working.
"""

from fastapi import HTTPException


class ServiceError(ValueError):
    status_code = 400


class NotFoundError(ServiceError):
    status_code = 404


class ForbiddenError(ServiceError):
    status_code = 403


class ConflictError(ServiceError):
    status_code = 409


def http_error(exc: ValueError) -> HTTPException:
    """Map a service exception to an `HTTPException` carrying its message."""
    status = getattr(exc, "status_code", 400)
    return HTTPException(status_code=status, detail=str(exc))
