# core/errors.py
"""
Application error taxonomy.

Services raise these; ``register_exception_handlers`` renders them as
``{"message": ...}`` JSON bodies with the status code each class carries.
"""
import logging
import traceback
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from core.config import settings

logger = logging.getLogger(__name__)


class AppError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    message: str = "Something went wrong."

    def __init__(self, message: Optional[str] = None, **extra: Any):
        self.message = message or self.message
        self.extra = extra
        super().__init__(self.message)

    def to_content(self) -> Dict[str, Any]:
        return {"message": self.message, **self.extra}


# ----------------------------------------------------------------------
# 400: input
# ----------------------------------------------------------------------
class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Validation failed."

    def __init__(self, message: Optional[str] = None, errors: Optional[List[Dict[str, str]]] = None):
        super().__init__(message, errors=errors or [])


# ----------------------------------------------------------------------
# 401 / 403: access control
# ----------------------------------------------------------------------
class Unauthenticated(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Authentication required."


class Forbidden(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    message = "You do not have permission to perform this action."


# ----------------------------------------------------------------------
# 404: missing records
# ----------------------------------------------------------------------
class NotFound(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    message = "Not found."


class UserNotFound(NotFound):
    message = "User not found."


class ReferenceNotFound(NotFound):
    message = "Organization or plan not found."


# ----------------------------------------------------------------------
# Conflicts (400)
# ----------------------------------------------------------------------
class Conflict(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Request conflicts with the current state."


class DuplicateEmail(Conflict):
    message = "User already exists."


class UserLimitReached(Conflict):
    def __init__(self, current: int, maximum: int, plan_name: Optional[str]):
        super().__init__(
            f"User limit reached ({current}/{maximum}). Please upgrade your plan to add more users.",
            currentUsers=current,
            maxUsers=maximum,
            planName=plan_name,
        )


class SubscriptionNotActive(Conflict):
    message = "Cannot add users: Organization subscription is not active."


class CannotModifySelf(Conflict):
    message = "You cannot perform this action on your own account."


class SeatContention(Conflict):
    message = "Too many concurrent changes to this organization's seats. Please retry."


# ----------------------------------------------------------------------
# Billing provider
# ----------------------------------------------------------------------
class UpstreamBillingError(AppError):
    status_code = status.HTTP_502_BAD_GATEWAY
    message = "Billing provider request failed."


class SignatureVerificationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Webhook signature verification failed."


# ----------------------------------------------------------------------
# 500: server side, not user-correctable
# ----------------------------------------------------------------------
class Misconfiguration(AppError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    message = "Server is misconfigured."


class PlanNotConfigured(Misconfiguration):
    message = "Basic plan not found."


# ==========================================================
# ✅ Handlers
# ==========================================================
def _with_stack(content: Dict[str, Any], exc: BaseException) -> Dict[str, Any]:
    if settings.IS_DEVELOPMENT:
        content["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return content


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
        content = _with_stack(exc.to_content(), exc)
    else:
        logger.info("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
        content = exc.to_content()
    return JSONResponse(status_code=exc.status_code, content=content)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = []
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", []) if part != "body"]
        errors.append({"field": ".".join(loc), "message": error.get("msg", "Invalid value")})
    logger.info("Validation error on %s %s: %s", request.method, request.url.path, errors)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"message": "Validation failed.", "errors": errors},
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_with_stack({"message": "Something went wrong."}, exc),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
