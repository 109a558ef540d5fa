import logging
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base for errors that map onto a client-facing HTTP response with a stable code."""
    status_code = 500
    code = "INTERNAL_ERROR"
    message = "An internal server error occurred."

    def __init__(self, message: str | None = None, **details):
        self.message = message or self.message
        self.details = details
        super().__init__(self.message)


class NotFound(AppError):
    status_code = 404
    code = "NOT_FOUND"
    message = "Resource not found"

class DoctorNotFound(NotFound):
    code = "DOCTOR_NOT_FOUND"
    message = "Doctor not found"

class PatientNotFound(NotFound):
    code = "PATIENT_NOT_FOUND"
    message = "Patient profile not found"

class AppointmentNotFound(NotFound):
    code = "APPOINTMENT_NOT_FOUND"
    message = "Appointment not found"

class PaymentNotFound(NotFound):
    code = "PAYMENT_NOT_FOUND"
    message = "Payment not found"

class ScheduleNotFound(NotFound):
    code = "SCHEDULE_NOT_FOUND"
    message = "Schedule not found"


class Conflict(AppError):
    status_code = 409
    code = "CONFLICT"
    message = "Conflicting request"

class SlotUnavailable(Conflict):
    code = "SLOT_UNAVAILABLE"
    message = "This slot is not available for booking"


class Forbidden(AppError):
    status_code = 403
    code = "FORBIDDEN"
    message = "Forbidden"


class InvalidState(AppError):
    status_code = 409
    code = "INVALID_STATE"
    message = "Operation not allowed in the current state"

class PaymentAlreadySettled(InvalidState):
    code = "PAYMENT_ALREADY_SETTLED"
    message = "Payment already completed for this appointment"

class AppointmentCanceled(InvalidState):
    code = "APPOINTMENT_CANCELED"
    message = "Cannot pay for a cancelled appointment"

class InvalidStatusTransition(InvalidState):
    code = "INVALID_STATUS_TRANSITION"
    message = "Invalid status transition"


class ValidationFailed(AppError):
    status_code = 400
    code = "VALIDATION_FAILED"
    message = "Validation failed"


class UpstreamFailure(AppError):
    status_code = 502
    code = "UPSTREAM_FAILURE"
    message = "Payment gateway request failed"


async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error(f"{exc.code} for {request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.code} for {request.method} {request.url.path}: {exc.message}")
    content = {"success": False, "code": exc.code, "message": exc.message}
    if exc.details:
        content["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=content)


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.critical(f"Unhandled exception for request {request.method} {request.url.path}", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"success": False, "code": AppError.code, "message": AppError.message},
    )


def register_error_handlers(app: FastAPI):
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
