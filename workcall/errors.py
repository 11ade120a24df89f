from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


class WorkCallError(Exception):
    code = "error"
    http_status = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(WorkCallError):
    code = "validation_error"
    http_status = 400


class NotFoundError(WorkCallError):
    code = "not_found"
    http_status = 404


class InvalidStateError(WorkCallError):
    code = "invalid_state"
    http_status = 409


class InvalidTransitionError(InvalidStateError):
    code = "invalid_transition"


class ConflictError(WorkCallError):
    code = "conflict"
    http_status = 409


class UpstreamError(WorkCallError):
    """
    Payment gateway / directory unreachable, timed out or returned an error.
    Retryable by the caller; retry_after (seconds) is the provider's hint when it gave one.
    """

    code = "upstream_error"
    http_status = 502

    def __init__(self, message: str, retry_after: int | None = None, http_status: int | None = None):
        super().__init__(message)
        self.retry_after = retry_after
        if http_status is not None:
            self.http_status = http_status


class PaymentVerificationError(UpstreamError):
    code = "payment_verification_failed"


def success(data) -> dict:
    return {"success": True, "data": data}


def failure(exc: WorkCallError) -> dict:
    error = {"code": exc.code, "message": exc.message}
    retry_after = getattr(exc, "retry_after", None)
    if retry_after is not None:
        error["retry_after"] = retry_after
    return {"success": False, "error": error}


async def workcall_error_handler(request: Request, exc: WorkCallError):
    headers = {}
    retry_after = getattr(exc, "retry_after", None)
    if retry_after is not None:
        headers["Retry-After"] = str(retry_after)
    return JSONResponse(status_code=exc.http_status, content=failure(exc), headers=headers)


async def request_validation_handler(request: Request, exc: RequestValidationError):
    problems = []
    for err in exc.errors():
        field = ".".join(str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path"))
        problems.append(f"{field}: {err.get('msg')}" if field else err.get("msg", "invalid"))
    error = ValidationError("Invalid request: " + "; ".join(problems))
    return JSONResponse(status_code=error.http_status, content=failure(error))


def install_error_handlers(app: FastAPI):
    app.add_exception_handler(WorkCallError, workcall_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
