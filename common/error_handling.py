"""
Error handling with standardized responses

API routes (``/api/...``) answer with the JSON error envelope; page routes
answer with an HTML error page rendered by the app-supplied renderer.
"""
from typing import Optional, Dict, Any, Callable
from fastapi import Request
from starlette.exceptions import HTTPException
from fastapi.responses import JSONResponse, Response
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel
import logging
import traceback
import time

logger = logging.getLogger(__name__)

class ErrorDetail(BaseModel):
    """Detailed error information"""
    code: str
    message: str
    field: Optional[str] = None
    context: Optional[Dict[str, Any]] = None

class StandardErrorResponse(BaseModel):
    """Standard error response format"""
    success: bool = False
    error: ErrorDetail
    timestamp: float
    trace_id: Optional[str] = None
    request_id: Optional[str] = None

class ErrorCodes:
    """Standard error codes"""
    # Authentication
    UNAUTHORIZED = "UNAUTHORIZED"
    INVALID_SESSION = "INVALID_SESSION"

    # Validation
    VALIDATION_ERROR = "VALIDATION_ERROR"
    MISSING_FIELD = "MISSING_FIELD"

    # Lookups
    NOT_FOUND = "NOT_FOUND"
    PAYMENT_NOT_FOUND = "PAYMENT_NOT_FOUND"
    RECEIVER_NOT_FOUND = "RECEIVER_NOT_FOUND"
    PROFILE_NOT_FOUND = "PROFILE_NOT_FOUND"

    # System / backend
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"
    BACKEND_ERROR = "BACKEND_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"

BUSINESS_STATUS_CODES = {
    ErrorCodes.UNAUTHORIZED: 401,
    ErrorCodes.INVALID_SESSION: 401,
    ErrorCodes.VALIDATION_ERROR: 400,
    ErrorCodes.MISSING_FIELD: 400,
    ErrorCodes.NOT_FOUND: 404,
    ErrorCodes.PAYMENT_NOT_FOUND: 404,
    ErrorCodes.RECEIVER_NOT_FOUND: 404,
    ErrorCodes.PROFILE_NOT_FOUND: 404,
}

SERVICE_STATUS_CODES = {
    ErrorCodes.BACKEND_ERROR: 502,
    ErrorCodes.SERVICE_UNAVAILABLE: 503,
    ErrorCodes.TIMEOUT_ERROR: 504,
}

class BusinessLogicError(Exception):
    """User-facing condition: missing records, bad input, no session"""
    def __init__(self, code: str, message: str, field: str = None, context: Dict[str, Any] = None):
        self.code = code
        self.message = message
        self.field = field
        self.context = context or {}
        super().__init__(message)

    @property
    def status_code(self) -> int:
        return BUSINESS_STATUS_CODES.get(self.code, 400)

class ServiceError(Exception):
    """Backend could not be reached or answered with an error"""
    def __init__(self, code: str, message: str, original_error: Exception = None):
        self.code = code
        self.message = message
        self.original_error = original_error
        super().__init__(message)

    @property
    def status_code(self) -> int:
        return SERVICE_STATUS_CODES.get(self.code, 500)

HtmlRenderer = Callable[[Request, int, str, str], Response]

def wants_json(request: Request) -> bool:
    return request.url.path.startswith("/api")

def create_error_response(
    error_code: str,
    message: str,
    status_code: int = 500,
    field: str = None,
    context: Dict[str, Any] = None,
    trace_id: str = None,
    request_id: str = None
) -> JSONResponse:
    """Create standardized error response"""
    error_response = StandardErrorResponse(
        error=ErrorDetail(code=error_code, message=message, field=field, context=context),
        timestamp=time.time(),
        trace_id=trace_id,
        request_id=request_id
    )
    return JSONResponse(status_code=status_code, content=error_response.model_dump())

def _ids(request: Request):
    return getattr(request.state, 'trace_id', None), getattr(request.state, 'request_id', None)

def add_error_handlers(app, html_renderer: Optional[HtmlRenderer] = None):
    """Register all error handlers on the FastAPI app"""

    def respond(request: Request, code: str, message: str, status_code: int,
                field: str = None, context: Dict[str, Any] = None) -> Response:
        if html_renderer is not None and not wants_json(request):
            return html_renderer(request, status_code, code, message)
        trace_id, request_id = _ids(request)
        return create_error_response(
            error_code=code,
            message=message,
            status_code=status_code,
            field=field,
            context=context,
            trace_id=trace_id,
            request_id=request_id
        )

    async def business_logic_exception_handler(request: Request, exc: BusinessLogicError):
        trace_id, request_id = _ids(request)
        logger.warning(f"Business logic error: {exc.code} - {exc.message}", extra={
            "error_code": exc.code,
            "trace_id": trace_id,
            "request_id": request_id,
            "field": exc.field,
        })
        return respond(request, exc.code, exc.message, exc.status_code, exc.field, exc.context)

    async def service_exception_handler(request: Request, exc: ServiceError):
        trace_id, request_id = _ids(request)
        logger.error(f"Service error: {exc.code} - {exc.message}", extra={
            "error_code": exc.code,
            "trace_id": trace_id,
            "request_id": request_id,
            "original_error": str(exc.original_error) if exc.original_error else None
        })
        return respond(request, exc.code, exc.message, exc.status_code)

    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        first_error = exc.errors()[0]
        field = ".".join(str(loc) for loc in first_error.get("loc", []))
        message = first_error.get("msg", "Validation error")
        logger.warning(f"Validation error: {message} on field {field}")
        return respond(
            request,
            ErrorCodes.VALIDATION_ERROR,
            f"Validation error on field '{field}': {message}",
            400,
            field=field,
        )

    async def http_exception_handler(request: Request, exc: HTTPException):
        status_to_code = {
            401: ErrorCodes.UNAUTHORIZED,
            404: ErrorCodes.NOT_FOUND,
            502: ErrorCodes.BACKEND_ERROR,
            503: ErrorCodes.SERVICE_UNAVAILABLE,
        }
        error_code = status_to_code.get(exc.status_code, ErrorCodes.INTERNAL_SERVER_ERROR)
        logger.warning(f"HTTP exception: {exc.status_code} - {exc.detail}")
        return respond(request, error_code, str(exc.detail), exc.status_code)

    async def general_exception_handler(request: Request, exc: Exception):
        trace_id, request_id = _ids(request)
        logger.error(f"Unexpected error: {str(exc)}", extra={
            "trace_id": trace_id,
            "request_id": request_id,
            "traceback": traceback.format_exc()
        })
        # Internal details stay in the log
        return respond(
            request,
            ErrorCodes.INTERNAL_SERVER_ERROR,
            "An unexpected error occurred. Please try again later.",
            500,
        )

    app.add_exception_handler(BusinessLogicError, business_logic_exception_handler)
    app.add_exception_handler(ServiceError, service_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
