"""
Business exception to HTTP mapping and global exception handlers.

Every failure leaves the API in the unified envelope. Payment errors keep
their merchant detail in `error` while `data` carries a message safe for
the shopper.
"""
import traceback
import uuid

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette import status as http_status

from core.logging_config import get_logger
from core.response import Response, error_response
from domain.common.exceptions import BusinessException
from domain.payment.exceptions import GENERIC_PAYMENT_FAILED, shopper_message
from shared.codes import BusinessCode
from shared.codes.payment_codes import PaymentCode


logger = get_logger(__name__)

_HTTP_STATUS_BY_CODE = {
    BusinessCode.PARAM_ERROR: http_status.HTTP_400_BAD_REQUEST,
    BusinessCode.PARAM_MISSING: http_status.HTTP_400_BAD_REQUEST,
    BusinessCode.PARAM_VALIDATION_ERROR: http_status.HTTP_422_UNPROCESSABLE_ENTITY,
    BusinessCode.BUSINESS_ERROR: http_status.HTTP_400_BAD_REQUEST,
    BusinessCode.NOT_FOUND: http_status.HTTP_404_NOT_FOUND,
    BusinessCode.CONFLICT: http_status.HTTP_409_CONFLICT,
    BusinessCode.SYSTEM_ERROR: http_status.HTTP_500_INTERNAL_SERVER_ERROR,
    BusinessCode.DATABASE_ERROR: http_status.HTTP_500_INTERNAL_SERVER_ERROR,
    BusinessCode.NETWORK_ERROR: http_status.HTTP_502_BAD_GATEWAY,
    BusinessCode.SERVICE_UNAVAILABLE: http_status.HTTP_503_SERVICE_UNAVAILABLE,
    # gateway taxonomy
    PaymentCode.PROVIDER_ERROR: http_status.HTTP_502_BAD_GATEWAY,
    PaymentCode.TIMEOUT: http_status.HTTP_504_GATEWAY_TIMEOUT,
    PaymentCode.CONFIGURATION_ERROR: http_status.HTTP_400_BAD_REQUEST,
    PaymentCode.GATEWAY_AUTH_ERROR: http_status.HTTP_502_BAD_GATEWAY,
    PaymentCode.HANDSHAKE_ERROR: http_status.HTTP_502_BAD_GATEWAY,
    PaymentCode.PAYMENT_CREATE_ERROR: http_status.HTTP_400_BAD_REQUEST,
    PaymentCode.PAYMENT_EXECUTE_ERROR: http_status.HTTP_400_BAD_REQUEST,
    PaymentCode.VERIFICATION_ERROR: http_status.HTTP_400_BAD_REQUEST,
    PaymentCode.AMOUNT_MISMATCH: http_status.HTTP_409_CONFLICT,
}

_CODE_BY_HTTP_STATUS = {
    404: BusinessCode.NOT_FOUND,
    500: BusinessCode.SYSTEM_ERROR,
    503: BusinessCode.SERVICE_UNAVAILABLE,
}


def business_code_to_http_status(code: int) -> int:
    """Map a business code to an HTTP status (400 by default)."""
    return _HTTP_STATUS_BY_CODE.get(code, http_status.HTTP_400_BAD_REQUEST)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())


def _json(status_code: int, body: Response, headers=None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"), headers=headers)


def register_exception_handlers(app: FastAPI):
    """Install the envelope-producing handlers on `app`."""

    @app.exception_handler(BusinessException)
    async def business_exception_handler(request: Request, exc: BusinessException):
        request_id = _request_id(request)
        message = shopper_message(exc)
        logger.warning(
            "business_exception",
            request_id=request_id,
            code=int(exc.code),
            error_type=exc.error_type,
            error=exc.message,
            details=exc.details,
        )
        body = error_response(
            code=exc.code,
            message=message,
            error_type=exc.error_type,
            details=exc.details,
            field=exc.field,
            request_id=request_id,
            data={"success": False, "error": message},
        )
        return _json(business_code_to_http_status(exc.code), body)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        message = f"Validation failed: {first.get('msg', 'unknown')}"
        body = error_response(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="ValidationError",
            details={"errors": [{"loc": list(e.get("loc", [])), "msg": e.get("msg")} for e in errors]},
            field=".".join(str(loc) for loc in first.get("loc", [])[1:]),
            request_id=_request_id(request),
            data={"success": False, "error": message},
        )
        return _json(http_status.HTTP_422_UNPROCESSABLE_ENTITY, body)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        body = error_response(
            code=_CODE_BY_HTTP_STATUS.get(exc.status_code, BusinessCode.SYSTEM_ERROR),
            message=str(exc.detail),
            error_type="HTTPError",
            details={"status_code": exc.status_code},
            request_id=_request_id(request),
        )
        return _json(exc.status_code, body, headers=getattr(exc, "headers", None))

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        request_id = _request_id(request)
        logger.error("unhandled_exception", request_id=request_id, error=str(exc), exc_info=True)
        details = {"exception": str(exc), "traceback": traceback.format_exc()} if app.debug else None
        body = error_response(
            code=BusinessCode.SYSTEM_ERROR,
            message="Internal server error",
            error_type="SystemError",
            details=details,
            request_id=request_id,
            data={"success": False, "error": GENERIC_PAYMENT_FAILED},
        )
        return _json(http_status.HTTP_500_INTERNAL_SERVER_ERROR, body)
