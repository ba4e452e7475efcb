"""Error taxonomy and the FastAPI handlers that render it.

Every failure leaves the API as ``{"success": false, "message": ...}``;
validation failures also carry a field-level ``errors`` list.
"""

from typing import Any, Dict, List, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pymongo.errors import DuplicateKeyError

logger = structlog.get_logger(__name__)


class ApiError(Exception):
    status_code = 500
    default_message = "Server error"

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None, **details: Any):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        self.details = details
        super().__init__(self.message)

    def to_body(self) -> Dict[str, Any]:
        return {"success": False, "message": self.message, **self.details}


class Unauthenticated(ApiError):
    status_code = 401
    default_message = "Authentication required"


class Forbidden(ApiError):
    status_code = 403
    default_message = "Access denied"


class NotFound(ApiError):
    status_code = 404
    default_message = "Not found"


class ValidationFailed(ApiError):
    status_code = 400
    default_message = "Validation failed"

    def __init__(self, message: Optional[str] = None, errors: Optional[List[Dict[str, str]]] = None):
        if errors:
            super().__init__(message, errors=errors)
        else:
            super().__init__(message)


class Conflict(ApiError):
    status_code = 400
    default_message = "Already exists"


class InsufficientStock(ApiError):
    status_code = 400

    def __init__(self, product_id: str, name: str, available: int, requested: int):
        super().__init__(
            f"Insufficient stock for {name}. Available: {available}, Requested: {requested}",
            product_id=product_id,
            available=available,
            requested=requested,
        )


class InvalidTransition(ApiError):
    status_code = 400

    def __init__(self, kind: str, current: str, target: str):
        super().__init__(
            f"Cannot change {kind} from {current} to {target}",
            current=current,
            requested=target,
        )


class TooManyRequests(ApiError):
    status_code = 429
    default_message = "Too many requests, please try again later"


class ServerError(ApiError):
    status_code = 500


def _field_errors(exc: RequestValidationError) -> List[Dict[str, str]]:
    errors = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        errors.append({"field": ".".join(loc), "message": err.get("msg", "Invalid value")})
    return errors


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ApiError)
    async def handle_api_error(request: Request, exc: ApiError):
        if exc.status_code >= 500:
            logger.error("Request failed", path=request.url.path, error=exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_body())

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        failure = ValidationFailed(errors=_field_errors(exc))
        return JSONResponse(status_code=failure.status_code, content=failure.to_body())

    @app.exception_handler(DuplicateKeyError)
    async def handle_duplicate_key(request: Request, exc: DuplicateKeyError):
        key = ", ".join((exc.details or {}).get("keyValue", {}).keys())
        conflict = Conflict(f"Duplicate value for {key}" if key else None)
        return JSONResponse(status_code=conflict.status_code, content=conflict.to_body())

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.error("Unhandled error", path=request.url.path, exc_info=exc)
        return JSONResponse(status_code=500, content=ServerError().to_body())
