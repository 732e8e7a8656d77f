"""Exception handlers: internal detail to the log, coarse codes to the caller."""

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from protean.exceptions import ObjectNotFoundError, ValidationError

from marketplace.shared.errors import MarketplaceError

logger = structlog.get_logger(__name__)


async def marketplace_error_handler(request: Request, exc: MarketplaceError) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.warning
    log("request_failed", path=request.url.path, code=exc.code, stage=exc.stage, context=exc.context)
    return JSONResponse(status_code=exc.status_code, content=exc.to_response())


async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    logger.info("request_invalid", path=request.url.path, errors=exc.messages)
    return JSONResponse(
        status_code=400,
        content={"error": "VALIDATION_ERROR", "message": "The request is invalid.", "details": exc.messages},
    )


async def not_found_handler(request: Request, exc: ObjectNotFoundError) -> JSONResponse:
    logger.info("request_not_found", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=404, content={"error": "NOT_FOUND", "message": "Not found."})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(MarketplaceError, marketplace_error_handler)
    app.add_exception_handler(ValidationError, validation_error_handler)
    app.add_exception_handler(ObjectNotFoundError, not_found_handler)
