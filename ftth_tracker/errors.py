"""
Database exception handlers for the FTTH Tracker API.
"""
import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import DataError, IntegrityError


logger = structlog.get_logger(__name__)

UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"
INVALID_TEXT_REPRESENTATION = "22P02"


def _pgcode(exc: Exception):
    return getattr(getattr(exc, "orig", None), "pgcode", None)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(IntegrityError)
    async def integrity_error_handler(request: Request, exc: IntegrityError):
        code = _pgcode(exc)
        if code == FOREIGN_KEY_VIOLATION:
            detail = "Referenced record does not exist"
        else:
            detail = "Record already exists"
        logger.warning("integrity_error", path=request.url.path, pgcode=code, error=str(exc.orig))
        return JSONResponse(status_code=409, content={"detail": detail})

    @app.exception_handler(DataError)
    async def data_error_handler(request: Request, exc: DataError):
        logger.warning("data_error", path=request.url.path, pgcode=_pgcode(exc), error=str(exc.orig))
        return JSONResponse(status_code=400, content={"detail": "Invalid value"})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error("unhandled_error", path=request.url.path, method=request.method, exc_info=exc)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})
