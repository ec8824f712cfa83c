"""
Exception handlers for the docstore FastAPI adapter.

Every ServiceError becomes ``{"code": status, "message": message}`` with
its status. Anything else is an internal defect: it is logged with its
traceback and answered with a bare 500 that leaks no detail.
"""

from fastapi import FastAPI
from fastapi.responses import Response

from docstore.logging import get_logger

logger = get_logger("API")

SERVER_ERROR = {"code": 500, "message": "Server Error"}


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register the docstore exception handlers on a FastAPI application.

    Args:
        app: FastAPI application instance
    """
    from fastapi import Request
    from fastapi.responses import JSONResponse as _JSONResponse

    from docstore.errors import ServiceError

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError) -> Response:
        """Convert expected failures to their status and error body."""
        logger.info("%s %s -> %d %s", request.method, request.url.path, exc.status, exc.message)
        return _JSONResponse(status_code=exc.status, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> Response:
        """Log an unclassified failure and answer 500."""
        logger.error(
            "Unhandled error on %s %s",
            request.method,
            request.url.path,
            exc_info=(type(exc), exc, exc.__traceback__),
        )
        return _JSONResponse(status_code=500, content=SERVER_ERROR)
