# common/exception_handlers.py
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from loguru import logger


def register_exception_handlers(app: FastAPI, service_name: str) -> None:
    """
    Attach the JSON error envelope shared by every service.

    Every error response carries the service name, request path and
    method, the status code and a human-readable detail.
    """

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "service": service_name,
                "path": request.url.path,
                "method": request.method,
                "status_code": exc.status_code,
                "detail": exc.detail,
            },
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.opt(exception=exc).error(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(
            status_code=500,
            content={
                "service": service_name,
                "path": request.url.path,
                "method": request.method,
                "status_code": 500,
                "detail": "Internal server error",
            },
        )
