"""
Middleware for CORS and request logging
"""

import logging
import time

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from gallery_uploads.config import Settings

logger = logging.getLogger("gallery_uploads.middleware")


def add_cors_middleware(app: FastAPI, settings: Settings) -> None:
    """
    Add CORS middleware to FastAPI app.

    Args:
        app: FastAPI application instance
        settings: Application settings
    """
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=[
            "Authorization",
            "Content-Type",
            "X-Requested-With",
            "X-User-Id",
            "Accept",
            "Origin"
        ],
        max_age=600,  # 10 minutes
    )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start_time = time.time()

        logger.info(f"Request: {request.method} {request.url.path}")

        response: Response = await call_next(request)

        process_time = time.time() - start_time
        logger.info(
            f"Response: {response.status_code} | "
            f"Time: {process_time:.4f}s | "
            f"Path: {request.url.path}"
        )

        response.headers["X-Process-Time"] = str(process_time)

        return response


def add_request_logging_middleware(app: FastAPI) -> None:
    """
    Add request logging middleware.

    Args:
        app: FastAPI application instance
    """
    app.add_middleware(RequestLoggingMiddleware)
