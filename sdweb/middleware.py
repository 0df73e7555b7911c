"""
Middleware for sdweb
"""

import logging
import time
from typing import Callable, Optional
from fastapi import FastAPI, Request, Response, HTTPException
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .metrics import MetricsManager
from .models import ApiResponse, ResponseCode

logger = logging.getLogger(__name__)


def get_client_ip(request: Request) -> str:
    """Best-effort client address, honouring a proxy-supplied header"""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "-"


class AccessLogMiddleware(BaseHTTPMiddleware):
    """Access logging middleware"""

    def __init__(self, app: FastAPI, metrics: MetricsManager):
        super().__init__(app)
        self.metrics = metrics

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()
        client_ip = get_client_ip(request)

        try:
            response = await call_next(request)

            duration = time.time() - start_time
            self._log_access(
                request=request,
                response=response,
                duration=duration,
                client_ip=client_ip,
            )
            self.metrics.record_response(response.status_code, duration)

            return response

        except Exception as e:
            duration = time.time() - start_time
            logger.error(f"Request failed: {request.method} {request.url.path} - {e}")

            self._log_access(
                request=request,
                response=None,
                duration=duration,
                client_ip=client_ip,
                error=str(e)
            )
            self.metrics.record_response(500, duration)
            raise

    def _log_access(
        self,
        request: Request,
        response: Optional[Response],
        duration: float,
        client_ip: str,
        error: Optional[str] = None
    ):
        """Log access information"""

        status_code = response.status_code if response else 500
        content_length = response.headers.get("content-length", "-") if response else "-"

        log_data = {
            "method": request.method,
            "path": str(request.url.path),
            "status": status_code,
            "size": content_length,
            "duration": round(duration * 1000, 2),  # milliseconds
            "ip": client_ip,
            "user_agent": request.headers.get("user-agent", "-"),
        }

        if error:
            log_data["error"] = error

        # Log level based on status code
        if status_code >= 500:
            logger.error(f"ACCESS {log_data}")
        elif status_code >= 400:
            logger.warning(f"ACCESS {log_data}")
        else:
            logger.info(f"ACCESS {log_data}")


class ExceptionHandlerMiddleware(BaseHTTPMiddleware):
    """Last-resort handler so no request failure takes down the server"""

    def __init__(self, app: FastAPI, metrics: MetricsManager):
        super().__init__(app)
        self.metrics = metrics

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)

        except HTTPException:
            # Let FastAPI handle HTTP exceptions
            raise

        except Exception as e:
            logger.exception(f"Unhandled exception: {e}")
            self.metrics.increment_errors()

            # The exception text may name filesystem paths, keep it out of the body
            error_response = ApiResponse(
                code=ResponseCode.INTERNAL_ERROR.value,
                msg="Internal server error",
                data=None
            )

            return JSONResponse(
                status_code=500,
                content=error_response.to_dict()
            )


class RequestMetricsMiddleware(BaseHTTPMiddleware):
    """Request metrics collection middleware"""

    def __init__(self, app: FastAPI, metrics: MetricsManager):
        super().__init__(app)
        self.metrics = metrics

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        with self.metrics.request_context(request.method):
            return await call_next(request)


def setup_middleware(app: FastAPI, metrics: MetricsManager):
    """Setup all middleware for the application"""

    # Request metrics (first)
    app.add_middleware(RequestMetricsMiddleware, metrics=metrics)

    # Access logging
    app.add_middleware(AccessLogMiddleware, metrics=metrics)

    # Exception handling
    app.add_middleware(ExceptionHandlerMiddleware, metrics=metrics)

    logger.info("Middleware setup complete")
