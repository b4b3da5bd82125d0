import logging
from datetime import datetime
from typing import Awaitable, Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware


logger = logging.getLogger(__name__)


class LoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for logging every API request"""

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        event_info = self._get_event_info(request)
        client_info = self._get_client_info(request)

        logger.info(f"IN: {event_info} from {client_info}")

        start_time = datetime.now()

        try:
            response = await call_next(request)

            processing_time = (datetime.now() - start_time).total_seconds()

            if response.status_code >= 500:
                logger.error(f"FAILED: {event_info} -> {response.status_code} in {processing_time:.3f}s")
            elif response.status_code >= 400:
                logger.warning(f"REJECTED: {event_info} -> {response.status_code} in {processing_time:.3f}s")
            else:
                logger.info(f"DONE: {event_info} -> {response.status_code} in {processing_time:.3f}s")

            return response

        except Exception as e:
            processing_time = (datetime.now() - start_time).total_seconds()

            logger.error(f"ERROR: {event_info} in {processing_time:.3f}s - {str(e)}")

            raise

    def _get_client_info(self, request: Request) -> str:
        """Caller address plus device platform when the app sends it"""
        host = request.client.host if request.client else "unknown"
        platform = request.headers.get("x-device-platform")
        if platform:
            return f"{host} ({platform})"
        return host

    def _get_event_info(self, request: Request) -> str:
        # Signed image URLs carry their signature in the query string
        if request.url.path.endswith("/image/raw"):
            return f"{request.method} {request.url.path}"
        query = request.url.query
        if query:
            query = query[:80] + "..." if len(query) > 80 else query
            return f"{request.method} {request.url.path}?{query}"
        return f"{request.method} {request.url.path}"
