import time
import logging
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger("access")

ANONYMOUS = "-"


def _owner(request: Request) -> str:
    # Set by get_current_owner once the bearer token is accepted
    return getattr(request.state, "owner_id", None) or ANONYMOUS


class LoggingMiddleware(BaseHTTPMiddleware):
    """One access log line per request, tagged with the task owner"""

    async def dispatch(self, request: Request, call_next):
        start_time = time.perf_counter()
        client = request.client.host if request.client else "unknown"

        try:
            response = await call_next(request)
        except Exception:
            logger.error(
                f'{client} owner={_owner(request)} "{request.method} {request.url.path}" failed '
                f"after {(time.perf_counter() - start_time) * 1000:.1f}ms"
            )
            raise

        process_time = time.perf_counter() - start_time
        logger.info(
            f'{client} owner={_owner(request)} "{request.method} {request.url.path}" '
            f"{response.status_code} {process_time * 1000:.1f}ms"
        )

        response.headers["X-Process-Time"] = f"{process_time:.4f}"
        return response
