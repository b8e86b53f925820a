import json
import logging
import time
import uuid
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger(__name__)


class RequestTimingMiddleware(BaseHTTPMiddleware):
    """One JSON log line per request with request id, admission key, status and latency; echoes x-request-id.
    Why available: Extraction requests can sit behind the admission queue for minutes, so per-request latency is the first thing to look at."""

    async def dispatch(self, request: Request, call_next):
        rid = request.headers.get("x-request-id") or str(uuid.uuid4())
        start = time.perf_counter()

        # attach to request state for handlers if needed
        request.state.request_id = rid

        response = await call_next(request)

        dur_ms = (time.perf_counter() - start) * 1000.0
        line = json.dumps({
            "request_id": rid,
            "path": request.url.path,
            "method": request.method,
            "key": request.headers.get("x-user-id"),
            "status": response.status_code,
            "latency_ms": round(dur_ms, 2),
        })
        if response.status_code >= 500:
            logger.warning(line)
        else:
            logger.info(line)
        response.headers["x-request-id"] = rid
        return response


def get_request_id(request: Request) -> str:
    # middleware sets this
    return getattr(request.state, "request_id", "unknown")
