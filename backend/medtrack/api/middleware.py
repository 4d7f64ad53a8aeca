import logging
import time

from fastapi import Request
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from medtrack.api.responses import send_error
from medtrack.config import API_RATE_LIMIT, RATE_LIMIT_ENABLED
from medtrack.errors import TooManyRequests

logger = logging.getLogger(__name__)

# one budget per client address shared by all routes SlowAPIMiddleware sees;
# the app-level routes outside /api are exempted in main
limiter = Limiter(
    key_func=get_remote_address,
    application_limits=[API_RATE_LIMIT],
    enabled=RATE_LIMIT_ENABLED,
)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Referrer-Policy": "no-referrer",
    "X-DNS-Prefetch-Control": "off",
    "X-Download-Options": "noopen",
    "X-Permitted-Cross-Domain-Policies": "none",
    "Strict-Transport-Security": "max-age=15552000; includeSubDomains",
}


def rate_limit_exceeded(request: Request, exc: RateLimitExceeded):
    logger.warning("Rate limit hit by %s on %s", get_remote_address(request), request.url.path)
    return send_error(TooManyRequests())


async def security_headers(request: Request, call_next):
    response = await call_next(request)
    for name, value in SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    return response


async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    elapsed = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1f ms", request.method, request.url.path, response.status_code, elapsed
    )
    return response
