"""
Shared request helpers for the public routers - request fingerprint and the
plain-text error responses partner and redirect endpoints answer with.
"""
from typing import Optional

from fastapi import Request
from fastapi.responses import PlainTextResponse

from dealnet.utils.rate_limiter import RateLimitResult, request_fingerprint

NOT_FOUND_BODY = "Not found."
RATE_LIMITED_BODY = "Rate limited."


def client_fingerprint(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    client_ip = forwarded or (request.client.host if request.client else "")
    return request_fingerprint(client_ip, request.headers.get("user-agent", ""))


def not_found(status_code: int = 404, headers: Optional[dict] = None) -> PlainTextResponse:
    # 401/503 from partner auth share the body so failures look alike
    return PlainTextResponse(NOT_FOUND_BODY, status_code=status_code, headers=headers)


def rate_limited(result: RateLimitResult, headers: Optional[dict] = None) -> PlainTextResponse:
    out = dict(headers or {})
    out.setdefault("Retry-After", str(result.retry_after_seconds or 60))
    return PlainTextResponse(RATE_LIMITED_BODY, status_code=429, headers=out)
