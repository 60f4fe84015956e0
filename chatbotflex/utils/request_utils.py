# /chatbotflex/utils/request_utils.py
from fastapi import Request
from slowapi import Limiter

from chatbotflex.config.settings import settings


def get_remote_address(request: Request) -> str:
    """
    Client IP for rate limiting and audit logs. Honours the first hop of
    X-Forwarded-For when the service runs behind a proxy.
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    if request.client and request.client.host:
        return request.client.host
    return "127.0.0.1"


# Keyed by client IP; main.py installs it on the app, routers decorate with it.
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[f"{settings.rate_limit_per_minute}/minute"]
)
