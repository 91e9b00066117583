import os

from fastapi import Request
from slowapi import Limiter

LOGIN_RATE = "10/minute"
REGISTER_RATE = "5/hour"
REFRESH_RATE = "30/minute"
RESET_PASSWORD_RATE = "5/hour"


def is_testing() -> bool:
    return os.getenv("TESTING", "0") == "1" or os.getenv("ENVIRONMENT") == "testing"


def exempt_when_testing() -> bool:
    return is_testing()


def client_ip(request: Request) -> str:
    """First X-Forwarded-For hop when behind a proxy, otherwise the socket peer."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


limiter = Limiter(key_func=client_ip)
