from __future__ import annotations

from typing import Optional

from fastapi import Request

from ..services.audit import RequestMeta
from ..services.container import Services

# Checked in order; the first header present wins.
_IP_HEADERS = (
    "x-forwarded-for",
    "x-real-ip",
    "x-client-ip",
    "cf-connecting-ip",  # Cloudflare
    "x-forwarded",
    "forwarded-for",
    "forwarded",
)


def client_ip(request: Request) -> Optional[str]:
    """
    Best client IP guess: proxy headers first (x-forwarded-for may hold a
    comma-separated chain; the first entry is the client), then the socket peer.
    """
    for header in _IP_HEADERS:
        value = request.headers.get(header)
        if value:
            return value.split(",")[0].strip() or None
    if request.client:
        return request.client.host
    return None


def get_request_meta(request: Request) -> RequestMeta:
    return RequestMeta(
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services
