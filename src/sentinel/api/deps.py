"""Request-scoped accessors for objects held on ``app.state``."""

from __future__ import annotations

from fastapi import Request

from sentinel.services import Services


def get_services(request: Request) -> Services:
    return request.app.state.services
