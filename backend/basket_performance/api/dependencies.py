"""Shared FastAPI dependencies."""

from __future__ import annotations

import hmac

from fastapi import Header, HTTPException, status

from basket_performance.config import AppSettings


def _matches(candidate: str | None, expected: str | None) -> bool:
    if not candidate or not expected:
        return False
    return hmac.compare_digest(candidate.encode(), expected.encode())


def admin_guard(settings: AppSettings):
    """Build a dependency accepting the cron secret header or the admin bearer token."""

    async def require_admin(
        authorization: str | None = Header(default=None),
        x_cron_secret: str | None = Header(default=None),
    ) -> str:
        if _matches(x_cron_secret, settings.cron_secret):
            return "cron"
        if authorization and authorization.lower().startswith("bearer "):
            token = authorization.split(" ", 1)[1].strip()
            if _matches(token, settings.admin_token):
                return "admin"
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Admin credentials required")

    return require_admin


__all__ = ["admin_guard"]
