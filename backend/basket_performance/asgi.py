"""Production ASGI entrypoint: ``uvicorn basket_performance.asgi:app``."""

from __future__ import annotations

from basket_performance.main import create_app

app = create_app()

__all__ = ["app"]
