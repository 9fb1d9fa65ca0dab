"""FastAPI application serving the Bridge webhook receiver.

Run with ``bridge-webhooks serve`` or ``uvicorn bridge_webhooks.serve:app``.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI

from bridge_webhooks import __version__
from bridge_webhooks.webhooks.handlers import register_webhook_routes

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(title="Bridge Webhooks", version=__version__)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    register_webhook_routes(app)
    return app


app = create_app()


def run(host: str = "127.0.0.1", port: int = 8000) -> None:
    import uvicorn

    logger.info("Starting Bridge webhook receiver on %s:%d", host, port)
    uvicorn.run(app, host=host, port=port)
