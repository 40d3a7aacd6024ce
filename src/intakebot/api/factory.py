"""FastAPI application factory."""

from fastapi import FastAPI, Request, Response

from intakebot.observability.correlation import (
    CORRELATION_ID_HEADER,
    generate_correlation_id,
    reset_correlation_id,
    set_correlation_id,
)

from .routers import public
from .routes import agent_tools, webhooks_telegram, webhooks_whatsapp


def create_app() -> FastAPI:
    """Create the FastAPI app with every route mounted.

    Webhooks and agent tool callbacks always live in the same process: the
    file correlation store that hands buffered files from a webhook turn to
    the submit tool is in-memory, so splitting them across processes would
    lose every staged file.

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title="Intake Bot",
        docs_url=None,
        redoc_url=None,
    )

    # Correlation ID middleware
    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next) -> Response:
        cid = request.headers.get(CORRELATION_ID_HEADER) or generate_correlation_id()
        token = set_correlation_id(cid)
        try:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = cid
            return response
        finally:
            reset_correlation_id(token)

    app.include_router(public.router)
    app.include_router(webhooks_telegram.router)
    app.include_router(webhooks_whatsapp.router)
    app.include_router(agent_tools.router)

    return app
