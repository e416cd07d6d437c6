# =============================================================================
# FastAPI Application Entry Point
# =============================================================================
#
# create_app() builds the app, registers routers and error handlers. The
# ServiceContainer (database, vector store, chat model, workflow queue,
# status feed) is built in the lifespan, or passed in directly by tests.
# With the local workflow backend, startup re-submits unfinished runs.
#
# ERROR RESPONSES:
# Every PaperChatError becomes
#   {"error": <exc.title>, "details": <exc.message>}   with exc.status_code
# Request validation errors are reported the same way, as 400.
#
# Run with:
#   uvicorn paperchat.main:app --reload
# =============================================================================

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from paperchat.api import documents, health, message, upload
from paperchat.config import Settings, get_settings
from paperchat.dependencies import ServiceContainer, build_container
from paperchat.errors import PaperChatError

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )
    # httpx logs every request line at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the service container on startup; release it on shutdown."""
    owns_container = getattr(app.state, "container", None) is None
    if owns_container:
        settings: Settings = app.state.settings
        try:
            app.state.container = build_container(settings)
        except Exception:
            logger.exception("Failed to initialize application services")
            raise

    container = app.state.container
    if container.settings.workflow_backend == "local":
        # The in-process queue is empty after a restart.
        await asyncio.to_thread(container.summaries.resume_unfinished)
    logger.info("Application startup complete")

    yield

    logger.info("Application shutdown")
    if owns_container:
        app.state.container.close()
        app.state.container = None


# ---------------------------------------------------------------------------
# Exception Handlers
# ---------------------------------------------------------------------------


async def paperchat_error_handler(request: Request, exc: PaperChatError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            "%s %s failed: %s (%s)",
            request.method, request.url.path, exc.title, exc.message,
        )
    else:
        logger.info(
            "%s %s rejected: %s (%s)",
            request.method, request.url.path, exc.title, exc.message,
        )

    headers = None
    retry_after = getattr(exc, "retry_after", None)
    if retry_after:
        headers = {"Retry-After": str(int(retry_after))}

    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.title, "details": exc.message},
        headers=headers,
    )


async def request_validation_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    problems = "; ".join(
        f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
        for err in exc.errors()
    )
    logger.info("%s %s invalid request: %s", request.method, request.url.path, problems)
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "details": problems},
    )


# ---------------------------------------------------------------------------
# Application Factory
# ---------------------------------------------------------------------------


def create_app(
    settings: Settings | None = None,
    container: ServiceContainer | None = None,
) -> FastAPI:
    settings = settings or (container.settings if container else get_settings())
    configure_logging(settings.log_level)

    app = FastAPI(
        title=settings.app_name,
        description="Upload a research PDF, ask questions about it, get a summary",
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(PaperChatError, paperchat_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    app.include_router(health.router)
    app.include_router(upload.router)
    app.include_router(message.router)
    app.include_router(documents.router)

    return app


app = create_app()
