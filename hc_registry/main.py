import datetime
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Callable

import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates
from markdown import markdown
from pyinstrument import Profiler
from pyinstrument.renderers.html import HTMLRenderer
from pyinstrument.renderers.speedscope import SpeedscopeRenderer
from starlette.exceptions import HTTPException
from starlette.middleware.sessions import SessionMiddleware
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from .audit.routes import router as audit_router
from .authentication.routes import router as auth_router
from .authentication.services import require_permission
from .core.database.db import get_db_name_to_client
from .core.error_handling import (
    general_exception_handler,
    http_exception_handler,
    registry_exception_handler,
    validation_exception_handler,
)
from .core.exceptions import RegistryError
from .core.models.base import LoggingLevelRequest
from .credit.routes import router as credit_router
from .ledger.routes import router as ledger_router
from .ledger.services import build_ledger_client
from .logging_config import change_log_level, logger
from .settings import settings
from .user.validation import RegistryAction

STATIC_DIR_FP = Path(__file__).parent / "static"

descriptions = {}
for desc in ["api", "credit", "audit"]:
    static_dir = STATIC_DIR_FP / "descriptions" / f"{desc}.md"
    with open(static_dir, "r") as file:
        descriptions[desc] = markdown(file.read())

tags_metadata = [
    {
        "name": "Authentication",
        "description": "Registration, login and profile management for registry users.",
    },
    {
        "name": "Credits",
        "description": descriptions["credit"],
    },
    {
        "name": "Audit",
        "description": descriptions["audit"],
    },
    {
        "name": "Blockchain",
        "description": "Read-only views of the HydrogenCredit ledger contract.",
    },
    {
        "name": "Core",
        "description": "Service health and operational endpoints.",
    },
]

origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
origins.extend(settings.cors_origins)

logger.info(f"Initialized CORS origins: {origins}")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Lifespan context manager for FastAPI application.
    Creates the database tables and connects the ledger client on startup,
    and releases both on shutdown.
    """
    logger.info("Starting up application...")

    db_client = get_db_name_to_client()["db"]
    db_client.create_tables()

    # A client placed on the state beforehand is kept
    if getattr(app.state, "ledger_client", None) is None:
        app.state.ledger_client = build_ledger_client(settings)
    ledger_client = app.state.ledger_client
    ledger_client.connect()

    logger.info(f"Application startup complete, ledger backend {ledger_client.NAME}")
    try:
        yield
    finally:
        logger.info("Shutting down application...")
        ledger_client.close()
        db_client.dispose()
        logger.info("Application shutdown complete")


app = FastAPI(
    openapi_tags=tags_metadata,
    title="Hydrogen Credit Registry API",
    description=descriptions["api"],
    version="1.0",
    docs_url="/docs",
    dependencies=[Depends(get_db_name_to_client)],
    lifespan=lifespan,
)

app.add_middleware(ProxyHeadersMiddleware, trusted_hosts="*")
app.add_middleware(SessionMiddleware, secret_key=settings.MIDDLEWARE_SECRET_KEY)
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept", "Origin"],
)

app.add_exception_handler(RegistryError, registry_exception_handler)  # type: ignore
app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore
app.add_exception_handler(HTTPException, http_exception_handler)  # type: ignore
app.add_exception_handler(Exception, general_exception_handler)

app.include_router(auth_router, prefix="/api/auth")
app.include_router(credit_router, prefix="/api/credits")
app.include_router(audit_router, prefix="/api/audit")
app.include_router(ledger_router, prefix="/api/blockchain")

templates = Jinja2Templates(directory=STATIC_DIR_FP / "templates")


@app.get("/api/health", tags=["Core"])
async def health(request: Request):
    ledger_client = getattr(request.app.state, "ledger_client", None)
    return {
        "status": "OK",
        "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        "environment": settings.ENVIRONMENT,
        "ledger": {
            "backend": ledger_client.NAME if ledger_client else None,
            "connected": bool(ledger_client and ledger_client.is_connected),
        },
    }


@app.get("/", response_class=HTMLResponse, tags=["Core"])
async def read_root(request: Request):
    params = {
        "request": request,
        "head": {"title": "Hydrogen Credit Registry API"},
        "body": [
            {"tag": "h1", "value": "Hydrogen Credit Registry API"},
            {
                "tag": "p",
                "value": """Issue, transfer, retire and audit certified renewable-hydrogen
                            credits settled on the HydrogenCredit ledger.""",
            },
            {
                "tag": "a",
                "tag_kwargs": {"href": f"{request.url._url}docs"},
                "value": "/docs",
            },
        ],
    }

    return templates.TemplateResponse(request, "index.jinja", params)


@app.post("/change_log_level", tags=["Core"])
async def change_log_level_endpoint(
    request: LoggingLevelRequest,
    current_user=Depends(require_permission(RegistryAction.CHANGE_LOG_LEVEL)),
):
    """Change the level of the registry, uvicorn and FastAPI loggers at runtime."""
    logger_status = change_log_level(request.level.value)
    logger.info(f"Log level changed to {request.level.value} by user {current_user.id}")
    return {
        "message": f"Log level changed to {request.level.value}",
        "logger_status": logger_status,
    }


PROFILE_RENDERERS = {
    "html": (HTMLRenderer, "html"),
    "speedscope": (SpeedscopeRenderer, "speedscope.json"),
}

if settings.PROFILING_ENABLED:
    renderer_cls, profile_ext = PROFILE_RENDERERS[settings.PROFILING_FORMAT]

    @app.middleware("http")
    async def profile_request(request: Request, call_next: Callable):
        """Write a pyinstrument report per request under core/profiling/<date>."""
        with Profiler(interval=0.001, async_mode="enabled") as profiler:
            response = await call_next(request)

        report_dir = (
            Path(__file__).parent
            / "core"
            / "profiling"
            / datetime.date.today().isoformat()
        )
        report_dir.mkdir(parents=True, exist_ok=True)
        report_name = request.url.path.strip("/").replace("/", "_") or "root"
        with open(report_dir / f"{report_name}.{profile_ext}", "w") as report:
            report.write(profiler.output(renderer=renderer_cls()))
        return response


def main():
    uvicorn.run(
        "hc_registry.main:app",
        host="0.0.0.0",
        port=8000,
        log_level=settings.LOG_LEVEL.lower(),
    )
