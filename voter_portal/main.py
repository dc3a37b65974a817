from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine

from .config import settings
from .database import get_engine, init_db
from .services.container import Services, build_services
from .services.errors import PortalError

from .api.references import router as references_router
from .api.voters import router as voters_router

logger = logging.getLogger(__name__)


def _validation_errors(exc: RequestValidationError) -> list[Dict[str, str]]:
    out = []
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p != "body"]
        out.append({"field": ".".join(loc), "message": str(err.get("msg", "Invalid value"))})
    return out


def create_app(
    services: Optional[Services] = None,
    *,
    engine: Optional[Engine] = None,
    create_tables: bool = True,
) -> FastAPI:
    """
    App factory.

    Tests pass their own `services` (in-memory engine, fake gateway);
    production builds them from settings.
    """
    app = FastAPI(
        title="Voter Portal API",
        version=settings.app_version,
    )

    db_engine = engine or get_engine()
    app.state.services = services or build_services(settings, engine=db_engine)

    # --- CORS ---
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --- Startup / shutdown ---
    @app.on_event("startup")
    def _startup() -> None:
        # Creates tables for all registered SQLModel models (idempotent for SQLite)
        init_db(db_engine, create_tables=create_tables)

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        svc: Services = app.state.services
        cancelled = await svc.supervisor.drain(settings.background_drain_timeout_s)
        if cancelled:
            logger.warning("Shutdown cancelled %d unfinished background task(s)", cancelled)
        await svc.indexer.aclose()

    # --- Error envelope (always {"detail": ...}) ---
    @app.exception_handler(PortalError)
    async def portal_error_handler(request: Request, exc: PortalError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("Request failed (%s %s): %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_detail()})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={
                "detail": {
                    "code": "VALIDATION_ERROR",
                    "message": "Validation failed",
                    "errors": _validation_errors(exc),
                }
            },
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    # --- Health / meta ---
    @app.get("/health", tags=["meta"])
    def health() -> Dict[str, Any]:
        svc: Services = app.state.services
        return {
            "ok": True,
            "env": settings.env,
            "whatsapp_configured": svc.dispatcher.config.is_configured,
            "background_tasks": svc.supervisor.pending,
        }

    @app.get("/version", tags=["meta"])
    def version() -> Dict[str, Any]:
        return {"version": settings.app_version}

    # --- API routers ---
    app.include_router(voters_router)
    app.include_router(references_router)

    return app


def run() -> None:
    logging.basicConfig(
        level=getattr(logging, str(settings.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    import uvicorn

    uvicorn.run(
        "voter_portal.main:create_app",
        factory=True,
        host=settings.host,
        port=int(settings.port),
        reload=bool(settings.reload),
    )
