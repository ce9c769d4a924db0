"""ASGI application factory."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from fastapi import FastAPI

from .api import admin as admin_router
from .api import check as check_router
from .log import configure_logging
from .middleware.audit import AuditMiddleware
from .runtime import IPGateRuntime
from .signals import install_signal_handlers
from .store import CandidateStore


def resolve_config_dir(config_dir: str | os.PathLike[str] | None) -> Path:
    if config_dir is not None:
        return Path(config_dir)
    env_dir = os.environ.get("MINIIPGATE_CONFIG_DIR")
    if env_dir:
        return Path(env_dir)
    return Path.cwd() / "config"


def create_app(
    config_dir: str | os.PathLike[str] | None = None,
    store: Optional[CandidateStore] = None,
) -> FastAPI:
    runtime = IPGateRuntime(resolve_config_dir(config_dir), store=store)

    app = FastAPI(
        title="mini-ipgate",
        version="0.1.0",
        docs_url=None,
        redoc_url=None,
        openapi_url="/openapi.json",
    )

    app.add_middleware(AuditMiddleware)
    app.include_router(check_router.router)
    app.include_router(admin_router.router)

    app.state.runtime = runtime

    @app.on_event("startup")
    async def on_startup() -> None:
        await runtime.initialize()
        daemon = runtime.config_bundle.daemon
        configure_logging(daemon.logging)
        install_signal_handlers(runtime, daemon.reload.enable_sighup, getattr(app.state, "server", None))

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        await runtime.shutdown()

    return app


__all__ = ["create_app", "resolve_config_dir"]
