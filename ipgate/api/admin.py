"""
    Admin endpoints.

    Those endpoints are exposed to loopback and, through ``admin.networks``, to
    any other configured network. They allow reloading the configuration and
    allowlist (as SIGHUP does), terminating the daemon (as SIGTERM does) and
    inspecting the parsed allowlist together with the lines that were skipped.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from ..ipacl import address_allowed
from ..runtime import IPGateRuntime
from .check import get_runtime

router = APIRouter(prefix="/admin")

LOOPBACK_HOSTS = {"127.0.0.1", "::1"}


def _require_local_access(request: Request, runtime: IPGateRuntime) -> None:
    """
        Require local access enforces that the peer is a loopback address, the
        unix domain socket or a member of ``admin.networks``.
    """
    client = request.client
    daemon = runtime.config_bundle.daemon

    if client is None:
        if daemon.listen.unix_socket:
            return
        raise HTTPException(status_code=403, detail="Forbidden")

    host = client.host
    if host in LOOPBACK_HOSTS:
        return
    if not address_allowed(host, daemon.admin.networks):
        raise HTTPException(status_code=403, detail="Forbidden")


@router.get("/allowlist")
async def admin_allowlist(request: Request, runtime: IPGateRuntime = Depends(get_runtime)):
    """
        Parsed allowlist as ``{slug: [entries]}`` plus skipped lines and entries.
    """
    _require_local_access(request, runtime)
    bundle = runtime.config_bundle
    return JSONResponse(
        {
            "allowlist": bundle.allow_map,
            "skipped": bundle.diagnostics.to_list(),
        }
    )


@router.post("/reload")
async def admin_reload(request: Request, runtime: IPGateRuntime = Depends(get_runtime)):
    """
        Re-reads daemon.json and the allowlist file. This is equal to SIGHUP.
    """
    _require_local_access(request, runtime)
    await runtime.reload()
    return JSONResponse({"status": "reloaded"})


@router.post("/shutdown")
async def admin_shutdown(request: Request, runtime: IPGateRuntime = Depends(get_runtime)):
    """
        Terminate our server like SIGTERM
    """
    _require_local_access(request, runtime)
    server = getattr(request.app.state, "server", None)
    if server is None:
        raise HTTPException(status_code=503, detail="Shutdown controller unavailable")
    if hasattr(server, "should_exit"):
        server.should_exit = True
    return JSONResponse({"status": "shutting_down"})


__all__ = ["router"]
