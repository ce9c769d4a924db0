"""
    Client address resolution and access check endpoints.

    ``/check/{resource}`` gathers every address the request reveals (proxy
    headers, the peer address and form fields posted by a client-side probe),
    merges them with what the same session revealed before and answers
    whether the resource may be shown. The status code mirrors the answer so
    the endpoint can sit behind a reverse proxy ``auth_request``.
"""
from __future__ import annotations

import secrets
from typing import Dict, List, Tuple
from urllib.parse import parse_qs

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from ..audit import AuditRecord
from ..collector import CandidateSet, Source
from ..config import CollectorConfig, SessionConfig
from ..runtime import IPGateRuntime

router = APIRouter()

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


async def get_runtime(request: Request) -> IPGateRuntime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None or not runtime.ready:
        raise HTTPException(status_code=503, detail="Service not ready")
    return runtime


async def read_form(request: Request) -> Dict[str, str]:
    """Return the first value of each urlencoded form field; other bodies are ignored."""
    if request.method != "POST":
        return {}
    content_type = request.headers.get("content-type", "")
    if not content_type.lower().startswith(FORM_CONTENT_TYPE):
        return {}
    body = (await request.body()).decode("utf-8", errors="replace")
    return {key: values[0] for key, values in parse_qs(body).items() if values}


def request_sources(request: Request, form: Dict[str, str], config: CollectorConfig) -> List[Source]:
    """Order the raw address sources: headers, then the peer, then form fields."""
    # repeated headers are joined the way a CGI server folds them
    sources: List[Source] = [
        (f"header:{name}", ", ".join(request.headers.getlist(name)) or None) for name in config.headers
    ]
    if config.include_peer and request.client is not None:
        sources.append(("peer", request.client.host))
    sources.extend((f"form:{name}", form.get(name)) for name in config.form_fields)
    return sources


def _session_key(request: Request, config: SessionConfig) -> Tuple[str, bool]:
    existing = request.cookies.get(config.cookie)
    if existing:
        return existing, False
    return secrets.token_urlsafe(24), True


def _respond(payload: Dict, status_code: int, session: Tuple[str, bool], config: SessionConfig) -> JSONResponse:
    response = JSONResponse(payload, status_code=status_code)
    key, is_new = session
    if is_new:
        response.set_cookie(
            config.cookie,
            key,
            max_age=int(config.ttl_s) if config.ttl_s else None,
            httponly=True,
            secure=config.secure,
            samesite="lax",
        )
    return response


async def _resolve(request: Request, runtime: IPGateRuntime) -> Tuple[CandidateSet, Tuple[str, bool]]:
    daemon = runtime.config_bundle.daemon
    session = _session_key(request, daemon.session)
    form = await read_form(request)
    candidates = runtime.resolve(session[0], request_sources(request, form, daemon.collector))
    return candidates, session


@router.api_route("/check/{resource:path}", methods=["GET", "POST"])
async def check(resource: str, request: Request, runtime: IPGateRuntime = Depends(get_runtime)):
    """
        Decide whether the client may view ``resource``. Unlisted resources are
        unrestricted; listed ones need at least one candidate inside the list.
    """
    candidates, session = await _resolve(request, runtime)
    decision = runtime.decide(resource, candidates)

    request.state.audit_record = AuditRecord(
        resource=resource,
        restricted=decision.restricted,
        allowed=decision.allowed,
        candidates=candidates,
        matched=decision.matched,
        session=session[0],
    )

    payload = {
        "resource": resource,
        "restricted": decision.restricted,
        "allowed": decision.allowed,
        "candidates": candidates.to_dict(),
    }
    status_code = 200 if decision.allowed else 403
    return _respond(payload, status_code, session, runtime.config_bundle.daemon.session)


@router.api_route("/candidates", methods=["GET", "POST"])
async def candidates(request: Request, runtime: IPGateRuntime = Depends(get_runtime)):
    """
        Report the public addresses collected for this client so far.
    """
    collected, session = await _resolve(request, runtime)
    return _respond(collected.to_dict(), 200, session, runtime.config_bundle.daemon.session)


__all__ = ["read_form", "request_sources", "router"]
