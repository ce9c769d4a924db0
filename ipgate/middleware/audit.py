from __future__ import annotations

import logging
from typing import Callable

# We use starlette since FastAPI is built on starlette and so it's always
# already installed

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from ..audit import AuditRecord

log = logging.getLogger(__name__)


class AuditMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable[[Request], Response]) -> Response:
        response = await call_next(request)
        record = getattr(request.state, "audit_record", None)
        if record is None:
            return response
        if not isinstance(record, AuditRecord):
            log.warning("Ignoring audit record with unexpected type: %r", type(record))
            return response

        runtime = getattr(request.app.state, "runtime", None)
        if runtime is None:
            log.debug("Runtime not available; skipping audit logging")
            return response

        audit_log = runtime.audit_log()
        if audit_log is None or not audit_log.enabled:
            return response

        try:
            await audit_log.process(record)
        except Exception:  # pragma: no cover - audit logging failures are non-fatal
            log.exception("Failed to record audit log entry")
        return response


__all__ = ["AuditMiddleware"]
