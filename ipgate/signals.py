"""Signal handling utilities."""
from __future__ import annotations

import asyncio
import logging
import signal
from typing import Any, Awaitable, Callable, Optional

from .runtime import IPGateRuntime

log = logging.getLogger(__name__)


def _install(signum: int, action: str, coroutine: Callable[[], Awaitable[None]]) -> None:
    loop = asyncio.get_running_loop()
    name = signal.Signals(signum).name

    def _handler() -> None:
        log.info("%s received; %s", name, action)
        asyncio.create_task(coroutine())

    try:
        loop.add_signal_handler(signum, _handler)
    except NotImplementedError:  # pragma: no cover - Windows
        signal.signal(signum, lambda *_: loop.call_soon_threadsafe(_handler))


def install_signal_handlers(runtime: IPGateRuntime, enable_reload: bool, server: Optional[Any] = None) -> None:
    """SIGTERM stops the runtime and the server; SIGHUP re-reads daemon.json and the allowlist.

    The handlers replace the ones uvicorn installed, so ``server.should_exit``
    is set here as well.
    """

    async def _shutdown() -> None:
        await runtime.shutdown()
        if server is not None and hasattr(server, "should_exit"):
            server.should_exit = True

    _install(signal.SIGTERM, "shutting down", _shutdown)
    if enable_reload and hasattr(signal, "SIGHUP"):
        _install(signal.SIGHUP, "reloading configuration and allowlist", runtime.reload)


__all__ = ["install_signal_handlers"]
