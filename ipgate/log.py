"""Logging helpers for mini-ipgate."""
from __future__ import annotations

import ipaddress
import logging
from logging.config import dictConfig

from .addresses import strip_zone_index
from .config import LoggingConfig


def configure_logging(config: LoggingConfig) -> None:
    """Configure global logging based on configuration values."""

    level = getattr(logging, config.level.upper(), logging.INFO)
    log_format = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

    handler_config = {
        "level": level,
        "formatter": "standard",
    }

    if config.file:
        handler_config.update(
            {
                "class": "logging.handlers.WatchedFileHandler",
                "filename": config.file,
                "encoding": "utf-8",
            }
        )
    else:
        handler_config["class"] = "logging.StreamHandler"

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "standard": {
                    "format": log_format,
                }
            },
            "handlers": {
                "default": handler_config,
            },
            "root": {
                "handlers": ["default"],
                "level": level,
            },
        }
    )

    logging.getLogger("uvicorn.access").disabled = not config.access_log


def mask_address(address: str) -> str:
    """Keep the network part of an address for logging (/24 or /48)."""
    try:
        ip = ipaddress.ip_address(strip_zone_index(address))
    except ValueError:
        return "<invalid>"
    prefix = 24 if ip.version == 4 else 48
    network = ipaddress.ip_network(f"{ip}/{prefix}", strict=False)
    return str(network)


__all__ = ["configure_logging", "mask_address"]
