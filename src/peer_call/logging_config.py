"""Logging configuration for the peer call application."""

import logging.config
from typing import Dict, Any


def get_logging_config(level: str = "INFO") -> Dict[str, Any]:
    """Get logging configuration dictionary."""
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "detailed": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(module)s:%(funcName)s:%(lineno)d - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": "DEBUG",
                "formatter": "default",
                "stream": "ext://sys.stdout",
            },
            "detailed_console": {
                "class": "logging.StreamHandler",
                "level": "DEBUG",
                "formatter": "detailed",
                "stream": "ext://sys.stdout",
            },
        },
        "loggers": {
            "peer_call": {
                "level": level,
                "handlers": ["console"],
                "propagate": False,
            },
            "peer_call.services.peer_session": {
                "level": level,
                "handlers": ["detailed_console"],
                "propagate": False,
            },
            "peer_call.services.call_coordinator": {
                "level": level,
                "handlers": ["detailed_console"],
                "propagate": False,
            },
            "aiortc": {
                "level": "WARNING",
                "handlers": ["console"],
                "propagate": False,
            },
            "aioice": {
                "level": "WARNING",
                "handlers": ["console"],
                "propagate": False,
            },
            "uvicorn": {
                "level": "INFO",
                "handlers": ["console"],
                "propagate": False,
            },
            "uvicorn.access": {
                "level": "INFO",
                "handlers": ["console"],
                "propagate": False,
            },
        },
        "root": {
            "level": "WARNING",
            "handlers": ["console"],
        },
    }


def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the application."""
    logging.config.dictConfig(get_logging_config(level))

    logger = logging.getLogger(__name__)
    logger.info("Logging configuration initialized")
