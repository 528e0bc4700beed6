"""Routers package for FastAPI route handlers."""

from .controls import router as controls_router
from .relay import router as relay_router

__all__ = [
    "controls_router",
    "relay_router",
]
