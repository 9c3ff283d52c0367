"""Routers package."""

from .closures import router as closures_router

__all__ = ["closures_router"]
