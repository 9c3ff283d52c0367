"""Expose the billing closure FastAPI app and enforce local development CORS defaults."""

import logging
import os
import re
from contextlib import asynccontextmanager
from typing import Iterable

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .migrations import run_database_migrations
from .routers import closures_router

LOCALHOST_ORIGIN_REGEX = r"https?://(localhost|127\.0\.0\.1|0\.0\.0\.0)(:\d+)?$"

# Operator console dev servers; always allowed.
OPERATOR_CONSOLE_ORIGINS = (
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:4173",
    "http://127.0.0.1:4173",
)


def _parse_origins(raw_value: str) -> list[str]:
    """Split a comma or whitespace separated origin list."""

    origins = {origin.rstrip("/") for origin in re.split(r"[\s,]+", raw_value) if origin}
    return sorted(origin for origin in origins if origin)


def _resolve_allowed_origins(extra: Iterable[str] = OPERATOR_CONSOLE_ORIGINS) -> list[str]:
    configured = _parse_origins(os.getenv("BACKEND_ALLOWED_ORIGINS", ""))
    return sorted({*configured, *extra})


def _read_bool_env(name: str, default: bool = True) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@asynccontextmanager
async def lifespan(_: FastAPI):
    if _read_bool_env("RUN_MIGRATIONS_ON_START", True):
        ensure_database_is_ready()
    else:
        LOGGER.info("Skipping database migrations; RUN_MIGRATIONS_ON_START is disabled")
    yield


app = FastAPI(title="Billing Closure API", lifespan=lifespan)

LOGGER = logging.getLogger(__name__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_resolve_allowed_origins(),
    allow_origin_regex=LOCALHOST_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(closures_router, prefix="/closures", tags=["closures"])


def ensure_database_is_ready() -> None:
    """Apply pending database migrations when the service starts."""

    LOGGER.info("Ensuring database schema is up to date before serving requests")
    run_database_migrations()


@app.get("/", tags=["health"])
def read_root() -> dict[str, str]:
    """Return a simple health check response."""
    return {"status": "ok"}
