from __future__ import annotations

import asyncio
import contextlib
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from boardaccess.api.error_handling import register_exception_handlers
from boardaccess.api.routes import redirect_router, router
from boardaccess.config import Settings
from boardaccess.logging import get_logger, set_correlation_id
from boardaccess.service.resident_sessions import ResidentSessionManager

logger = get_logger(__name__)

_settings = Settings.from_env()

__version__ = "0.1.0"

MIN_SWEEP_INTERVAL_SECONDS = 60

_sweep_task: asyncio.Task | None = None


async def _run_resident_sweep(
    manager: ResidentSessionManager, interval_seconds: int
) -> None:
    """Background loop deleting expired resident sessions."""

    interval = max(interval_seconds, MIN_SWEEP_INTERVAL_SECONDS)
    try:
        while True:
            try:
                await asyncio.to_thread(manager.sweep_expired)
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # pragma: no cover - best-effort cleanup
                logger.warning("resident_sweep_failed", error=str(exc))
            await asyncio.sleep(interval)
    except asyncio.CancelledError:
        logger.info("resident_sweep_task_cancelled")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the resident session sweep; stop it on shutdown."""
    global _sweep_task
    from boardaccess.service.runtime import get_runtime

    try:
        runtime = get_runtime()
        if not runtime.settings.test_mode:
            _sweep_task = asyncio.create_task(
                _run_resident_sweep(
                    runtime.resident_sessions,
                    runtime.settings.resident_sweep_interval_seconds,
                )
            )
            logger.info(
                "resident_sweep_started",
                interval_seconds=runtime.settings.resident_sweep_interval_seconds,
            )
    except Exception as exc:
        logger.error("startup_failed", error=str(exc))

    yield

    if _sweep_task:
        _sweep_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await _sweep_task
        _sweep_task = None
    logger.info("runtime_shutdown_complete")


app = FastAPI(title="Board Access", version=__version__, lifespan=lifespan)


def _allowed_origins() -> List[str]:
    if _settings.cors_allow_origins:
        return _settings.cors_allow_origins
    # Local dev hosts only; no wildcard
    return [
        "http://localhost",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins(),
    allow_credentials=False,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    expose_headers=["X-Request-ID", "API-Version"],
    max_age=3600,
)


@app.middleware("http")
async def add_correlation_id(request, call_next):
    """Tag the request with a correlation id for structured logs.

    Uses the client's X-Request-ID when present and echoes it back.
    """
    correlation_id = set_correlation_id(request.headers.get("X-Request-ID"))
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


@app.middleware("http")
async def add_security_headers(request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    # Credentials travel in these responses
    if request.url.path.startswith("/v1/") or request.url.path.startswith("/s/"):
        response.headers.setdefault(
            "Cache-Control", "no-store, no-cache, must-revalidate, private"
        )
    response.headers.setdefault("API-Version", __version__)
    return response


register_exception_handlers(app)
app.include_router(router)
app.include_router(redirect_router)


@app.get("/healthz")
async def health() -> Dict[str, Any]:
    """Report store reachability."""
    from boardaccess.service.runtime import get_runtime

    runtime = get_runtime()
    checks: Dict[str, Dict[str, Any]] = {}
    healthy = True

    if hasattr(runtime.store, "_connect"):

        def _db_ping() -> None:
            with runtime.store._connect() as conn:
                conn.execute("SELECT 1").fetchone()

        try:
            await asyncio.wait_for(asyncio.to_thread(_db_ping), 3)
            checks["database"] = {"status": "healthy"}
        except Exception as exc:
            logger.error("health_check_database_failed", error=str(exc))
            checks["database"] = {"status": "unhealthy"}
            healthy = False
    else:
        checks["database"] = {"status": "healthy", "type": "memory"}

    fs_root = Path(runtime.settings.shared_fs_root)
    fs_ok = fs_root.exists() and fs_root.is_dir()
    checks["filesystem"] = {"status": "healthy" if fs_ok else "unhealthy"}
    healthy = healthy and fs_ok

    return {
        "status": "healthy" if healthy else "unhealthy",
        "checks": checks,
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def create_app() -> FastAPI:
    return app
