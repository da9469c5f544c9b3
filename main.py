# main.py
"""
FastAPI entry point for the Food Tracker backend.
Startup/readiness checks against the configured record store, request-id
middleware with request logging, and JSON rendering of service errors.
"""
import asyncio
import logging
import os
import uuid
from contextlib import asynccontextmanager
from typing import Dict, Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.auth import router as auth_router
from app.api.meals import router as meals_router
from app.api.profile import router as profile_router
from app.config.settings import settings
from app.exceptions import FoodLogError
from app.services.backends.factory import build_services

logger = logging.getLogger("uvicorn.error")


async def _run_sync_in_executor(fn, *args, timeout: Optional[float] = None):
    """
    Run a blocking function in the default threadpool with a timeout.
    Returns the function's result or raises TimeoutError.
    """
    loop = asyncio.get_running_loop()
    return await asyncio.wait_for(
        loop.run_in_executor(None, fn, *args),
        timeout=timeout or settings.health_check_timeout,
    )


async def _backend_healthy(app: FastAPI, timeout: Optional[float] = None) -> bool:
    services = getattr(app.state, "services", None)
    if services is None:
        return False
    try:
        return bool(await _run_sync_in_executor(services.backends.health_check, timeout=timeout))
    except asyncio.TimeoutError:
        logger.warning("Backend health_check timed out after %.1fs", timeout or settings.health_check_timeout)
    except Exception as exc:
        logger.exception("Unexpected error calling backend health_check: %s", exc)
    return False


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting Food Tracker (record backend=%s)", settings.record_backend)

    if getattr(app.state, "services", None) is None:
        app.state.services = build_services(settings)

    app.state.backend_healthy = await _backend_healthy(app)
    logger.info("Backend health: %s", app.state.backend_healthy)

    if not app.state.backend_healthy and settings.fail_on_db_startup:
        logger.error("FAIL_ON_DB_STARTUP enabled and backend unhealthy. Aborting startup.")
        raise RuntimeError("Record backend unhealthy on startup")

    try:
        yield
    finally:
        logger.info("Shutting down Food Tracker...")


app = FastAPI(
    title="Food Tracker",
    description="Meal logging with photo uploads backed by Supabase",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # lock down in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(FoodLogError)
async def food_log_error_handler(request: Request, exc: FoodLogError):
    request_id = getattr(request.state, "request_id", None)
    logger.info(
        "Request id=%s failed with %s: %s", request_id, type(exc).__name__, exc.message
    )
    return JSONResponse(exc.to_dict(), status_code=exc.http_status)


# Request-id middleware + request logging
@app.middleware("http")
async def add_request_id_and_log(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
    request.state.request_id = request_id
    logger.info("→ Incoming request %s %s id=%s", request.method, request.url.path, request_id)
    try:
        response: Response = await call_next(request)
    except Exception as exc:
        logger.exception("Handler error for request id=%s: %s", request_id, exc)
        return JSONResponse(
            {"ok": False, "status": 500, "message": "Internal server error"},
            status_code=500,
            headers={"X-Request-Id": request_id},
        )
    logger.info("← Completed request id=%s status=%s", request_id, getattr(response, "status_code", None))
    response.headers["X-Request-Id"] = request_id
    return response


app.include_router(auth_router, prefix="/auth", tags=["auth"])
app.include_router(meals_router, prefix="/meals", tags=["meals"])
app.include_router(profile_router, prefix="/profile", tags=["profile"])


@app.get("/")
async def root() -> Dict[str, str]:
    return {"message": "Food Tracker is running!", "status": "healthy"}


@app.get("/health")
async def health_check():
    """
    Liveness: the process is up. Reports degraded when the record store
    does not answer.
    """
    db_ok = await _backend_healthy(app)
    return JSONResponse(
        {
            "status": "healthy" if db_ok else "degraded",
            "service": "food-tracker",
            "database": "connected" if db_ok else "disconnected",
        },
        status_code=200 if db_ok else 503,
    )


@app.get("/ready")
async def readiness_check():
    """Readiness: cached startup state when available, else one bounded check."""
    state: Optional[bool] = getattr(app.state, "backend_healthy", None)
    if state is None:
        state = await _backend_healthy(app, timeout=2.0)

    if state:
        return JSONResponse({"ready": True, "database": "connected"}, status_code=200)
    return JSONResponse({"ready": False, "database": "disconnected"}, status_code=503)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", 5000)), reload=True)
