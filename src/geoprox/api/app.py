# src/geoprox/api/app.py
"""
FastAPI application wiring.

This file creates the `FastAPI` instance and configures CORS.
Business logic lives in `geoprox.api.routes` and `geoprox.places.directory`.
"""

from __future__ import annotations

import os

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware

from geoprox.core.logging import configure_logging

from .routes import router

configure_logging()

app = FastAPI(title="GeoProx API", version="0.1.0")

# CORS (dev-friendly): allow local frontends to call this API.
# Configure via env:
# - GEOPROX_CORS_ORIGINS="http://localhost:8003,http://127.0.0.1:8003"
# - GEOPROX_CORS_ALLOW_LOCAL=0 to disable the default localhost allowance
cors_origins = [s.strip() for s in os.getenv("GEOPROX_CORS_ORIGINS", "").split(",") if s.strip()]
cors_allow_local = os.getenv("GEOPROX_CORS_ALLOW_LOCAL", "1").strip().lower() in {"1", "true", "yes", "y"}
cors_origin_regex = (
    r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$" if cors_allow_local and not cors_origins else ""
)
if cors_origins or cors_origin_regex:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_origin_regex=cors_origin_regex or None,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.exception_handler(RequestValidationError)
async def _validation_error(_: Request, exc: RequestValidationError) -> JSONResponse:
    # Same error shape as the route-level VALIDATION_ERROR mapping.
    problems = [
        f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg', 'invalid')}" for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"detail": {"code": "VALIDATION_ERROR", "message": "; ".join(problems) or "Invalid request"}},
    )


app.include_router(router)
