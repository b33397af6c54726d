"""
Buddy underwriting backend. Run from backend dir: uvicorn main:app --port 8010
"""
from __future__ import annotations

import logging
import os
import time
import uuid
from pathlib import Path

from dotenv import load_dotenv

# before config import: config reads env at import time
load_dotenv(Path(__file__).resolve().parent / ".env")

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from config import APP_ENV, google_docai_enabled, virus_scan_required
from errors import ConfigurationError, InvalidTransitionError, TemplateMissingError
from routes.api import router as api_router

_LOG = logging.getLogger("uvicorn.error")

VERSION = (os.environ.get("GIT_COMMIT") or "").strip() or "unknown"

app = FastAPI(title="Buddy Underwriting Backend", version="0.1.0")


def _allowed_origins() -> list:
    raw = os.environ.get("ALLOWED_ORIGINS", "").strip()
    if raw:
        return [o.strip() for o in raw.split(",") if o.strip()]
    return ["http://localhost:3000", "http://127.0.0.1:3000"]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class RequestLogMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = str(uuid.uuid4())[:8]
        request.state.request_id = request_id
        start = time.perf_counter()
        response = await call_next(request)
        _LOG.info(
            "request_id=%s method=%s path=%s status=%s duration_ms=%.0f bank_id=%s",
            request_id,
            request.method,
            request.url.path,
            response.status_code,
            (time.perf_counter() - start) * 1000,
            request.headers.get("x-bank-id") or "-",
        )
        response.headers["X-Request-Id"] = request_id
        return response


app.add_middleware(RequestLogMiddleware)
app.include_router(api_router)


def _error_body(request: Request, code: str, detail: str) -> dict:
    return {"error": code, "detail": detail, "request_id": getattr(request.state, "request_id", None)}


@app.exception_handler(InvalidTransitionError)
async def invalid_transition_handler(request: Request, exc: InvalidTransitionError):
    _LOG.warning("INVALID_TRANSITION path=%s kind=%s from=%s to=%s", request.url.path, exc.kind, exc.current, exc.target)
    return JSONResponse(status_code=409, content=_error_body(request, "invalid_transition", str(exc)))


@app.exception_handler(TemplateMissingError)
async def template_missing_handler(request: Request, exc: TemplateMissingError):
    return JSONResponse(status_code=422, content=_error_body(request, "template_missing", str(exc)))


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    _LOG.error("CONFIGURATION_ERROR path=%s err=%s", request.url.path, exc)
    return JSONResponse(status_code=503, content=_error_body(request, "configuration_error", str(exc)))


@app.on_event("startup")
def startup_log() -> None:
    _LOG.info(
        "Buddy backend starting on http://%s:%s env=%s version=%s virus_scan_required=%s docai_enabled=%s",
        os.environ.get("HOST", "127.0.0.1"), os.environ.get("PORT", "8010"),
        APP_ENV, VERSION, virus_scan_required(), google_docai_enabled(),
    )


@app.get("/health")
def health():
    return {
        "status": "ok",
        "env": APP_ENV,
        "virus_scan_required": virus_scan_required(),
        "docai_enabled": google_docai_enabled(),
        "version": VERSION,
    }


@app.get("/version")
def version():
    return {"version": VERSION, "app": app.title}
