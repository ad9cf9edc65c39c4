# -*- coding: utf-8 -*-
# main.py: Jyotish backend (resilient startup, flat JSON errors, routers)

import os
import asyncio
import logging
import traceback
from datetime import datetime
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from db import init_db
import health_routes
import routes_public_config
import auth_routes
import astrology_routes
import payment_routes
import user_routes

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("jyotish")

APP_VERSION = "1.0.0"

# --------------------------------------------------------------------------------------
# Lifespan: resilient startup with diagnostics (appears in /api/status)
# --------------------------------------------------------------------------------------
DB_READY = False
STARTUP_OK = False
STARTUP_ERROR = ""


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Warm the DB with retries; never hard-crash the process.
    Any exception is captured and exposed via /api/status.
    """
    global DB_READY, STARTUP_OK, STARTUP_ERROR
    tries = int(os.getenv("DB_WARMUP_TRIES", "20"))
    delay = float(os.getenv("DB_WARMUP_DELAY", "1.5"))
    try:
        for i in range(tries):
            try:
                init_db()
                DB_READY = True
                break
            except Exception as e:
                logger.warning("init_db attempt %s/%s failed: %s", i + 1, tries, e)
                await asyncio.sleep(delay)
        STARTUP_OK = True
        STARTUP_ERROR = ""
        yield
    except Exception:
        STARTUP_OK = False
        STARTUP_ERROR = traceback.format_exc()
        logger.error("Startup failed:\n%s", STARTUP_ERROR)
        yield


app = FastAPI(title="Jyotish Backend", version=APP_VERSION, lifespan=lifespan)

# --------------------------------------------------------------------------------------
# CORS
# --------------------------------------------------------------------------------------
ALLOWED_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
extra = (os.getenv("ALLOWED_ORIGINS") or "").strip()
if extra:
    ALLOWED_ORIGINS += [o.strip() for o in extra.split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=86400,
)

# --------------------------------------------------------------------------------------
# Errors: every failure is a flat {"error": "..."} body
# --------------------------------------------------------------------------------------
@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return JSONResponse({"error": detail}, status_code=exc.status_code, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    where = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    msg = first.get("msg", "Invalid request")
    return JSONResponse({"error": f"{where}: {msg}" if where else msg}, status_code=400)


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    logger.error("Unhandled error on %s %s:\n%s", request.method, request.url.path, traceback.format_exc())
    return JSONResponse({"error": "Internal server error"}, status_code=500)

# --------------------------------------------------------------------------------------
# Root / status
# --------------------------------------------------------------------------------------
@app.get("/")
def root():
    return {"ok": True, "service": "jyotish-backend", "version": APP_VERSION}

@app.get("/api/status")
def status():
    return {
        "db_ready": DB_READY,
        "startup_ok": STARTUP_OK,
        "startup_error": (STARTUP_ERROR[:4000] if STARTUP_ERROR else ""),
        "time": datetime.utcnow().isoformat() + "Z",
    }

# --------------------------------------------------------------------------------------
# Routers
# --------------------------------------------------------------------------------------
app.include_router(health_routes.router)
app.include_router(routes_public_config.router)
app.include_router(auth_routes.router)
app.include_router(astrology_routes.router)
app.include_router(payment_routes.router)
app.include_router(user_routes.router)
