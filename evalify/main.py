"""FastAPI application entrypoint.

Controllers live in `evalify.routers`; this module wires them together
with the request-logging middleware, CORS for local frontends, the
uploaded-files mount and the background auto-submit scheduler.

Route groups:
- /auth, /me              any authenticated user
- /admin/...              ADMIN
- /banks, /questions,
  /topics, /faculty/...   FACULTY and MANAGER
- /student/...            STUDENT
"""

from contextlib import asynccontextmanager
from pathlib import Path
import json
import logging
import time
import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from fastapi.staticfiles import StaticFiles
from sqlmodel import Session

from .config import settings
from .database import create_db_and_tables, engine
from .jobs import AutoSubmitScheduler
from .routers import admin, auth, banks, faculty, student
from . import models, repositories, services

logger = logging.getLogger("evalify.api")
if not logger.handlers:
    logging.basicConfig(level=settings.LOG_LEVEL)


@asynccontextmanager
async def lifespan(app: FastAPI):
    create_db_and_tables()
    if settings.BOOTSTRAP_ADMIN_EMAIL:
        with Session(engine) as session:
            if repositories.UserRepository(session).count_by_role(models.Role.ADMIN) == 0:
                services.AuthService(session).ensure_admin(settings.BOOTSTRAP_ADMIN_EMAIL,
                                                           settings.BOOTSTRAP_ADMIN_PASSWORD)
    scheduler = None
    if settings.AUTO_SUBMIT_ENABLED:
        scheduler = AutoSubmitScheduler(lambda: Session(engine), settings.AUTO_SUBMIT_INTERVAL_SECONDS)
        scheduler.start()
    app.state.auto_submit = scheduler
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.stop()


app = FastAPI(title="Evalify API", lifespan=lifespan)

# Wide-open CORS keeps a local frontend dev server working without extra config.
if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

# Course images written by the admin upload endpoint.
upload_dir = Path(settings.UPLOAD_DIR)
upload_dir.mkdir(parents=True, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=upload_dir), name="uploads")


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        logger.exception(
            "request_failed %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "duration_ms": elapsed_ms,
                    "client": request.client.host if request.client else "unknown",
                },
                ensure_ascii=True,
            ),
        )
        raise
    response.headers["X-Request-ID"] = req_id
    elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
    logger.info(
        "request_done %s",
        json.dumps(
            {
                "request_id": req_id,
                "path": request.url.path,
                "method": request.method,
                "status_code": response.status_code,
                "duration_ms": elapsed_ms,
                "client": request.client.host if request.client else "unknown",
            },
            ensure_ascii=True,
        ),
    )
    return response


app.include_router(auth.router)
app.include_router(admin.router)
app.include_router(banks.router)
app.include_router(faculty.router)
app.include_router(student.router)


@app.get("/health")
def health():
    scheduler = getattr(app.state, "auto_submit", None)
    return {"status": "ok", "auto_submit_running": bool(scheduler and scheduler.running)}
