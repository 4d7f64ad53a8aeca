# /backend/medtrack/main.py

from __future__ import annotations
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from medtrack.api.middleware import limiter, log_requests, rate_limit_exceeded, security_headers
from medtrack.api.responses import send_error, validation_error
from medtrack.api.routers import auth, users, medicines, reminders
from medtrack.config import CORS_ORIGINS, CREATE_TABLES_ON_STARTUP, LOG_LEVEL, UPLOAD_DIR
from medtrack.db import Base, SessionLocal, engine, get_db
from medtrack.errors import MedtrackError, PersistenceFailure
from medtrack.seed import seed_roles

logger = logging.getLogger(__name__)


async def create_tables():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with SessionLocal() as session:
        await seed_roles(session)
        await session.commit()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    if CREATE_TABLES_ON_STARTUP:
        # production schema comes from alembic; this is for local runs
        await create_tables()
    try:
        yield
    finally:
        await engine.dispose()


app = FastAPI(
    title="Medtrack API",
    lifespan=lifespan,
)

app.state.limiter = limiter

# last added runs first: CORS, then logging, headers and rate limiting
app.add_middleware(SlowAPIMiddleware)
app.middleware("http")(security_headers)
app.middleware("http")(log_requests)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

os.makedirs(UPLOAD_DIR, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=UPLOAD_DIR), name="uploads")

app.include_router(auth.router)
app.include_router(users.router)
app.include_router(medicines.router)
app.include_router(reminders.router)


@app.exception_handler(MedtrackError)
async def medtrack_error_handler(request: Request, exc: MedtrackError):
    return send_error(exc)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return send_error(validation_error(exc.errors()))


app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return send_error(PersistenceFailure())


@app.get("/")
@limiter.exempt
async def root():
    return {"message": "Medtrack API is running!"}


@app.get("/health")
@limiter.exempt
async def health():
    return {"ok": True}


@app.get("/db-health")
@limiter.exempt
async def db_health(db: AsyncSession = Depends(get_db)):
    result = await db.execute(text("SELECT 1"))
    return {"db": "ok", "result": result.scalar_one()}
