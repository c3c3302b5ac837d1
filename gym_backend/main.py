import logging
import math
import os

import psycopg2
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from gym_backend import app_context
from gym_backend.app.memberships import MembershipError
from gym_backend.app.routes.memberships import router as memberships_router
from gym_backend.config import load_membership_config
from gym_backend.sweeps import shutdown_sweep_scheduler, start_sweep_scheduler

load_dotenv()

logger = logging.getLogger("memberships")


def _parse_connect_timeout(raw_value: str) -> int:
    try:
        timeout = float(raw_value)
    except ValueError as exc:
        raise ValueError("DB_CONNECT_TIMEOUT must be a number") from exc
    if timeout < 0:
        raise ValueError("DB_CONNECT_TIMEOUT must be non-negative")
    return int(math.ceil(timeout))


MEMBERSHIP_CONFIG = load_membership_config()

DB_CFG = dict(
    host=os.getenv("DB_HOST", "127.0.0.1"),
    port=int(os.getenv("DB_PORT", "5432")),
    dbname=os.getenv("DB_NAME", "gym_db"),
    user=os.getenv("DB_USER", "gym_user"),
    password=os.getenv("DB_PASSWORD", "gym_pass"),
    connect_timeout=_parse_connect_timeout(os.getenv("DB_CONNECT_TIMEOUT", "5")),
    options=f"-c statement_timeout={MEMBERSHIP_CONFIG.statement_timeout_ms}",
)

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:5173").split(",")
    if origin.strip()
]


def get_conn():
    return psycopg2.connect(**DB_CFG)


app_context.configure(get_conn=get_conn)

app = FastAPI(title="Gym memberships")
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(memberships_router)


@app.exception_handler(MembershipError)
async def _membership_error_handler(request: Request, exc: MembershipError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": dict(exc.payload)})


@app.on_event("startup")
def _start_sweep_scheduler() -> None:
    start_sweep_scheduler(MEMBERSHIP_CONFIG)


@app.on_event("shutdown")
def _shutdown_sweep_scheduler() -> None:
    shutdown_sweep_scheduler()


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}
