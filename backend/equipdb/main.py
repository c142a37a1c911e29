# backend/equipdb/main.py
import logging
import os
from typing import List

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .apps.compliance import router as compliance_router_module
from .apps.compliance.router import router as compliance_router
from .apps.gateway.router import router as gateway_router
from .database import ReadSessionLocal, create_schema
from .jobs.compliance_check_runner import ComplianceCheckRunner

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)


def _allowed_origins() -> List[str]:
    """
    Parse CORS_ALLOWED_ORIGINS from env.

    Accepts comma-separated origins. If unset, defaults to local dev ports.
    """
    raw = os.getenv("CORS_ALLOWED_ORIGINS", "")
    if raw:
        origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
        if origins:
            return origins
    return [
        "http://127.0.0.1:5173",
        "http://localhost:5173",
    ]


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes", "on"}


app = FastAPI(title="EquipDB Compliance API", version="1.0.0")
cors_origins = _allowed_origins()
allow_credentials = "*" not in cors_origins

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def _startup() -> None:
    # Embedded installs create their tables on first start.
    if _env_flag("EQUIPDB_CREATE_SCHEMA"):
        create_schema()
    if _env_flag("COMPLIANCE_CHECK_ENABLED", "true"):
        runner = ComplianceCheckRunner(ReadSessionLocal)
        runner.start()
        compliance_router_module.set_runner(runner)
        logger.info("Compliance check runner started", extra={"interval_sec": runner.interval_sec})


@app.on_event("shutdown")
def _shutdown() -> None:
    runner = compliance_router_module.get_runner()
    if runner is not None:
        runner.stop()
        compliance_router_module.set_runner(None)


@app.get("/", tags=["health"])
def read_root():
    return {"status": "ok", "message": "EquipDB backend is running"}


@app.get("/health", tags=["health"])
def health():
    return {"status": "ok"}


app.include_router(gateway_router)
app.include_router(compliance_router)
