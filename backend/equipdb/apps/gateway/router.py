from __future__ import annotations

from functools import lru_cache

from fastapi import APIRouter, Depends, Request

from equipdb.database import WriteSessionLocal

from . import schemas
from .dispatcher import SecureDispatcher
from .operations import build_registry
from .registry import ClientInfo

router = APIRouter(
    prefix="/gateway",
    tags=["gateway"],
)


@lru_cache(maxsize=1)
def get_dispatcher() -> SecureDispatcher:
    """Built on first use and shared for the life of the process."""
    return SecureDispatcher(build_registry(), WriteSessionLocal)


def client_info(request: Request) -> ClientInfo:
    return ClientInfo(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


@router.post("/dispatch")
def dispatch(
    payload: schemas.DispatchRequest,
    request: Request,
    dispatcher: SecureDispatcher = Depends(get_dispatcher),
):
    # Gateway failures are part of the envelope; the status code stays 200.
    return dispatcher.dispatch_envelope(payload.model_dump(), client=client_info(request))
