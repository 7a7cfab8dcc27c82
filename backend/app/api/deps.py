"""
Shared route dependencies: the booking engine, host identity and engine-error mapping.
Tests swap the engine through app.dependency_overrides[get_engine].
"""
import logging
from functools import lru_cache
from typing import NoReturn

from fastapi import Header, HTTPException

from app.core.errors import BookingEngineError, engine_error_to_http
from app.services.allocation.engine import BookingEngine, build_engine

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_engine() -> BookingEngine:
    return build_engine()


def require_host_id(x_host_id: str | None = Header(None, alias="X-Host-Id")) -> str:
    host_id = (x_host_id or "").strip()
    if not host_id:
        raise HTTPException(status_code=401, detail="X-Host-Id header required")
    return host_id


def optional_host_id(x_host_id: str | None = Header(None, alias="X-Host-Id")) -> str | None:
    return (x_host_id or "").strip() or None


def raise_http(exc: BookingEngineError) -> NoReturn:
    http_exc = engine_error_to_http(exc)
    if http_exc.status_code >= 500:
        logger.error("Engine error: %s", exc)
    else:
        logger.info("Engine rejected request: %s", exc)
    raise http_exc from exc
