"""Application startup and shutdown.

Startup wires the long-lived collaborators onto `app.state`:
  - http        shared httpx client for the auth service
  - suppliers   SupplierService (contact column resolved once, here)
  - verification VerificationService backed by Redis

Usage (main.py):
    from printerp.services.lifespan import lifespan
    app = FastAPI(lifespan=lifespan, ...)
"""

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from printerp.auth.dispatch import build_dispatcher
from printerp.auth.verification import RedisCodeStore, VerificationService
from printerp.config import settings
from printerp.database import engine
from printerp.services.supplier_codec import SupplierCodec, resolve_schema_mapping
from printerp.services.suppliers import SupplierService
from printerp.services.table_store import SqlTableStore
from printerp.utils.cache import close_redis, get_redis

logger = logging.getLogger("printerp.lifespan")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI lifespan: build services on startup, release connections on shutdown."""
    store = SqlTableStore(engine)
    mapping = await resolve_schema_mapping(store, settings)
    app.state.suppliers = SupplierService(store, SupplierCodec(mapping))

    redis_client = await get_redis()
    # Keep consumed records around long enough for registration to see them
    code_ttl = settings.verification_code_ttl_seconds + settings.verification_verified_window_seconds
    dispatcher = build_dispatcher(settings)
    app.state.verification = VerificationService.from_settings(
        RedisCodeStore(redis_client, ttl_seconds=code_ttl), dispatcher, settings
    )
    if dispatcher.dev_mode:
        logger.warning("No SMS/email credentials configured; codes are logged, not sent")

    app.state.http = httpx.AsyncClient(timeout=15.0)
    logger.info(f"PrintERP started ({settings.environment}), suppliers table {mapping.table!r}")
    try:
        yield
    finally:
        await app.state.http.aclose()
        await close_redis()
        await engine.dispose()
        logger.info("PrintERP stopped")
