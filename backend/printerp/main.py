import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from printerp.config import settings
from printerp.middleware.exceptions import register_exception_handlers
from printerp.routers import auth, health, suppliers, verification
from printerp.services.lifespan import lifespan

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="PrintERP",
    description="Printing press ERP: suppliers, verification and accounts",
    version="0.1.0",
    lifespan=lifespan,
)

# ── Exception Handlers ───────────────────────────────────────
register_exception_handlers(app)

# ── Middleware ───────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Routers ──────────────────────────────────────────────────
app.include_router(health.router)
app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
app.include_router(verification.router, prefix="/api/verification", tags=["verification"])
app.include_router(suppliers.router, prefix="/api/suppliers", tags=["suppliers"])
