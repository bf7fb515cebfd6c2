"""FastAPI dependencies for the services built in the lifespan.

Tests replace these through `app.dependency_overrides`.
"""

from fastapi import Request

from printerp.auth.provider import AuthProvider, GoTrueAuthProvider
from printerp.auth.verification import VerificationService
from printerp.config import settings
from printerp.services.suppliers import SupplierService


def get_supplier_service(request: Request) -> SupplierService:
    return request.app.state.suppliers


def get_verification_service(request: Request) -> VerificationService:
    return request.app.state.verification


def get_auth_provider(request: Request) -> AuthProvider:
    """A provider per request; it holds at most this request's session."""
    return GoTrueAuthProvider(
        settings.supabase_url,
        settings.supabase_anon_key,
        client=request.app.state.http,
    )
