"""Management CLI.

Usage:
    python -m printerp.cli login EMAIL     # Sign in (prompts for the password)
    python -m printerp.cli logout          # Sign out and clear the cached session
    python -m printerp.cli status          # Show who is signed in, if anyone
    python -m printerp.cli resolve-columns # Show which supplier columns will be used

The session is cached in Redis under SESSION_CACHE_NAMESPACE, so `status`
works across invocations.
"""

import asyncio
import getpass
import sys

from printerp.auth.provider import GoTrueAuthProvider
from printerp.auth.session import SessionCache, SessionManager
from printerp.config import settings
from printerp.database import engine
from printerp.middleware.exceptions import AuthProviderError
from printerp.services.supplier_codec import resolve_schema_mapping
from printerp.services.table_store import SqlTableStore
from printerp.utils.cache import close_redis, get_redis


async def _session_manager() -> tuple[SessionManager, GoTrueAuthProvider]:
    provider = GoTrueAuthProvider(settings.supabase_url, settings.supabase_anon_key)
    cache = SessionCache(await get_redis(), settings.session_cache_namespace)
    manager = SessionManager(
        provider,
        cache,
        max_reauth_attempts=settings.max_reauth_attempts,
        password_reset_redirect_url=settings.password_reset_redirect_url,
    )
    return manager, provider


async def login(email: str):
    manager, provider = await _session_manager()
    password = getpass.getpass("Password: ")
    try:
        await manager.sign_in(email, password)
        user = manager.current_user()
        print(f"Signed in as {user.email} ({user.first_name} {user.last_name})".rstrip())
    except AuthProviderError as e:
        print(f"Login failed: {e.message}")
    finally:
        manager.close()
        await provider.aclose()
        await close_redis()


async def logout():
    manager, provider = await _session_manager()
    try:
        await manager.resolve_session()
        await manager.sign_out()
        print("Signed out.")
    finally:
        manager.close()
        await provider.aclose()
        await close_redis()


async def status():
    manager, provider = await _session_manager()
    try:
        session = await manager.resolve_session()
        if session is None:
            print("Not signed in.")
            return
        user = manager.current_user()
        print(f"Signed in as {user.email}")
        print(f"  role:     {user.role}")
        print(f"  language: {user.settings.language}")
    finally:
        manager.close()
        await provider.aclose()
        await close_redis()


async def resolve_columns():
    store = SqlTableStore(engine)
    try:
        mapping = await resolve_schema_mapping(store, settings)
        print(f"  table:          {mapping.table}")
        print(f"  contact column: {mapping.contact_column}")
        print(f"  read order:     {', '.join(mapping.contact_read_order)}")
        print(f"  search columns: {', '.join(mapping.search_columns)}")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    cmd = sys.argv[1] if len(sys.argv) > 1 else ""
    if cmd == "login" and len(sys.argv) > 2:
        asyncio.run(login(sys.argv[2]))
    elif cmd == "logout":
        asyncio.run(logout())
    elif cmd == "status":
        asyncio.run(status())
    elif cmd == "resolve-columns":
        asyncio.run(resolve_columns())
    else:
        print("Usage: python -m printerp.cli [login EMAIL|logout|status|resolve-columns]")
