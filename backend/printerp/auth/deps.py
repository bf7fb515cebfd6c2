"""FastAPI dependencies for authentication.

Dependencies:
  get_current_user  → bearer token, checked by the auth provider, as UserProfile
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from printerp.auth.provider import AuthProvider
from printerp.dependencies import get_auth_provider
from printerp.middleware.exceptions import AuthProviderError
from printerp.schemas.auth import UserProfile

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    provider: AuthProvider = Depends(get_auth_provider),
) -> UserProfile:
    """Ask the provider who owns the token.

    The provider is the only authority on token validity; nothing is decoded
    or trusted locally.
    """
    try:
        user = await provider.get_user(token)
    except AuthProviderError as e:
        if e.status_code != status.HTTP_401_UNAUTHORIZED:
            raise
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e
    return UserProfile.from_provider_user(user)
