"""Shared API dependencies for authentication and the federation runtime."""

from typing import Annotated, Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from lumen_federation.core.settings import settings
from lumen_federation.db.session import get_db
from lumen_federation.services.runtime import FederationRuntime

MODERATION_ROLES = frozenset({"moderator", "administrator"})

# HTTP Bearer scheme for JWT authentication
bearer_scheme = HTTPBearer()

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]


def get_runtime(request: Request) -> FederationRuntime:
    """Return the federation runtime created at application startup."""
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Federation runtime is not running",
        )
    return runtime


RuntimeDep = Annotated[FederationRuntime, Depends(get_runtime)]


def require_moderator(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)],
) -> dict[str, Any]:
    """Validate the bearer token and require a moderation role.

    Args:
        credentials: HTTP Bearer token credentials

    Returns:
        The decoded token claims

    Raises:
        HTTPException: 401 if the token is invalid, 403 without a moderation role
    """
    try:
        payload = jwt.decode(
            credentials.credentials,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError as err:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        ) from err

    if payload.get("sub") is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )
    roles = payload.get("roles") or []
    if isinstance(roles, str):
        roles = [roles]
    if not MODERATION_ROLES.intersection(roles):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Moderator role required",
        )
    return payload


ModeratorDep = Annotated[dict[str, Any], Depends(require_moderator)]
