"""Shared API dependencies for authentication and common functionality."""

from collections.abc import Callable
from contextlib import AbstractContextManager
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from tibabu_connect.core.security import InvalidTokenError, decode_subject
from tibabu_connect.db.session import SessionLocal, get_db
from tibabu_connect.models import User
from tibabu_connect.services.attachments import AttachmentStore, get_attachment_store
from tibabu_connect.services.fanout import FanOutRouter, get_fanout_router

# HTTP Bearer scheme for JWT authentication
bearer_scheme = HTTPBearer()

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]


def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)],
    db: SessionDep,
) -> User:
    """Get the current authenticated user from JWT token.

    Args:
        credentials: HTTP Bearer token credentials
        db: Database session

    Returns:
        User object for the authenticated user

    Raises:
        HTTPException: If token is invalid or user not found
    """
    try:
        user_id = decode_subject(credentials.credentials)
    except InvalidTokenError as err:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        ) from err

    user = db.get(User, user_id)
    if user is None or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )
    return user


def get_session_factory_dep() -> Callable[[], AbstractContextManager[Session]]:
    """Return a factory for short-lived sessions used outside a request."""
    return SessionLocal


def get_fanout_router_dep() -> FanOutRouter:
    """Return the shared real-time fan-out router."""
    return get_fanout_router()


def get_attachment_store_dep() -> AttachmentStore:
    """Return the shared attachment store."""
    return get_attachment_store()


# Type aliases for injected collaborators
CurrentUserDep = Annotated[User, Depends(get_current_user)]
FanOutRouterDep = Annotated[FanOutRouter, Depends(get_fanout_router_dep)]
AttachmentStoreDep = Annotated[AttachmentStore, Depends(get_attachment_store_dep)]
SessionFactoryDep = Annotated[
    Callable[[], AbstractContextManager[Session]],
    Depends(get_session_factory_dep),
]
