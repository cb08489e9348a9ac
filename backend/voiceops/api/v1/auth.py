"""Auth API endpoints."""

from collections.abc import Awaitable, Callable
from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from sqlalchemy.ext.asyncio import AsyncSession

from voiceops.config import get_settings
from voiceops.db.session import get_session
from voiceops.models.user import UserRole, role_of
from voiceops.schemas.auth import Token, TokenRefreshRequest, TokenRefreshResponse, UserResponse
from voiceops.services.auth_service import (
    authenticate_user,
    create_access_token,
    create_refresh_token,
    get_user,
    verify_access_token,
    verify_refresh_token,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login")
optional_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login", auto_error=False)


def _access_token_lifetime() -> int:
    return get_settings().access_token_expire_minutes * 60


async def user_from_token(session: AsyncSession, token: str | None) -> dict[str, Any] | None:
    """Resolve an access token to an active user, or None."""
    if not token:
        return None

    payload = verify_access_token(token)
    if payload is None:
        return None

    username = payload.get("sub")
    if not username:
        return None

    user = await get_user(session, username)
    if user is None or not user["is_active"]:
        return None
    return user


async def get_current_user(
    token: Annotated[str, Depends(oauth2_scheme)],
    session: Annotated[AsyncSession, Depends(get_session)],
) -> dict[str, Any]:
    """Get current user from JWT token."""
    user = await user_from_token(session, token)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


async def get_optional_user(
    token: Annotated[str | None, Depends(optional_oauth2_scheme)],
    session: Annotated[AsyncSession, Depends(get_session)],
) -> dict[str, Any] | None:
    """Current user when a valid token was sent, otherwise None."""
    return await user_from_token(session, token)


def require_roles(*roles: UserRole) -> Callable[..., Awaitable[dict[str, Any]]]:
    """Dependency that lets only the given roles through (403 otherwise)."""
    allowed = frozenset(roles)

    async def dependency(
        current_user: Annotated[dict[str, Any], Depends(get_current_user)],
    ) -> dict[str, Any]:
        if role_of(current_user) not in allowed:
            logger.info(
                "role_denied",
                user_id=current_user["id"],
                role=current_user.get("role"),
            )
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
        return current_user

    return dependency


@router.post("/login", response_model=Token)
async def login(
    form_data: Annotated[OAuth2PasswordRequestForm, Depends()],
    session: Annotated[AsyncSession, Depends(get_session)],
) -> Token:
    """
    Login with username and password.

    Returns access and refresh tokens.
    """
    user = await authenticate_user(session, form_data.username, form_data.password)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    access_token = create_access_token(data={"sub": user["username"]})
    refresh_token = create_refresh_token(data={"sub": user["username"]})
    logger.info("user_logged_in", user_id=user["id"], role=user["role"])

    return Token(
        access_token=access_token,
        refresh_token=refresh_token,
        token_type="bearer",
        expires_in=_access_token_lifetime(),
    )


@router.post("/refresh", response_model=TokenRefreshResponse)
async def refresh_token(
    request: TokenRefreshRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> TokenRefreshResponse:
    """
    Refresh access token using refresh token.
    """
    payload = verify_refresh_token(request.refresh_token)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid refresh token",
        )

    username = payload.get("sub")
    if not username:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid refresh token",
        )

    # Verify user still exists
    user = await get_user(session, username)
    if not user or not user["is_active"]:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )

    access_token = create_access_token(data={"sub": username})

    return TokenRefreshResponse(access_token=access_token, expires_in=_access_token_lifetime())


@router.get("/me", response_model=UserResponse)
async def get_me(current_user: Annotated[dict[str, Any], Depends(get_current_user)]) -> UserResponse:
    """
    Get current user info.
    """
    return UserResponse(
        id=current_user["id"],
        username=current_user["username"],
        email=current_user.get("email"),
        full_name=current_user.get("full_name"),
        role=current_user["role"],
        client_id=current_user.get("client_id"),
        is_active=current_user.get("is_active", True),
    )
