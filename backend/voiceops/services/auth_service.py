"""Authentication service."""

import hashlib
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from voiceops.config import get_settings
from voiceops.db.models import ProfileDB, UserRoleDB
from voiceops.models.user import UserRole


def _simple_hash(password: str) -> str:
    """Simple SHA256 hash for development (replace with bcrypt in production)."""
    return hashlib.sha256(password.encode()).hexdigest()


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash."""
    return _simple_hash(plain_password) == hashed_password


def get_password_hash(password: str) -> str:
    """Hash a password."""
    return _simple_hash(password)


def _profile_to_user(profile: ProfileDB) -> dict[str, Any]:
    role = profile.role.role if profile.role else UserRole.CLIENT
    return {
        "id": profile.id,
        "username": profile.username,
        "email": profile.email,
        "full_name": profile.full_name,
        "phone": profile.phone,
        "role": role.value if isinstance(role, UserRole) else str(role),
        "client_id": profile.client_id,
        "is_active": profile.is_active,
        "hashed_password": profile.hashed_password,
    }


async def get_user(session: AsyncSession, username: str) -> dict[str, Any] | None:
    """Get user by username."""
    result = await session.execute(select(ProfileDB).where(ProfileDB.username == username))
    profile = result.scalar_one_or_none()
    if profile is None:
        return None
    return _profile_to_user(profile)


async def authenticate_user(
    session: AsyncSession, username: str, password: str
) -> dict[str, Any] | None:
    """Authenticate a user."""
    user = await get_user(session, username)
    if not user:
        return None
    if not user["is_active"]:
        return None
    if not verify_password(password, user["hashed_password"]):
        return None
    return user


async def create_user(
    session: AsyncSession,
    username: str,
    password: str,
    role: UserRole,
    email: str | None = None,
    full_name: str | None = None,
    phone: str | None = None,
    client_id: str | None = None,
    user_id: str | None = None,
) -> ProfileDB:
    """Create a profile with its role row."""
    profile = ProfileDB(
        id=user_id or str(uuid.uuid4()),
        username=username,
        email=email,
        full_name=full_name,
        phone=phone,
        hashed_password=get_password_hash(password),
        client_id=client_id,
    )
    profile.role = UserRoleDB(user_id=profile.id, role=role)
    session.add(profile)
    await session.flush()
    return profile


def create_access_token(data: dict[str, Any], expires_delta: timedelta | None = None) -> str:
    """Create a JWT access token."""
    settings = get_settings()
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.access_token_expire_minutes)

    to_encode.update({"exp": expire, "type": "access"})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def create_refresh_token(data: dict[str, Any]) -> str:
    """Create a JWT refresh token."""
    settings = get_settings()
    to_encode = data.copy()

    expire = datetime.now(timezone.utc) + timedelta(days=settings.refresh_token_expire_days)
    to_encode.update({"exp": expire, "type": "refresh"})

    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_token(token: str) -> dict[str, Any] | None:
    """Decode and validate a JWT token."""
    settings = get_settings()
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None


def _verify_typed_token(token: str, token_type: str) -> dict[str, Any] | None:
    payload = decode_token(token)
    if payload is None:
        return None
    if payload.get("type") != token_type:
        return None
    return payload


def verify_access_token(token: str) -> dict[str, Any] | None:
    """Verify an access token and return the payload."""
    return _verify_typed_token(token, "access")


def verify_refresh_token(token: str) -> dict[str, Any] | None:
    """Verify a refresh token and return the payload."""
    return _verify_typed_token(token, "refresh")


def create_recording_token(call_id: str, expires_in_seconds: int | None = None) -> str:
    """
    Create a short-lived token that grants playback of one recording.

    The token only names the call; the recording URL is looked up again
    when the token is redeemed.
    """
    settings = get_settings()
    ttl = expires_in_seconds or settings.recording_token_ttl_seconds
    expire = datetime.now(timezone.utc) + timedelta(seconds=ttl)
    return jwt.encode(
        {"sub": call_id, "exp": expire, "type": "recording"},
        settings.secret_key,
        algorithm=settings.algorithm,
    )


def verify_recording_token(token: str) -> str | None:
    """Return the call id of a valid, unexpired recording token."""
    payload = _verify_typed_token(token, "recording")
    if payload is None:
        return None
    call_id = payload.get("sub")
    return call_id if isinstance(call_id, str) else None
