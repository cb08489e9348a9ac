"""Auth schemas."""

from pydantic import BaseModel, Field

from voiceops.models.user import UserRole


class Token(BaseModel):
    """Access and refresh token pair issued at login."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int = Field(..., description="Access token lifetime in seconds")


class TokenRefreshRequest(BaseModel):
    refresh_token: str


class TokenRefreshResponse(BaseModel):
    """New access token for a still-valid refresh token."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int


class UserResponse(BaseModel):
    """Signed-in user. Sub-users carry their client's id as ``client_id``."""

    id: str
    username: str
    email: str | None = None
    full_name: str | None = None
    role: UserRole
    client_id: str | None = None
    is_active: bool = True
