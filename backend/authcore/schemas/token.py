"""Token schemas for authentication."""
from pydantic import BaseModel, Field
from typing import Optional


class IdentityClaim(BaseModel):
    """Minimal identity signed into every token."""

    sub: str
    username: str
    email: str
    role: str


class TokenClaims(IdentityClaim):
    """Decoded token payload."""

    type: str
    exp: int
    iat: Optional[int] = None
    jti: Optional[str] = None


class TokenPair(BaseModel):
    """Token pair response model."""

    access_token: str = Field(..., description="JWT access token (short-lived)")
    refresh_token: str = Field(..., description="JWT refresh token (long-lived)")
    token_type: str = Field("bearer", description="Token type")
    expires_in: int = Field(900, description="Access token expiration in seconds")


class RefreshResponse(BaseModel):
    """Result of exchanging a refresh token."""

    access_token: str = Field(..., description="New JWT access token")
    refresh_token: str = Field(..., description="Refresh token to keep using; new only when rotation is enabled")
    rotated: bool = Field(False, description="Whether the refresh token was replaced")
    token_type: str = Field("bearer", description="Token type")
    expires_in: int = Field(900, description="Access token expiration in seconds")
