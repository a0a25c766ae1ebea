from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import List, Optional
import re
from uuid import UUID

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _normalize_email(v: str) -> str:
    v = v.strip().lower()
    if not EMAIL_RE.match(v):
        raise ValueError("Invalid email address")
    return v


class UserBase(BaseModel):
    username: str = Field(..., min_length=3, max_length=50)
    email: str = Field(..., max_length=255)

    @field_validator("username")
    @classmethod
    def username_alphanumeric(cls, v):
        if not re.match(r"^[a-zA-Z0-9_]+$", v):
            raise ValueError("Username must be alphanumeric")
        return v

    @field_validator("email")
    @classmethod
    def email_lowercase(cls, v):
        return _normalize_email(v)


class UserCreate(UserBase):
    password: str = Field(..., min_length=6, max_length=128)
    first_name: Optional[str] = Field(None, max_length=50)
    last_name: Optional[str] = Field(None, max_length=50)


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    username: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: str
    is_active: bool = True
    last_login: Optional[datetime] = None

    @field_validator("id", mode="before")
    @classmethod
    def convert_uuid_to_str(cls, v):
        """Convert UUID to string for serialization"""
        if isinstance(v, UUID):
            return str(v)
        return v


class CurrentUser(BaseModel):
    """Identity attached to an authenticated request. No secrets, no sessions."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    username: str
    email: str
    role: str

    @field_validator("id", mode="before")
    @classmethod
    def convert_uuid_to_str(cls, v):
        if isinstance(v, UUID):
            return str(v)
        return v


class LoginRequest(BaseModel):
    email: str
    password: str
    device_info: Optional[str] = Field(None, max_length=255)

    @field_validator("email")
    @classmethod
    def email_lowercase(cls, v):
        return v.strip().lower()


class ExternalIdentity(BaseModel):
    """Identity handed over by a federated sign-in provider after it verified the user."""

    email: str
    name: Optional[str] = None

    @field_validator("email")
    @classmethod
    def email_lowercase(cls, v):
        return _normalize_email(v)


class PasswordChange(BaseModel):
    current_password: Optional[str] = None
    new_password: str = Field(..., min_length=6, max_length=128)


class UserAdminUpdate(BaseModel):
    is_active: Optional[bool] = None
    role: Optional[str] = Field(None, min_length=1, max_length=32)


class SessionInfo(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    device_info: str
    created_at: Optional[datetime] = None
    expires_at: datetime
    last_used_at: Optional[datetime] = None

    @field_validator("id", mode="before")
    @classmethod
    def convert_uuid_to_str(cls, v):
        if isinstance(v, UUID):
            return str(v)
        return v


class SessionList(BaseModel):
    active_sessions: List[SessionInfo]
    total: int


class CleanupStats(BaseModel):
    total_users: int
    users_with_expired_sessions: int
    total_expired_sessions: int


class SweepResult(BaseModel):
    removed: int
