import enum
import uuid

from sqlalchemy import Column, String, Boolean, DateTime, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from authcore.core.database import Base


class Role(str, enum.Enum):
    """Known roles. The column is a plain string so new roles need no migration."""

    USER = "user"
    ADMIN = "admin"


class User(Base):
    __tablename__ = 'users'

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    username = Column(String(50), unique=True, nullable=False, index=True)
    # Always stored lower-cased
    email = Column(String(255), unique=True, nullable=False, index=True)
    # NULL for accounts created through an external identity provider
    hashed_password = Column(String(255), nullable=True)
    first_name = Column(String(50))
    last_name = Column(String(50))
    role = Column(String(32), nullable=False, default=Role.USER.value)
    is_active = Column(Boolean, nullable=False, default=True)
    last_login = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Never loaded implicitly; sessions are read through SessionStore queries
    refresh_tokens = relationship(
        'RefreshToken',
        back_populates='user',
        cascade='all, delete-orphan',
        passive_deletes=True,
        lazy='raise',
    )

    def __repr__(self):
        return f"<User {self.username}>"
