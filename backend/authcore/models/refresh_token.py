"""Session record model: one row per signed-in device."""
from sqlalchemy import Column, String, DateTime, ForeignKey, Uuid
from sqlalchemy.orm import relationship
import uuid

from authcore.core.database import Base


class RefreshToken(Base):
    """Server-side half of a refresh token, keyed by a generated session id."""

    __tablename__ = "refresh_tokens"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    # SHA-256 of the bearer token
    token_hash = Column(String(64), unique=True, nullable=False, index=True)
    # Equal to the exp claim signed into the token
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    device_info = Column(String(255), nullable=False, default="Unknown device")
    created_at = Column(DateTime(timezone=True), nullable=False)
    last_used_at = Column(DateTime(timezone=True), nullable=True)

    user = relationship("User", back_populates="refresh_tokens", lazy="raise")

    def __repr__(self) -> str:
        """String representation of refresh token."""
        return f"<RefreshToken session={self.id} user={self.user_id}>"
