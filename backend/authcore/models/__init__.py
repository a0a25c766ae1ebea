from authcore.models.user import User, Role
from authcore.models.refresh_token import RefreshToken

__all__ = [
    'User',
    'Role',
    'RefreshToken',
]
