import hashlib
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext
from pydantic import SecretStr, ValidationError

from authcore.core.config import settings
from authcore.core.errors import ConfigError, TokenExpired, TokenInvalid
from authcore.schemas.token import IdentityClaim, TokenClaims

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.BCRYPT_ROUNDS,
)

# Token lifetimes, encoded into each token at issuance
ACCESS_TOKEN_EXPIRE_MINUTES = 15
REFRESH_TOKEN_EXPIRE_DAYS = 7

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    """Verify a plain password against a hashed password.

    Accounts created through an external identity have no hash and can
    never match.
    """
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """Hash a password."""
    return pwd_context.hash(password)


def hash_token(token: str) -> str:
    """Digest under which a refresh token is stored; the raw token never is."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _signing_key(secret: Optional[SecretStr], name: str) -> str:
    value = secret.get_secret_value() if secret else ""
    if not value.strip():
        raise ConfigError(f"{name} is not set")
    return value


def _encode(
    claim: IdentityClaim,
    token_type: str,
    lifetime: timedelta,
    key: str,
) -> Tuple[str, datetime]:
    now = datetime.now(timezone.utc)
    exp = int((now + lifetime).timestamp())
    to_encode = claim.model_dump()
    to_encode.update({
        "type": token_type,
        "iat": int(now.timestamp()),
        "exp": exp,
        # Distinguishes tokens minted for the same user within one second
        "jti": uuid.uuid4().hex,
    })
    encoded_jwt = jwt.encode(to_encode, key, algorithm=settings.JWT_ALGORITHM)
    return encoded_jwt, datetime.fromtimestamp(exp, tz=timezone.utc)


def _decode(token: str, key: str, token_type: str, verify_expiry: bool = True) -> TokenClaims:
    try:
        payload = jwt.decode(
            token,
            key,
            algorithms=[settings.JWT_ALGORITHM],
            options={"verify_exp": verify_expiry},
        )
    except ExpiredSignatureError:
        raise TokenExpired()
    except JWTError:
        raise TokenInvalid()

    if payload.get("type") != token_type or not payload.get("sub"):
        raise TokenInvalid()
    try:
        return TokenClaims(**payload)
    except ValidationError:
        raise TokenInvalid()


def issue_access_token(claim: IdentityClaim, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a short-lived JWT access token.

    Args:
        claim: Identity to encode in the token.
        expires_delta: Optional custom lifetime, defaults to 15 minutes.

    Returns:
        JWT token string.

    Raises:
        ConfigError: ACCESS_TOKEN_SECRET is not configured.
    """
    key = _signing_key(settings.ACCESS_TOKEN_SECRET, "ACCESS_TOKEN_SECRET")
    lifetime = expires_delta if expires_delta is not None else timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    token, _ = _encode(claim, ACCESS_TOKEN_TYPE, lifetime, key)
    return token


def issue_refresh_token(
    claim: IdentityClaim,
    expires_delta: Optional[timedelta] = None,
) -> Tuple[str, datetime]:
    """
    Create a long-lived JWT refresh token signed with its own secret.

    Args:
        claim: Identity to encode in the token.
        expires_delta: Optional custom lifetime, defaults to 7 days.

    Returns:
        The token string and the exact expiry encoded in it.

    Raises:
        ConfigError: REFRESH_TOKEN_SECRET is not configured.
    """
    key = _signing_key(settings.REFRESH_TOKEN_SECRET, "REFRESH_TOKEN_SECRET")
    lifetime = expires_delta if expires_delta is not None else timedelta(days=REFRESH_TOKEN_EXPIRE_DAYS)
    return _encode(claim, REFRESH_TOKEN_TYPE, lifetime, key)


def verify_access_token(token: str) -> TokenClaims:
    """
    Decode and validate an access token.

    Raises:
        TokenExpired: the encoded expiry has passed.
        TokenInvalid: bad signature, malformed token or wrong token type.
    """
    key = _signing_key(settings.ACCESS_TOKEN_SECRET, "ACCESS_TOKEN_SECRET")
    return _decode(token, key, ACCESS_TOKEN_TYPE)


def verify_refresh_token(token: str, verify_expiry: bool = True) -> TokenClaims:
    """
    Decode and validate a refresh token.

    ``verify_expiry=False`` still checks the signature; it only lets an
    expired token identify its owner, which sign-out needs.
    """
    key = _signing_key(settings.REFRESH_TOKEN_SECRET, "REFRESH_TOKEN_SECRET")
    return _decode(token, key, REFRESH_TOKEN_TYPE, verify_expiry=verify_expiry)


def dummy_verify_password() -> None:
    """Spend the same time as a real check when there is no account to check against."""
    pwd_context.dummy_verify()
