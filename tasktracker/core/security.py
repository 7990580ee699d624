"""
Password hashing and bearer token issuance/verification.

Tokens are HS256 JWTs carrying the user id (``sub``) and role. Decoding
only accepts the configured algorithm, so a token re-signed with another
algorithm (or ``none``) is rejected as a bad signature.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache

import bcrypt
import jwt

from tasktracker.core.config import Settings
from tasktracker.models import UserRole


class TokenError(Exception):
    """Base class for token verification failures."""


class MalformedTokenError(TokenError):
    pass


class InvalidSignatureError(TokenError):
    pass


class ExpiredTokenError(TokenError):
    pass


@dataclass(frozen=True)
class TokenClaims:
    user_id: int
    role: UserRole
    expires_at: datetime


def hash_password(password: str, rounds: int = 12) -> str:
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds))
    return hashed.decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        # Over-long input or a corrupt stored hash never verifies.
        return False


@lru_cache(maxsize=4)
def dummy_password_hash(rounds: int) -> str:
    """Hash compared against when the email is unknown, to keep login timing flat."""
    return hash_password("not-a-real-password", rounds=rounds)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def create_access_token(
    user_id: int,
    role: UserRole,
    settings: Settings,
    now: datetime | None = None,
) -> str:
    issued_at = now or _utc_now()
    expires_at = issued_at + timedelta(days=settings.jwt_expires_days)
    payload = {
        "sub": str(user_id),
        "role": UserRole(role).value,
        "iat": int(issued_at.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    return jwt.encode(
        payload,
        settings.jwt_secret.get_secret_value(),
        algorithm=settings.jwt_algorithm,
    )


def decode_access_token(
    token: str,
    settings: Settings,
    now: datetime | None = None,
) -> TokenClaims:
    """
    Verify a token and return its claims.

    Raises:
        MalformedTokenError: not a JWT, or required claims missing/invalid
        InvalidSignatureError: signature or algorithm does not match
        ExpiredTokenError: current time is at or past ``exp``
    """
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret.get_secret_value(),
            algorithms=[settings.jwt_algorithm],
            # Expiry is checked below against an injectable clock.
            options={"verify_exp": False, "require": ["sub", "role", "exp"]},
        )
    except (jwt.InvalidSignatureError, jwt.InvalidAlgorithmError) as e:
        raise InvalidSignatureError(str(e)) from e
    except jwt.InvalidTokenError as e:
        raise MalformedTokenError(str(e)) from e

    try:
        user_id = int(payload["sub"])
        role = UserRole(payload["role"])
        exp = int(payload["exp"])
    except (TypeError, ValueError) as e:
        raise MalformedTokenError(f"Invalid claims: {e}") from e

    current = (now or _utc_now()).timestamp()
    if current >= exp:
        raise ExpiredTokenError("Token has expired")

    return TokenClaims(
        user_id=user_id,
        role=role,
        expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
    )
