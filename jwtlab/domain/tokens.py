from __future__ import annotations

from datetime import datetime

import jwt
from pydantic import BaseModel, ValidationError

from .errors import InvalidTokenError, SigningError
from .models import to_epoch

__all__ = [
    "ALGORITHM",
    "REQUIRED_CLAIMS",
    "TokenClaims",
    "ExpiredTokenError",
    "MalformedTokenError",
    "build_claims",
    "sign_token",
    "verify_token",
]

# HS256 is the only algorithm accepted on both sides.
ALGORITHM = "HS256"
REQUIRED_CLAIMS = ("jti", "iat", "exp", "nbf")


# ------------------------
# Errors
# ------------------------
class ExpiredTokenError(InvalidTokenError):
    code = "token_expired"


class MalformedTokenError(InvalidTokenError):
    code = "malformed_token"


# ------------------------
# Schema
# ------------------------
class TokenClaims(BaseModel):
    """Registered claims carried by every issued credential (epoch seconds)."""

    jti: str
    iat: int
    exp: int
    nbf: int


def build_claims(*, token_id: str, issued_at: datetime, expires_at: datetime) -> TokenClaims:
    """Claims for a token id and validity window; `nbf` equals `iat`."""
    iat = to_epoch(issued_at)
    return TokenClaims(jti=token_id, iat=iat, exp=to_epoch(expires_at), nbf=iat)


# ------------------------
# Public sign/verify
# ------------------------

def sign_token(*, token_id: str, issued_at: datetime, expires_at: datetime, secret: str | bytes) -> str:
    """Return a compact HS256 JWT for the given id and validity window.

    The output is byte-stable for identical inputs. Time ranges are not
    checked here; an already expired window still signs.
    """
    claims = build_claims(token_id=token_id, issued_at=issued_at, expires_at=expires_at)
    try:
        return jwt.encode(claims.model_dump(), secret, algorithm=ALGORITHM)
    except (jwt.PyJWTError, TypeError, ValueError) as e:
        raise SigningError(f"failed to sign token {token_id}: {e}") from e


def verify_token(token: str, *, secret: str | bytes) -> TokenClaims:
    """Check signature, expiry and not-before of `token` and return its claims.

    Raises an `InvalidTokenError` subclass describing the first failure.
    """
    if not token:
        raise MalformedTokenError("Token is empty")
    try:
        data = jwt.decode(
            token,
            secret,
            algorithms=[ALGORITHM],
            options={"require": list(REQUIRED_CLAIMS)},
        )
    except jwt.ExpiredSignatureError as e:
        raise ExpiredTokenError("Token has expired") from e
    except jwt.ImmatureSignatureError as e:
        raise InvalidTokenError("Token is not valid yet") from e
    except jwt.InvalidSignatureError as e:
        raise InvalidTokenError("Token signature mismatch") from e
    except jwt.MissingRequiredClaimError as e:
        raise MalformedTokenError(f"Token is missing the {e.claim} claim") from e
    except jwt.PyJWTError as e:
        raise MalformedTokenError(f"Token cannot be decoded: {e}") from e

    try:
        return TokenClaims(**data)
    except ValidationError as e:
        raise MalformedTokenError(f"Token claims invalid: {e}") from e
