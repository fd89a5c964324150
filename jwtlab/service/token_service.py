from __future__ import annotations

import re
import time
from datetime import datetime, timedelta
from uuid import uuid4

from ..domain.errors import (
    InvalidArgumentError,
    InvalidTokenError,
    RevokedTokenError,
    TokenNotFoundError,
)
from ..domain.models import Token, TokenUsage, from_epoch
from ..domain.tokens import sign_token, verify_token
from ..logging_conf import get_logger
from ..store import SQLiteTokenStore

__all__ = [
    "DEFAULT_EXPIRES_SEC",
    "MAX_EXPIRES_SEC",
    "TokenService",
    "client_address",
    "now_s",
    "parse_expires_sec",
]

logger = get_logger("service.tokens")

DEFAULT_EXPIRES_SEC = 24 * 60 * 60
# 100 years; keeps expiry representable as a datetime.
MAX_EXPIRES_SEC = 100 * 365 * DEFAULT_EXPIRES_SEC

_DIGITS_RE = re.compile(r"[0-9]+")


def now_s() -> datetime:
    """Current UTC time truncated to whole seconds."""
    return from_epoch(int(time.time()))


def parse_expires_sec(raw: str | int | None) -> int:
    """Turn the optional `expires_sec` input into a lifetime in seconds.

    Missing or empty means one day. Anything but a plain non-negative decimal
    integer raises `InvalidArgumentError`.
    """
    if raw is None or raw == "":
        return DEFAULT_EXPIRES_SEC
    if isinstance(raw, bool):
        raise InvalidArgumentError("Invalid expires_sec parameter")
    if isinstance(raw, int):
        value = raw
    elif isinstance(raw, str) and _DIGITS_RE.fullmatch(raw):
        value = int(raw)
    else:
        raise InvalidArgumentError("Invalid expires_sec parameter")
    if value < 0 or value > MAX_EXPIRES_SEC:
        raise InvalidArgumentError(f"expires_sec must be between 0 and {MAX_EXPIRES_SEC}")
    return value


def client_address(forwarded_for: str | None, peer: str | None) -> str:
    """Best-effort client address: X-Forwarded-For first, then the socket peer."""
    if forwarded_for:
        return forwarded_for
    return peer or ""


class TokenService:
    """Issue, list, validate and revoke tokens on top of a store and a secret."""

    def __init__(self, store: SQLiteTokenStore, *, secret: str | bytes, store_timeout: float | None = None) -> None:
        self.store = store
        self._secret = secret
        self.store_timeout = store_timeout

    # ------------------------
    # Use-cases
    # ------------------------

    def issue(
        self,
        *,
        expires_sec: str | int | None = None,
        client_ip: str | None = None,
        user_agent: str | None = None,
    ) -> Token:
        """Sign a new token and persist its record.

        The input is validated before anything is signed or written, and a
        signed string is only returned once its record is stored.
        """
        lifetime = parse_expires_sec(expires_sec)
        issued_at = now_s()
        expires_at = issued_at + timedelta(seconds=lifetime)
        token_id = str(uuid4())

        signed = sign_token(
            token_id=token_id,
            issued_at=issued_at,
            expires_at=expires_at,
            secret=self._secret,
        )
        token = Token(
            id=token_id,
            is_revoked=False,
            issued_at=issued_at,
            expires_at=expires_at,
            updated_at=issued_at,
            token=signed,
            client_ip=client_ip,
            user_agent=user_agent,
        )
        self.store.create(token, timeout=self.store_timeout)
        logger.info(
            "token.issue",
            extra={"event": "token_issue", "token_id": token_id, "expires_sec": lifetime},
        )
        return token

    def list_all(self) -> list[Token]:
        return self.store.list_tokens(timeout=self.store_timeout)

    def validate(self, token: str, *, client_ip: str | None = None, user_agent: str | None = None) -> Token:
        """Check a presented credential and log its use.

        Signature and expiry are verified first; the record must then exist
        and not be revoked.
        """
        claims = verify_token(token, secret=self._secret)
        record = self.store.get(claims.jti, timeout=self.store_timeout)
        if record is None:
            raise InvalidTokenError("Token is not known to this service")
        if record.is_revoked:
            raise RevokedTokenError("Token has been revoked")

        usage = self.store.record_usage(
            TokenUsage(token_id=record.id, used_at=now_s(), client_ip=client_ip, user_agent=user_agent),
            timeout=self.store_timeout,
        )
        record.last_used_at = usage.used_at
        logger.info("token.validate", extra={"event": "token_validate", "token_id": record.id})
        return record

    def revoke(self, token_id: str) -> Token:
        """Mark a token revoked. Revoking twice leaves the first result in place."""
        record = self.store.revoke(token_id, now=now_s(), timeout=self.store_timeout)
        if record is None:
            raise TokenNotFoundError(f"Token {token_id} not found")
        logger.info("token.revoke", extra={"event": "token_revoke", "token_id": token_id})
        return record

    def usages(self, token_id: str) -> list[TokenUsage]:
        if self.store.get(token_id, timeout=self.store_timeout) is None:
            raise TokenNotFoundError(f"Token {token_id} not found")
        return self.store.list_usages(token_id, timeout=self.store_timeout)

    def delete(self, token_id: str) -> None:
        if not self.store.delete(token_id, timeout=self.store_timeout):
            raise TokenNotFoundError(f"Token {token_id} not found")
        logger.info("token.delete", extra={"event": "token_delete", "token_id": token_id})
