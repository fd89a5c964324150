from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime

__all__ = ["Token", "TokenUsage", "from_epoch", "to_epoch"]


def from_epoch(seconds: int) -> datetime:
    """Return an aware UTC datetime for epoch seconds."""
    return datetime.fromtimestamp(seconds, tz=UTC)


def to_epoch(moment: datetime) -> int:
    return int(moment.timestamp())


@dataclass
class Token:
    """Metadata of one issued credential.

    Only the first five fields are persisted. `token`, `client_ip` and
    `user_agent` exist on the record returned from issuance; `last_used_at`
    is filled in from the usage log when a token is validated.
    """

    id: str
    is_revoked: bool
    issued_at: datetime
    expires_at: datetime
    updated_at: datetime

    token: str | None = None
    client_ip: str | None = None
    user_agent: str | None = None
    last_used_at: datetime | None = None


@dataclass
class TokenUsage:
    """One successful presentation of a token."""

    token_id: str
    used_at: datetime
    client_ip: str | None = None
    user_agent: str | None = None
    id: int | None = None
