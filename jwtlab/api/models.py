from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from ..domain.models import Token, TokenUsage


class TokenOut(BaseModel):
    """A token record as exposed over HTTP.

    `token`, `client_ip` and `user_agent` are only present right after
    issuance; `last_used_at` only after a validation.
    """

    model_config = ConfigDict(from_attributes=True)

    id: str
    is_revoked: bool
    issued_at: datetime
    expires_at: datetime
    updated_at: datetime
    token: Optional[str] = None
    client_ip: Optional[str] = None
    user_agent: Optional[str] = None
    last_used_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: Token) -> TokenOut:
        return cls.model_validate(record)


class TokenUsageOut(BaseModel):
    """One recorded presentation of a token."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    token_id: str
    used_at: datetime
    client_ip: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def from_record(cls, record: TokenUsage) -> TokenUsageOut:
        return cls.model_validate(record)


class ValidationOut(BaseModel):
    """Result of presenting a credential."""

    valid: bool
    token: TokenOut


class ErrorOut(BaseModel):
    detail: str
    error_code: Optional[str] = None
