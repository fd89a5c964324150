from __future__ import annotations

__all__ = [
    "JwtLabError",
    "StoreConnectionError",
    "MigrationError",
    "PersistenceError",
    "DuplicateKeyError",
    "SigningError",
    "InvalidArgumentError",
    "MalformedRequestError",
    "InvalidTokenError",
    "RevokedTokenError",
    "TokenNotFoundError",
]


class JwtLabError(Exception):
    """Base class for every error the service raises on purpose.

    `code` is a stable machine-readable identifier; `status_code` is what the
    HTTP layer answers with. Anything that is not a `JwtLabError` is treated as
    an unexpected fault.
    """

    code: str = "internal_error"
    status_code: int = 500

    @property
    def is_client_error(self) -> bool:
        return self.status_code < 500


# ------------------------
# Store
# ------------------------
class StoreConnectionError(JwtLabError):
    """The database cannot be opened or reached (including timeouts)."""

    code = "store_unavailable"


class MigrationError(JwtLabError):
    code = "migration_failed"


class PersistenceError(JwtLabError):
    """A read, write or row-parse failure inside the store."""

    code = "persistence_failed"


class DuplicateKeyError(PersistenceError):
    code = "duplicate_key"


# ------------------------
# Signing
# ------------------------
class SigningError(JwtLabError):
    code = "signing_failed"


# ------------------------
# Client input
# ------------------------
class InvalidArgumentError(JwtLabError):
    code = "invalid_argument"
    status_code = 400


class MalformedRequestError(JwtLabError):
    code = "malformed_request"
    status_code = 502


class InvalidTokenError(JwtLabError):
    code = "invalid_token"
    status_code = 401


class RevokedTokenError(InvalidTokenError):
    code = "revoked_token"


class TokenNotFoundError(JwtLabError):
    code = "token_not_found"
    status_code = 404
