"""Pure domain pieces: records, errors and the JWT signer.

Nothing here touches HTTP or the database, so the server, the store and the
load generator can all import it.
"""
__all__ = ["errors", "models", "tokens"]
