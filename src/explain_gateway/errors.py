from __future__ import annotations


class GatewayError(Exception):
    """Base class for errors raised by the gateway core."""


class Unauthorized(GatewayError):
    """Missing, invalid or expired credentials, or an unknown account."""


class OutOfCredits(GatewayError):
    """The caller's daily credits are exhausted."""

    def __init__(self, user_id: str) -> None:
        super().__init__(f"user {user_id} has no credits remaining")
        self.user_id = user_id
        self.credits_remaining = 0


class StorageError(GatewayError):
    """A database read or write failed."""


class LedgerUnavailable(GatewayError):
    """The credit ledger could not be read or updated."""


class GenerationError(GatewayError):
    """The generation backend failed before or during a stream."""


class GenerationQuotaError(GenerationError):
    """The generation backend rejected the call for quota reasons."""
