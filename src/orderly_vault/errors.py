"""
Error types for the Orderly vault connector.

Every failure surfaced by the connector is a subclass of VaultConnectorError so
callers can tell bad input, network failures and explicit remote rejections
apart without parsing messages.
"""

from typing import Any


class VaultConnectorError(Exception):
    """Base class for all connector errors."""


class ValidationError(VaultConnectorError):
    """Malformed caller input (amounts, identifiers, addresses, seeds)."""


class InvalidAmount(ValidationError):
    """Amount is zero, negative or does not fit in an unsigned 64-bit integer."""


class InvalidAccountId(ValidationError):
    """Account identifier is not a 32-byte hex string."""


class SeedValidationError(ValidationError):
    """Seed list violates the protocol limits for address derivation."""


class DerivationExhausted(VaultConnectorError):
    """No bump in the search range produced an off-curve address."""


class SigningUnavailable(VaultConnectorError):
    """Key material is malformed or cannot be loaded."""


class FlowStateError(VaultConnectorError):
    """A message flow was driven out of order or reused."""


class RemoteUnavailable(VaultConnectorError):
    """Network or transport failure while talking to a remote service."""


class NonceFetchFailed(RemoteUnavailable):
    """The remote authority could not be reached for a fresh nonce."""


class FeeQuoteUnavailable(RemoteUnavailable):
    """The cross-chain delivery fee could not be quoted."""


class RemoteRejected(VaultConnectorError):
    """The remote side answered but explicitly refused the request.

    Attributes:
        message: Message supplied by the remote side, verbatim
        code: Remote error code when one was returned
        status: HTTP status code, if the rejection came over HTTP
        data: Any additional error payload returned by the remote side
    """

    def __init__(
        self,
        message: str,
        code: int | None = None,
        status: int | None = None,
        data: Any = None
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.status = status
        self.data = data

    def __str__(self) -> str:
        parts = []
        if self.status is not None:
            parts.append(f"status={self.status}")
        if self.code is not None:
            parts.append(f"code={self.code}")
        prefix = f"[{', '.join(parts)}] " if parts else ""
        return f"{prefix}{self.message}"
