"""Exception hierarchy for the index settlement client."""


class IndexClientError(Exception):
    """Base class for all client errors."""


class ValidationError(IndexClientError):
    """Local input check failed; terminal, shown to the user verbatim."""


class OperationInProgressError(ValidationError):
    """Another settlement operation is already running for this user."""


class ConfigurationError(IndexClientError):
    """Remote index configuration is missing or could not be created."""

    def __init__(self, message: str, hint: str = "initialize the index first") -> None:
        super().__init__(message)
        self.hint = hint


class SettlementError(IndexClientError):
    """The on-ledger settlement path failed."""


class RpcError(IndexClientError):
    """Ledger JSON-RPC transport failure."""


class DerivationError(IndexClientError):
    """Program-derived address search failed. Unrecoverable."""
