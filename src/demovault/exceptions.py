"""Custom exception hierarchy for the demovault version-history engine."""


class VaultError(Exception):
    """Base exception for all demovault errors."""


class VersionNotFoundError(VaultError):
    """Raised when a version id is not present in the ledger."""


class InvalidVersionStateError(VaultError):
    """Raised when a version carries no restorable tree snapshot."""


class AuthenticationError(VaultError):
    """Raised when the credential for a protected operation does not match."""


class StorageError(VaultError):
    """Raised on storage failures (ledger persistence, disk I/O, etc.)."""


class PathTraversalError(VaultError, PermissionError):
    """Raised when a path resolves outside the project root."""
