"""Error handling framework for tmz.

This package provides:
- Error code registry with E-XXXX format codes
- Typed exception hierarchy raised by the core
- One-line error formatting for the CLI and daemon log

Error categories:
- E-1xxx: Configuration and path errors
- E-2xxx: Storage errors
- E-3xxx: Authentication errors
- E-4xxx: Remote API errors
- E-5xxx: Resolution errors
"""

from tmz.errors.domain import (
    AmbiguousMatchError,
    AuthError,
    CacheError,
    ClaimError,
    ConfigError,
    CredentialsExpiredError,
    CredentialStorageError,
    NoMatchError,
    NotAuthenticatedError,
    OtherError,
    PathResolutionError,
    RefreshError,
    RemoteApiError,
    ResolveError,
    StorageError,
    TmzError,
    TokenParseError,
)
from tmz.errors.formatter import format_error, format_error_summary
from tmz.errors.registry import (
    ERROR_REGISTRY,
    ErrorCategory,
    ErrorCode,
    get_error,
)

__all__ = [
    # Registry
    "ErrorCode",
    "ErrorCategory",
    "ERROR_REGISTRY",
    "get_error",
    # Exceptions
    "TmzError",
    "ConfigError",
    "PathResolutionError",
    "StorageError",
    "CacheError",
    "CredentialStorageError",
    "AuthError",
    "NotAuthenticatedError",
    "CredentialsExpiredError",
    "TokenParseError",
    "ClaimError",
    "RefreshError",
    "RemoteApiError",
    "ResolveError",
    "NoMatchError",
    "AmbiguousMatchError",
    "OtherError",
    # Formatter
    "format_error",
    "format_error_summary",
]
