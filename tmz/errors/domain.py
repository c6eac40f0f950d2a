"""Typed exceptions raised by the tmz core.

Every failure the core surfaces is a TmzError subclass carrying a stable
E-XXXX code, so foreground commands can print a one-line actionable
message and the scheduler can log the same taxonomy and keep running.

Usage:
    # In a service
    raise CredentialsExpiredError("credentials expired")

    # At the command boundary
    try:
        conversation_id = resolver.resolve(target)
    except TmzError as e:
        console.print(f"[red]Error:[/red] {format_error(e)}")
        raise typer.Exit(1)
"""

from tmz.errors.registry import ErrorCategory, get_error


class TmzError(Exception):
    """Base exception for all tmz errors."""

    code = "E-9001"

    def __init__(self, message: str, remediation: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if remediation is None:
            definition = get_error(self.code)
            remediation = definition.remediation if definition else ""
        self.remediation = remediation

    @property
    def category(self) -> ErrorCategory:
        """Category of this error's code."""
        definition = get_error(self.code)
        return definition.category if definition else ErrorCategory.OTHER


class ConfigError(TmzError):
    """Malformed or unreadable configuration."""

    code = "E-1001"


class PathResolutionError(TmzError):
    """A required directory could not be determined or created."""

    code = "E-1101"


class StorageError(TmzError):
    """I/O or query failure against durable storage."""

    code = "E-2001"


class CacheError(StorageError):
    """Failure against the cache database."""

    code = "E-2101"


class CredentialStorageError(StorageError):
    """Failure reading or writing the credential bundle."""

    code = "E-2201"


class AuthError(TmzError):
    """Missing, invalid or expired credentials."""

    code = "E-3001"


class NotAuthenticatedError(AuthError):
    """No credential bundle is stored."""

    code = "E-3002"


class CredentialsExpiredError(AuthError):
    """The stored bundle is past its literal expiry."""

    code = "E-3003"


class TokenParseError(AuthError):
    """A token is not a well-formed three-segment JWT."""

    code = "E-3101"


class ClaimError(AuthError):
    """A required claim is absent from the token payload."""

    code = "E-3102"

    def __init__(self, claim: str) -> None:
        super().__init__(f"token is missing required claim '{claim}'")
        self.claim = claim


class RefreshError(AuthError):
    """The login collaborator failed, timed out or could not be started."""

    code = "E-3201"


class RemoteApiError(TmzError):
    """Non-success response or transport failure from the chat service."""

    code = "E-4001"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ResolveError(TmzError):
    """A target could not be turned into exactly one conversation id."""

    code = "E-5001"

    def __init__(
        self,
        message: str,
        candidates: list | None = None,
        remediation: str | None = None,
    ) -> None:
        super().__init__(message, remediation=remediation)
        self.candidates = candidates or []


class NoMatchError(ResolveError):
    """No cached conversation matched the target."""

    code = "E-5002"


class AmbiguousMatchError(ResolveError):
    """More than one cached conversation matched the target."""

    code = "E-5003"


class OtherError(TmzError):
    """Uncategorized failure."""

    code = "E-9001"
