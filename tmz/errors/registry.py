"""Error code registry with E-XXXX format codes.

Codes are grouped by category:
- E-1xxx: Configuration and path errors
- E-2xxx: Storage errors (cache database, credential store)
- E-3xxx: Authentication errors
- E-4xxx: Remote API errors
- E-5xxx: Conversation resolution errors
- E-9xxx: Uncategorized errors

Each code carries a short title and the default remediation printed
alongside the message.
"""

from dataclasses import dataclass
from enum import Enum


class ErrorCategory(str, Enum):
    """Categories for error codes."""

    CONFIG = "config"  # E-10xx
    PATH = "path"  # E-11xx
    STORAGE = "storage"  # E-2xxx
    AUTH = "auth"  # E-3xxx
    REMOTE = "remote"  # E-4xxx
    RESOLVE = "resolve"  # E-5xxx
    OTHER = "other"  # E-9xxx


@dataclass
class ErrorCode:
    """Definition of an error code with metadata.

    Attributes:
        code: Error code in E-XXXX format.
        category: Error category for grouping.
        title: Short title for display.
        remediation: Action the user should take, empty when none applies.
    """

    code: str
    category: ErrorCategory
    title: str
    remediation: str = ""


ERROR_REGISTRY: dict[str, ErrorCode] = {
    "E-1001": ErrorCode(
        code="E-1001",
        category=ErrorCategory.CONFIG,
        title="Invalid Configuration",
        remediation="Fix the config file shown by 'tmz config path' and retry.",
    ),
    "E-1101": ErrorCode(
        code="E-1101",
        category=ErrorCategory.PATH,
        title="Directory Unavailable",
        remediation="Set paths.data_dir / paths.state_dir in the config file.",
    ),
    "E-2001": ErrorCode(
        code="E-2001",
        category=ErrorCategory.STORAGE,
        title="Storage Failure",
    ),
    "E-2101": ErrorCode(
        code="E-2101",
        category=ErrorCategory.STORAGE,
        title="Cache Failure",
        remediation="Check disk space and permissions of the data directory.",
    ),
    "E-2201": ErrorCode(
        code="E-2201",
        category=ErrorCategory.STORAGE,
        title="Credential Storage Failure",
        remediation="Run 'tmz auth logout' then 'tmz auth login'.",
    ),
    "E-3001": ErrorCode(
        code="E-3001",
        category=ErrorCategory.AUTH,
        title="Authentication Failure",
        remediation="Run 'tmz auth login'.",
    ),
    "E-3002": ErrorCode(
        code="E-3002",
        category=ErrorCategory.AUTH,
        title="Not Authenticated",
        remediation="Run 'tmz auth login'.",
    ),
    "E-3003": ErrorCode(
        code="E-3003",
        category=ErrorCategory.AUTH,
        title="Credentials Expired",
        remediation="Run 'tmz auth login'.",
    ),
    "E-3101": ErrorCode(
        code="E-3101",
        category=ErrorCategory.AUTH,
        title="Malformed Token",
        remediation="Re-enter the tokens with 'tmz auth store' or run 'tmz auth login'.",
    ),
    "E-3102": ErrorCode(
        code="E-3102",
        category=ErrorCategory.AUTH,
        title="Missing Token Claim",
        remediation="Re-enter the tokens with 'tmz auth store' or run 'tmz auth login'.",
    ),
    "E-3201": ErrorCode(
        code="E-3201",
        category=ErrorCategory.AUTH,
        title="Credential Refresh Failed",
        remediation="Run 'tmz auth login' to sign in interactively.",
    ),
    "E-4001": ErrorCode(
        code="E-4001",
        category=ErrorCategory.REMOTE,
        title="Remote API Error",
    ),
    "E-5001": ErrorCode(
        code="E-5001",
        category=ErrorCategory.RESOLVE,
        title="Resolution Failed",
    ),
    "E-5002": ErrorCode(
        code="E-5002",
        category=ErrorCategory.RESOLVE,
        title="No Matching Conversation",
    ),
    "E-5003": ErrorCode(
        code="E-5003",
        category=ErrorCategory.RESOLVE,
        title="Ambiguous Target",
    ),
    "E-9001": ErrorCode(
        code="E-9001",
        category=ErrorCategory.OTHER,
        title="Unexpected Error",
    ),
}


def get_error(code: str) -> ErrorCode | None:
    """Look up error code definition.

    Args:
        code: Error code in E-XXXX format.

    Returns:
        ErrorCode if found, None otherwise.
    """
    return ERROR_REGISTRY.get(code)
