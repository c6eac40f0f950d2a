"""Secret redaction for safe logging and status output.

Credential bundles are dicts of bearer tokens; nothing that reaches a log
line or the terminal may carry one in full.
"""

from collections.abc import Mapping

# Header names (lowercased) whose values carry credentials
SENSITIVE_HEADERS = frozenset({
    "authorization", "authentication", "x-skypetoken", "cookie",
})

_REDACTED = "***REDACTED***"


def mask_token(token: str | None, visible: int = 6) -> str:
    """Mask a bearer token, keeping only a short prefix for identification.

    Args:
        token: Token value, possibly empty or None.
        visible: Number of leading characters to keep.

    Returns:
        "eyJ0eX…(1432 chars)" style string, or "(none)" for empty values.
    """
    if not token:
        return "(none)"
    if len(token) <= visible * 2:
        return _REDACTED
    return f"{token[:visible]}…({len(token)} chars)"


def redact_headers(headers: Mapping[str, str] | None) -> dict[str, str]:
    """Copy of request headers with credential values masked.

    A scheme prefix ("Bearer ", "skypetoken=") stays readable so the log
    still shows which kind of credential was sent.
    """
    redacted = {}
    for name, value in (headers or {}).items():
        if name.lower() not in SENSITIVE_HEADERS:
            redacted[name] = value
            continue
        scheme, sep, secret = value.partition(" ")
        if not sep:
            scheme, sep, secret = value.partition("=")
        redacted[name] = f"{scheme}{sep}{mask_token(secret)}" if sep else mask_token(value)
    return redacted
