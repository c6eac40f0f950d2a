"""Error formatting for user display and log lines."""

from tmz.errors.domain import TmzError


def format_error(error: Exception, include_remediation: bool = True) -> str:
    """Format an error as a single actionable line.

    Args:
        error: The exception to format. Non-tmz exceptions are shown with
            the generic E-9001 code.
        include_remediation: Whether to append the remediation text.

    Returns:
        String like "E-3003: credentials expired. Run 'tmz auth login'."
    """
    if not isinstance(error, TmzError):
        return f"E-9001: {error}"

    line = f"{error.code}: {error.message.rstrip('.')}."
    if include_remediation and error.remediation:
        line = f"{line} {error.remediation}"
    return line


def format_error_summary(errors: list[Exception]) -> str:
    """Format multiple errors, one per line, for batch reports.

    Args:
        errors: Errors collected during a batch operation.

    Returns:
        Multi-line summary, or an empty string when there were none.
    """
    if not errors:
        return ""
    lines = [f"{len(errors)} error(s):"]
    lines.extend(f"  {format_error(e, include_remediation=False)}" for e in errors)
    return "\n".join(lines)
