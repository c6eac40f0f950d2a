"""Turn a user-supplied target into exactly one conversation id.

Precedence, first match wins:
1. Alias from config (exact name, then case-insensitive). An alias whose
   value is a conversation id is returned as-is; any other value is
   treated as a search term against the cache.
2. A target that already is a conversation id ("19:...") passes through
   without touching the cache.
3. Case-insensitive substring match against cached conversations.

Zero or several matches raise NoMatchError / AmbiguousMatchError with the
candidates attached; there is never a silent default.

Type filters apply to step 3 only. Alias values are resolved unfiltered,
so an alias means the same conversation wherever it is used.
"""

import logging
from collections.abc import Iterable

from tmz.cli.config import TmzConfig
from tmz.db.models import Conversation, ConversationKind, is_canonical_id
from tmz.errors import AmbiguousMatchError, NoMatchError
from tmz.services.cache_store import CacheStore

logger = logging.getLogger(__name__)

KIND_ALIASES: dict[str, ConversationKind] = {
    "1:1": ConversationKind.one_to_one,
    "one-to-one": ConversationKind.one_to_one,
    "dm": ConversationKind.one_to_one,
    "direct": ConversationKind.one_to_one,
    "group": ConversationKind.group,
    "grp": ConversationKind.group,
    "channel": ConversationKind.channel,
    "chan": ConversationKind.channel,
    "meeting": ConversationKind.meeting,
    "meet": ConversationKind.meeting,
}


def parse_kind_filter(value: str) -> ConversationKind:
    """Parse a --type option ("1:1", "dm", "group", "chan", ...).

    Raises:
        ValueError: If the value is not a known type name.
    """
    kind = KIND_ALIASES.get(value.strip().lower())
    if kind is None:
        raise ValueError(
            f"unknown conversation type {value!r} (use 1:1, group, channel or meeting)"
        )
    return kind


def filter_by_kind(
    conversations: Iterable[Conversation], kind: ConversationKind | None
) -> list[Conversation]:
    """Keep conversations of the given kind; all of them when kind is None."""
    if kind is None:
        return list(conversations)
    return [c for c in conversations if c.kind == kind.value]


class ConversationResolver:
    """Resolves targets against aliases and the local cache."""

    def __init__(self, cache: CacheStore, config: TmzConfig) -> None:
        self._cache = cache
        self._config = config

    def resolve(self, target: str, kind: ConversationKind | None = None) -> str:
        """Resolve a target to one conversation id.

        Args:
            target: Alias, conversation id, or part of a conversation name.
            kind: Optional type filter for cache matches.

        Returns:
            The conversation id.

        Raises:
            NoMatchError: Nothing matched.
            AmbiguousMatchError: More than one conversation matched.
        """
        alias_value = self._config.resolve_alias(target)
        if alias_value is not None:
            return self._resolve_alias(target, alias_value)

        if is_canonical_id(target):
            return target

        matches = filter_by_kind(self._cache.find_conversation(target), kind)
        if not matches:
            raise NoMatchError(
                f"no conversation matching '{target}'",
                remediation=f"Run 'tmz sync' or use 'tmz find {target}'.",
            )
        if len(matches) > 1:
            raise AmbiguousMatchError(
                f"ambiguous target '{target}' matches {len(matches)} conversations",
                candidates=matches,
                remediation="Use the full conversation ID or create an alias with 'tmz alias'.",
            )
        return matches[0].id

    def _resolve_alias(self, name: str, value: str) -> str:
        if is_canonical_id(value):
            logger.debug("Alias %s -> %s", name, value)
            return value

        matches = self._cache.find_conversation(value)
        if not matches:
            raise NoMatchError(
                f"alias '{name}' resolved to '{value}' but no matching conversation "
                "found in cache",
                remediation="Run 'tmz sync' first.",
            )
        if len(matches) > 1:
            raise AmbiguousMatchError(
                f"ambiguous alias '{name}' ('{value}' matches {len(matches)} conversations)",
                candidates=matches,
                remediation=f"Use 'tmz alias {name} <exact-id>' to set an explicit conversation ID.",
            )
        return matches[0].id
