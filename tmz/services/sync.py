"""Pull remote conversations and messages into the cache.

One pass:
1. List all conversations and upsert each one.
2. Take the N most recently active cached conversations and fetch their
   latest M messages, upserting every chat message.

Failing to list conversations aborts the pass. A failure for a single
conversation or message is logged and the pass moves on.
"""

import logging
from dataclasses import dataclass, field
from typing import Protocol

from tmz.errors import CacheError, RemoteApiError, format_error_summary
from tmz.services.cache_store import CacheStore
from tmz.services.ingest import parse_conversation, parse_message

logger = logging.getLogger(__name__)

DEFAULT_TOP_CHATS = 30
DEFAULT_MESSAGES_PER_CHAT = 50


class ConversationSource(Protocol):
    """The remote calls a sync pass needs."""

    async def list_conversations(self) -> list[dict]: ...

    async def get_messages(self, conversation_id: str, page_size: int = 200) -> list[dict]: ...


@dataclass
class SyncReport:
    """Counts from one sync pass."""

    conversations: int = 0
    messages: int = 0
    chats: int = 0
    failures: list[str] = field(default_factory=list)


async def sync_conversation_messages(
    source: ConversationSource,
    cache: CacheStore,
    conversation_id: str,
    page_size: int,
) -> int:
    """Fetch and upsert the latest messages of one conversation.

    Returns:
        Number of chat messages stored; control messages are skipped.
    """
    stored = 0
    for payload in await source.get_messages(conversation_id, page_size):
        message = parse_message(payload, conversation_id)
        if message is None:
            continue
        try:
            cache.upsert_message(message)
        except CacheError as e:
            logger.warning("Skipping message %s in %s: %s", message.message_id, conversation_id, e)
            continue
        stored += 1
    return stored


async def run_sync_pass(
    source: ConversationSource,
    cache: CacheStore,
    top_chats: int = DEFAULT_TOP_CHATS,
    messages_per_chat: int = DEFAULT_MESSAGES_PER_CHAT,
) -> SyncReport:
    """Run one full sync pass.

    Raises:
        RemoteApiError, AuthError: If the conversation list cannot be
            fetched; nothing has been written in that case.
        CacheError: If the cache cannot be read to choose top chats.
    """
    report = SyncReport()
    errors: list[Exception] = []

    for payload in await source.list_conversations():
        conversation = parse_conversation(payload)
        if not conversation.id:
            continue
        try:
            cache.upsert_conversation(conversation)
        except CacheError as e:
            logger.warning("Skipping conversation %s: %s", conversation.id, e)
            report.failures.append(conversation.id)
            errors.append(e)
            continue
        report.conversations += 1

    top = cache.list_conversations(top_chats) if messages_per_chat > 0 and top_chats > 0 else []
    for conversation in top:
        try:
            report.messages += await sync_conversation_messages(
                source, cache, conversation.id, messages_per_chat
            )
        except (RemoteApiError, CacheError) as e:
            logger.warning("Message sync failed for %s: %s", conversation.display_name or conversation.id, e)
            report.failures.append(conversation.id)
            errors.append(e)
            continue
        report.chats += 1

    logger.info(
        "Sync pass: %d conversations, %d messages from %d chats (%d failures)",
        report.conversations,
        report.messages,
        report.chats,
        len(report.failures),
    )
    if errors:
        logger.warning("Sync pass %s", format_error_summary(errors))
    return report
