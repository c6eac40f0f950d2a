"""Adapters from remote JSON payloads to cache rows.

The chat service payloads are untyped and fields come and go; these two
functions are the only place that reads them. Missing or non-string
fields become empty strings, so ingestion never fails on an absent
optional field.
"""

import json
import logging
from typing import Any

from tmz.db.models import Conversation, ConversationKind, Message
from tmz.utils.html_text import strip_html

logger = logging.getLogger(__name__)

# System and control messages (member joins, topic updates, call events)
# are dropped before they reach the cache.
MESSAGE_TYPES = frozenset({
    "RichText/Html",
    "Text",
    "RichText",
    "RichText/UriObject",
    "RichText/Media_GenericFile",
    "RichText/Media_Card",
})

PRODUCT_TYPE_KINDS: dict[str, ConversationKind] = {
    "OneToOneChat": ConversationKind.one_to_one,
    "SfbInteropChat": ConversationKind.one_to_one,
    "Chat": ConversationKind.group,
    "TeamsStandardChannel": ConversationKind.channel,
    "TeamsPrivateChannel": ConversationKind.channel,
    "TeamsTeam": ConversationKind.channel,
    "Meeting": ConversationKind.meeting,
    "MeetingChat": ConversationKind.meeting,
}


def kind_for_product_type(product_type: str) -> ConversationKind:
    """Map a vendor productThreadType to a ConversationKind."""
    return PRODUCT_TYPE_KINDS.get(product_type, ConversationKind.unknown)


def _field(data: Any, key: str) -> str:
    if not isinstance(data, dict):
        return ""
    value = data.get(key)
    return value if isinstance(value, str) else ""


def _dump(payload: dict) -> str:
    return json.dumps(payload, ensure_ascii=False, default=str)


def parse_conversation(payload: dict) -> Conversation:
    """Build a Conversation row from a remote conversation payload.

    The display name is the thread topic when set, otherwise the last
    sender's name, otherwise the product type.
    """
    props = payload.get("threadProperties")
    last = payload.get("lastMessage")

    topic = _field(props, "topic")
    product_type = _field(props, "productThreadType")
    last_from = _field(last, "imdisplayname")

    return Conversation(
        id=_field(payload, "id"),
        display_name=topic or last_from or product_type,
        kind=kind_for_product_type(product_type).value,
        product_type=product_type,
        thread_type=_field(props, "threadType"),
        last_activity=_field(last, "composetime"),
        last_message_preview=strip_html(_field(last, "content")),
        last_message_from=last_from,
        member_names="",
        messages_url=_field(payload, "messages"),
        raw_payload=_dump(payload),
    )


def parse_message(payload: dict, conversation_id: str) -> Message | None:
    """Build a Message row, or None for non-chat or id-less payloads."""
    message_type = _field(payload, "messagetype")
    if message_type not in MESSAGE_TYPES:
        return None

    message_id = _field(payload, "id")
    if not message_id:
        logger.debug("Skipping %s message without id in %s", message_type, conversation_id)
        return None

    body_raw = _field(payload, "content")
    return Message(
        message_id=message_id,
        conversation_id=conversation_id,
        sender_display_name=_field(payload, "imdisplayname"),
        body_plain=strip_html(body_raw),
        body_raw=body_raw,
        message_type=message_type,
        compose_time=_field(payload, "composetime"),
        is_self_authored=payload.get("isFromMe") is True,
        raw_payload=_dump(payload),
    )
