"""SQLAlchemy ORM models for the tmz cache database.

Conversations and messages mirror the remote chat service; cached assets
hold downloaded binary content (images). Uses SQLAlchemy 2.0 style with
Mapped and mapped_column.

Timestamps from the remote service are kept as the ISO-8601 strings it
sends; "most recent" orderings compare them lexicographically.
"""

from enum import Enum

from sqlalchemy import (
    Boolean,
    Index,
    LargeBinary,
    PrimaryKeyConstraint,
    String,
    Text,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

CANONICAL_ID_PREFIX = "19:"


def is_canonical_id(value: str) -> bool:
    """Whether a string is already a conversation id rather than a name."""
    return value.startswith(CANONICAL_ID_PREFIX)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class ConversationKind(str, Enum):
    """Categorical conversation type derived from the vendor product type."""

    one_to_one = "one-to-one"
    group = "group"
    channel = "channel"
    meeting = "meeting"
    unknown = "unknown"


class Conversation(Base):
    """A remote chat, channel or meeting thread.

    Every upsert overwrites all denormalized fields; rows are never
    deleted by tmz.

    Attributes:
        id: Vendor-issued conversation id ("19:...").
        display_name: Topic, else last sender, else product type. May be empty.
        kind: ConversationKind value.
        product_type: Raw vendor product type (e.g. "OneToOneChat").
        thread_type: Raw vendor thread type (e.g. "chat", "space").
        last_activity: ISO-8601 compose time of the last message.
        last_message_preview: Plain-text body of the last message.
        last_message_from: Display name of the last sender.
        member_names: Searchable member names, filled opportunistically.
        messages_url: Remote messages collection URL.
        raw_payload: Last-seen remote JSON.
    """

    __tablename__ = "conversations"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    display_name: Mapped[str] = mapped_column(Text, nullable=False, default="")
    kind: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ConversationKind.unknown.value
    )
    product_type: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    thread_type: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    last_activity: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    last_message_preview: Mapped[str] = mapped_column(Text, nullable=False, default="")
    last_message_from: Mapped[str] = mapped_column(Text, nullable=False, default="")
    member_names: Mapped[str] = mapped_column(Text, nullable=False, default="")
    messages_url: Mapped[str] = mapped_column(Text, nullable=False, default="")
    raw_payload: Mapped[str] = mapped_column(Text, nullable=False, default="{}")

    __table_args__ = (
        Index("idx_conversations_last_activity", "last_activity"),
    )

    def __repr__(self) -> str:
        return (
            f"<Conversation(id={self.id!r}, display_name={self.display_name!r}, "
            f"kind={self.kind!r})>"
        )


class Message(Base):
    """One chat message.

    Message ids are only unique within a conversation, so the primary
    key is (message_id, conversation_id). The table keeps SQLite's
    implicit rowid, which the full-text index uses as its content key.

    Attributes:
        message_id: Vendor message id.
        conversation_id: Owning conversation id.
        sender_display_name: Sender's display name.
        body_plain: Plain-text body (HTML stripped).
        body_raw: Body as received.
        message_type: Vendor message type (e.g. "RichText/Html").
        compose_time: ISO-8601 compose time.
        is_self_authored: Whether the signed-in user sent it.
        raw_payload: Full remote JSON.
    """

    __tablename__ = "messages"

    message_id: Mapped[str] = mapped_column(String, nullable=False)
    conversation_id: Mapped[str] = mapped_column(String, nullable=False)
    sender_display_name: Mapped[str] = mapped_column(Text, nullable=False, default="")
    body_plain: Mapped[str] = mapped_column(Text, nullable=False, default="")
    body_raw: Mapped[str] = mapped_column(Text, nullable=False, default="")
    message_type: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    compose_time: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    is_self_authored: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    raw_payload: Mapped[str] = mapped_column(Text, nullable=False, default="{}")

    __table_args__ = (
        PrimaryKeyConstraint("message_id", "conversation_id"),
        Index("idx_messages_conversation_time", "conversation_id", "compose_time"),
    )

    def __repr__(self) -> str:
        return (
            f"<Message(message_id={self.message_id!r}, "
            f"conversation_id={self.conversation_id!r})>"
        )


class CachedAsset(Base):
    """Downloaded binary content keyed by source URL.

    cached_at uses SQLite's "YYYY-MM-DD HH:MM:SS" UTC format so age
    pruning can compare it against datetime('now', '-N days').
    """

    __tablename__ = "assets"

    url: Mapped[str] = mapped_column(Text, primary_key=True)
    data: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    content_type: Mapped[str] = mapped_column(
        String(100), nullable=False, server_default=text("'image/png'")
    )
    cached_at: Mapped[str] = mapped_column(
        String(30), nullable=False, server_default=text("(datetime('now'))")
    )

    def __repr__(self) -> str:
        return f"<CachedAsset(url={self.url!r}, bytes={len(self.data or b'')})>"
