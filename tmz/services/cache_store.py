"""Local cache of conversations, messages and downloaded assets.

All writes are upserts keyed by the remote ids, so re-running a sync
never creates duplicates. The message full-text index is maintained by
triggers inside the same transaction as each write.

Example:
    store = CacheStore.open(paths.cache_db)
    store.upsert_conversation(conversation)
    hits = store.search("deadline", limit=20)
"""

import logging
import re
from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from sqlalchemy import Engine, delete, func, or_, select, text
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tmz.db.connection import (
    create_cache_engine,
    init_db,
    make_session_factory,
    session_scope,
)
from tmz.db.models import CachedAsset, Conversation, Message
from tmz.errors import CacheError

logger = logging.getLogger(__name__)

FIND_LIMIT = 10

_CONVERSATION_COLUMNS = [c.name for c in Conversation.__table__.columns]
_MESSAGE_COLUMNS = [c.name for c in Message.__table__.columns]
_FTS_TERM = re.compile(r'"[^"]*"|\S+')
# The index also holds conversation_id (for filtering); queries match text only
_SEARCH_COLUMNS = "{body_plain sender_display_name}"


@dataclass
class SearchHit:
    """A message matched by full-text search, with its conversation's name."""

    message: Message
    conversation_name: str


@dataclass
class CacheStats:
    """Row counts and asset volume."""

    conversations: int
    messages: int
    assets: int
    asset_bytes: int


def fts_query(query: str) -> str:
    """Quote user input so it is always a valid FTS5 expression.

    Each whitespace-separated term becomes a quoted phrase (implicit AND).
    Quoted phrases are kept together, and a trailing '*' on a term stays
    a prefix match.
    """
    parts = []
    for term in _FTS_TERM.findall(query):
        prefix = term.endswith("*") and not term.startswith('"')
        core = term.rstrip("*") if prefix else term.strip('"')
        core = core.replace('"', '""')
        if not core:
            continue
        parts.append(f'"{core}"*' if prefix else f'"{core}"')
    return " ".join(parts)


def _row_values(obj: Conversation | Message, columns: list[str]) -> dict:
    values = {name: getattr(obj, name) for name in columns}
    # Column defaults only apply on flush; fill them for Core inserts
    for column in obj.__table__.columns:
        if values[column.name] is None and column.default is not None:
            values[column.name] = column.default.arg
    return values


class CacheStore:
    """Durable, queryable mirror of the remote chat service."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._factory = make_session_factory(engine)

    @classmethod
    def open(cls, db_path: Path | str) -> "CacheStore":
        """Open (creating if needed) the cache at db_path.

        Raises:
            CacheError: If the database cannot be opened or initialized.
        """
        try:
            engine = create_cache_engine(db_path)
        except (SQLAlchemyError, OSError) as e:
            raise CacheError(f"cannot open cache at {db_path}: {e}") from e
        init_db(engine)
        return cls(engine)

    def close(self) -> None:
        """Release pooled connections."""
        self._engine.dispose()

    @contextmanager
    def _session(self, action: str) -> Generator[Session, None, None]:
        try:
            with session_scope(self._factory) as db:
                yield db
        except SQLAlchemyError as e:
            raise CacheError(f"cache {action} failed: {e}") from e

    # --- Writes ---

    def upsert_conversation(self, conversation: Conversation) -> None:
        """Insert or fully overwrite a conversation row by id."""
        values = _row_values(conversation, _CONVERSATION_COLUMNS)
        stmt = sqlite_insert(Conversation).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[Conversation.id],
            set_={name: stmt.excluded[name] for name in _CONVERSATION_COLUMNS if name != "id"},
        )
        with self._session("conversation upsert") as db:
            db.execute(stmt)

    def upsert_message(self, message: Message) -> None:
        """Insert or fully overwrite a message by (message_id, conversation_id).

        The update path keeps the row's rowid, and the update trigger
        swaps its full-text entry.
        """
        values = _row_values(message, _MESSAGE_COLUMNS)
        stmt = sqlite_insert(Message).values(**values)
        keys = ("message_id", "conversation_id")
        stmt = stmt.on_conflict_do_update(
            index_elements=[Message.message_id, Message.conversation_id],
            set_={name: stmt.excluded[name] for name in _MESSAGE_COLUMNS if name not in keys},
        )
        with self._session("message upsert") as db:
            db.execute(stmt)

    # --- Conversation reads ---

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        with self._session("conversation lookup") as db:
            return db.get(Conversation, conversation_id)

    def list_conversations(self, limit: int) -> list[Conversation]:
        """Most recently active conversations first."""
        stmt = (
            select(Conversation)
            .order_by(Conversation.last_activity.desc())
            .limit(limit)
        )
        with self._session("conversation list") as db:
            return list(db.scalars(stmt))

    def find_conversation(self, query: str) -> list[Conversation]:
        """Case-insensitive substring match on name, member names or id.

        Returns:
            Up to FIND_LIMIT conversations, most recently active first.
            An empty list when nothing matches.
        """
        stmt = (
            select(Conversation)
            .where(
                or_(
                    Conversation.display_name.icontains(query, autoescape=True),
                    Conversation.member_names.icontains(query, autoescape=True),
                    Conversation.id.icontains(query, autoescape=True),
                )
            )
            .order_by(Conversation.last_activity.desc())
            .limit(FIND_LIMIT)
        )
        with self._session("conversation search") as db:
            return list(db.scalars(stmt))

    # --- Message reads ---

    def get_messages(self, conversation_id: str, limit: int) -> list[Message]:
        """The latest `limit` messages of a conversation, oldest first."""
        stmt = (
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.compose_time.desc())
            .limit(limit)
        )
        with self._session("message read") as db:
            newest_first = list(db.scalars(stmt))
        newest_first.reverse()
        return newest_first

    def search(self, query: str, limit: int) -> list[SearchHit]:
        """Full-text search over message bodies and senders, newest first."""
        return self._search(query, None, limit)

    def search_in_conversation(
        self, query: str, conversation_id: str, limit: int
    ) -> list[SearchHit]:
        """Full-text search restricted to one conversation, newest first."""
        return self._search(query, conversation_id, limit)

    def _search(self, query: str, conversation_id: str | None, limit: int) -> list[SearchHit]:
        match = fts_query(query)
        if not match:
            return []
        match = f"{_SEARCH_COLUMNS} : ({match})"

        sql = """
            SELECT m.message_id, m.conversation_id, m.sender_display_name,
                   m.body_plain, m.body_raw, m.message_type, m.compose_time,
                   m.is_self_authored, m.raw_payload,
                   COALESCE(c.display_name, '') AS conversation_name
            FROM messages_fts
            JOIN messages m ON m.rowid = messages_fts.rowid
            LEFT JOIN conversations c ON c.id = m.conversation_id
            WHERE messages_fts MATCH :match
        """
        params: dict = {"match": match, "limit": limit}
        if conversation_id is not None:
            sql += " AND m.conversation_id = :conversation_id"
            params["conversation_id"] = conversation_id
        sql += " ORDER BY m.compose_time DESC LIMIT :limit"

        with self._session("full-text search") as db:
            rows = db.execute(text(sql), params).mappings().all()

        hits = []
        for row in rows:
            fields = {name: row[name] for name in _MESSAGE_COLUMNS}
            fields["is_self_authored"] = bool(fields["is_self_authored"])
            hits.append(SearchHit(message=Message(**fields), conversation_name=row["conversation_name"]))
        return hits

    # --- Assets ---

    def cache_asset(self, url: str, data: bytes, content_type: str = "image/png") -> None:
        """Store or replace an asset; resets its cache timestamp."""
        stmt = sqlite_insert(CachedAsset).values(
            url=url, data=data, content_type=content_type
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[CachedAsset.url],
            set_={
                "data": stmt.excluded.data,
                "content_type": stmt.excluded.content_type,
                "cached_at": func.datetime("now"),
            },
        )
        with self._session("asset write") as db:
            db.execute(stmt)

    def get_asset(self, url: str) -> tuple[bytes, str] | None:
        """Return (data, content_type) for a cached URL, or None."""
        stmt = select(CachedAsset.data, CachedAsset.content_type).where(CachedAsset.url == url)
        with self._session("asset read") as db:
            row = db.execute(stmt).first()
        if row is None:
            return None
        return row.data, row.content_type

    def has_asset(self, url: str) -> bool:
        stmt = select(func.count()).select_from(CachedAsset).where(CachedAsset.url == url)
        with self._session("asset lookup") as db:
            return bool(db.scalar(stmt))

    def prune_assets(self, older_than_days: int) -> int:
        """Delete assets cached more than older_than_days ago.

        Returns:
            Number of assets removed.

        Raises:
            ValueError: If older_than_days is negative.
        """
        if older_than_days < 0:
            raise ValueError(f"older_than_days must not be negative, got {older_than_days}")
        cutoff = func.datetime("now", f"-{int(older_than_days)} days")
        stmt = (
            delete(CachedAsset)
            .where(CachedAsset.cached_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        with self._session("asset prune") as db:
            removed = db.execute(stmt).rowcount or 0
        if removed:
            logger.info("Pruned %d cached assets older than %d days", removed, older_than_days)
        return removed

    # --- Stats ---

    def stats(self) -> CacheStats:
        with self._session("stats") as db:
            conversations = db.scalar(select(func.count()).select_from(Conversation)) or 0
            messages = db.scalar(select(func.count()).select_from(Message)) or 0
            assets = db.scalar(select(func.count()).select_from(CachedAsset)) or 0
            asset_bytes = db.scalar(
                select(func.coalesce(func.sum(func.length(CachedAsset.data)), 0))
            ) or 0
        return CacheStats(
            conversations=conversations,
            messages=messages,
            assets=assets,
            asset_bytes=asset_bytes,
        )
