"""Tests for sync passes from a remote source into the cache."""

import pytest

from tmz.errors import RemoteApiError
from tmz.services.sync import run_sync_pass, sync_conversation_messages


class FakeSource:
    """In-memory ConversationSource."""

    def __init__(self, conversations, messages=None, failing=(), list_error=None):
        self.conversations = conversations
        self.messages = messages or {}
        self.failing = set(failing)
        self.list_error = list_error
        self.message_calls: list[tuple[str, int]] = []

    async def list_conversations(self):
        if self.list_error is not None:
            raise self.list_error
        return self.conversations

    async def get_messages(self, conversation_id, page_size=200):
        self.message_calls.append((conversation_id, page_size))
        if conversation_id in self.failing:
            raise RemoteApiError("get messages failed: 500", status_code=500)
        return self.messages.get(conversation_id, [])[:page_size]


@pytest.fixture
def three_conversations(conversation_payload, message_payload):
    """Three conversations with five messages each, c3 most recent."""
    conversations = [
        conversation_payload("19:c1", topic="Oldest", last_time="2024-05-01T00:00:00Z"),
        conversation_payload("19:c2", topic="Middle", last_time="2024-05-02T00:00:00Z"),
        conversation_payload("19:c3", topic="Newest", last_time="2024-05-03T00:00:00Z"),
    ]
    messages = {
        c["id"]: [
            message_payload(f"{c['id']}-m{i}", content=f"<p>note {i}</p>", compose_time=f"2024-05-0{i}T00:00:00Z")
            for i in range(1, 6)
        ]
        for c in conversations
    }
    return conversations, messages


class TestRunSyncPass:
    """Tests for a full sync pass."""

    @pytest.mark.asyncio
    async def test_top_chats_only(self, cache, three_conversations):
        """All conversations are stored; messages only for the top N."""
        conversations, messages = three_conversations
        source = FakeSource(conversations, messages)

        report = await run_sync_pass(source, cache, top_chats=2, messages_per_chat=5)

        assert (report.conversations, report.messages, report.chats) == (3, 10, 2)
        assert [cid for cid, _ in source.message_calls] == ["19:c3", "19:c2"]
        stats = cache.stats()
        assert (stats.conversations, stats.messages) == (3, 10)
        assert cache.get_messages("19:c1", 10) == []

    @pytest.mark.asyncio
    async def test_rerun_is_idempotent(self, cache, three_conversations):
        conversations, messages = three_conversations
        source = FakeSource(conversations, messages)
        await run_sync_pass(source, cache, top_chats=3, messages_per_chat=5)
        await run_sync_pass(source, cache, top_chats=3, messages_per_chat=5)
        stats = cache.stats()
        assert (stats.conversations, stats.messages) == (3, 15)

    @pytest.mark.asyncio
    async def test_messages_searchable_after_sync(self, cache, three_conversations):
        conversations, messages = three_conversations
        await run_sync_pass(FakeSource(conversations, messages), cache, top_chats=1, messages_per_chat=5)
        hits = cache.search("note", limit=50)
        assert len(hits) == 5
        assert {h.conversation_name for h in hits} == {"Newest"}

    @pytest.mark.asyncio
    async def test_one_failing_conversation_does_not_stop_pass(self, cache, three_conversations):
        conversations, messages = three_conversations
        source = FakeSource(conversations, messages, failing={"19:c3"})

        report = await run_sync_pass(source, cache, top_chats=3, messages_per_chat=5)

        assert report.failures == ["19:c3"]
        assert report.chats == 2
        assert cache.stats().messages == 10

    @pytest.mark.asyncio
    async def test_failures_summarized_in_log(self, cache, three_conversations, caplog):
        conversations, messages = three_conversations
        source = FakeSource(conversations, messages, failing={"19:c2", "19:c3"})

        with caplog.at_level("WARNING", logger="tmz.services.sync"):
            await run_sync_pass(source, cache, top_chats=3, messages_per_chat=5)

        summary = [r.getMessage() for r in caplog.records if r.getMessage().startswith("Sync pass 2 error(s):")]
        assert len(summary) == 1
        assert summary[0].count("E-4001: get messages failed: 500.") == 2

    @pytest.mark.asyncio
    async def test_clean_pass_logs_no_summary(self, cache, three_conversations, caplog):
        conversations, messages = three_conversations
        with caplog.at_level("WARNING", logger="tmz.services.sync"):
            await run_sync_pass(FakeSource(conversations, messages), cache, top_chats=3, messages_per_chat=5)
        assert "error(s)" not in caplog.text

    @pytest.mark.asyncio
    async def test_list_failure_aborts(self, cache):
        source = FakeSource([], list_error=RemoteApiError("list conversations failed: 401", status_code=401))
        with pytest.raises(RemoteApiError):
            await run_sync_pass(source, cache)
        assert cache.stats().conversations == 0

    @pytest.mark.asyncio
    async def test_control_messages_and_blank_ids_skipped(self, cache, conversation_payload, message_payload):
        conversations = [conversation_payload("19:a"), {"threadProperties": {}}]
        messages = {"19:a": [
            message_payload("m1"),
            message_payload("m2", message_type="ThreadActivity/AddMember"),
            message_payload(""),
        ]}
        report = await run_sync_pass(FakeSource(conversations, messages), cache)
        assert (report.conversations, report.messages) == (1, 1)

    @pytest.mark.asyncio
    async def test_zero_messages_per_chat_skips_message_fetch(self, cache, three_conversations):
        conversations, messages = three_conversations
        source = FakeSource(conversations, messages)
        report = await run_sync_pass(source, cache, top_chats=3, messages_per_chat=0)
        assert report.conversations == 3
        assert source.message_calls == []


class TestSyncConversationMessages:
    @pytest.mark.asyncio
    async def test_page_size_passed(self, cache, message_payload):
        source = FakeSource([], {"19:a": [message_payload("m1"), message_payload("m2")]})
        stored = await sync_conversation_messages(source, cache, "19:a", 1)
        assert stored == 1
        assert source.message_calls == [("19:a", 1)]
