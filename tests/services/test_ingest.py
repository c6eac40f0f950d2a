"""Tests for remote payload to cache row adapters."""

import json

from tmz.db.models import ConversationKind
from tmz.services.ingest import (
    kind_for_product_type,
    parse_conversation,
    parse_message,
)


class TestKindForProductType:
    def test_known_types(self):
        assert kind_for_product_type("OneToOneChat") is ConversationKind.one_to_one
        assert kind_for_product_type("Chat") is ConversationKind.group
        assert kind_for_product_type("TeamsStandardChannel") is ConversationKind.channel
        assert kind_for_product_type("Meeting") is ConversationKind.meeting

    def test_unknown(self):
        assert kind_for_product_type("") is ConversationKind.unknown
        assert kind_for_product_type("Something") is ConversationKind.unknown


class TestParseConversation:
    """Tests for parse_conversation."""

    def test_topic_is_display_name(self, conversation_payload):
        conv = parse_conversation(conversation_payload("19:a", topic="Design review"))
        assert conv.id == "19:a"
        assert conv.display_name == "Design review"
        assert conv.kind == "group"
        assert conv.product_type == "Chat"
        assert conv.thread_type == "chat"
        assert conv.last_activity == "2024-05-01T09:00:00.000Z"
        assert conv.last_message_from == "Jordan Lee"
        assert conv.last_message_preview == "hello"
        assert conv.messages_url.endswith("/19:a/messages")
        assert json.loads(conv.raw_payload)["id"] == "19:a"

    def test_falls_back_to_last_sender(self, conversation_payload):
        payload = conversation_payload("19:b", product_type="OneToOneChat", last_from="Sam Ortiz")
        conv = parse_conversation(payload)
        assert conv.display_name == "Sam Ortiz"
        assert conv.kind == "one-to-one"

    def test_falls_back_to_product_type(self, conversation_payload):
        payload = conversation_payload("19:c", product_type="Meeting", last_from="")
        assert parse_conversation(payload).display_name == "Meeting"

    def test_all_empty(self):
        """A bare payload yields empty fields, never an error."""
        conv = parse_conversation({"id": "19:d"})
        assert conv.display_name == ""
        assert conv.kind == "unknown"
        assert conv.last_activity == ""

    def test_non_string_fields_ignored(self):
        conv = parse_conversation({
            "id": "19:e",
            "threadProperties": {"topic": 42, "productThreadType": None},
            "lastMessage": "not-a-dict",
        })
        assert conv.display_name == ""
        assert conv.last_message_from == ""

    def test_missing_id(self):
        assert parse_conversation({}).id == ""


class TestParseMessage:
    """Tests for parse_message."""

    def test_chat_message(self, message_payload):
        msg = parse_message(
            message_payload("m1", content="<p>Ship it &amp; go</p>", from_me=True),
            "19:a",
        )
        assert msg.message_id == "m1"
        assert msg.conversation_id == "19:a"
        assert msg.body_plain == "Ship it & go"
        assert msg.body_raw == "<p>Ship it &amp; go</p>"
        assert msg.sender_display_name == "Jordan Lee"
        assert msg.message_type == "RichText/Html"
        assert msg.is_self_authored is True

    def test_control_message_skipped(self, message_payload):
        payload = message_payload("m2", message_type="ThreadActivity/AddMember")
        assert parse_message(payload, "19:a") is None

    def test_missing_type_skipped(self):
        assert parse_message({"id": "m3", "content": "x"}, "19:a") is None

    def test_missing_id_skipped(self, message_payload):
        payload = message_payload("")
        assert parse_message(payload, "19:a") is None

    def test_from_me_must_be_true(self, message_payload):
        payload = message_payload("m4")
        payload["isFromMe"] = "yes"
        assert parse_message(payload, "19:a").is_self_authored is False

    def test_file_message(self, message_payload):
        payload = message_payload(
            "m5",
            message_type="RichText/Media_GenericFile",
            content='<URIObject type="File.1"><FileSize v="10"/><OriginalName v="a.txt"/></URIObject>',
        )
        assert parse_message(payload, "19:a").body_plain == "[file: a.txt (10 bytes)]"
