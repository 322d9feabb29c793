from __future__ import annotations

from datetime import timezone

import pytest
from pydantic import ValidationError as PayloadError

from chat_sync.domain.value_objects.enums import MessageStatus
from chat_sync.infrastructure.mappers.message import message_from_wire
from chat_sync.infrastructure.mappers.outbox import entry_from_record, entry_to_record
from chat_sync.domain.entities.outbox import OutboxEntry
from chat_sync.infrastructure.ws.protocol import ConversationSignal, MessagesMarkedRead, TypingEvent
from tests.conftest import CONVERSATION, ME, T0, make_message


def test_message_from_wire_unwraps_envelope():
    message = message_from_wire({
        "message": {
            "_id": "srv-1",
            "chat": {"_id": CONVERSATION},
            "sender": {"id": "u9", "fullName": "Dr. Nine"},
            "content": "hello",
            "createdAt": "2026-01-01T12:00:00.000Z",
            "attachments": [{"url": "https://f/a.pdf", "type": "application/pdf"}, {"nourl": True}],
            "read": True,
        },
    })

    assert message.id == "srv-1"
    assert message.conversation_id == CONVERSATION
    assert message.sender.name == "Dr. Nine"
    assert message.timestamp.tzinfo == timezone.utc
    assert message.status == MessageStatus.READ
    assert [a.mime_type for a in message.attachments] == ["application/pdf"]


@pytest.mark.parametrize("payload", [None, "srv-1", {}, {"content": "no id"}])
def test_message_from_wire_needs_an_id(payload):
    assert message_from_wire(payload) is None


def test_outbox_record_keeps_message_and_attempts():
    entry = OutboxEntry(
        id="e1",
        conversation_id=CONVERSATION,
        message=make_message(message_id="temp-1", sender=ME, status=MessageStatus.FAILED),
        attempts=3,
        created_at=T0,
    )

    assert entry_from_record(entry_to_record(entry)) == entry


def test_outbox_record_without_message_is_skipped():
    assert entry_from_record({"id": "e1", "conversationId": CONVERSATION}) is None


def test_read_event_flattens_reader():
    event = MessagesMarkedRead.model_validate({"chatId": CONVERSATION, "readBy": {"_id": "u2"}})
    assert (event.conversation_id, event.read_by) == (CONVERSATION, "u2")


def test_read_event_requires_conversation():
    with pytest.raises(PayloadError):
        MessagesMarkedRead.model_validate({"readBy": "u2"})


def test_typing_event_accepts_bare_conversation_id():
    event = TypingEvent.parse(CONVERSATION)
    assert event.conversation_id == CONVERSATION
    assert event.user_id is None


def test_signal_payload_carries_both_conversation_keys():
    payload = ConversationSignal(conversation_id=CONVERSATION, user_id="u1").payload()
    assert payload == {"chatId": CONVERSATION, "conversationId": CONVERSATION, "userId": "u1"}
