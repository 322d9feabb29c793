from __future__ import annotations

import asyncio

import pytest

from chat_sync.application.exceptions import AuthRequired, Unreachable, ValidationError
from chat_sync.domain.value_objects.enums import MessageStatus
from chat_sync.infrastructure.ws import protocol
from chat_sync.services.session import ConversationSession
from chat_sync.services.snapshot_cache import SnapshotCache
from tests.conftest import CONVERSATION, ME, FakeUploader, make_messages, wire_message


def _session(api, store, channel, clock, prober, **kwargs) -> ConversationSession:
    return ConversationSession(
        CONVERSATION, ME,
        api=api, store=store, channel=channel, clock=clock, prober=prober,
        **kwargs,
    )


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_open_restores_cached_history(api, store, channel, clock, prober):
    await SnapshotCache(store, clock=clock).save(CONVERSATION, make_messages(3))
    rendered = []

    async with _session(api, store, channel, clock, prober, on_change=rendered.append) as session:
        assert [m.content for m in session.messages] == ["message 0", "message 1", "message 2"]
        assert len(rendered[0]) == 3
        assert channel.connected is True

    assert channel.disconnects == 1


@pytest.mark.asyncio
async def test_open_marks_conversation_read(api, store, channel, clock, prober):
    async with _session(api, store, channel, clock, prober):
        await _settle()
        assert api.marked == [CONVERSATION]
        assert channel.events(protocol.MESSAGE_READ)[0]["chatId"] == CONVERSATION


@pytest.mark.asyncio
async def test_queued_send_is_reconciled_on_sync(api, store, channel, clock, prober):
    async with _session(api, store, channel, clock, prober) as session:
        api.send_errors = [Unreachable("timeout")]
        failed = await session.send("hi")
        assert session.messages.find(failed.id).status == MessageStatus.FAILED

        delivered = await session.sync_pending()

        assert delivered == 1
        [message] = list(session.messages)
        assert message.id.startswith("srv-")
        assert await session.outbox.size() == 0


@pytest.mark.asyncio
async def test_send_uploads_files_first(api, store, channel, clock, prober):
    uploader = FakeUploader()

    async with _session(api, store, channel, clock, prober, uploader=uploader) as session:
        confirmed = await session.send("look", files=["scan.png"])

    assert uploader.uploaded == ["scan.png"]
    assert confirmed.attachments[0].url == "https://files.test/scan.png"


@pytest.mark.asyncio
async def test_files_without_uploader_are_rejected(api, store, channel, clock, prober):
    async with _session(api, store, channel, clock, prober) as session:
        with pytest.raises(ValidationError):
            await session.send("look", files=["scan.png"])
        assert len(session.messages) == 0


@pytest.mark.asyncio
async def test_typing_stops_after_idle(api, store, channel, clock, prober):
    async with _session(api, store, channel, clock, prober, typing_idle_seconds=0.01) as session:
        await session.notify_typing()
        await session.notify_typing()
        await asyncio.sleep(0.05)

    assert len(channel.events(protocol.TYPING)) == 1
    assert len(channel.events(protocol.STOP_TYPING)) == 1


@pytest.mark.asyncio
async def test_sending_ends_typing(api, store, channel, clock, prober):
    async with _session(api, store, channel, clock, prober) as session:
        await session.notify_typing()
        await session.send("done")
        assert len(channel.events(protocol.STOP_TYPING)) == 1


@pytest.mark.asyncio
async def test_background_auth_failure_reaches_callback(api, store, channel, clock, prober):
    failures = []
    api.mark_errors = [AuthRequired("expired")]

    async with _session(api, store, channel, clock, prober, on_auth_required=failures.append):
        await _settle()

    assert len(failures) == 1


@pytest.mark.asyncio
async def test_visibility_regained_replays_outbox(api, store, channel, clock, prober):
    async with _session(api, store, channel, clock, prober) as session:
        api.reachable = False
        await session.send("offline")
        api.reachable = True
        prober.invalidate()

        session.on_visibility_changed(True)
        await _settle()

        assert [m.status for m in session.messages] == [MessageStatus.SENT]


@pytest.mark.asyncio
async def test_inbound_message_after_close_is_ignored(api, store, channel, clock, prober):
    session = _session(api, store, channel, clock, prober)
    await session.open()
    handler = channel.handlers[protocol.MESSAGE_RECEIVED]
    await session.close()

    await handler(wire_message("srv-9"))

    assert len(session.messages) == 0
    with pytest.raises(ValidationError):
        await session.send("too late")


@pytest.mark.asyncio
async def test_close_persists_final_snapshot(api, store, channel, clock, prober):
    async with _session(api, store, channel, clock, prober) as session:
        await channel.fire(protocol.MESSAGE_RECEIVED, wire_message("srv-1"))
        await channel.fire(protocol.MESSAGE_RECEIVED, wire_message("srv-2"))

    cached = await SnapshotCache(store, clock=clock).load(CONVERSATION)
    assert [m.id for m in cached] == ["srv-1", "srv-2"]


@pytest.mark.asyncio
async def test_retry_during_queued_send_yields_one_message(api, store, channel, clock, prober):
    async with _session(api, store, channel, clock, prober) as session:
        await _settle()
        api.send_errors = [Unreachable("timeout")]
        failed = await session.send("hello")
        api.send_gate = asyncio.Event()

        sync = asyncio.create_task(session.sync_pending())
        for _ in range(50):
            if len(api.sent) == 2:
                break
            await asyncio.sleep(0)
        retry = asyncio.create_task(session.retry(failed.id))
        await _settle()
        api.send_gate.set()
        delivered, confirmed = await asyncio.gather(sync, retry)

        assert delivered == 1
        assert [m.id for m in session.messages] == [confirmed.id]
        assert session.messages.find(confirmed.id).status == MessageStatus.SENT
        assert len(api.sent) == 2
        assert await session.outbox.size() == 0
