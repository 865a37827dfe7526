import asyncio
import json

import pytest

from client.client import ChatSession
from client.config import ClientConfig
from client.reconciler import JOIN_REJECTED_TEXT
from client.state import IDENTITY_REQUIRED_TEXT, NOT_JOINED_TEXT, ConnectionStatus, Identity
from shared.message import Message
from conftest import endpoint, history_entry, settle


def make_session(connector) -> ChatSession:
    return ChatSession(ClientConfig(env="test"), endpoint_builder=endpoint, connector=connector)


async def joined(connector, room="lobby", user="alice") -> ChatSession:
    session = make_session(connector)
    await session.join(room, user)
    await settle()
    connector.last.feed({"type": "joined"})
    await settle()
    return session


@pytest.mark.asyncio
async def test_join_then_joined_frame_connects(connector):
    session = make_session(connector)

    assert await session.join(" lobby ", "alice ") is True
    assert session.status is ConnectionStatus.CONNECTING
    assert session.identity == Identity("lobby", "alice")

    await settle()
    assert session.status is ConnectionStatus.CONNECTING  # open alone is not a join ack

    connector.last.feed({"type": "joined"})
    await settle()

    assert session.status is ConnectionStatus.CONNECTED
    assert connector.calls[0][0] == "ws://test/?roomId=lobby&userName=alice"
    await session.close()


@pytest.mark.asyncio
async def test_history_then_edit_scenario(connector):
    session = await joined(connector)

    connector.last.feed({"type": "history", "messages": [history_entry(1, text="hi", timestamp=1000)]})
    await settle()
    assert session.transcript == (Message(id=1, user_name="bob", text="hi", timestamp=1000),)

    connector.last.feed({"type": "message", "payload": history_entry(1, text="hi edited", timestamp=1000)})
    await settle()
    assert [(m.id, m.text) for m in session.transcript] == [(1, "hi edited")]
    await session.close()


@pytest.mark.asyncio
async def test_close_400_scenario(connector):
    session = make_session(connector)
    await session.join("lobby", "alice")
    await settle()

    connector.last.server_close(400, "bad room")
    await settle()

    assert session.status is ConnectionStatus.ERROR
    assert session.last_error == JOIN_REJECTED_TEXT


@pytest.mark.asyncio
async def test_stale_history_from_previous_room_is_discarded(connector):
    session = await joined(connector, room="lobby")
    old_ws = connector.last
    old_ws.feed({"type": "history", "messages": [history_entry(1, text="lobby talk")]})

    # Rejoin before the old reader gets to run
    await session.join("kitchen", "alice")
    await settle()
    old_ws.feed({"type": "history", "messages": [history_entry(2, text="late lobby talk")]})
    await settle()

    assert session.transcript == ()
    assert session.identity == Identity("kitchen", "alice")
    assert old_ws.closed

    connector.last.feed({"type": "history", "messages": [history_entry(7, text="kitchen talk", room_id="kitchen")]})
    await settle()
    assert [m.text for m in session.transcript] == ["kitchen talk"]
    await session.close()


@pytest.mark.asyncio
async def test_stale_reconciler_callback_after_rejoin_is_ignored(connector):
    session = await joined(connector, room="lobby")
    old_generation = session.manager.current.generation

    await session.join("kitchen", "alice")
    session.reconciler.on_message(old_generation, json.dumps({"type": "history", "messages": [history_entry(1)]}))
    session.reconciler.on_close(old_generation, 400, "")

    assert session.transcript == ()
    assert session.status is ConnectionStatus.CONNECTING
    assert session.last_error is None
    await session.close()


@pytest.mark.asyncio
async def test_incomplete_join_tears_down_and_awaits_input(connector):
    session = await joined(connector)
    connector.last.feed({"type": "history", "messages": [history_entry(1)]})
    await settle()

    assert await session.join("lobby", "   ") is False

    assert session.status is ConnectionStatus.AWAITING_INPUT
    assert session.transcript == ()
    assert session.last_error == IDENTITY_REQUIRED_TEXT
    assert session.manager.current is None
    assert connector.sockets[0].closed


@pytest.mark.asyncio
async def test_leave_resets_without_error(connector):
    session = await joined(connector)

    await session.leave()

    assert session.status is ConnectionStatus.AWAITING_INPUT
    assert session.last_error is None
    assert session.identity == Identity()


@pytest.mark.asyncio
async def test_rejoining_same_live_identity_is_a_noop(connector):
    session = await joined(connector)

    assert await session.join("lobby", "alice") is False
    assert len(connector.calls) == 1
    assert session.status is ConnectionStatus.CONNECTED
    await session.close()


@pytest.mark.asyncio
async def test_rejoining_after_disconnect_reconnects(connector):
    session = await joined(connector)
    connector.last.server_close(1001, "going away")
    await settle()
    assert session.status is ConnectionStatus.DISCONNECTED

    assert await session.join("lobby", "alice") is True
    await settle()

    assert len(connector.calls) == 2
    assert session.status is ConnectionStatus.CONNECTING
    await session.close()


@pytest.mark.asyncio
async def test_connect_failure_is_not_retried(connector):
    connector.fail_with = OSError("refused")
    session = make_session(connector)

    await session.join("lobby", "alice")
    await settle(20)

    assert len(connector.calls) == 1
    assert session.status is ConnectionStatus.DISCONNECTED
    assert session.last_error is not None


@pytest.mark.asyncio
async def test_send_text_sends_trimmed_chat_frame(connector):
    session = await joined(connector)

    assert await session.send_text("  hello  ") is True

    assert [json.loads(m) for m in connector.last.sent_messages] == [{"type": "chat", "text": "hello"}]
    await session.close()


@pytest.mark.asyncio
async def test_send_blank_text_does_nothing(connector):
    session = await joined(connector)

    assert await session.send_text("   ") is False

    assert connector.last.sent_messages == []
    assert session.last_error is None
    await session.close()


@pytest.mark.asyncio
async def test_send_before_join_reports_error(connector):
    session = make_session(connector)

    assert await session.send_text("hello") is False

    assert session.last_error == NOT_JOINED_TEXT
    assert connector.calls == []


@pytest.mark.asyncio
async def test_send_while_connecting_is_not_sent(connector):
    session = make_session(connector)
    await session.join("lobby", "alice")

    # Handshake has not run yet
    assert session.can_send is False
    assert await session.send_text("too early") is False
    assert session.last_error is None
    await session.close()


@pytest.mark.asyncio
async def test_close_goes_through_closing_to_disconnected(connector):
    session = await joined(connector)
    connector.last.feed({"type": "history", "messages": [history_entry(1)]})
    await settle()
    statuses = []
    session.subscribe(lambda view: statuses.append(view.status))

    await session.close()
    await session.close()

    assert statuses == [ConnectionStatus.CLOSING, ConnectionStatus.DISCONNECTED]
    assert len(session.transcript) == 1
    assert session.manager.current is None


@pytest.mark.asyncio
async def test_close_after_rejection_keeps_error(connector):
    session = make_session(connector)
    await session.join("lobby", "alice")
    await settle()
    connector.last.server_close(400)
    await settle()

    await session.close()

    assert session.status is ConnectionStatus.ERROR
    assert session.manager.current is None


@pytest.mark.asyncio
async def test_async_context_manager_closes(connector):
    async with make_session(connector) as session:
        await session.join("lobby", "alice")
        await settle()
        ws = connector.last

    assert ws.closed
    assert session.status is ConnectionStatus.DISCONNECTED


@pytest.mark.asyncio
async def test_overlapping_joins_end_on_the_last_room(connector):
    session = await joined(connector, room="lobby")

    results = await asyncio.gather(session.join("a", "alice"), session.join("b", "alice"))
    await settle()

    assert results == [True, True]
    assert session.identity == Identity("b", "alice")
    assert session.manager.identity == Identity("b", "alice")
    assert connector.calls[-1][0] == "ws://test/?roomId=b&userName=alice"

    connector.last.feed({"type": "history", "messages": [history_entry(1, text="in b")]})
    await settle()
    assert [m.text for m in session.transcript] == ["in b"]
    assert session.status is ConnectionStatus.CONNECTED
    await session.close()


@pytest.mark.asyncio
async def test_leave_during_join_leaves_no_connection(connector):
    session = await joined(connector, room="lobby")

    await asyncio.gather(session.join("kitchen", "alice"), session.leave())
    await settle()

    assert session.identity == Identity()
    assert session.manager.current is None
    assert session.status is ConnectionStatus.AWAITING_INPUT
