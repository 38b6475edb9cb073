# tests/test_event_processor.py

import asyncio
import pytest

from tablewatch.errors import QueueFullError
from tablewatch.services.event_processor import (
    EventProcessor,
    FraudEvent,
    create_chat_event,
    create_connection_event,
    create_hand_complete_event,
    create_player_action_event,
    create_table_event,
    deserialize_event,
    serialize_event,
)
from tablewatch.entities import PlayerAction
from tests.factories import make_action, make_hand


class TestEventFactories:
    """Tests for event constructors."""

    def test_player_action_event(self):
        """✅ Action events carry the full action."""
        action = make_action(ip_address="10.0.0.1")
        event = create_player_action_event(action)

        assert event.type == "player_action"
        assert event.player_id == "p1"
        assert event.hand_id == "h1"
        assert event.timestamp == action.timestamp
        assert PlayerAction(**event.data) == action

    def test_table_events(self):
        """✅ Join and leave map to their own types."""
        assert create_table_event("p1", "t1", joined=True).type == "player_join"
        assert create_table_event("p1", "t1", joined=False).type == "player_leave"

    def test_hand_complete_event(self):
        """✅ Hand events are keyed by table and hand."""
        hand = make_hand("h7", ["p1", "p2"])
        event = create_hand_complete_event(hand)

        assert (event.type, event.table_id, event.hand_id) == ("hand_complete", "t1", "h7")
        assert event.data["participant_ids"] == ["p1", "p2"]

    def test_chat_and_connection_events(self):
        """✅ Chat and connection payloads."""
        chat = create_chat_event("t1", "p1", "nh")
        connect = create_connection_event("p1", "10.0.0.1", "dev1", connected=True)
        disconnect = create_connection_event("p1", "10.0.0.1", "dev1", connected=False)

        assert chat.data == {"content": "nh"}
        assert connect.type == "connection"
        assert connect.data["device_id"] == "dev1"
        assert disconnect.type == "connection_disconnect"

    def test_serialization(self):
        """✅ Events survive the JSON wire format."""
        event = create_player_action_event(make_action())
        payload = serialize_event(event)

        assert isinstance(payload, bytes)
        assert deserialize_event(payload) == event


class TestEventProcessor:
    """Tests for the bounded intake buffer."""

    def test_full_buffer_rejects(self):
        """✅ Pushing past capacity raises QueueFullError."""
        processor = EventProcessor(buffer_size=2)
        processor.push_event(FraudEvent(type="chat_message"))
        processor.push_event(FraudEvent(type="chat_message"))

        with pytest.raises(QueueFullError):
            processor.push_event(FraudEvent(type="chat_message"))
        assert processor.pending == 2

    @pytest.mark.asyncio
    async def test_events_handled_in_order(self):
        """✅ The consumer hands events to the handler in arrival order."""
        seen = []

        async def handler(event):
            seen.append(event.player_id)

        processor = EventProcessor()
        processor.start(handler)
        for player in ("p1", "p2", "p3"):
            processor.push_event(FraudEvent(type="player_join", player_id=player))

        await processor.drain(timeout=1.0)
        await processor.stop()

        assert seen == ["p1", "p2", "p3"]
        assert processor.processed == 3
        assert processor.running is False

    @pytest.mark.asyncio
    async def test_handler_errors_do_not_stop_consumer(self):
        """✅ A failing event is counted and the next one is still handled."""
        seen = []

        async def handler(event):
            if event.player_id == "bad":
                raise ValueError("malformed")
            seen.append(event.player_id)

        processor = EventProcessor()
        processor.start(handler)
        processor.push_event(FraudEvent(type="player_action", player_id="bad"))
        processor.push_event(FraudEvent(type="player_action", player_id="good"))

        await processor.stop(drain_timeout=1.0)

        assert seen == ["good"]
        assert processor.failed == 1
        assert processor.processed == 1

    @pytest.mark.asyncio
    async def test_stop_with_backlog(self):
        """✅ Stop gives up draining after the timeout."""
        release = asyncio.Event()

        async def handler(event):
            await release.wait()

        processor = EventProcessor()
        processor.start(handler)
        processor.push_event(FraudEvent(type="player_join"))
        processor.push_event(FraudEvent(type="player_join"))

        await processor.stop(drain_timeout=0.05)

        assert processor.running is False
        assert processor.processed == 0

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self):
        """✅ Starting twice keeps one consumer."""
        async def handler(event):
            pass

        processor = EventProcessor()
        processor.start(handler)
        task = processor._task
        processor.start(handler)

        assert processor._task is task
        await processor.stop()
