"""
Event Processor - bounded intake buffer in front of the fraud service
"""
import asyncio
import contextlib
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from pydantic import BaseModel, Field

from ..entities import HandHistory, PlayerAction, UtcDatetime, utcnow
from ..errors import QueueFullError

logger = logging.getLogger(__name__)

EVENT_PLAYER_ACTION = "player_action"
EVENT_PLAYER_JOIN = "player_join"
EVENT_PLAYER_LEAVE = "player_leave"
EVENT_HAND_COMPLETE = "hand_complete"
EVENT_CHAT_MESSAGE = "chat_message"
EVENT_CONNECTION = "connection"
EVENT_CONNECTION_DISCONNECT = "connection_disconnect"

EventHandler = Callable[["FraudEvent"], Awaitable[Any]]


class FraudEvent(BaseModel):
    type: str
    player_id: str = ""
    table_id: str = ""
    hand_id: str = ""
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: UtcDatetime = Field(default_factory=utcnow)


def create_player_action_event(action: PlayerAction) -> FraudEvent:
    """Carries the full action so the handler can rebuild it"""
    return FraudEvent(
        type=EVENT_PLAYER_ACTION,
        player_id=action.player_id,
        table_id=action.table_id,
        hand_id=action.hand_id,
        data=action.model_dump(mode="json"),
        timestamp=action.timestamp,
    )


def create_table_event(player_id: str, table_id: str, joined: bool) -> FraudEvent:
    return FraudEvent(
        type=EVENT_PLAYER_JOIN if joined else EVENT_PLAYER_LEAVE,
        player_id=player_id,
        table_id=table_id,
    )


def create_hand_complete_event(hand: HandHistory) -> FraudEvent:
    return FraudEvent(
        type=EVENT_HAND_COMPLETE,
        table_id=hand.table_id,
        hand_id=hand.hand_id,
        data=hand.model_dump(mode="json"),
        timestamp=hand.completed_at,
    )


def create_chat_event(table_id: str, sender_id: str, content: str) -> FraudEvent:
    return FraudEvent(
        type=EVENT_CHAT_MESSAGE,
        player_id=sender_id,
        table_id=table_id,
        data={"content": content},
    )


def create_connection_event(player_id: str, ip_address: str, device_id: str, connected: bool) -> FraudEvent:
    return FraudEvent(
        type=EVENT_CONNECTION if connected else EVENT_CONNECTION_DISCONNECT,
        player_id=player_id,
        data={
            "ip_address": ip_address,
            "device_id": device_id,
            "connected": connected,
        },
    )


def serialize_event(event: FraudEvent) -> bytes:
    return json.dumps(event.model_dump(mode="json")).encode('utf-8')


def deserialize_event(data: bytes) -> FraudEvent:
    return FraudEvent(**json.loads(data))


class EventProcessor:
    """Single consumer over a bounded queue; producers fail fast when it is full"""

    def __init__(self, buffer_size: int = 1000):
        self.buffer_size = buffer_size
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=buffer_size)
        self._task: Optional[asyncio.Task] = None
        self.processed = 0
        self.failed = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def push_event(self, event: FraudEvent):
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(f"⚠️ Event buffer full ({self.buffer_size}), dropping {event.type} for {event.player_id}")
            raise QueueFullError("event buffer full") from None

    def start(self, handler: EventHandler):
        if self.running:
            return
        self._task = asyncio.create_task(self._consume(handler))
        logger.info("Event processor started")

    async def _consume(self, handler: EventHandler):
        while True:
            event = await self._queue.get()
            try:
                await handler(event)
                self.processed += 1
            except Exception as e:
                self.failed += 1
                logger.error(f"❌ Handler failed for {event.type} event ({event.player_id}): {e}")
            finally:
                self._queue.task_done()

    async def drain(self, timeout: Optional[float] = None):
        """Wait until every queued event has been handled"""
        await asyncio.wait_for(self._queue.join(), timeout=timeout)

    async def stop(self, drain_timeout: Optional[float] = 5.0):
        if self._task is None:
            return
        if drain_timeout:
            try:
                await self.drain(drain_timeout)
            except asyncio.TimeoutError:
                logger.warning(f"⚠️ Stopping with {self.pending} unprocessed events")

        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Event processor stopped")
