"""Change feed for bookmark notifications, in process and over Supabase Realtime."""

import asyncio
import inspect
import itertools
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Union

from pydantic import ValidationError
from realtime import RealtimeSubscribeStates
from supabase import AsyncClient

from ..models.session import ChangeEvent

logger = logging.getLogger(__name__)

ChangeHandler = Callable[[ChangeEvent], Union[None, Awaitable[None]]]


class Subscription:
    """Handle returned by ``ChangeFeed.subscribe``. Closing twice is harmless."""

    def __init__(self, feed: "ChangeFeed", subscription_id: int):
        self._feed = feed
        self.id = subscription_id
        self.closed = False

    async def close(self) -> None:
        if not self.closed:
            self._feed._remove(self.id)
            self.closed = True


class _Subscriber:
    __slots__ = ("handler", "table", "owner")

    def __init__(self, handler: ChangeHandler, table: str, owner: Optional[str]):
        self.handler = handler
        self.table = table
        self.owner = owner

    def wants(self, event: ChangeEvent) -> bool:
        if self.table != "*" and self.table != event.table:
            return False
        return self.owner is None or self.owner == event.owner


class ChangeFeed:
    """Publish/subscribe channel emitting row-change notifications.

    Subscribers are scoped by table and, optionally, by owner so a session is
    only told about rows it may read. Events are notifications only; the
    receiver re-reads whatever state it needs.
    """

    def __init__(self):
        self._subscribers: Dict[int, _Subscriber] = {}
        self._ids = itertools.count(1)
        self._tasks: Set[asyncio.Task] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(
        self,
        handler: ChangeHandler,
        table: str = "*",
        owner: Optional[str] = None,
    ) -> Subscription:
        """Register ``handler`` for every change on ``table`` (all event types)."""
        subscription_id = next(self._ids)
        self._subscribers[subscription_id] = _Subscriber(handler, table, owner)
        logger.debug(f"Subscription {subscription_id} opened on {table}")
        return Subscription(self, subscription_id)

    def publish(self, event: ChangeEvent) -> int:
        """Deliver ``event`` to matching subscribers and return how many matched.

        Coroutine handlers are scheduled on the running loop; a failing
        handler is logged and does not affect the others.
        """
        delivered = 0
        for subscription_id, subscriber in list(self._subscribers.items()):
            if not subscriber.wants(event):
                continue
            delivered += 1
            try:
                result = subscriber.handler(event)
            except Exception as e:
                logger.error(f"Change handler {subscription_id} failed: {e}")
                continue
            if inspect.isawaitable(result):
                self._track(asyncio.ensure_future(result), subscription_id)
        return delivered

    async def drain(self) -> None:
        """Wait for scheduled handler coroutines to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _track(self, task: "asyncio.Future[Any]", subscription_id: int) -> None:
        self._tasks.add(task)

        def _done(finished: "asyncio.Future[Any]") -> None:
            self._tasks.discard(finished)
            if not finished.cancelled() and finished.exception() is not None:
                logger.error(
                    f"Change handler {subscription_id} failed: {finished.exception()}"
                )

        task.add_done_callback(_done)

    def _remove(self, subscription_id: int) -> None:
        if self._subscribers.pop(subscription_id, None) is not None:
            logger.debug(f"Subscription {subscription_id} closed")


def event_from_payload(payload: Dict[str, Any]) -> Optional[ChangeEvent]:
    """Build a ChangeEvent from a Realtime ``postgres_changes`` payload.

    Deleted rows only carry what the database sends in ``old_record``, which
    may be the primary key alone. Returns None for a payload it cannot read.
    """
    try:
        data = payload["data"]
        row = data.get("record") or data.get("old_record") or {}
        record_id = row.get("id")
        fields = {
            "table": data["table"],
            "type": data["type"],
            "record_id": str(record_id) if record_id is not None else None,
            "owner": row.get("user_id"),
        }
        if data.get("commit_timestamp"):
            fields["commit_timestamp"] = data["commit_timestamp"]
        return ChangeEvent(**fields)
    except (KeyError, TypeError, AttributeError, ValidationError) as e:
        logger.warning(f"Unreadable change payload: {e}")
        return None


class RealtimeRelay:
    """Forwards Supabase Realtime row changes on one table to a handler.

    The channel is authorized with the caller's access token, so the
    database's row rule decides which changes arrive. Every worker sees
    writes made through any other worker, or directly in the database.
    """

    def __init__(
        self,
        client: AsyncClient,
        table: str = "bookmarks",
        schema: str = "public",
        topic: Optional[str] = None,
    ):
        self.client = client
        self.table = table
        self.schema = schema
        self.topic = topic or f"{schema}:{table}"
        self._channel = None

    async def start(
        self,
        handler: Callable[[ChangeEvent], None],
        access_token: Optional[str] = None,
    ) -> None:
        """Join the channel; ``handler`` then receives every change event."""

        def _on_change(payload: Dict[str, Any]) -> None:
            event = event_from_payload(payload)
            if event is not None:
                handler(event)

        def _on_state(state: RealtimeSubscribeStates, error: Optional[Exception]) -> None:
            if error is not None:
                logger.warning(f"Realtime channel {self.topic} {state.value}: {error}")
            else:
                logger.debug(f"Realtime channel {self.topic} {state.value}")

        if access_token:
            await self.client.realtime.set_auth(access_token)
        channel = self.client.channel(self.topic)
        channel.on_postgres_changes("*", _on_change, table=self.table, schema=self.schema)
        self._channel = channel
        await channel.subscribe(_on_state)
        logger.info(f"Relaying realtime changes on {self.schema}.{self.table}")

    async def stop(self) -> None:
        channel, self._channel = self._channel, None
        if channel is None:
            return
        try:
            await self.client.remove_channel(channel)
        except Exception as e:
            logger.warning(f"Closing realtime channel {self.topic} failed: {e}")
