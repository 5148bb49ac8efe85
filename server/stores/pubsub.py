"""
Redis pub/sub for cross-server change notifications.

In a multi-server deployment each server holds its own websocket and sync
subscribers. When a server commits a change to a game's rows it publishes a
ChangeEvent on that game's channel so every other server can tell its
subscribers to re-read.

Usage:
    pubsub = GamePubSub(redis_client, server_id="server-1")
    await pubsub.start()

    async def on_change(event: ChangeEvent):
        print(f"{event.table.value} changed for game {event.game_id}")

    await pubsub.subscribe("game-123", on_change)
    await pubsub.publish(ChangeEvent(table=Table.GAME_STATE, game_id="game-123"))

    await pubsub.stop()
"""

import asyncio
import json
import logging
from typing import Optional

import redis.asyncio as redis

from models.events import ChangeEvent
from stores.game_store import ChangeHandler

logger = logging.getLogger(__name__)


class GamePubSub:
    """
    Redis pub/sub for game change events.

    Manages subscriptions to per-game channels and dispatches incoming
    events to registered handlers.
    """

    CHANNEL_PREFIX = "bigtwo:game:"

    def __init__(
        self,
        redis_client: redis.Redis,
        server_id: str = "default",
    ):
        self.redis = redis_client
        self.server_id = server_id
        self.pubsub = redis_client.pubsub()
        self._handlers: dict[str, list[ChangeHandler]] = {}
        self._running = False
        self._task: Optional[asyncio.Task] = None

    def _channel(self, game_id: str) -> str:
        return f"{self.CHANNEL_PREFIX}{game_id}"

    async def subscribe(self, game_id: str, handler: ChangeHandler) -> None:
        """Register ``handler`` for change events of one game."""
        channel = self._channel(game_id)
        if channel not in self._handlers:
            self._handlers[channel] = []
            await self.pubsub.subscribe(channel)
            logger.debug(f"Subscribed to channel {channel}")
        self._handlers[channel].append(handler)

    async def unsubscribe(self, game_id: str) -> None:
        """Drop every handler for one game."""
        channel = self._channel(game_id)
        if channel in self._handlers:
            del self._handlers[channel]
            await self.pubsub.unsubscribe(channel)
            logger.debug(f"Unsubscribed from channel {channel}")

    async def remove_handler(self, game_id: str, handler: ChangeHandler) -> None:
        """Remove one handler; unsubscribes when it was the last."""
        channel = self._channel(game_id)
        if channel in self._handlers:
            handlers = self._handlers[channel]
            if handler in handlers:
                handlers.remove(handler)
            if not handlers:
                await self.unsubscribe(game_id)

    async def publish(self, event: ChangeEvent) -> int:
        """
        Publish a change event to its game's channel.

        Returns:
            Number of subscribers that received the message.
        """
        event.sender_id = self.server_id
        channel = self._channel(event.game_id)
        count = await self.redis.publish(channel, event.to_json())
        logger.debug(f"Published {event.table.value} change to {channel} ({count} receivers)")
        return count

    async def start(self) -> None:
        """Start listening for messages."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._listen())
        logger.info("GamePubSub listener started")

    async def stop(self) -> None:
        """Stop listening and clean up."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        await self.pubsub.close()
        self._handlers.clear()
        logger.info("GamePubSub listener stopped")

    async def _listen(self) -> None:
        while self._running:
            try:
                message = await self.pubsub.get_message(
                    ignore_subscribe_messages=True,
                    timeout=1.0,
                )
                if message and message["type"] == "message":
                    await self._handle_message(message)

            except asyncio.CancelledError:
                break
            except redis.ConnectionError as e:
                logger.error(f"PubSub connection error: {e}")
                await asyncio.sleep(1)
            except Exception as e:
                logger.error(f"PubSub listener error: {e}", exc_info=True)
                await asyncio.sleep(1)

    async def _handle_message(self, raw_message: dict) -> None:
        try:
            channel = raw_message["channel"]
            if isinstance(channel, bytes):
                channel = channel.decode()

            data = raw_message["data"]
            if isinstance(data, bytes):
                data = data.decode()

            event = ChangeEvent.from_json(data)

            # Local subscribers were already notified by the store
            if event.sender_id == self.server_id:
                return

            for handler in list(self._handlers.get(channel, [])):
                try:
                    await handler(event)
                except Exception as e:
                    logger.error(f"Error in pubsub handler: {e}", exc_info=True)

        except (json.JSONDecodeError, KeyError, ValueError) as e:
            logger.warning(f"Invalid change message: {e}")
