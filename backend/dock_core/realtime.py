"""Realtime pub/sub channel for one session: Ably adapter behind a small interface."""
import logging
from typing import Any, Awaitable, Callable, Iterable

from ably import AblyRealtime

LOG = logging.getLogger(__name__)

ChannelListener = Callable[[str, Any], Awaitable[None]]
ChannelFactory = Callable[[str, str], "RealtimeChannel"]


class RealtimeChannel:
    """
    Interface the coordinator talks to. publish() raises on failure;
    callers decide whether that is fatal. dispose() never raises.
    """

    channel_id: str

    async def attach(self) -> None:
        raise NotImplementedError

    async def subscribe(self, event_names: Iterable[str], listener: ChannelListener) -> None:
        raise NotImplementedError

    async def publish(self, event_name: str, data: Any) -> None:
        raise NotImplementedError

    async def dispose(self) -> None:
        raise NotImplementedError


class AblyRealtimeChannel(RealtimeChannel):
    """Ably Realtime connection scoped to the session channel issued at handshake."""

    def __init__(self, token: str, channel_id: str) -> None:
        self.channel_id = channel_id
        self._client = AblyRealtime(token=token)
        self._channel = self._client.channels.get(channel_id)
        self._listeners: list[tuple[str, Callable[[Any], Awaitable[None]]]] = []

    async def attach(self) -> None:
        LOG.info("Connecting to realtime channel %s", self.channel_id)
        await self._channel.attach()
        LOG.info("Attached to realtime channel %s", self.channel_id)

    async def subscribe(self, event_names: Iterable[str], listener: ChannelListener) -> None:
        async def on_message(message: Any) -> None:
            try:
                await listener(message.name, message.data)
            except Exception:
                LOG.exception("Error handling realtime event %s", message.name)

        for name in event_names:
            await self._channel.subscribe(name, on_message)
            self._listeners.append((name, on_message))

    async def publish(self, event_name: str, data: Any) -> None:
        await self._channel.publish(event_name, data)
        LOG.debug("Published %s to %s", event_name, self.channel_id)

    async def dispose(self) -> None:
        LOG.info("Disposing realtime channel %s", self.channel_id)
        try:
            for name, on_message in self._listeners:
                self._channel.unsubscribe(name, on_message)
            self._listeners.clear()
            await self._channel.detach()
            await self._client.close()
        except Exception as e:
            LOG.warning("Error while disposing realtime channel %s: %s", self.channel_id, e)


def ably_channel_factory(token: str, channel_id: str) -> RealtimeChannel:
    return AblyRealtimeChannel(token, channel_id)
