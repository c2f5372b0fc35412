"""
In-process channel registry for the WebSocket bridge.

Sessions join and leave named channels explicitly; `publish` sends to whoever
is joined right now. Nothing is queued for sessions that join later.
Joining or leaving never touches order or payment state.
"""
import asyncio
import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class Subscriber(Protocol):
    async def send_text(self, data: str) -> None: ...


class ChannelHub:
    def __init__(self):
        self._channels: dict[str, set[Subscriber]] = {}

    def join(self, channel: str, session: Subscriber) -> None:
        self._channels.setdefault(channel, set()).add(session)

    def leave(self, channel: str, session: Subscriber) -> None:
        members = self._channels.get(channel)
        if members is None:
            return
        members.discard(session)
        if not members:
            del self._channels[channel]

    def leave_all(self, session: Subscriber) -> list[str]:
        """Remove a disconnected session everywhere; returns the channels it was in."""
        left = [name for name, members in self._channels.items() if session in members]
        for name in left:
            self.leave(name, session)
        return left

    def channels_of(self, session: Subscriber) -> list[str]:
        return sorted(name for name, members in self._channels.items() if session in members)

    def count(self, channel: str | None = None) -> int:
        if channel is not None:
            return len(self._channels.get(channel, ()))
        return sum(len(members) for members in self._channels.values())

    def count_by_prefix(self, prefix: str) -> int:
        return sum(len(m) for name, m in self._channels.items() if name.startswith(prefix))

    async def publish(self, channel: str, data: str) -> int:
        """Send to every session in the channel. Returns how many sends succeeded."""
        members = list(self._channels.get(channel, ()))
        if not members:
            return 0

        results = await asyncio.gather(
            *(session.send_text(data) for session in members),
            return_exceptions=True,
        )

        delivered = 0
        for session, result in zip(members, results):
            if isinstance(result, Exception):
                logger.info(f"Dropping dead session from {channel}: {result!r}")
                self.leave(channel, session)
            else:
                delivered += 1
        return delivered
