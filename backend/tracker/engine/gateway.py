"""Channel operations used by the synchronizer, and their Discord implementation."""

from __future__ import annotations

import abc
import logging
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from typing import Any

import discord

from tracker.engine.cards import MessageContent
from tracker.engine.errors import ChannelGoneError, TargetGoneError

logger = logging.getLogger(__name__)

# Discord JSON error codes
UNKNOWN_CHANNEL = 10003
UNKNOWN_MESSAGE = 10008
MISSING_ACCESS = 50001
MISSING_PERMISSIONS = 50013

# Bulk delete accepts 2-100 messages younger than two weeks
BULK_DELETE_LIMIT = 100


class ChannelGateway(abc.ABC):
    """Message operations against one chat surface.

    Every operation raises :class:`TargetGoneError` when the message is gone
    and :class:`ChannelGoneError` when the channel itself is unusable.
    """

    @abc.abstractmethod
    async def fetch_channel(self, channel_id: str) -> Any | None:
        """Return a channel handle, or ``None`` when it no longer exists."""

    @abc.abstractmethod
    async def send(self, channel: Any, content: MessageContent) -> str:
        """Post a message and return its id."""

    @abc.abstractmethod
    async def edit(self, channel: Any, message_id: str, content: MessageContent) -> None: ...

    @abc.abstractmethod
    async def delete(self, channel: Any, message_id: str) -> None: ...

    @abc.abstractmethod
    async def bulk_delete(self, channel: Any, message_ids: Sequence[str]) -> bool:
        """Delete several messages at once; ``False`` means fall back to single deletes."""

    async def delete_all(self, channel: Any, message_ids: Sequence[str]) -> None:
        """Delete messages, tolerating ones that are already gone."""
        ids = [m for m in dict.fromkeys(message_ids) if m]
        if len(ids) > 1 and await self.bulk_delete(channel, ids):
            return
        for message_id in ids:
            try:
                await self.delete(channel, message_id)
            except TargetGoneError:
                continue
            except discord.HTTPException as e:
                logger.warning(f"Could not delete message {message_id}: {e}")


def _build_view(content: MessageContent) -> discord.ui.View | None:
    if not content.buttons:
        return None
    view = discord.ui.View(timeout=None)
    for button in content.buttons:
        view.add_item(
            discord.ui.Button(
                custom_id=button.custom_id,
                label=button.label,
                style=button.style,
                emoji=button.emoji,
            )
        )
    return view


@contextmanager
def _target_errors(channel_id: Any, message_id: str | None = None) -> Iterator[None]:
    try:
        yield
    except discord.NotFound as e:
        if e.code == UNKNOWN_CHANNEL:
            raise ChannelGoneError(f"Channel {channel_id} is gone", message_id) from e
        raise TargetGoneError(f"Message {message_id} is gone", message_id) from e
    except discord.Forbidden as e:
        raise ChannelGoneError(
            f"Lost access to channel {channel_id} (code {e.code})", message_id
        ) from e


class DiscordChannelGateway(ChannelGateway):
    """:class:`ChannelGateway` over a connected ``discord.Client``."""

    def __init__(self, client: discord.Client) -> None:
        self.client = client

    async def fetch_channel(self, channel_id: str) -> discord.abc.Messageable | None:
        try:
            channel = self.client.get_channel(int(channel_id)) or await self.client.fetch_channel(
                int(channel_id)
            )
        except (discord.NotFound, discord.Forbidden):
            return None
        except ValueError:
            logger.warning(f"Invalid channel id {channel_id!r}")
            return None
        if not isinstance(channel, discord.abc.Messageable):
            return None
        return channel

    async def send(self, channel: Any, content: MessageContent) -> str:
        kwargs: dict[str, Any] = {"content": content.content, "embeds": content.embeds}
        view = _build_view(content)
        if view is not None:
            kwargs["view"] = view
        with _target_errors(channel.id):
            message = await channel.send(**kwargs)
        return str(message.id)

    async def edit(self, channel: Any, message_id: str, content: MessageContent) -> None:
        with _target_errors(channel.id, message_id):
            await channel.get_partial_message(int(message_id)).edit(
                content=content.content, embeds=content.embeds, view=_build_view(content)
            )

    async def delete(self, channel: Any, message_id: str) -> None:
        with _target_errors(channel.id, message_id):
            await channel.get_partial_message(int(message_id)).delete()

    async def bulk_delete(self, channel: Any, message_ids: Sequence[str]) -> bool:
        if not hasattr(channel, "delete_messages") or len(message_ids) > BULK_DELETE_LIMIT:
            return False
        try:
            await channel.delete_messages([discord.Object(id=int(m)) for m in message_ids])
            return True
        except (discord.HTTPException, discord.ClientException) as e:
            logger.debug(f"Bulk delete in {channel.id} failed, deleting one by one: {e}")
            return False
