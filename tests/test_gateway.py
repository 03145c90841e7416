from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from fakes import RecordingGateway
from tracker.engine.cards import ButtonSpec, MessageContent
from tracker.engine.errors import ChannelGoneError, TargetGoneError
from tracker.engine.gateway import (
    MISSING_PERMISSIONS,
    UNKNOWN_CHANNEL,
    UNKNOWN_MESSAGE,
    DiscordChannelGateway,
)


def http_error(cls, code: int):
    response = MagicMock(status=404 if cls is discord.NotFound else 403, reason="")
    return cls(response, {"code": code, "message": "nope"})


def fake_channel(partial_error=None, send_error=None):
    channel = MagicMock(id=222)
    channel.send = AsyncMock(return_value=MagicMock(id=555), side_effect=send_error)
    partial = MagicMock()
    partial.edit = AsyncMock(side_effect=partial_error)
    partial.delete = AsyncMock(side_effect=partial_error)
    channel.get_partial_message.return_value = partial
    return channel, partial


@pytest.mark.asyncio
async def test_send_returns_message_id_and_attaches_buttons():
    channel, _ = fake_channel()
    gateway = DiscordChannelGateway(MagicMock())

    message_id = await gateway.send(
        channel, MessageContent(content="hi", buttons=(ButtonSpec("raid_join", "Join"),))
    )

    assert message_id == "555"
    view = channel.send.call_args.kwargs["view"]
    assert [item.custom_id for item in view.children] == ["raid_join"]


@pytest.mark.asyncio
async def test_unknown_message_is_target_gone():
    channel, _ = fake_channel(partial_error=http_error(discord.NotFound, UNKNOWN_MESSAGE))

    with pytest.raises(TargetGoneError) as exc:
        await DiscordChannelGateway(MagicMock()).edit(channel, "77", MessageContent())

    assert not isinstance(exc.value, ChannelGoneError)
    assert exc.value.message_id == "77"


@pytest.mark.asyncio
async def test_unknown_channel_is_channel_gone():
    channel, _ = fake_channel(send_error=http_error(discord.NotFound, UNKNOWN_CHANNEL))

    with pytest.raises(ChannelGoneError):
        await DiscordChannelGateway(MagicMock()).send(channel, MessageContent(content="x"))


@pytest.mark.asyncio
async def test_missing_permissions_is_channel_gone():
    channel, _ = fake_channel(partial_error=http_error(discord.Forbidden, MISSING_PERMISSIONS))

    with pytest.raises(ChannelGoneError):
        await DiscordChannelGateway(MagicMock()).delete(channel, "77")


@pytest.mark.asyncio
async def test_fetch_channel_returns_none_when_gone():
    client = MagicMock()
    client.get_channel.return_value = None
    client.fetch_channel = AsyncMock(side_effect=http_error(discord.NotFound, UNKNOWN_CHANNEL))

    assert await DiscordChannelGateway(client).fetch_channel("222") is None


@pytest.mark.asyncio
async def test_delete_all_falls_back_to_single_deletes_and_skips_gone():
    gateway = RecordingGateway("c")
    channel = gateway.channel("c")
    kept = await gateway.send(channel, MessageContent(content="a"))
    other = await gateway.send(channel, MessageContent(content="b"))
    del channel.messages[other]

    await gateway.delete_all(channel, [kept, other, kept, None])

    assert channel.messages == {}
    assert gateway.ops_of("delete") == [kept]


@pytest.mark.asyncio
async def test_delete_all_prefers_bulk():
    gateway = RecordingGateway("c")
    gateway.bulk_supported = True
    channel = gateway.channel("c")
    ids = [await gateway.send(channel, MessageContent(content=str(i))) for i in range(3)]

    await gateway.delete_all(channel, ids)

    assert gateway.ops_of("bulk_delete") == ids
    assert gateway.ops_of("delete") == []
