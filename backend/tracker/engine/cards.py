"""Embed builders for tracker channel messages.

Builders return :class:`MessageContent`, a plain description of a message.
The Discord gateway turns it into send/edit keyword arguments; keeping
buttons as specs means no ``discord.ui.View`` is built outside the event
loop.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime

import discord

from shared.models.roster import LiveEntity, RosterMember, ScheduleSlot

FOOTER_TEXT = "Next update in ~7 minutes."

TWITCH_PURPLE = discord.Color(0x9146FF)
SPOTLIGHT_BLUE = discord.Color(0x1DA1F2)
RAID_RED = discord.Color(0xED4245)
TRAIN_VIOLET = discord.Color(0x8A2BE2)
GOLD = discord.Color(0xFFD700)
BLURPLE = discord.Color.blurple()

LEADERBOARD_SIZE = 10

# Legend symbols for schedule claimants, in assignment order
_LEGEND_SYMBOLS = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789"


@dataclass(frozen=True)
class ButtonSpec:
    custom_id: str
    label: str
    style: discord.ButtonStyle = discord.ButtonStyle.primary
    emoji: str | None = None


@dataclass
class MessageContent:
    content: str | None = None
    embeds: list[discord.Embed] = field(default_factory=list)
    buttons: tuple[ButtonSpec, ...] = ()


def _preview_url(entity: LiveEntity, now: datetime) -> str:
    # Cache-busting query so Discord refetches the live preview
    return (
        f"https://static-cdn.jtvnw.net/previews-ttv/live_user_{entity.login}-440x248.jpg"
        f"?t={int(now.timestamp())}"
    )


def _stream_embed(entity: LiveEntity, color: discord.Color, now: datetime) -> discord.Embed:
    embed = discord.Embed(
        title=entity.title or "Untitled Stream",
        url=entity.channel_url,
        color=color,
        timestamp=now,
    )
    embed.set_author(name=entity.display_name, icon_url=entity.avatar_url, url=entity.channel_url)
    embed.add_field(name="Playing", value=entity.game_name or "N/A", inline=True)
    embed.add_field(name="Viewers", value=str(entity.viewer_count), inline=True)
    if entity.avatar_url:
        embed.set_thumbnail(url=entity.avatar_url)
    if entity.login:
        embed.set_image(url=_preview_url(entity, now))
    return embed


def header(title: str, description: str, color: discord.Color) -> MessageContent:
    return MessageContent(embeds=[discord.Embed(title=title, description=description, color=color)])


def footer(status: str, now: datetime, buttons: Sequence[ButtonSpec] = ()) -> MessageContent:
    embed = discord.Embed(description=f"**Status:** {status}", color=BLURPLE, timestamp=now)
    embed.set_footer(text=FOOTER_TEXT)
    return MessageContent(embeds=[embed], buttons=tuple(buttons))


def vip_card(entity: LiveEntity, now: datetime) -> MessageContent:
    embed = _stream_embed(entity, TWITCH_PURPLE, now)
    embed.description = f"*{entity.custom_message or 'Come hang out!'}*"
    return MessageContent(embeds=[embed])


def pool_card(entity: LiveEntity, now: datetime, *, spotlight: bool) -> MessageContent:
    embed = _stream_embed(entity, SPOTLIGHT_BLUE if spotlight else BLURPLE, now)
    if spotlight:
        embed.set_author(
            name="🌟 Spotlight Streamer 🌟", icon_url=entity.avatar_url, url=entity.channel_url
        )
    return MessageContent(embeds=[embed])


def featured_card(
    role: str, entity: LiveEntity | None, now: datetime, *, color: discord.Color, empty: str
) -> MessageContent:
    """Holder/conductor card, or a placeholder when nobody qualifies."""
    if entity is None:
        embed = discord.Embed(title=f"No {role} Live", description=empty, color=BLURPLE)
        embed.set_author(name=role)
        return MessageContent(embeds=[embed])

    embed = discord.Embed(
        title=entity.display_name, url=entity.channel_url, color=color, timestamp=now
    )
    embed.set_author(name=role)
    embed.add_field(name="Playing", value=entity.game_name or "N/A", inline=True)
    embed.add_field(name="Viewers", value=str(entity.viewer_count), inline=True)
    if entity.avatar_url:
        embed.set_thumbnail(url=entity.avatar_url)
    if entity.login:
        embed.set_image(url=_preview_url(entity, now))
    return MessageContent(embeds=[embed])


def queue_card(entities: Sequence[LiveEntity]) -> MessageContent:
    embed = discord.Embed(color=BLURPLE)
    embed.set_author(name="Next in the Pile")
    if entities:
        embed.description = "\n".join(
            f"**{i}.** {entity.display_name}" for i, entity in enumerate(entities, start=1)
        )
    else:
        embed.description = "The queue is empty."
    return MessageContent(embeds=[embed])


def leaderboard_card(members: Sequence[RosterMember], now: datetime) -> MessageContent:
    ranked = sorted(members, key=lambda m: (-m.points, m.display_name.lower()))[:LEADERBOARD_SIZE]
    embed = discord.Embed(title="🏆 Community Leaderboard 🏆", color=GOLD, timestamp=now)
    if ranked:
        embed.description = "\n".join(
            f"**{i}.** {m.display_name or m.login} - {m.points} pts"
            for i, m in enumerate(ranked, start=1)
        )
    else:
        embed.description = "No points have been awarded yet."
    return MessageContent(embeds=[embed])


def schedule_grid(slots: Sequence[ScheduleSlot]) -> tuple[str, str]:
    """Render the day as a 6x4 box grid plus a legend of claimant symbols."""
    columns, cell = 6, 7
    by_label = {slot.label: slot for slot in slots}
    legend: dict[str, str] = {}

    def rule(left: str, mid: str, right: str) -> str:
        return left + mid.join(["═" * cell] * columns) + right

    lines = [rule("╔", "╦", "╗")]
    for row in range(24 // columns):
        times, claims = [], []
        for col in range(columns):
            label = f"{row * columns + col:02d}:00"
            times.append(label.center(cell))
            slot = by_label.get(label)
            if slot is None or slot.claimant_id is None:
                claims.append(" " * cell)
            elif slot.is_emergency:
                claims.append("[ E ]".center(cell))
            else:
                name = slot.claimant_name or slot.claimant_id
                if name not in legend:
                    legend[name] = _LEGEND_SYMBOLS[len(legend) % len(_LEGEND_SYMBOLS)]
                claims.append(f"[ {legend[name]} ]".center(cell))
        lines.append("║" + "║".join(times) + "║")
        lines.append("║" + "║".join(claims) + "║")
        lines.append(rule("╠", "╬", "╣") if row < 24 // columns - 1 else rule("╚", "╩", "╝"))

    legend_lines = [f"[{symbol}] = {name}" for name, symbol in legend.items()]
    legend_text = "\n".join(legend_lines or ["No signups yet."])
    return (
        "```\n" + "\n".join(lines) + "\n```",
        "```\nLegend:\n" + legend_text + "\n[E] = Emergency Spot\n```",
    )


def schedule_card(slots: Sequence[ScheduleSlot], now: datetime) -> MessageContent:
    grid, legend = schedule_grid(slots)
    embed = discord.Embed(description=f"{grid}\n{legend}", color=BLURPLE)
    embed.set_author(name=f"Schedule for {now:%B %d} (All times are in UTC)")
    return MessageContent(embeds=[embed])


def clip_message(share_url: str, gif_url: str, title: str | None = None) -> MessageContent:
    embed = discord.Embed(title=title or None, url=share_url, color=TWITCH_PURPLE)
    embed.set_image(url=gif_url)
    return MessageContent(content=share_url, embeds=[embed])
