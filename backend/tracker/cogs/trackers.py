"""Slash commands that attach trackers to channels and detach them."""

import logging

import discord
from discord import app_commands
from discord.ext import commands

from shared.models.roster import TrackerType
from tracker.engine.errors import ChannelGoneError

logger = logging.getLogger(__name__)

TRACKER_CHOICES = [app_commands.Choice(name=t.label, value=t.value) for t in TrackerType]


class TrackersCog(commands.Cog):
    """Tracker setup and teardown"""

    tracker_group = app_commands.Group(
        name="tracker",
        description="Live tracker channels",
        guild_only=True,
        default_permissions=discord.Permissions(manage_guild=True),
    )

    def __init__(self, bot: commands.Bot):
        self.bot = bot

    @property
    def scheduler(self):
        return self.bot.scheduler  # type: ignore[attr-defined]

    @tracker_group.command(name="setup", description="Post a tracker in a channel")
    @app_commands.describe(
        tracker="Which tracker to set up", channel="Target channel, defaults to this one"
    )
    @app_commands.choices(tracker=TRACKER_CHOICES)
    @app_commands.checks.has_permissions(manage_guild=True)
    async def tracker_setup(
        self,
        interaction: discord.Interaction,
        tracker: app_commands.Choice[str],
        channel: discord.TextChannel | None = None,
    ) -> None:
        tracker_type = TrackerType(tracker.value)
        target = channel or interaction.channel
        if interaction.guild is None or target is None:
            await interaction.response.send_message("Use this in a server channel", ephemeral=True)
            return

        await interaction.response.defer(ephemeral=True, thinking=True)
        guild_id = str(interaction.guild.id)
        try:
            await self.scheduler.bootstrap(guild_id, tracker_type, str(target.id))
        except ChannelGoneError:
            await interaction.followup.send(
                f"I can't post in {target.mention}. Check my permissions there.", ephemeral=True
            )
            return
        except Exception as e:
            logger.exception(f"[{guild_id}/{tracker_type.value}] setup failed: {e}")
            retrying = self.scheduler.is_running(guild_id, tracker_type)
            await interaction.followup.send(
                f"Setup failed: {type(e).__name__}"
                + (", retrying on the next update" if retrying else ""),
                ephemeral=True,
            )
            return

        logger.info(
            f"[{guild_id}/{tracker_type.value}] set up in #{target} by {interaction.user}"
        )
        await interaction.followup.send(
            f"{tracker_type.label} tracker is live in {target.mention}", ephemeral=True
        )

    @tracker_group.command(name="disable", description="Remove a tracker and its messages")
    @app_commands.describe(tracker="Which tracker to disable")
    @app_commands.choices(tracker=TRACKER_CHOICES)
    @app_commands.checks.has_permissions(manage_guild=True)
    async def tracker_disable(
        self, interaction: discord.Interaction, tracker: app_commands.Choice[str]
    ) -> None:
        tracker_type = TrackerType(tracker.value)
        if interaction.guild is None:
            await interaction.response.send_message("Use this in a server channel", ephemeral=True)
            return

        await interaction.response.defer(ephemeral=True, thinking=True)
        guild_id = str(interaction.guild.id)
        try:
            removed = await self.scheduler.stop(guild_id, tracker_type)
        except Exception as e:
            logger.exception(f"[{guild_id}/{tracker_type.value}] disable failed: {e}")
            await interaction.followup.send(
                f"Disable failed: {type(e).__name__}", ephemeral=True
            )
            return

        if not removed:
            await interaction.followup.send(
                f"{tracker_type.label} tracker is not set up, nothing to disable", ephemeral=True
            )
            return
        await interaction.followup.send(f"{tracker_type.label} tracker disabled", ephemeral=True)

    async def cog_app_command_error(
        self, interaction: discord.Interaction, error: app_commands.AppCommandError
    ) -> None:
        if isinstance(error, app_commands.MissingPermissions):
            message = "You need Manage Server to do that"
        else:
            logger.error(f"Tracker command error: {error}", exc_info=error)
            message = "Something went wrong running that command"
        if interaction.response.is_done():
            await interaction.followup.send(message, ephemeral=True)
        else:
            await interaction.response.send_message(message, ephemeral=True)


async def setup(bot: commands.Bot):
    await bot.add_cog(TrackersCog(bot))
