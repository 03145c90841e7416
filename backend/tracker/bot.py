"""
Niibot Tracker
Live-roster tracker channels and clip GIFs, on discord.py 2.x
"""

import asyncio
import logging
from pathlib import Path

from dotenv import load_dotenv

# .env must be loaded before settings are read
load_dotenv(dotenv_path=Path(__file__).parent / ".env", encoding="utf-8")

import discord  # noqa: E402
from discord.ext import commands  # noqa: E402

from shared.database import DatabaseManager  # noqa: E402
from shared.migrations.runner import MigrationRunner  # noqa: E402
from shared.models.roster import TrackerType  # noqa: E402
from shared.pg_documents import PostgresDocumentStore  # noqa: E402
from shared.repositories.clip import ClipRepository  # noqa: E402
from shared.repositories.roster import RosterRepository  # noqa: E402
from shared.repositories.settings import (  # noqa: E402
    GuildSettingsRepository,
    TrackerStateRepository,
)
from shared.twitch_api import TwitchAPIClient  # noqa: E402
from tracker.clips.config import GifConfig, StorageConfig  # noqa: E402
from tracker.clips.highlight import ClipHighlighter  # noqa: E402
from tracker.clips.pipeline import ClipPipeline  # noqa: E402
from tracker.clips.storage import SupabaseStorage  # noqa: E402
from tracker.config import BOT_NAME, TrackerSettings, get_settings  # noqa: E402
from tracker.core import HealthCheckServer, setup_logging  # noqa: E402
from tracker.engine.gateway import DiscordChannelGateway  # noqa: E402
from tracker.engine.live_source import TwitchLiveSource  # noqa: E402
from tracker.engine.scheduler import GuildScheduler  # noqa: E402
from tracker.engine.synchronizer import ChannelStateSynchronizer  # noqa: E402

logger = logging.getLogger("tracker_bot")


class TrackerBot(commands.Bot):
    """Discord client that owns the tracker loops and the clip pipeline."""

    def __init__(self, settings: TrackerSettings):
        intents = discord.Intents.default()
        intents.guilds = True

        super().__init__(
            command_prefix=commands.when_mentioned,
            intents=intents,
            help_command=None,
        )

        self.settings = settings
        self.initial_extensions = ["tracker.cogs.trackers"]

        self.db = DatabaseManager(settings.database_url)
        self.store: PostgresDocumentStore | None = None
        self.twitch: TwitchAPIClient | None = None
        self.storage: SupabaseStorage | None = None
        self.clip_pipeline: ClipPipeline | None = None
        self.scheduler: GuildScheduler | None = None
        self.health_server = HealthCheckServer(bot=self, db=self.db, port=settings.port)

    async def setup_hook(self):
        """Connect storage, build the engine and load commands"""
        await self.health_server.start()

        await self.db.connect()
        applied = await MigrationRunner(self.db.pool).run_pending()
        if applied:
            logger.info(f"Applied migrations: {', '.join(applied)}")

        self.store = PostgresDocumentStore(self.db.pool)
        clips = ClipRepository(self.store, self.settings.clip_collection_path_template)

        self.twitch = TwitchAPIClient(self.settings.client_id, self.settings.client_secret)
        live_source = TwitchLiveSource(self.twitch)

        clip_provider = None
        storage_config = StorageConfig.from_settings(self.settings)
        if storage_config.base_url and storage_config.service_key:
            self.storage = SupabaseStorage(storage_config)
            self.clip_pipeline = ClipPipeline(
                clips,
                GuildSettingsRepository(self.store),
                self.storage,
                GifConfig.from_settings(self.settings),
                storage_config,
            )
            clip_provider = ClipHighlighter(live_source, clips, self.clip_pipeline)
        else:
            logger.warning("STORAGE_URL not configured, clip GIFs are disabled")

        synchronizer = ChannelStateSynchronizer(
            TrackerStateRepository(self.store),
            RosterRepository(self.store),
            live_source,
            DiscordChannelGateway(self),
            clip_provider=clip_provider,
        )
        self.scheduler = GuildScheduler(
            synchronizer, interval=self.settings.tracker_interval_seconds
        )
        self.health_server.scheduler = self.scheduler

        for extension in self.initial_extensions:
            try:
                await self.load_extension(extension)
            except Exception as e:
                logger.error(f"Failed to load {extension}: {e}")

        if self.settings.discord_guild_id:
            guild = discord.Object(id=int(self.settings.discord_guild_id))
            self.tree.copy_global_to(guild=guild)
            await self.tree.sync(guild=guild)
            logger.info("Slash commands synced to test guild")
        else:
            await self.tree.sync()
            logger.info("Slash commands synced globally")

    def _start_guild(self, guild_id: str) -> None:
        if self.scheduler is None:
            return
        started = [t.value for t in TrackerType if self.scheduler.start(guild_id, t)]
        if self.clip_pipeline is not None:
            self.clip_pipeline.start_guild(guild_id)
        if started:
            logger.debug(f"[{guild_id}] trackers scheduled: {', '.join(started)}")

    async def on_ready(self):
        for guild in self.guilds:
            self._start_guild(str(guild.id))
        logger.info(
            f"[bold green]{BOT_NAME} ready:[/bold green] {self.user} "
            f"[dim]({len(self.guilds)} guilds, discord.py {discord.__version__})[/dim]"
        )

    async def on_guild_join(self, guild: discord.Guild):
        logger.info(f"Joined guild {guild.name} ({guild.id})")
        self._start_guild(str(guild.id))

    async def on_guild_remove(self, guild: discord.Guild):
        logger.info(f"Removed from guild {guild.name} ({guild.id})")
        guild_id = str(guild.id)
        if self.scheduler is not None:
            for tracker in TrackerType:
                self.scheduler.cancel(guild_id, tracker)
        if self.clip_pipeline is not None:
            self.clip_pipeline.stop_guild(guild_id)

    async def close(self):
        """Stop loops first, then the clients they use"""
        if self.scheduler is not None:
            await self.scheduler.shutdown()
        if self.clip_pipeline is not None:
            await self.clip_pipeline.close()
        if self.storage is not None:
            await self.storage.close()
        if self.twitch is not None:
            await self.twitch.close()
        if self.store is not None:
            await self.store.close()
        await self.db.disconnect()
        await self.health_server.stop()
        await super().close()


async def main():
    settings = get_settings()
    setup_logging(settings.log_level)

    async with TrackerBot(settings) as bot:
        try:
            await bot.start(settings.discord_bot_token)
        except (KeyboardInterrupt, asyncio.CancelledError):
            if not bot.is_closed():
                await bot.close()


def run():
    try:
        asyncio.run(main())
    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("[yellow]Tracker stopped[/yellow]")


if __name__ == "__main__":
    run()
