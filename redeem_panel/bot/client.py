"""
Discord client wiring: slash commands, review buttons and the pending sweep.
"""

import asyncio
from datetime import timedelta

import discord
from discord import app_commands
from discord.ext import tasks

from redeem_panel.config.loader import PanelConfig
from redeem_panel.core.lifecycle import RedeemService
from redeem_panel.logger import get_logger

from .intake import register_commands
from .review import ReviewNotifier

logger = get_logger(__name__)


class RedeemBot(discord.Client):
    """Hosts `/redeem` intake and the reviewer channel for one service."""

    def __init__(self, service: RedeemService, config: PanelConfig):
        intents = discord.Intents.default()
        intents.guilds = True
        intents.guild_messages = True
        super().__init__(intents=intents)

        self.service = service
        self.config = config
        self.tree = app_commands.CommandTree(self)
        self.review = ReviewNotifier(self, config.discord.review_channel_id)
        service.notifier = self.review
        register_commands(self.tree, service)

        self.sweep_pending.change_interval(seconds=config.discord.sweep_interval_seconds)

    async def setup_hook(self) -> None:
        self.review.bind_loop(asyncio.get_running_loop())

        guild_id = self.config.discord.guild_id
        if guild_id:
            guild = discord.Object(id=guild_id)
            self.tree.copy_global_to(guild=guild)
            await self.tree.sync(guild=guild)
        else:
            await self.tree.sync()
        logger.info("Application commands synced")

        self.sweep_pending.start()

    async def on_ready(self) -> None:
        logger.info("Discord bot ready, logged in as %s", self.user)
        window = timedelta(minutes=self.config.throttle.submitter_cooldown_minutes)
        purged = await asyncio.to_thread(self.service.cooldowns.purge_expired, window)
        if purged:
            logger.info("Purged %d expired cooldowns", purged)

    async def on_interaction(self, interaction: discord.Interaction) -> None:
        if interaction.type is not discord.InteractionType.component:
            return
        try:
            await self.review.handle_decision(interaction, self.service)
        except discord.DiscordException:
            logger.exception("Error handling button interaction")
            if not interaction.response.is_done():
                await interaction.response.send_message(
                    "❌ An error occurred while processing your request.", ephemeral=True
                )

    @tasks.loop(seconds=30)
    async def sweep_pending(self) -> None:
        posted = await self.review.sweep(self.service)
        if posted:
            logger.info("Sweep posted %d pending requests", posted)

    @sweep_pending.before_loop
    async def _wait_until_ready(self) -> None:
        await self.wait_until_ready()


def run_bot(service: RedeemService, config: PanelConfig) -> None:
    """Block running the Discord client until it is closed."""
    if not config.discord.token:
        raise ValueError("DISCORD_TOKEN is not configured")
    bot = RedeemBot(service, config)
    bot.run(config.discord.token, log_handler=None)
