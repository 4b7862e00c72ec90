"""
Slash-command intake.

`/redeem` refuses early while the submitter is on cooldown, otherwise opens
a modal asking for the redeem key and invite link.
"""

import asyncio

import discord
from discord import app_commands

from redeem_panel.core.lifecycle import RedeemService, SubmitFailure, SubmitOutcome
from redeem_panel.core.throttle import ThrottleDecision
from redeem_panel.logger import get_logger
from redeem_panel.storage.models import RedeemDraft, ThrottleScope

logger = get_logger(__name__)

ERROR_COLOUR = discord.Colour(0xFF6B6B)
SUCCESS_COLOUR = discord.Colour(0x27AE60)

_FAILURE_TITLES = {
    SubmitFailure.VALIDATION_FAILED: "❌ Invalid Input",
    SubmitFailure.DUPLICATE_KEY: "❌ Key Already Used",
    SubmitFailure.RATE_LIMITED: "⏰ Cooldown Active",
}


def cooldown_embed(decision: ThrottleDecision) -> discord.Embed:
    return discord.Embed(
        title="⏰ Cooldown Active",
        description=decision.message,
        colour=ERROR_COLOUR,
    )


def outcome_embed(outcome: SubmitOutcome) -> discord.Embed:
    """Ephemeral reply describing a submission result."""
    if not outcome.ok:
        return discord.Embed(
            title=_FAILURE_TITLES[outcome.failure],
            description="\n".join(outcome.errors),
            colour=ERROR_COLOUR,
        )

    request = outcome.request
    embed = discord.Embed(
        title="✅ Request Received",
        description="Your request has been received. You'll be updated shortly.",
        colour=SUCCESS_COLOUR,
    )
    embed.add_field(name="Request", value=f"#{request.id}", inline=True)
    embed.add_field(name="Redeem Key", value=f"`{request.redeem_key}`", inline=True)
    embed.add_field(name="Status", value=request.status.value, inline=True)
    return embed


def build_draft(user: discord.abc.User, redeem_key: str, invite_link: str) -> RedeemDraft:
    """Command-path draft: the Discord user is both display name and cooldown identity."""
    return RedeemDraft(
        name=str(user),
        redeem_key=redeem_key.strip(),
        invite_link=invite_link.strip(),
        identity=str(user.id),
        scope=ThrottleScope.SUBMITTER,
    )


class RedeemModal(discord.ui.Modal, title="Redeem Key"):
    redeem_key = discord.ui.TextInput(
        label="Redeem Key",
        placeholder="Enter your redeem key...",
        style=discord.TextStyle.short,
        max_length=100,
    )
    invite_link = discord.ui.TextInput(
        label="Discord Server Invite Link",
        placeholder="https://discord.gg/your-invite-code",
        style=discord.TextStyle.short,
    )

    def __init__(self, service: RedeemService):
        super().__init__()
        self.service = service

    async def on_submit(self, interaction: discord.Interaction) -> None:
        draft = build_draft(interaction.user, self.redeem_key.value, self.invite_link.value)
        outcome = await asyncio.to_thread(self.service.submit, draft)
        if outcome.ok:
            logger.info("Request #%s submitted by %s", outcome.request_id, interaction.user)
        await interaction.response.send_message(embed=outcome_embed(outcome), ephemeral=True)


def register_commands(tree: app_commands.CommandTree, service: RedeemService) -> None:
    """Attach `/redeem` to the command tree."""

    @tree.command(name="redeem", description="Redeem a key with your Discord server invite")
    async def redeem(interaction: discord.Interaction) -> None:
        decision = await asyncio.to_thread(
            service.check_throttle, ThrottleScope.SUBMITTER, str(interaction.user.id)
        )
        if not decision.allowed:
            await interaction.response.send_message(
                embed=cooldown_embed(decision), ephemeral=True
            )
            return
        await interaction.response.send_modal(RedeemModal(service))
