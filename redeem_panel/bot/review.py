"""
Discord review surface.

Posts each new redeem request to the review channel with Approve/Reject
buttons, applies reviewer clicks through the lifecycle and keeps the posted
message in step with the request's status.
"""

import asyncio
from datetime import datetime
from typing import Dict, Optional, Set, Tuple

import discord

from redeem_panel.core.lifecycle import DecisionFailure, RedeemService
from redeem_panel.logger import get_logger
from redeem_panel.storage.models import RedeemRequest, RequestStatus

logger = get_logger(__name__)

STATUS_COLOURS = {
    RequestStatus.PENDING: 0xF39C12,
    RequestStatus.APPROVED: 0x27AE60,
    RequestStatus.REJECTED: 0xE74C3C,
}

DECISION_ACTIONS = {
    "approve": RequestStatus.APPROVED,
    "reject": RequestStatus.REJECTED,
}


def decision_custom_id(action: str, request_id: int) -> str:
    if action not in DECISION_ACTIONS:
        raise ValueError(f"Unknown decision action: {action}")
    return f"{action}_{request_id}"


def parse_decision_custom_id(custom_id: Optional[str]) -> Optional[Tuple[RequestStatus, int]]:
    """Decode `approve_<id>` / `reject_<id>`; None for any other component id."""
    if not custom_id or "_" not in custom_id:
        return None
    action, _, raw_id = custom_id.partition("_")
    if action not in DECISION_ACTIONS or not raw_id.isdigit():
        return None
    return DECISION_ACTIONS[action], int(raw_id)


def _format_timestamp(value: datetime) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S UTC")


def build_request_embed(request: RedeemRequest) -> discord.Embed:
    """Render a request for reviewers, coloured by status."""
    embed = discord.Embed(
        title=f"🔔 Redeem Request #{request.id}",
        colour=discord.Colour(STATUS_COLOURS[request.status]),
        timestamp=request.submitted_at,
    )
    embed.add_field(name="👤 Client Name", value=request.name, inline=True)
    embed.add_field(name="🔑 Redeem Key", value=f"`{request.redeem_key}`", inline=True)
    embed.add_field(name="📧 Email", value=request.contact_email, inline=False)
    if request.order_id:
        embed.add_field(name="🛒 Order ID", value=request.order_id, inline=True)
    embed.add_field(name="🔗 Invite Link", value=request.invite_link, inline=False)
    embed.add_field(name="📊 Status", value=request.status.value, inline=True)
    embed.add_field(
        name="🕐 Submitted", value=_format_timestamp(request.submitted_at), inline=True
    )
    if request.submitter_address:
        embed.add_field(
            name="🌐 IP Address", value=f"`{request.submitter_address}`", inline=True
        )
    if request.submitter_identity:
        embed.add_field(
            name="🆔 Discord User", value=f"<@{request.submitter_identity}>", inline=True
        )
    embed.set_footer(text="Redeem Panel Bot")
    return embed


class ReviewView(discord.ui.View):
    """Approve/Reject buttons for one pending request.

    Clicks are routed by custom id in the client's interaction handler, so
    the buttons keep working after a restart.
    """

    def __init__(self, request_id: int):
        super().__init__(timeout=None)
        self.add_item(discord.ui.Button(
            label="✅ Approve",
            style=discord.ButtonStyle.success,
            custom_id=decision_custom_id("approve", request_id),
        ))
        self.add_item(discord.ui.Button(
            label="❌ Reject",
            style=discord.ButtonStyle.danger,
            custom_id=decision_custom_id("reject", request_id),
        ))


class NotificationCache:
    """Review-channel message id per request still awaiting a decision."""

    def __init__(self):
        self._messages: Dict[int, int] = {}

    def __contains__(self, request_id: int) -> bool:
        return request_id in self._messages

    def __len__(self) -> int:
        return len(self._messages)

    def remember(self, request_id: int, message_id: int) -> None:
        self._messages[request_id] = message_id

    def message_id(self, request_id: int) -> Optional[int]:
        return self._messages.get(request_id)

    def evict(self, request_id: int) -> None:
        self._messages.pop(request_id, None)


class ReviewNotifier:
    """Notifier backed by a Discord review channel.

    `on_created`/`on_status_changed` may be called from any thread; the work
    is scheduled on the bot's event loop once `bind_loop` has been called.
    Before that, new requests are picked up by the next `sweep`.
    """

    def __init__(self, client: discord.Client, channel_id: Optional[int],
                 cache: Optional[NotificationCache] = None):
        self.client = client
        self.channel_id = channel_id
        self.cache = cache or NotificationCache()
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self._sweeping = False
        # Ids with a send in flight, so a sweep cannot post them twice
        self._publishing: Set[int] = set()

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        self.loop = loop

    def on_created(self, request: RedeemRequest) -> None:
        self._schedule(self.publish(request))

    def on_status_changed(self, request: RedeemRequest) -> None:
        self._schedule(self.refresh(request))

    def _schedule(self, coro) -> None:
        if self.loop is None or self.loop.is_closed():
            coro.close()
            logger.info("Review loop not running; notification deferred to next sweep")
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self.loop:
            self.loop.create_task(coro)
        else:
            asyncio.run_coroutine_threadsafe(coro, self.loop)

    async def _channel(self):
        if self.channel_id is None:
            logger.error("Review channel id not configured")
            return None
        channel = self.client.get_channel(self.channel_id)
        if channel is None:
            channel = await self.client.fetch_channel(self.channel_id)
        return channel

    async def publish(self, request: RedeemRequest) -> bool:
        """Post a request with decision buttons; True if a message was sent."""
        if request.id in self.cache or request.id in self._publishing:
            return False
        self._publishing.add(request.id)
        try:
            channel = await self._channel()
            if channel is None:
                return False
            view = ReviewView(request.id) if not request.status.is_terminal else None
            message = await channel.send(embed=build_request_embed(request), view=view)
            self.cache.remember(request.id, message.id)
        except discord.DiscordException:
            logger.exception("Error sending notification for request #%s", request.id)
            return False
        finally:
            self._publishing.discard(request.id)

        logger.info("Sent notification for request #%s", request.id)
        return True

    async def refresh(self, request: RedeemRequest) -> bool:
        """Re-render a posted request; buttons are removed once it is terminal."""
        message_id = self.cache.message_id(request.id)
        if message_id is None:
            return False
        try:
            channel = await self._channel()
            if channel is None:
                return False
            message = await channel.fetch_message(message_id)
            view = None if request.status.is_terminal else ReviewView(request.id)
            await message.edit(embed=build_request_embed(request), view=view)
        except discord.DiscordException:
            logger.exception("Error updating message for request #%s", request.id)
            return False
        finally:
            if request.status.is_terminal:
                self.cache.evict(request.id)

        logger.info("Updated message for request #%s with status %s",
                    request.id, request.status.value)
        return True

    async def sweep(self, service: RedeemService, delay: float = 1.0) -> int:
        """Post every pending request not yet surfaced.

        Not reentrant: a call made while another sweep is running returns 0
        immediately.

        Args:
            service: Lifecycle to read pending requests from
            delay: Pause between posts to stay under Discord rate limits

        Returns:
            Number of requests posted
        """
        if self._sweeping:
            logger.info("Previous sweep still running; skipping")
            return 0
        self._sweeping = True
        try:
            posted = 0
            pending = await asyncio.to_thread(service.list_pending)
            for request in reversed(pending):
                if request.id in self.cache or request.id in self._publishing:
                    continue
                if await self.publish(request):
                    posted += 1
                    if delay:
                        await asyncio.sleep(delay)
            return posted
        finally:
            self._sweeping = False

    async def handle_decision(self, interaction: discord.Interaction,
                              service: RedeemService) -> bool:
        """Apply an Approve/Reject click.

        Returns:
            False if the interaction was not a decision button
        """
        data = interaction.data or {}
        parsed = parse_decision_custom_id(data.get("custom_id"))
        if parsed is None:
            return False
        decision, request_id = parsed

        if interaction.message is not None:
            self.cache.remember(request_id, interaction.message.id)

        outcome = await asyncio.to_thread(service.decide, request_id, decision)

        if outcome.failure is DecisionFailure.NOT_FOUND:
            self.cache.evict(request_id)
            await interaction.response.send_message("❌ Request not found.", ephemeral=True)
        elif outcome.failure is DecisionFailure.INVALID_TRANSITION:
            await interaction.response.send_message(
                f"❌ This request has already been {outcome.request.status.value.lower()}.",
                ephemeral=True,
            )
            # Stale buttons on an already-decided request
            await self.refresh(outcome.request)
        else:
            await interaction.response.send_message(
                f"✅ Request #{request_id} has been **{decision.value}** by {interaction.user}"
            )
            logger.info("Request #%s %s by %s", request_id,
                        decision.value.lower(), interaction.user)
        return True
