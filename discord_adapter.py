"""discord.py implementation of the Transport port, plus the message mapper.

Components sent from here are stopped right after sending: every button and
select is dispatched in on_interaction through parse_component_id, so the
view store never needs to hold them.
"""

from typing import List, Optional

import discord

from logs import log_debug
from models import DELETE_BUTTON_ID, EmbedInfo, IncomingMessage, PostedMessage, ReactionEvent

ERROR_COLOR = 0xd1001f


class DeleteButtonView(discord.ui.View):
    def __init__(self):
        super().__init__(timeout=None)
        self.add_item(discord.ui.Button(
            label="Delete",
            emoji="🗑️",
            style=discord.ButtonStyle.danger,
            custom_id=DELETE_BUTTON_ID,
        ))


class SanitizeResultView(discord.ui.View):
    def __init__(self, original_url: str, with_delete_button: bool):
        super().__init__(timeout=None)
        self.add_item(discord.ui.Button(
            label="Open Link",
            emoji="🔗",
            style=discord.ButtonStyle.link,
            url=original_url,
        ))
        if with_delete_button:
            self.add_item(discord.ui.Button(
                label="Delete",
                emoji="🗑️",
                style=discord.ButtonStyle.danger,
                custom_id=DELETE_BUTTON_ID,
            ))


def embed_info(embed: discord.Embed) -> EmbedInfo:
    video_url = getattr(embed.video, "url", None)
    return EmbedInfo(
        title=embed.title,
        description=embed.description,
        has_video=bool(video_url) or embed.type in ("video", "gifv"),
    )


def _mentions(message: discord.Message, bot_user_id: int) -> bool:
    return any(user.id == bot_user_id for user in message.mentions)


def _to_incoming(message: discord.Message, bot_user_id: int, referenced: Optional[IncomingMessage] = None) -> IncomingMessage:
    return IncomingMessage(
        message_id=message.id,
        channel_id=message.channel.id,
        guild_id=message.guild.id if message.guild else None,
        author_id=message.author.id,
        author_is_bot=message.author.bot,
        content=message.content or "",
        mentions_bot=_mentions(message, bot_user_id),
        is_reply=message.type == discord.MessageType.reply,
        referenced=referenced,
    )


async def build_incoming(message: discord.Message, bot_user_id: int) -> IncomingMessage:
    referenced = None
    reference = message.reference
    if reference is not None and reference.message_id is not None:
        resolved = reference.resolved
        if not isinstance(resolved, discord.Message):
            # not in the gateway payload or cache; deleted replies stay None
            try:
                resolved = await message.channel.fetch_message(reference.message_id)
            except (discord.NotFound, discord.Forbidden):
                log_debug(f"Referenced message {reference.message_id} could not be fetched")
                resolved = None
        if resolved is not None:
            referenced = _to_incoming(resolved, bot_user_id)

    return _to_incoming(message, bot_user_id, referenced)


def build_reaction(payload: discord.RawReactionActionEvent) -> ReactionEvent:
    member = payload.member
    return ReactionEvent(
        message_id=payload.message_id,
        channel_id=payload.channel_id,
        guild_id=payload.guild_id,
        user_id=payload.user_id,
        user_is_bot=bool(member and member.bot),
        emoji=str(payload.emoji),
    )


class DiscordTransport:
    def __init__(self, client: discord.Client):
        self.client = client

    @property
    def bot_user_id(self) -> int:
        return self.client.user.id

    async def _channel(self, channel_id: int):
        channel = self.client.get_channel(channel_id)
        if channel is None:
            channel = await self.client.fetch_channel(channel_id)
        return channel

    async def _partial(self, channel_id: int, message_id: int) -> discord.PartialMessage:
        channel = await self._channel(channel_id)
        return channel.get_partial_message(message_id)

    async def reply(self, channel_id: int, message_id: int, content: str, with_delete_button: bool) -> PostedMessage:
        target = await self._partial(channel_id, message_id)
        view = DeleteButtonView() if with_delete_button else None
        kwargs = {"view": view} if view is not None else {}
        sent = await target.reply(
            content,
            mention_author=False,
            allowed_mentions=discord.AllowedMentions.none(),
            silent=True,
            **kwargs,
        )
        if view is not None:
            view.stop()
        return PostedMessage(channel_id=sent.channel.id, message_id=sent.id)

    async def add_reaction(self, channel_id: int, message_id: int, emoji: str):
        target = await self._partial(channel_id, message_id)
        await target.add_reaction(emoji)

    async def clear_reaction(self, channel_id: int, message_id: int, emoji: str):
        target = await self._partial(channel_id, message_id)
        await target.clear_reaction(emoji)

    async def delete_message(self, channel_id: int, message_id: int):
        target = await self._partial(channel_id, message_id)
        await target.delete()

    async def set_embeds_suppressed(self, channel_id: int, message_id: int, suppressed: bool):
        target = await self._partial(channel_id, message_id)
        await target.edit(suppress=suppressed)

    async def fetch_embeds(self, channel_id: int, message_id: int) -> Optional[List[EmbedInfo]]:
        target = await self._partial(channel_id, message_id)
        try:
            message = await target.fetch()
        except discord.NotFound:
            return None
        return [embed_info(embed) for embed in message.embeds]

    async def fetch_message(self, channel_id: int, message_id: int) -> Optional[IncomingMessage]:
        target = await self._partial(channel_id, message_id)
        try:
            message = await target.fetch()
        except discord.NotFound:
            return None
        return await build_incoming(message, self.bot_user_id)

    async def send_notice(self, channel_id: int, reply_to_id: int, title: str, description: str) -> PostedMessage:
        channel = await self._channel(channel_id)
        embed = discord.Embed(title=title, description=description, color=ERROR_COLOR)
        sent = await channel.send(
            embed=embed,
            reference=channel.get_partial_message(reply_to_id),
            mention_author=False,
        )
        return PostedMessage(channel_id=sent.channel.id, message_id=sent.id)
