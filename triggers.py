from typing import Iterable, Optional

import discord

from context import AppContext
from logs import log_debug, log_info, log_warning
from models import DeletePermission, GuildPolicy, IncomingMessage, ReactionEvent, SanitizerMode
from platforms import contains_link
from rewriter import sanitize_text


def resolve_target(message: IncomingMessage) -> Optional[IncomingMessage]:
    """
    Picks the message whose link a mention/reply should sanitize: the
    message itself when it carries a link, otherwise the one it replies to.
    """
    if sanitize_text(message.content) is not None:
        return message
    referenced = message.referenced
    if message.is_reply and referenced is not None and sanitize_text(referenced.content) is not None:
        return referenced
    return None


async def handle_message(ctx: AppContext, message: IncomingMessage):
    if message.author_id == ctx.bot_user_id:
        return

    # replies stay in play: their referenced message may hold the link
    if not contains_link(message.content) and not message.is_reply:
        return

    if message.guild_id is None:
        await process(ctx, message, None)
        return

    policy = await ctx.cache.get_or_fetch(message.guild_id)
    mode = policy.sanitizer_mode

    if mode is SanitizerMode.AUTOMATIC:
        await process(ctx, message, policy)
        return

    triggered = mode.uses_mention and (message.mentions_bot or message.is_reply)
    if not triggered:
        if mode.uses_marker:
            await mark_pending(ctx, message)
        return

    target = resolve_target(message)
    if target is None:
        log_debug(f"Mention/reply {message.message_id} has no link to sanitize")
        return

    strip_from = []
    if mode.uses_marker:
        strip_from.append(message)
        if message.referenced is not None:
            strip_from.append(message.referenced)
    await process(ctx, target, policy, strip_from=strip_from)


async def handle_reaction(ctx: AppContext, reaction: ReactionEvent):
    if reaction.user_id == ctx.bot_user_id or reaction.user_is_bot:
        return
    if reaction.guild_id is None or reaction.emoji != ctx.marker_emoji:
        return

    policy = await ctx.cache.get_or_fetch(reaction.guild_id)
    if not policy.sanitizer_mode.uses_marker:
        return

    message = await ctx.transport.fetch_message(reaction.channel_id, reaction.message_id)
    if message is None or message.author_id == ctx.bot_user_id:
        return

    await process(ctx, message, policy, strip_from=[message])


async def mark_pending(ctx: AppContext, message: IncomingMessage):
    if sanitize_text(message.content) is None:
        log_debug(f"No valid URL found in message {message.message_id}")
        return
    await ctx.transport.add_reaction(message.channel_id, message.message_id, ctx.marker_emoji)


async def strip_markers(ctx: AppContext, messages: Iterable[IncomingMessage]):
    for message in messages:
        try:
            await ctx.transport.clear_reaction(message.channel_id, message.message_id, ctx.marker_emoji)
        except discord.NotFound:
            log_info(f"Message {message.message_id} was already removed.")
        except discord.Forbidden:
            log_warning(f"Missing permission to clear reactions in channel {message.channel_id}")


async def process(
    ctx: AppContext,
    target: IncomingMessage,
    policy: Optional[GuildPolicy],
    strip_from: Iterable[IncomingMessage] = (),
):
    """Rewrites the target's link, replies with it and hands off to the guardian."""
    link = sanitize_text(target.content)
    if link is None:
        return None

    if target.message_id in ctx.in_flight:
        log_debug(f"Message {target.message_id} is already being sanitized")
        return None
    ctx.in_flight.add(target.message_id)

    try:
        link = await ctx.lookup.enrich(link)

        with_delete_button = policy is not None and policy.delete_permission is not DeletePermission.DISABLED
        posted = await ctx.transport.reply(target.channel_id, target.message_id, link.caption, with_delete_button)
        log_info(f"Sanitized {link.original_url} -> {link.rewritten_url} in channel {target.channel_id}")

        # markers go regardless of whether the embed turns out valid
        await strip_markers(ctx, strip_from)

        suppress_original = policy is not None and policy.hide_original_embed
        await ctx.guardian.validate_and_repair(posted, target, link, suppress_original)
        return posted
    finally:
        ctx.in_flight.discard(target.message_id)
