import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

import discord

from logs import log_debug, log_info, log_warning
from models import EmbedInfo, IncomingMessage, PostedMessage
from platforms import Platform
from ports import Transport
from rewriter import ParsedLink

# embed titles the proxies serve when the post does not exist
NOT_FOUND_TITLES = {
    Platform.TWITTER: {"FxTwitter / FixupX"},
    Platform.INSTAGRAM: {"InstaFix", "Login • Instagram"},
}

ERROR_TITLE = "Sorry   ꒰ ꒡⌓꒡꒱"
ERROR_DESCRIPTION = "Something went wrong."

EmbedFetcher = Callable[[], Awaitable[Optional[List[EmbedInfo]]]]


@dataclass(frozen=True)
class GuardianSettings:
    poll_interval: float = 0.5
    timeout: float = 8.0
    notice_lifetime: float = 10.0


def is_valid_response(platform: Platform, embeds: List[EmbedInfo]) -> bool:
    if not embeds:
        return False
    if any(embed.has_video for embed in embeds):
        return True
    return embeds[0].title not in NOT_FOUND_TITLES.get(platform, set())


class ResponseGuardian:
    def __init__(self, transport: Transport, settings: GuardianSettings = GuardianSettings()):
        self.transport = transport
        self.settings = settings

    async def wait_for_embeds(
        self, bot_message: PostedMessage, fetch: Optional[EmbedFetcher] = None
    ) -> Optional[List[EmbedInfo]]:
        """
        Polls until the message has embeds or the timeout passes. Returns None
        as soon as the message is gone. `fetch` replaces the channel lookup for
        messages only reachable through an interaction webhook.
        """
        if fetch is None:
            fetch = lambda: self.transport.fetch_embeds(bot_message.channel_id, bot_message.message_id)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.timeout

        while True:
            embeds = await fetch()
            if embeds is None or embeds:
                return embeds
            if loop.time() >= deadline:
                return []
            await asyncio.sleep(self.settings.poll_interval)

    async def await_verdict(
        self, bot_message: PostedMessage, link: ParsedLink, fetch: Optional[EmbedFetcher] = None
    ) -> Optional[bool]:
        """True or False for the embed, None if the response was deleted meanwhile."""
        embeds = await self.wait_for_embeds(bot_message, fetch)
        if embeds is None:
            log_info(f"Response {bot_message.message_id} was removed before its embed loaded.")
            return None
        valid = is_valid_response(link.platform, embeds)
        log_debug(f"Embed check for {link.rewritten_url}: {'valid' if valid else 'invalid'} ({len(embeds)} embeds)")
        return valid

    async def validate_and_repair(
        self,
        bot_message: PostedMessage,
        user_message: IncomingMessage,
        link: ParsedLink,
        suppress_original: bool,
    ) -> bool:
        verdict = await self.await_verdict(bot_message, link)
        if verdict is None:
            # someone already deleted the response, nothing to repair
            return False

        if verdict:
            if suppress_original:
                try:
                    await self.transport.set_embeds_suppressed(user_message.channel_id, user_message.message_id, True)
                except discord.Forbidden:
                    log_warning(f"Missing permission to suppress embeds in channel {user_message.channel_id}")
            return True

        log_info(f"[UNFURL FAILED] {link.rewritten_url} did not embed, removing response")
        try:
            await self.transport.delete_message(bot_message.channel_id, bot_message.message_id)
        except discord.NotFound:
            log_info(f"Response {bot_message.message_id} was already removed.")

        notice = await self.transport.send_notice(
            user_message.channel_id, user_message.message_id, ERROR_TITLE, ERROR_DESCRIPTION
        )
        await asyncio.sleep(self.settings.notice_lifetime)
        try:
            await self.transport.delete_message(notice.channel_id, notice.message_id)
        except discord.NotFound:
            log_info(f"Error notice {notice.message_id} was already removed.")
        return False
