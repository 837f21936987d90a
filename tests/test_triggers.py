import asyncio
from types import SimpleNamespace
from typing import Optional

import discord

from context import AppContext
from guardian import GuardianSettings, ResponseGuardian
from models import (
    DeletePermission,
    EmbedInfo,
    GuildPolicy,
    IncomingMessage,
    PostedMessage,
    ReactionEvent,
    SanitizerMode,
)
from rewriter import AuthorLookup, ParsedLink
from triggers import handle_message, handle_reaction, resolve_target

BOT_ID = 999
GUILD_ID = 1
CHANNEL_ID = 50
MARKER = "🫧"

LINK = "https://x.com/loltyler1/status/1795602572444865533"
FIXED = "[@loltyler1 via Twitter](https://fxtwitter.com/loltyler1/status/1795602572444865533)"


class FakeTransport:
    def __init__(self) -> None:
        self.calls: list = []
        self.messages: dict = {}
        self.embeds = [EmbedInfo(title="loltyler1 on X", has_video=True)]
        self.clear_error: Optional[Exception] = None
        self._next_id = 1000

    def actions(self, name: str) -> list:
        return [call for call in self.calls if call[0] == name]

    def _new_id(self) -> int:
        self._next_id += 1
        return self._next_id

    async def reply(self, channel_id, message_id, content, with_delete_button) -> PostedMessage:
        self.calls.append(("reply", message_id, content, with_delete_button))
        return PostedMessage(channel_id, self._new_id())

    async def add_reaction(self, channel_id, message_id, emoji) -> None:
        self.calls.append(("add_reaction", message_id, emoji))

    async def clear_reaction(self, channel_id, message_id, emoji) -> None:
        if self.clear_error is not None:
            raise self.clear_error
        self.calls.append(("clear_reaction", message_id, emoji))

    async def delete_message(self, channel_id, message_id) -> None:
        self.calls.append(("delete_message", message_id))

    async def set_embeds_suppressed(self, channel_id, message_id, suppressed) -> None:
        self.calls.append(("set_embeds_suppressed", message_id, suppressed))

    async def fetch_embeds(self, channel_id, message_id):
        return list(self.embeds)

    async def fetch_message(self, channel_id, message_id):
        return self.messages.get(message_id)

    async def send_notice(self, channel_id, reply_to_id, title, description) -> PostedMessage:
        self.calls.append(("send_notice", reply_to_id))
        return PostedMessage(channel_id, self._new_id())


class FakeCache:
    def __init__(self, policy: GuildPolicy) -> None:
        self.policy = policy
        self.lookups = 0

    async def get_or_fetch(self, guild_id: int) -> GuildPolicy:
        self.lookups += 1
        return self.policy


class NoLookup(AuthorLookup):
    async def find_author(self, link: ParsedLink):
        return None


def _context(mode: SanitizerMode = SanitizerMode.AUTOMATIC, **policy) -> AppContext:
    transport = FakeTransport()
    return AppContext(
        bot_user_id=BOT_ID,
        marker_emoji=MARKER,
        cache=FakeCache(GuildPolicy(guild_id=GUILD_ID, sanitizer_mode=mode, **policy)),
        transport=transport,
        lookup=NoLookup(),
        guardian=ResponseGuardian(transport, GuardianSettings(poll_interval=0.001, timeout=0.01, notice_lifetime=0)),
    )


def _message(message_id: int = 1, content: str = LINK, **kwargs) -> IncomingMessage:
    fields = dict(
        message_id=message_id,
        channel_id=CHANNEL_ID,
        guild_id=GUILD_ID,
        author_id=10,
        author_is_bot=False,
        content=content,
    )
    fields.update(kwargs)
    return IncomingMessage(**fields)


def _reaction(message_id: int = 1, user_id: int = 20, emoji: str = MARKER, **kwargs) -> ReactionEvent:
    fields = dict(
        message_id=message_id,
        channel_id=CHANNEL_ID,
        guild_id=GUILD_ID,
        user_id=user_id,
        user_is_bot=False,
        emoji=emoji,
    )
    fields.update(kwargs)
    return ReactionEvent(**fields)


def test_automatic_replies_and_suppresses() -> None:
    ctx = _context()
    asyncio.run(handle_message(ctx, _message()))

    assert ctx.transport.calls == [
        ("reply", 1, FIXED, True),
        ("set_embeds_suppressed", 1, True),
    ]
    assert ctx.in_flight == set()


def test_delete_button_and_suppression_follow_policy() -> None:
    ctx = _context(delete_permission=DeletePermission.DISABLED, hide_original_embed=False)
    asyncio.run(handle_message(ctx, _message()))

    assert ctx.transport.calls == [("reply", 1, FIXED, False)]


def test_own_messages_are_ignored_before_policy_lookup() -> None:
    ctx = _context()
    asyncio.run(handle_message(ctx, _message(author_id=BOT_ID, content=FIXED)))

    assert ctx.transport.calls == []
    assert ctx.cache.lookups == 0


def test_messages_without_links_skip_policy_lookup() -> None:
    ctx = _context()
    asyncio.run(handle_message(ctx, _message(content="hello there")))

    assert ctx.transport.calls == []
    assert ctx.cache.lookups == 0


def test_direct_messages_are_processed_without_policy() -> None:
    ctx = _context(SanitizerMode.MANUAL_MENTION)
    asyncio.run(handle_message(ctx, _message(guild_id=None)))

    assert ctx.transport.calls == [("reply", 1, FIXED, False)]
    assert ctx.cache.lookups == 0


def test_manual_mention_ignores_plain_link() -> None:
    ctx = _context(SanitizerMode.MANUAL_MENTION)
    asyncio.run(handle_message(ctx, _message()))

    assert ctx.transport.calls == []


def test_manual_mention_reply_uses_referenced_link() -> None:
    ctx = _context(SanitizerMode.MANUAL_MENTION)
    original = _message(message_id=1)
    reply = _message(message_id=2, content="fix this", is_reply=True, referenced=original)

    asyncio.run(handle_message(ctx, reply))

    assert ctx.transport.actions("reply") == [("reply", 1, FIXED, True)]
    assert ctx.transport.actions("set_embeds_suppressed") == [("set_embeds_suppressed", 1, True)]
    assert ctx.transport.actions("clear_reaction") == []


def test_manual_mention_prefers_own_link() -> None:
    ctx = _context(SanitizerMode.MANUAL_MENTION)
    original = _message(message_id=1, content="https://instagram.com/p/CMeJMFBs66n/")
    reply = _message(message_id=2, mentions_bot=True, is_reply=True, referenced=original)

    asyncio.run(handle_message(ctx, reply))

    assert ctx.transport.actions("reply") == [("reply", 2, FIXED, True)]


def test_manual_mention_without_any_link_does_nothing() -> None:
    ctx = _context(SanitizerMode.MANUAL_MENTION)
    original = _message(message_id=1, content="just chatting")
    reply = _message(message_id=2, content="<@999> what", mentions_bot=True, is_reply=True, referenced=original)

    asyncio.run(handle_message(ctx, reply))

    assert ctx.transport.calls == []


def test_manual_emote_marks_then_reaction_processes() -> None:
    ctx = _context(SanitizerMode.MANUAL_EMOTE)
    message = _message()
    ctx.transport.messages[1] = message

    asyncio.run(handle_message(ctx, message))
    assert ctx.transport.calls == [("add_reaction", 1, MARKER)]

    asyncio.run(handle_reaction(ctx, _reaction()))
    assert ctx.transport.calls[1:] == [
        ("reply", 1, FIXED, True),
        ("clear_reaction", 1, MARKER),
        ("set_embeds_suppressed", 1, True),
    ]


def test_manual_emote_does_not_mark_unrewritable_link() -> None:
    ctx = _context(SanitizerMode.MANUAL_EMOTE)
    asyncio.run(handle_message(ctx, _message(content="https://x.com/loltyler1")))

    assert ctx.transport.calls == []


def test_ignored_reactions() -> None:
    ctx = _context(SanitizerMode.MANUAL_EMOTE)
    ctx.transport.messages[1] = _message()
    ctx.transport.messages[3] = _message(message_id=3, author_id=BOT_ID, content=FIXED)

    async def scenario():
        await handle_reaction(ctx, _reaction(user_id=BOT_ID))
        await handle_reaction(ctx, _reaction(user_is_bot=True))
        await handle_reaction(ctx, _reaction(guild_id=None))
        await handle_reaction(ctx, _reaction(emoji="👍"))
        await handle_reaction(ctx, _reaction(message_id=2))
        await handle_reaction(ctx, _reaction(message_id=3))

    asyncio.run(scenario())
    assert ctx.transport.calls == []


def test_reactions_ignored_outside_marker_modes() -> None:
    for mode in (SanitizerMode.AUTOMATIC, SanitizerMode.MANUAL_MENTION):
        ctx = _context(mode)
        ctx.transport.messages[1] = _message()
        asyncio.run(handle_reaction(ctx, _reaction()))
        assert ctx.transport.calls == []


def test_manual_both_marks_plain_link() -> None:
    ctx = _context(SanitizerMode.MANUAL_BOTH)
    asyncio.run(handle_message(ctx, _message()))

    assert ctx.transport.calls == [("add_reaction", 1, MARKER)]


def test_manual_both_mention_strips_both_markers() -> None:
    ctx = _context(SanitizerMode.MANUAL_BOTH)
    original = _message(message_id=1)
    reply = _message(message_id=2, content="<@999>", mentions_bot=True, is_reply=True, referenced=original)

    asyncio.run(handle_message(ctx, reply))

    assert ctx.transport.calls == [
        ("reply", 1, FIXED, True),
        ("clear_reaction", 2, MARKER),
        ("clear_reaction", 1, MARKER),
        ("set_embeds_suppressed", 1, True),
    ]


def test_missing_marker_message_is_not_fatal() -> None:
    ctx = _context(SanitizerMode.MANUAL_EMOTE)
    ctx.transport.messages[1] = _message()
    ctx.transport.clear_error = discord.NotFound(SimpleNamespace(status=404, reason="Not Found"), "Unknown Message")

    asyncio.run(handle_reaction(ctx, _reaction()))

    assert ctx.transport.actions("reply") == [("reply", 1, FIXED, True)]
    assert ctx.transport.actions("set_embeds_suppressed") == [("set_embeds_suppressed", 1, True)]


def test_failed_embed_removes_reply_but_still_strips_marker() -> None:
    ctx = _context(SanitizerMode.MANUAL_EMOTE)
    ctx.transport.messages[1] = _message()
    ctx.transport.embeds = []

    asyncio.run(handle_reaction(ctx, _reaction()))

    assert ctx.transport.calls == [
        ("reply", 1, FIXED, True),
        ("clear_reaction", 1, MARKER),
        ("delete_message", 1001),
        ("send_notice", 1),
        ("delete_message", 1002),
    ]


def test_resolve_target() -> None:
    original = _message(message_id=1)
    assert resolve_target(_message(message_id=2, content="hi", is_reply=True, referenced=original)) is original
    assert resolve_target(_message(message_id=2, content="hi", is_reply=False, referenced=original)) is None
    assert resolve_target(_message(message_id=2, content="hi", is_reply=True)) is None
