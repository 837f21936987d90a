"""Outbound actions the sanitizer needs from the chat platform.

Keeps discord.py out of the trigger and guardian logic so both can be driven
by fakes in tests.
"""

from typing import List, Optional, Protocol

from models import EmbedInfo, IncomingMessage, PostedMessage


class Transport(Protocol):
    async def reply(
        self,
        channel_id: int,
        message_id: int,
        content: str,
        with_delete_button: bool,
    ) -> PostedMessage:
        ...

    async def add_reaction(self, channel_id: int, message_id: int, emoji: str) -> None:
        ...

    async def clear_reaction(self, channel_id: int, message_id: int, emoji: str) -> None:
        ...

    async def delete_message(self, channel_id: int, message_id: int) -> None:
        ...

    async def set_embeds_suppressed(self, channel_id: int, message_id: int, suppressed: bool) -> None:
        ...

    async def fetch_embeds(self, channel_id: int, message_id: int) -> Optional[List[EmbedInfo]]:
        """Embeds currently on the message, or None if it no longer exists."""
        ...

    async def fetch_message(self, channel_id: int, message_id: int) -> Optional[IncomingMessage]:
        ...

    async def send_notice(self, channel_id: int, reply_to_id: int, title: str, description: str) -> PostedMessage:
        ...
