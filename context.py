from dataclasses import dataclass, field
from typing import Set

from guardian import ResponseGuardian
from policy_cache import GuildPolicyCache
from ports import Transport
from rewriter import AuthorLookup


@dataclass
class AppContext:
    """Everything an event handler needs, built once in setup_hook."""

    bot_user_id: int
    marker_emoji: str
    cache: GuildPolicyCache
    transport: Transport
    lookup: AuthorLookup
    guardian: ResponseGuardian
    # message ids currently being sanitized, so double reactions reply once
    in_flight: Set[int] = field(default_factory=set)
