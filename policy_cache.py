import threading
from collections import OrderedDict
from contextlib import contextmanager
from typing import Dict

from logs import log_debug, log_error, log_warning
from models import GuildPolicy
from storage import PolicyStore, PolicyStoreError

DEFAULT_CAPACITY = 1000


class _OrderGuard:
    """Mutex for the LRU order that remembers when a holder raised mid-update."""

    def __init__(self):
        self._lock = threading.Lock()
        self.poisoned = False

    def __enter__(self):
        self._lock.acquire()
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is not None:
            self.poisoned = True
        self._lock.release()
        return False


class GuildPolicyCache:
    """
    Read-through / write-through LRU cache of guild policies.

    The lookup map and the LRU order always hold the same keys. Reads from
    the map need no lock; every change to either structure happens under the
    order guard.
    """

    def __init__(self, store: PolicyStore, capacity: int = DEFAULT_CAPACITY):
        if capacity <= 0:
            raise ValueError("Capacity must be > 0")
        self.store = store
        self.capacity = capacity
        self._cache: Dict[int, GuildPolicy] = {}
        self._lru: "OrderedDict[int, None]" = OrderedDict()
        self._guard = _OrderGuard()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def __len__(self) -> int:
        return len(self._cache)

    def __contains__(self, guild_id: int) -> bool:
        return guild_id in self._cache

    def lru_order(self) -> list:
        """Guild ids from least to most recently used."""
        with self._locked(None) as lru:
            return list(lru)

    def stats(self) -> dict:
        return {
            "size": len(self._cache),
            "capacity": self.capacity,
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
        }

    async def get_or_fetch(self, guild_id: int) -> GuildPolicy:
        policy = self._cache.get(guild_id)
        if policy is not None:
            self.hits += 1
            self._promote(guild_id)
            log_debug(f"Found config for guild {guild_id} in cache")
            return policy

        self.misses += 1
        log_debug(f"Could not find guild {guild_id} in cache, retrieving from database.")
        try:
            policy = await self.store.fetch(guild_id)
        except PolicyStoreError as e:
            # not cached, so the next event retries the store
            log_warning(f"Database unavailable, using default config for guild {guild_id}: {e}")
            return GuildPolicy.default(guild_id)

        return self._try_insert(guild_id, policy)

    async def update(self, policy: GuildPolicy):
        """
        Persists the policy, then replaces the cached entry. The cache is
        updated even when the write fails; the failure is re-raised so the
        caller can tell the user the change may not survive a restart.
        """
        write_error = None
        try:
            await self.store.write(policy)
        except PolicyStoreError as e:
            log_error(f"Failed to persist config for guild {policy.guild_id}: {e}")
            write_error = e

        self._insert(policy.guild_id, policy)

        if write_error is not None:
            raise write_error

    async def ensure_guild(self, guild_id: int):
        try:
            await self.store.create(guild_id)
        except PolicyStoreError as e:
            log_warning(f"Could not create config row for guild {guild_id}: {e}")

    @contextmanager
    def _locked(self, guild_id):
        with self._guard:
            if self._guard.poisoned:
                self._recover(guild_id)
            yield self._lru

    def _recover(self, guild_id):
        """
        Resets the LRU order and reseeds it with the key being touched.

        Map entries the new order does not track are dropped as well. Keeping
        them would leave guilds that can never be evicted, so the map would
        grow past capacity; dropping them only costs one store read per guild
        on its next event.
        """
        log_error("LRU lock poisoned, attempting recovery...")

        self._lru.clear()
        if guild_id is not None and guild_id in self._cache:
            self._lru[guild_id] = None

        for stale_id in [key for key in self._cache if key not in self._lru]:
            del self._cache[stale_id]

        self._guard.poisoned = False
        log_warning("LRU cache cleared and reset. Cache state restored.")

    def _promote(self, guild_id: int):
        with self._locked(guild_id) as lru:
            if guild_id in lru:
                lru.move_to_end(guild_id)

    def _try_insert(self, guild_id: int, policy: GuildPolicy) -> GuildPolicy:
        # a concurrent miss may have filled the entry while we were reading
        existing = self._cache.get(guild_id)
        if existing is not None:
            self._promote(guild_id)
            return existing

        self._insert(guild_id, policy)
        return policy

    def _insert(self, guild_id: int, policy: GuildPolicy):
        with self._locked(guild_id) as lru:
            lru[guild_id] = None
            lru.move_to_end(guild_id)
            self._cache[guild_id] = policy

            while len(lru) > self.capacity:
                evicted_id, _ = lru.popitem(last=False)
                self._cache.pop(evicted_id, None)
                self.evictions += 1
                log_debug(f"Evicted guild_id {evicted_id} from config cache")
