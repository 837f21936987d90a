import asyncio
import os
import sqlite3
import threading
from typing import Optional

from logs import log_debug, log_error, log_warning
from models import GuildPolicy


class PolicyStoreError(Exception):
    pass


class PolicyStore:
    """
    sqlite-backed store for per-guild policy rows, with an optional replica
    file kept in sync through the online backup API.
    """

    def __init__(self, db_path: str, replica_path: str = ""):
        self.path = db_path
        self.replica_path = replica_path
        self.lock = threading.RLock()
        self._sync_tasks: set = set()
        try:
            self.conn = sqlite3.connect(self.path, check_same_thread=False)
            self.conn.execute("PRAGMA busy_timeout = 5000;")
            self._init_schema()
        except sqlite3.Error as e:
            raise PolicyStoreError(f"Failed to open database {self.path}: {e}") from e

    def _init_schema(self):
        with self.lock:
            self.conn.execute(
                """
            CREATE TABLE IF NOT EXISTS server_configs (
                guild_id INTEGER PRIMARY KEY,
                sanitizer_mode INTEGER NOT NULL DEFAULT 0,
                delete_permission INTEGER NOT NULL DEFAULT 0,
                hide_original_embed BOOLEAN NOT NULL DEFAULT true
            );
            """
            )
            self.conn.commit()
        log_debug("Database schema set.")

    def close(self):
        with self.lock:
            self.conn.close()

    # ---- synchronous operations, run in worker threads ----

    def get(self, guild_id: int) -> Optional[GuildPolicy]:
        try:
            with self.lock:
                row = self.conn.execute(
                    """
                SELECT guild_id, sanitizer_mode, delete_permission, hide_original_embed
                FROM server_configs
                WHERE guild_id = ?
                """,
                    (guild_id,),
                ).fetchone()
        except sqlite3.Error as e:
            raise PolicyStoreError(f"Failed to read config for guild {guild_id}: {e}") from e
        return GuildPolicy.from_row(row) if row else None

    def get_or_default(self, guild_id: int) -> GuildPolicy:
        policy = self.get(guild_id)
        if policy is None:
            log_debug(f"No config found for guild {guild_id}, using defaults")
            return GuildPolicy.default(guild_id)
        return policy

    def save(self, policy: GuildPolicy):
        try:
            with self.lock:
                self.conn.execute(
                    """
                INSERT OR REPLACE INTO server_configs
                (guild_id, sanitizer_mode, delete_permission, hide_original_embed)
                VALUES (?, ?, ?, ?)
                """,
                    policy.to_row(),
                )
                self.conn.commit()
        except sqlite3.Error as e:
            raise PolicyStoreError(f"Failed to save config for guild {policy.guild_id}: {e}") from e
        log_debug(f"Saved config for guild {policy.guild_id}: {policy}")

    def ensure_row(self, guild_id: int):
        try:
            with self.lock:
                self.conn.execute(
                    "INSERT OR IGNORE INTO server_configs (guild_id) VALUES (?)",
                    (guild_id,),
                )
                self.conn.commit()
        except sqlite3.Error as e:
            raise PolicyStoreError(f"Failed to create config for guild {guild_id}: {e}") from e

    def sync_replica(self) -> bool:
        """Copies the database to the replica. Returns False in local mode."""
        if not self.replica_path:
            log_debug("Skipping sync - running in local mode")
            return False

        tmp = self.replica_path + ".tmp"
        try:
            with self.lock:
                replica = sqlite3.connect(tmp)
                try:
                    self.conn.backup(replica)
                finally:
                    replica.close()
                # one temp file is shared, so backup and swap go under the same lock
                os.replace(tmp, self.replica_path)
        except (sqlite3.Error, OSError) as e:
            raise PolicyStoreError(f"Failed to sync database with replica: {e}") from e
        log_debug("Database sync completed")
        return True

    # ---- async wrappers ----

    async def fetch(self, guild_id: int) -> GuildPolicy:
        return await asyncio.to_thread(self.get_or_default, guild_id)

    async def write(self, policy: GuildPolicy):
        await asyncio.to_thread(self.save, policy)
        self.schedule_sync()

    async def create(self, guild_id: int):
        await asyncio.to_thread(self.ensure_row, guild_id)
        self.schedule_sync()

    async def _background_sync(self):
        try:
            await asyncio.to_thread(self.sync_replica)
        except PolicyStoreError as e:
            log_warning(f"Failed to sync database after write: {e}")

    def schedule_sync(self):
        if not self.replica_path:
            return
        task = asyncio.get_running_loop().create_task(self._background_sync())
        # keep a reference until done so the task is not collected mid-flight
        self._sync_tasks.add(task)
        task.add_done_callback(self._sync_tasks.discard)

    async def initial_sync(self, attempts: int = 3, delay: float = 0.25) -> bool:
        last_err = None
        for attempt in range(1, attempts + 1):
            try:
                synced = await asyncio.to_thread(self.sync_replica)
                if synced:
                    log_debug(f"Initial database sync completed successfully (attempt {attempt})")
                return synced
            except PolicyStoreError as e:
                last_err = e
                if attempt == attempts:
                    break
                log_debug(f"Initial database sync failed (attempt {attempt}), retrying after {delay}s")
                await asyncio.sleep(delay)
                delay *= 2

        log_error(f"Failed initial database sync after retries: {last_err}")
        return False

    async def wait_for_sync(self):
        if self._sync_tasks:
            await asyncio.gather(*self._sync_tasks, return_exceptions=True)
