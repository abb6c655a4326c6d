# rolesync.py
import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field

import discord
from discord.ext import commands, tasks

from cfapi import normalize_rank
from config import ROLE_SYNC_INTERVAL
from roles import assign_rank_role

log = logging.getLogger(__name__)

# extra spacing between rank lookups during a batch, in seconds
API_DELAY = 0.5


@dataclass
class SyncResults:
    processed: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list = field(default_factory=list)


class RoleSync:
    """
    Re-reads the Codeforces rank of every linked account and moves the
    member's rank role when it changed. Only guilds with a rank role map
    are touched, and linked accounts are never removed.
    """

    def __init__(self, bot, client, store, delay: float = API_DELAY, sleep=asyncio.sleep):
        self.bot = bot
        self.client = client
        self.store = store
        self.delay = delay
        self._sleep = sleep
        self._running = False

    async def run(self) -> SyncResults | None:
        """Entry point for the timer. Returns None when a previous run is still going."""
        if self._running:
            log.warning("[RoleSync] Previous sync still running, skipping this tick.")
            return None
        self._running = True
        try:
            return await self.sync_all()
        finally:
            self._running = False

    async def sync_all(self) -> SyncResults:
        results = SyncResults()
        log.info("[RoleSync] Starting role sync job...")

        accounts = self.store.get_all_linked_accounts()
        if not accounts:
            log.info("[RoleSync] No linked accounts found.")
            return results
        log.info("[RoleSync] Found %d linked accounts to process.", len(accounts))

        by_guild = defaultdict(list)
        for account in accounts:
            by_guild[account.guild_id].append(account)

        for guild_id, guild_accounts in by_guild.items():
            config = self.store.get_guild_config(guild_id)
            if config is None or not config.rank_role_map:
                log.info("[RoleSync] Guild %s has no rank roles configured, skipping.", guild_id)
                results.skipped += len(guild_accounts)
                continue

            guild = self.bot.get_guild(guild_id)
            if guild is None:
                log.info("[RoleSync] Guild %s not found in cache, skipping.", guild_id)
                results.skipped += len(guild_accounts)
                continue

            for account in guild_accounts:
                results.processed += 1
                try:
                    if await self.sync_account(guild, config, account):
                        results.updated += 1
                except Exception as e:
                    msg = f"Failed to sync {account.username} in guild {guild_id}: {e}"
                    log.error("[RoleSync] %s", msg)
                    results.errors.append(msg)

        log.info(
            "[RoleSync] Sync complete. Processed: %d, Updated: %d, Skipped: %d, Errors: %d",
            results.processed, results.updated, results.skipped, len(results.errors),
        )
        return results

    async def sync_account(self, guild: discord.Guild, config, account) -> bool:
        """Returns True when the member's rank role was changed."""
        await self._sleep(self.delay)

        info = await self.client.fetch_user_info(account.username)
        current = normalize_rank(info.rank)
        stored = normalize_rank(account.rank)
        if not current or current == stored:
            return False

        log.info("[RoleSync] User %s rank changed: %s -> %s", account.username, stored or "none", current)
        self.store.update_linked_account_rank(account.id, current)

        try:
            member = await guild.fetch_member(account.discord_user_id)
        except discord.NotFound:
            log.info("[RoleSync] User %s not found in guild %s", account.discord_user_id, guild.id)
            return False

        assigned = await assign_rank_role(member, config, current)
        if assigned:
            log.info("[RoleSync] Updated role for %s to %s", member, current)
        return assigned


def setup(bot: commands.Bot, role_sync: RoleSync):

    @tasks.loop(minutes=ROLE_SYNC_INTERVAL)
    async def role_sync_loop():
        try:
            await role_sync.run()
        except Exception:
            log.exception("[RoleSync] Error in scheduled sync")

    async def start_role_sync():
        if not role_sync_loop.is_running():
            role_sync_loop.start()
            log.info("[RoleSync] Role sync job scheduled to run every %d minutes.", ROLE_SYNC_INTERVAL)

    bot.add_listener(start_role_sync, "on_ready")
