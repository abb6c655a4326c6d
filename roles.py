# roles.py
import logging
from dataclasses import dataclass, field

import discord

from cfapi import normalize_rank

log = logging.getLogger(__name__)


@dataclass
class RoleAssignment:
    verified_role: bool = False
    rank_role: bool = False
    errors: list = field(default_factory=list)


async def assign_verified_role(member: discord.Member, config) -> bool:
    """Give `member` the guild's verified role. A no-op when the role is already held."""
    if config is None or not config.verified_role_id:
        log.info("No verified role configured for guild %s", member.guild.id)
        return False

    role = member.guild.get_role(config.verified_role_id)
    if role is None:
        log.warning("Verified role %s not found in guild %s", config.verified_role_id, member.guild.id)
        return False

    if member.get_role(role.id) is not None:
        log.info("%s already has the verified role", member)
        return True

    await member.add_roles(role, reason="CP Account Verified")
    log.info("Assigned verified role to %s", member)
    return True


async def assign_rank_role(member: discord.Member, config, rank: str | None) -> bool:
    """
    Give `member` the role mapped to `rank`, removing every other configured
    rank role first so that at most one is held.
    """
    rank = normalize_rank(rank)
    if not rank:
        log.info("No rank provided, skipping rank role for %s", member)
        return False
    if config is None or not config.rank_role_map:
        log.info("No rank roles configured for guild %s", member.guild.id)
        return False

    role_id = config.rank_role_map.get(rank)
    if not role_id:
        log.info('No role mapped for rank "%s" in guild %s', rank, member.guild.id)
        return False

    role = member.guild.get_role(role_id)
    if role is None:
        log.warning('Rank role %s for "%s" not found in guild %s', role_id, rank, member.guild.id)
        return False

    rank_role_ids = set(config.rank_role_map.values())
    to_remove = [r for r in member.roles if r.id in rank_role_ids and r.id != role.id]
    if to_remove:
        await member.remove_roles(*to_remove, reason="Updating Codeforces rank role")

    if member.get_role(role.id) is None:
        await member.add_roles(role, reason=f"Codeforces rank: {rank}")
        log.info("Assigned %s role to %s", rank, member)
    return True


async def assign_verification_roles(store, member: discord.Member, guild_id: int, rank: str | None = None) -> RoleAssignment:
    """Assign the verified role and, when a rank is known, the rank role. Each half fails on its own."""
    result = RoleAssignment()
    config = store.get_guild_config(guild_id)

    try:
        result.verified_role = await assign_verified_role(member, config)
    except discord.DiscordException as e:
        log.warning("Failed to assign verified role to %s: %s", member, e)
        result.errors.append(f"Failed to assign verified role: {e}")

    if rank:
        try:
            result.rank_role = await assign_rank_role(member, config, rank)
        except discord.DiscordException as e:
            log.warning("Failed to assign rank role to %s: %s", member, e)
            result.errors.append(f"Failed to assign rank role: {e}")

    return result
