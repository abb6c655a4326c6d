# cflink.py
import logging

import discord
from discord.ext import commands, tasks

from cfapi import RANKS
from config import CLEANUP_INTERVAL, COMMAND_PREFIX
from errors import (
    AccountConflictError,
    CodeforcesError,
    InvalidRankError,
    NotFoundError,
    PoolUnavailableError,
)
from session import utcnow
from verification import Expired

log = logging.getLogger(__name__)


def _error_embed(msg: str) -> discord.Embed:
    return discord.Embed(description=f"❌ {msg}", color=discord.Color.red())


def link_embed(start) -> discord.Embed:
    session, user, challenge = start.session, start.user, start.challenge
    time_left = session.time_left(session.started_at)
    embed = discord.Embed(
        title="🔗 Codeforces Verification",
        description=(
            f"To verify you own the Codeforces account **{user.handle}**, "
            "submit a **Compilation Error** to the problem below."
        ),
        color=discord.Color.blue(),
    )
    embed.add_field(name="📝 Problem", value=f"[{challenge.name}]({challenge.url})", inline=True)
    embed.add_field(name="⭐ Difficulty", value=str(challenge.rating), inline=True)
    embed.add_field(name="⏱️ Time Limit", value=time_left, inline=True)
    embed.add_field(name="📊 Your Current Stats", value=f"**Rank:** {user.rank}\n**Rating:** {user.rating}", inline=False)
    embed.add_field(
        name="📋 Instructions",
        value=(
            f"1. Open the problem: [Click Here]({challenge.url})\n"
            "2. Submit any code that fails to compile (e.g. `int main( { }`)\n"
            f"3. Run `{COMMAND_PREFIX}verify` to complete verification"
        ),
        inline=False,
    )
    embed.set_footer(text=f"Verification expires in {time_left}")
    embed.timestamp = session.expires_at
    return embed


def verify_embeds(reports, now) -> list[discord.Embed]:
    embeds = []
    successes = [r for r in reports if r.success]
    failures = [r for r in reports if not r.success]

    if successes:
        embed = discord.Embed(
            title="✅ Verification Successful!",
            description="The following accounts have been verified:",
            color=discord.Color.green(),
        )
        for r in successes:
            value = "Account verified!"
            if r.account.rank:
                value += f"\n**Rank:** {r.account.rank}"
            if r.roles and r.roles.verified_role:
                value += "\n✓ Verified role assigned"
            if r.roles and r.roles.rank_role:
                value += "\n✓ Rank role assigned"
            embed.add_field(name=f"🟦 Codeforces: {r.session.username}", value=value, inline=False)
        embeds.append(embed)

    if failures:
        embed = discord.Embed(
            title="⚠️ Verification Incomplete",
            description="The following verifications could not be completed:",
            color=discord.Color.orange(),
        )
        retry_possible = False
        for r in failures:
            value = r.error or r.outcome.message
            if r.retryable and not isinstance(r.outcome, Expired) and not r.session.is_expired(now):
                value += f"\n\n**Problem:** [{r.session.problem_name or 'Click here'}]({r.session.problem_url})"
                value += f"\n**Time remaining:** {r.session.time_left(now)}"
                retry_possible = True
            embed.add_field(name=f"🟦 Codeforces: {r.session.username}", value=value, inline=False)
        if retry_possible:
            embed.set_footer(text=f"💡 Submit a Compilation Error to the problem, then run {COMMAND_PREFIX}verify again")
        embeds.append(embed)

    return embeds


def setup(bot: commands.Bot, link_service, store):

    @bot.command()
    @commands.guild_only()
    async def link(ctx, handle: str):
        """Start verifying ownership of a Codeforces handle"""
        try:
            start = await link_service.start(ctx.author.id, ctx.guild.id, handle)
        except NotFoundError:
            await ctx.send(embed=_error_embed(f"Codeforces user **{handle}** not found.\nPlease check the handle and try again."))
            return
        except (AccountConflictError, PoolUnavailableError, CodeforcesError) as e:
            await ctx.send(embed=_error_embed(str(e)))
            return
        await ctx.send(embed=link_embed(start))

    @bot.command()
    @commands.guild_only()
    async def verify(ctx):
        """Check your pending verifications"""
        now = utcnow()
        reports = await link_service.complete(ctx.author, ctx.author.id, ctx.guild.id, now=now)
        if not reports:
            await ctx.send(embed=discord.Embed(
                description=(
                    "You have no pending verifications.\n\n"
                    f"Use `{COMMAND_PREFIX}link <handle>` to start the verification process."
                ),
                color=discord.Color.orange(),
            ))
            return
        await ctx.send(embeds=verify_embeds(reports, now))

    @bot.command()
    @commands.guild_only()
    async def accounts(ctx, member: discord.Member = None):
        """List linked Codeforces accounts"""
        member = member or ctx.author
        linked = store.get_linked_accounts(member.id, ctx.guild.id)
        if not linked:
            await ctx.send(embed=discord.Embed(description=f"⚠️ {member.display_name} has no linked accounts.", color=discord.Color.orange()))
            return
        embed = discord.Embed(title=f"🔗 Linked accounts of {member.display_name}", color=discord.Color.blue())
        for account in linked:
            embed.add_field(name=account.username, value=f"**Rank:** {account.rank or 'unknown'}", inline=False)
        await ctx.send(embed=embed)

    @bot.group(name="setup", invoke_without_command=True)
    @commands.guild_only()
    @commands.has_permissions(manage_guild=True)
    async def setup_cmd(ctx):
        """Admin only: configure verification roles"""
        await ctx.send(embed=discord.Embed(
            description=(
                f"`{COMMAND_PREFIX}setup verifiedrole @role` — role given to verified users\n"
                f"`{COMMAND_PREFIX}setup rankrole @role <rank>` — map a Codeforces rank to a role\n"
                f"`{COMMAND_PREFIX}setup view` — show the current configuration"
            ),
            color=discord.Color.blue(),
        ))

    @setup_cmd.command(name="verifiedrole")
    @commands.guild_only()
    @commands.has_permissions(manage_guild=True)
    async def setup_verified_role(ctx, role: discord.Role):
        store.set_verified_role(ctx.guild.id, role.id)
        await ctx.send(embed=discord.Embed(description=f"✅ Verified users will now receive {role.mention}.", color=discord.Color.green()))

    @setup_cmd.command(name="rankrole")
    @commands.guild_only()
    @commands.has_permissions(manage_guild=True)
    async def setup_rank_role(ctx, role: discord.Role, *, rank: str):
        try:
            store.set_rank_role(ctx.guild.id, rank, role.id)
        except InvalidRankError as e:
            await ctx.send(embed=_error_embed(f"{e}\nValid ranks: {', '.join(RANKS)}"))
            return
        await ctx.send(embed=discord.Embed(description=f"✅ Codeforces rank **{rank.strip().lower()}** now maps to {role.mention}.", color=discord.Color.green()))

    @setup_cmd.command(name="view")
    @commands.guild_only()
    @commands.has_permissions(manage_guild=True)
    async def setup_view(ctx):
        config = store.get_guild_config(ctx.guild.id)
        embed = discord.Embed(title="⚙️ Verification Settings", color=discord.Color.blue())
        verified = f"<@&{config.verified_role_id}>" if config and config.verified_role_id else "Not set"
        embed.add_field(name="Verified role", value=verified, inline=False)
        rank_map = config.rank_role_map if config else {}
        lines = [f"**{rank}**: <@&{rank_map[rank]}>" for rank in RANKS if rank in rank_map]
        embed.add_field(name="Rank roles", value="\n".join(lines) or "None configured", inline=False)
        await ctx.send(embed=embed)

    # subcommands of an invoke_without_command group do not run the group's checks
    async def setup_error(ctx, error):
        if isinstance(error, commands.MissingPermissions):
            await ctx.send(embed=_error_embed("You need Manage Server permission to use this command."))
        elif isinstance(error, commands.NoPrivateMessage):
            await ctx.send(embed=_error_embed("This command can only be used in a server."))
        else:
            raise error

    for cmd in (setup_cmd, setup_verified_role, setup_rank_role, setup_view):
        cmd.error(setup_error)

    @tasks.loop(minutes=CLEANUP_INTERVAL)
    async def cleanup_expired():
        deleted = store.cleanup_expired_verifications(utcnow())
        if deleted:
            log.info("Cleaned up %d expired verification(s)", deleted)

    async def start_cleanup():
        if not cleanup_expired.is_running():
            cleanup_expired.start()
            log.info("Verification cleanup job started (every %d minutes)", CLEANUP_INTERVAL)

    bot.add_listener(start_cleanup, "on_ready")
