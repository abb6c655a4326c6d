import logging

import discord
from discord.ext import commands

from config import BOT_TOKEN, COMMAND_PREFIX, DATA_FILE, LOG_LEVEL
import cflink
import rolesync
from cfapi import CodeforcesClient
from problems import ChallengeIssuer, ProblemPool
from store import Store
from verification import LinkService

log = logging.getLogger("bot")

intents = discord.Intents.default()
intents.message_content = True
intents.members = True

bot = commands.Bot(command_prefix=COMMAND_PREFIX, intents=intents)

# One client, so every Codeforces request shares the same rate gate
cf_client = CodeforcesClient()
store = Store(DATA_FILE)
link_service = LinkService(cf_client, store, ChallengeIssuer(ProblemPool(cf_client)))


@bot.event
async def on_ready():
    log.info("✅ Bot is online as %s (serving %d guild(s))", bot.user, len(bot.guilds))


# Register all modular command sets and jobs
cflink.setup(bot, link_service, store)
rolesync.setup(bot, rolesync.RoleSync(bot, cf_client, store))


def main():
    discord.utils.setup_logging(level=getattr(logging, LOG_LEVEL, logging.INFO), root=True)
    if not BOT_TOKEN:
        log.error("Missing required environment variable: DISCORD_TOKEN")
        raise SystemExit(1)
    bot.run(BOT_TOKEN, log_handler=None)


if __name__ == "__main__":
    main()
