# config.py
import os
from dotenv import load_dotenv

load_dotenv()


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except ValueError:
        return default


BOT_TOKEN = os.getenv("DISCORD_TOKEN")
COMMAND_PREFIX = os.getenv("COMMAND_PREFIX", "!")

# minutes a verification session stays open
VERIFICATION_TIMEOUT = _int_env("VERIFICATION_TIMEOUT", 10)
# minutes between role sync runs
ROLE_SYNC_INTERVAL = _int_env("ROLE_SYNC_INTERVAL", 60)
# minutes between expired-session sweeps
CLEANUP_INTERVAL = _int_env("CLEANUP_INTERVAL", 5)

DATA_FILE = os.getenv("DATA_FILE", "verification_data.json")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
