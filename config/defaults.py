from __future__ import annotations

DEFAULT_COMMAND_PREFIX = "!"

# Poll cadence bounds (seconds)
DEFAULT_CHECK_INTERVAL_SECONDS = 60
MIN_CHECK_INTERVAL_SECONDS = 10
MAX_CHECK_INTERVAL_SECONDS = 3600

# Match rules
DEFAULT_KEYWORD_REGEX = r"nox\s*rp"
DEFAULT_SERVER_TITLE_PATTERN = r".*"
DEFAULT_TWITCH_GAME_ID = "32982"
DEFAULT_KICK_CATEGORY_NAME = "Grand Theft Auto V"

# Upstream batch sizes
TWITCH_BATCH_SIZE = 100
KICK_BATCH_SIZE = 50
SERVER_BATCH_SIZE = 10

DEFAULT_SERVER_TIMEOUT_MS = 5000
KICK_CATEGORY_CACHE_MS = 24 * 60 * 60 * 1000

# Persist at least this often even when nothing changed
SAFETY_SAVE_INTERVAL_MS = 5 * 60_000

HTTP_USER_AGENT = "livewatch-discord-bot/1.0"
