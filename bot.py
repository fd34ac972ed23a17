import os
import re
import sqlite3
import asyncio
import discord
from discord.ext import commands
from config.defaults import DEFAULT_COMMAND_PREFIX
from db.migrate import apply_sqlite_migrations
from misc.notify_effector import DiscordMessageEffector
from misc.notify_effector import render_live_message
from misc.runtime_wiring import wire_bot_runtime
from presence.health import HealthTracker
from presence.models import SourceKind
from presence.reconciler import PresenceReconciler
from presence.scheduler import PresenceScheduler
from presence.settings import apply_env_defaults
from presence.state_document import apply_seed
from presence.store import JsonFileStateStore
from presence.store import SqliteStateStore
from presence.store import load_seed_file
from upstream.fivem import ServerStatusProvider
from upstream.kick import KickClient
from upstream.kick import KickProvider
from upstream.twitch import TwitchClient
from upstream.twitch import TwitchProvider

# =========================
# ENV
# =========================
DISCORD_TOKEN = os.getenv("DISCORD_TOKEN")

if not DISCORD_TOKEN:
    raise RuntimeError("Missing DISCORD_TOKEN env var")


def parse_id_set(raw: str | None) -> set[int]:
    if not raw:
        return set()
    out: set[int] = set()
    for tok in re.split(r"[\s,;]+", raw.strip()):
        if tok and re.fullmatch(r"\d{8,22}", tok):
            out.add(int(tok))
    return out


COMMAND_PREFIX = os.getenv("LIVEWATCH_PREFIX", DEFAULT_COMMAND_PREFIX).strip() or DEFAULT_COMMAND_PREFIX
ALLOWED_ROLE_IDS = parse_id_set(os.getenv("LIVEWATCH_ALLOWED_ROLE_IDS"))

TWITCH_CLIENT_ID = os.getenv("TWITCH_CLIENT_ID")
TWITCH_CLIENT_SECRET = os.getenv("TWITCH_CLIENT_SECRET")
KICK_CLIENT_ID = os.getenv("KICK_CLIENT_ID")
KICK_CLIENT_SECRET = os.getenv("KICK_CLIENT_SECRET")

print(
    f"[CFG] prefix={COMMAND_PREFIX!r} allowed_roles={len(ALLOWED_ROLE_IDS)} "
    f"twitch={'on' if TWITCH_CLIENT_ID and TWITCH_CLIENT_SECRET else 'off'} "
    f"kick={'on' if KICK_CLIENT_ID and KICK_CLIENT_SECRET else 'off'}"
)

# =========================
# STATE STORAGE
# =========================
# Persistent path (point this at a mounted volume in production)
DB_PATH = os.getenv("LIVEWATCH_DB_PATH", "livewatch.db")
STATE_BACKEND = os.getenv("LIVEWATCH_STATE_BACKEND", "sqlite").strip().lower()
STATE_JSON_PATH = os.getenv("LIVEWATCH_STATE_JSON_PATH", "data/state.json")
LEGACY_JSON_PATH = os.getenv("LIVEWATCH_LEGACY_JSON_PATH", "").strip() or None
SEED_PATH = os.getenv("LIVEWATCH_SEED_PATH", "").strip() or None

if STATE_BACKEND not in {"sqlite", "json"}:
    print(f"[CFG] invalid LIVEWATCH_STATE_BACKEND={STATE_BACKEND!r}; falling back to 'sqlite'")
    STATE_BACKEND = "sqlite"
print(
    f"[CFG] state_backend={STATE_BACKEND} "
    f"path={DB_PATH if STATE_BACKEND == 'sqlite' else STATE_JSON_PATH} "
    f"legacy_import={LEGACY_JSON_PATH or '-'} seed={SEED_PATH or '-'}"
)

# =========================
# RUNTIME SETTINGS (env fills what the stored document lacks)
# =========================
ENV_OVERRIDES_DB = os.getenv("LIVEWATCH_ENV_OVERRIDES_DB", "0").strip() == "1"
ENV_SETTINGS = {
    "notify_channel_id": os.getenv("LIVEWATCH_NOTIFY_CHANNEL_ID"),
    "mention_here": os.getenv("LIVEWATCH_MENTION_HERE"),
    "keyword_regex": os.getenv("LIVEWATCH_KEYWORD_REGEX"),
    "check_interval_seconds": os.getenv("LIVEWATCH_CHECK_INTERVAL_SECONDS"),
    "discovery_mode": os.getenv("LIVEWATCH_DISCOVERY_MODE"),
    "twitch_game_id": os.getenv("LIVEWATCH_TWITCH_GAME_ID"),
    "kick_category_name": os.getenv("LIVEWATCH_KICK_CATEGORY_NAME"),
}
print(
    f"[CFG] env_settings={sorted(k for k, v in ENV_SETTINGS.items() if v is not None)} "
    f"env_overrides_db={ENV_OVERRIDES_DB}"
)


# =========================
# SQLITE
# =========================
def init_db(db_path: str) -> sqlite3.Connection:
    # check_same_thread=False because discord.py event loop + to_thread usage
    conn = sqlite3.connect(db_path, check_same_thread=False)
    cur = conn.cursor()

    # Performance + safety defaults
    cur.execute("PRAGMA journal_mode=WAL;")
    cur.execute("PRAGMA synchronous=NORMAL;")
    repo_root = os.path.dirname(os.path.abspath(__file__))
    migrations_dir = os.path.join(repo_root, "migrations")
    applied = apply_sqlite_migrations(conn, migrations_dir)
    print(f"[DB] migrations applied this boot: {len(applied)}")

    conn.commit()
    return conn


db_lock = asyncio.Lock()
if STATE_BACKEND == "sqlite":
    print(f"[DB] Using DB_PATH={DB_PATH}")
    print(f"[DB] DB file exists? {os.path.exists(DB_PATH)}")
    db_conn = init_db(DB_PATH)
    store = SqliteStateStore(db_lock=db_lock, db_conn=db_conn, legacy_json_path=LEGACY_JSON_PATH)
else:
    store = JsonFileStateStore(STATE_JSON_PATH)


async def load_state():
    document = await store.load()
    added = apply_seed(document, load_seed_file(SEED_PATH))
    if added:
        print(f"[Store] seed added {len(added)} item(s): {', '.join(added[:20])}")
    changed = apply_env_defaults(document.settings, ENV_SETTINGS, force=ENV_OVERRIDES_DB)
    if changed:
        print(f"[CFG] settings from env: {', '.join(changed)}")
    placed = document.place_unplaced_messages(document.settings.notify_channel_id)
    if placed:
        print(f"[Store] attached {placed} imported message(s) to the notify channel")
    if added or changed or placed:
        await store.save(document)
    return document


# Loaded before the gateway connects; nothing else touches the lock yet.
document = asyncio.run(load_state())
print(
    f"[Store] loaded state v{document.version}: "
    + " ".join(
        f"{kind.value}={len(document.tracked_keys(kind))}/{document.active_message_count(kind)}live"
        for kind in SourceKind
    )
)

DISCORD_MAX_MESSAGE_LEN = 1900  # keep under 2000 hard limit


def chunk_text(text: str, limit: int = DISCORD_MAX_MESSAGE_LEN) -> list[str]:
    text = text or ""
    if len(text) <= limit:
        return [text]

    chunks = []
    remaining = text
    while len(remaining) > limit:
        # Prefer splitting on newline, then space
        split_at = remaining.rfind("\n", 0, limit)
        if split_at == -1:
            split_at = remaining.rfind(" ", 0, limit)
        if split_at == -1:
            split_at = limit
        chunk = remaining[:split_at].strip()
        if chunk:
            chunks.append(chunk)
        remaining = remaining[split_at:].strip()

    if remaining:
        chunks.append(remaining)
    return chunks


async def send_chunked(channel: discord.abc.Messageable, text: str) -> None:
    for part in chunk_text(text, DISCORD_MAX_MESSAGE_LEN):
        await channel.send(part)


# =========================
# DISCORD BOT
# =========================
intents = discord.Intents.default()
intents.message_content = True

bot = commands.Bot(command_prefix=COMMAND_PREFIX, intents=intents)

# =========================
# PRESENCE ENGINE
# =========================
providers = [
    TwitchProvider(TwitchClient(client_id=TWITCH_CLIENT_ID, client_secret=TWITCH_CLIENT_SECRET)),
    KickProvider(KickClient(client_id=KICK_CLIENT_ID, client_secret=KICK_CLIENT_SECRET)),
    ServerStatusProvider(),
]

scheduler = PresenceScheduler(
    document=document,
    store=store,
    providers=providers,
    reconciler=PresenceReconciler(
        effector=DiscordMessageEffector(bot),
        render=render_live_message,
    ),
    tracker=HealthTracker(document.health),
)

wire_bot_runtime(
    bot,
    scheduler=scheduler,
    send_chunked=send_chunked,
    allowed_role_ids=ALLOWED_ROLE_IDS,
)


bot.run(DISCORD_TOKEN)
