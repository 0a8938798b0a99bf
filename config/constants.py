"""
Bot-wide constants and default values.
"""

# ── Bot Identity ─────────────────────────────────────────────────────
BOT_NAME = "Pumpkin Patch"
BOT_COLOR = 0xE67E22  # Pumpkin orange
BOT_ERROR_COLOR = 0xE74C3C  # Red
BOT_SUCCESS_COLOR = 0x2ECC71  # Green
BOT_INFO_COLOR = 0x3498DB  # Blue
BOT_WARN_COLOR = 0xF39C12  # Orange
GHOST_COLOR = 0x9B59B6  # Purple — ghost encounters
HAUNTED_COLOR = 0xF39C12  # Gold — haunted finds

COMMAND_PREFIX = "!"

# ── Candy Multipliers ────────────────────────────────────────────────
UPGRADE_STEP = 0.25  # +25% per upgrade level
GUILD_MULTIPLIER_DEFAULT = 1.0
GUILD_MULTIPLIER_MIN = 0.1
GUILD_MULTIPLIER_MAX = 10.0

# ── Pumpkin Hunt ─────────────────────────────────────────────────────
PUMPKIN_STATE_ID = 1  # singleton row key
PUMPKIN_CANDY_MIN = 10
PUMPKIN_CANDY_MAX = 30
PUMPKIN_NEXT_SPAWN_MIN = 60  # seconds
PUMPKIN_NEXT_SPAWN_MAX = 300  # seconds
PUMPKIN_RETRY_DELAY = 60  # seconds, when no channel is eligible
PUMPKIN_STARTUP_DELAY = 5  # seconds before the first tick
PUMPKIN_MANUAL_MAX = 10  # cap for !spumpkin <count>
PUMPKIN_INBOUND_COUNT = 5
PUMPKIN_WAIT_POLL = 0.5  # seconds between "is it cleared yet?" checks
PUMPKIN_WAIT_ATTEMPTS = 60  # 60 * 0.5s = 30s max wait per spawn
PUMPKIN_INBOUND_GAP = 2.0  # seconds between inbound spawns
DB_LOCK_TIMEOUT = 30.0  # seconds a writer waits for the lock

# ── Trick or Treat ───────────────────────────────────────────────────
TRICK_OR_TREAT_COOLDOWN = 3600  # seconds
TRICK_CHANCE = 0.3
TRICK_TIMEOUT_SECONDS = 10
TREAT_CANDY_MIN = 5
TREAT_CANDY_MAX = 30

# ── Passive Earning ──────────────────────────────────────────────────
PASSIVE_CHANCE = 0.07
PASSIVE_CANDY_MIN = 10
PASSIVE_CANDY_MAX = 20
GHOST_CHANCE = 0.05  # 3x
HAUNTED_CHANCE = 0.15  # 1.5x, rolled after ghost
GHOST_BONUS = 3
HAUNTED_BONUS = 1.5

PASSIVE_MESSAGES = [
    "🍬 You found {candies} hidden in the shadows!",
    "🎃 A friendly jack-o'-lantern left you {candies}!",
    "🕷️ A spider dropped {candies} from its web!",
    "🦇 A bat flew by and dropped {candies}!",
    "🕸️ You found {candies} stuck in a spooky web!",
    "👻 A friendly ghost gifted you {candies}!",
    "🌙 Under the moonlight, you discovered {candies}!",
    "⚰️ You found {candies} in an old coffin!",
    "🧙 A witch's broom swept {candies} your way!",
    "💀 You found {candies} in a skeleton's pocket!",
]

# ── Ledger ───────────────────────────────────────────────────────────
HISTORY_LIMIT = 10
LEADERBOARD_LIMIT = 10
COOLDOWN_RETENTION_DAYS = 7
GUILD_CACHE_TTL = 60  # seconds

# ── History sources ──────────────────────────────────────────────────
SOURCE_PUMPKIN = "pumpkin_grab"
SOURCE_TRICK_OR_TREAT = "trick_or_treat"
SOURCE_PASSIVE = "passive_chat"
SOURCE_GHOST = "ghost_encounter"
SOURCE_HAUNTED = "haunted_find"
