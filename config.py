"""
config.py -- All tunable parameters for the scalping bot.

Every value here is loaded from environment variables so you can configure
the bot via your host's dashboard (or a local .env file) without touching
code.

HOW TO READ THIS FILE:
  Each config value has a comment explaining what it controls and why the
  default was chosen.  The one value with no default is the fiat budget:
  the bot refuses to start without it.
"""

import os
import logging

# ---------------------------------------------------------------------------
# Helper: read an env var with a typed default
# ---------------------------------------------------------------------------

def _env(name, default, cast=str):
    """
    Read an environment variable and cast it to the right type.
    If the var is missing or empty, return *default* (already the right type).
    """
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        # Special handling for booleans -- "true"/"1"/"yes" are all truthy
        if cast is bool:
            return raw.strip().lower() in ("true", "1", "yes")
        return cast(raw)
    except (ValueError, TypeError):
        return default


def _env_list(name):
    """Comma-separated env var -> list of non-empty stripped strings."""
    return [part.strip() for part in _env(name, "").split(",") if part.strip()]


# ---------------------------------------------------------------------------
# API Credentials  (NEVER hard-code these -- always use env vars)
# ---------------------------------------------------------------------------

# Your Kraken API key. Create one at https://www.kraken.com/u/security/api
# Permissions needed: Query Funds, Create & Modify Orders,
#   Query Open Orders & Trades
# IMPORTANT: "Query Open Orders & Trades" is required for fill detection!
# Without it the bot cannot tell whether its last order filled.
KRAKEN_API_KEY: str = _env("KRAKEN_API_KEY", "")

# Your Kraken private (secret) key -- base64-encoded by Kraken.
KRAKEN_API_SECRET: str = _env("KRAKEN_API_SECRET", "")

# Telegram bot token (from @BotFather) and your chat ID (from @userinfobot).
TELEGRAM_BOT_TOKEN: str = _env("TELEGRAM_BOT_TOKEN", "")
TELEGRAM_CHAT_ID: str = _env("TELEGRAM_CHAT_ID", "")

# ---------------------------------------------------------------------------
# DRY RUN
# ---------------------------------------------------------------------------

# When True, the bot:
#   - Fetches REAL order books and prices from Kraken's public API
#   - SIMULATES order placement (fake DRY-... order ids)
#   - Sees no open orders, so every order "fills" on the next cycle
#
# Useful to watch the buy/sell loop and the log output before going live.
DRY_RUN: bool = _env("DRY_RUN", False, bool)

# ---------------------------------------------------------------------------
# Market
# ---------------------------------------------------------------------------

# Kraken's REST pair name (the "altname", e.g. XDGUSD, XBTUSD, ETHXBT).
PAIR: str = _env("PAIR", "XDGUSD")

# Human-readable name for logs and Telegram messages.
PAIR_DISPLAY: str = _env("PAIR_DISPLAY", "DOGE/USD")

BASE_CURRENCY: str = _env("BASE_CURRENCY", "DOGE")
COUNTER_CURRENCY: str = _env("COUNTER_CURRENCY", "USD")

# ---------------------------------------------------------------------------
# Strategy
# ---------------------------------------------------------------------------

# Amount of counter currency (USD for DOGE/USD) spent on every BUY order.
# MANDATORY.  Kept as the raw string so the strategy can validate it as an
# exact decimal -- a missing or non-numeric value stops the bot at startup.
FIAT_BUY_ORDER_AMOUNT: str = _env("FIAT_BUY_ORDER_AMOUNT", "")

# Fee (percent) assumed for both legs in DRY_RUN, where the private fee
# endpoint is not called.  Kraken's base maker fee is 0.25%.
MAKER_FEE_PCT: float = _env("MAKER_FEE_PCT", 0.25, float)

# ---------------------------------------------------------------------------
# Main loop / API behaviour
# ---------------------------------------------------------------------------

# Seconds between trade cycles.  Each cycle costs at most 4 private calls
# (open orders, 2x fee lookup, add order), well inside Kraken's budget.
POLL_INTERVAL_SECONDS: int = _env("POLL_INTERVAL_SECONDS", 60, int)
if POLL_INTERVAL_SECONDS < 5:
    logging.getLogger(__name__).warning(
        "Clamping POLL_INTERVAL_SECONDS=%d to 5", POLL_INTERVAL_SECONDS)
    POLL_INTERVAL_SECONDS = 5

# Consecutive *unexpected* loop errors (bugs, not exchange errors) before
# the bot gives up.
MAX_CONSECUTIVE_ERRORS: int = _env("MAX_CONSECUTIVE_ERRORS", 5, int)

# HTTP timeout for every Kraken request.  A timeout is a transient error:
# the cycle is skipped and retried on the next tick.
REQUEST_TIMEOUT_SEC: float = _env("REQUEST_TIMEOUT_SEC", 15.0, float)

# Extra Kraken error prefixes to treat as transient, comma-separated,
# e.g. "EOrder:Orders limit exceeded".  Added to the built-in list in
# kraken_client.TRANSIENT_ERRORS.
KRAKEN_TRANSIENT_ERRORS: list = _env_list("KRAKEN_TRANSIENT_ERRORS")

# DEBUG shows every HTTP call; INFO shows one line per decision.
LOG_LEVEL: str = _env("LOG_LEVEL", "INFO")


def strategy_config() -> dict:
    """Config items handed to ScalpingStrategy.initialize()."""
    return {
        "fiat-buy-order-amount": FIAT_BUY_ORDER_AMOUNT,
    }


# ---------------------------------------------------------------------------
# Startup banner -- printed when the bot launches
# ---------------------------------------------------------------------------

def print_banner():
    """Print a clear summary of all active settings so you know what's running."""
    mode = "DRY RUN (simulated)" if DRY_RUN else "LIVE TRADING (real money!)"
    budget = FIAT_BUY_ORDER_AMOUNT or "NOT SET"
    lines = [
        "",
        "=" * 60,
        "  SCALPING BOT",
        "=" * 60,
        f"  Mode:            {mode}",
        f"  Market:          {PAIR_DISPLAY} ({PAIR})",
        f"  Buy budget:      {budget} {COUNTER_CURRENCY}",
        f"  Poll interval:   {POLL_INTERVAL_SECONDS}s",
        f"  Log level:       {LOG_LEVEL}",
        f"  Kraken key:      {'configured' if KRAKEN_API_KEY else 'NOT SET'}",
        f"  Telegram:        {'configured' if TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID else 'NOT SET'}",
        "=" * 60,
        "",
    ]
    print("\n".join(lines))
