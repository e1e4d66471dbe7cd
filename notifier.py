"""
notifier.py -- Telegram notifications for the scalping bot.

Sends alerts via the Telegram Bot API for:
  - Bot startup / shutdown
  - Every new order the strategy sends (buy after a sell filled, sell
    after a buy filled)
  - Fatal errors that stopped the bot

SETUP:
  1. Message @BotFather on Telegram to create a bot -> get TELEGRAM_BOT_TOKEN
  2. Message @userinfobot to find your TELEGRAM_CHAT_ID
  3. Set both as environment variables

ZERO DEPENDENCIES:
  Uses urllib.request to POST to https://api.telegram.org/bot{token}/sendMessage
"""

import json
import logging
import urllib.request
import urllib.error

import config

logger = logging.getLogger(__name__)

# Telegram Bot API base URL template
TELEGRAM_API = "https://api.telegram.org/bot{token}/{method}"


def _telegram_api(method: str, payload: dict) -> dict:
    """
    Call any Telegram Bot API method.

    Returns the parsed JSON response dict, or {} on failure.

    This function NEVER raises -- failures are logged and swallowed.  An
    alert that can't be delivered must not stop trading.
    """
    if not config.TELEGRAM_BOT_TOKEN:
        logger.debug("Telegram not configured, skipping %s", method)
        return {}

    url = TELEGRAM_API.format(token=config.TELEGRAM_BOT_TOKEN, method=method)
    data = json.dumps(payload).encode("utf-8")
    headers = {
        "Content-Type": "application/json",
        "User-Agent": "ScalpingBot/1.0",
    }
    req = urllib.request.Request(url, data=data, headers=headers)

    try:
        with urllib.request.urlopen(req, timeout=10) as resp:
            result = json.loads(resp.read().decode("utf-8"))
            if result.get("ok"):
                return result
            logger.warning("Telegram %s returned ok=false: %s", method, result)
            return {}
    except urllib.error.HTTPError as e:
        body = e.read().decode("utf-8", errors="replace")
        logger.warning("Telegram %s HTTP %d: %s", method, e.code, body[:200])
        return {}
    except Exception as e:
        logger.warning("Telegram %s failed: %s", method, e)
        return {}


def _send_message(text: str, parse_mode: str = "HTML") -> bool:
    """Send a message to the configured chat.  Returns True if delivered."""
    if not config.TELEGRAM_CHAT_ID:
        logger.debug("Telegram chat id not configured, dropping message")
        return False
    prefix = "[DRY RUN] " if config.DRY_RUN else ""
    result = _telegram_api("sendMessage", {
        "chat_id": config.TELEGRAM_CHAT_ID,
        "text": prefix + text,
        "parse_mode": parse_mode,
    })
    return bool(result)


def notify_startup(market_name: str, budget) -> bool:
    return _send_message(
        f"<b>Scalping bot started</b>\n"
        f"market: {market_name}\n"
        f"budget per buy: {budget}"
    )


def notify_order_placed(market_name: str, order) -> bool:
    """*order* is a strategy.OrderState."""
    return _send_message(
        f"<b>{order.side.name} order placed</b> ({market_name})\n"
        f"id: {order.id}\n"
        f"price: {order.price}\n"
        f"quantity: {order.quantity}"
    )


def notify_stopped(reason: str) -> bool:
    return _send_message(f"<b>Scalping bot stopped</b>\nreason: {reason}")


def notify_error(message: str) -> bool:
    return _send_message(f"<b>ERROR</b>\n{message}")
