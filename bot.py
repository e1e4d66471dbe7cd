"""
Scalping bot runtime.

Hosts one ScalpingStrategy on one Kraken market:
- calls strategy.execute() once per trade cycle (POLL_INTERVAL_SECONDS)
- StrategyError stops the bot immediately
- unexpected errors are retried until MAX_CONSECUTIVE_ERRORS in a row
- Telegram alert whenever the strategy sends a new order
"""

from __future__ import annotations

import logging
import signal
import sys
import time

import config
import kraken_client
import notifier
from exchange import Market, TradingApi
from strategy import ConfigError, OrderState, ScalpingStrategy, StrategyError


logger = logging.getLogger(__name__)


def setup_logging() -> None:
    level = getattr(logging, config.LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    )


def _now() -> float:
    return time.time()


def configured_market() -> Market:
    return Market(
        id=config.PAIR,
        name=config.PAIR_DISPLAY,
        base_currency=config.BASE_CURRENCY,
        counter_currency=config.COUNTER_CURRENCY,
    )


class BotRuntime:
    def __init__(self, trading_api: TradingApi | None = None, market: Market | None = None) -> None:
        self.trading_api = trading_api or kraken_client.KrakenTradingApi()
        self.market = market or configured_market()
        self.strategy = ScalpingStrategy()
        self.running = True
        self.mode = "INIT"  # INIT | RUNNING | HALTED
        self.stop_reason = ""
        self.failed = False
        self.consecutive_errors = 0
        self.cycles = 0

    # ------------------ Lifecycle ------------------

    def initialize(self) -> None:
        """Raises ConfigError when the strategy config is unusable."""
        logger.info("============================================================")
        logger.info("  SCALPING BOT  %s", self.market.name)
        logger.info("============================================================")

        self.strategy.initialize(self.trading_api, self.market, config.strategy_config())
        self.mode = "RUNNING"
        notifier.notify_startup(self.market.name, self.strategy.fiat_budget)

    def shutdown(self, reason: str, failed: bool = False) -> None:
        if self.mode == "HALTED":
            return
        self.failed = failed
        self.running = False
        self.mode = "HALTED"
        self.stop_reason = reason
        logger.info("Bot stopped: %s", reason)
        notifier.notify_stopped(reason)

    # ------------------ Loop ------------------

    def run_loop_once(self) -> None:
        """One trade cycle.  Lets StrategyError through to the caller."""
        before: OrderState | None = self.strategy.last_order
        self.strategy.execute()
        self.cycles += 1

        after = self.strategy.last_order
        if after is not None and after != before and after.id is not None:
            notifier.notify_order_placed(self.market.name, after)

    def step(self) -> None:
        """run_loop_once() plus the stop/retry policy."""
        try:
            self.run_loop_once()
        except StrategyError as e:
            logger.critical("Strategy failed, shutting down bot: %s", e)
            notifier.notify_error(f"{self.market.name}: {e}")
            self.shutdown(f"strategy error: {e}", failed=True)
            return
        except Exception as e:
            self.consecutive_errors += 1
            logger.exception("Main loop error (%d in a row): %s", self.consecutive_errors, e)
            if self.consecutive_errors >= config.MAX_CONSECUTIVE_ERRORS:
                notifier.notify_error(f"{self.market.name}: {e}")
                self.shutdown(f"loop errors: {self.consecutive_errors}", failed=True)
            return
        self.consecutive_errors = 0


def run() -> int:
    setup_logging()
    config.print_banner()

    rt = BotRuntime()

    def _handle_signal(signum, _frame):
        logger.info("Signal %s received", signum)
        rt.shutdown(f"signal {signum}")

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)

    try:
        rt.initialize()
    except ConfigError as e:
        logger.critical("Invalid configuration: %s", e)
        return 2

    poll = config.POLL_INTERVAL_SECONDS
    logger.info("Entering main loop (every %ss)", poll)

    while rt.running:
        loop_start = _now()
        rt.step()
        if not rt.running:
            break
        elapsed = _now() - loop_start
        time.sleep(max(0.2, poll - elapsed))

    return 1 if rt.failed else 0


if __name__ == "__main__":
    sys.exit(run())
