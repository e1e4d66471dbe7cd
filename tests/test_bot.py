import unittest
from decimal import Decimal
from unittest import mock

import bot
import config
import notifier
from exchange import ErrorKind, ExchangeError, Market, OrderType
from strategy import ConfigError, OrderSide, StrategyError

from tests.fake_exchange import FakeTradingApi

MARKET = Market(id="XDGUSD", name="DOGE/USD", base_currency="DOGE", counter_currency="USD")


class BotRuntimeTests(unittest.TestCase):
    def setUp(self):
        patches = [
            mock.patch.object(config, "FIAT_BUY_ORDER_AMOUNT", "100"),
            mock.patch.object(config, "MAX_CONSECUTIVE_ERRORS", 3),
            mock.patch.object(notifier, "_send_message", return_value=True),
        ]
        for p in patches:
            p.start()
            self.addCleanup(p.stop)
        self.api = FakeTradingApi()
        self.rt = bot.BotRuntime(trading_api=self.api, market=MARKET)
        self.rt.initialize()

    def test_initialize_reads_budget_from_config(self):
        self.assertEqual(self.rt.strategy.fiat_budget, Decimal("100"))
        self.assertEqual(self.rt.mode, "RUNNING")

    def test_initialize_fails_fast_without_budget(self):
        with mock.patch.object(config, "FIAT_BUY_ORDER_AMOUNT", ""):
            rt = bot.BotRuntime(trading_api=FakeTradingApi(), market=MARKET)
            with self.assertRaises(ConfigError):
                rt.initialize()

    def test_new_order_triggers_notification(self):
        with mock.patch.object(notifier, "notify_order_placed") as notify:
            self.rt.step()
            self.rt.step()  # buy still open: nothing new
        notify.assert_called_once()
        placed = notify.call_args.args[1]
        self.assertIs(placed.side, OrderSide.BUY)
        self.assertEqual(self.api.submitted[0][0], OrderType.BUY)

    def test_strategy_error_stops_bot(self):
        self.api.fail["get_order_book"] = ExchangeError("EAPI:Invalid key", ErrorKind.NON_RECOVERABLE)
        with mock.patch.object(notifier, "notify_error") as notify_error:
            self.rt.step()
        self.assertFalse(self.rt.running)
        self.assertTrue(self.rt.failed)
        self.assertEqual(self.rt.mode, "HALTED")
        notify_error.assert_called_once()

    def test_transient_errors_keep_running(self):
        self.api.fail["get_order_book"] = ExchangeError("timeout", ErrorKind.TRANSIENT)
        for _ in range(5):
            self.rt.step()
        self.assertTrue(self.rt.running)
        self.assertEqual(self.rt.consecutive_errors, 0)

    def test_unexpected_errors_stop_after_threshold(self):
        with mock.patch.object(self.rt.strategy, "execute", side_effect=RuntimeError("boom")):
            self.rt.step()
            self.rt.step()
            self.assertTrue(self.rt.running)
            self.rt.step()
        self.assertFalse(self.rt.running)
        self.assertTrue(self.rt.failed)

    def test_clean_cycle_resets_error_count(self):
        with mock.patch.object(self.rt.strategy, "execute", side_effect=RuntimeError("boom")):
            self.rt.step()
        self.rt.step()
        self.assertEqual(self.rt.consecutive_errors, 0)

    def test_shutdown_is_idempotent(self):
        with mock.patch.object(notifier, "notify_stopped") as stopped:
            self.rt.shutdown("signal 15")
            self.rt.shutdown("process exit")
        stopped.assert_called_once_with("signal 15")
        self.assertFalse(self.rt.failed)


class RunTests(unittest.TestCase):
    def test_run_exits_nonzero_on_strategy_error(self):
        rt = mock.Mock()
        rt.running = True
        rt.failed = True

        def _step():
            rt.running = False

        rt.step.side_effect = _step
        with mock.patch.object(bot, "BotRuntime", return_value=rt), \
                mock.patch.object(bot, "setup_logging"), \
                mock.patch.object(config, "print_banner"), \
                mock.patch("signal.signal"), \
                mock.patch("time.sleep") as sleep:
            self.assertEqual(bot.run(), 1)
        rt.initialize.assert_called_once()
        sleep.assert_not_called()

    def test_run_returns_2_on_config_error(self):
        rt = mock.Mock()
        rt.initialize.side_effect = ConfigError("missing budget")
        with mock.patch.object(bot, "BotRuntime", return_value=rt), \
                mock.patch.object(bot, "setup_logging"), \
                mock.patch.object(config, "print_banner"), \
                mock.patch("signal.signal"):
            self.assertEqual(bot.run(), 2)
        rt.step.assert_not_called()


class StrategyErrorTypeTests(unittest.TestCase):
    def test_strategy_error_is_not_an_exchange_error(self):
        self.assertFalse(issubclass(StrategyError, ExchangeError))


if __name__ == "__main__":
    unittest.main()
