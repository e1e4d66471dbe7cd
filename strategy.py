"""
strategy.py -- Single-order scalping strategy.

Each trade cycle the host calls execute() once.  The strategy remembers one
order (the last one it sent) and walks a three-state loop:

  NONE --(submit buy)--> BUY
  BUY  --(buy filled, submit sell)--> SELL
  SELL --(sell filled, submit buy)--> BUY

An order counts as filled when it no longer shows up among our open
orders.  The sell is placed at the buy price marked up by PROFIT_MARGIN plus
both exchange fees (see pricing.py).

Exchange errors:
  - TRANSIENT:        logged, cycle abandoned, state untouched.  The next
                      cycle simply tries again.
  - NON_RECOVERABLE:  logged and re-raised as StrategyError.  The host must
                      stop the bot.

State lives only in memory.  A restart begins again from NONE.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Mapping

import pricing
from exchange import ErrorKind, ExchangeError, Market, OrderBook, OrderType, TradingApi

logger = logging.getLogger(__name__)

BUDGET_CONFIG_ITEM = "fiat-buy-order-amount"


class StrategyError(Exception):
    """Fatal strategy failure.  The host must stop trading."""


class ConfigError(ValueError):
    """Missing or malformed strategy configuration."""


class OrderSide(Enum):
    NONE = "none"
    BUY = "buy"
    SELL = "sell"


@dataclass(frozen=True)
class OrderState:
    id: str | None = None
    side: OrderSide = OrderSide.NONE
    price: Decimal = Decimal("0")
    quantity: Decimal = Decimal("0")

    def __post_init__(self) -> None:
        if self.side is OrderSide.NONE and self.id is not None:
            raise ValueError("an order with side NONE cannot have an id")
        if self.price < 0 or self.quantity < 0:
            raise ValueError("price and quantity must be non-negative")


def parse_budget(raw) -> Decimal:
    """Validate the fiat budget config value.  Raises ConfigError."""
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        raise ConfigError(f"Mandatory {BUDGET_CONFIG_ITEM} value missing in strategy config.")
    try:
        budget = Decimal(str(raw).strip())
    except InvalidOperation as e:
        raise ConfigError(f"{BUDGET_CONFIG_ITEM} is not a number: {raw!r}") from e
    if not budget.is_finite() or budget <= 0:
        raise ConfigError(f"{BUDGET_CONFIG_ITEM} must be a positive number, got {raw!r}")
    return budget


def best_prices(order_book: OrderBook) -> tuple[Decimal, Decimal] | None:
    """(best bid, best ask), or None when either side of the book is empty."""
    if not order_book.buy_orders or not order_book.sell_orders:
        return None
    return order_book.buy_orders[0].price, order_book.sell_orders[0].price


class ScalpingStrategy:
    def __init__(self) -> None:
        self.trading_api: TradingApi | None = None
        self.market: Market | None = None
        self.fiat_budget = Decimal("0")
        self.last_order: OrderState | None = None
        # Times the visible ask was above our own resting sell.
        self.inconsistent_ask_count = 0

    # ------------------ Lifecycle ------------------

    def initialize(self, trading_api: TradingApi, market: Market,
                   strategy_config: Mapping[str, str]) -> None:
        logger.info("Initialising Trading Strategy...")
        self.trading_api = trading_api
        self.market = market

        raw = strategy_config.get(BUDGET_CONFIG_ITEM)
        logger.info("<%s> from config is: %s", BUDGET_CONFIG_ITEM, raw)
        self.fiat_budget = parse_budget(raw)
        logger.info("Trading Strategy initialised successfully! budget=%s %s",
                    self.fiat_budget, market.counter_currency)

    # ------------------ Cycle ------------------

    def execute(self) -> None:
        if self.trading_api is None or self.market is None:
            raise StrategyError("execute() called before initialize()")

        name = self.market.name
        logger.info("%s Checking order status...", name)

        try:
            order_book = self.trading_api.get_order_book(self.market.id)
        except ExchangeError as e:
            self._handle_exchange_error(e, "Failed to get market orders")
            return

        prices = best_prices(order_book)
        if prices is None:
            logger.warning("%s Exchange returned an empty side of the order book. "
                           "Ignoring this trade window. buys=%d sells=%d",
                           name, len(order_book.buy_orders), len(order_book.sell_orders))
            return
        bid, ask = prices
        logger.info("%s Current BID price=%s", name, bid)
        logger.info("%s Current ASK price=%s", name, ask)

        if self.last_order is None:
            logger.info("%s First time strategy has been called - creating new order state.", name)
            self.last_order = OrderState()
        logger.info("%s Last order was: %s", name, self.last_order)

        side = self.last_order.side
        try:
            if side is OrderSide.NONE:
                self._when_last_order_none(bid)
            elif side is OrderSide.BUY:
                self._when_last_order_buy()
            elif side is OrderSide.SELL:
                self._when_last_order_sell(bid, ask)
            else:
                raise AssertionError(f"unhandled order side {side!r}")
        except ExchangeError as e:
            self._handle_exchange_error(e, f"Cycle for last {side.name} order failed")

    def _handle_exchange_error(self, err: ExchangeError, what: str) -> None:
        name = self.market.name
        if err.kind is ErrorKind.TRANSIENT:
            logger.error("%s %s because exchange call failed transiently: %s. "
                         "Waiting until next trade cycle. Last order: %s",
                         name, what, err, self.last_order)
            return
        logger.error("%s %s because exchange call failed: %s. "
                     "Telling trading engine to shut down bot! Last order: %s",
                     name, what, err, self.last_order, exc_info=True)
        raise StrategyError(f"{name}: {what}: {err}") from err

    # ------------------ Transitions ------------------

    def _when_last_order_none(self, bid: Decimal) -> None:
        name = self.market.name
        logger.info("%s OrderType is NONE - placing new BUY order at [%s]", name, bid)
        quantity = pricing.quantity_for_budget(self.trading_api, self.market.id, self.fiat_budget)

        logger.info("%s Sending initial BUY order to exchange --->", name)
        order_id = self.trading_api.submit_order(self.market.id, OrderType.BUY, quantity, bid)
        logger.info("%s Initial BUY order sent successfully. ID: %s", name, order_id)

        self.last_order = OrderState(id=order_id, side=OrderSide.BUY, price=bid, quantity=quantity)

    def _last_order_filled(self) -> bool:
        open_orders = self.trading_api.get_open_orders(self.market.id)
        return not any(o.id == self.last_order.id for o in open_orders)

    def _when_last_order_buy(self) -> None:
        name = self.market.name
        last = self.last_order

        if not self._last_order_filled():
            logger.info("%s !!! Still have BUY order %s waiting to fill at [%s] - "
                        "holding last BUY order...", name, last.id, last.price)
            return

        logger.info("%s ^^^ Last BUY order %s filled at [%s]", name, last.id, last.price)
        buy_fee = self.trading_api.get_buy_fee_rate(self.market.id)
        sell_fee = self.trading_api.get_sell_fee_rate(self.market.id)
        logger.info("%s Profit margin=%s buy fee=%s sell fee=%s",
                    name, pricing.PROFIT_MARGIN, buy_fee, sell_fee)

        ask = pricing.ask_from_buy(last.price, pricing.PROFIT_MARGIN, buy_fee, sell_fee)
        logger.info("%s Placing new SELL order at ask price [%s]", name, ask)

        logger.info("%s Sending new SELL order to exchange --->", name)
        order_id = self.trading_api.submit_order(self.market.id, OrderType.SELL, last.quantity, ask)
        logger.info("%s New SELL order sent successfully. ID: %s", name, order_id)

        self.last_order = OrderState(id=order_id, side=OrderSide.SELL, price=ask,
                                     quantity=last.quantity)

    def _when_last_order_sell(self, bid: Decimal, ask: Decimal) -> None:
        name = self.market.name
        last = self.last_order

        if not self._last_order_filled():
            if ask < last.price:
                logger.info("%s <<< Current ask price [%s] is LOWER than last order price [%s]"
                            " - holding last SELL order...", name, ask, last.price)
            elif ask == last.price:
                logger.info("%s === Current ask price [%s] is EQUAL to last order price [%s]"
                            " - holding last SELL order...", name, ask, last.price)
            else:
                self.inconsistent_ask_count += 1
                logger.warning("%s >>> INCONSISTENT: current ask price [%s] is HIGHER than our "
                               "open SELL order %s at [%s] (seen %d times) - holding",
                               name, ask, last.id, last.price, self.inconsistent_ask_count)
            return

        logger.info("%s ^^^ Last SELL order %s filled at [%s]", name, last.id, last.price)
        quantity = pricing.quantity_for_budget(self.trading_api, self.market.id, self.fiat_budget)
        logger.info("%s Placing new BUY order at bid price [%s]", name, bid)

        logger.info("%s Sending new BUY order to exchange --->", name)
        order_id = self.trading_api.submit_order(self.market.id, OrderType.BUY, quantity, bid)
        logger.info("%s New BUY order sent successfully. ID: %s", name, order_id)

        self.last_order = OrderState(id=order_id, side=OrderSide.BUY, price=bid, quantity=quantity)
