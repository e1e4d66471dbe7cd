"""
pricing.py -- Order sizing and sell pricing.

Two numbers drive every trade:

  BUY quantity   how many units the fixed fiat budget buys at the last
                 trade price.  Rounded HALF_DOWN so rounding never pushes
                 us over budget.

  SELL price     the buy price marked up by our profit margin plus the fees
                 paid on both legs.  Rounded HALF_UP so rounding never eats
                 into the margin.

Both are quantized to 8 decimal places, the precision Kraken accepts for
most pairs.
"""

from __future__ import annotations

import logging
from decimal import ROUND_HALF_DOWN, ROUND_HALF_UP, Decimal

from exchange import ErrorKind, ExchangeError, TradingApi

logger = logging.getLogger(__name__)

# Profit to make on each round trip, on top of fees (1%).
PROFIT_MARGIN = Decimal("0.01")

EIGHT_DP = Decimal("0.00000001")


def quantity_for_price(budget: Decimal, price: Decimal) -> Decimal:
    """Units bought by *budget* at *price*, 8 dp, half-down."""
    if price <= 0:
        raise ValueError(f"price must be positive, got {price}")
    return (budget / price).quantize(EIGHT_DP, rounding=ROUND_HALF_DOWN)


def quantity_for_budget(trading_api: TradingApi, market_id: str, budget: Decimal) -> Decimal:
    """
    Fetch the last trade price and size a buy order for *budget*.

    Exchange failures propagate unchanged so the caller can classify them.
    """
    last_price = trading_api.get_last_trade_price(market_id)
    logger.info("%s Last trade price for 1 unit was: %s", market_id, last_price)

    if not last_price.is_finite() or last_price <= 0:
        raise ExchangeError(
            f"Exchange returned non-positive or non-finite last trade price {last_price} for {market_id}",
            ErrorKind.NON_RECOVERABLE,
        )

    quantity = quantity_for_price(budget, last_price)
    logger.info("%s Quantity to BUY for %s based on last trade price: %s",
                market_id, budget, quantity)
    return quantity


def ask_from_buy(buy_price: Decimal, profit_margin: Decimal,
                 buy_fee: Decimal, sell_fee: Decimal) -> Decimal:
    """Sell price covering margin and both fees, 8 dp, half-up."""
    increase = profit_margin + buy_fee + sell_fee
    return (buy_price * (1 + increase)).quantize(EIGHT_DP, rounding=ROUND_HALF_UP)
