"""
exchange.py -- Exchange capability used by the strategy.

The strategy never talks HTTP itself.  It goes through a TradingApi object
(see kraken_client.KrakenTradingApi for the real one) and only sees:

  - order books      (best bid / best ask)
  - open orders      (fill detection: our order is gone => it filled)
  - last trade price (buy sizing)
  - fee rates        (sell pricing)
  - order submission

Every call can fail with ExchangeError.  The error carries a *kind*:

  TRANSIENT        network trouble, timeouts, exchange busy.  Wait for the
                   next trade cycle and try again.
  NON_RECOVERABLE  the exchange rejected us or answered with something we
                   don't understand.  Stop trading.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Protocol, Sequence


class ErrorKind(Enum):
    TRANSIENT = "transient"
    NON_RECOVERABLE = "non_recoverable"


class ExchangeError(Exception):
    """Failure of an exchange call, tagged with how the caller should react."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.NON_RECOVERABLE) -> None:
        super().__init__(message)
        self.kind = kind

    @property
    def transient(self) -> bool:
        return self.kind is ErrorKind.TRANSIENT

    def __str__(self) -> str:
        return f"[{self.kind.value}] {super().__str__()}"


class OrderType(Enum):
    BUY = "buy"
    SELL = "sell"


@dataclass(frozen=True)
class Market:
    id: str
    name: str
    base_currency: str = ""
    counter_currency: str = ""


@dataclass(frozen=True)
class MarketOrder:
    price: Decimal
    quantity: Decimal


@dataclass(frozen=True)
class OrderBook:
    # buy side sorted by price descending, sell side ascending
    market_id: str
    buy_orders: tuple[MarketOrder, ...] = ()
    sell_orders: tuple[MarketOrder, ...] = ()


@dataclass(frozen=True)
class OpenOrder:
    id: str
    market_id: str
    type: OrderType
    price: Decimal = Decimal("0")
    quantity: Decimal = Decimal("0")
    raw: dict = field(default_factory=dict, compare=False, repr=False)


class TradingApi(Protocol):
    def get_order_book(self, market_id: str) -> OrderBook: ...

    def get_open_orders(self, market_id: str) -> Sequence[OpenOrder]: ...

    def get_last_trade_price(self, market_id: str) -> Decimal: ...

    def get_buy_fee_rate(self, market_id: str) -> Decimal: ...

    def get_sell_fee_rate(self, market_id: str) -> Decimal: ...

    def submit_order(self, market_id: str, order_type: OrderType,
                     quantity: Decimal, price: Decimal) -> str: ...
