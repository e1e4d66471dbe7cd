"""
kraken_client.py -- Kraken REST API wrapper using only the standard library.

Handles:
  - Public endpoints (order book, ticker -- no auth needed)
  - Private endpoints (open orders, fees, placing orders -- HMAC-SHA512 signed)
  - Rate-limit awareness (tracks call counter, backs off after lockouts)
  - Error classification (every failure is raised as exchange.ExchangeError
    tagged TRANSIENT or NON_RECOVERABLE)
  - Dry-run simulation (order writes are faked when DRY_RUN is True)

KRAKEN API SIGNING (how it works):
  1. Generate a nonce (monotonically increasing number -- we use millisecond timestamp)
  2. Build the POST body: "nonce=<nonce>&<other params>"
  3. Compute: SHA256(nonce + POST body)  ->  gives a 32-byte hash
  4. Compute: HMAC-SHA512(url_path + sha256_hash, key=base64_decode(api_secret))
  5. Base64-encode the HMAC result -> this goes in the "API-Sign" header

ERROR CLASSIFICATION:
  TRANSIENT        timeouts, connection failures, HTTP 5xx / 429, and Kraken
                   errors listed in TRANSIENT_ERRORS (rate limits, lockouts,
                   service busy/unavailable).
  NON_RECOVERABLE  everything else: other HTTP errors, order rejections,
                   bad credentials, responses we can't parse.
"""

import base64
import hashlib
import hmac
import http.client
import json
import logging
import threading
import time
import urllib.error
import urllib.parse
import urllib.request
from decimal import Decimal, InvalidOperation

import config
from exchange import ErrorKind, ExchangeError, MarketOrder, OpenOrder, OrderBook, OrderType

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Kraken API base URLs
# ---------------------------------------------------------------------------
BASE_URL = "https://api.kraken.com"

# Public endpoints (no auth)
TICKER_PATH = "/0/public/Ticker"
DEPTH_PATH = "/0/public/Depth"

# Private endpoints (auth required)
ADD_ORDER_PATH = "/0/private/AddOrder"
OPEN_ORDERS_PATH = "/0/private/OpenOrders"
TRADE_VOLUME_PATH = "/0/private/TradeVolume"

# Kraken error prefixes worth waiting out.  Extend with KRAKEN_TRANSIENT_ERRORS.
TRANSIENT_ERRORS = (
    "EAPI:Rate limit exceeded",
    "EGeneral:Temporary lockout",
    "EOrder:Rate limit exceeded",
    "EService:Unavailable",
    "EService:Busy",
    "EService:Deadline elapsed",
    "EGeneral:Internal error",
)

# ---------------------------------------------------------------------------
# Rate-limit tracking (thread-safe with circuit breaker)
# ---------------------------------------------------------------------------
# Kraken standard tier: counter starts at 15, each call adds 1,
# counter decays by 1 per second.  If counter hits 0, you get rate-limited.
# We track this locally to avoid hitting the limit.


class _RateLimiter:
    """Thread-safe rate limiter with exponential backoff circuit breaker."""

    def __init__(self, max_budget: int = 15, decay_rate: float = 1.0):
        self._lock = threading.Lock()
        self._max_budget = max_budget
        self._decay_rate = decay_rate
        self._budget = float(max_budget)
        self._last_decay = time.time()
        self._consecutive_errors = 0
        self._circuit_open_until = 0.0  # timestamp; 0 = closed

    def _decay(self):
        """Replenish budget based on elapsed time. Must hold _lock."""
        now = time.time()
        elapsed = now - self._last_decay
        if elapsed > 0:
            self._budget = min(self._max_budget,
                               self._budget + elapsed * self._decay_rate)
            self._last_decay = now

    def consume(self, units: int = 1):
        """Block until budget is available, then deduct units."""
        while True:
            with self._lock:
                now = time.time()
                if self._circuit_open_until > now:
                    wait = self._circuit_open_until - now
                    logger.warning("Circuit breaker open, waiting %.1fs", wait)
                else:
                    self._decay()
                    if self._budget >= units:
                        self._budget -= units
                        return
                    wait = (units - self._budget) / self._decay_rate
                    logger.warning("Rate limit low (%.1f/%d), sleeping %.1fs",
                                   self._budget, self._max_budget, wait)

            # Sleep outside the lock so other threads aren't blocked
            time.sleep(min(wait, 5.0))

    def report_rate_error(self):
        """Called after a Kraken rate-limit or lockout error."""
        with self._lock:
            self._consecutive_errors += 1
            # Exponential backoff: 5s, 10s, 20s, 40s... capped at 60s
            backoff = min(60.0, 5.0 * (2 ** (self._consecutive_errors - 1)))
            self._circuit_open_until = time.time() + backoff
            self._budget = 0.0
            logger.warning("Rate limit error #%d, circuit open for %.0fs",
                           self._consecutive_errors, backoff)

    def report_success(self):
        """Called after a successful API call."""
        with self._lock:
            self._consecutive_errors = 0
            self._circuit_open_until = 0.0


_rate_limiter = _RateLimiter()


# ---------------------------------------------------------------------------
# Nonce generation
# ---------------------------------------------------------------------------
# Kraken requires a monotonically increasing nonce for each private API call.
# Millisecond timestamps with a floor keep it monotonic even if the clock drifts.

_last_nonce = 0
_nonce_lock = threading.Lock()


def _make_nonce() -> str:
    """Generate a nonce that is always greater than the previous one (thread-safe)."""
    global _last_nonce
    with _nonce_lock:
        nonce = int(time.time() * 1000)
        if nonce <= _last_nonce:
            nonce = _last_nonce + 1
        _last_nonce = nonce
        return str(nonce)


# ---------------------------------------------------------------------------
# API signature
# ---------------------------------------------------------------------------

def _sign(url_path: str, data: dict, secret: str) -> str:
    """
    Create the API-Sign header value for a Kraken private endpoint.
    Returns the base64-encoded signature string.
    """
    encoded = urllib.parse.urlencode(data)

    nonce_str = str(data["nonce"])
    sha256_hash = hashlib.sha256((nonce_str + encoded).encode("utf-8")).digest()

    secret_bytes = base64.b64decode(secret)
    message = url_path.encode("utf-8") + sha256_hash
    mac = hmac.new(secret_bytes, message, hashlib.sha512)

    return base64.b64encode(mac.digest()).decode("utf-8")


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------

def is_transient_api_error(errors: list) -> bool:
    """True when every Kraken error string matches a transient prefix."""
    prefixes = tuple(TRANSIENT_ERRORS) + tuple(config.KRAKEN_TRANSIENT_ERRORS)
    return bool(errors) and all(str(e).startswith(prefixes) for e in errors)


def _raise_for_api_errors(resp: dict, path: str) -> None:
    errors = resp.get("error", [])
    if not errors:
        return
    error_str = str(errors)
    if "Rate limit" in error_str or "Temporary lockout" in error_str:
        _rate_limiter.report_rate_error()
    kind = ErrorKind.TRANSIENT if is_transient_api_error(errors) else ErrorKind.NON_RECOVERABLE
    raise ExchangeError(f"Kraken API error on {path}: {errors}", kind)


# ---------------------------------------------------------------------------
# HTTP helpers
# ---------------------------------------------------------------------------

def _request(url: str, data: bytes = None, headers: dict = None, timeout: float = None) -> dict:
    """
    Make an HTTP request and return the parsed JSON response.
    Uses urllib only -- no external dependencies.

    Raises:
        ExchangeError -- TRANSIENT for network trouble, NON_RECOVERABLE for
        client errors and unparseable bodies.
    """
    headers = headers or {}
    headers.setdefault("User-Agent", "ScalpingBot/1.0")
    timeout = timeout or config.REQUEST_TIMEOUT_SEC

    req = urllib.request.Request(url, data=data, headers=headers)
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            body = resp.read().decode("utf-8", errors="replace")
    except urllib.error.HTTPError as e:
        body = e.read().decode("utf-8", errors="replace")
        logger.error("HTTP %d from %s: %s", e.code, url, body[:500])
        kind = ErrorKind.TRANSIENT if e.code >= 500 or e.code == 429 else ErrorKind.NON_RECOVERABLE
        raise ExchangeError(f"HTTP {e.code} from {url}", kind) from e
    except urllib.error.URLError as e:
        logger.error("URL error for %s: %s", url, e.reason)
        raise ExchangeError(f"URL error for {url}: {e.reason}", ErrorKind.TRANSIENT) from e
    except (TimeoutError, ConnectionError, http.client.HTTPException) as e:
        logger.error("Request failed for %s: %s", url, e)
        raise ExchangeError(f"Request failed for {url}: {e}", ErrorKind.TRANSIENT) from e

    try:
        parsed = json.loads(body)
    except ValueError as e:
        raise ExchangeError(f"Invalid JSON from {url}: {body[:200]}") from e
    if not isinstance(parsed, dict):
        raise ExchangeError(f"Unexpected response from {url}: {body[:200]}")
    return parsed


def _public_request(path: str, params: dict = None) -> dict:
    """
    Call a Kraken public endpoint (GET with query params, no auth).
    Returns the 'result' dict or raises ExchangeError.
    """
    url = BASE_URL + path
    if params:
        url += "?" + urllib.parse.urlencode(params)

    resp = _request(url)

    # Kraken wraps responses in {"error": [...], "result": {...}}
    _raise_for_api_errors(resp, path)
    return resp.get("result", {})


def _private_request(path: str, params: dict = None) -> dict:
    """
    Call a Kraken private endpoint (POST with HMAC-SHA512 signature).
    Automatically adds nonce and handles signing.
    Returns the 'result' dict or raises ExchangeError.
    """
    if not config.KRAKEN_API_KEY or not config.KRAKEN_API_SECRET:
        raise ExchangeError("Kraken API credentials not configured")

    _rate_limiter.consume(1)

    params = dict(params or {})
    params["nonce"] = _make_nonce()

    try:
        signature = _sign(path, params, config.KRAKEN_API_SECRET)
    except (ValueError, TypeError) as e:
        raise ExchangeError(f"Kraken API secret is not valid base64: {e}") from e

    headers = {
        "API-Key": config.KRAKEN_API_KEY,
        "API-Sign": signature,
        "Content-Type": "application/x-www-form-urlencoded",
    }
    body = urllib.parse.urlencode(params).encode("utf-8")

    resp = _request(BASE_URL + path, data=body, headers=headers)
    _raise_for_api_errors(resp, path)

    _rate_limiter.report_success()
    return resp.get("result", {})


def _decimal(value, what: str) -> Decimal:
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ExchangeError(f"Kraken returned non-numeric {what}: {value!r}") from e
    if not number.is_finite():
        raise ExchangeError(f"Kraken returned non-finite {what}: {value!r}", ErrorKind.NON_RECOVERABLE)
    return number


def _first_result(result: dict, what: str, pair: str):
    # Kraken keys results by its canonical pair name (XXDGZUSD for XDGUSD),
    # so just grab the first value.
    if not isinstance(result, dict) or not result:
        raise ExchangeError(f"Kraken returned no {what} for {pair}")
    return next(iter(result.values()))


# ===========================================================================
# PUBLIC API METHODS
# ===========================================================================

def get_ticker(pair: str = None) -> dict:
    """
    Fetch the current ticker data for a trading pair.

    Returns a dict with keys like:
      'a' = ask [price, whole lot volume, lot volume]
      'b' = bid [price, whole lot volume, lot volume]
      'c' = last trade [price, lot volume]
    """
    pair = pair or config.PAIR
    result = _public_request(TICKER_PATH, {"pair": pair})
    return _first_result(result, "ticker", pair)


def get_last_trade_price(pair: str = None) -> Decimal:
    pair = pair or config.PAIR
    ticker = get_ticker(pair)
    try:
        raw = ticker["c"][0]
    except (KeyError, IndexError, TypeError) as e:
        raise ExchangeError(f"Ticker for {pair} has no last trade: {ticker}") from e
    return _decimal(raw, "last trade price")


def get_order_book(pair: str = None, count: int = 25) -> OrderBook:
    """
    Fetch the order book.  Buy side sorted best (highest) first, sell side
    best (lowest) first.

    Kraken rows are [price, volume, timestamp] strings.
    """
    pair = pair or config.PAIR
    result = _public_request(DEPTH_PATH, {"pair": pair, "count": count})
    book = _first_result(result, "order book", pair)

    def _side(rows) -> list:
        out = []
        for row in rows or []:
            try:
                out.append(MarketOrder(price=_decimal(row[0], "price"),
                                       quantity=_decimal(row[1], "volume")))
            except (IndexError, TypeError) as e:
                raise ExchangeError(f"Malformed order book row for {pair}: {row!r}") from e
        return out

    bids = sorted(_side(book.get("bids")), key=lambda o: o.price, reverse=True)
    asks = sorted(_side(book.get("asks")), key=lambda o: o.price)
    return OrderBook(market_id=pair, buy_orders=tuple(bids), sell_orders=tuple(asks))


# ===========================================================================
# PRIVATE API METHODS (require auth)
# ===========================================================================

def get_open_orders(pair: str = None) -> list:
    """
    Get our open orders.  Every open order on the account is returned,
    tagged with *pair*.
    Returns a list of exchange.OpenOrder.
    """
    pair = pair or config.PAIR
    if config.DRY_RUN:
        logger.debug("[DRY RUN] Returning empty open orders")
        return []

    result = _private_request(OPEN_ORDERS_PATH)
    open_orders = result.get("open") if isinstance(result, dict) else None
    if not isinstance(open_orders, dict):
        # Treating this as "nothing open" would look like a fill.
        raise ExchangeError(f"Unexpected OpenOrders response: {result!r}", ErrorKind.NON_RECOVERABLE)

    # Txids are unique, so no pair filter: descr.pair is the altname and
    # would never match a canonical PAIR like XXDGZUSD.
    orders = []
    for txid, info in open_orders.items():
        if not isinstance(info, dict):
            raise ExchangeError(f"Malformed open order {txid}: {info!r}", ErrorKind.NON_RECOVERABLE)
        descr = info.get("descr", {})
        side = OrderType.SELL if descr.get("type") == "sell" else OrderType.BUY
        orders.append(OpenOrder(
            id=txid,
            market_id=pair,
            type=side,
            price=_decimal(descr.get("price", "0"), "order price"),
            quantity=_decimal(info.get("vol", "0"), "order volume"),
            raw=info,
        ))
    return orders


def get_fee_rate(pair: str = None) -> Decimal:
    """
    Fee charged per order, as a fraction (0.0026 == 0.26%).

    Kraken reports the fee tier in percent from TradeVolume with fee-info.
    """
    pair = pair or config.PAIR
    if config.DRY_RUN:
        return Decimal(str(config.MAKER_FEE_PCT)) / 100

    result = _private_request(TRADE_VOLUME_PATH, {"pair": pair, "fee-info": "true"})
    fee_info = _first_result(result.get("fees", {}), "fee info", pair)
    try:
        pct = fee_info["fee"]
    except (KeyError, TypeError) as e:
        raise ExchangeError(f"Fee info for {pair} has no fee: {fee_info}") from e
    return _decimal(pct, "fee") / 100


def _format_number(value: Decimal) -> str:
    # Kraken rejects prices with more decimals than the pair allows, so
    # never send trailing zeros.
    return format(value.normalize(), "f")


def place_order(side: str, volume: Decimal, price: Decimal, pair: str = None,
                ordertype: str = "limit") -> str:
    """
    Place an order on Kraken.

    Args:
        side:      "buy" or "sell"
        volume:    Amount of base asset to buy/sell
        price:     Limit price
        pair:      Trading pair (defaults to config.PAIR)
        ordertype: "limit" (default) or "market"

    Returns:
        Transaction ID (txid) of the placed order, or a simulated ID in dry run.
    """
    pair = pair or config.PAIR

    if config.DRY_RUN:
        fake_txid = f"DRY-{side[0].upper()}-{int(time.time() * 1000)}"
        logger.info("[DRY RUN] Would place %s %s %s %s @ %s (%s)",
                    pair, ordertype, side, volume, price, volume * price)
        return fake_txid

    params = {
        "pair": pair,
        "type": side,
        "ordertype": ordertype,
        "volume": _format_number(volume),
    }
    if ordertype == "limit":
        params["price"] = _format_number(price)

    result = _private_request(ADD_ORDER_PATH, params)

    # Result contains {"descr": {...}, "txid": ["OXXXXX-XXXXX-XXXXXX"]}
    txids = result.get("txid", [])
    if not txids:
        raise ExchangeError(f"Order placed but no txid returned: {result}")
    txid = txids[0]
    logger.info("Placed %s %s %s @ %s -> %s", pair, side, volume, price, txid)
    return txid


class KrakenTradingApi:
    """exchange.TradingApi backed by the functions above."""

    def get_order_book(self, market_id: str) -> OrderBook:
        return get_order_book(market_id)

    def get_open_orders(self, market_id: str) -> list:
        return get_open_orders(market_id)

    def get_last_trade_price(self, market_id: str) -> Decimal:
        return get_last_trade_price(market_id)

    def get_buy_fee_rate(self, market_id: str) -> Decimal:
        return get_fee_rate(market_id)

    def get_sell_fee_rate(self, market_id: str) -> Decimal:
        # Kraken charges the same tier on both sides.
        return get_fee_rate(market_id)

    def submit_order(self, market_id: str, order_type: OrderType,
                     quantity: Decimal, price: Decimal) -> str:
        return place_order(order_type.value, quantity, price, pair=market_id)
