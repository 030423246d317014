"""
Exchange rate resolution.

Rates are looked up in a process-scoped cache, then in the ``exchange_rates``
table, then fetched from the external provider and persisted. When no real
rate is available the resolver returns an explicit estimated quote instead of
silently pretending the currencies are at par.
"""
import threading
import time
from datetime import date
from typing import Callable, Dict, Optional, Protocol, Tuple

from core.config import get_settings
from core.db import Database, get_db, new_id, utc_now
from core.exceptions import ExchangeRateError, ValidationError
from core.logger import setup_logger
from core.schema import RateQuote

logger = setup_logger(__name__)

RateKey = Tuple[str, str, str]

SUPPORTED_CURRENCIES = (
    "USD", "EUR", "GBP", "JPY", "THB", "MMK", "SGD", "AUD", "CAD", "CHF", "CNY", "INR",
)


class RateProvider(Protocol):
    def fetch_rates(self, base_currency: str) -> Dict[str, float]:
        ...


class RateCache:
    """
    Thread-safe in-memory cache of rate quotes keyed by (from, to, date).

    Entries expire after ``ttl_seconds`` and are pruned on every write.
    ``key_lock`` hands out one lock per key so concurrent misses for the same
    pair wait for a single fetch; ``release_key_lock`` drops it afterwards.
    """

    def __init__(self, ttl_seconds: int = 86400, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[RateKey, Tuple[RateQuote, float]] = {}
        self._key_locks: Dict[RateKey, threading.Lock] = {}
        self._lock = threading.Lock()

    def get(self, key: RateKey) -> Optional[RateQuote]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            quote, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return quote

    def set(self, key: RateKey, quote: RateQuote) -> None:
        with self._lock:
            now = self._clock()
            expired = [k for k, (_, expires_at) in self._entries.items() if now >= expires_at]
            for k in expired:
                del self._entries[k]
            self._entries[key] = (quote, now + self.ttl_seconds)

    def key_lock(self, key: RateKey) -> threading.Lock:
        with self._lock:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._key_locks[key] = lock
            return lock

    def release_key_lock(self, key: RateKey) -> None:
        with self._lock:
            self._key_locks.pop(key, None)

    def pending_keys(self) -> int:
        with self._lock:
            return len(self._key_locks)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._key_locks.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def _rate_key(from_currency: str, to_currency: str, on_date: date) -> RateKey:
    return (from_currency, to_currency, on_date.isoformat())


class ExchangeRateResolver:
    """Resolve conversion rates: cache, then database, then provider."""

    def __init__(
        self,
        db: Database,
        provider: RateProvider,
        cache: Optional[RateCache] = None,
    ):
        self.db = db
        self.provider = provider
        self.cache = cache if cache is not None else RateCache()

    def resolve(self, from_currency: str, to_currency: str, on_date: date) -> RateQuote:
        """
        Resolve the rate converting ``from_currency`` into ``to_currency``.

        Args:
            from_currency: Source ISO currency code
            to_currency: Target ISO currency code
            on_date: Calendar day the rate applies to

        Returns:
            Rate quote with its source; ``estimated`` is set when the provider
            could not supply the rate
        """
        from_currency = from_currency.strip().upper()
        to_currency = to_currency.strip().upper()

        if from_currency == to_currency:
            return RateQuote(
                from_currency=from_currency,
                to_currency=to_currency,
                date=on_date,
                rate=1.0,
                source="identity",
            )

        key = _rate_key(from_currency, to_currency, on_date)
        cached = self.cache.get(key)
        if cached is not None:
            return cached.model_copy(update={"source": "cache"})

        try:
            with self.cache.key_lock(key):
                return self._resolve_miss(key, from_currency, to_currency, on_date)
        finally:
            self.cache.release_key_lock(key)

    def _resolve_miss(self, key: RateKey, from_currency: str, to_currency: str, on_date: date) -> RateQuote:
        # Another thread may have filled the cache while we waited
        cached = self.cache.get(key)
        if cached is not None:
            return cached.model_copy(update={"source": "cache"})

        stored = self._load_stored_rate(from_currency, to_currency, on_date)
        if stored is not None:
            self.cache.set(key, stored)
            return stored

        try:
            rates = self.provider.fetch_rates(from_currency)
        except ExchangeRateError as e:
            logger.warning(
                f"Rate provider failed for {from_currency}->{to_currency} on {on_date}: {e.message}"
            )
            return self._estimated(from_currency, to_currency, on_date)

        rate = rates.get(to_currency)
        if not isinstance(rate, (int, float)) or isinstance(rate, bool) or rate <= 0:
            logger.warning(f"Rate provider returned no usable {to_currency} rate for base {from_currency}")
            return self._estimated(from_currency, to_currency, on_date)

        quote = RateQuote(
            from_currency=from_currency,
            to_currency=to_currency,
            date=on_date,
            rate=float(rate),
            source="provider",
        )
        self._store_rate(quote)
        self.cache.set(key, quote)
        logger.info(f"Fetched rate {from_currency}->{to_currency} on {on_date}: {quote.rate}")
        return quote

    def get_exchange_rate(self, from_currency: str, to_currency: str, on_date: date) -> float:
        """Resolve and return only the numeric rate."""
        return self.resolve(from_currency, to_currency, on_date).rate

    def _load_stored_rate(self, from_currency: str, to_currency: str, on_date: date) -> Optional[RateQuote]:
        row = self.db.fetch_one(
            "SELECT rate FROM exchange_rates WHERE from_currency = ? AND to_currency = ? AND date = ?",
            (from_currency, to_currency, on_date.isoformat())
        )
        if row is None:
            return None
        return RateQuote(
            from_currency=from_currency,
            to_currency=to_currency,
            date=on_date,
            rate=row["rate"],
            source="database",
        )

    def _store_rate(self, quote: RateQuote) -> None:
        # The unique (from, to, date) constraint makes a concurrent insert a no-op
        inserted = self.db.insert(
            "exchange_rates",
            {
                "id": new_id(),
                "from_currency": quote.from_currency,
                "to_currency": quote.to_currency,
                "rate": quote.rate,
                "date": quote.date.isoformat(),
                "created_at": utc_now(),
            },
            or_ignore=True,
        )
        if not inserted:
            logger.debug(f"Rate {quote.from_currency}->{quote.to_currency} on {quote.date} already stored")

    @staticmethod
    def _estimated(from_currency: str, to_currency: str, on_date: date) -> RateQuote:
        return RateQuote(
            from_currency=from_currency,
            to_currency=to_currency,
            date=on_date,
            rate=1.0,
            source="fallback",
            estimated=True,
        )


def convert_amount(
    amount: float,
    from_currency: str,
    to_currency: str,
    rates: Dict[str, float],
) -> float:
    """
    Convert an amount using a rate table anchored at a single base currency.

    Args:
        amount: Amount in ``from_currency``
        from_currency: Source currency code
        to_currency: Target currency code
        rates: Units of each currency per one unit of the table's base

    Returns:
        Converted amount

    Raises:
        ValidationError: If either currency is missing from the table
    """
    if from_currency == to_currency:
        return amount
    missing = [code for code in (from_currency, to_currency) if not rates.get(code)]
    if missing:
        raise ValidationError(
            "Currency not available in rate table",
            details={"missing": missing}
        )
    return amount / rates[from_currency] * rates[to_currency]


# Singleton resolver instance
_resolver: Optional[ExchangeRateResolver] = None


def get_resolver() -> ExchangeRateResolver:
    """
    Get or create the process-wide exchange rate resolver.

    Returns:
        Resolver backed by the configured database and rate provider
    """
    global _resolver
    if _resolver is None:
        from services.rate_provider import get_rate_provider

        settings = get_settings()
        _resolver = ExchangeRateResolver(
            db=get_db(),
            provider=get_rate_provider(),
            cache=RateCache(ttl_seconds=settings.exchange_rate_cache_ttl),
        )
    return _resolver


def reset_resolver() -> None:
    """Drop the cached resolver (useful for testing)."""
    global _resolver
    _resolver = None
