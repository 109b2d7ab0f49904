"""Currency conversion into the company currency."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from pathlib import Path
from typing import Protocol

import yaml

from .exceptions import DependencyError

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
DEFAULT_RATE_TTL_SECONDS = 24 * 60 * 60


class CurrencyConverter(Protocol):
    def convert(self, amount: Decimal, from_currency: str, to_currency: str) -> Decimal: ...


class RateProvider(Protocol):
    """Source of exchange rates quoted against a base currency."""

    def fetch_rates(self, base_currency: str) -> Mapping[str, Decimal]: ...


def _coerce_rate(value: object) -> Decimal:
    try:
        rate = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise ValueError(f"Invalid exchange rate {value!r}") from exc
    if rate <= 0:
        raise ValueError(f"Exchange rate must be positive, got {rate}")
    return rate


class StaticRateProvider:
    """Fixed rate table, e.g. from configuration.

    ``rates`` maps a base currency to ``{quote_currency: rate}``. Inverse
    rates are derived when only the opposite direction is configured.
    """

    def __init__(self, rates: Mapping[str, Mapping[str, object]]) -> None:
        self._rates: dict[str, dict[str, Decimal]] = {
            base.upper(): {quote.upper(): _coerce_rate(rate) for quote, rate in table.items()}
            for base, table in rates.items()
        }

    @classmethod
    def from_yaml(cls, content: str) -> StaticRateProvider:
        data = yaml.safe_load(content) or {}
        rates = data.get("rates")
        if not isinstance(rates, Mapping):
            raise ValueError("Rate configuration must include a 'rates' mapping")
        return cls(rates)

    @classmethod
    def from_file(cls, path: str | Path) -> StaticRateProvider:
        return cls.from_yaml(Path(path).read_text(encoding="utf-8"))

    def fetch_rates(self, base_currency: str) -> Mapping[str, Decimal]:
        base = base_currency.upper()
        table = dict(self._rates.get(base, {}))
        for other_base, other_table in self._rates.items():
            if other_base != base and base in other_table and other_base not in table:
                table[other_base] = Decimal(1) / other_table[base]
        if not table:
            raise LookupError(f"No exchange rates configured for {base}")
        return table


@dataclass
class RateCache:
    """Exchange-rate tables cached per base currency for a fixed TTL."""

    ttl_seconds: float = DEFAULT_RATE_TTL_SECONDS
    clock: Callable[[], float] = time.monotonic
    _entries: dict[str, tuple[float, Mapping[str, Decimal]]] = field(
        default_factory=dict, init=False, repr=False
    )

    def get(self, base_currency: str) -> Mapping[str, Decimal] | None:
        entry = self._entries.get(base_currency)
        if entry is None:
            return None
        stored_at, rates = entry
        if self.clock() - stored_at >= self.ttl_seconds:
            del self._entries[base_currency]
            return None
        return rates

    def put(self, base_currency: str, rates: Mapping[str, Decimal]) -> None:
        self._entries[base_currency] = (self.clock(), dict(rates))


class RateTableConverter:
    """Convert amounts using rate tables from a provider, cached with a TTL."""

    def __init__(self, provider: RateProvider, cache: RateCache | None = None) -> None:
        self.provider = provider
        self.cache = cache if cache is not None else RateCache()

    def convert(self, amount: Decimal, from_currency: str, to_currency: str) -> Decimal:
        source = from_currency.strip().upper()
        target = to_currency.strip().upper()
        if source == target:
            return Decimal(amount)

        rates = self._rates_for(source)
        rate = rates.get(target)
        if rate is None:
            raise DependencyError(f"Currency {target} not found in {source} rates")
        converted = (Decimal(amount) * Decimal(rate)).quantize(CENTS, rounding=ROUND_HALF_UP)
        logger.debug("Converted %s %s to %s %s at %s", amount, source, converted, target, rate)
        return converted

    def _rates_for(self, base: str) -> Mapping[str, Decimal]:
        cached = self.cache.get(base)
        if cached is not None:
            return cached
        try:
            rates = self.provider.fetch_rates(base)
        except DependencyError:
            raise
        except Exception as exc:
            logger.warning("Exchange rates for %s unavailable: %s", base, exc)
            raise DependencyError(f"Failed to fetch exchange rates for {base}") from exc
        self.cache.put(base, rates)
        return rates
