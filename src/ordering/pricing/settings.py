"""Static configuration for the tax & shipping calculator.

Prices in the base currency are always tax-inclusive. Further currencies can
be made inclusive through ``TAX_INCLUSIVE_CURRENCIES`` (comma or space
separated). Everything else is priced tax-exclusive.
"""

import os
import re
from dataclasses import dataclass, field

BASE_CURRENCY = "GBP"
DEFAULT_FREE_SHIPPING_THRESHOLD_CENTS = 10000


def _parse_currency_list(raw: str | None) -> frozenset[str]:
    return frozenset(code.strip().upper() for code in re.split(r"[\s,]+", raw or "") if code.strip())


@dataclass(frozen=True)
class RateSettings:
    """Inclusive-currency allow-list and free shipping threshold."""

    inclusive_currencies: frozenset[str] = field(default_factory=frozenset)
    free_shipping_threshold_cents: int = DEFAULT_FREE_SHIPPING_THRESHOLD_CENTS
    base_currency: str = BASE_CURRENCY

    @classmethod
    def from_env(cls) -> "RateSettings":
        threshold = os.getenv("FREE_SHIPPING_THRESHOLD_CENTS")
        return cls(
            inclusive_currencies=_parse_currency_list(os.getenv("TAX_INCLUSIVE_CURRENCIES")),
            free_shipping_threshold_cents=int(threshold) if threshold else DEFAULT_FREE_SHIPPING_THRESHOLD_CENTS,
        )

    def is_inclusive(self, currency: str | None) -> bool:
        """Return True when prices in ``currency`` already contain tax."""
        if not currency:
            return False
        code = currency.strip().upper()
        return code == self.base_currency or code in self.inclusive_currencies


def is_inclusive(currency: str | None, settings: RateSettings | None = None) -> bool:
    return (settings or RateSettings.from_env()).is_inclusive(currency)
