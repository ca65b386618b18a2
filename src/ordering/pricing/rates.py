"""Tax & shipping calculation over an ephemeral cart draft.

Pure computation: no repository or network access. A draft is assembled
from cart lines, a destination and a currency, then consumed once by the
active rate strategy to produce tax, shipping and a serialisable breakdown.

Money is integer minor units throughout. Every division goes through
``round_half_up`` exactly once per computed quantity, on subtotal-level
figures, never per line.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Mapping
from dataclasses import asdict, dataclass
from decimal import ROUND_HALF_UP, Decimal

from protean.exceptions import ValidationError

from ordering.pricing.settings import RateSettings

FREE_SHIPPING_THRESHOLD = "FREE_SHIPPING_THRESHOLD"


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


# ---------------------------------------------------------------------------
# Draft
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class Destination:
    country: str
    region: str | None = None
    postal_code: str | None = None


@dataclass(frozen=True)
class DraftItem:
    product_id: str
    unit_price_cents: int
    qty: int


@dataclass(frozen=True)
class RateDraft:
    subtotal_cents: int
    items: tuple[DraftItem, ...]
    destination: Destination
    currency: str | None = None

    @property
    def total_quantity(self) -> int:
        return sum(item.qty for item in self.items)


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class Adjustment:
    reason: str
    amount_cents: int | None = None


@dataclass(frozen=True)
class RateBreakdown:
    prices_include_tax: bool
    adjustments: tuple[Adjustment, ...] = ()
    tax_rate_applied: int | None = None  # basis points, 725 => 7.25%
    tax_rule: str | None = None
    shipping_rule: str | None = None
    base_shipping_cents: int = 0


@dataclass(frozen=True)
class RateResult:
    tax_cents: int
    shipping_cents: int
    breakdown: RateBreakdown

    def total_for(self, subtotal_cents: int, discount_cents: int = 0) -> int:
        """Grand total for an order priced with this result.

        Inclusive tax is already inside the subtotal and is not added again.
        """
        tax = 0 if self.breakdown.prices_include_tax else self.tax_cents
        return subtotal_cents - discount_cents + tax + self.shipping_cents

    def to_dict(self) -> dict:
        data = asdict(self)
        data["breakdown"]["adjustments"] = list(data["breakdown"]["adjustments"])
        return data


# ---------------------------------------------------------------------------
# Rule tables
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class TaxRule:
    label: str
    rate: Decimal
    match: Callable[[Destination], bool]


@dataclass(frozen=True)
class ShippingRule:
    label: str
    base_cents: int
    per_extra_item_cents: int
    match: Callable[[Destination], bool]


def _in(country: str, region: str | None = None) -> Callable[[Destination], bool]:
    def _match(destination: Destination) -> bool:
        if destination.country != country:
            return False
        return region is None or destination.region == region

    return _match


TAX_RULES: tuple[TaxRule, ...] = (
    TaxRule("US-CA", Decimal("0.0725"), _in("US", "CA")),
    TaxRule("US-NY", Decimal("0.08875"), _in("US", "NY")),
    TaxRule("UK-VAT", Decimal("0.20"), _in("GB")),
)

SHIPPING_RULES: tuple[ShippingRule, ...] = (
    ShippingRule("US_STANDARD", 599, 100, _in("US")),
    ShippingRule("UK_STANDARD", 499, 75, _in("GB")),
)


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------
class RateStrategy(ABC):
    @abstractmethod
    def calculate(self, draft: RateDraft) -> RateResult: ...


class RuleBasedRateStrategy(RateStrategy):
    """First-match lookup over the static tax and shipping tables."""

    def __init__(
        self,
        settings: RateSettings | None = None,
        tax_rules: tuple[TaxRule, ...] = TAX_RULES,
        shipping_rules: tuple[ShippingRule, ...] = SHIPPING_RULES,
    ) -> None:
        self.settings = settings or RateSettings.from_env()
        self.tax_rules = tax_rules
        self.shipping_rules = shipping_rules

    def calculate(self, draft: RateDraft) -> RateResult:
        tax_rule = next((r for r in self.tax_rules if r.match(draft.destination)), None)
        rate = tax_rule.rate if tax_rule else Decimal(0)

        prices_include_tax = self.settings.is_inclusive(draft.currency)
        subtotal = Decimal(draft.subtotal_cents)
        if prices_include_tax:
            tax_cents = draft.subtotal_cents - round_half_up(subtotal / (1 + rate))
        else:
            tax_cents = round_half_up(subtotal * rate)

        shipping_rule = next((r for r in self.shipping_rules if r.match(draft.destination)), None)
        base_cents = shipping_rule.base_cents if shipping_rule else 0
        shipping_cents = 0
        if shipping_rule and draft.total_quantity > 0:
            extra_items = draft.total_quantity - 1
            shipping_cents = base_cents + shipping_rule.per_extra_item_cents * extra_items

        adjustments = []
        if shipping_cents > 0 and draft.subtotal_cents >= self.settings.free_shipping_threshold_cents:
            adjustments.append(Adjustment(reason=FREE_SHIPPING_THRESHOLD, amount_cents=-shipping_cents))
            shipping_cents = 0

        return RateResult(
            tax_cents=tax_cents,
            shipping_cents=shipping_cents,
            breakdown=RateBreakdown(
                prices_include_tax=prices_include_tax,
                adjustments=tuple(adjustments),
                tax_rate_applied=round_half_up(rate * 10000) if tax_rule else None,
                tax_rule=tax_rule.label if tax_rule else None,
                shipping_rule=shipping_rule.label if shipping_rule else None,
                base_shipping_cents=base_cents,
            ),
        )


_current_strategy: RateStrategy | None = None


def get_rate_strategy() -> RateStrategy:
    """Return the active rate strategy. Defaults to the rule-based tables."""
    global _current_strategy
    if _current_strategy is None:
        _current_strategy = RuleBasedRateStrategy()
    return _current_strategy


def set_rate_strategy(strategy: RateStrategy) -> None:
    global _current_strategy
    _current_strategy = strategy


def reset_rate_strategy() -> None:
    global _current_strategy
    _current_strategy = None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def _line_value(line, *names):
    for name in names:
        if isinstance(line, Mapping):
            if name in line:
                return line[name]
        elif hasattr(line, name):
            return getattr(line, name)
    return None


def build_draft_from_cart(
    lines: Iterable,
    destination: Destination | Mapping,
    currency: str | None = None,
) -> RateDraft:
    """Assemble a rate draft from cart lines.

    Each line provides ``unit_price_cents`` (or ``price_cents_snapshot``),
    ``qty`` (or ``quantity``) and ``product_id``, either as a mapping or as
    attributes.
    """
    items = []
    for index, line in enumerate(lines):
        price = _line_value(line, "unit_price_cents", "price_cents_snapshot")
        qty = _line_value(line, "qty", "quantity")
        if price is None or int(price) < 0:
            raise ValidationError({"lines": [f"Line {index}: unit price must be a non-negative integer"]})
        if qty is None or int(qty) < 1:
            raise ValidationError({"lines": [f"Line {index}: quantity must be at least 1"]})
        items.append(
            DraftItem(
                product_id=str(_line_value(line, "product_id") or ""),
                unit_price_cents=int(price),
                qty=int(qty),
            )
        )

    if isinstance(destination, Mapping):
        destination = Destination(
            country=destination.get("country") or "",
            region=destination.get("region"),
            postal_code=destination.get("postal_code"),
        )
    if not destination.country:
        raise ValidationError({"destination": ["Country is required"]})
    destination = Destination(
        country=destination.country.strip().upper(),
        region=destination.region.strip().upper() if destination.region else None,
        postal_code=destination.postal_code,
    )

    return RateDraft(
        subtotal_cents=sum(item.unit_price_cents * item.qty for item in items),
        items=tuple(items),
        destination=destination,
        currency=currency.strip().upper() if currency else None,
    )


def calculate_rates(draft: RateDraft, settings: RateSettings | None = None) -> RateResult:
    """Compute tax, shipping and adjustments for a draft.

    Passing ``settings`` evaluates the rule tables against those settings
    instead of the active strategy.
    """
    strategy = RuleBasedRateStrategy(settings) if settings is not None else get_rate_strategy()
    return strategy.calculate(draft)
