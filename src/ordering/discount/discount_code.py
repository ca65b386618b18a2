"""DiscountCode aggregate — promotional codes with a usage counter.

Codes are stored upper-cased. A code is FIXED (an amount in minor units)
or PERCENT (whole percent of the subtotal). Whichever kind, the discount
granted never exceeds the subtotal it applies to.

``times_used`` is never written through the aggregate after creation; it
is moved by conditional updates in ``ordering.discount.usage``.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Integer, String

from ordering.domain import ordering


class DiscountKind(Enum):
    FIXED = "FIXED"
    PERCENT = "PERCENT"


@dataclass(frozen=True)
class DiscountCheck:
    valid: bool
    reason: str | None = None
    message: str | None = None


@dataclass(frozen=True)
class AppliedDiscount:
    """A discount resolved against a concrete subtotal."""

    code_id: str
    code: str
    kind: str
    value_cents: int | None
    percent: int | None
    amount_cents: int


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def _as_utc(value: datetime | None) -> datetime | None:
    # SQL providers hand timestamps back without tzinfo
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


@ordering.aggregate
class DiscountCode:
    code = String(required=True, max_length=50, unique=True)
    kind = String(required=True, choices=DiscountKind)
    value_cents = Integer(min_value=0)
    percent = Integer(min_value=0, max_value=100)
    min_subtotal_cents = Integer(min_value=0)
    usage_limit = Integer(min_value=0)
    times_used = Integer(default=0, min_value=0)
    starts_at = DateTime()
    ends_at = DateTime()
    active = Boolean(default=True)
    created_at = DateTime()

    @invariant.post
    def kind_must_carry_its_value(self):
        if self.kind == DiscountKind.FIXED.value and self.value_cents is None:
            raise ValidationError({"value_cents": ["A FIXED discount needs an amount"]})
        if self.kind == DiscountKind.PERCENT.value and not self.percent:
            raise ValidationError({"percent": ["A PERCENT discount needs a percentage between 1 and 100"]})

    @invariant.post
    def window_must_be_ordered(self):
        if self.starts_at and self.ends_at and _as_utc(self.ends_at) <= _as_utc(self.starts_at):
            raise ValidationError({"ends_at": ["Discount window must end after it starts"]})

    @classmethod
    def create(
        cls,
        code,
        kind,
        value_cents=None,
        percent=None,
        min_subtotal_cents=None,
        usage_limit=None,
        starts_at=None,
        ends_at=None,
    ):
        kind = kind.value if isinstance(kind, DiscountKind) else str(kind).upper()
        return cls(
            code=normalize_code(code),
            kind=kind,
            value_cents=value_cents,
            percent=percent,
            min_subtotal_cents=min_subtotal_cents,
            usage_limit=usage_limit,
            times_used=0,
            starts_at=starts_at,
            ends_at=ends_at,
            created_at=datetime.now(UTC),
        )

    # -------------------------------------------------------------------
    # Validity
    # -------------------------------------------------------------------
    def check(self, subtotal_cents: int, now: datetime | None = None) -> DiscountCheck:
        """Decide whether the code can be applied to an order right now."""
        now = now or datetime.now(UTC)
        if not self.active:
            return DiscountCheck(False, "inactive", f"Discount code {self.code} is no longer active")
        if self.starts_at and now < _as_utc(self.starts_at):
            return DiscountCheck(False, "not_started", f"Discount code {self.code} is not active yet")
        if self.ends_at and now > _as_utc(self.ends_at):
            return DiscountCheck(False, "expired", f"Discount code {self.code} has expired")
        if self.min_subtotal_cents and subtotal_cents < self.min_subtotal_cents:
            return DiscountCheck(
                False,
                "min_subtotal_not_met",
                f"Discount code {self.code} needs a subtotal of at least {self.min_subtotal_cents}",
            )
        if self.usage_limit is not None and self.times_used >= self.usage_limit:
            return DiscountCheck(False, "usage_limit_exceeded", f"Discount code {self.code} has been used up")
        return DiscountCheck(True)

    # -------------------------------------------------------------------
    # Arithmetic
    # -------------------------------------------------------------------
    def discount_for(self, subtotal_cents: int) -> int:
        """Discount in minor units, capped at the subtotal."""
        if subtotal_cents <= 0:
            return 0
        if self.kind == DiscountKind.PERCENT.value:
            # Percent discounts round down (floor), unlike tax which rounds half up
            amount = subtotal_cents * self.percent // 100
        else:
            amount = self.value_cents or 0
        return max(0, min(subtotal_cents, amount))

    def apply_to(self, subtotal_cents: int) -> AppliedDiscount:
        return AppliedDiscount(
            code_id=str(self.id),
            code=self.code,
            kind=self.kind,
            value_cents=self.value_cents,
            percent=self.percent,
            amount_cents=self.discount_for(subtotal_cents),
        )
