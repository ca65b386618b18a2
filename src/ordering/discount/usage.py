"""Discount usage counter — conditional increments gated on the usage limit.

The counter only moves through single conditional updates:

    UPDATE discount_code SET times_used = times_used + 1
     WHERE id = :id AND times_used < usage_limit

so two orders racing for the last use of a code cannot both count it, and
an order never fails while uses remain.
"""

from dataclasses import dataclass

import structlog
from protean.utils.globals import current_domain

from ordering.discount.discount_code import DiscountCode, normalize_code
from ordering.utils.db import conditional_update

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class UsageResult:
    success: bool
    times_used: int | None = None
    reason: str | None = None


def find_discount_code(code: str) -> DiscountCode | None:
    repo = current_domain.repository_for(DiscountCode)
    results = repo._dao.query.filter(code=normalize_code(code)).all()
    return results.first if results.items else None


def _below_limit(code):
    return code.times_used < code.usage_limit


def _above_zero(code):
    return code.times_used > 0


def _moved_by(delta: int):
    return lambda code: {"times_used": code.times_used + delta}


def increment_usage(code_id) -> UsageResult:
    """Count one use of the code unless that would pass its usage limit.

    Raises ``ObjectNotFoundError`` when the code does not exist.
    """
    dao = current_domain.repository_for(DiscountCode)._dao
    code = dao.get(code_id)
    limit = _below_limit if code.usage_limit is not None else None
    if not conditional_update(DiscountCode, code_id, limit, _moved_by(1)):
        logger.warning(
            "Discount usage limit reached",
            code_id=str(code_id),
            code=code.code,
            usage_limit=code.usage_limit,
        )
        return UsageResult(False, code.usage_limit, "usage_limit_exceeded")

    times_used = dao.get(code_id).times_used
    logger.info("Discount usage counted", code_id=str(code_id), times_used=times_used)
    return UsageResult(True, times_used)


def decrement_usage(code_id) -> UsageResult:
    """Release one counted use. A counter already at zero stays at zero."""
    dao = current_domain.repository_for(DiscountCode)._dao
    dao.get(code_id)  # raises ObjectNotFoundError for unknown codes
    if not conditional_update(DiscountCode, code_id, _above_zero, _moved_by(-1)):
        logger.warning("Discount usage already at zero", code_id=str(code_id))
        return UsageResult(True, 0)

    times_used = dao.get(code_id).times_used
    logger.info("Discount usage released", code_id=str(code_id), times_used=times_used)
    return UsageResult(True, times_used)
