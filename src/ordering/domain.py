"""Ordering bounded context — order lifecycle and inventory consistency.

Handles the order status machine (guarded transitions with side effects),
the stock ledger for size variants, tax & shipping rate calculation,
discount code usage, the payment collaborator, and the append-only
order event log. Everything lives in one domain so that a status change
and its side effects commit in a single Unit of Work.
"""

import structlog
from protean.domain import Domain

ordering = Domain(name="ordering")

logger = structlog.get_logger(__name__)
