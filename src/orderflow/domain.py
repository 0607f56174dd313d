"""Orderflow bounded context: order lifecycle, inventory ledger and payment reconciliation.

Orders, stock records, payment events, approvals and scheduled jobs live in
one domain so that a status change and the stock movements it requires are
committed in the same unit of work.
"""

import structlog
from protean.domain import Domain

orderflow = Domain(name="orderflow")

logger = structlog.get_logger(__name__)
