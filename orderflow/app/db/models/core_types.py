import enum
from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")


def money(value) -> Decimal:
    """Coerce to a Decimal rounded to cents."""
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


class OrderStatus(str, enum.Enum):
    pending_approval = "Pending Approval"
    approved = "Approved"
    rejected = "Rejected"
    sent_to_supplier = "Sent to Supplier"
    received = "Received"
    partially_received = "Partially Received"


# Money counted as "committed but not yet received"
COMMITTED_STATUSES = frozenset({OrderStatus.approved, OrderStatus.sent_to_supplier})
# Orders that triggered at least one ledger write
RECEIVED_STATUSES = frozenset({OrderStatus.received, OrderStatus.partially_received})

ORDER_TRANSITIONS = {
    OrderStatus.pending_approval: frozenset({OrderStatus.approved, OrderStatus.rejected}),
    OrderStatus.approved: frozenset({OrderStatus.sent_to_supplier}),
    OrderStatus.sent_to_supplier: frozenset({OrderStatus.received, OrderStatus.partially_received}),
    OrderStatus.received: frozenset(),
    OrderStatus.partially_received: frozenset(),
    OrderStatus.rejected: frozenset(),
}


class LineType(str, enum.Enum):
    material = "Material"
    service = "Service"


class LedgerEntryType(str, enum.Enum):
    reception = "reception"
    migrated = "migrated"


class LocationType(str, enum.Enum):
    physical = "physical"
    mobile = "mobile"


class ProjectStatus(str, enum.Enum):
    planned = "Planned"
    in_progress = "In Progress"
    completed = "Completed"


class TravelReportStatus(str, enum.Enum):
    pending_approval = "Pending Approval"
    approved = "Approved"
    rejected = "Rejected"
    cancelled = "Cancelled"
