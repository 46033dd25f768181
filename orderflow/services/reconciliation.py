"""
Reconciliation & repair jobs.

Operator-triggered maintenance over the whole store. Every job:
    - is idempotent: a second run right after the first changes nothing
    - commits in chunks of ``batch_size`` rows; partial progress is safe
    - reports what it did

Order of a full run matters: project references are normalised and cost
fields filled before missing rows are added and aggregates recomputed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, time, timezone
from decimal import Decimal
from typing import Iterator, Sequence, TypeVar

from sqlalchemy import select, func, or_, and_
from sqlalchemy.orm import Session

from orderflow.app.config import settings
from orderflow.app.db.base import new_id
from orderflow.app.db.models.core_types import (
    COMMITTED_STATUSES,
    RECEIVED_STATUSES,
    LedgerEntryType,
    LineType,
    OrderStatus,
    TravelReportStatus,
    money,
)
from orderflow.app.db.models.models_v1 import (
    InventoryHistoryEntry,
    Project,
    PurchaseOrder,
    TravelReport,
)
from orderflow.services.aggregates import ProjectSums, read_aggregates, recompute
from orderflow.services.errors import DataIntegrityWarning
from orderflow.services.ledger import sums_for_all_projects
from orderflow.services.projects import project_name_map

logger = logging.getLogger(__name__)

MIGRATION_SOURCE = "ledger-backfill"

T = TypeVar("T")


def _chunks(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    size = max(1, int(size))
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _batch_size(batch_size: int | None) -> int:
    return batch_size or settings.repair_batch_size


# ---------- Reports ----------
@dataclass
class NormalizationReport:
    scanned: int = 0
    corrected: int = 0


@dataclass
class CostBackfillReport:
    unit_cost_filled: int = 0
    total_price_filled: int = 0


@dataclass
class LedgerBackfillReport:
    orders_scanned: int = 0
    created: int = 0
    skipped_existing: int = 0


@dataclass
class AggregateReport:
    projects: int = 0
    changed: int = 0


@dataclass
class DiscrepancyReport:
    projects_checked: int = 0
    flagged: list[DataIntegrityWarning] = field(default_factory=list)


@dataclass
class FullRepairReport:
    normalization: NormalizationReport
    cost_backfill: CostBackfillReport
    ledger_backfill: LedgerBackfillReport
    aggregates: AggregateReport
    discrepancies: DiscrepancyReport


# ---------- 1. project references ----------
def normalize_project_ids(db: Session, *, batch_size: int | None = None) -> NormalizationReport:
    """Rewrite ledger rows whose project reference is a project name into the project id."""
    report = NormalizationReport()
    name_to_id = project_name_map(db)
    report.scanned = db.execute(select(func.count(InventoryHistoryEntry.id))).scalar_one()

    # A name that is also some project's id is already a valid reference
    known_ids = set(name_to_id.values())
    names = [name for name in name_to_id if name not in known_ids]
    if not names:
        return report

    entry_ids = db.execute(
        select(InventoryHistoryEntry.id).where(InventoryHistoryEntry.project_id.in_(names))
    ).scalars().all()

    for chunk in _chunks(entry_ids, _batch_size(batch_size)):
        rows = db.execute(select(InventoryHistoryEntry).where(InventoryHistoryEntry.id.in_(chunk))).scalars().all()
        for row in rows:
            name = row.project_id
            row.project_id = name_to_id[name]
            if not row.project_name:
                row.project_name = name
            report.corrected += 1
        db.commit()

    logger.info(f"Project reference normalisation: {report.corrected} of {report.scanned} ledger rows corrected")
    return report


# ---------- 2. cost fields ----------
def backfill_cost_fields(db: Session, *, batch_size: int | None = None) -> CostBackfillReport:
    """Copy legacy unit_price into unit_cost where missing; fill a missing total_price."""
    report = CostBackfillReport()
    entry_ids = db.execute(
        select(InventoryHistoryEntry.id).where(
            or_(
                and_(InventoryHistoryEntry.unit_cost.is_(None), InventoryHistoryEntry.unit_price.is_not(None)),
                InventoryHistoryEntry.total_price.is_(None),
            )
        )
    ).scalars().all()

    for chunk in _chunks(entry_ids, _batch_size(batch_size)):
        rows = db.execute(select(InventoryHistoryEntry).where(InventoryHistoryEntry.id.in_(chunk))).scalars().all()
        for row in rows:
            if row.unit_cost is None and row.unit_price is not None:
                row.unit_cost = row.unit_price
                report.unit_cost_filled += 1
            if row.total_price is None and row.unit_cost is not None:
                row.total_price = money(Decimal(row.quantity) * money(row.unit_cost))
                report.total_price_filled += 1
        db.commit()

    logger.info(
        f"Cost backfill: unit_cost filled on {report.unit_cost_filled} rows, "
        f"total_price on {report.total_price_filled} rows"
    )
    return report


# ---------- 3. missing ledger rows ----------
def _has_reception_record(order: PurchaseOrder) -> bool:
    return any(ln.received_quantity is not None for ln in order.lines)


def _received_quantities(order: PurchaseOrder) -> dict[str, int]:
    """
    Quantity actually received per item, as recorded on the lines at
    reception. Legacy orders have no such record: a received order got
    every line in full, a partially received one whatever its backorders
    do not still carry.
    """
    if _has_reception_record(order):
        received: dict[str, int] = {}
        for ln in order.lines:
            if ln.item_id:
                received[ln.item_id] = received.get(ln.item_id, 0) + (ln.received_quantity or 0)
        return received

    received = {ln.item_id: ln.quantity for ln in order.lines if ln.item_id}
    if order.status == OrderStatus.partially_received:
        for child in order.backorders:
            for ln in child.lines:
                if ln.item_id in received:
                    received[ln.item_id] -= ln.quantity
    return received


def _event_date(order: PurchaseOrder) -> datetime:
    if order.received_at:
        return order.received_at
    return datetime.combine(order.order_date, time.min, tzinfo=timezone.utc)


def backfill_missing_ledger_rows(db: Session, *, batch_size: int | None = None) -> LedgerBackfillReport:
    """
    Every received order should have one ledger row per material item.
    Creates the missing ones, stamped as migrated.
    """
    report = LedgerBackfillReport()
    name_to_id = project_name_map(db)
    id_to_name = {pid: name for name, pid in name_to_id.items()}

    # computed once per run, then kept current as rows are added
    existing_keys = {
        (order_id, item_id)
        for order_id, item_id in db.execute(
            select(InventoryHistoryEntry.purchase_order_id, InventoryHistoryEntry.item_id)
        ).all()
    }

    order_ids = db.execute(
        select(PurchaseOrder.id)
        .where(PurchaseOrder.status.in_(RECEIVED_STATUSES))
        .order_by(PurchaseOrder.order_number)
    ).scalars().all()

    for chunk in _chunks(order_ids, _batch_size(batch_size)):
        orders = db.execute(select(PurchaseOrder).where(PurchaseOrder.id.in_(chunk))).scalars().all()
        for order in orders:
            report.orders_scanned += 1
            project_id = order.project_id
            if project_id in name_to_id and project_id not in id_to_name:
                project_id = name_to_id[project_id]
            project_name = order.project_name or id_to_name.get(project_id) or project_id
            received = _received_quantities(order)

            for ln in order.lines:
                if not ln.item_id or ln.line_type != LineType.material:
                    continue
                key = (order.id, ln.item_id)
                if key in existing_keys:
                    report.skipped_existing += 1
                    continue
                qty = received.get(ln.item_id, 0)
                if qty <= 0:
                    continue

                unit_cost = money(ln.unit_price)
                db.add(
                    InventoryHistoryEntry(
                        id=new_id(),
                        item_id=ln.item_id,
                        item_sku=ln.item_sku,
                        item_name=ln.item_name,
                        supplier_id=order.supplier_id,
                        supplier_name=order.supplier_name,
                        purchase_order_id=order.id,
                        order_number=order.order_number,
                        quantity=qty,
                        unit_cost=unit_cost,
                        unit_price=unit_cost,
                        total_price=money(Decimal(qty) * unit_cost),
                        unit=ln.unit,
                        event_date=_event_date(order),
                        project_id=project_id,
                        project_name=project_name,
                        location_id=order.received_location_id or order.delivery_location_id,
                        entry_type=LedgerEntryType.migrated,
                        migration_source=MIGRATION_SOURCE,
                    )
                )
                existing_keys.add(key)
                report.created += 1
        db.commit()

    logger.info(
        f"Ledger backfill: {report.orders_scanned} received orders, {report.created} rows created, "
        f"{report.skipped_existing} already present"
    )
    return report


# ---------- 4. aggregates ----------
def _grouped_totals(db: Session, amount_col, key_col, *conditions) -> dict[str, Decimal]:
    rows = db.execute(
        select(key_col, func.coalesce(func.sum(amount_col), 0))
        .where(key_col.is_not(None), *conditions)
        .group_by(key_col)
    ).all()
    return {key: money(total) for key, total in rows}


def compute_project_sums(db: Session) -> dict[str, ProjectSums]:
    received = sums_for_all_projects(db)
    committed = _grouped_totals(
        db, PurchaseOrder.total, PurchaseOrder.project_id,
        PurchaseOrder.status.in_(COMMITTED_STATUSES),
    )
    travel_approved = _grouped_totals(
        db, TravelReport.total, TravelReport.project_id,
        TravelReport.status == TravelReportStatus.approved,
    )
    travel_pending = _grouped_totals(
        db, TravelReport.total, TravelReport.project_id,
        TravelReport.status == TravelReportStatus.pending_approval,
    )

    sums: dict[str, ProjectSums] = {}
    for pid in db.execute(select(Project.id)).scalars().all():
        sums[pid] = ProjectSums(
            materials_received=received.get(pid, Decimal("0.00")),
            materials_committed=committed.get(pid, Decimal("0.00")),
            travel_approved=travel_approved.get(pid, Decimal("0.00")),
            travel_pending=travel_pending.get(pid, Decimal("0.00")),
        )
    return sums


def recompute_aggregates(db: Session, *, batch_size: int | None = None) -> AggregateReport:
    """Overwrite every project's four aggregates from the source records."""
    report = AggregateReport()
    sums = compute_project_sums(db)
    project_ids = sorted(sums)

    for chunk in _chunks(project_ids, _batch_size(batch_size)):
        for pid in chunk:
            project = db.get(Project, pid)
            if project is None:
                continue
            before = read_aggregates(project)
            recompute(db, pid, sums[pid])
            report.projects += 1
            if before != sums[pid]:
                report.changed += 1
                logger.info(f"Project {project.name}: aggregates {before} -> {sums[pid]}")
        db.commit()

    logger.info(f"Aggregate recomputation: {report.projects} projects, {report.changed} changed")
    return report


# ---------- 5. discrepancies ----------
def _received_value(order: PurchaseOrder) -> Decimal:
    """Value of what the order actually received, not of what it asked for."""
    if _has_reception_record(order):
        return money(sum(
            (Decimal(ln.received_quantity or 0) * money(ln.unit_price) for ln in order.lines),
            Decimal("0"),
        ))
    if order.status == OrderStatus.partially_received:
        return money(order.total - sum((child.total for child in order.backorders), Decimal("0")))
    return money(order.total)


def discrepancy_report(
    db: Session,
    *,
    amount_threshold=None,
    percent_threshold=None,
) -> DiscrepancyReport:
    """
    Compare the value received orders actually took in with ledger sums
    per project.
    A project is flagged only when the difference exceeds both thresholds.
    Nothing is corrected here.
    """
    amount_threshold = money(settings.discrepancy_amount_threshold if amount_threshold is None else amount_threshold)
    percent_threshold = Decimal(
        str(settings.discrepancy_percent_threshold if percent_threshold is None else percent_threshold)
    )

    orders_received: dict[str, Decimal] = {}
    received_orders = db.execute(
        select(PurchaseOrder).where(PurchaseOrder.status.in_(RECEIVED_STATUSES))
    ).scalars()
    for order in received_orders:
        if order.project_id is None:
            continue
        orders_received[order.project_id] = (
            orders_received.get(order.project_id, Decimal("0.00")) + _received_value(order)
        )
    ledger = sums_for_all_projects(db)
    names = {pid: name for pid, name in db.execute(select(Project.id, Project.name)).all()}

    report = DiscrepancyReport()
    for pid in sorted(set(orders_received) | set(ledger)):
        ordered_total = orders_received.get(pid, Decimal("0.00"))
        ledger_total = ledger.get(pid, Decimal("0.00"))
        report.projects_checked += 1

        diff = ordered_total - ledger_total
        if ordered_total > 0:
            pct = (diff / ordered_total * 100).quantize(Decimal("0.1"))
        else:
            pct = Decimal("100.0") if diff else Decimal("0.0")

        if abs(diff) > amount_threshold and abs(pct) > percent_threshold:
            warning = DataIntegrityWarning(
                project_id=pid,
                project_name=names.get(pid),
                orders_received=ordered_total,
                ledger_total=ledger_total,
                difference=diff,
                difference_percent=pct,
            )
            report.flagged.append(warning)
            logger.warning(f"Ledger discrepancy: {warning}")

    report.flagged.sort(key=lambda w: w.difference, reverse=True)
    logger.info(f"Discrepancy report: {len(report.flagged)} of {report.projects_checked} projects flagged")
    return report


def run_full_repair(db: Session, *, batch_size: int | None = None) -> FullRepairReport:
    return FullRepairReport(
        normalization=normalize_project_ids(db, batch_size=batch_size),
        cost_backfill=backfill_cost_fields(db, batch_size=batch_size),
        ledger_backfill=backfill_missing_ledger_rows(db, batch_size=batch_size),
        aggregates=recompute_aggregates(db, batch_size=batch_size),
        discrepancies=discrepancy_report(db),
    )
