from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import delete, func, select

from orderflow.app.db.models.core_types import LedgerEntryType, OrderStatus
from orderflow.app.db.models.models_v1 import InventoryHistoryEntry, Project
from orderflow.app.schemas.purchase_order import OrderLineCreate
from orderflow.app.schemas.reception import ReceivedLine
from orderflow.services import reconciliation, travel
from orderflow.services.receptions import receive_order
from orderflow.services.transactions import run_transaction


def _legacy_row(item, **kw):
    values = dict(
        item_id=item.id,
        item_name=item.name,
        purchase_order_id="legacy-po",
        quantity=2,
        unit_price=Decimal("5.00"),
        event_date=datetime(2024, 11, 3, tzinfo=timezone.utc),
    )
    values.update(kw)
    return InventoryHistoryEntry(**values)


def _received_without_ledger(db, make_order):
    order = make_order()
    order.status = OrderStatus.received
    db.commit()
    return order


def _max_rows_per_key(db) -> int:
    counts = db.execute(
        select(func.count(InventoryHistoryEntry.id)).group_by(
            InventoryHistoryEntry.purchase_order_id, InventoryHistoryEntry.item_id
        )
    ).scalars().all()
    return max(counts, default=0)


def _snapshot(db):
    db.expire_all()
    rows = db.execute(
        select(
            InventoryHistoryEntry.purchase_order_id,
            InventoryHistoryEntry.item_id,
            InventoryHistoryEntry.quantity,
            InventoryHistoryEntry.unit_cost,
            InventoryHistoryEntry.total_price,
            InventoryHistoryEntry.project_id,
        ).order_by(InventoryHistoryEntry.purchase_order_id, InventoryHistoryEntry.item_id)
    ).all()
    projects = db.execute(
        select(
            Project.id,
            Project.materials_received,
            Project.materials_committed,
            Project.travel_approved,
            Project.travel_pending,
        ).order_by(Project.id)
    ).all()
    return rows, projects


# ---------- 1. project references ----------
def test_normalize_rewrites_project_names(db_session, project, item):
    db_session.add(_legacy_row(item, project_id=project.name, project_name=None))
    db_session.add(_legacy_row(item, purchase_order_id="other-po", project_id=project.id))
    db_session.commit()

    first = reconciliation.normalize_project_ids(db_session, batch_size=1)
    second = reconciliation.normalize_project_ids(db_session)

    assert (first.scanned, first.corrected) == (2, 1)
    assert second.corrected == 0
    ids = set(db_session.execute(select(InventoryHistoryEntry.project_id)).scalars())
    assert ids == {project.id}
    names = set(db_session.execute(select(InventoryHistoryEntry.project_name)).scalars())
    assert project.name in names


# ---------- 2. cost fields ----------
def test_backfill_cost_fields(db_session, project, item):
    db_session.add(_legacy_row(item, project_id=project.id, quantity=3, unit_price=Decimal("2.00")))
    db_session.commit()

    report = reconciliation.backfill_cost_fields(db_session)
    again = reconciliation.backfill_cost_fields(db_session)

    row = db_session.execute(select(InventoryHistoryEntry)).scalar_one()
    assert (row.unit_cost, row.total_price) == (Decimal("2.00"), Decimal("6.00"))
    assert (report.unit_cost_filled, report.total_price_filled) == (1, 1)
    assert (again.unit_cost_filled, again.total_price_filled) == (0, 0)


# ---------- 3. missing ledger rows ----------
def test_backfill_creates_missing_rows_once(db_session, project, item, make_order):
    order = _received_without_ledger(db_session, make_order)

    first = reconciliation.backfill_missing_ledger_rows(db_session)
    second = reconciliation.backfill_missing_ledger_rows(db_session)

    assert (first.orders_scanned, first.created) == (1, 1)
    assert (second.created, second.skipped_existing) == (0, 1)
    assert _max_rows_per_key(db_session) == 1

    row = db_session.execute(select(InventoryHistoryEntry)).scalar_one()
    assert row.purchase_order_id == order.id
    assert row.quantity == 10
    assert row.total_price == Decimal("50.00")
    assert row.project_id == project.id
    assert row.entry_type == LedgerEntryType.migrated
    assert row.migration_source == reconciliation.MIGRATION_SOURCE


def test_backfill_partial_order_uses_received_quantity(db_session, item, location_a, make_order):
    """
    GIVEN
    - an order of 10, 6 received, backorder of 4
    - the ledger row of the reception lost

    THEN
    - backfill recreates a row for 6 units, not 10
    """
    order = make_order()
    receive_order(db_session, order.id, location_a.id, [ReceivedLine(item_id=item.id, quantity=6)], is_partial=True)
    db_session.execute(delete(InventoryHistoryEntry))
    db_session.commit()

    report = reconciliation.backfill_missing_ledger_rows(db_session)

    row = db_session.execute(select(InventoryHistoryEntry)).scalar_one()
    assert report.created == 1
    assert row.quantity == 6
    assert row.total_price == Decimal("30.00")
    assert row.location_id == location_a.id


def test_backfill_respects_short_full_reception(db_session, project, item, other_item, location_a, make_order):
    """
    GIVEN
    - an order of two items, closed as a full reception with one item not delivered

    THEN
    - the repair invents no ledger row for the item that never arrived
    - ledger rows and project aggregates are left as the reception wrote them
    """
    # ---------- ARRANGE ----------
    order = make_order(
        lines=[
            OrderLineCreate(item_id=item.id, quantity=10, unit_price=Decimal("5.00")),
            OrderLineCreate(item_id=other_item.id, quantity=2, unit_price=Decimal("100.00")),
        ]
    )
    receive_order(
        db_session,
        order.id,
        location_a.id,
        [ReceivedLine(item_id=item.id, quantity=10), ReceivedLine(item_id=other_item.id, quantity=0)],
        is_partial=False,
    )
    before = _snapshot(db_session)

    # ---------- ACT ----------
    report = reconciliation.run_full_repair(db_session)

    # ---------- ASSERT ----------
    assert report.ledger_backfill.created == 0
    assert report.aggregates.changed == 0
    assert report.discrepancies.flagged == []
    assert _snapshot(db_session) == before

    quantities = {ln.item_id: ln.received_quantity for ln in order.lines}
    assert quantities == {item.id: 10, other_item.id: 0}
    db_session.refresh(project)
    assert project.materials_received == Decimal("50.00")
    assert project.materials_committed == Decimal("0.00")


def test_backfill_never_duplicates_received_rows(db_session, item, location_a, make_order):
    order = make_order()
    receive_order(db_session, order.id, location_a.id, [ReceivedLine(item_id=item.id, quantity=10)])

    report = reconciliation.backfill_missing_ledger_rows(db_session)

    assert report.created == 0
    assert _max_rows_per_key(db_session) == 1


# ---------- 4. aggregates ----------
def test_recompute_matches_sources(db_session, project, item, location_a, make_order):
    order = make_order()
    receive_order(db_session, order.id, location_a.id, [ReceivedLine(item_id=item.id, quantity=6)], is_partial=True)
    run_transaction(db_session, travel.submit_travel_report, code="TR-9", project_id=project.id, total=15)

    # drift
    project.materials_received = Decimal("1000")
    project.materials_committed = Decimal("0")
    project.travel_pending = Decimal("3")
    db_session.commit()

    report = reconciliation.recompute_aggregates(db_session)

    db_session.refresh(project)
    assert (report.projects, report.changed) == (1, 1)
    assert project.materials_received == Decimal("30.00")
    assert project.materials_committed == Decimal("20.00")
    assert project.travel_pending == Decimal("15.00")
    assert project.travel_approved == Decimal("0.00")


# ---------- 5. discrepancies ----------
def test_discrepancy_flags_received_orders_missing_from_ledger(db_session, project, make_order):
    _received_without_ledger(db_session, make_order)
    _received_without_ledger(db_session, make_order)

    report = reconciliation.discrepancy_report(db_session)

    assert report.projects_checked == 1
    [warning] = report.flagged
    assert warning.project_id == project.id
    assert warning.project_name == project.name
    assert warning.orders_received == Decimal("100.00")
    assert warning.ledger_total == Decimal("0.00")
    assert warning.difference == Decimal("100.00")
    assert warning.difference_percent == Decimal("100.0")


def test_discrepancy_needs_both_thresholds(db_session, make_order):
    _received_without_ledger(db_session, make_order)

    assert reconciliation.discrepancy_report(db_session, amount_threshold=100).flagged == []
    assert reconciliation.discrepancy_report(db_session, percent_threshold=100).flagged == []
    assert len(reconciliation.discrepancy_report(db_session, amount_threshold=1, percent_threshold=1).flagged) == 1


def test_discrepancy_ledger_without_orders(db_session, project, item):
    db_session.add(_legacy_row(item, project_id=project.id, total_price=Decimal("40.00")))
    db_session.commit()

    [warning] = reconciliation.discrepancy_report(db_session).flagged

    assert warning.difference == Decimal("-40.00")
    assert warning.difference_percent == Decimal("100.0")


def test_discrepancy_compares_received_value_of_partial_orders(db_session, project, item, location_a, make_order):
    """
    GIVEN
    - an order of 50.00, 6 of 10 units received (30.00 in the ledger)
    - a legacy partially received order without reception record or ledger rows

    THEN
    - the first order is balanced against what it received, not its ordered total
    - the legacy one counts its total minus what its backorder still carries
    """
    order = make_order()
    receive_order(db_session, order.id, location_a.id, [ReceivedLine(item_id=item.id, quantity=6)], is_partial=True)

    assert reconciliation.discrepancy_report(db_session).flagged == []

    legacy = make_order()
    receive_order(db_session, legacy.id, location_a.id, [ReceivedLine(item_id=item.id, quantity=4)], is_partial=True)
    for ln in legacy.lines:
        ln.received_quantity = None
    db_session.execute(delete(InventoryHistoryEntry).where(InventoryHistoryEntry.purchase_order_id == legacy.id))
    db_session.commit()

    [warning] = reconciliation.discrepancy_report(db_session).flagged
    assert warning.orders_received == Decimal("50.00")
    assert warning.ledger_total == Decimal("30.00")
    assert warning.difference == Decimal("20.00")


def test_discrepancy_report_does_not_correct(db_session, project, make_order):
    _received_without_ledger(db_session, make_order)
    before = _snapshot(db_session)

    reconciliation.discrepancy_report(db_session)

    assert _snapshot(db_session) == before


# ---------- full run ----------
def test_full_repair_is_idempotent(db_session, project, item, location_a, make_order):
    """
    GIVEN
    - one order received normally
    - one received order without ledger rows
    - one legacy ledger row: project by name, only the legacy unit price

    THEN
    - first run repairs everything
    - second run changes nothing and reports no work
    """
    # ---------- ARRANGE ----------
    normal = make_order()
    receive_order(db_session, normal.id, location_a.id, [ReceivedLine(item_id=item.id, quantity=10)])
    _received_without_ledger(db_session, make_order)
    db_session.add(_legacy_row(item, project_id=project.name))
    db_session.commit()

    # ---------- ACT ----------
    first = reconciliation.run_full_repair(db_session, batch_size=2)
    after_first = _snapshot(db_session)
    second = reconciliation.run_full_repair(db_session, batch_size=2)
    after_second = _snapshot(db_session)

    # ---------- ASSERT ----------
    assert first.normalization.corrected == 1
    assert first.cost_backfill.unit_cost_filled == 1
    assert first.ledger_backfill.created == 1

    assert second.normalization.corrected == 0
    assert (second.cost_backfill.unit_cost_filled, second.cost_backfill.total_price_filled) == (0, 0)
    assert second.ledger_backfill.created == 0
    assert second.aggregates.changed == 0
    assert after_second == after_first

    assert _max_rows_per_key(db_session) == 1
    db_session.refresh(project)
    assert project.materials_received == Decimal("110.00")
    assert project.materials_committed == Decimal("0.00")
    assert second.discrepancies.flagged == []
