from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from orderflow.app.db.models.core_types import LineType, OrderStatus
from orderflow.app.db.models.models_v1 import OrderStatusHistory, PurchaseOrder, PurchaseOrderLine
from orderflow.app.schemas.purchase_order import OrderCreate, OrderLineCreate
from orderflow.services import purchasing
from orderflow.services.errors import (
    DependencyFailure,
    IllegalTransitionError,
    NotFoundError,
    ValidationError,
)
from orderflow.services.notifications import sign_approval_token, verify_approval_token
from orderflow.services.numbering import format_order_number, next_order_number
from orderflow.services.transactions import run_transaction


def _payload(project, item, status=OrderStatus.pending_approval, **kw):
    return OrderCreate(
        project_id=project.id,
        status=status,
        lines=[OrderLineCreate(item_id=item.id, quantity=10, unit_price=Decimal("5.00"))],
        **kw,
    )


def _order_count(db):
    return db.execute(select(func.count(PurchaseOrder.id))).scalar_one()


# ---------- numbering ----------
def test_order_numbers_are_sequential_per_year(db_session):
    first = next_order_number(db_session, on=date(2026, 3, 1))
    second = next_order_number(db_session, on=date(2026, 7, 9))
    other_year = next_order_number(db_session, on=date(2027, 1, 2))
    db_session.commit()

    assert first == "WF-PO-2026-0001"
    assert second == "WF-PO-2026-0002"
    assert other_year == "WF-PO-2027-0001"
    assert format_order_number(2026, 42, "XX") == "XX-2026-0042"


# ---------- totals ----------
def test_total_is_sum_of_lines(make_order, item, other_item):
    order = make_order(
        lines=[
            OrderLineCreate(item_id=item.id, quantity=3, unit_price=Decimal("2.50")),
            OrderLineCreate(item_id=other_item.id, quantity=2, unit_price=Decimal("120.00")),
            OrderLineCreate(item_name="Installation", quantity=1, unit_price=Decimal("99.99"), line_type=LineType.service),
        ]
    )

    assert order.total == Decimal("347.49")
    assert [ln.line_no for ln in order.lines] == [1, 2, 3]
    assert order.total == sum((ln.subtotal for ln in order.lines), Decimal("0"))


@pytest.mark.parametrize(
    "line, error",
    [
        (dict(quantity=0, unit_price=Decimal("1")), ValidationError),
        (dict(quantity=-2, unit_price=Decimal("1")), ValidationError),
        (dict(quantity=1, unit_price=Decimal("-1")), ValidationError),
    ],
)
def test_invalid_lines_rejected(db_session, project, item, line, error):
    payload = OrderCreate(project_id=project.id, lines=[OrderLineCreate(item_id=item.id, **line)])

    with pytest.raises(error):
        run_transaction(db_session, purchasing.create_tentative_order, payload)

    assert _order_count(db_session) == 0


def test_duplicate_item_and_unknown_refs_rejected(db_session, project, item):
    dup = OrderCreate(
        project_id=project.id,
        lines=[
            OrderLineCreate(item_id=item.id, quantity=1, unit_price=Decimal("1")),
            OrderLineCreate(item_id=item.id, quantity=2, unit_price=Decimal("1")),
        ],
    )
    with pytest.raises(ValidationError):
        run_transaction(db_session, purchasing.create_tentative_order, dup)

    unknown_project = OrderCreate(
        project_id="no-such-project",
        lines=[OrderLineCreate(item_id=item.id, quantity=1, unit_price=Decimal("1"))],
    )
    with pytest.raises(NotFoundError):
        run_transaction(db_session, purchasing.create_tentative_order, unknown_project)

    unknown_item = OrderCreate(
        project_id=project.id,
        lines=[OrderLineCreate(item_id="no-such-item", quantity=1, unit_price=Decimal("1"))],
    )
    with pytest.raises(NotFoundError):
        run_transaction(db_session, purchasing.create_tentative_order, unknown_item)

    with pytest.raises(ValidationError):
        run_transaction(db_session, purchasing.create_tentative_order, OrderCreate(project_id=project.id, lines=[]))


def test_legacy_project_name_reference_is_resolved(make_order, project):
    order = make_order(project_id=project.name)

    assert order.project_id == project.id
    assert order.project_name == project.name


# ---------- create + approval email ----------
def test_create_pending_order_sends_signed_approval_link(db_session, project, item, email_sender):
    order = purchasing.create_order(db_session, _payload(project, item), email_sender, approval_recipient="boss@example.com")

    assert _order_count(db_session) == 1
    assert order.status == OrderStatus.pending_approval
    assert [h.status for h in order.history] == [OrderStatus.pending_approval]

    to, subject, body = email_sender.sent[0]
    assert to == "boss@example.com"
    assert order.order_number in subject
    assert sign_approval_token(order.id) in body
    assert "50.00" in body

    # pending orders are not committed yet
    db_session.refresh(project)
    assert project.materials_committed == Decimal("0")


def test_failed_email_removes_the_order(db_session, project, item, failing_email_sender):
    """
    GIVEN
    - a valid order awaiting approval
    - an email collaborator that reports failure

    THEN
    - creation fails with DependencyFailure
    - the order, its lines and its history are gone
    """
    with pytest.raises(DependencyFailure) as exc:
        purchasing.create_order(db_session, _payload(project, item), failing_email_sender)

    assert "mailbox unavailable" in str(exc.value)
    assert _order_count(db_session) == 0
    assert db_session.execute(select(func.count(PurchaseOrderLine.id))).scalar_one() == 0
    assert db_session.execute(select(func.count(OrderStatusHistory.id))).scalar_one() == 0


def test_email_exception_is_treated_as_failure(db_session, project, item, raising_email_sender):
    with pytest.raises(DependencyFailure):
        purchasing.create_order(db_session, _payload(project, item), raising_email_sender)

    assert _order_count(db_session) == 0


def test_discard_order_is_idempotent(db_session, make_order):
    order = make_order()

    assert run_transaction(db_session, purchasing.discard_order, order.id) is True
    assert run_transaction(db_session, purchasing.discard_order, order.id) is False


def test_create_approved_order_skips_email_and_commits_money(db_session, project, item, email_sender):
    order = purchasing.create_order(db_session, _payload(project, item, status=OrderStatus.approved), email_sender)

    assert email_sender.sent == []
    db_session.refresh(project)
    assert project.materials_committed == order.total == Decimal("50.00")


def test_orders_cannot_start_received(db_session, project, item, email_sender):
    with pytest.raises(ValidationError):
        purchasing.create_order(db_session, _payload(project, item, status=OrderStatus.received), email_sender)


# ---------- transitions ----------
def test_approval_path_moves_committed_money(db_session, project, make_order):
    order = make_order(status=OrderStatus.pending_approval)

    run_transaction(db_session, purchasing.transition_status, order.id, OrderStatus.approved, "ok")
    db_session.refresh(project)
    assert project.materials_committed == Decimal("50.00")

    run_transaction(db_session, purchasing.transition_status, order.id, OrderStatus.sent_to_supplier)
    db_session.refresh(project)
    assert project.materials_committed == Decimal("50.00")

    order = purchasing.get_order(db_session, order.id)
    assert [h.status for h in order.history] == [
        OrderStatus.pending_approval,
        OrderStatus.approved,
        OrderStatus.sent_to_supplier,
    ]


def test_rejection_keeps_reason_and_is_terminal(db_session, project, make_order):
    order = make_order(status=OrderStatus.pending_approval)

    order = run_transaction(db_session, purchasing.transition_status, order.id, OrderStatus.rejected, "too expensive")
    assert order.rejection_reason == "too expensive"

    with pytest.raises(IllegalTransitionError):
        run_transaction(db_session, purchasing.transition_status, order.id, OrderStatus.approved)

    db_session.refresh(project)
    assert project.materials_committed == Decimal("0")


@pytest.mark.parametrize(
    "start, target, error",
    [
        (OrderStatus.pending_approval, OrderStatus.sent_to_supplier, IllegalTransitionError),
        (OrderStatus.approved, OrderStatus.pending_approval, IllegalTransitionError),
        (OrderStatus.sent_to_supplier, OrderStatus.received, ValidationError),
        (OrderStatus.pending_approval, "shipped", ValidationError),
    ],
)
def test_illegal_transitions(db_session, make_order, start, target, error):
    order = make_order(status=start)

    with pytest.raises(error):
        run_transaction(db_session, purchasing.transition_status, order.id, target)

    assert purchasing.get_order(db_session, order.id).status == start


def test_approve_with_token(db_session, make_order):
    order = make_order(status=OrderStatus.pending_approval)

    with pytest.raises(ValidationError):
        run_transaction(db_session, purchasing.approve_with_token, order.id, "forged")

    token = sign_approval_token(order.id)
    assert verify_approval_token(order.id, token)
    order = run_transaction(db_session, purchasing.approve_with_token, order.id, token)
    assert order.status == OrderStatus.approved


# ---------- delete ----------
def test_delete_and_bulk_delete(db_session, make_order):
    a, b, c = make_order(), make_order(), make_order()

    run_transaction(db_session, purchasing.delete_order, a.id)
    with pytest.raises(NotFoundError):
        purchasing.get_order(db_session, a.id)

    deleted = run_transaction(db_session, purchasing.bulk_delete_orders, [b.id, c.id, "missing", ""])
    assert deleted == 2
    assert _order_count(db_session) == 0


def test_list_orders_filters(db_session, make_order):
    make_order(status=OrderStatus.pending_approval)
    sent = make_order(status=OrderStatus.sent_to_supplier)

    listed = purchasing.list_orders(db_session, status=OrderStatus.sent_to_supplier)
    assert [o.id for o in listed] == [sent.id]
