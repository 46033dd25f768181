"""
Travel report hooks.

The travel workflow itself lives outside this engine; these functions are
the points where it moves money between the project's travel buckets.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from orderflow.app.db.models.core_types import TravelReportStatus, money
from orderflow.app.db.models.models_v1 import TravelReport
from orderflow.services.aggregates import AggregateField, apply_delta
from orderflow.services.errors import NotFoundError, ValidationError
from orderflow.services.projects import find_project

logger = logging.getLogger(__name__)

MIN_REASON_LENGTH = 5


def _lock_report(db: Session, report_id: str) -> TravelReport:
    report = (
        db.execute(select(TravelReport).where(TravelReport.id == report_id).with_for_update())
        .scalar_one_or_none()
    )
    if not report:
        raise NotFoundError("Travel report", report_id)
    return report


def _move(db: Session, report: TravelReport, field: AggregateField, sign: int) -> None:
    if not report.project_id or not report.total:
        return
    project = find_project(db, report.project_id)
    if not project:
        logger.warning(f"Project {report.project_id} of travel report {report.code} not found")
        return
    apply_delta(db, project.id, field, sign * money(report.total))


def _require_reason(reason: str | None) -> str:
    if not reason or len(reason.strip()) < MIN_REASON_LENGTH:
        raise ValidationError(f"A reason of at least {MIN_REASON_LENGTH} characters is required")
    return reason.strip()


def submit_travel_report(db: Session, *, code: str, project_id: str | None, total) -> TravelReport:
    total = money(total)
    if total < 0:
        raise ValidationError("Travel report total must not be negative")
    if project_id and not find_project(db, project_id):
        raise NotFoundError("Project", project_id)

    report = TravelReport(code=code, project_id=project_id, total=total)
    db.add(report)
    db.flush()
    _move(db, report, AggregateField.travel_pending, +1)
    logger.info(f"Travel report {code} submitted ({total})")
    return report


def approve_travel_report(db: Session, report_id: str, approver: str) -> TravelReport:
    report = _lock_report(db, report_id)
    if report.status == TravelReportStatus.approved:
        raise ValidationError("Travel report is already approved")
    if report.status != TravelReportStatus.pending_approval:
        raise ValidationError(f"Cannot approve a travel report that is {report.status.value}")

    _move(db, report, AggregateField.travel_pending, -1)
    _move(db, report, AggregateField.travel_approved, +1)
    report.status = TravelReportStatus.approved
    report.decided_by = approver
    report.decided_at = datetime.now(timezone.utc)
    db.flush()
    return report


def reject_travel_report(db: Session, report_id: str, approver: str, reason: str) -> TravelReport:
    reason = _require_reason(reason)
    report = _lock_report(db, report_id)
    if report.status == TravelReportStatus.rejected:
        raise ValidationError("Travel report is already rejected")
    if report.status != TravelReportStatus.pending_approval:
        raise ValidationError(f"Cannot reject a travel report that is {report.status.value}")

    _move(db, report, AggregateField.travel_pending, -1)
    report.status = TravelReportStatus.rejected
    report.decided_by = approver
    report.decision_notes = reason
    report.decided_at = datetime.now(timezone.utc)
    db.flush()
    return report


def cancel_travel_report(db: Session, report_id: str, approver: str, reason: str) -> TravelReport:
    reason = _require_reason(reason)
    report = _lock_report(db, report_id)
    if report.status != TravelReportStatus.approved:
        raise ValidationError("Only approved travel reports can be cancelled")

    _move(db, report, AggregateField.travel_approved, -1)
    report.status = TravelReportStatus.cancelled
    report.decided_by = approver
    report.decision_notes = reason
    report.decided_at = datetime.now(timezone.utc)
    db.flush()
    return report


def delete_travel_report(db: Session, report_id: str) -> Decimal:
    """Delete a report, taking its amount out of whichever bucket holds it."""
    report = _lock_report(db, report_id)
    if report.status == TravelReportStatus.approved:
        _move(db, report, AggregateField.travel_approved, -1)
    elif report.status == TravelReportStatus.pending_approval:
        _move(db, report, AggregateField.travel_pending, -1)
    total = money(report.total)
    db.delete(report)
    db.flush()
    return total
