"""
Project financial aggregates.

Four running totals live on the project row. They are changed by a
read-modify-write under a row lock, inside the same transaction as the
business event that moves the money. Never a detached increment.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from orderflow.app.db.models.core_types import money
from orderflow.app.db.models.models_v1 import Project
from orderflow.services.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)


class AggregateField(str, enum.Enum):
    materials_received = "materials_received"
    materials_committed = "materials_committed"
    travel_approved = "travel_approved"
    travel_pending = "travel_pending"


@dataclass
class ProjectSums:
    materials_received: Decimal = field(default_factory=lambda: Decimal("0.00"))
    materials_committed: Decimal = field(default_factory=lambda: Decimal("0.00"))
    travel_approved: Decimal = field(default_factory=lambda: Decimal("0.00"))
    travel_pending: Decimal = field(default_factory=lambda: Decimal("0.00"))


def _lock_project(db: Session, project_id: str) -> Project:
    project = (
        db.execute(select(Project).where(Project.id == project_id).with_for_update())
        .scalar_one_or_none()
    )
    if not project:
        raise NotFoundError("Project", project_id)
    return project


def apply_delta(db: Session, project_id: str, field_name: AggregateField | str, amount) -> Decimal:
    """
    Add ``amount`` (may be negative) to one aggregate of a project.
    The result is floored at zero. Returns the new value.
    """
    try:
        agg = AggregateField(field_name)
    except ValueError:
        raise ValidationError(f"Unknown aggregate field: {field_name}") from None

    amount = money(amount)
    project = _lock_project(db, project_id)

    current = money(getattr(project, agg.value))
    new_value = current + amount
    if new_value < 0:
        logger.warning(
            f"Aggregate {agg.value} of project {project_id} would go negative "
            f"({current} + {amount}); floored at 0"
        )
        new_value = Decimal("0.00")

    setattr(project, agg.value, new_value)
    db.flush()
    logger.debug(f"Project {project_id} {agg.value}: {current} -> {new_value}")
    return new_value


def recompute(db: Session, project_id: str, sums: ProjectSums) -> Project:
    """Overwrite the four aggregates from freshly computed source sums."""
    project = _lock_project(db, project_id)
    for agg in AggregateField:
        setattr(project, agg.value, money(getattr(sums, agg.value)))
    db.flush()
    return project


def read_aggregates(project: Project) -> ProjectSums:
    return ProjectSums(**{agg.value: money(getattr(project, agg.value)) for agg in AggregateField})
