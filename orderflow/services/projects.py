from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import select, or_
from sqlalchemy.orm import Session

from orderflow.app.db.models.models_v1 import Project
from orderflow.services.errors import ValidationError

logger = logging.getLogger(__name__)

UNSPECIFIED_PROJECT = "Unspecified"


def create_project(db: Session, *, name: str, code: str | None = None, budget=None) -> Project:
    if not name or not name.strip():
        raise ValidationError("Project name is required")

    project = Project(
        name=name.strip(),
        code=code,
        budget=Decimal(str(budget)) if budget is not None else None,
        materials_received=Decimal("0"),
        materials_committed=Decimal("0"),
        travel_approved=Decimal("0"),
        travel_pending=Decimal("0"),
    )
    db.add(project)
    db.flush()
    return project


def find_project(db: Session, ref: str | None) -> Project | None:
    """Look a project up by id, falling back to its display name (legacy references)."""
    if not ref:
        return None
    project = db.get(Project, ref)
    if project:
        return project
    return db.execute(select(Project).where(or_(Project.name == ref, Project.code == ref))).scalars().first()


def resolve_project_name(db: Session, project_id: str | None) -> str:
    """
    Display name for denormalisation into orders and ledger rows.
    A missing project degrades to a placeholder. Database errors propagate:
    the caller's transaction is no longer usable after one.
    """
    if not project_id:
        return UNSPECIFIED_PROJECT
    project = find_project(db, project_id)
    if not project:
        logger.warning(f"Project {project_id} not found, using placeholder name")
        return UNSPECIFIED_PROJECT
    return project.name


def project_name_map(db: Session) -> dict[str, str]:
    """name -> id for every project."""
    return {name: pid for pid, name in db.execute(select(Project.id, Project.name)).all()}
