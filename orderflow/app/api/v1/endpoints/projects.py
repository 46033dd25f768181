from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from orderflow.app.api.deps import get_db
from orderflow.app.db.models.models_v1 import Project
from orderflow.app.schemas.project import ProjectAggregatesRead
from orderflow.services.errors import NotFoundError

router = APIRouter(prefix="/projects")


@router.get("", response_model=list[ProjectAggregatesRead])
def list_projects(db: Session = Depends(get_db)):
    return db.execute(select(Project).order_by(Project.name)).scalars().all()


@router.get("/{project_id}", response_model=ProjectAggregatesRead)
def get_project(project_id: str, db: Session = Depends(get_db)):
    project = db.get(Project, project_id)
    if not project:
        raise NotFoundError("Project", project_id)
    return project
