from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from orderflow.app.api.deps import get_db
from orderflow.services import reconciliation
from orderflow.services.errors import NotFoundError

router = APIRouter(prefix="/maintenance")

JOBS = {
    "normalize-project-ids": reconciliation.normalize_project_ids,
    "backfill-cost-fields": reconciliation.backfill_cost_fields,
    "backfill-ledger": reconciliation.backfill_missing_ledger_rows,
    "recompute-aggregates": reconciliation.recompute_aggregates,
    "full-repair": reconciliation.run_full_repair,
}


@router.get("/jobs")
def list_jobs():
    return sorted(JOBS)


@router.post("/jobs/{job}")
def run_job(job: str, batch_size: int | None = None, db: Session = Depends(get_db)):
    if job not in JOBS:
        raise NotFoundError("Repair job", job)
    return asdict(JOBS[job](db, batch_size=batch_size))


@router.get("/discrepancies")
def discrepancies(
    amount_threshold: float | None = None,
    percent_threshold: float | None = None,
    db: Session = Depends(get_db),
):
    report = reconciliation.discrepancy_report(
        db,
        amount_threshold=amount_threshold,
        percent_threshold=percent_threshold,
    )
    return asdict(report)
