from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends

from equipdb.jobs.compliance_check_runner import ComplianceCheckRunner

router = APIRouter(
    prefix="/compliance",
    tags=["compliance"],
)

_runner: Optional[ComplianceCheckRunner] = None


def set_runner(runner: Optional[ComplianceCheckRunner]) -> None:
    global _runner
    _runner = runner


def get_runner() -> Optional[ComplianceCheckRunner]:
    return _runner


@router.get("/notifications")
def latest_notifications(runner: Optional[ComplianceCheckRunner] = Depends(get_runner)):
    """Result of the last background check; runs one now if none has completed."""
    if runner is None:
        return {"asOf": None, "counts": {}, "notifications": []}
    summary = runner.latest or runner.run_once()
    if summary is None:
        return {"asOf": None, "counts": {}, "notifications": []}
    return summary.model_dump(mode="json", by_alias=True)
