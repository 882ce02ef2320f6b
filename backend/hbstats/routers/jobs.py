"""
Maintenance jobs API: inspect the scheduler and trigger a job by hand.
"""
from fastapi import APIRouter, Depends, HTTPException, Request, status

from hbstats.exceptions import UnknownJobError
from hbstats.services.scheduler import MaintenanceScheduler

router = APIRouter(prefix="/api/jobs", tags=["Jobs"])


def get_scheduler(request: Request) -> MaintenanceScheduler:
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                            detail="Scheduler is not configured")
    return scheduler


def _result_dict(result):
    return {
        "name": result.name,
        "ok": result.ok,
        "started_at": result.started_at.isoformat(),
        "finished_at": result.finished_at.isoformat(),
        "duration_seconds": round(result.duration_seconds, 3),
        "error": result.error,
    }


@router.get("")
async def list_jobs(scheduler: MaintenanceScheduler = Depends(get_scheduler)):
    now = scheduler.clock()
    rows = []
    for name, job in scheduler.jobs.items():
        next_run = job.schedule.next_fire_time(now)
        last = scheduler.last_results.get(name)
        rows.append({
            "name": name,
            "cron": job.schedule.expression,
            "next_run": next_run.isoformat() if next_run else None,
            "last_result": _result_dict(last) if last else None,
        })
    return {"running": scheduler.is_running, "jobs": rows}


@router.post("/{name}/run")
async def run_job(name: str, scheduler: MaintenanceScheduler = Depends(get_scheduler)):
    """Run a job immediately and return its outcome. Failures are reported, not raised."""
    try:
        result = await scheduler.run_job(name)
    except UnknownJobError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown job {name!r}")
    if result.skipped:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"Job {name!r} is already running")
    return _result_dict(result)
