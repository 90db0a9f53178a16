# coursestream/routes/jobs.py
from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..domain import JobStatus as JobState
from ..errors import AuthorizationError
from ..schemas import CancelResponse, JobListResponse, JobStatus, StatisticsResponse
from ..services import Services
from .dependencies import admin_required, get_current_user, get_services, is_admin

router = APIRouter()


@router.get("/jobs", response_model=JobListResponse)
def list_jobs(status: Optional[JobState] = None, limit: int = Query(50, ge=1, le=100),
              user: dict = Depends(get_current_user),
              services: Services = Depends(get_services)):
    jobs = services.orchestrator.list_jobs(user["username"], limit=limit, status=status)
    return JobListResponse(jobs=[JobStatus.from_job(j) for j in jobs], count=len(jobs))


@router.get("/jobs/statistics/overview", response_model=StatisticsResponse)
def get_job_statistics(user: dict = Depends(admin_required),
                       services: Services = Depends(get_services)):
    """Job counts by status (admin only)"""
    stats = services.orchestrator.statistics()
    total = sum(stats[s.value] for s in JobState)
    return StatisticsResponse(statistics=stats, total_jobs=total)


@router.get("/jobs/{job_id}", response_model=JobStatus)
def get_job(job_id: str, user: dict = Depends(get_current_user),
            services: Services = Depends(get_services)):
    job = services.orchestrator.get_job(job_id)
    if job.user_id != user["username"] and not is_admin(user):
        raise AuthorizationError("Access denied")
    return JobStatus.from_job(job)


@router.delete("/jobs/{job_id}", response_model=CancelResponse)
def cancel_job(job_id: str, user: dict = Depends(get_current_user),
               services: Services = Depends(get_services)):
    cancelled = services.orchestrator.cancel(job_id, user["username"], is_admin=is_admin(user))
    return CancelResponse(job_id=job_id, cancelled=cancelled)
