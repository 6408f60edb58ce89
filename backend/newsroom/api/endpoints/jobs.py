from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from newsroom.core.auth import AuthenticatedUser, require_role
from newsroom.core.context import ServiceContext, get_context
from newsroom.services.scheduler import JOB_NAMES, STATUS_FAILED

router = APIRouter()


class JobTriggerRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    job_type: str


@router.post("/trigger")
async def trigger_job(
    body: JobTriggerRequest,
    context: ServiceContext = Depends(get_context),
    current_user: AuthenticatedUser = Depends(require_role("admin")),
):
    """Run one job now for the caller's tenant, bypassing the time gate."""
    if body.job_type not in JOB_NAMES:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid job type. Must be one of: {', '.join(JOB_NAMES)}",
        )

    outcome = await context.jobs.run_job(current_user.id, body.job_type, force=True)
    if outcome.status == STATUS_FAILED:
        raise HTTPException(status_code=500, detail=outcome.reason)
    return outcome.to_dict()


@router.get("/status")
def get_job_status(
    context: ServiceContext = Depends(get_context),
    current_user: AuthenticatedUser = Depends(require_role("admin")),
):
    """Status and period of every job for the caller's tenant."""
    statuses = {}
    for job_name in JOB_NAMES:
        status = context.repository.get_job_status(current_user.id, job_name)
        statuses[job_name] = {
            **status.model_dump(),
            "period_minutes": context.jobs.period_minutes(current_user.id, job_name),
        }
    return statuses
