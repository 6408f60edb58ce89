from fastapi import APIRouter, Depends, HTTPException
import logging

from newsroom.core.auth import verify_cron_secret
from newsroom.core.context import ServiceContext, get_context
from newsroom.services.scheduler import STATUS_SUCCESS

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(verify_cron_secret)])

# URL segment -> scheduler job name
CRON_JOBS = {
    "articles": "articles",
    "events": "events",
    "articles-from-events": "articles_from_events",
    "edition": "edition",
    "daily": "daily",
}


@router.get("/{job}")
async def run_cron_job(job: str, context: ServiceContext = Depends(get_context)):
    """Run one gated job for every tenant."""
    job_name = CRON_JOBS.get(job)
    if job_name is None:
        raise HTTPException(status_code=404, detail=f"Unknown cron job: {job}")

    logger.info(f"Cron trigger for {job_name}")
    results = await context.jobs.run_for_all_tenants(job_name)

    produced = sum(r.produced for r in results.values())
    succeeded = sum(1 for r in results.values() if r.status == STATUS_SUCCESS)
    return {
        "success": True,
        "message": (
            f"{job_name} job completed: {succeeded} of {len(results)} tenants ran, "
            f"{produced} items produced"
        ),
        "userResults": {tenant_id: r.to_dict() for tenant_id, r in results.items()},
    }
