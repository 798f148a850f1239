"""
Shared job runner for scheduled background jobs.
Used by server (scheduler) and scripts (manual run).
Each run_* returns a dict with "message" (and optionally "count").
"""
import asyncio
import logging
import os
from datetime import timedelta
from typing import Optional

logger = logging.getLogger(__name__)

GENERATION_WORKER_CONCURRENCY = int(os.getenv("GENERATION_WORKER_CONCURRENCY", "2"))


async def run_credit_hold_reconciliation(older_than: Optional[timedelta] = None):
    """Resolve credit holds left unsettled by a crashed or timed-out request."""
    try:
        from textbuilder.services.credit_service import credit_service
        counts = await credit_service.reconcile_holds(older_than=older_than)
        total = sum(counts.values())
        if total:
            logger.warning(f"Credit hold reconciliation resolved {total} holds: {counts}")
        else:
            logger.info("Credit hold reconciliation completed: nothing to resolve")
        return {"message": f"Credit holds reconciled: {total}", "count": total, **counts}
    except Exception as e:
        logger.error(f"Credit hold reconciliation job failed: {e}")
        raise


async def run_generation_jobs(limit: Optional[int] = None):
    """Recover stalled generation jobs, then run queued ones concurrently."""
    try:
        from textbuilder.services.generation_jobs import generation_job_service
        recovered = await generation_job_service.recover_stale_jobs()
        if recovered:
            logger.warning(f"Recovered {recovered} stalled generation jobs")

        job_ids = await generation_job_service.queued_job_ids(limit or GENERATION_WORKER_CONCURRENCY)
        results = await asyncio.gather(
            *(generation_job_service.process_job(job_id) for job_id in job_ids),
            return_exceptions=True,
        )
        processed = 0
        for job_id, result in zip(job_ids, results):
            if isinstance(result, Exception):
                logger.error(f"Generation job {job_id} crashed, left for recovery: {result}")
            elif result is not None:
                processed += 1
        if processed:
            logger.info(f"Generation jobs processed: {processed}")
        return {"message": f"Generation jobs processed: {processed}", "count": processed, "recovered": recovered}
    except Exception as e:
        logger.error(f"Generation job run failed: {e}")
        raise
