"""TextBuilder Generation Job Service

Background article generation. Credits for every title are reserved under
one hold when the job is queued; the job then writes its articles one at a
time and settles the hold once it stops:

  queued -> running -> completed | failed
  queued | running -> cancelled

Whoever moves a job out of RUNNING (the worker, a cancel, or stale-job
recovery) settles the hold: delivered articles are committed, the rest is
returned. Cancelling a QUEUED job releases the whole hold. Each article is
accepted with an update conditional on status=running, so nothing is
charged for work that finished after the job was stopped.

Stale-job recovery must run before the credit reconciler gives up on the
hold, so GENERATION_JOB_STALE_MINUTES stays below CREDIT_HOLD_TIMEOUT_MINUTES.
"""

from datetime import datetime, timezone, timedelta
from typing import Optional, Dict, Any, List, Tuple
import logging
import math
import os

from pymongo import ReturnDocument

from database import database
from textbuilder.errors import GenerationError, JobNotFoundError, JobStateError
from textbuilder.models.articles import ArticleConfig
from textbuilder.models.credits import CreditFeature, CreditHoldStatus
from textbuilder.models.jobs import (
    FINISHED_JOB_STATUSES,
    GenerationJob,
    GenerationJobStatus,
    GenerationJobType,
)
from textbuilder.pagination import build_pagination, page_window
from textbuilder.services.article_service import article_service, estimate_article_credits
from textbuilder.services.credit_service import credit_service

logger = logging.getLogger(__name__)

GENERATION_JOB_STALE_MINUTES = int(os.getenv("GENERATION_JOB_STALE_MINUTES", "15"))
MINUTES_PER_ARTICLE = 3
STALE_BATCH_SIZE = 100


def estimated_minutes(title_count: int) -> int:
    return math.ceil(title_count * MINUTES_PER_ARTICLE)


class GenerationJobService:
    """Queued single and bulk article generation."""

    def _get_db(self):
        return database.get_db()

    async def create_job(
        self,
        account_id: str,
        titles: List[str],
        config: ArticleConfig,
        job_type: GenerationJobType = GenerationJobType.BULK,
    ) -> Dict[str, Any]:
        """Reserve credits for every title and queue the job.

        Raises InsufficientCreditsError when the balance does not cover
        the per-article estimate times the number of titles.
        """
        db = self._get_db()
        per_article = estimate_article_credits(config)
        job = GenerationJob(
            account_id=account_id,
            type=job_type,
            titles=titles,
            config=config.model_dump(by_alias=True),
            credits_per_article=per_article,
            estimated_credits=per_article * len(titles),
        )

        hold = await credit_service.reserve(
            account_id=account_id,
            cost=job.estimated_credits,
            feature=CreditFeature.ARTICLE_GENERATION,
            description=f"Article generation job: {len(titles)} articles",
            metadata={"jobId": job.job_id},
        )
        job.hold_id = hold.hold_id

        doc = job.model_dump()
        try:
            await db.generation_jobs.insert_one(dict(doc))
        except Exception:
            await credit_service.release(hold, reason=f"Job {job.job_id} could not be queued")
            raise

        logger.info(
            f"Queued {job.type} job {job.job_id} for account {account_id}: "
            f"{len(titles)} titles, {job.estimated_credits} credits reserved"
        )
        return doc

    async def _stop(
        self,
        job_id: str,
        from_statuses: List[GenerationJobStatus],
        status: GenerationJobStatus,
        error_message: Optional[str] = None,
        extra_query: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        """Move a job to a final status. Returns None if another writer got there first."""
        db = self._get_db()
        now = datetime.now(timezone.utc)
        fields = {"status": status.value, "completed_at": now, "updated_at": now}
        if error_message:
            fields["error_message"] = error_message

        return await db.generation_jobs.find_one_and_update(
            {
                "job_id": job_id,
                "status": {"$in": [s.value for s in from_statuses]},
                **(extra_query or {}),
            },
            {"$set": fields},
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
        )

    async def _settle(self, job: Dict[str, Any]) -> int:
        """Charge the delivered articles and return the rest. Returns credits returned."""
        job_id = job["job_id"]
        hold = await credit_service.get_hold(job["hold_id"]) if job.get("hold_id") else None
        if hold is None or hold.status != CreditHoldStatus.RESERVED.value:
            logger.error(
                f"Job {job_id} stopped but its hold {job.get('hold_id')} is "
                f"{hold.status if hold else 'missing'}; nothing settled"
            )
            return 0

        actual = job.get("actual_credits", 0)
        try:
            if actual:
                await credit_service.commit(
                    hold,
                    actual_cost=actual,
                    description=f"Article generation job: {len(job.get('article_ids', []))} articles",
                    reference_id=job_id,
                    metadata={"jobId": job_id, "articleIds": job.get("article_ids", [])},
                )
            else:
                await credit_service.release(hold, reason=f"Job {job_id} {job['status']}")
        except ValueError as e:
            logger.error(f"Settlement of job {job_id} lost to the reconciler: {e}")
            return 0

        returned = hold.reserved - actual
        logger.info(f"Settled job {job_id}: charged {actual}, returned {returned}")
        return returned

    async def _accept(self, job_id: str, update: Dict[str, Any]) -> bool:
        """Record progress while the job is still running."""
        db = self._get_db()
        update.setdefault("$set", {})["updated_at"] = datetime.now(timezone.utc)
        result = await db.generation_jobs.update_one(
            {"job_id": job_id, "status": GenerationJobStatus.RUNNING.value},
            update,
        )
        return result.matched_count > 0

    async def process_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        """Run a queued job to completion.

        Returns the final job document, or None when the job was not queued
        (already taken by another worker, or cancelled).
        """
        db = self._get_db()
        now = datetime.now(timezone.utc)
        job = await db.generation_jobs.find_one_and_update(
            {"job_id": job_id, "status": GenerationJobStatus.QUEUED.value},
            {"$set": {
                "status": GenerationJobStatus.RUNNING.value,
                "started_at": now,
                "updated_at": now,
            }},
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
        )
        if job is None:
            return None

        account_id = job["account_id"]
        titles = job["titles"]
        per_article = job["credits_per_article"]
        config = ArticleConfig.model_validate(job.get("config") or {})
        hold = await credit_service.get_hold(job["hold_id"]) if job.get("hold_id") else None

        delivered = 0
        errors = []
        for index, title in enumerate(titles):
            if hold is None or not await credit_service.extend_hold(hold):
                errors.append("Credit reservation expired")
                break

            progress = math.floor((index + 1) / len(titles) * 100)
            try:
                doc = await article_service.write_article(
                    account_id, title, config, per_article, job_id=job_id
                )
            except GenerationError as e:
                # Bulk jobs carry on with the remaining titles
                logger.error(f"Job {job_id}: {e}")
                errors.append(f"Failed to generate \"{title}\"")
                if not await self._accept(job_id, {
                    "$push": {"failed_titles": title},
                    "$set": {"progress": progress},
                }):
                    break
                continue

            await db.articles.insert_one(dict(doc))
            accepted = await self._accept(job_id, {
                "$push": {"completed_titles": title, "article_ids": doc["article_id"]},
                "$inc": {"actual_credits": per_article},
                "$set": {"progress": progress},
            })
            if not accepted:
                logger.info(f"Job {job_id} stopped while writing \"{title}\"; discarding the article")
                await db.articles.delete_one({"article_id": doc["article_id"]})
                break

            delivered += 1
            logger.info(f"Job {job_id}: generated \"{title}\" ({index + 1}/{len(titles)})")

        final = GenerationJobStatus.COMPLETED if delivered else GenerationJobStatus.FAILED
        stopped = await self._stop(
            job_id,
            [GenerationJobStatus.RUNNING],
            final,
            error_message="; ".join(errors) or None,
        )
        if stopped is None:
            # Cancelled or recovered meanwhile; that writer settled the hold
            return await db.generation_jobs.find_one({"job_id": job_id}, {"_id": 0})

        await self._settle(stopped)
        logger.info(f"Job {job_id} {final.value}: {delivered}/{len(titles)} articles")
        return stopped

    async def cancel_job(self, account_id: str, job_id: str) -> Dict[str, Any]:
        db = self._get_db()
        job = await db.generation_jobs.find_one(
            {"account_id": account_id, "job_id": job_id},
            {"_id": 0},
        )
        if not job:
            raise JobNotFoundError(job_id)
        if job["status"] in FINISHED_JOB_STATUSES:
            raise JobStateError(job_id, job["status"])

        stopped = await self._stop(
            job_id,
            [GenerationJobStatus.QUEUED, GenerationJobStatus.RUNNING],
            GenerationJobStatus.CANCELLED,
        )
        if stopped is None:
            current = await db.generation_jobs.find_one({"job_id": job_id}, {"_id": 0, "status": 1})
            raise JobStateError(job_id, current["status"])

        returned = await self._settle(stopped)
        logger.info(f"Job {job_id} cancelled by account {account_id}")
        return {"message": "Job cancelled successfully", "creditsReturned": returned}

    async def recover_stale_jobs(self, older_than: Optional[timedelta] = None) -> int:
        """Fail running jobs whose worker stopped reporting, and settle them."""
        db = self._get_db()
        cutoff = datetime.now(timezone.utc) - (older_than or timedelta(minutes=GENERATION_JOB_STALE_MINUTES))
        stale_query = {"status": GenerationJobStatus.RUNNING.value, "updated_at": {"$lt": cutoff}}

        cursor = db.generation_jobs.find(stale_query, {"_id": 0, "job_id": 1}).limit(STALE_BATCH_SIZE)
        recovered = 0
        for job in await cursor.to_list(STALE_BATCH_SIZE):
            stopped = await self._stop(
                job["job_id"],
                [GenerationJobStatus.RUNNING],
                GenerationJobStatus.FAILED,
                error_message="Generation interrupted",
                extra_query={"updated_at": {"$lt": cutoff}},
            )
            if stopped:
                await self._settle(stopped)
                recovered += 1
        return recovered

    async def queued_job_ids(self, limit: int) -> List[str]:
        db = self._get_db()
        cursor = db.generation_jobs.find(
            {"status": GenerationJobStatus.QUEUED.value},
            {"_id": 0, "job_id": 1, "created_at": 1},
        ).sort("created_at", 1).limit(limit)
        return [job["job_id"] for job in await cursor.to_list(limit)]

    async def get_job(self, account_id: str, job_id: str) -> Tuple[Dict[str, Any], List[Dict[str, Any]]]:
        """Return (job, articles written so far)."""
        db = self._get_db()
        job = await db.generation_jobs.find_one(
            {"account_id": account_id, "job_id": job_id},
            {"_id": 0},
        )
        if not job:
            raise JobNotFoundError(job_id)

        cursor = db.articles.find(
            {"account_id": account_id, "job_id": job_id},
            {"_id": 0, "content": 0},
        ).sort("created_at", 1)
        articles = await cursor.to_list(len(job["titles"]))
        return job, articles

    async def list_jobs(
        self,
        account_id: str,
        page: int = 1,
        limit: int = 10,
    ) -> Tuple[List[Dict[str, Any]], Dict[str, Any]]:
        db = self._get_db()
        query = {"account_id": account_id}

        skip, limit = page_window(page, limit)
        total = await db.generation_jobs.count_documents(query)
        cursor = db.generation_jobs.find(query, {"_id": 0}).sort("created_at", -1).skip(skip).limit(limit)
        jobs = await cursor.to_list(limit)
        return jobs, build_pagination(total, page, limit)


# Global service instance
generation_job_service = GenerationJobService()
