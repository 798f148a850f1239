"""
Queued article generation: one credit hold per job, settled when the job stops.
"""
from datetime import datetime, timezone, timedelta
from unittest.mock import AsyncMock, patch

import pytest

from job_runner import run_generation_jobs
from textbuilder.errors import InsufficientCreditsError, JobNotFoundError, JobStateError
from textbuilder.models.articles import ArticleConfig
from textbuilder.models.jobs import GenerationJobType
from textbuilder.services.credit_service import credit_service
from textbuilder.services.generation_jobs import generation_job_service

CHAT = "textbuilder.services.article_service.chat"
SHORT = ArticleConfig.model_validate({"length": "short"})  # 880 credits per article


def _job(fake_db, job_id):
    return next(j for j in fake_db.generation_jobs.docs if j["job_id"] == job_id)


async def _queue(account, titles=("Tea", "Coffee", "Cocoa")):
    return await generation_job_service.create_job(
        account["account_id"], list(titles), SHORT, GenerationJobType.BULK
    )


@pytest.mark.asyncio
class TestCreateJob:
    async def test_reserves_estimate_for_every_title(self, fake_db, make_account):
        account = make_account(credits=5000)
        job = await _queue(account)

        assert job["status"] == "queued"
        assert job["credits_per_article"] == 880
        assert job["estimated_credits"] == 2640
        assert fake_db.accounts.docs[0]["credits"] == 2360
        assert fake_db.accounts.docs[0]["reserved_credits"] == 2640

        hold = fake_db.credit_holds.docs[0]
        assert hold["hold_id"] == job["hold_id"]
        assert hold["metadata"] == {"jobId": job["job_id"]}
        assert fake_db.credit_transactions.docs == []

    async def test_insufficient_credits_queues_nothing(self, fake_db, make_account):
        account = make_account(credits=1000)

        with pytest.raises(InsufficientCreditsError) as exc:
            await _queue(account, titles=("Tea", "Coffee"))

        assert exc.value.required == 1760
        assert fake_db.generation_jobs.docs == []
        assert fake_db.accounts.docs[0]["credits"] == 1000


@pytest.mark.asyncio
class TestProcessJob:
    async def test_completed_job_charges_delivered_articles(self, fake_db, make_account):
        account = make_account(credits=5000)
        job = await _queue(account)

        with patch(CHAT, new=AsyncMock(return_value="Some article body")):
            done = await generation_job_service.process_job(job["job_id"])

        assert done["status"] == "completed"
        assert done["progress"] == 100
        assert done["completed_titles"] == ["Tea", "Coffee", "Cocoa"]
        assert done["actual_credits"] == 2640
        assert len(done["article_ids"]) == 3
        assert {a["job_id"] for a in fake_db.articles.docs} == {job["job_id"]}

        entries = fake_db.credit_transactions.docs
        assert len(entries) == 1
        assert entries[0]["amount"] == -2640
        assert entries[0]["reference_id"] == job["job_id"]
        assert fake_db.accounts.docs[0]["credits"] == 2360
        assert fake_db.accounts.docs[0]["reserved_credits"] == 0

    async def test_failed_title_is_skipped_and_not_charged(self, fake_db, make_account):
        account = make_account(credits=5000)
        job = await _queue(account)

        chat = AsyncMock(side_effect=["Tea body", RuntimeError("quota"), "Cocoa body"])
        with patch(CHAT, new=chat):
            done = await generation_job_service.process_job(job["job_id"])

        assert done["status"] == "completed"
        assert done["completed_titles"] == ["Tea", "Cocoa"]
        assert done["failed_titles"] == ["Coffee"]
        assert "Coffee" in done["error_message"]
        assert done["actual_credits"] == 1760
        assert fake_db.accounts.docs[0]["credits"] == 5000 - 1760
        assert fake_db.accounts.docs[0]["reserved_credits"] == 0

    async def test_nothing_delivered_fails_and_returns_everything(self, fake_db, make_account):
        account = make_account(credits=5000)
        job = await _queue(account, titles=("Tea",))

        with patch(CHAT, new=AsyncMock(side_effect=RuntimeError("quota"))):
            done = await generation_job_service.process_job(job["job_id"])

        assert done["status"] == "failed"
        assert fake_db.credit_transactions.docs == []
        assert fake_db.accounts.docs[0]["credits"] == 5000
        assert fake_db.credit_holds.docs[0]["status"] == "released"

    async def test_job_runs_once(self, fake_db, make_account):
        account = make_account(credits=5000)
        job = await _queue(account, titles=("Tea",))

        with patch(CHAT, new=AsyncMock(return_value="Body")) as chat:
            await generation_job_service.process_job(job["job_id"])
            assert await generation_job_service.process_job(job["job_id"]) is None

        assert chat.await_count == 1
        assert len(fake_db.articles.docs) == 1

    async def test_expired_reservation_fails_without_generating(self, fake_db, make_account):
        account = make_account(credits=5000)
        job = await _queue(account, titles=("Tea",))
        hold = await credit_service.get_hold(job["hold_id"])
        await credit_service.release(hold, reason="stale")

        with patch(CHAT, new=AsyncMock(return_value="Body")) as chat:
            done = await generation_job_service.process_job(job["job_id"])

        chat.assert_not_called()
        assert done["status"] == "failed"
        assert done["error_message"] == "Credit reservation expired"
        assert fake_db.accounts.docs[0]["credits"] == 5000
        assert fake_db.credit_transactions.docs == []


@pytest.mark.asyncio
class TestCancelJob:
    async def test_cancel_queued_job_returns_full_reservation(self, fake_db, make_account):
        account = make_account(credits=5000)
        job = await _queue(account)

        result = await generation_job_service.cancel_job(account["account_id"], job["job_id"])

        assert result == {"message": "Job cancelled successfully", "creditsReturned": 2640}
        assert _job(fake_db, job["job_id"])["status"] == "cancelled"
        assert fake_db.accounts.docs[0]["credits"] == 5000
        assert fake_db.accounts.docs[0]["reserved_credits"] == 0
        assert fake_db.credit_transactions.docs == []

        with patch(CHAT, new=AsyncMock()) as chat:
            assert await generation_job_service.process_job(job["job_id"]) is None
        chat.assert_not_called()

    async def test_cancel_while_running_charges_only_finished_articles(self, fake_db, make_account):
        account = make_account(credits=5000)
        job = await _queue(account)
        cancelled = []

        async def write(system_prompt, prompt):
            if prompt.startswith("Title: Coffee"):
                cancelled.append(
                    await generation_job_service.cancel_job(account["account_id"], job["job_id"])
                )
            return "Body"

        with patch(CHAT, new=write):
            done = await generation_job_service.process_job(job["job_id"])

        assert cancelled == [{"message": "Job cancelled successfully", "creditsReturned": 1760}]
        assert done["status"] == "cancelled"
        assert done["completed_titles"] == ["Tea"]
        # The article finished after the cancel is discarded
        assert [a["title"] for a in fake_db.articles.docs] == ["Tea"]
        assert [e["amount"] for e in fake_db.credit_transactions.docs] == [-880]
        assert fake_db.accounts.docs[0]["credits"] == 4120
        assert fake_db.accounts.docs[0]["reserved_credits"] == 0

    async def test_finished_job_cannot_be_cancelled(self, fake_db, make_account):
        account = make_account(credits=5000)
        job = await _queue(account, titles=("Tea",))
        with patch(CHAT, new=AsyncMock(return_value="Body")):
            await generation_job_service.process_job(job["job_id"])

        with pytest.raises(JobStateError) as exc:
            await generation_job_service.cancel_job(account["account_id"], job["job_id"])

        assert str(exc.value) == "Job cannot be cancelled in completed state"
        assert [e["amount"] for e in fake_db.credit_transactions.docs] == [-880]

    async def test_cancelling_twice_returns_credits_once(self, fake_db, make_account):
        account = make_account(credits=5000)
        job = await _queue(account, titles=("Tea",))
        await generation_job_service.cancel_job(account["account_id"], job["job_id"])

        with pytest.raises(JobStateError):
            await generation_job_service.cancel_job(account["account_id"], job["job_id"])

        assert fake_db.accounts.docs[0]["credits"] == 5000

    async def test_other_accounts_jobs_are_not_found(self, fake_db, make_account):
        owner = make_account(credits=5000)
        job = await _queue(owner, titles=("Tea",))

        with pytest.raises(JobNotFoundError):
            await generation_job_service.cancel_job("ACC-OTHER", job["job_id"])


@pytest.mark.asyncio
class TestStaleJobs:
    async def test_stalled_job_is_failed_and_settled(self, fake_db, make_account):
        account = make_account(credits=5000)
        job = await _queue(account)
        stored = _job(fake_db, job["job_id"])
        stored.update(
            status="running",
            actual_credits=880,
            article_ids=["ART-1"],
            updated_at=datetime.now(timezone.utc) - timedelta(hours=1),
        )

        assert await generation_job_service.recover_stale_jobs() == 1

        assert stored["status"] == "failed"
        assert stored["error_message"] == "Generation interrupted"
        assert [e["amount"] for e in fake_db.credit_transactions.docs] == [-880]
        assert fake_db.accounts.docs[0]["credits"] == 4120
        assert fake_db.accounts.docs[0]["reserved_credits"] == 0

    async def test_active_job_is_left_alone(self, fake_db, make_account):
        account = make_account(credits=5000)
        job = await _queue(account)
        _job(fake_db, job["job_id"])["status"] = "running"

        assert await generation_job_service.recover_stale_jobs() == 0
        assert _job(fake_db, job["job_id"])["status"] == "running"


@pytest.mark.asyncio
class TestRunner:
    async def test_runs_queued_jobs(self, fake_db, make_account):
        account = make_account(credits=5000)
        first = await _queue(account, titles=("Tea",))
        second = await _queue(account, titles=("Coffee",))

        with patch(CHAT, new=AsyncMock(return_value="Body")):
            result = await run_generation_jobs(limit=5)

        assert result["count"] == 2
        assert _job(fake_db, first["job_id"])["status"] == "completed"
        assert _job(fake_db, second["job_id"])["status"] == "completed"

    async def test_crashed_job_does_not_stop_the_run(self, fake_db, make_account):
        account = make_account(credits=5000)
        await _queue(account, titles=("Tea",))

        with patch.object(generation_job_service, "process_job", new=AsyncMock(side_effect=RuntimeError("db down"))):
            result = await run_generation_jobs()

        assert result["count"] == 0
