"""
/api/credits and /api/generate through the app.
"""
from unittest.mock import AsyncMock, patch

import pytest

CHAT = "textbuilder.services.article_service.chat"


@pytest.fixture
def account(make_account):
    return make_account(credits=5000)


class TestCreditsApi:
    def test_balance(self, client, fake_db, account, auth_headers):
        r = client.get("/api/credits", headers=auth_headers(account["account_id"]))
        assert r.status_code == 200
        assert r.json()["data"] == {"credits": 5000, "reservedCredits": 0, "subscriptionPlan": None}

    def test_unknown_account_is_404(self, client, fake_db, auth_headers):
        r = client.get("/api/credits", headers=auth_headers("ACC-GONE"))
        assert r.status_code == 404
        assert r.json() == {"success": False, "error": "Account not found"}

    def test_transactions_and_stats_after_usage(self, client, fake_db, account, auth_headers):
        headers = auth_headers(account["account_id"])
        with patch(CHAT, new=AsyncMock(return_value="Title A\nTitle B")):
            client.post("/api/generate/titles", json={"topic": "tea"}, headers=headers)

        r = client.get("/api/credits/transactions?page=1&limit=10", headers=headers)
        body = r.json()
        assert [e["amount"] for e in body["data"]] == [-50]
        assert body["pagination"]["total"] == 1

        data = client.get("/api/credits/stats", headers=headers).json()["data"]
        assert data["stats"]["available"] == 4950
        assert data["stats"]["usedThisMonth"] == 50
        assert data["stats"]["usedTotal"] == 50
        assert data["usageByFeature"] == {"title_generation": 50}


class TestGenerateApi:
    def test_titles_need_topic_or_niche(self, client, fake_db, account, auth_headers):
        r = client.post("/api/generate/titles", json={}, headers=auth_headers(account["account_id"]))
        assert r.status_code == 400
        assert r.json()["error"] == "Please provide a topic or niche"

    def test_estimate(self, client, account, auth_headers):
        r = client.post(
            "/api/generate/estimate",
            json={"config": {"length": "long", "takeaways": 5}},
            headers=auth_headers(account["account_id"]),
        )
        assert r.json()["data"] == {"estimatedCredits": 2805}

    def test_article_requires_title_and_config(self, client, fake_db, account, auth_headers):
        headers = auth_headers(account["account_id"])

        r = client.post("/api/generate/article", json={"config": {}}, headers=headers)
        assert r.json()["error"] == "Please provide a title"

        r = client.post("/api/generate/article", json={"title": "Tea"}, headers=headers)
        assert r.status_code == 400
        assert r.json()["error"] == "Please provide configuration options"

    def test_generate_list_and_get_article(self, client, fake_db, account, auth_headers):
        headers = auth_headers(account["account_id"])
        with patch(CHAT, new=AsyncMock(return_value="# Tea\n\nGreen tea is great.")):
            r = client.post(
                "/api/generate/article",
                json={"title": "All about tea", "config": {"length": "short"}},
                headers=headers,
            )

        assert r.status_code == 200
        data = r.json()["data"]
        assert data["creditsUsed"] == 880
        article_id = data["article"]["article_id"]

        listing = client.get("/api/generate/articles", headers=headers).json()
        assert [a["article_id"] for a in listing["data"]] == [article_id]
        assert "content" not in listing["data"][0]
        assert listing["pagination"]["total"] == 1

        r = client.get(f"/api/generate/articles/{article_id}", headers=headers)
        assert r.json()["data"]["content"].startswith("# Tea")

        r = client.get("/api/generate/articles/ART-NOPE", headers=headers)
        assert r.status_code == 404
        assert r.json()["error"] == "Article not found"

    def test_llm_failure_is_a_500_without_charge(self, client, fake_db, account, auth_headers):
        with patch(CHAT, new=AsyncMock(side_effect=RuntimeError("quota exceeded"))):
            r = client.post(
                "/api/generate/article",
                json={"title": "Tea", "config": {}},
                headers=auth_headers(account["account_id"]),
            )

        assert r.status_code == 500
        assert r.json()["error"] == "Error generating article"
        assert fake_db.accounts.docs[0]["credits"] == 5000


@pytest.fixture
def stored_article(fake_db, account):
    from textbuilder.models.articles import Article

    doc = Article(
        account_id=account["account_id"],
        title="All About Tea!",
        content="Green <tea> & black tea",
        word_count=5,
    ).model_dump()
    fake_db.articles.docs.append(doc)
    return doc


class TestGenerationJobsApi:
    def test_bulk_runs_in_background(self, client, fake_db, account, auth_headers):
        headers = auth_headers(account["account_id"])
        with patch(CHAT, new=AsyncMock(return_value="Body text")):
            r = client.post(
                "/api/generate/bulk",
                json={"titles": ["Tea", " ", "Coffee"], "config": {"length": "short"}},
                headers=headers,
            )

        assert r.status_code == 202
        data = r.json()["data"]
        assert data["estimatedCredits"] == 1760
        assert data["estimatedTimeMinutes"] == 6

        r = client.get(f"/api/generate/status/{data['jobId']}", headers=headers)
        status = r.json()["data"]
        assert status["job"]["status"] == "completed"
        assert status["job"]["type"] == "bulk"
        assert sorted(a["title"] for a in status["articles"]) == ["Coffee", "Tea"]
        assert "content" not in status["articles"][0]
        assert fake_db.accounts.docs[0]["credits"] == 5000 - 1760

    def test_async_single_article_is_queued(self, client, fake_db, account, auth_headers):
        from textbuilder.services.generation_jobs import generation_job_service

        with patch.object(generation_job_service, "process_job", new=AsyncMock()) as process:
            r = client.post(
                "/api/generate/article",
                json={"title": "Tea", "config": {"length": "short"}, "async": True},
                headers=auth_headers(account["account_id"]),
            )

        assert r.status_code == 202
        data = r.json()["data"]
        assert data == {"jobId": data["jobId"], "estimatedCredits": 880, "estimatedTimeMinutes": 3}
        process.assert_awaited_once_with(data["jobId"])
        assert fake_db.generation_jobs.docs[0]["type"] == "single"
        assert fake_db.accounts.docs[0]["reserved_credits"] == 880

    def test_bulk_validation(self, client, fake_db, account, auth_headers):
        headers = auth_headers(account["account_id"])

        r = client.post("/api/generate/bulk", json={"titles": [], "config": {}}, headers=headers)
        assert r.status_code == 400
        assert r.json()["error"] == "Please provide an array of titles"

        r = client.post("/api/generate/bulk", json={"titles": ["Tea"]}, headers=headers)
        assert r.status_code == 400
        assert r.json()["error"] == "Please provide configuration options"

    def test_bulk_without_enough_credits(self, client, fake_db, account, auth_headers):
        r = client.post(
            "/api/generate/bulk",
            json={"titles": ["A", "B", "C", "D"], "config": {"length": "medium"}},
            headers=auth_headers(account["account_id"]),
        )
        assert r.status_code == 400
        assert r.json()["data"] == {"required": 6600, "available": 5000}
        assert fake_db.generation_jobs.docs == []

    def test_cancel_list_and_unknown_jobs(self, client, fake_db, account, auth_headers):
        from textbuilder.services.generation_jobs import generation_job_service

        headers = auth_headers(account["account_id"])
        with patch.object(generation_job_service, "process_job", new=AsyncMock()):
            job_id = client.post(
                "/api/generate/bulk",
                json={"titles": ["Tea", "Coffee"], "config": {"length": "short"}},
                headers=headers,
            ).json()["data"]["jobId"]

        r = client.get("/api/generate/jobs", headers=headers)
        assert [j["job_id"] for j in r.json()["data"]] == [job_id]
        assert r.json()["pagination"]["total"] == 1

        r = client.delete(f"/api/generate/jobs/{job_id}", headers=headers)
        assert r.status_code == 200
        assert r.json()["data"] == {"message": "Job cancelled successfully", "creditsReturned": 1760}
        assert fake_db.accounts.docs[0]["credits"] == 5000

        r = client.delete(f"/api/generate/jobs/{job_id}", headers=headers)
        assert r.status_code == 400
        assert r.json()["error"] == "Job cannot be cancelled in cancelled state"

        r = client.get("/api/generate/status/JOB-MISSING", headers=headers)
        assert r.status_code == 404
        assert r.json()["error"] == "Job not found"


class TestArticleManagementApi:
    def test_update_recounts_words(self, client, fake_db, account, stored_article, auth_headers):
        r = client.put(
            f"/api/generate/articles/{stored_article['article_id']}",
            json={"content": "Just three words", "status": "published"},
            headers=auth_headers(account["account_id"]),
        )
        assert r.status_code == 200
        data = r.json()["data"]
        assert data["word_count"] == 3
        assert data["status"] == "published"
        assert data["title"] == "All About Tea!"

    def test_update_validation(self, client, fake_db, account, stored_article, auth_headers):
        headers = auth_headers(account["account_id"])
        url = f"/api/generate/articles/{stored_article['article_id']}"

        assert client.put(url, json={}, headers=headers).status_code == 400
        assert client.put(url, json={"title": "  "}, headers=headers).json()["error"] == "Title cannot be empty"
        assert client.put(url, json={"status": "archived"}, headers=headers).status_code == 400
        r = client.put("/api/generate/articles/ART-MISSING", json={"title": "x"}, headers=headers)
        assert r.status_code == 404

    def test_delete_one(self, client, fake_db, account, stored_article, auth_headers):
        headers = auth_headers(account["account_id"])
        url = f"/api/generate/articles/{stored_article['article_id']}"

        assert client.delete(url, headers=headers).json() == {"success": True, "data": {}}
        assert fake_db.articles.docs == []
        assert client.delete(url, headers=headers).status_code == 404

    def test_delete_many_skips_other_accounts(self, client, fake_db, account, stored_article, make_account, auth_headers):
        other = make_account(credits=0, email="other@example.com")
        r = client.request(
            "DELETE",
            "/api/generate/articles",
            json={"ids": [stored_article["article_id"], "ART-MISSING"]},
            headers=auth_headers(other["account_id"]),
        )
        assert r.json()["data"] == {"deletedCount": 0}

        r = client.request(
            "DELETE",
            "/api/generate/articles",
            json={"ids": [stored_article["article_id"]]},
            headers=auth_headers(account["account_id"]),
        )
        assert r.json()["data"] == {"deletedCount": 1}

        r = client.request("DELETE", "/api/generate/articles", json={"ids": []}, headers=auth_headers(account["account_id"]))
        assert r.status_code == 400
        assert r.json()["error"] == "Please provide an array of article IDs"

    def test_export_markdown(self, client, fake_db, account, stored_article, auth_headers):
        r = client.get(
            f"/api/generate/articles/{stored_article['article_id']}/export?format=markdown",
            headers=auth_headers(account["account_id"]),
        )
        assert r.status_code == 200
        assert r.headers["content-type"].startswith("text/markdown")
        assert r.headers["content-disposition"] == 'attachment; filename="all-about-tea.md"'
        assert r.text == "Green <tea> & black tea"

    def test_export_html_escapes_content(self, client, fake_db, account, stored_article, auth_headers):
        r = client.get(
            f"/api/generate/articles/{stored_article['article_id']}/export",
            headers=auth_headers(account["account_id"]),
        )
        assert r.headers["content-type"].startswith("text/html")
        assert r.headers["content-disposition"] == 'attachment; filename="all-about-tea.html"'
        assert "<title>All About Tea!</title>" in r.text
        assert "Green &lt;tea&gt; &amp; black tea" in r.text

    def test_export_unknown_format(self, client, fake_db, account, stored_article, auth_headers):
        r = client.get(
            f"/api/generate/articles/{stored_article['article_id']}/export?format=pdf",
            headers=auth_headers(account["account_id"]),
        )
        assert r.status_code == 400


class TestHealth:
    def test_health(self, client):
        r = client.get("/api/health")
        assert r.status_code == 200
        assert r.json()["status"] == "healthy"

    def test_version(self, client):
        r = client.get("/api/version")
        assert isinstance(r.json()["commit_sha"], str)
