"""
/api/images end to end through the app: auth, validation, charging and
the error envelope. The provider is replaced; balances live in fake_db.
"""
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from textbuilder.errors import GenerationError
from textbuilder.services.image_providers import ImageBatch


def _provider(batch=None, error=None):
    provider = MagicMock()
    provider.name = "flux"
    provider.generate = AsyncMock(return_value=batch, side_effect=error)
    return provider


@pytest.fixture
def account(make_account):
    return make_account(credits=100)


class TestGenerateImages:
    def test_requires_auth(self, client):
        r = client.post("/api/images/generate", json={"prompt": "fox"})
        assert r.status_code == 401
        assert r.json() == {"success": False, "error": "Not authenticated"}

    def test_missing_prompt(self, client, fake_db, account, auth_headers):
        r = client.post("/api/images/generate", json={"prompt": "   "}, headers=auth_headers(account["account_id"]))
        assert r.status_code == 400
        assert r.json()["error"] == "Please provide a prompt for image generation"

    def test_too_many_images_is_a_validation_error(self, client, fake_db, account, auth_headers):
        r = client.post(
            "/api/images/generate",
            json={"prompt": "fox", "numberOfImages": 11},
            headers=auth_headers(account["account_id"]),
        )
        assert r.status_code == 400
        assert r.json()["success"] is False

    def test_one_image_costs_50(self, client, fake_db, account, auth_headers):
        batch = ImageBatch(urls=["https://cdn.test/a.jpg"], requested=1, returned=1)
        with patch("textbuilder.services.image_service.get_image_provider", return_value=_provider(batch)):
            r = client.post(
                "/api/images/generate",
                json={"prompt": "a red fox"},
                headers=auth_headers(account["account_id"]),
            )

        assert r.status_code == 200
        data = r.json()["data"]
        assert data["images"] == ["https://cdn.test/a.jpg"]
        assert data["creditsUsed"] == 50
        assert data["failedCount"] == 0
        assert fake_db.accounts.docs[0]["credits"] == 50
        assert [e["amount"] for e in fake_db.credit_transactions.docs] == [-50]

    def test_insufficient_credits(self, client, fake_db, account, auth_headers):
        provider = _provider()
        with patch("textbuilder.services.image_service.get_image_provider", return_value=provider):
            r = client.post(
                "/api/images/generate",
                json={"prompt": "a red fox", "numberOfImages": 3},
                headers=auth_headers(account["account_id"]),
            )

        assert r.status_code == 400
        assert r.json() == {
            "success": False,
            "error": "Not enough credits. Need 150, have 100",
            "data": {"required": 150, "available": 100},
        }
        provider.generate.assert_not_called()
        assert fake_db.accounts.docs[0]["credits"] == 100
        assert fake_db.credit_transactions.docs == []

    def test_provider_failure_costs_nothing(self, client, fake_db, account, auth_headers):
        provider = _provider(error=GenerationError("flux request failed with status 503"))
        with patch("textbuilder.services.image_service.get_image_provider", return_value=provider):
            r = client.post(
                "/api/images/generate",
                json={"prompt": "a red fox"},
                headers=auth_headers(account["account_id"]),
            )

        assert r.status_code == 500
        assert r.json() == {"success": False, "error": "Error generating images"}
        assert fake_db.accounts.docs[0]["credits"] == 100
        assert fake_db.accounts.docs[0]["reserved_credits"] == 0
        assert fake_db.credit_transactions.docs == []

    def test_partial_delivery_charges_only_delivered(self, client, fake_db, make_account, auth_headers):
        account = make_account(credits=200, email="partial@example.com")
        batch = ImageBatch(urls=["https://cdn.test/a.jpg"], requested=3, returned=3, failed=2)
        with patch("textbuilder.services.image_service.get_image_provider", return_value=_provider(batch)):
            r = client.post(
                "/api/images/generate",
                json={"prompt": "a red fox", "numberOfImages": 3},
                headers=auth_headers(account["account_id"]),
            )

        assert r.status_code == 200
        data = r.json()["data"]
        assert data["creditsUsed"] == 50
        assert data["requested"] == 3
        assert data["delivered"] == 1
        assert data["failedCount"] == 2
        assert fake_db.accounts.docs[0]["credits"] == 150

    def test_nothing_delivered_is_a_failure(self, client, fake_db, account, auth_headers):
        batch = ImageBatch(urls=[], requested=1, returned=1, failed=1)
        with patch("textbuilder.services.image_service.get_image_provider", return_value=_provider(batch)):
            r = client.post(
                "/api/images/generate",
                json={"prompt": "a red fox"},
                headers=auth_headers(account["account_id"]),
            )

        assert r.status_code == 500
        assert fake_db.accounts.docs[0]["credits"] == 100


class TestEstimateAndFiles:
    def test_estimate(self, client, account, auth_headers):
        r = client.get("/api/images/estimate?numberOfImages=4", headers=auth_headers(account["account_id"]))
        assert r.status_code == 200
        assert r.json()["data"] == {"estimatedCredits": 200}

    def test_estimate_defaults_to_one(self, client, account, auth_headers):
        r = client.get("/api/images/estimate", headers=auth_headers(account["account_id"]))
        assert r.json()["data"] == {"estimatedCredits": 50}

    def test_missing_file(self, client):
        from textbuilder.services.storage_adapter import ObjectNotFoundError

        with patch(
            "textbuilder.routes.images.storage_adapter.get_object",
            new=AsyncMock(side_effect=ObjectNotFoundError("nope")),
        ):
            r = client.get("/api/images/files/missing.jpg")
        assert r.status_code == 404
        assert r.json()["error"] == "Image not found"
