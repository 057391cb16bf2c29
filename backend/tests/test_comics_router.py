"""
Tests for the comics router endpoints.

Tests cover:
- Session loading and sign-in enforcement
- Comic generation (success, upstream failure, out of credits)
- Credits for signed-in and anonymous callers
- Screenshot attachment
- History
"""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from app.models.models import ComicRecord
from app.services.comic_generator import sessions
from app.services.quota_ledger import today_utc
from tests.conftest import seed_records, yesterday, TEST_USER_ID, OTHER_USER_ID
from tests.mocks import MOCK_IMAGE_URLS, MOCK_IMG_DESC

SCREENSHOT = "data:image/png;base64,iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="


def _user_records(db: Session, user_id: str = TEST_USER_ID):
    return db.query(ComicRecord).filter(ComicRecord.user_id == user_id).all()


class TestAuthentication:
    """Every user-specific endpoint needs a signed-in user"""

    @pytest.mark.api
    @pytest.mark.parametrize("method,path", [
        ("get", "/api/comics/session"),
        ("post", "/api/comics/generate"),
        ("get", "/api/comics/history"),
        ("post", "/api/comics/gen-1/screenshot"),
    ])
    def test_requires_sign_in(self, client: TestClient, method, path):
        response = getattr(client, method)(path)
        assert response.status_code == 401
        assert response.headers["X-Sign-In-Url"] == "/auth/sign-in"

    @pytest.mark.api
    def test_invalid_bearer_token_rejected(self, client: TestClient):
        response = client.get("/api/comics/session", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401


class TestGetSession:
    """Tests for GET /api/comics/session"""

    @pytest.mark.api
    def test_fresh_session(self, auth_client: TestClient):
        response = auth_client.get("/api/comics/session")

        assert response.status_code == 200
        data = response.json()
        assert data["credits"] == 18
        assert data["max_credits"] == 18
        assert data["loading"] is False
        assert data["state"] == "idle"
        assert data["imageUrls"] == []
        assert len(data["slots"]) == 6
        assert all(slot["image_url"] is None for slot in data["slots"])

    @pytest.mark.api
    def test_credits_recomputed_on_load(self, auth_client: TestClient, db: Session):
        auth_client.get("/api/comics/session")
        seed_records(db, TEST_USER_ID, 2)

        response = auth_client.get("/api/comics/session")
        assert response.json()["credits"] == 6


class TestGenerateComic:
    """Tests for POST /api/comics/generate"""

    @pytest.mark.api
    def test_generate_success(self, auth_client: TestClient, db: Session, prompt_client, image_client):
        response = auth_client.post("/api/comics/generate", json={"prompt": "a dog learns to fly"})

        assert response.status_code == 200
        data = response.json()
        assert data["outcome"] == "succeeded"
        assert data["imageUrls"] == MOCK_IMAGE_URLS
        assert data["imgDesc"] == list(MOCK_IMG_DESC.values())
        assert data["credits"] == 12
        assert data["loading"] is False
        assert data["prompt"] == "a dog learns to fly"
        assert [s["image_url"] for s in data["slots"]] == MOCK_IMAGE_URLS

        records = _user_records(db)
        assert len(records) == 1
        assert records[0].id == data["generation_id"]
        assert records[0].created_at == today_utc()
        assert prompt_client.calls == ["a dog learns to fly"]

    @pytest.mark.api
    def test_out_of_credits(self, auth_client: TestClient, db: Session, prompt_client, image_client):
        seed_records(db, TEST_USER_ID, 3)

        response = auth_client.post("/api/comics/generate", json={"prompt": "a dog learns to fly"})

        assert response.status_code == 429
        assert response.json()["detail"] == "Out of credits"
        assert prompt_client.calls == []
        assert image_client.calls == []
        assert len(_user_records(db)) == 3

    @pytest.mark.api
    def test_upstream_failure_keeps_previous_comic(self, auth_client: TestClient, db: Session, image_client):
        first = auth_client.post("/api/comics/generate", json={"prompt": "a dog learns to fly"}).json()

        image_client.error = "image model unavailable"
        response = auth_client.post("/api/comics/generate", json={"prompt": "a cat learns to swim"})

        assert response.status_code == 200
        data = response.json()
        assert data["outcome"] == "failed"
        assert data["imageUrls"] == first["imageUrls"]
        assert data["generation_id"] == first["generation_id"]
        assert data["credits"] == 12
        assert len(_user_records(db)) == 1

    @pytest.mark.api
    def test_daily_reset_reaches_generate(self, auth_client: TestClient, db: Session, prompt_client):
        """Credits spent yesterday do not block today's generation"""
        seed_records(db, TEST_USER_ID, 3)
        assert auth_client.get("/api/comics/session").json()["credits"] == 0

        db.query(ComicRecord).filter(ComicRecord.user_id == TEST_USER_ID).update(
            {ComicRecord.created_at: yesterday()}
        )
        db.commit()

        assert auth_client.get("/api/comics/credits").json()["credits"] == 18
        response = auth_client.post("/api/comics/generate", json={"prompt": "a dog learns to fly"})

        assert response.status_code == 200
        assert response.json()["outcome"] == "succeeded"
        assert response.json()["credits"] == 12
        assert prompt_client.calls == ["a dog learns to fly"]

    @pytest.mark.api
    def test_records_written_after_session_load_are_enforced(self, auth_client: TestClient, db: Session, prompt_client):
        assert auth_client.get("/api/comics/session").json()["credits"] == 18
        seed_records(db, TEST_USER_ID, 3)

        response = auth_client.post("/api/comics/generate", json={"prompt": "a dog learns to fly"})

        assert response.status_code == 429
        assert prompt_client.calls == []

    @pytest.mark.api
    @pytest.mark.parametrize("body", [{}, {"prompt": ""}, {"prompt": "   "}])
    def test_prompt_required(self, auth_client: TestClient, body, prompt_client):
        response = auth_client.post("/api/comics/generate", json=body)
        assert response.status_code == 422
        assert prompt_client.calls == []

    @pytest.mark.api
    def test_session_reflects_generation(self, auth_client: TestClient):
        auth_client.post("/api/comics/generate", json={"prompt": "a dog learns to fly"})

        data = auth_client.get("/api/comics/session").json()
        assert data["imageUrls"] == MOCK_IMAGE_URLS
        assert data["credits"] == 12


class TestCredits:
    """Tests for GET /api/comics/credits"""

    @pytest.mark.api
    def test_signed_in(self, auth_client: TestClient, db: Session):
        seed_records(db, TEST_USER_ID, 1)
        response = auth_client.get("/api/comics/credits")
        assert response.status_code == 200
        assert response.json() == {"credits": 12, "max_credits": 18}

    @pytest.mark.api
    def test_anonymous_gets_full_allowance(self, client: TestClient):
        response = client.get("/api/comics/credits")
        assert response.status_code == 200
        assert response.json()["credits"] == 18


class TestScreenshot:
    """Tests for POST /api/comics/{generation_id}/screenshot"""

    @pytest.mark.api
    def test_attaches_to_same_record(self, auth_client: TestClient, db: Session):
        generation_id = auth_client.post(
            "/api/comics/generate", json={"prompt": "a dog learns to fly"}
        ).json()["generation_id"]

        response = auth_client.post(
            f"/api/comics/{generation_id}/screenshot",
            json={"screenshot_url": SCREENSHOT}
        )

        assert response.status_code == 200
        assert response.json()["screenshot_url"] == SCREENSHOT
        records = _user_records(db)
        assert len(records) == 1
        assert records[0].screenshot_url == SCREENSHOT
        # Attaching a screenshot does not spend a credit
        assert auth_client.get("/api/comics/credits").json()["credits"] == 12

    @pytest.mark.api
    def test_creates_record_for_current_comic_if_first_write_was_lost(self, auth_client: TestClient, db: Session):
        generation_id = auth_client.post(
            "/api/comics/generate", json={"prompt": "a dog learns to fly"}
        ).json()["generation_id"]
        db.query(ComicRecord).filter(ComicRecord.id == generation_id).delete()
        db.commit()

        response = auth_client.post(
            f"/api/comics/{generation_id}/screenshot",
            json={"screenshot_url": SCREENSHOT}
        )

        assert response.status_code == 200
        assert response.json()["prompt"] == "a dog learns to fly"
        assert len(_user_records(db)) == 1

    @pytest.mark.api
    def test_unknown_generation(self, auth_client: TestClient):
        response = auth_client.post("/api/comics/nope/screenshot", json={"screenshot_url": SCREENSHOT})
        assert response.status_code == 404

    @pytest.mark.api
    def test_other_users_generation(self, auth_client: TestClient, db: Session):
        other = seed_records(db, OTHER_USER_ID, 1)[0]

        response = auth_client.post(
            f"/api/comics/{other.id}/screenshot",
            json={"screenshot_url": SCREENSHOT}
        )

        assert response.status_code == 404
        db.refresh(other)
        assert other.screenshot_url is None

    @pytest.mark.api
    @pytest.mark.parametrize("url", [
        "https://images.example.com/page.png",
        "data:text/plain;base64,aGVsbG8=",
        "data:image/png,not-base64",
    ])
    def test_rejects_non_image_data_urls(self, auth_client: TestClient, url):
        response = auth_client.post("/api/comics/gen-1/screenshot", json={"screenshot_url": url})
        assert response.status_code == 422


class TestHistory:
    """Tests for GET /api/comics/history"""

    @pytest.mark.api
    def test_lists_own_comics(self, auth_client: TestClient, db: Session):
        seed_records(db, TEST_USER_ID, 2)
        seed_records(db, OTHER_USER_ID, 1)

        response = auth_client.get("/api/comics/history")

        assert response.status_code == 200
        data = response.json()
        assert len(data) == 2
        assert {item["prompt"] for item in data} == {"seeded prompt 0", "seeded prompt 1"}
        assert data[0]["created_at"] == today_utc().isoformat()

    @pytest.mark.api
    def test_empty(self, auth_client: TestClient):
        assert auth_client.get("/api/comics/history").json() == []

    @pytest.mark.api
    def test_session_registry_untouched(self, auth_client: TestClient):
        auth_client.get("/api/comics/history")
        assert sessions.get(TEST_USER_ID) is None
