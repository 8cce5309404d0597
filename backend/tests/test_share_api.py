from __future__ import annotations

import httpx
import pytest

from vidvault.api.deps import get_coordinator, get_mailer, get_repository, get_share_email_limiter
from vidvault.core.rate_limit import AttemptLimiter
from vidvault.core.settings import Settings
from vidvault.db.models.video import Video
from vidvault.main import app
from vidvault.services.uploads import MultipartUploadCoordinator

TOKEN = "tok_" + "a" * 40


class _StubMailer:
    def __init__(self) -> None:
        self.sent = []

    async def send(self, messages) -> None:
        self.sent.extend(messages)


def _video(**overrides) -> Video:
    data = dict(
        id=1,
        user_id=1,
        title="Quarterly Update",
        description="Numbers",
        original_filename="q.mp4",
        s3_key="videos/1/q.mp4",
        s3_bucket="vidvault-test",
        s3_region="us-east-1",
        size=1024,
        mime_type="video/mp4",
        duration=90,
        status="completed",
        is_public=True,
        share_token=TOKEN,
    )
    data.update(overrides)
    return Video(**data)


@pytest.fixture
def mailer(storage, repo):
    stub = _StubMailer()
    coordinator = MultipartUploadCoordinator(storage, repo, Settings(PUBLIC_BASE_URL="https://vids.test"))
    # Frozen clock keeps every request inside one window.
    limiter = AttemptLimiter(max_attempts=5, decay_seconds=60, clock=lambda: 1_000_020.0)
    app.dependency_overrides[get_coordinator] = lambda: coordinator
    app.dependency_overrides[get_repository] = lambda: repo
    app.dependency_overrides[get_mailer] = lambda: stub
    app.dependency_overrides[get_share_email_limiter] = lambda: limiter
    yield stub
    app.dependency_overrides.clear()


def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_public_page_shows_shared_video(mailer, repo) -> None:
    repo.rows[1] = _video()

    async with _client() as client:
        r = await client.get(f"/api/v1/share/{TOKEN}")

    assert r.status_code == 200
    body = r.json()
    assert body["title"] == "Quarterly Update"
    assert body["formatted_duration"] == "01:30"
    assert body["s3_url"] == "https://s3.test/videos/1/q.mp4?signed=1"


@pytest.mark.asyncio
@pytest.mark.parametrize("overrides", [{"is_public": False}, {"status": "uploading"}, {"share_token": "other"}])
async def test_private_or_unfinished_videos_are_hidden(mailer, repo, overrides) -> None:
    repo.rows[1] = _video(**overrides)

    async with _client() as client:
        r = await client.get(f"/api/v1/share/{TOKEN}")

    assert r.status_code == 404
    assert r.json()["error"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_share_email_sends_one_message_per_recipient(mailer, repo) -> None:
    repo.rows[1] = _video()

    async with _client() as client:
        r = await client.post(
            f"/api/v1/share/{TOKEN}/email",
            json={"emails": "a@example.com, b@example.com", "sender_name": "Dana", "message": "Take a look"},
        )

    assert r.status_code == 200
    assert r.json()["success"] is True
    assert [m["To"] for m in mailer.sent] == ["a@example.com", "b@example.com"]
    assert mailer.sent[0]["Subject"] == "Dana shared a video with you: Quarterly Update"
    assert f"https://vids.test/share/{TOKEN}" in mailer.sent[0].get_content()


@pytest.mark.asyncio
async def test_share_email_validation(mailer, repo) -> None:
    repo.rows[1] = _video()
    six = ",".join(f"user{i}@example.com" for i in range(6))

    async with _client() as client:
        invalid = await client.post(f"/api/v1/share/{TOKEN}/email", json={"emails": "a@example.com, nope"})
        too_many = await client.post(f"/api/v1/share/{TOKEN}/email", json={"emails": six})
        both = await client.post(f"/api/v1/share/{TOKEN}/email", json={"emails": six + ",nope"})
        long_message = await client.post(
            f"/api/v1/share/{TOKEN}/email", json={"emails": "a@example.com", "message": "x" * 501}
        )

    assert invalid.status_code == 422
    assert "nope" in invalid.json()["message"]
    assert too_many.status_code == 422
    assert too_many.json()["message"] == "Maximum 5 email addresses allowed"
    assert "Invalid email addresses" in both.json()["message"]
    assert long_message.status_code == 422
    assert long_message.json()["metadata"] == {"field": "message"}
    assert mailer.sent == []


@pytest.mark.asyncio
async def test_share_email_is_rate_limited_per_ip(mailer, repo) -> None:
    repo.rows[1] = _video()

    async with _client() as client:
        statuses = [
            (await client.post(f"/api/v1/share/{TOKEN}/email", json={"emails": "a@example.com"})).status_code
            for _ in range(6)
        ]
        limited = await client.post(f"/api/v1/share/{TOKEN}/email", json={"emails": "a@example.com"})

    assert statuses == [200] * 5 + [429]
    assert limited.json()["error"] == "RATE_LIMITED"
    assert len(mailer.sent) == 5
