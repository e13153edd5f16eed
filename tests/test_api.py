"""HTTP-level tests for the matching and notification endpoints."""
import uuid
from unittest.mock import AsyncMock, patch

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import select

from back2u.api.matching import get_matching_service
from back2u.api.notifications import get_notification_service
from back2u.database import get_db
from back2u.main import app
from back2u.models import ItemMatch, Notification
from back2u.services.errors import RateLimitedError
from back2u.services.matching_service import MatchingService
from back2u.services.notification_service import NotificationService


class RaisingScorer:
    def __init__(self, exc: Exception) -> None:
        self.exc = exc

    async def score(self, source, candidates):
        raise self.exc


class DisabledEmail:
    async def send(self, **kwargs):
        return False


@pytest_asyncio.fixture
async def client(session_factory):
    async def _override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_notification_service] = lambda: NotificationService(
        email_service=DisabledEmail()
    )
    # Starlette re-raises unhandled errors after the 500 response is sent.
    transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def _use_service(service: MatchingService) -> None:
    app.dependency_overrides[get_matching_service] = lambda: service


@pytest_asyncio.fixture
async def wallet_pair(make_profile, make_item):
    alice = await make_profile("Alice")
    bob = await make_profile("Bob")
    lost = await make_item(alice, "lost", title="black wallet")
    found = await make_item(bob, "found", title="black leather wallet")
    return alice, bob, lost, found


class TestFindMatchesEndpoint:
    @pytest.mark.asyncio
    async def test_returns_scored_matches(self, client, wallet_pair, make_scorer, make_dispatcher, session_factory):
        alice, bob, lost, found = wallet_pair
        dispatcher = make_dispatcher()
        _use_service(MatchingService(
            make_scorer([{"item_id": str(found.id), "score": 0.9, "reason": "same wallet"}]),
            dispatcher,
        ))

        response = await client.post("/api/v1/find-matches", json={"itemId": str(lost.id)})

        assert response.status_code == 200
        assert response.json() == {
            "matches": [{"item_id": str(found.id), "score": 0.9, "reason": "same wallet"}]
        }
        async with session_factory() as session:
            matches = (await session.execute(select(ItemMatch))).scalars().all()
        assert [(m.lost_item_id, m.found_item_id) for m in matches] == [(lost.id, found.id)]
        assert [r.user_id for r in dispatcher.requests] == [bob.id, alice.id]

    @pytest.mark.asyncio
    async def test_no_candidates_returns_empty(self, client, make_profile, make_item, make_scorer):
        owner = await make_profile("Solo")
        lost = await make_item(owner, "lost")
        _use_service(MatchingService(make_scorer([])))

        response = await client.post("/api/v1/find-matches", json={"itemId": str(lost.id)})

        assert response.status_code == 200
        assert response.json() == {"matches": []}

    @pytest.mark.asyncio
    async def test_unknown_item_is_404(self, client, make_scorer):
        _use_service(MatchingService(make_scorer([])))

        response = await client.post("/api/v1/find-matches", json={"itemId": str(uuid.uuid4())})

        assert response.status_code == 404
        assert response.json() == {"error": "Item not found"}

    @pytest.mark.asyncio
    async def test_rate_limited_is_429(self, client, wallet_pair):
        _, _, lost, _ = wallet_pair
        _use_service(MatchingService(RaisingScorer(RateLimitedError())))

        response = await client.post("/api/v1/find-matches", json={"itemId": str(lost.id)})

        assert response.status_code == 429
        assert response.json() == {"error": "Rate limit exceeded. Please try again later."}

    @pytest.mark.asyncio
    async def test_unexpected_error_is_500(self, client, wallet_pair):
        _, _, lost, _ = wallet_pair
        _use_service(MatchingService(RaisingScorer(RuntimeError("scorer exploded"))))

        response = await client.post("/api/v1/find-matches", json={"itemId": str(lost.id)})

        assert response.status_code == 500
        assert response.json() == {"error": "scorer exploded"}

    @pytest.mark.asyncio
    async def test_malformed_item_id_is_404(self, client, make_scorer):
        scorer = make_scorer([])
        _use_service(MatchingService(scorer))

        response = await client.post("/api/v1/find-matches", json={"itemId": "not-a-uuid"})

        assert response.status_code == 404
        assert response.json() == {"error": "Item not found"}
        assert scorer.calls == []

    @pytest.mark.asyncio
    async def test_missing_item_id_is_rejected(self, client, make_scorer):
        _use_service(MatchingService(make_scorer([])))

        response = await client.post("/api/v1/find-matches", json={})

        assert response.status_code == 422


class TestMatchReviewEndpoints:
    @pytest.mark.asyncio
    async def test_list_and_confirm(self, client, wallet_pair, db_session, make_scorer):
        _, _, lost, found = wallet_pair
        match = ItemMatch(
            lost_item_id=lost.id, found_item_id=found.id, match_score=0.8, match_reason="same"
        )
        db_session.add(match)
        await db_session.commit()
        _use_service(MatchingService(make_scorer([])))

        response = await client.get("/api/v1/matches", params={"item_id": str(lost.id)})
        assert response.status_code == 200
        body = response.json()
        assert len(body) == 1
        assert body[0]["status"] == "pending"
        assert body[0]["found_item"]["title"] == "black leather wallet"

        response = await client.patch(f"/api/v1/matches/{match.id}", json={"status": "confirmed"})
        assert response.status_code == 200
        assert response.json()["status"] == "confirmed"

    @pytest.mark.asyncio
    async def test_patch_unknown_match_is_404(self, client, make_scorer):
        _use_service(MatchingService(make_scorer([])))

        response = await client.patch(f"/api/v1/matches/{uuid.uuid4()}", json={"status": "dismissed"})

        assert response.status_code == 404
        assert response.json() == {"error": "Match not found"}

    @pytest.mark.asyncio
    async def test_unexpected_list_error_is_500(self, client, make_scorer):
        service = MatchingService(make_scorer([]))
        _use_service(service)

        with patch.object(service, "list_matches", AsyncMock(side_effect=RuntimeError("db exploded"))):
            response = await client.get("/api/v1/matches")

        assert response.status_code == 500
        assert response.json() == {"error": "db exploded"}

    @pytest.mark.asyncio
    async def test_unexpected_update_error_is_500(self, client, make_scorer):
        service = MatchingService(make_scorer([]))
        _use_service(service)

        with patch.object(service, "update_status", AsyncMock(side_effect=RuntimeError("write failed"))):
            response = await client.patch(f"/api/v1/matches/{uuid.uuid4()}", json={"status": "confirmed"})

        assert response.status_code == 500
        assert response.json() == {"error": "write failed"}

    @pytest.mark.asyncio
    async def test_patch_rejects_other_statuses(self, client, make_scorer):
        _use_service(MatchingService(make_scorer([])))

        response = await client.patch(f"/api/v1/matches/{uuid.uuid4()}", json={"status": "pending"})

        assert response.status_code == 422


class TestNotificationEndpoints:
    @pytest.mark.asyncio
    async def test_sink_persists_notification(self, client, make_profile, session_factory):
        profile = await make_profile("Gina")

        response = await client.post("/api/v1/notifications", json={
            "type": "match",
            "userId": str(profile.id),
            "title": "Potential Match Found!",
            "message": "Your lost item might match",
        })

        assert response.status_code == 200
        assert response.json() == {"success": True}
        async with session_factory() as session:
            rows = (await session.execute(select(Notification))).scalars().all()
        assert [r.user_id for r in rows] == [profile.id]

    @pytest.mark.asyncio
    async def test_sink_requires_service_key_when_configured(self, client, make_profile):
        profile = await make_profile("Hank")
        payload = {
            "type": "status_change",
            "userId": str(profile.id),
            "title": "Item claimed",
            "message": "Your item was claimed",
        }

        with patch("back2u.api.notifications.get_settings") as get_settings:
            get_settings.return_value.SERVICE_API_KEY = "svc-key"
            denied = await client.post("/api/v1/notifications", json=payload)
            allowed = await client.post(
                "/api/v1/notifications",
                json=payload,
                headers={"Authorization": "Bearer svc-key"},
            )

        assert denied.status_code == 401
        assert denied.json() == {"error": "Invalid service credentials."}
        assert allowed.status_code == 200

    @pytest.mark.asyncio
    async def test_inbox_and_mark_read(self, client, make_profile):
        profile = await make_profile("Ivy")
        await client.post("/api/v1/notifications", json={
            "type": "message",
            "userId": str(profile.id),
            "title": "New Message",
            "message": "Someone wrote to you",
        })

        inbox = await client.get("/api/v1/notifications", params={"user_id": str(profile.id)})
        assert inbox.status_code == 200
        assert len(inbox.json()) == 1
        assert inbox.json()[0]["is_read"] is False

        notification_id = inbox.json()[0]["id"]
        response = await client.post(f"/api/v1/notifications/{notification_id}/read")
        assert response.status_code == 204

        inbox = await client.get("/api/v1/notifications", params={"user_id": str(profile.id)})
        assert inbox.json()[0]["is_read"] is True

        missing = await client.post(f"/api/v1/notifications/{uuid.uuid4()}/read")
        assert missing.status_code == 404
        assert missing.json() == {"error": "Notification not found"}

    @pytest.mark.asyncio
    async def test_unexpected_inbox_error_is_500(self, client):
        service = NotificationService(email_service=DisabledEmail())
        app.dependency_overrides[get_notification_service] = lambda: service

        with patch.object(service, "list_for_user", AsyncMock(side_effect=RuntimeError("inbox exploded"))):
            response = await client.get("/api/v1/notifications", params={"user_id": str(uuid.uuid4())})

        assert response.status_code == 500
        assert response.json() == {"error": "inbox exploded"}


class TestHealth:
    @pytest.mark.asyncio
    async def test_liveness(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    @pytest.mark.asyncio
    async def test_request_id_is_echoed(self, client):
        response = await client.get("/health", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"

        response = await client.get("/health")
        assert len(response.headers["X-Request-ID"]) == 32
