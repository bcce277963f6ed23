"""
HTTP surface tests

Requests go through the full FastAPI app with the database, settings and
engagement reader swapped for test doubles.
"""
from datetime import timedelta

import httpx
import pytest
import pytest_asyncio

from competition_engine.config.feature_flags import EngineSettings, get_engine_settings
from competition_engine.core.rate_limit import limiter
from competition_engine.core.time import utcnow
from competition_engine.database import get_db, get_session_factory
from competition_engine.main import create_app
from competition_engine.orm.competition import Competition
from competition_engine.rbac import create_access_token
from competition_engine.routes.dependencies import get_engagement_reader
from competition_engine.services.termination_service import NO_PARTICIPANTS_REASON
from competition_engine.tests.factories import (
    FakeEngagementReader,
    add_entry,
    add_participant,
    fetch,
    make_competition,
)

ADMIN = {"Authorization": f"Bearer {create_access_token(1, role='admin')}"}
USER = {"Authorization": f"Bearer {create_access_token(42)}"}


def _schedule(now, first_round_ended=True):
    """Round 1 ended (or open), round 2 open (or upcoming)."""
    if first_round_ended:
        return [
            ("Round 1", now - timedelta(days=10), now - timedelta(days=1), 10),
            ("Round 2", now - timedelta(days=1), now + timedelta(days=5), 20),
        ]
    return [
        ("Round 1", now - timedelta(days=1), now + timedelta(days=5), 10),
        ("Round 2", now + timedelta(days=5), now + timedelta(days=10), 20),
    ]


@pytest_asyncio.fixture
async def app(session_factory):
    application = create_app()
    reader = FakeEngagementReader()
    settings = EngineSettings(engagement_timeout_seconds=2.0)

    async def override_db():
        async with session_factory() as session:
            yield session

    application.dependency_overrides[get_db] = override_db
    application.dependency_overrides[get_session_factory] = lambda: session_factory
    application.dependency_overrides[get_engagement_reader] = lambda: reader
    application.dependency_overrides[get_engine_settings] = lambda: settings
    application.state.reader = reader

    limiter.enabled = False
    yield application
    limiter.enabled = True


@pytest_asyncio.fixture
async def client(app):
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as http:
        yield http


async def _seed_ended_round(db, likes_a=12):
    now = utcnow()
    competition, (r1, r2) = await make_competition(db, _schedule(now))
    a = await add_participant(db, competition, user_id=42, current_round=r1)
    await add_entry(db, a, r1, post_id="post-a")
    return {"competition": competition.id, "r1": r1.id, "r2": r2.id, "a": a.id}


# =============================================================================
# Public reads
# =============================================================================

@pytest.mark.asyncio
class TestPublicRoutes:

    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    async def test_listing_ends_abandoned_competitions(self, client, db):
        competition, _ = await make_competition(db, _schedule(utcnow()))
        competition_id = competition.id

        response = await client.get("/api/competitions")

        assert response.status_code == 200
        listed = {c["id"]: c for c in response.json()["competitions"]}
        assert listed[competition_id]["completion_reason"] == NO_PARTICIPANTS_REASON
        assert listed[competition_id]["is_active"] is False
        assert [r["state"] for r in listed[competition_id]["rounds"]] == ["closed", "open"]

    async def test_unknown_competition_is_404(self, client):
        response = await client.get("/api/competitions/9999")

        assert response.status_code == 404
        body = response.json()
        assert body["success"] is False
        assert body["code"] == "COMPETITION_NOT_FOUND"

    async def test_competition_detail(self, client, db):
        ids = await _seed_ended_round(db)

        response = await client.get(f"/api/competitions/{ids['competition']}")

        assert response.status_code == 200
        data = response.json()["competition"]
        assert data["participant_count"] == 1
        assert data["leaderboard_round_id"] == ids["r2"]

    async def test_round_leaderboard(self, app, client, db):
        ids = await _seed_ended_round(db)
        app.state.reader.likes["post-a"] = 7

        response = await client.get(f"/api/rounds/{ids['r1']}/leaderboard")

        assert response.status_code == 200
        leaderboard = response.json()["leaderboard"]
        assert leaderboard["entries"][0]["likes"] == 7
        assert leaderboard["entries"][0]["rank"] == 1
        assert leaderboard["entries"][0]["has_qualified"] is False

    async def test_invalid_cursor_is_400(self, client, db):
        ids = await _seed_ended_round(db)

        response = await client.get(f"/api/rounds/{ids['r1']}/leaderboard", params={"cursor": 123456})

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_CURSOR"

    async def test_engagement_outage_is_503(self, app, client, db):
        ids = await _seed_ended_round(db)
        app.state.reader.fail_on.add("post-a")

        response = await client.get(f"/api/rounds/{ids['r1']}/leaderboard")

        assert response.status_code == 503
        assert response.json()["code"] == "ENGAGEMENT_UNAVAILABLE"

    async def test_winners_of_running_competition_is_400(self, client, db):
        competition, _ = await make_competition(db, _schedule(utcnow(), first_round_ended=False))

        response = await client.get(f"/api/competitions/{competition.id}/winners")

        assert response.status_code == 400
        assert response.json()["message"] == "Competition not completed yet"

    async def test_engine_switched_off(self, app, client):
        app.dependency_overrides[get_engine_settings] = lambda: EngineSettings(engine_enabled=False)

        response = await client.get("/api/competitions")

        assert response.status_code == 403
        assert response.json()["code"] == "FEATURE_DISABLED"


# =============================================================================
# Participation
# =============================================================================

@pytest.mark.asyncio
class TestParticipationRoutes:

    async def test_join_then_submit(self, client, db):
        competition, (r1, _) = await make_competition(db, _schedule(utcnow(), first_round_ended=False))

        joined = await client.post(f"/api/competitions/{competition.id}/join", headers=USER)
        again = await client.post(f"/api/competitions/{competition.id}/join", headers=USER)
        submitted = await client.post(
            f"/api/competitions/{competition.id}/rounds/{r1.id}/submit",
            json={"post_id": "post-42"},
            headers=USER,
        )

        assert joined.status_code == 201
        assert joined.json()["participant"]["user_id"] == 42
        assert again.status_code == 409
        assert again.json()["code"] == "ALREADY_PARTICIPATING"
        assert submitted.status_code == 200
        assert submitted.json()["entry"]["post_id"] == "post-42"

    async def test_join_requires_token(self, client, db):
        competition, _ = await make_competition(db, _schedule(utcnow(), first_round_ended=False))

        response = await client.post(f"/api/competitions/{competition.id}/join")

        assert response.status_code == 401

    async def test_submit_validates_payload(self, client, db):
        competition, (r1, _) = await make_competition(db, _schedule(utcnow(), first_round_ended=False))

        response = await client.post(
            f"/api/competitions/{competition.id}/rounds/{r1.id}/submit",
            json={"post_id": ""},
            headers=USER,
        )

        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"


# =============================================================================
# Admin triggers
# =============================================================================

@pytest.mark.asyncio
class TestAdminRoutes:

    async def test_processing_requires_admin(self, client, db):
        ids = await _seed_ended_round(db)

        anonymous = await client.post(f"/api/admin/rounds/{ids['r1']}/process")
        user = await client.post(f"/api/admin/rounds/{ids['r1']}/process", headers=USER)

        assert anonymous.status_code == 401
        assert user.status_code == 403
        assert user.json()["code"] == "ADMIN_REQUIRED"

    async def test_open_round_returns_retry_after(self, client, db):
        ids = await _seed_ended_round(db)

        response = await client.post(f"/api/admin/rounds/{ids['r2']}/process", headers=ADMIN)

        assert response.status_code == 409
        body = response.json()
        assert body["code"] == "ROUND_NOT_CLOSED"
        assert body["details"]["round_id"] == ids["r2"]
        assert int(response.headers["Retry-After"]) > 0

    async def test_processing_twice_succeeds_both_times(self, app, client, db):
        ids = await _seed_ended_round(db)
        app.state.reader.likes["post-a"] = 12

        first = await client.post(f"/api/admin/rounds/{ids['r1']}/process", headers=ADMIN)
        second = await client.post(f"/api/admin/rounds/{ids['r1']}/process", headers=ADMIN)

        assert first.status_code == 200
        assert second.status_code == 200
        assert first.json()["result"]["qualified_count"] == 1
        assert second.json()["result"]["qualified_count"] == 1
        assert first.json()["result"]["entry_results"][0]["next_entry_created"] is True
        assert second.json()["result"]["entry_results"][0]["next_entry_created"] is False

    async def test_processing_terminated_competition_is_noop(self, client, db):
        now = utcnow()
        competition, (r1, _) = await make_competition(db, _schedule(now), completion_reason="Over")

        response = await client.post(f"/api/admin/rounds/{r1.id}/process", headers=ADMIN)

        assert response.status_code == 200
        assert response.json()["noop"] is True
        assert response.json()["completion_reason"] == "Over"

    async def test_failed_threshold_terminates_after_processing(self, client, db):
        ids = await _seed_ended_round(db)

        response = await client.post(f"/api/admin/rounds/{ids['r1']}/process", headers=ADMIN)

        assert response.status_code == 200
        termination = response.json()["termination"]
        assert termination["terminated"] is True
        assert termination["check"] == "threshold_unmet"
        stored = await fetch(db, Competition, ids["competition"])
        assert stored.is_active is False

    async def test_reconcile_and_evaluate(self, client, db):
        ids = await _seed_ended_round(db)

        reconciled = await client.post(f"/api/admin/competitions/{ids['competition']}/reconcile", headers=ADMIN)
        evaluated = await client.post(f"/api/admin/competitions/{ids['competition']}/evaluate", headers=ADMIN)

        assert reconciled.status_code == 200
        assert reconciled.json()["report"]["entries_examined"] == 1
        assert evaluated.status_code == 200
        assert evaluated.json()["decision"]["check"] == "threshold_unmet"

    async def test_sweep_accepts_shared_secret(self, client, db, monkeypatch):
        monkeypatch.setenv("SWEEP_SECRET", "s3cret-token")
        await _seed_ended_round(db)

        accepted = await client.post("/api/admin/sweep", headers={"Authorization": "Bearer s3cret-token"})
        rejected = await client.post("/api/admin/sweep", headers={"Authorization": "Bearer wrong"})
        non_admin = await client.post("/api/admin/sweep", headers=USER)

        assert accepted.status_code == 200
        assert accepted.json()["report"]["competitions_checked"] == 1
        assert rejected.status_code == 401
        assert non_admin.status_code == 403
