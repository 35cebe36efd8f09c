"""
Tests for API routes — health, sweeper status, sweeps, statistics, club cleanup.
"""

from sweeper.main import app


class TestHealthEndpoint:
    async def test_health(self, client):
        resp = await client.get("/api/v1/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["sweeper"] == "stopped"
        assert "version" in data
        assert "timestamp" in data


class TestRootEndpoint:
    async def test_root(self, client):
        resp = await client.get("/")
        assert resp.status_code == 200
        assert "Retention Sweeper" in resp.json()["service"]


class TestSweeperAPI:
    async def test_status(self, client):
        resp = await client.get("/api/v1/sweeper")
        assert resp.status_code == 200
        data = resp.json()
        assert data["state"] == "stopped"
        assert data["is_running"] is False
        assert data["interval_hours"] == 1.0
        assert data["next_sweep_in_s"] is None
        assert data["last_report"] is None
        assert len(data["tasks"]) == 11

    async def test_trigger_sweep_is_recorded(self, client, seeded_store):
        resp = await client.post("/api/v1/sweeper/sweeps")
        assert resp.status_code == 200
        report = resp.json()
        assert report["trigger"] == "manual"
        assert report["total_cleaned"] == 12
        assert report["failed"] == []
        assert report["results"]["expired_notifications"]["cleaned"] == 1

        resp = await client.get("/api/v1/sweeper/sweeps")
        assert resp.status_code == 200
        history = resp.json()
        assert history["total"] == 1
        run = history["runs"][0]
        assert run["trigger"] == "manual"
        assert run["total_cleaned"] == 12
        assert run["failed_tasks"] == 0

        resp = await client.get("/api/v1/sweeper")
        assert resp.json()["last_report"]["total_cleaned"] == 12

    async def test_history_empty(self, client):
        resp = await client.get("/api/v1/sweeper/sweeps?limit=5")
        assert resp.status_code == 200
        assert resp.json() == {"runs": [], "total": 0}

    async def test_history_limit_validation(self, client):
        resp = await client.get("/api/v1/sweeper/sweeps?limit=0")
        assert resp.status_code == 422

    async def test_statistics(self, client, seeded_store):
        resp = await client.get("/api/v1/sweeper/statistics")
        assert resp.status_code == 200
        data = resp.json()
        assert data["statistics"]["expired_chat_messages"] == 2
        assert data["total_eligible"] == 7

    async def test_run_single_task(self, client, seeded_store):
        resp = await client.post("/api/v1/sweeper/tasks/expired_presence")
        assert resp.status_code == 200
        data = resp.json()
        assert data["name"] == "expired_presence"
        assert data["cleaned"] == 1
        assert data["ok"] is True

    async def test_run_unknown_task(self, client):
        resp = await client.post("/api/v1/sweeper/tasks/does_not_exist")
        assert resp.status_code == 404

    async def test_club_cleanup(self, client, seeded_store):
        resp = await client.post("/api/v1/sweeper/clubs/c1/cleanup")
        assert resp.status_code == 200
        data = resp.json()
        assert data["club_id"] == "c1"
        assert data["total_cleaned"] == 9
        assert set(data["results"]) == {
            "club_chat_messages", "club_pending_approvals", "club_chat_participants",
        }

    async def test_club_cleanup_blank_id(self, client):
        resp = await client.post("/api/v1/sweeper/clubs/%20/cleanup")
        assert resp.status_code == 422

    async def test_not_configured(self, client):
        app.state.sweeper = None

        resp = await client.get("/api/v1/sweeper")
        assert resp.status_code == 503

        resp = await client.get("/api/v1/health")
        assert resp.json()["sweeper"] is None
