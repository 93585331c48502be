"""API route tests. Lifespan is disabled; the monitor and review services run over in-memory stores."""
from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from api.app import create_app
from api.dependencies import get_monitor, get_review
from shared.models.domain import Game, TeamLine
from shared.models.enums import GameStatus, ReviewStatus

from tests.conftest import GAME_ID, after, feed_action


@pytest.fixture
def client(monitor, review) -> TestClient:
    """Test client with lifespan disabled and services overridden."""
    app = create_app(use_lifespan=False)
    app.dependency_overrides[get_monitor] = lambda: monitor
    app.dependency_overrides[get_review] = lambda: review
    with TestClient(app) as c:
        yield c


@pytest.fixture
def game(games) -> Game:
    game = Game(
        game_id=GAME_ID,
        game_status=GameStatus.LIVE,
        home_team=TeamLine(team_tricode="BOS", score=54),
        away_team=TeamLine(team_tricode="NYK", score=50),
    )
    games.rows[GAME_ID] = game
    return game


def test_health_returns_ok(client: TestClient) -> None:
    """GET /health returns 200 and status ok."""
    r = client.get("/health")
    assert r.status_code == 200
    data = r.json()
    assert data.get("status") == "ok"
    assert data.get("service") == "api"


def test_request_id_is_echoed(client: TestClient) -> None:
    r = client.get("/health", headers={"X-Request-ID": "abc123"})
    assert r.headers["X-Request-ID"] == "abc123"


# ── Monitoring control ──────────────────────────────────────────────────

def test_start_and_stop_monitoring(client: TestClient, game, feed, games) -> None:
    feed.actions[GAME_ID] = [feed_action(1, "Jump Ball Jones vs. Smith")]

    r = client.post(f"/v1/monitor/{GAME_ID}/start")
    assert r.status_code == 200
    body = r.json()
    assert body["fresh"] is True
    assert body["game"]["is_monitoring"] is True

    active = client.get("/v1/monitoring/active").json()
    assert active["count"] == 1
    assert active["games"][0]["game_id"] == GAME_ID

    r = client.post(f"/v1/monitor/{GAME_ID}/stop")
    assert r.status_code == 200
    assert games.rows[GAME_ID].is_monitoring is False


def test_non_fresh_start_body(client: TestClient, game, feed) -> None:
    feed.actions[GAME_ID] = []
    r = client.post(f"/v1/monitor/{GAME_ID}/start", json={"fresh": False})
    assert r.status_code == 200
    assert r.json()["fresh"] is False


def test_unknown_game_is_404(client: TestClient) -> None:
    r = client.post("/v1/monitor/0029999999/start")
    assert r.status_code == 404
    assert r.json()["error"] == "game_not_found"
    assert client.get("/v1/games/0029999999").status_code == 404


def test_locked_game_is_409(client: TestClient, games, clock) -> None:
    games.rows[GAME_ID] = Game(game_id=GAME_ID, is_refreshing=True, refresh_started_at=clock.now)
    r = client.post(f"/v1/monitor/{GAME_ID}/start")
    assert r.status_code == 409
    assert r.json()["error"] == "refresh_in_progress"
    assert client.post(f"/v1/monitor/{GAME_ID}/start", json={"fresh": False}).status_code == 409
    assert client.post(f"/v1/playbyplay/{GAME_ID}/refresh").status_code == 409


def test_feed_outage_is_502(client: TestClient, game, feed) -> None:
    feed.fail = True
    r = client.post(f"/v1/playbyplay/{GAME_ID}/refresh")
    assert r.status_code == 502
    assert r.json()["error"] == "feed_unavailable"


def test_trigger_poll_and_stats(client: TestClient, game, feed, games) -> None:
    games.rows[GAME_ID].is_monitoring = True
    feed.actions[GAME_ID] = [feed_action(1, "Jump Ball Jones vs. Smith")]

    r = client.post("/v1/monitoring/trigger-poll")
    assert r.status_code == 200
    assert r.json()["next_interval_s"] == 30.0

    stats = client.get("/v1/monitoring/stats").json()
    assert stats["total_runs"] == 1
    assert stats["games_monitored"] == 1


def test_service_start_and_stop(client: TestClient) -> None:
    assert client.post("/v1/monitoring/start-service").json()["is_running"] is True
    assert client.post("/v1/monitoring/stop-service").json()["is_running"] is False


def test_schedule_sync(client: TestClient, feed) -> None:
    r = client.post("/v1/schedule/sync")
    assert r.status_code == 200
    assert r.json()["count"] == 0
    assert feed.schedule_fetches == 1


# ── Games and play-by-play ──────────────────────────────────────────────

def test_refresh_then_read_views(client: TestClient, game, feed) -> None:
    feed.actions[GAME_ID] = [
        feed_action(1, "Jump Ball Jones vs. Smith"),
        feed_action(2, "Jones Layup (2 PTS)", period=2),
    ]
    r = client.post(f"/v1/playbyplay/{GAME_ID}/refresh")
    assert r.status_code == 200
    assert r.json()["created"] == 2

    listing = client.get(f"/v1/playbyplay/{GAME_ID}").json()
    assert listing["count"] == 2
    assert "raw_data" not in listing["actions"][0]

    assert client.get(f"/v1/playbyplay/{GAME_ID}", params={"period": 2}).json()["count"] == 1
    assert client.get(f"/v1/playbyplay/{GAME_ID}", params={"period": 0}).status_code == 422

    grouped = client.get(f"/v1/playbyplay/{GAME_ID}/by-period").json()["play_by_play"]
    assert sorted(grouped) == ["1", "2"]

    full = client.get(f"/v1/games/{GAME_ID}/full").json()
    assert full["game"]["home_team"]["score"] == 54
    assert full["edit_stats"]["total_actions"] == 2


def test_edit_surfaces_in_edited_view(client: TestClient, game, feed) -> None:
    feed.actions[GAME_ID] = [feed_action(1, "Jones Layup (2 PTS)")]
    client.post(f"/v1/playbyplay/{GAME_ID}/refresh")
    feed.actions[GAME_ID] = [feed_action(1, "Smith Layup (2 PTS)", edited=after(45))]
    client.post(f"/v1/playbyplay/{GAME_ID}/refresh")

    edited = client.get(f"/v1/playbyplay/{GAME_ID}/edited").json()
    assert edited["count"] == 1
    history = edited["actions"][0]["edit_history"]
    assert history[0]["old_description"] == "Jones Layup (2 PTS)"
    assert history[0]["time_diff"] == 45.0

    stats = client.get(f"/v1/playbyplay/{GAME_ID}/stats").json()
    assert stats["edited_actions"] == 1


def test_review_workflow(client: TestClient, game, feed, actions) -> None:
    feed.actions[GAME_ID] = [feed_action(1, "Jump Ball"), feed_action(2, "Jones Layup (2 PTS)")]
    client.post(f"/v1/playbyplay/{GAME_ID}/refresh")

    r = client.post(
        f"/v1/playbyplay/{GAME_ID}/action/2/review",
        json={"status": "flagged", "note": "check shooter", "priority": "major"},
    )
    assert r.status_code == 200
    assert r.json()["review_status"] == "flagged"
    assert actions.rows[(GAME_ID, 2)].review_note == "check shooter"

    assert client.post(f"/v1/playbyplay/{GAME_ID}/batch-approve").json()["approved_count"] == 1
    assert actions.rows[(GAME_ID, 1)].review_status == ReviewStatus.APPROVED

    progress = client.get(f"/v1/playbyplay/{GAME_ID}/review-stats").json()
    assert progress["review_progress"] == 100

    assert client.post(f"/v1/playbyplay/{GAME_ID}/clear-reviewed").json()["cleared_count"] == 2
    assert client.post(f"/v1/playbyplay/{GAME_ID}/reset-edit-flags").json()["modified_count"] == 0


def test_review_unknown_action_is_404(client: TestClient, game) -> None:
    r = client.post(f"/v1/playbyplay/{GAME_ID}/action/99/review", json={"status": "approved"})
    assert r.status_code == 404
    assert r.json()["error"] == "action_not_found"


def test_review_rejects_unknown_status(client: TestClient, game) -> None:
    r = client.post(f"/v1/playbyplay/{GAME_ID}/action/1/review", json={"status": "maybe"})
    assert r.status_code == 422
