import pytest
from fastapi.testclient import TestClient

import api.main as api_main
from api.main import app
from smartqueue.engine import RecommendationEngine
from smartqueue.models import AudioFeatures, Track
from smartqueue.recommendation_client import CatalogRecommendationSource

client = TestClient(app)

TITLES = ["Amber", "Birch", "Cedar", "Delta", "Ember", "Fjord", "Grove", "Haven", "Islet", "Jasper", "Kestrel", "Lagoon"]
GENRES = ["rock", "jazz", "folk"]


def _library():
    return [
        Track(
            id=f"t{i}",
            title=TITLES[i],
            artists=[f"Band {i % 4}"],
            genres=[GENRES[i % 3]],
            audio_features=AudioFeatures(energy=(i % 10) / 10, bpm=100 + i, key=i % 12),
        )
        for i in range(12)
    ]


@pytest.fixture(autouse=True)
def engine(monkeypatch):
    library = _library()
    eng = RecommendationEngine(recommendations=CatalogRecommendationSource(library))
    eng.register_tracks(library)
    monkeypatch.setattr(api_main, "engine", eng)
    yield eng
    eng.close()


def test_status():
    resp = client.get("/api/status")
    assert resp.status_code == 200
    data = resp.json()
    assert data["tracks"] == 12
    assert data["indexed"] == 12
    assert data["providers"] == []


def test_register_and_get_track():
    payload = {"tracks": [{"id": "n1", "title": "Nimbus", "artists": ["New"], "genres": ["jazz"]}]}
    resp = client.post("/api/tracks", json=payload)
    assert resp.status_code == 200
    assert resp.json()["registered"] == 1

    resp = client.get("/api/tracks/n1")
    assert resp.status_code == 200
    assert resp.json()["title"] == "Nimbus"
    assert client.get("/api/tracks/missing").status_code == 404


def test_record_event():
    resp = client.post("/api/events", json={"type": "like", "track_id": "t1"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["recorded"] is True
    assert data["taste_profile"] is True


def test_record_event_errors():
    assert client.post("/api/events", json={"type": "like", "track_id": "missing"}).status_code == 404
    assert client.post("/api/events", json={"type": "pause", "track_id": "t1"}).status_code == 422
    assert client.post("/api/events", json={"type": "like", "track_id": "t1", "strength": 3}).status_code == 422


def test_events_are_per_user(engine):
    client.post("/api/events", params={"user_id": "alice"}, json={"type": "like", "track_id": "t2"})
    assert "t2" in engine.user("alice").preferences.liked_tracks
    assert "t2" not in engine.user().preferences.liked_tracks


def test_rank():
    resp = client.post("/api/rank", json={"track_ids": ["t1", "t2", "missing", "t3"]})
    assert resp.status_code == 200
    results = resp.json()["results"]
    assert len(results) == 3
    scores = [r["score"] for r in results]
    assert scores == sorted(scores, reverse=True)


def test_queue_next():
    resp = client.post("/api/queue/next", json={"count": 3, "current_track_id": "t0", "upcoming_ids": ["t1"]})
    assert resp.status_code == 200
    data = resp.json()
    assert data["error"] is None
    ids = [t["track"]["id"] for t in data["tracks"]]
    assert len(ids) == 3
    assert not {"t0", "t1"} & set(ids)
    assert all(t["source"]["label"] for t in data["tracks"])

    sources = client.get("/api/queue/sources").json()
    assert set(sources) == set(ids)


def test_manual_source_and_removal():
    resp = client.post("/api/queue/manual", json={"track_id": "t5"})
    assert resp.status_code == 200
    assert resp.json()["label"] == "Added by you"
    assert client.get("/api/queue/sources").json()["t5"]["type"] == "manual"
    assert client.post("/api/queue/manual", json={"track_id": "nope"}).status_code == 404

    assert client.delete("/api/queue/sources/t5").json() == {"ok": True}
    assert "t5" not in client.get("/api/queue/sources").json()


def test_clear_session(engine):
    client.post("/api/events", json={"type": "listen", "track_id": "t2", "completed": True})
    assert len(engine.user().queue.session) == 1
    assert client.delete("/api/session").json() == {"ok": True}
    assert len(engine.user().queue.session) == 0


def test_engine_unavailable(monkeypatch):
    monkeypatch.setattr(api_main, "engine", None)
    monkeypatch.setattr(api_main, "_init_services", lambda: None)
    resp = client.get("/api/status")
    assert resp.status_code == 503


def test_queue_config_and_replenish():
    resp = client.post("/api/queue/replenish", json={"remaining": 1, "current_track_id": "t0"})
    assert resp.json() == {"replenished": False, "queue": None}

    resp = client.put("/api/queue/config", json={"auto_queue_enabled": True, "batch_size": 4})
    assert resp.status_code == 200
    assert resp.json()["mode"] == "auto-queue"
    assert client.get("/api/queue/config").json()["config"]["batch_size"] == 4

    resp = client.post("/api/queue/replenish", json={"remaining": 1, "current_track_id": "t0"})
    data = resp.json()
    assert data["replenished"] is True
    assert len(data["queue"]["tracks"]) == 4


def test_queue_config_validation():
    assert client.put("/api/queue/config", json={"batch_size": 0}).status_code == 422
    resp = client.put("/api/queue/config", json={"auto_queue_threshold": 1, "batch_size": 2})
    assert resp.json()["config"]["auto_queue_threshold"] == 1


def test_radio():
    resp = client.post("/api/radio", json={"seed": {"type": "genre", "genre": "jazz"}})
    assert resp.status_code == 200
    assert resp.json()["mode"] == "radio"
    assert resp.json()["seed"]["genres"] == ["jazz"]

    resp = client.post("/api/queue/next", json={"count": 2})
    assert {t["source"]["label"] for t in resp.json()["tracks"]} == {"jazz radio"}

    assert client.delete("/api/radio").json() == {"mode": "manual"}


def test_radio_track_seed():
    resp = client.post("/api/radio", json={"seed": {"type": "track", "track_id": "t4"}})
    assert resp.status_code == 200
    assert resp.json()["seed"]["name"] == "Ember"
    assert client.post("/api/radio", json={"seed": {"type": "track", "track_id": "nope"}}).status_code == 404
    assert client.post("/api/radio", json={"seed": {"type": "mood", "mood": "calm"}}).status_code == 422


def test_similar():
    resp = client.get("/api/similar/t0", params={"k": 3})
    assert resp.status_code == 200
    results = resp.json()["results"]
    assert len(results) == 3
    assert "t0" not in [r["track_id"] for r in results]
    assert client.get("/api/similar/missing").status_code == 404


def test_generate_playlist():
    resp = client.post("/api/playlist/generate", json={"method": "seed", "seed_track_ids": ["t0"], "length": 3})
    assert resp.status_code == 200
    data = resp.json()
    assert data["method"] == "seed"
    assert len(data["tracks"]) == 3

    assert client.post("/api/playlist/generate", json={"method": "seed"}).status_code == 422


def test_search():
    resp = client.get("/api/search", params={"q": "jazz", "limit": 2})
    assert resp.status_code == 200
    assert [t["id"] for t in resp.json()["results"]] == ["t1", "t4"]


def test_maintain_and_save():
    assert client.post("/api/maintain").json() == {"pruned": 0}
    assert client.post("/api/save").json() == {"ok": True}
