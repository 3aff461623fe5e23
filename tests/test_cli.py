"""Tests for the command-line entry point."""
import json
import logging

import pytest

import smartqueue.logging_utils as logging_utils
from smartqueue.cli import main

from tests.helpers import BASE_TIME, build_library


@pytest.fixture(autouse=True)
def fresh_logging(monkeypatch):
    for name in ("SMARTQUEUE_API_URL", "SMARTQUEUE_STORAGE_PATH", "LOG_LEVEL", "LOG_FILE"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(logging_utils, "_logging_configured", False)
    yield
    root = logging.getLogger()
    for handler in root.handlers[:]:
        if getattr(handler, logging_utils._HANDLER_TAG, False):
            root.removeHandler(handler)
            handler.close()


@pytest.fixture()
def library_file(tmp_path):
    path = tmp_path / "library.json"
    path.write_text(json.dumps({"tracks": [t.to_dict() for t in build_library()]}), encoding="utf-8")
    return str(path)


def _json_output(out: str) -> dict:
    # Log lines share stdout; the payload is the indented JSON document
    return json.loads(out[out.index("{\n"):out.rindex("}") + 1])


def test_next_tracks_json(library_file, capsys):
    code = main([
        "--library", library_file, "--offline", "--json", "--quiet",
        "--current", "t0", "--count", "5", "--now", str(BASE_TIME),
    ])
    assert code == 0
    payload = _json_output(capsys.readouterr().out)
    assert payload["error"] is None
    ids = [t["track"]["id"] for t in payload["tracks"]]
    assert len(ids) == 5
    assert "t0" not in ids
    assert all("label" in t["source"] for t in payload["tracks"])


def test_taste_playlist_from_events(library_file, tmp_path, capsys):
    events = tmp_path / "events.json"
    events.write_text(json.dumps([
        {"type": "like", "track_id": tid, "timestamp": BASE_TIME}
        for tid in ("t3", "t4", "t6", "t7", "t8")
    ]), encoding="utf-8")
    code = main([
        "--library", library_file, "--events", str(events), "--offline", "--json", "--quiet",
        "--taste-playlist", "--count", "4", "--now", str(BASE_TIME),
    ])
    assert code == 0
    payload = _json_output(capsys.readouterr().out)
    assert payload["method"] == "taste"
    assert len(payload["tracks"]) == 4


def test_radio_text_output(library_file, capsys):
    code = main(["--library", library_file, "--offline", "--quiet", "--radio-genre", "jazz", "--count", "3"])
    assert code == 0
    assert "jazz radio" in capsys.readouterr().out


def test_missing_library(tmp_path, capsys):
    assert main(["--library", str(tmp_path / "nope.json"), "--offline", "--quiet"]) == 1
    assert "Error" in capsys.readouterr().err


def test_bad_config(library_file, tmp_path, capsys):
    config = tmp_path / "config.yaml"
    config.write_text("queue: 5\n", encoding="utf-8")
    assert main(["--config", str(config), "--library", library_file, "--offline", "--quiet"]) == 1
    assert "Configuration Error" in capsys.readouterr().err
