"""
Shared pytest fixtures for the custsync test suite.

Every test gets its own CUSTSYNC_DATA_DIR under tmp_path, so no test ever
touches a real customers.db.
"""
import json
import logging
import os
import sys
import threading

import pytest

from custsync.core.db import RecordStore
from custsync.core.paths import ensure_dirs, resolve_paths


# ── Temp data directory (per-test isolation) ──────────────────────────────────

@pytest.fixture(autouse=True)
def temp_data_dir(tmp_path, monkeypatch):
    """Redirect the whole data root to an isolated tmp directory."""
    data = str(tmp_path / "data")
    monkeypatch.setenv("CUSTSYNC_DATA_DIR", data)
    monkeypatch.delenv("CUSTSYNC_BACKUP_HOOK", raising=False)
    monkeypatch.delenv("CUSTSYNC_JSON_LOGS", raising=False)
    return data


@pytest.fixture
def paths(temp_data_dir):
    p = resolve_paths()
    ensure_dirs(p)
    return p


@pytest.fixture
def store(paths):
    s = RecordStore(paths["db_path"]).open()
    s.ensure_schema()
    return s


# ── Flask app / test client ───────────────────────────────────────────────────

def _drop_app_log_handlers():
    root = logging.getLogger()
    for h in [h for h in root.handlers if getattr(h, "_custsync", False)]:
        root.removeHandler(h)
        h.close()


@pytest.fixture
def make_app(paths, monkeypatch):
    """Factory so tests can seed files before the app boots."""
    import app as app_module

    # create_app installs process-wide hooks; put them back afterwards
    monkeypatch.setattr(sys, "excepthook", sys.excepthook)
    monkeypatch.setattr(threading, "excepthook", threading.excepthook)
    created = []

    def _make(**overrides):
        p = dict(paths, **overrides)
        flask_app = app_module.create_app(p, start_schedulers=False)
        flask_app.config["TESTING"] = True
        created.append(flask_app)
        return flask_app

    yield _make
    for flask_app in created:
        ext = flask_app.extensions["custsync"]
        ext["snapshots"].stop()
        ext["file_backups"].stop()
    _drop_app_log_handlers()


@pytest.fixture
def app(make_app):
    return make_app()


@pytest.fixture
def client(app):
    with app.test_client() as c:
        yield c


# ── Seed helpers ──────────────────────────────────────────────────────────────

def write_json(path, obj):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w") as f:
        json.dump(obj, f)


@pytest.fixture
def seed_legacy(paths):
    """Write a legacy customers.json and return its contents."""
    def _seed(data):
        write_json(paths["legacy_path"], data)
        return data
    return _seed


# ── Sample data factories ─────────────────────────────────────────────────────

@pytest.fixture
def sample_customers():
    return {
        "184405311681986560": {"name": "Alice", "tier": "gold", "notes": ["prefers DM"]},
        "203984710293847561": {"name": "Bob", "tier": "silver", "orders": 3},
        "350918273645019283": {"name": "Carol", "tier": "bronze", "tags": []},
        "467182930475610293": {"name": "Dan", "balance": 12.5},
        "591827364501928374": {"name": "Eve", "vip": True},
    }


@pytest.fixture
def sample_messages():
    return [
        {
            "id": "1198273645019283746",
            "channel_id": "1100000000000000001",
            "author": {"id": "184405311681986560", "username": "alice"},
            "content": "order #42 arrived, thanks",
            "timestamp": "2026-01-24T14:00:03.123000+00:00",
            "attachments": [],
        },
        {
            "id": "1198273645019283747",
            "channelId": "1100000000000000001",
            "authorId": "203984710293847561",
            "content": "can I change my address?",
            "timestamp": "2026-01-24T14:01:10.000000+00:00",
        },
    ]
