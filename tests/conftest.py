"""
Shared fixtures: every test gets a private SQLite file, an in-memory remote
repository, a static asset bundle and a scripted patch planner.
"""

import json
import os
import tempfile

# Configure before any shadowstage module reads the environment
os.environ.setdefault("DB_PATH", os.path.join(tempfile.mkdtemp(prefix="shadowstage-tests-"), "test.db"))
os.environ.setdefault("CONFIRM_TOKEN_SECRET", "test-secret")
os.environ.setdefault("SHADOW_BACKEND", "memory")

import pytest

from shadowstage.core.db import init_db
from shadowstage.core.errors import BackingStoreUnavailable
from shadowstage.core.kv import InMemoryKeyValueStore
from shadowstage.core.overlay import SHADOW_INDEX_KEY, OverlayStore, blob_key
from shadowstage.core.planner import IPatchPlanner
from shadowstage.core.remote import InMemoryAssetBundle, InMemoryRemoteRepository
from shadowstage.core.workspace import Workspace, reset_workspace

TEST_SECRET = "test-secret"

INDEX_HTML = "<html><head><title>Home</title></head><body><h1>Welcome home</h1></body></html>"
PRICING_HTML = "<html><head><title>Pricing</title></head><body><p>Plans from $9</p></body></html>"
OLD_HTML = "<html><head></head><body>old page</body></html>"


def stage_raw(overlay, path, content):
    """Put an entry straight into the key-value store, bypassing the stage-time guard."""
    overlay.kv.put(blob_key(path), json.dumps({"path": path, "content": content, "deleted": False,
                                               "updatedAt": "2024-01-01T00:00:00.000Z", "bytes": len(content)}))
    index = json.loads(overlay.kv.get(SHADOW_INDEX_KEY) or "{}")
    index[path] = {"deleted": False, "updatedAt": "2024-01-01T00:00:00.000Z", "bytes": len(content)}
    overlay.kv.put(SHADOW_INDEX_KEY, json.dumps(index))


class FailingIndexResetStore(InMemoryKeyValueStore):
    """Fails the first attempt to reset the overlay index to empty."""

    def __init__(self):
        super().__init__()
        self.failures = 0

    def put(self, key, value):
        if key == SHADOW_INDEX_KEY and value == "{}" and self.failures == 0:
            self.failures += 1
            raise BackingStoreUnavailable("kv write failed")
        super().put(key, value)


class ScriptedPlanner(IPatchPlanner):
    """Planner double: records every request and returns the output scripted per mode."""

    def __init__(self):
        self.requests = []
        self.outputs = {}
        self.error = None

    def run(self, request):
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return dict(self.outputs.get(request.mode, {"mode": request.mode, "command": request.command}))


@pytest.fixture
def db_path(tmp_path):
    """Fresh database file with the schema created."""
    path = str(tmp_path / "shadowstage.db")
    init_db(path)
    return path


@pytest.fixture
def kv():
    return InMemoryKeyValueStore()


@pytest.fixture
def overlay(kv, db_path):
    return OverlayStore(kv, audit_db_path=db_path)


@pytest.fixture
def remote():
    return InMemoryRemoteRepository({
        "index.html": INDEX_HTML,
        "pricing.html": PRICING_HTML,
        "old.html": OLD_HTML,
        "css/site.css": "body { color: black; }",
    })


@pytest.fixture
def assets():
    return InMemoryAssetBundle({
        "robots.txt": "User-agent: *",
        "pricing.html": "<html><body>asset pricing</body></html>",
    })


@pytest.fixture
def planner():
    return ScriptedPlanner()


@pytest.fixture
def workspace(db_path, kv, remote, assets, planner):
    ws = Workspace.create(db_path=db_path, kv=kv, remote=remote, assets=assets, planner=planner,
                          secret=TEST_SECRET, ttl_sec=600)
    yield ws
    reset_workspace()
