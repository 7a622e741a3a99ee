"""
Tests for the builds router (app.routers.builds) via FastAPI's TestClient.

Redis is replaced by an in-memory list store; reports are written with the
real writer into a temporary ARTIFACTS_PATH.
"""
import json
import uuid

import pytest
import redis
from fastapi.testclient import TestClient

from app.config import Settings
from app.main import app
from app.routers.builds import QUEUE_NAME, get_redis, get_settings
from crossbuild.core.artifacts import collect_artifacts
from crossbuild.core.job import BuildJob
from crossbuild.core.targets import Arch, make_target
from crossbuild.enums import FailureClass, JobState
from crossbuild.io.writer import write_outputs
from crossbuild.policy.profile import Profile
from crossbuild.reporter import build_report


class FakeRedis:
    def __init__(self):
        self.lists = {}

    def rpush(self, name, *values):
        self.lists.setdefault(name, []).extend(values)
        return len(self.lists[name])

    def lrange(self, name, start, end):
        items = self.lists.get(name, [])
        return items[start:] if end == -1 else items[start:end + 1]

    def llen(self, name):
        return len(self.lists.get(name, []))


class DownRedis(FakeRedis):
    def llen(self, name):
        raise redis.ConnectionError("Connection refused")


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def client(tmp_path, fake_redis):
    settings = Settings(ARTIFACTS_PATH=str(tmp_path / "artifacts"), DEFAULT_API_LEVEL=24)
    app.dependency_overrides[get_redis] = lambda: fake_redis
    app.dependency_overrides[get_settings] = lambda: settings
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _queued(fake_redis):
    return [json.loads(item) for item in fake_redis.lists.get(QUEUE_NAME, [])]


def _write_finished_job(artifacts_root, job_id):
    failed = BuildJob(target=make_target(Arch.X86_64))
    failed.transition(JobState.RESOLVING_TOOLCHAIN)
    failed.fail(FailureClass.MISSING_TOOLCHAIN, "no clang")
    jobs = [failed]
    manifest = collect_artifacts(jobs, Profile.ring_fix())
    write_outputs(build_report(jobs, manifest), manifest, artifacts_root / job_id)


class TestSubmit:

    def test_queues_normalized_targets(self, client, fake_redis):
        resp = client.post("/builds/pipeline", json={
            "targets": ["aarch64-linux-android", "ARMV7", "aarch64"],
            "project_dir": "/src/app/src-tauri",
        })
        assert resp.status_code == 202
        body = resp.json()
        assert body["status"] == "QUEUED"
        assert body["targets"] == ["aarch64", "armv7"]

        queued = _queued(fake_redis)
        assert len(queued) == 1
        assert queued[0]["job_id"] == body["job_id"]
        assert queued[0]["job_type"] == "crossbuild_pipeline"
        assert queued[0]["targets"] == ["aarch64", "armv7"]
        assert queued[0]["api_level"] == 24
        assert queued[0]["profile"] == "ring_fix"
        assert queued[0]["step_timeout"] == 1800

    def test_defaults_to_full_matrix(self, client, fake_redis):
        resp = client.post("/builds/pipeline", json={})
        assert resp.status_code == 202
        assert resp.json()["targets"] == ["aarch64", "armv7", "i686", "x86_64"]

    def test_unknown_target_rejected_and_nothing_queued(self, client, fake_redis):
        resp = client.post("/builds/pipeline", json={"targets": ["aarch64", "mips"]})
        assert resp.status_code == 400
        detail = resp.json()["detail"]
        assert "mips" in detail["error"]
        assert detail["supported"] == ["aarch64", "armv7", "i686", "x86_64"]
        assert _queued(fake_redis) == []

    def test_empty_target_list_rejected(self, client):
        resp = client.post("/builds/pipeline", json={"targets": []})
        assert resp.status_code == 400

    def test_step_timeout_override_is_queued(self, client, fake_redis):
        resp = client.post("/builds/pipeline", json={"targets": ["i686"], "step_timeout": 600})
        assert resp.status_code == 202
        assert _queued(fake_redis)[0]["step_timeout"] == 600

    def test_bad_profile_is_422(self, client):
        resp = client.post("/builds/pipeline", json={"profile": "fast"})
        assert resp.status_code == 422
        errors = resp.json()["detail"]
        assert errors[0]["loc"] == ["body", "profile"]
        assert "ring_fix" in errors[0]["msg"]


class TestStatus:

    def test_queued_job(self, client, fake_redis):
        job_id = client.post("/builds/pipeline", json={"targets": ["i686"]}).json()["job_id"]
        resp = client.get(f"/builds/job/{job_id}")
        assert resp.status_code == 200
        assert resp.json()["status"] == "QUEUED"
        assert resp.json()["targets"] == ["i686"]

    def test_finished_job_returns_report(self, client, tmp_path):
        job_id = str(uuid.uuid4())
        _write_finished_job(tmp_path / "artifacts", job_id)

        resp = client.get(f"/builds/job/{job_id}")
        assert resp.status_code == 200
        body = resp.json()
        assert body["job_id"] == job_id
        assert body["status"] == "FAILED"
        assert body["targets"][0]["failure_class"] == "MISSING_TOOLCHAIN"

        manifest = client.get(f"/builds/job/{job_id}/manifest")
        assert manifest.status_code == 200
        assert manifest.json()["entries"]["x86_64"]["artifact_path"] is None

    def test_unknown_job_404(self, client):
        assert client.get(f"/builds/job/{uuid.uuid4()}").status_code == 404
        assert client.get(f"/builds/job/{uuid.uuid4()}/manifest").status_code == 404

    def test_non_uuid_job_id_404(self, client):
        assert client.get("/builds/job/..%2F..%2Fetc").status_code == 404
        assert client.get("/builds/job/not-a-uuid").status_code == 404


class TestTargets:

    def test_lists_matrix(self, client):
        resp = client.get("/builds/targets")
        assert resp.status_code == 200
        targets = {t["arch"]: t for t in resp.json()["targets"]}
        assert targets["armv7"]["linker"] == "armv7a-linux-androideabi24-clang"
        assert targets["aarch64"]["abi"] == "arm64-v8a"

    def test_health_reports_queue_depth(self, client):
        client.post("/builds/pipeline", json={"targets": ["aarch64"]})
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["queue_depth"] == 1

    def test_health_degraded_without_redis(self, client):
        app.dependency_overrides[get_redis] = lambda: DownRedis()
        body = client.get("/health").json()
        assert body["status"] == "degraded"
        assert body["queue_depth"] is None


def test_redis_url_from_settings():
    settings = Settings(REDIS_HOST="queue.internal", REDIS_PORT=6380, REDIS_DB=2)
    assert settings.redis_url == "redis://queue.internal:6380/2"
