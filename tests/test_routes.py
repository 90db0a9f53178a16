import json

import pytest
from fastapi.testclient import TestClient

from coursestream.main import create_app

from .conftest import MP4_HEADER

INSTRUCTOR = {"X-User-Id": "instructor1", "X-User-Role": "instructor"}
STUDENT = {"X-User-Id": "student"}
OTHER_STUDENT = {"X-User-Id": "someone-else"}
ADMIN = {"X-User-Id": "ops", "X-User-Role": "admin"}


@pytest.fixture
def client(services):
    # no context manager: the background scheduler stays off and tests drive jobs directly
    return TestClient(create_app(services=services))


def upload(client, headers=INSTRUCTOR, options=None, filename="lesson.mp4", content_type="video/mp4"):
    data = {"course_id": "course1"}
    if options is not None:
        data["options"] = options if isinstance(options, str) else json.dumps(options)
    return client.post("/videos/upload", headers=headers, data=data,
                       files={"file": (filename, MP4_HEADER + b"\x00" * 64, content_type)})


def run_pending(orchestrator):
    while True:
        job_id = orchestrator.admit_next()
        if job_id is None:
            return
        orchestrator.process_job(job_id)


class TestJobs:

    def test_upload_queues_job(self, client):
        response = upload(client, options={"qualities": ["720p", "240p"]})
        assert response.status_code == 202
        body = response.json()
        assert body["status"] == "pending"
        assert body["progress"] == 0
        assert body["qualities"] == ["720p", "240p"]
        assert body["estimated_duration"] == 3600.0

    def test_authentication_and_roles(self, client):
        assert client.post("/videos/upload", files={"file": ("a.mp4", b"x", "video/mp4")}).status_code == 401
        assert upload(client, headers=STUDENT).status_code == 403

    def test_invalid_upload(self, client):
        response = upload(client, filename="notes.txt", content_type="text/plain")
        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "validation_error"
        assert any("text/plain" in e for e in error["details"])

    def test_bad_options(self, client):
        response = upload(client, options="not json")
        assert response.status_code == 400
        assert response.json()["error"]["details"] == ["options must be a JSON object"]

        response = upload(client, options={"qualities": ["8k"]})
        assert response.status_code == 400
        assert response.json()["error"]["details"] == ["Unsupported quality: 8k"]

    def test_per_user_active_job_cap(self, client, settings):
        settings.max_active_jobs_per_user = 1
        assert upload(client).status_code == 202
        response = upload(client)
        assert response.status_code == 429
        error = response.json()["error"]
        assert error["code"] == "too_many_active_jobs"
        assert error["details"] == {"active_jobs": 1, "max_jobs": 1}

    def test_job_status_lifecycle(self, client, orchestrator):
        job_id = upload(client, options={"qualities": ["240p"]}).json()["job_id"]

        status = client.get(f"/videos/jobs/{job_id}", headers=INSTRUCTOR).json()
        assert status["status"] == "pending"
        assert status["current_step"] == "queued"
        assert status["created_at"].endswith("Z")
        assert status["metadata"]["width"] == 1920

        run_pending(orchestrator)
        status = client.get(f"/videos/jobs/{job_id}", headers=INSTRUCTOR).json()
        assert status["status"] == "completed"
        assert status["progress"] == 100
        assert status["manifest_url"] == f"http://cdn.test/media/videos/{job_id}/master.m3u8"

        # published outputs are served from /media
        media = client.get(f"/media/videos/{job_id}/master.m3u8")
        assert media.status_code == 200
        assert media.text.startswith("#EXTM3U")

    def test_library_entry_after_publication(self, client, orchestrator):
        job_id = upload(client, options={"qualities": ["240p"]}).json()["job_id"]
        assert client.get(f"/videos/library/{job_id}", headers=STUDENT).status_code == 404

        run_pending(orchestrator)
        video = client.get(f"/videos/library/{job_id}", headers=STUDENT).json()
        assert video["asset_id"] == job_id
        assert video["owner"] == "instructor1"
        assert video["course_id"] == "course1"
        assert video["qualities"] == ["240p"]
        assert video["manifest_url"] == f"http://cdn.test/media/videos/{job_id}/master.m3u8"

    def test_job_access_control(self, client):
        job_id = upload(client).json()["job_id"]
        assert client.get(f"/videos/jobs/{job_id}", headers=OTHER_STUDENT).status_code == 403
        assert client.get(f"/videos/jobs/{job_id}", headers=ADMIN).status_code == 200
        response = client.get("/videos/jobs/unknown", headers=INSTRUCTOR)
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "not_found"

    def test_list_and_cancel(self, client):
        first = upload(client).json()["job_id"]
        upload(client)

        listing = client.get("/videos/jobs", headers=INSTRUCTOR).json()
        assert listing["count"] == 2

        assert client.delete(f"/videos/jobs/{first}", headers=OTHER_STUDENT).status_code == 403
        response = client.delete(f"/videos/jobs/{first}", headers=INSTRUCTOR)
        assert response.json() == {"job_id": first, "cancelled": True}
        assert client.delete(f"/videos/jobs/{first}", headers=INSTRUCTOR).json()["cancelled"] is False

        cancelled = client.get("/videos/jobs", params={"status": "cancelled"}, headers=INSTRUCTOR).json()
        assert [j["job_id"] for j in cancelled["jobs"]] == [first]

    def test_statistics_are_admin_only(self, client):
        upload(client)
        assert client.get("/videos/jobs/statistics/overview", headers=INSTRUCTOR).status_code == 403
        body = client.get("/videos/jobs/statistics/overview", headers=ADMIN).json()
        assert body["total_jobs"] == 1
        assert body["statistics"]["pending"] == 1
        assert body["statistics"]["queue_length"] == 1


class TestStreaming:

    @pytest.fixture(autouse=True)
    def published(self, services, publish_manifest):
        publish_manifest(services.store, asset_id="asset1", duration=600.0)

    def start(self, client, headers=STUDENT, **body):
        return client.post("/videos/stream", headers=headers, json={"asset_id": "asset1", **body})

    def test_create_stream(self, client):
        response = self.start(client, quality="1080p", course_id="course1", device_type="desktop")
        assert response.status_code == 201
        body = response.json()
        assert body["session_id"].startswith("session_")
        assert body["quality"] == "1080p"
        assert body["manifest_url"] == "http://cdn.test/media/videos/asset1/master.m3u8"
        assert body["qualities"] == ["240p", "360p", "480p", "720p", "1080p"]
        assert body["format"] == "hls"
        assert body["encrypted"] is True
        assert body["expires_in"] == 1800

    def test_create_stream_errors(self, client):
        assert client.post("/videos/stream", headers=STUDENT, json={"asset_id": "nope"}).status_code == 404
        response = self.start(client, quality="999p")
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "invalid_data"

    def test_heartbeat(self, client, clock):
        session_id = self.start(client).json()["session_id"]
        clock.advance(10)
        response = client.post("/videos/heartbeat", headers=STUDENT, json={
            "session_id": session_id, "current_position": 10, "buffer_health": 5,
            "quality": "720p", "is_playing": True,
            "network_info": {"effective_type": "4g", "downlink": 10},
        })
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["recommendations"]["quality"] == "480p"
        assert body["recommendations"]["messages"][0] == "Quality change recommended: 720p → 480p"
        assert body["analytics"]["watch_time"] == 10

        status = client.get(f"/videos/heartbeat/{session_id}", headers=STUDENT).json()
        assert status["event_count"] == 1
        assert status["status"] == "active"

    def test_heartbeat_rules(self, client, clock):
        session_id = self.start(client).json()["session_id"]
        beat = {"session_id": session_id, "current_position": 1, "buffer_health": 50,
                "quality": "720p", "is_playing": True}

        assert client.post("/videos/heartbeat", headers=OTHER_STUDENT, json=beat).status_code == 403
        unknown = client.post("/videos/heartbeat", headers=STUDENT, json={**beat, "session_id": "session_x"})
        assert unknown.json()["status"] == "invalid"
        invalid = client.post("/videos/heartbeat", headers=STUDENT, json={**beat, "buffer_health": 150})
        assert invalid.status_code == 400

        clock.advance(2000)
        expired = client.post("/videos/heartbeat", headers=STUDENT, json=beat).json()
        assert expired["status"] == "expired"
        assert expired["recommendations"]["messages"] == ["Session expired. Please restart playback."]

    def test_session_routes(self, client):
        session_id = self.start(client).json()["session_id"]

        info = client.get(f"/videos/stream/{session_id}", headers=STUDENT).json()
        assert info["quality"] == "720p"
        assert client.get(f"/videos/stream/{session_id}", headers=OTHER_STUDENT).status_code == 403
        assert client.get("/videos/stream/session_missing", headers=STUDENT).status_code == 404

        updated = client.put(f"/videos/stream/{session_id}", headers=STUDENT,
                             json={"volume": 0.3, "current_position": 60}).json()
        assert updated["volume"] == 0.3
        assert updated["completion_percentage"] == 10.0

        ended = client.delete(f"/videos/stream/{session_id}", headers=STUDENT).json()
        assert ended["ended"] is True

    def test_analytics(self, client):
        session_id = self.start(client).json()["session_id"]
        response = client.post("/videos/analytics", headers=STUDENT, json={
            "session_id": session_id, "event_type": "quality_change", "position": 12,
            "metadata": {"from": "720p", "to": "360p"}})
        assert response.json() == {"session_id": session_id, "tracked": True}
        assert client.get(f"/videos/stream/{session_id}", headers=STUDENT).json()["quality"] == "360p"

        missing = client.post("/videos/analytics", headers=STUDENT,
                              json={"session_id": "session_x", "event_type": "play"})
        assert missing.json()["tracked"] is False
        server_only = client.post("/videos/analytics", headers=STUDENT,
                                  json={"session_id": session_id, "event_type": "heartbeat"})
        assert server_only.status_code == 400

    def test_watch_history(self, client, clock):
        session_id = self.start(client, course_id="course1").json()["session_id"]
        clock.advance(10)
        client.post("/videos/heartbeat", headers=STUDENT, json={
            "session_id": session_id, "current_position": 10, "buffer_health": 50,
            "quality": "720p", "is_playing": True})
        client.delete(f"/videos/stream/{session_id}", headers=STUDENT)

        history = client.get("/videos/history", headers=STUDENT).json()
        assert history["user_id"] == "student"
        assert history["total"] == 1
        entry = history["entries"][0]
        assert entry["session_id"] == session_id
        assert entry["course_id"] == "course1"
        assert entry["watch_time"] == 10
        assert entry["ended_at"] is not None

        assert client.get("/videos/history", headers=OTHER_STUDENT).json()["entries"] == []
        assert client.get("/videos/history?limit=0", headers=STUDENT).status_code == 400


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
