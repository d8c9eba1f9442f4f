"""
test_realtime.py
~~~~~~~~~~~~~~~~
Client sync layer: publish on every mutation, and the WebSocket polling
fallback used when Redis is unavailable.
"""
import asyncio
import json
import logging
from unittest.mock import MagicMock

import pytest
from starlette.websockets import WebSocketDisconnect

from interlink.api.routes import status
from interlink.core.config import settings
from interlink.core.errors import InvalidTransitionError
from interlink.db.models import JobStatus
from interlink.services.job_manager import job_manager
from interlink.services.realtime import publish_update, reset_redis_client


@pytest.fixture
def fake_redis():
    redis_client = MagicMock()
    reset_redis_client(redis_client)
    yield redis_client
    reset_redis_client()


def _published(fake_redis):
    return [(c.args[0], json.loads(c.args[1])) for c in fake_redis.publish.call_args_list]


def test_every_transition_publishes_on_job_and_project_channels(db, project, fake_redis):
    job = job_manager.create_job(db, project, "Title", "https://docs.google.com/document/d/x")
    job_manager.claim_for_dispatch(db, job.id)
    job_manager.complete(db, job.id, status=JobStatus.DONE, anchors_added=1)

    messages = _published(fake_redis)
    job_statuses = [data["status"] for channel, data in messages if channel == f"job:{job.id}"]
    project_statuses = [data["status"] for channel, data in messages if channel == f"project:{project.id}"]
    assert job_statuses == ["queued", "processing", "done"]
    assert project_statuses == job_statuses


def test_rejected_transition_publishes_nothing(db, make_job, fake_redis):
    job = make_job(status=JobStatus.DONE)
    with pytest.raises(InvalidTransitionError):
        job_manager.claim_for_dispatch(db, job.id)
    fake_redis.publish.assert_not_called()


def test_publish_without_redis_is_a_no_op():
    reset_redis_client()
    assert publish_update("job:x", {"id": "x"}) is False


class TestWebSocketFallback:

    def test_terminal_job_sends_snapshot_and_closes(self, client, sign_in, make_job):
        headers = sign_in("owner@example.com")
        token = headers["Authorization"].split(" ", 1)[1]
        job = make_job(status=JobStatus.DONE)

        with client.websocket_connect(f"/api/ws/jobs/{job.id}?token={token}") as ws:
            assert ws.receive_json()["status"] == "done"

    def test_polling_emits_changes(self, client, sign_in, db, make_job, monkeypatch):
        monkeypatch.setattr(settings, "SYNC_POLL_SECONDS", 0.05)
        headers = sign_in("owner@example.com")
        token = headers["Authorization"].split(" ", 1)[1]
        job = make_job()

        with client.websocket_connect(f"/api/ws/jobs/{job.id}?token={token}") as ws:
            assert ws.receive_json()["status"] == "queued"
            job_manager.override(db, job.id, status=JobStatus.DONE)
            assert ws.receive_json()["status"] == "done"

    def test_missing_token_closes_socket(self, client, make_job):
        job = make_job()
        with pytest.raises(WebSocketDisconnect) as excinfo:
            with client.websocket_connect(f"/api/ws/jobs/{job.id}") as ws:
                ws.receive_json()
        assert excinfo.value.code == 4401

    def test_project_socket_handler_ends_when_client_leaves(self, client, sign_in, project, caplog, monkeypatch):
        monkeypatch.setattr(settings, "SYNC_POLL_SECONDS", 0.05)
        caplog.set_level(logging.INFO, logger="interlink.api.routes.status")
        token = sign_in("owner@example.com")["Authorization"].split(" ", 1)[1]

        with client.websocket_connect(f"/api/ws/projects/{project.id}?token={token}"):
            pass

        assert f"WebSocket disconnected for project {project.id}" in caplog.text

    def test_store_reads_run_off_the_event_loop(self, client, sign_in, make_job, project, monkeypatch):
        monkeypatch.setattr(settings, "SYNC_POLL_SECONDS", 0.05)
        token = sign_in("owner@example.com")["Authorization"].split(" ", 1)[1]
        make_job()
        on_event_loop = []
        original_load = status._load_project_jobs

        def load(project_id):
            try:
                asyncio.get_running_loop()
                on_event_loop.append(True)
            except RuntimeError:
                on_event_loop.append(False)
            return original_load(project_id)

        monkeypatch.setattr(status, "_load_project_jobs", load)

        with client.websocket_connect(f"/api/ws/projects/{project.id}?token={token}") as ws:
            assert ws.receive_json()["status"] == "queued"

        assert on_event_loop and not any(on_event_loop)


class TestWebSocketPubSub:

    def test_job_socket_subscribes_before_taking_snapshot(
        self, client, sign_in, make_job, fake_redis, monkeypatch
    ):
        job = make_job()
        token = sign_in("owner@example.com")["Authorization"].split(" ", 1)[1]
        pubsub = fake_redis.pubsub.return_value
        done = {"type": "message", "data": json.dumps({"id": job.id, "status": "done"})}
        pubsub.get_message.side_effect = [done]

        subscribed_at_snapshot = []
        original_load = status._load_job

        def load(job_id):
            subscribed_at_snapshot.append(pubsub.subscribe.called)
            return original_load(job_id)

        monkeypatch.setattr(status, "_load_job", load)

        with client.websocket_connect(f"/api/ws/jobs/{job.id}?token={token}") as ws:
            assert ws.receive_json()["status"] == "queued"
            assert ws.receive_json()["status"] == "done"

        assert subscribed_at_snapshot == [True]
        pubsub.subscribe.assert_called_once_with(f"job:{job.id}")
        pubsub.close.assert_called_once()
