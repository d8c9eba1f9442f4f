"""
test_job_state_machine.py
~~~~~~~~~~~~~~~~~~~~~~~~~
JobManager transitions: the conditional claim, single terminal transition,
stale reclaim and the administrative override.
"""
from datetime import timedelta

import pytest

from interlink.core.errors import InvalidTransitionError, NotFoundError
from interlink.db import base
from interlink.db.models import Job, JobStatus
from interlink.services.dispatcher import dispatch_job
from interlink.services.job_manager import job_manager, serialize_job


class TestCreate:

    def test_new_job_is_queued_with_no_anchors(self, db, project):
        job = job_manager.create_job(db, project, "Title", "https://docs.google.com/document/d/x")
        assert job.status == JobStatus.QUEUED.value
        assert job.anchors_added == 0
        assert job.anchors_log == []
        assert job.error_message is None
        assert job.original_doc_url is None and job.updated_doc_url is None

    def test_serialized_timestamps_are_utc_iso(self, db, project):
        job = job_manager.create_job(db, project, "Title", "https://docs.google.com/document/d/x")
        data = serialize_job(job)
        assert data["created_at"].endswith("Z")
        assert data["status"] == "queued"


class TestClaim:

    def test_claim_moves_queued_to_processing(self, db, make_job):
        job = make_job()
        claimed = job_manager.claim_for_dispatch(db, job.id)
        assert claimed.status == JobStatus.PROCESSING.value
        assert claimed.dispatch_attempts == 1

    def test_second_claim_is_rejected(self, db, make_job):
        job = make_job()
        job_manager.claim_for_dispatch(db, job.id)
        with pytest.raises(InvalidTransitionError):
            job_manager.claim_for_dispatch(db, job.id)

    def test_concurrent_claims_from_two_sessions(self, db, make_job):
        """Two scheduler passes see the same queued job; only one may claim it."""
        job = make_job()
        other = base.SessionLocal()
        try:
            job_manager.claim_for_dispatch(db, job.id)
            with pytest.raises(InvalidTransitionError):
                job_manager.claim_for_dispatch(other, job.id)
        finally:
            other.close()
        db.expire_all()
        assert db.get(Job, job.id).dispatch_attempts == 1

    def test_claim_unknown_job(self, db):
        with pytest.raises(NotFoundError):
            job_manager.claim_for_dispatch(db, "does-not-exist")

    @pytest.mark.parametrize("status", [JobStatus.PROCESSING, JobStatus.DONE, JobStatus.ERROR])
    def test_claim_requires_queued(self, db, make_job, status):
        job = make_job(status=status, error_message="x" if status == JobStatus.ERROR else None)
        with pytest.raises(InvalidTransitionError):
            job_manager.claim_for_dispatch(db, job.id)


class TestTerminalTransition:

    def test_complete_done(self, db, make_job):
        job = make_job(status=JobStatus.PROCESSING)
        done = job_manager.complete(
            db, job.id, status=JobStatus.DONE, anchors_added=2,
            anchors_log=[{"slug": "a", "phrase": "b", "url": "https://c"}],
        )
        assert done.status == "done"
        assert done.anchors_added == 2
        assert done.error_message is None

    def test_error_forces_zero_anchors(self, db, make_job):
        job = make_job(status=JobStatus.PROCESSING)
        failed = job_manager.complete(db, job.id, status=JobStatus.ERROR, anchors_added=5, error_message="boom")
        assert failed.anchors_added == 0
        assert failed.error_message == "boom"

    def test_only_one_terminal_transition(self, db, make_job):
        job = make_job(status=JobStatus.PROCESSING)
        job_manager.complete(db, job.id, status=JobStatus.DONE, anchors_added=1)
        with pytest.raises(InvalidTransitionError):
            job_manager.complete(db, job.id, status=JobStatus.ERROR, error_message="late")
        db.expire_all()
        assert db.get(Job, job.id).status == "done"

    def test_queued_job_cannot_complete(self, db, make_job):
        job = make_job()
        with pytest.raises(InvalidTransitionError):
            job_manager.complete(db, job.id, status=JobStatus.DONE)

    def test_snapshot_urls_are_both_or_neither(self, db, make_job):
        job = make_job(status=JobStatus.PROCESSING)
        done = job_manager.complete(
            db, job.id, status=JobStatus.DONE, original_doc_url="http://files.test/a.html"
        )
        assert done.original_doc_url is None
        assert done.updated_doc_url is None

    def test_mark_dispatch_failed(self, db, make_job):
        job = make_job(status=JobStatus.PROCESSING)
        failed = job_manager.mark_dispatch_failed(db, job.id, "Failed to trigger workflow: 500")
        assert failed.status == "error"
        assert failed.error_message.startswith("Failed to trigger workflow")


class TestReclaim:

    def test_stale_job_is_requeued(self, db, make_job):
        job = make_job(status=JobStatus.PROCESSING, age=timedelta(hours=2), dispatch_attempts=1)
        report = job_manager.reclaim_stale(db, older_than=timedelta(minutes=30), max_attempts=3)
        assert report.requeued == [job.id]
        db.expire_all()
        assert db.get(Job, job.id).status == "queued"

    def test_exhausted_job_times_out(self, db, make_job):
        job = make_job(status=JobStatus.PROCESSING, age=timedelta(hours=2), dispatch_attempts=3)
        report = job_manager.reclaim_stale(db, older_than=timedelta(minutes=30), max_attempts=3)
        assert report.timed_out == [job.id]
        db.expire_all()
        reclaimed = db.get(Job, job.id)
        assert reclaimed.status == "error"
        assert "timed out" in reclaimed.error_message

    def test_fresh_processing_job_is_left_alone(self, db, make_job):
        make_job(status=JobStatus.PROCESSING, age=timedelta(minutes=5), dispatch_attempts=1)
        report = job_manager.reclaim_stale(db, older_than=timedelta(minutes=30), max_attempts=3)
        assert report.count == 0


class TestOverride:

    def test_override_can_set_any_status(self, db, make_job):
        job = make_job(status=JobStatus.DONE)
        edited = job_manager.override(db, job.id, status=JobStatus.QUEUED, title="Renamed")
        assert edited.status == "queued"
        assert edited.title == "Renamed"

    def test_empty_article_url_clears_it(self, db, make_job):
        job = make_job()
        job_manager.override(db, job.id, article_url="https://acme.example/post")
        edited = job_manager.override(db, job.id, article_url="")
        assert edited.article_url is None


class TestRerunAfterEdit:
    """An edit back to queued is the retry path; the next run starts clean."""

    def _finish(self, db, make_job, status, **fields):
        job = make_job()
        job_manager.claim_for_dispatch(db, job.id)
        job_manager.complete(db, job.id, status=status, **fields)
        return job_manager.override(db, job.id, status=JobStatus.QUEUED)

    def test_failed_job_redispatched_has_no_error_message(self, db, make_job, workflow):
        job = self._finish(db, make_job, JobStatus.ERROR, error_message="boom")
        dispatch_job(db, job.id, workflow=workflow.client())

        db.expire_all()
        rerun = db.get(Job, job.id)
        assert rerun.status == "processing"
        assert rerun.error_message is None

    def test_done_job_redispatched_drops_previous_result(self, db, make_job, workflow):
        job = self._finish(
            db, make_job, JobStatus.DONE,
            anchors_added=3,
            anchors_log=[{"slug": "a", "phrase": "x", "url": "https://acme.example/a"}],
            original_doc_url="http://files.test/u/j/original-1.html",
            updated_doc_url="http://files.test/u/j/updated-1.html",
        )
        dispatch_job(db, job.id, workflow=workflow.client())

        db.expire_all()
        rerun = db.get(Job, job.id)
        assert rerun.status == "processing"
        assert rerun.anchors_added == 0
        assert rerun.anchors_log == []
        assert rerun.original_doc_url is None and rerun.updated_doc_url is None

    def test_second_run_without_snapshots_keeps_none_of_the_first(self, db, make_job):
        job = self._finish(
            db, make_job, JobStatus.DONE,
            anchors_added=1,
            original_doc_url="http://files.test/u/j/original-1.html",
            updated_doc_url="http://files.test/u/j/updated-1.html",
        )
        job_manager.claim_for_dispatch(db, job.id)
        finished = job_manager.complete(db, job.id, status=JobStatus.DONE, anchors_added=2)
        assert finished.anchors_added == 2
        assert finished.original_doc_url is None and finished.updated_doc_url is None

    def test_stale_reclaim_clears_result_fields(self, db, make_job):
        job = make_job(status=JobStatus.PROCESSING, age=timedelta(hours=2), dispatch_attempts=1,
                       error_message="left over")
        job_manager.reclaim_stale(db, older_than=timedelta(minutes=30), max_attempts=3)

        db.expire_all()
        requeued = db.get(Job, job.id)
        assert requeued.status == "queued"
        assert requeued.error_message is None
        assert requeued.anchors_added == 0
