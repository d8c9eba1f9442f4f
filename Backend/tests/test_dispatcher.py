import httpx
import pytest

from interlink.core.errors import InvalidTransitionError, NotFoundError, UpstreamFailureError
from interlink.db.models import Job, JobStatus
from interlink.services.dispatcher import SECRET_HEADER, WorkflowClient, build_payload, dispatch_job


def test_dispatch_sends_payload_with_secret(db, make_job, workflow):
    job = make_job(title="Cold brew guide")
    result = dispatch_job(db, job.id, workflow=workflow.client())

    assert result.to_dict() == {"success": True, "job_id": job.id, "status": "processing"}
    request = workflow.requests[0]
    assert request.method == "POST"
    assert request.headers[SECRET_HEADER] == "edge-secret"
    assert workflow.payloads[0] == {
        "job_id": job.id,
        "project_id": job.project_id,
        "title": "Cold brew guide",
        "article_doc": job.article_doc,
        "status": "processing",
    }
    db.expire_all()
    assert db.get(Job, job.id).status == "processing"


def test_non_success_response_marks_job_error(db, make_job, make_workflow):
    job = make_job()
    recorder = make_workflow(status_code=500)
    with pytest.raises(UpstreamFailureError):
        dispatch_job(db, job.id, workflow=recorder.client())
    db.expire_all()
    failed = db.get(Job, job.id)
    assert failed.status == "error"
    assert failed.error_message.startswith("Failed to trigger workflow")


def test_transport_error_marks_job_error(db, make_job, make_workflow):
    job = make_job()
    recorder = make_workflow(raise_error=True)
    with pytest.raises(UpstreamFailureError):
        dispatch_job(db, job.id, workflow=recorder.client())
    db.expire_all()
    assert db.get(Job, job.id).status == "error"


def test_unknown_job(db, workflow):
    with pytest.raises(NotFoundError):
        dispatch_job(db, "missing", workflow=workflow.client())
    assert workflow.requests == []


def test_already_processing_job_is_not_sent_twice(db, make_job, workflow):
    job = make_job(status=JobStatus.PROCESSING)
    with pytest.raises(InvalidTransitionError):
        dispatch_job(db, job.id, workflow=workflow.client())
    assert workflow.requests == []


def test_missing_webhook_url_is_upstream_failure(db, make_job):
    job = make_job()
    client = WorkflowClient(url="", transport=httpx.MockTransport(lambda r: httpx.Response(200)))
    with pytest.raises(UpstreamFailureError):
        dispatch_job(db, job.id, workflow=client)
    db.expire_all()
    assert db.get(Job, job.id).status == "error"


def test_build_payload_always_reports_processing(make_job):
    job = make_job()
    assert build_payload(job)["status"] == "processing"
