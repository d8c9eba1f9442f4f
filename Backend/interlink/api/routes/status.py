"""
Status Routes: real-time job updates over WebSockets.

Messages come from Redis Pub/Sub (`job:{id}` / `project:{id}`). Without Redis
the socket falls back to polling the job table and only emits on change.
Authentication uses the session token in the `token` query parameter.
"""
import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from sqlalchemy import select

from interlink.core.config import settings
from interlink.core.errors import InterlinkError
from interlink.db.base import SessionLocal
from interlink.db.models import Job, TERMINAL_STATUSES
from interlink.services import projects
from interlink.services.auth import resolve_session
from interlink.services.job_manager import serialize_job
from interlink.services.realtime import get_redis_client, job_channel, project_channel

logger = logging.getLogger(__name__)
router = APIRouter()

TERMINAL_VALUES = {status.value for status in TERMINAL_STATUSES}
POLICY_VIOLATION = 4401
NOT_FOUND = 4404


def _authorize_job(token: Optional[str], job_id: str) -> None:
    with SessionLocal() as db:
        projects.get_job(db, resolve_session(db, token), job_id)


def _authorize_project(token: Optional[str], project_id: str) -> None:
    with SessionLocal() as db:
        projects.get_project(db, resolve_session(db, token), project_id)


def _load_job(job_id: str) -> List[Dict[str, Any]]:
    with SessionLocal() as db:
        job = db.get(Job, job_id)
        return [serialize_job(job)] if job else []


def _load_project_jobs(project_id: str) -> List[Dict[str, Any]]:
    with SessionLocal() as db:
        jobs = db.execute(select(Job).where(Job.project_id == project_id)).scalars()
        return [serialize_job(job) for job in jobs]


def _subscribe(channel: str):
    pubsub = get_redis_client().pubsub()
    pubsub.subscribe(channel)
    return pubsub


async def _forward_pubsub(websocket: WebSocket, pubsub, channel: str, stop_on_terminal: bool) -> None:
    """Relay messages from an already subscribed pubsub until a terminal status."""
    try:
        while True:
            message = pubsub.get_message(ignore_subscribe_messages=True, timeout=0)
            if message and message["type"] == "message":
                data = json.loads(message["data"])
                await websocket.send_json(data)
                if stop_on_terminal and data.get("status") in TERMINAL_VALUES:
                    return
            else:
                await asyncio.sleep(0.5)
    finally:
        pubsub.unsubscribe(channel)
        pubsub.close()


async def _poll(
    websocket: WebSocket,
    load: Callable[[], List[Dict[str, Any]]],
    stop_on_terminal: bool,
    already_sent: Optional[Dict[str, Any]] = None,
) -> None:
    last_seen: Dict[str, Any] = {}
    if already_sent:
        last_seen[already_sent["id"]] = (already_sent["status"], already_sent["updated_at"])
    while True:
        for data in await run_in_threadpool(load):
            marker = (data["status"], data["updated_at"])
            if last_seen.get(data["id"]) != marker:
                last_seen[data["id"]] = marker
                await websocket.send_json(data)
            if stop_on_terminal and data["status"] in TERMINAL_VALUES:
                return
        await asyncio.sleep(settings.SYNC_POLL_SECONDS)


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


async def _stream_until_disconnect(websocket: WebSocket, stream: Awaitable[None]) -> bool:
    """
    Run `stream` while listening for the client going away.
    Returns True if the client disconnected before the stream finished.
    """
    sender = asyncio.ensure_future(stream)
    listener = asyncio.ensure_future(_wait_for_disconnect(websocket))
    done, pending = await asyncio.wait({sender, listener}, return_when=asyncio.FIRST_COMPLETED)
    for task in pending:
        task.cancel()
    await asyncio.gather(*pending, return_exceptions=True)
    if sender in done:
        sender.result()
        return False
    return True


@router.websocket("/ws/jobs/{job_id}")
async def job_updates(websocket: WebSocket, job_id: str):
    await websocket.accept()
    try:
        await run_in_threadpool(_authorize_job, websocket.query_params.get("token"), job_id)
    except InterlinkError as e:
        await websocket.close(code=NOT_FOUND if e.http_status == 404 else POLICY_VIOLATION, reason=e.message)
        return

    logger.info(f"WebSocket connected for job {job_id}")
    pubsub = _subscribe(job_channel(job_id)) if get_redis_client() else None
    try:
        # Snapshot after subscribing, so no change between the two is missed
        loaded = await run_in_threadpool(_load_job, job_id)
        if not loaded:
            await websocket.close(code=NOT_FOUND, reason=f"Job {job_id} not found")
            return
        snapshot = loaded[0]
        await websocket.send_json(snapshot)
        if snapshot["status"] in TERMINAL_VALUES:
            await websocket.close()
            return
        if pubsub is not None:
            stream = _forward_pubsub(websocket, pubsub, job_channel(job_id), stop_on_terminal=True)
            pubsub = None
        else:
            logger.info(f"WebSocket fallback to polling for job {job_id}")
            stream = _poll(websocket, lambda: _load_job(job_id), stop_on_terminal=True, already_sent=snapshot)
        if await _stream_until_disconnect(websocket, stream):
            logger.info(f"WebSocket disconnected for job {job_id}")
            return
        await websocket.close()
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected for job {job_id}")
    finally:
        if pubsub is not None:
            pubsub.unsubscribe(job_channel(job_id))
            pubsub.close()


@router.websocket("/ws/projects/{project_id}")
async def project_updates(websocket: WebSocket, project_id: str):
    await websocket.accept()
    try:
        await run_in_threadpool(_authorize_project, websocket.query_params.get("token"), project_id)
    except InterlinkError as e:
        await websocket.close(code=NOT_FOUND if e.http_status == 404 else POLICY_VIOLATION, reason=e.message)
        return

    logger.info(f"WebSocket connected for project {project_id}")
    if get_redis_client():
        channel = project_channel(project_id)
        stream = _forward_pubsub(websocket, _subscribe(channel), channel, stop_on_terminal=False)
    else:
        logger.info(f"WebSocket fallback to polling for project {project_id}")
        stream = _poll(websocket, lambda: _load_project_jobs(project_id), stop_on_terminal=False)
    try:
        await _stream_until_disconnect(websocket, stream)
    except WebSocketDisconnect:
        pass
    logger.info(f"WebSocket disconnected for project {project_id}")
