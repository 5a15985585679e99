"""Durable FIFO of ingestion jobs stored in the ``jobs`` table.

Delivery is at-least-once. Claiming a job gives the worker a lease
(``lease_token`` + ``lease_expires_at``); a job whose lease runs out while
still ``processing`` becomes claimable again. Acknowledgements and failures
only apply while the caller still holds the lease, so a job in a terminal
state is never rewritten.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any
import uuid

from sqlalchemy import and_, or_, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from pdfchat.models import (
    JOB_DONE,
    JOB_FAILED,
    JOB_PROCESSING,
    JOB_QUEUED,
    JobRecord,
)

# Upper bound on expired leases inspected per claim.
_CLAIM_SCAN_LIMIT = 10


@dataclass(frozen=True)
class ClaimedJob:
    id: str
    document_id: str
    path: str
    payload: dict[str, Any]
    attempts: int
    max_attempts: int
    lease_token: str
    redelivered: bool = False


def _now() -> datetime:
    return datetime.now(timezone.utc)


def enqueue_job(
    session: Session,
    *,
    document_id: str,
    payload: dict[str, Any],
    max_attempts: int,
) -> str:
    """Add a queued job to ``session``; the caller commits."""
    now = _now()
    job = JobRecord(
        id=uuid.uuid4().hex,
        document_id=document_id,
        path=str(payload["path"]),
        status=JOB_QUEUED,
        payload_json=payload,
        attempts=0,
        max_attempts=max(1, max_attempts),
        enqueued_at=now,
        available_at=now,
        updated_at=now,
    )
    session.add(job)
    session.flush()
    return job.id


def _claim_candidates(session: Session, now: datetime, job_id: str | None) -> list[JobRecord]:
    stmt = (
        select(JobRecord)
        .where(
            or_(
                and_(JobRecord.status == JOB_QUEUED, JobRecord.available_at <= now),
                and_(JobRecord.status == JOB_PROCESSING, JobRecord.lease_expires_at <= now),
            )
        )
        .order_by(JobRecord.enqueued_at.asc(), JobRecord.id.asc())
        .limit(_CLAIM_SCAN_LIMIT)
    )
    if job_id is not None:
        stmt = stmt.where(JobRecord.id == job_id)
    if session.get_bind().dialect.name == "postgresql":
        stmt = stmt.with_for_update(skip_locked=True)
    return list(session.scalars(stmt).all())


def claim_next_job(
    engine: Engine,
    *,
    lease_seconds: float,
    job_id: str | None = None,
) -> ClaimedJob | None:
    """Dequeue the oldest available job, or return ``None`` when there is none.

    ``job_id`` restricts the claim to that one job.
    """
    now = _now()
    with Session(engine) as session, session.begin():
        for candidate in _claim_candidates(session, now, job_id):
            redelivered = candidate.status == JOB_PROCESSING
            attempts = candidate.attempts + 1 if redelivered else candidate.attempts

            if redelivered and attempts >= candidate.max_attempts:
                session.execute(
                    update(JobRecord)
                    .where(JobRecord.id == candidate.id)
                    .where(JobRecord.status == JOB_PROCESSING)
                    .where(JobRecord.lease_token == candidate.lease_token)
                    .values(
                        status=JOB_FAILED,
                        attempts=attempts,
                        error=f"LeaseExpired: no acknowledgement after {attempts} deliveries",
                        finished_at=now,
                        updated_at=now,
                        lease_token=None,
                        lease_expires_at=None,
                    )
                    .execution_options(synchronize_session=False)
                )
                continue

            token = uuid.uuid4().hex
            claimed = session.execute(
                update(JobRecord)
                .where(JobRecord.id == candidate.id)
                .where(JobRecord.status == candidate.status)
                .where(
                    JobRecord.lease_token == candidate.lease_token
                    if candidate.lease_token is not None
                    else JobRecord.lease_token.is_(None)
                )
                .values(
                    status=JOB_PROCESSING,
                    attempts=attempts,
                    lease_token=token,
                    lease_expires_at=now + timedelta(seconds=lease_seconds),
                    started_at=now,
                    finished_at=None,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                continue

            return ClaimedJob(
                id=candidate.id,
                document_id=candidate.document_id,
                path=candidate.path,
                payload=dict(candidate.payload_json or {}),
                attempts=attempts,
                max_attempts=candidate.max_attempts,
                lease_token=token,
                redelivered=redelivered,
            )

    return None


def _owned(job: ClaimedJob) -> Any:
    return and_(
        JobRecord.id == job.id,
        JobRecord.status == JOB_PROCESSING,
        JobRecord.lease_token == job.lease_token,
    )


def ack_job(engine: Engine, job: ClaimedJob, result: dict[str, Any]) -> bool:
    now = _now()
    with Session(engine) as session, session.begin():
        updated = session.execute(
            update(JobRecord)
            .where(_owned(job))
            .values(
                status=JOB_DONE,
                result_json=result,
                error=None,
                finished_at=now,
                updated_at=now,
                lease_token=None,
                lease_expires_at=None,
            )
            .execution_options(synchronize_session=False)
        )
    return updated.rowcount == 1


def fail_job(
    engine: Engine,
    job: ClaimedJob,
    error: str,
    *,
    retryable: bool,
    retry_delay_seconds: float = 0.0,
) -> str | None:
    """Record a failed attempt.

    A retryable failure with attempts left puts the job back in the queue,
    available again after ``retry_delay_seconds``. Anything else is terminal.
    Returns the resulting status, or ``None`` when the lease was lost.
    """
    now = _now()
    attempts = job.attempts + 1
    requeue = retryable and attempts < job.max_attempts
    values: dict[str, Any] = {
        "attempts": attempts,
        "error": error,
        "updated_at": now,
        "lease_token": None,
        "lease_expires_at": None,
    }
    if requeue:
        values.update(
            status=JOB_QUEUED,
            available_at=now + timedelta(seconds=retry_delay_seconds),
            started_at=None,
        )
    else:
        values.update(status=JOB_FAILED, finished_at=now)

    with Session(engine) as session, session.begin():
        updated = session.execute(
            update(JobRecord)
            .where(_owned(job))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
    if updated.rowcount != 1:
        return None
    return values["status"]


def renew_leases(engine: Engine, jobs: list[ClaimedJob], *, lease_seconds: float) -> int:
    if not jobs:
        return 0
    now = _now()
    renewed = 0
    with Session(engine) as session, session.begin():
        for job in jobs:
            result = session.execute(
                update(JobRecord)
                .where(_owned(job))
                .values(lease_expires_at=now + timedelta(seconds=lease_seconds), updated_at=now)
                .execution_options(synchronize_session=False)
            )
            renewed += result.rowcount
    return renewed


def requeue_failed_job(session: Session, job_id: str) -> str:
    """Enqueue a fresh job for the document of a failed job.

    Raises ``LookupError`` for unknown jobs and ``ValueError`` when the job is
    not ``failed``. The failed job itself is left untouched.
    """
    job = session.get(JobRecord, job_id)
    if job is None:
        raise LookupError(f"job not found: {job_id}")
    if job.status != JOB_FAILED:
        raise ValueError(f"job {job_id} is {job.status}, only failed jobs can be retried")

    payload = dict(job.payload_json or {"path": job.path})
    return enqueue_job(
        session,
        document_id=job.document_id,
        payload=payload,
        max_attempts=job.max_attempts,
    )
