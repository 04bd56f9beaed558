"""
Durable fulfillment queue.

A paid webhook enqueues a create_enrollments job in the same transaction that marks the
order paid. Jobs are delivered at least once; the consumer (create_enrollments_for_order)
is idempotent and is followed by automatic delivery of the new enrollments. Failed attempts
are retried with exponential backoff until max attempts.
"""
import asyncio
import logging
from datetime import datetime, timedelta

from sqlalchemy import update
from sqlmodel import Session, col, select

from app.core.config import settings
from app.core.database import engine
from app.models import FulfillmentJob, Order
from app.models.fulfillment_job import JOB_CREATE_ENROLLMENTS
from app.services.delivery import deliver_order
from app.services.enrollment import create_enrollments_for_order

log = logging.getLogger("academy.fulfillment")

JOB_PENDING = "pending"
JOB_PROCESSING = "processing"
JOB_DONE = "done"
JOB_FAILED = "failed"


def backoff_seconds(attempts: int) -> int:
    """Delay before the next try after `attempts` failures: base * 2**(attempts-1), capped."""
    base = max(settings.fulfillment_retry_base_seconds, 0)
    delay = base * (2 ** max(attempts - 1, 0))
    return min(delay, settings.fulfillment_retry_max_seconds)


def enqueue(db: Session, order_id: int, kind: str = JOB_CREATE_ENROLLMENTS) -> FulfillmentJob:
    """Add a job unless one is already waiting for this order. Caller commits."""
    existing = db.exec(
        select(FulfillmentJob).where(
            FulfillmentJob.order_id == order_id,
            FulfillmentJob.kind == kind,
            col(FulfillmentJob.status).in_([JOB_PENDING, JOB_PROCESSING]),
        )
    ).first()
    if existing:
        return existing
    job = FulfillmentJob(order_id=order_id, kind=kind)
    db.add(job)
    log.info("Enqueued %s job for order %s", kind, order_id)
    return job


def _claim(db: Session, job: FulfillmentJob) -> bool:
    """pending -> processing with a conditional UPDATE; False when another worker took it."""
    stmt = (
        update(FulfillmentJob)
        .where(col(FulfillmentJob.id) == job.id, col(FulfillmentJob.status) == JOB_PENDING)
        .values(status=JOB_PROCESSING, updated_at=datetime.utcnow())
    )
    claimed = db.connection().execute(stmt).rowcount > 0
    db.commit()
    db.refresh(job)
    return claimed


def _run(db: Session, job: FulfillmentJob) -> None:
    if job.kind != JOB_CREATE_ENROLLMENTS:
        raise ValueError(f"Unknown job kind: {job.kind}")
    order = db.get(Order, job.order_id)
    if order is None:
        raise ValueError(f"Order {job.order_id} not found")
    create_enrollments_for_order(db, order)
    deliver_order(db, order.id)


def process_job(db: Session, job: FulfillmentJob) -> str:
    """Run one claimed job; returns the job's resulting status."""
    job_id = job.id
    try:
        _run(db, job)
    except Exception as e:
        db.rollback()
        job = db.get(FulfillmentJob, job_id)
        job.attempts += 1
        job.last_error = str(e)[:2000]
        job.updated_at = datetime.utcnow()
        if job.attempts >= settings.fulfillment_max_attempts:
            job.status = JOB_FAILED
            log.error("Job %s (order %s) failed permanently after %s attempts: %s", job.id, job.order_id, job.attempts, e)
        else:
            job.status = JOB_PENDING
            job.next_attempt_at = datetime.utcnow() + timedelta(seconds=backoff_seconds(job.attempts))
            log.warning("Job %s (order %s) attempt %s failed, retry at %s: %s", job.id, job.order_id, job.attempts, job.next_attempt_at, e)
        db.add(job)
        db.commit()
        return job.status
    job = db.get(FulfillmentJob, job_id)
    job.attempts += 1
    job.status = JOB_DONE
    job.last_error = None
    job.updated_at = datetime.utcnow()
    db.add(job)
    db.commit()
    log.info("Job %s (order %s) done", job.id, job.order_id)
    return JOB_DONE


def process_due_jobs(db: Session, limit: int = 50, now: datetime | None = None) -> dict:
    now = now or datetime.utcnow()
    due = db.exec(
        select(FulfillmentJob)
        .where(FulfillmentJob.status == JOB_PENDING, FulfillmentJob.next_attempt_at <= now)
        .order_by(FulfillmentJob.next_attempt_at, FulfillmentJob.id)
        .limit(limit)
    ).all()
    stats = {"processed": 0, "done": 0, "retried": 0, "failed": 0}
    for job in due:
        if not _claim(db, job):
            continue
        status = process_job(db, job)
        stats["processed"] += 1
        if status == JOB_DONE:
            stats["done"] += 1
        elif status == JOB_FAILED:
            stats["failed"] += 1
        else:
            stats["retried"] += 1
    return stats


def drain_queue() -> dict:
    """Process due jobs in a fresh session; used by background tasks and the worker loop."""
    with Session(engine) as db:
        return process_due_jobs(db)


def list_jobs(db: Session, status: str | None = None, limit: int = 100) -> list[FulfillmentJob]:
    stmt = select(FulfillmentJob)
    if status:
        stmt = stmt.where(FulfillmentJob.status == status)
    stmt = stmt.order_by(col(FulfillmentJob.created_at).desc(), col(FulfillmentJob.id).desc()).limit(limit)
    return list(db.exec(stmt).all())


async def worker_loop(stop: asyncio.Event) -> None:
    log.info("Fulfillment worker started (poll %ss)", settings.fulfillment_poll_seconds)
    while not stop.is_set():
        try:
            stats = await asyncio.to_thread(drain_queue)
            if stats["processed"]:
                log.info("Fulfillment worker: %s", stats)
        except Exception:
            log.exception("Fulfillment worker iteration failed")
        try:
            await asyncio.wait_for(stop.wait(), timeout=settings.fulfillment_poll_seconds)
        except asyncio.TimeoutError:
            pass
    log.info("Fulfillment worker stopped")
