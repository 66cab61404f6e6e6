# backend/tripdesk/core/scheduler.py
# Background housekeeping: escalate approvals that have waited too long and
# flag vehicle/driver documents past their expiry date.
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from tripdesk.db.prisma_client import connect, get_client
from tripdesk.documents.services import expire_documents
from tripdesk.trip_approvals.services import escalate_stale_approvals

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()


async def run_escalations() -> int:
    await connect()
    try:
        return await escalate_stale_approvals(get_client())
    except Exception:
        logger.exception("Approval escalation job failed")
        return 0


async def run_document_expiry() -> int:
    await connect()
    try:
        return await expire_documents(get_client())
    except Exception:
        logger.exception("Document expiry job failed")
        return 0


def register_jobs(target: AsyncIOScheduler = scheduler) -> None:
    target.add_job(run_escalations, IntervalTrigger(minutes=60), id="escalate_stale_approvals", replace_existing=True)
    target.add_job(run_document_expiry, IntervalTrigger(minutes=60), id="expire_documents", replace_existing=True)


def start() -> None:
    if scheduler.running:
        return
    register_jobs()
    scheduler.start()
    logger.info("Scheduler started with %d job(s)", len(scheduler.get_jobs()))


def shutdown() -> None:
    if scheduler.running:
        scheduler.shutdown(wait=False)
