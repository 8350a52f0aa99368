from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from afina.db.session import AsyncSessionLocal
from afina.scheduler import jobs
from afina.utils.dates import utcnow
from config import settings


SCHEDULED_TASKS_JOB_ID = "run_scheduled_tasks"
PENDING_PAYMENTS_JOB_ID = "check_pending_payments"


def schedule_tasks_job(
    scheduler: AsyncIOScheduler,
    bot,
    interval_minutes: int,
    session_factory=AsyncSessionLocal,
) -> None:
    scheduler.add_job(
        jobs.run_scheduled_tasks,
        IntervalTrigger(minutes=interval_minutes),
        args=[bot, session_factory],
        id=SCHEDULED_TASKS_JOB_ID,
        max_instances=1,
        coalesce=True,
        next_run_time=utcnow(),
        replace_existing=True,
    )


def setup_scheduler(
    bot, payment_adapter=None, session_factory=AsyncSessionLocal
) -> AsyncIOScheduler:
    scheduler = AsyncIOScheduler(timezone=settings.scheduler_timezone)

    schedule_tasks_job(
        scheduler, bot, settings.scheduler_interval_minutes, session_factory
    )

    if payment_adapter is not None:
        scheduler.add_job(
            jobs.poll_pending_payments,
            "interval",
            minutes=10,
            args=[bot, session_factory, payment_adapter],
            id=PENDING_PAYMENTS_JOB_ID,
            max_instances=1,
            replace_existing=True,
        )

    return scheduler
