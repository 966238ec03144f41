# propwatch/scheduler.py
from apscheduler.schedulers.background import BackgroundScheduler

from . import config
from .jobs import JOBS
from .utils import logger

scheduler = BackgroundScheduler(
    timezone="UTC",
    job_defaults={"max_instances": 1, "coalesce": True},
)


def configure(sched: BackgroundScheduler = scheduler) -> BackgroundScheduler:
    sched.add_job(JOBS["refresh"], "interval", minutes=config.REFRESH_INTERVAL_MINUTES,
                  id="refresh", replace_existing=True)
    sched.add_job(JOBS["reconcile"], "interval", hours=1, id="reconcile", replace_existing=True)
    sched.add_job(JOBS["market_gaps"], "interval", hours=1, id="market_gaps", replace_existing=True)
    sched.add_job(JOBS["notify"], "interval", hours=1, id="notify", replace_existing=True)
    sched.add_job(JOBS["priorities"], "interval", hours=6, id="priorities", replace_existing=True)
    sched.add_job(JOBS["reset_counters"], "cron", hour=0, minute=5, id="reset_counters",
                  replace_existing=True)
    return sched


def start_scheduler(sched: BackgroundScheduler = scheduler) -> BackgroundScheduler:
    if sched.running:
        return sched
    configure(sched)
    sched.start()
    logger.info("Scheduler started with jobs: %s", ", ".join(j.id for j in sched.get_jobs()))
    return sched


def shutdown_scheduler(sched: BackgroundScheduler = scheduler):
    if sched.running:
        sched.shutdown(wait=False)
        logger.info("Scheduler stopped")
