"""
Background settlement driver using APScheduler.
Runs periodically to pay out matured savings and close fund recruitment.
Funds past maturity are only reported: their outcome is the teacher's call.
"""

import logging
import sys
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from dotenv import load_dotenv

from config import get_settings
from db_engine import init_db
from services.common import current_time
from services.funds import FundService
from services.savings import SavingsService

logger = logging.getLogger(__name__)


@dataclass
class SweepSummary:
    savings_matured: int
    savings_deferred: int
    funds_ongoing: int
    funds_deferred: int
    funds_due: int


def configure_logging(level: Optional[str] = None):
    logging.basicConfig(
        level=(level or get_settings().log_level).upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def run_settlement_sweep(now: Optional[datetime] = None) -> SweepSummary:
    """
    Main job function: one pass over everything time has made due.
    Called by the scheduler at the configured interval.
    """
    now = current_time(now)
    logger.info("=" * 60)
    logger.info(f"Starting settlement sweep at {now:%Y-%m-%d %H:%M:%S}")
    logger.info("=" * 60)

    savings = SavingsService.sweep_maturities(now)
    recruitment = FundService.advance_recruitment(now)

    due = FundService.due_for_settlement(now)
    for fund in due:
        logger.info(
            f"Fund {fund.id} ({fund.name}) in classroom {fund.scope_id} matured on "
            f"{fund.maturity_date:%Y-%m-%d} and awaits settlement"
        )

    summary = SweepSummary(
        savings_matured=savings.count,
        savings_deferred=len(savings.failed),
        funds_ongoing=recruitment.count,
        funds_deferred=len(recruitment.failed),
        funds_due=len(due)
    )

    logger.info("=" * 60)
    logger.info(
        f"Settlement sweep complete. Savings matured: {summary.savings_matured}, "
        f"funds now ongoing: {summary.funds_ongoing}, funds awaiting settlement: {summary.funds_due}"
    )
    logger.info("=" * 60)
    return summary


def _run_scheduled_sweep():
    # A failed sweep must not kill the scheduler; the next run picks up the rows
    try:
        run_settlement_sweep()
    except Exception as e:
        logger.error(f"Settlement sweep failed: {e}", exc_info=True)


def start_settlement_scheduler() -> BackgroundScheduler:
    """
    Start the background scheduler for settlement sweeps.
    Runs every `sweep_interval_minutes`.
    """
    settings = get_settings()
    scheduler = BackgroundScheduler()

    scheduler.add_job(
        _run_scheduled_sweep,
        trigger=IntervalTrigger(minutes=settings.sweep_interval_minutes),
        id='settlement_sweep',
        name='Settlement Sweep',
        replace_existing=True,
        max_instances=1,
        coalesce=True
    )

    if settings.sweep_on_startup:
        logger.info("Running initial settlement sweep on startup...")
        _run_scheduled_sweep()

    scheduler.start()
    logger.info(f"Settlement scheduler started. Running every {settings.sweep_interval_minutes} minutes.")

    return scheduler


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    load_dotenv()
    configure_logging()
    init_db()

    if argv and argv[0] == "--once":
        logger.info("Running one-time settlement sweep...")
        run_settlement_sweep()
        return

    scheduler = start_settlement_scheduler()
    print("\n" + "=" * 60)
    print("Classroom economy settlement scheduler is running...")
    print("Press Ctrl+C to stop.")
    print("=" * 60 + "\n")
    try:
        while True:
            time.sleep(1)
    except (KeyboardInterrupt, SystemExit):
        logger.info("Shutting down settlement scheduler...")
        scheduler.shutdown()
        logger.info("Settlement scheduler stopped.")


if __name__ == "__main__":
    main()
