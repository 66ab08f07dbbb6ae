# credit_block_job/app.py

import sys
import uuid
import asyncio
from typing import Optional

import requests

# ---------------- CONFIG / CORE ----------------
from config import JOB_NAME, JobConfig, load_config
from exceptions import BackendError, DestinationError
from models import RunSummary
from logger import get_logger, configure_library_log_levels
from scheduler import cron_for_frequency, run_forever

# ---------------- PIPELINE ----------------
from services.credit_block import fetch_pending
from services.grouping import group_by_order
from services.dispatcher import dispatch_orders


log = get_logger("app")


# ------------------------------------------------------------
# RUN ONCE (fired by the scheduler every JOB_FREQUENCY_MIN minutes)
# ------------------------------------------------------------
async def run_once(
    config: JobConfig,
    session: Optional[requests.Session] = None,
    wait: bool = False,
) -> RunSummary:
    """
    Read pending credit block items, group them per sales order and start one
    update per order. With wait=True the order updates are awaited before
    returning; the scheduler never waits.

    Leave session as None in production: each order then builds its own
    requests.Session. An injected session is shared by every order update
    running in worker threads at once, and requests.Session is not
    thread-safe, so only pass one that tolerates that (the test fakes do).
    """
    summary = RunSummary(run_id=str(uuid.uuid4()))
    log.info(f"===== RUN START: {summary.run_id} =====")

    try:
        try:
            records = await asyncio.to_thread(fetch_pending, config, session)
        except BackendError as e:
            # nothing gets sent, but this is an outage, not an empty worklist
            summary.read_failed = True
            log.error(f":: Could not read credit block items :: {e}")
            return summary

        summary.record_count = len(records)
        if not records:
            log.info(":: Nothing to update ::")
            return summary

        groups = group_by_order(records)
        tasks = dispatch_orders(groups, config, session)
        summary.order_count = len(tasks)

        if wait and tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    except Exception as e:
        log.exception(f":: Error executing service :: {e}")

    finally:
        log.info(
            f"===== RUN END: {summary.run_id} | "
            f"items={summary.record_count}, orders={summary.order_count}, "
            f"read_failed={summary.read_failed} ====="
        )

    return summary


def main() -> None:
    try:
        config = load_config()
    except DestinationError as e:
        log.error(f"Startup aborted: {e}")
        sys.exit(1)

    configure_library_log_levels(config.library_log_level)

    cron_rule = cron_for_frequency(config.frequency_minutes)
    log.info(f"ENV={config.env} destination={config.destination.name} url={config.destination.url}")
    log.info(f"Schedule: {cron_rule}")

    try:
        asyncio.run(run_forever(JOB_NAME, cron_rule, lambda: run_once(config)))
    except KeyboardInterrupt:
        log.info("Scheduler stopped.")


if __name__ == "__main__":
    main()
