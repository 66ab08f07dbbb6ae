# services/dispatcher.py
import asyncio
from typing import Dict, List, Optional, Set

import requests

from config import JobConfig
from models import CreditBlockRecord
from services.sales_order_update import (
    send_standard_order_updates,
    send_free_of_charge_order_updates,
)
from logger import get_logger

log = get_logger("dispatcher")

# strong refs so fire-and-forget tasks are not garbage collected mid-flight
_in_flight: Set[asyncio.Task] = set()


def dispatch_orders(
    groups: Dict[str, List[CreditBlockRecord]],
    config: JobConfig,
    session: Optional[requests.Session] = None,
) -> List[asyncio.Task]:
    """
    Start one update task per order and return without waiting.
    Must be called from inside a running event loop.
    A non-None session is shared by all order tasks (see app.run_once).
    """
    tasks: List[asyncio.Task] = []

    for order_id, items in groups.items():
        if not items:
            # no items for the order; the CDS view never produces this
            log.debug(f"Sales Order {order_id}: no items, skipped")
            continue

        # order type is the same for every item, so the first one decides
        if items[0].is_standard_order:
            coro = send_standard_order_updates(items, config, session)
        else:
            coro = send_free_of_charge_order_updates(items, config, session)

        task = asyncio.create_task(coro, name=f"credit-block-{order_id}")
        _in_flight.add(task)
        task.add_done_callback(_in_flight.discard)
        tasks.append(task)

    log.info(f"Dispatched {len(tasks)} order update(s)")
    return tasks
