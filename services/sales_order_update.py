# services/sales_order_update.py

import asyncio
from typing import List, Optional, Sequence

import requests

from api import execute_changeset
from config import JobConfig, build_session
from models import (
    CREDIT_BLOCK_REASON,
    STANDARD_ORDER_SERVICE,
    FREE_OF_CHARGE_ORDER_SERVICE,
    BatchResponse,
    BatchSuccess,
    BatchFailureList,
    BatchFailureSingle,
    CreditBlockRecord,
    OrderService,
    UpdateRequest,
)
from logger import get_logger

log = get_logger("sales_order_update")


def rejection_reason_for(record: CreditBlockRecord) -> str:
    return CREDIT_BLOCK_REASON if record.set_credit_block else ""


def build_update_requests(records: Sequence[CreditBlockRecord]) -> List[UpdateRequest]:
    return [
        UpdateRequest(
            order_id=r.sales_document,
            item_id=r.sales_document_item,
            rejection_reason=rejection_reason_for(r),
        )
        for r in records
    ]


def log_batch_responses(order_id: str, responses: Sequence[BatchResponse]) -> None:
    error_message = f"An error occurred during the update of Sales Order {order_id}"

    for resp in responses:
        if isinstance(resp, BatchSuccess):
            for item in resp.items:
                if item.is_success:
                    log.info(f"Sales Order {order_id} Successfully updated")
                else:
                    log.error(f"{error_message}: {item.error_message}")
        elif isinstance(resp, BatchFailureList):
            for item in resp.items:
                log.error(f"{error_message}: {item.error_message}")
        elif isinstance(resp, BatchFailureSingle):
            log.error(f"{error_message}: {resp.item.error_message}")
        else:
            log.warning(f"Sales Order {order_id}: unrecognised batch response {resp!r}")


def _submit(
    config: JobConfig,
    service: OrderService,
    update_requests: List[UpdateRequest],
    session: Optional[requests.Session],
) -> List[BatchResponse]:
    if session is not None:
        return execute_changeset(session, config, service, update_requests)

    # own session per order: CSRF token + cookies must not leak between groups
    with build_session(config) as own:
        return execute_changeset(own, config, service, update_requests)


async def send_order_updates(
    service: OrderService,
    records: Sequence[CreditBlockRecord],
    config: JobConfig,
    session: Optional[requests.Session] = None,
) -> None:
    """
    One changeset for one order. Everything that goes wrong is logged here;
    nothing is raised back to the dispatcher.
    """
    if not records:
        return

    order_id = records[0].sales_document
    update_requests = build_update_requests(records)
    log.debug(f"Sales Order {order_id}: {len(update_requests)} item(s) via {service.label} service")

    try:
        responses = await asyncio.to_thread(_submit, config, service, update_requests, session)
    except Exception as e:
        log.error(f"Sales Order {order_id}: update request failed: {e}")
        return

    log_batch_responses(order_id, responses)


async def send_standard_order_updates(
    records: Sequence[CreditBlockRecord],
    config: JobConfig,
    session: Optional[requests.Session] = None,
) -> None:
    await send_order_updates(STANDARD_ORDER_SERVICE, records, config, session)


async def send_free_of_charge_order_updates(
    records: Sequence[CreditBlockRecord],
    config: JobConfig,
    session: Optional[requests.Session] = None,
) -> None:
    await send_order_updates(FREE_OF_CHARGE_ORDER_SERVICE, records, config, session)
