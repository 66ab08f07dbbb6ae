# services/credit_block.py
from typing import List, Optional, Dict, Any

import requests

from api import get_json, service_url
from config import JobConfig, build_session
from exceptions import BackendError
from models import CreditBlockRecord
from logger import get_logger

log = get_logger("credit_block")

CREDIT_BLOCK_SERVICE = "/sap/opu/odata/sap/YY1_SALESDOCCREDITBLOCK_CDS"
CREDIT_BLOCK_ENTITY = "YY1_SalesDocCreditBlock"


def _rows_and_next(data: Dict[str, Any]) -> tuple[list, Optional[str]]:
    # OData v2: {"d": {"results": [...], "__next": "..."}}
    if isinstance(data.get("d"), dict):
        d = data["d"]
        rows = d.get("results")
        if rows is None:
            raise BackendError("OData v2 response without 'results'", service="credit-block")
        return rows, d.get("__next")

    # OData v4: {"value": [...], "@odata.nextLink": "..."}
    if "value" in data:
        return data.get("value") or [], data.get("@odata.nextLink")

    raise BackendError(
        f"Unexpected credit block payload keys: {sorted(data.keys())}",
        service="credit-block",
    )


def fetch_pending(config: JobConfig, session: Optional[requests.Session] = None) -> List[CreditBlockRecord]:
    """
    Read every sales document item waiting for a credit block change.
    Raises BackendError on any failed call; no retries here.
    """
    own_session = session is None
    if own_session:
        session = build_session(config)

    root = service_url(config, CREDIT_BLOCK_SERVICE)
    url: Optional[str] = f"{root}/{CREDIT_BLOCK_ENTITY}"
    params: Optional[Dict[str, Any]] = {"$format": "json"}

    records: List[CreditBlockRecord] = []
    try:
        while url:
            data = get_json(session, url, params=params, timeout=config.request_timeout, service="credit-block")
            rows, next_link = _rows_and_next(data)
            records.extend(CreditBlockRecord.from_odata(r) for r in rows if isinstance(r, dict))

            if next_link and not next_link.lower().startswith("http"):
                next_link = f"{root}/{next_link.lstrip('/')}"
            url = next_link
            params = None   # next links already carry the query
    finally:
        if own_session:
            session.close()

    log.info(f"Credit block items pending: {len(records)}")
    return records
