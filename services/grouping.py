# services/grouping.py
from typing import Dict, Iterable, List, Optional

from models import CreditBlockRecord


def group_by_order(records: Optional[Iterable[CreditBlockRecord]]) -> Dict[str, List[CreditBlockRecord]]:
    # dicts keep insertion order, so orders come out first-seen first
    grouped: Dict[str, List[CreditBlockRecord]] = {}
    for rec in records or []:
        grouped.setdefault(rec.sales_document, []).append(rec)
    return grouped
