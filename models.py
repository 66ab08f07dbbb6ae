#models.py
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any, Union

STANDARD_ORDER_CATEGORY = "C"     # SDDocumentCategory of a standard sales order
CREDIT_BLOCK_REASON = "70"        # SalesDocumentRjcnReason used as the credit block


def _as_bool(value: Any) -> bool:
    # ABAP flags come back as "X"/"" from CDS views, booleans from OData
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().upper() in ("X", "TRUE", "1")


@dataclass(frozen=True)
class CreditBlockRecord:
    sales_document: str
    sales_document_item: str
    sd_document_category: str
    set_credit_block: bool

    @classmethod
    def from_odata(cls, row: Dict[str, Any]) -> "CreditBlockRecord":
        return cls(
            sales_document=str(row.get("SalesDocument", "") or ""),
            sales_document_item=str(row.get("SalesDocumentItem", "") or ""),
            sd_document_category=str(row.get("SDDocumentCategory", "") or ""),
            set_credit_block=_as_bool(row.get("SetCreditBlock")),
        )

    @property
    def is_standard_order(self) -> bool:
        return self.sd_document_category == STANDARD_ORDER_CATEGORY


@dataclass(frozen=True)
class UpdateRequest:
    order_id: str
    item_id: str
    rejection_reason: str   # "70" = set credit block, "" = clear it


@dataclass(frozen=True)
class OrderService:
    """One OData write service for sales order items."""
    label: str
    service_path: str
    entity_set: str
    order_key: str
    item_key: str
    reason_field: str = "SalesDocumentRjcnReason"


STANDARD_ORDER_SERVICE = OrderService(
    label="standard",
    service_path="/sap/opu/odata/sap/API_SALES_ORDER_SRV",
    entity_set="A_SalesOrderItem",
    order_key="SalesOrder",
    item_key="SalesOrderItem",
)

FREE_OF_CHARGE_ORDER_SERVICE = OrderService(
    label="free-of-charge",
    service_path="/sap/opu/odata/sap/API_SALES_ORDER_WITHOUT_CHARGE_SRV",
    entity_set="A_SlsOrdWthoutChrgItm",
    order_key="SalesOrderWithoutCharge",
    item_key="SalesOrderWithoutChargeItem",
)


# ---------------- $batch responses ----------------
@dataclass
class ItemResponse:
    http_status: int
    error_message: Optional[str] = None
    body: Optional[dict] = None

    @property
    def is_success(self) -> bool:
        return 200 <= self.http_status < 300


@dataclass
class BatchSuccess:
    items: List[ItemResponse] = field(default_factory=list)


@dataclass
class BatchFailureList:
    items: List[ItemResponse] = field(default_factory=list)


@dataclass
class BatchFailureSingle:
    item: ItemResponse


BatchResponse = Union[BatchSuccess, BatchFailureList, BatchFailureSingle]


@dataclass
class RunSummary:
    run_id: str
    record_count: int = 0
    order_count: int = 0
    read_failed: bool = False
