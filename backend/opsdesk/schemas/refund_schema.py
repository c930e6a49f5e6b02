# backend/opsdesk/schemas/refund_schema.py
import enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class RefundStatus(str, enum.Enum):
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class RefundMethod(str, enum.Enum):
    CASH = "cash"
    BANK_DEPOSIT = "bank_deposit"
    WEB = "web"
    UNKNOWN = "unknown"


class LineItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")
    name: str = ""
    quantity: int = 1
    refund_amount: float = Field(0.0, alias="refundAmount")


class RefundRecord(BaseModel):
    row_index: int = Field(..., gt=0)
    order_id: str = ""
    order_gid: str = ""
    customer_name: str = "Cliente"
    phone: str = ""
    address: Union[str, Dict[str, Any]] = ""
    tax_id: str = ""
    tax_name: str = ""
    date: str = ""
    transaction_id: str = ""
    gateway: str = ""
    refund_method: RefundMethod = RefundMethod.UNKNOWN
    status: RefundStatus = RefundStatus.IN_PROGRESS
    refund_amount: float = Field(0.0, ge=0)
    refund_started_at: str = ""
    line_items: List[LineItem] = []
    order_line_items: List[Dict[str, Any]] = []
    extra_data: Dict[str, Any] = {}
    receipt_url: Optional[str] = None


class CompletionResult(BaseModel):
    row_index: int
    order_id: str
    status: RefundStatus = RefundStatus.COMPLETED
    receipt_url: Optional[str] = None
    notification_result: Optional[Dict[str, Any]] = None
    settlement_result: Optional[Dict[str, Any]] = None
    # names of the non-critical steps that failed
    warnings: List[str] = []


class CompleteRefundIn(BaseModel):
    receipt_base64: Optional[str] = None
    send_whatsapp: bool = True
