import json
from datetime import datetime
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

from pydantic import ValidationError

from opsdesk.adapters.sheets_sql import SheetBackendError
from opsdesk.config import settings
from opsdesk.schemas.refund_schema import LineItem, RefundMethod, RefundRecord, RefundStatus
from opsdesk.utils.a1 import cell, column_letter
from opsdesk.utils.log import get_logger

log = get_logger("refunds")

# column positions in the registry sheet (0-based)
COL_ORDER = 0
COL_TAX_ID = 4
COL_TAX_NAME = 5
COL_DATE = 9
COL_ADDRESS = 12
COL_PHONE = 13
COL_ORDER_GID = 18
COL_ORDER_LINE_ITEMS = 19
COL_TRANSACTION_ID = 20
COL_GATEWAY = 21
COL_STATUS = 22
COL_REFUND_ITEMS = 23
COL_REFUND_AMOUNT = 24
COL_REFUND_STARTED = 25
COL_EXTRA_DATA = 26
COL_RECEIPT_URL = 27

FIRST_DATA_ROW = 2
LAST_COLUMN = column_letter(COL_RECEIPT_URL)

STATUS_LABELS = {
    "EN_PROCESO": RefundStatus.IN_PROGRESS,
    "IN_PROGRESS": RefundStatus.IN_PROGRESS,
    "COMPLETADO": RefundStatus.COMPLETED,
    "COMPLETED": RefundStatus.COMPLETED,
}
COMPLETED_LABEL = "COMPLETADO"

METHOD_LABELS = {
    "efectivo": RefundMethod.CASH,
    "cash": RefundMethod.CASH,
    "deposito": RefundMethod.BANK_DEPOSIT,
    "bank_deposit": RefundMethod.BANK_DEPOSIT,
    "web": RefundMethod.WEB,
}


class StoreUnavailable(Exception):
    """The refund record store could not be read or written."""

    def __init__(self, message: str, row_index: Optional[int] = None, step: Optional[str] = None):
        super().__init__(message)
        self.row_index = row_index
        self.step = step


def _cell(row: List[str], idx: int) -> str:
    if idx < len(row) and row[idx] is not None:
        return str(row[idx])
    return ""


def _json_cell(row: List[str], idx: int, default, row_index: int, label: str):
    raw = _cell(row, idx).strip()
    if not raw:
        return default
    try:
        return json.loads(raw)
    except ValueError:
        log.warning(f"row {row_index}: could not parse {label} JSON, ignoring it")
        return default


def _amount(raw: str) -> float:
    try:
        return max(0.0, float(raw))
    except (TypeError, ValueError):
        return 0.0


def _line_items(raw: Any, row_index: int) -> List[LineItem]:
    if not isinstance(raw, list):
        return []
    items = []
    for entry in raw:
        if not isinstance(entry, dict):
            log.warning(f"row {row_index}: ignoring refund item {entry!r}")
            continue
        item = dict(entry)
        # older rows only carry the discounted price
        if item.get("refundAmount") in (None, ""):
            item["refundAmount"] = item.get("discountedPrice") or 0
        try:
            item["quantity"] = int(float(item.get("quantity") or 1))
        except (TypeError, ValueError):
            item["quantity"] = 1
        item["name"] = str(item.get("name") or "")
        try:
            items.append(LineItem.model_validate(item))
        except ValidationError as e:
            log.warning(f"row {row_index}: ignoring malformed refund item: {e.errors()[0]['msg']}")
    return items


def parse_status(label: str) -> Optional[RefundStatus]:
    return STATUS_LABELS.get((label or "").strip().upper())


def parse_method(extra_data: Dict[str, Any]) -> RefundMethod:
    raw = extra_data.get("method") or extra_data.get("metodo") or ""
    return METHOD_LABELS.get(str(raw).strip().lower(), RefundMethod.UNKNOWN)


def parse_row(row: List[str], row_index: int) -> Optional[RefundRecord]:
    """Map one sheet row to a RefundRecord; rows without a refund status are not refunds."""
    status_label = _cell(row, COL_STATUS).strip()
    if not status_label:
        return None
    status = parse_status(status_label)
    if status is None:
        log.warning(f"row {row_index}: unknown refund status {status_label!r}, treating as in progress")
        status = RefundStatus.IN_PROGRESS

    extra_data = _json_cell(row, COL_EXTRA_DATA, {}, row_index, "refund data")
    if not isinstance(extra_data, dict):
        extra_data = {}
    line_items = _line_items(_json_cell(row, COL_REFUND_ITEMS, [], row_index, "refund items"), row_index)
    order_line_items = _json_cell(row, COL_ORDER_LINE_ITEMS, [], row_index, "order line items")
    if not isinstance(order_line_items, list):
        order_line_items = []
    order_line_items = [li for li in order_line_items if isinstance(li, dict)]

    address: Any = _cell(row, COL_ADDRESS)
    if address.startswith("{"):
        try:
            address = json.loads(address)
        except ValueError:
            pass
    customer_name = _cell(row, COL_TAX_NAME) or "Cliente"
    if isinstance(address, dict) and address.get("name"):
        customer_name = address["name"]

    receipt_url = _cell(row, COL_RECEIPT_URL) or extra_data.get("receiptUrl") or None

    try:
        return RefundRecord(
            row_index=row_index,
            order_id=_cell(row, COL_ORDER),
            order_gid=_cell(row, COL_ORDER_GID),
            customer_name=str(customer_name),
            phone=_cell(row, COL_PHONE).strip(),
            address=address,
            tax_id=_cell(row, COL_TAX_ID),
            tax_name=_cell(row, COL_TAX_NAME) or "Consumidor Final",
            date=_cell(row, COL_DATE),
            transaction_id=_cell(row, COL_TRANSACTION_ID),
            gateway=_cell(row, COL_GATEWAY),
            refund_method=parse_method(extra_data),
            status=status,
            refund_amount=_amount(_cell(row, COL_REFUND_AMOUNT)),
            refund_started_at=_cell(row, COL_REFUND_STARTED),
            line_items=line_items,
            order_line_items=order_line_items,
            extra_data=extra_data,
            receipt_url=receipt_url,
        )
    except ValidationError as e:
        # the row is dropped; the rest of the listing still loads
        log.warning(f"row {row_index}: skipping unreadable refund row ({e.error_count()} errors)")
        return None


class RefundRepository:
    """
    Refund records stored in a spreadsheet-like tab, keyed by row position.
    The backend only needs `get_values(range)` and `batch_update({range: value})`.
    """

    def __init__(self, backend, sheet: Optional[str] = None, tz: Optional[str] = None):
        self.backend = backend
        self.sheet = sheet or settings.REFUNDS_SHEET_NAME
        self.tz = ZoneInfo(tz or settings.TIMEZONE)

    async def _read(self, range_a1: str, row_index: Optional[int] = None, step: str = "read"):
        try:
            return await self.backend.get_values(range_a1)
        except SheetBackendError as e:
            raise StoreUnavailable(str(e), row_index=row_index, step=step) from e

    async def list_all(self) -> List[RefundRecord]:
        rows = await self._read(f"{self.sheet}!A{FIRST_DATA_ROW}:{LAST_COLUMN}", step="list")
        refunds = []
        for offset, row in enumerate(rows):
            rec = parse_row(row, FIRST_DATA_ROW + offset)
            if rec is not None:
                refunds.append(rec)
        log.info(f"retrieved {len(refunds)} refunds from {len(rows)} rows")
        return refunds

    async def list_grouped(self) -> Dict[str, Any]:
        refunds = await self.list_all()
        in_progress = [r for r in refunds if r.status == RefundStatus.IN_PROGRESS]
        completed = [r for r in refunds if r.status == RefundStatus.COMPLETED]
        return {
            "all": refunds,
            "in_progress": in_progress,
            "completed": completed,
            "counts": {
                "total": len(refunds),
                "in_progress": len(in_progress),
                "completed": len(completed),
            },
        }

    async def get_by_row_index(self, row_index: int) -> Optional[RefundRecord]:
        if row_index < FIRST_DATA_ROW:
            return None
        rows = await self._read(
            f"{self.sheet}!A{row_index}:{LAST_COLUMN}{row_index}", row_index=row_index, step="load"
        )
        if not rows:
            return None
        return parse_row(rows[0], row_index)

    async def mark_completed(
        self, row_index: int, receipt_url: Optional[str] = None, completed_by: str = "admin"
    ) -> RefundRecord:
        """
        Merge completion metadata into the row's refund data and flip the status.
        Status, refund data and receipt URL are written in one batch.
        """
        current = await self._read(
            cell(self.sheet, COL_EXTRA_DATA, row_index), row_index=row_index, step="persist"
        )
        extra_data = {}
        if current and current[0]:
            extra_data = _json_cell(current[0], 0, {}, row_index, "refund data")
            if not isinstance(extra_data, dict):
                extra_data = {}

        extra_data.update(
            {
                "completed": True,
                "completedAt": datetime.now(self.tz).isoformat(timespec="seconds"),
                "completedBy": completed_by or "admin",
                "receiptUrl": receipt_url,
            }
        )
        updates = {
            cell(self.sheet, COL_STATUS, row_index): COMPLETED_LABEL,
            cell(self.sheet, COL_EXTRA_DATA, row_index): json.dumps(extra_data, ensure_ascii=False),
            cell(self.sheet, COL_RECEIPT_URL, row_index): receipt_url or "",
        }
        try:
            await self.backend.batch_update(updates)
        except SheetBackendError as e:
            raise StoreUnavailable(str(e), row_index=row_index, step="persist") from e

        log.info(f"refund row {row_index} marked completed by {extra_data['completedBy']}")
        updated = await self.get_by_row_index(row_index)
        if updated is None:
            raise StoreUnavailable(
                f"row {row_index} vanished after completion", row_index=row_index, step="persist"
            )
        return updated
