import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from opsdesk.adapters.object_storage import SupabaseStorageAdapter
from opsdesk.adapters.settlement_client import PosSettlementClient
from opsdesk.config import settings
from opsdesk.repositories.refund_repo import RefundRepository, StoreUnavailable
from opsdesk.schemas.refund_schema import CompletionResult, RefundMethod, RefundRecord, RefundStatus
from opsdesk.services.notification_service import NotificationService
from opsdesk.utils.log import get_logger

log = get_logger("refunds")


class RefundServiceException(Exception):
    pass


class RefundNotFound(RefundServiceException):
    pass


class AlreadyCompleted(RefundServiceException):
    pass


class RefundNotCompleted(RefundServiceException):
    pass


class MissingPhoneNumber(RefundServiceException):
    pass


@dataclass
class StepResult:
    name: str
    critical: bool
    ok: bool
    value: Any = None
    error: Optional[str] = None
    skipped: bool = False


class RowLocks:
    """asyncio.Lock per row index, dropped again once nobody holds or waits on it."""

    def __init__(self):
        self._locks: Dict[int, asyncio.Lock] = {}
        self._holders: Dict[int, int] = {}

    @asynccontextmanager
    async def hold(self, row_index: int):
        lock = self._locks.setdefault(row_index, asyncio.Lock())
        self._holders[row_index] = self._holders.get(row_index, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[row_index] -= 1
            if self._holders[row_index] == 0:
                del self._holders[row_index]
                del self._locks[row_index]

    def __len__(self):
        return len(self._locks)


class RefundService:
    """
    Refund completion workflow.

    Steps, in order, each one awaited before the next:
      1. load the record                 critical
      2. reject already completed        guard
      3. upload the receipt              non-critical
      4. settle deposit returns (POS)    non-critical
      5. persist COMPLETED               critical
      6. notify the customer             non-critical

    A critical failure raises StoreUnavailable and nothing after it runs.
    Non-critical failures are logged and reported in the result. Steps 1-5
    run under a per-row lock so a row is completed at most once.

    Every step but the persist is bounded by `step_timeout`; the persist is
    bounded only by the backend's own timeout, and a persist error is checked
    against a fresh read of the row before it is reported.
    """

    def __init__(
        self,
        repo: RefundRepository,
        notifier: NotificationService,
        storage: SupabaseStorageAdapter,
        settlement: PosSettlementClient,
        locks: Optional[RowLocks] = None,
        step_timeout: Optional[float] = None,
    ):
        self.repo = repo
        self.notifier = notifier
        self.storage = storage
        self.settlement = settlement
        self.locks = locks or RowLocks()
        self.step_timeout = step_timeout or settings.OUTBOUND_TIMEOUT_SECONDS * 2

    async def _run_step(
        self, name: str, critical: bool, func, *args, row_index: Optional[int] = None, bounded: bool = True
    ) -> StepResult:
        try:
            value = await asyncio.wait_for(func(*args), timeout=self.step_timeout if bounded else None)
        except Exception as e:
            error = str(e) or type(e).__name__
            if critical:
                log.error(f"row {row_index}: critical step {name} failed: {error}", exc_info=True)
                if isinstance(e, StoreUnavailable):
                    e.row_index = e.row_index or row_index
                    e.step = e.step or name
                    raise
                raise StoreUnavailable(error, row_index=row_index, step=name) from e
            log.warning(f"row {row_index}: step {name} failed (continuing): {error}")
            return StepResult(name=name, critical=critical, ok=False, error=error)
        return StepResult(name=name, critical=critical, ok=True, value=value)

    async def list_refunds(self) -> Dict[str, Any]:
        return await self.repo.list_grouped()

    async def get_refund(self, row_index: int) -> RefundRecord:
        refund = await self.repo.get_by_row_index(row_index)
        if refund is None:
            raise RefundNotFound(f"Refund not found for row {row_index}")
        return refund

    def _settlement_payload(self, refund: RefundRecord, receipt_url: Optional[str]) -> Dict:
        return {
            "rowIndex": refund.row_index,
            "orderId": refund.order_gid,
            "orderNumber": refund.order_id,
            "returnId": refund.extra_data.get("returnId"),
            "totalRefundAmount": refund.refund_amount,
            "selectedItems": [li.model_dump(by_alias=True) for li in refund.line_items],
            "receiptUrl": receipt_url,
            "taxId": refund.tax_id or None,
            "date": refund.date or None,
        }

    async def _settle(self, refund: RefundRecord, receipt_url: Optional[str]) -> Optional[StepResult]:
        if refund.refund_method != RefundMethod.BANK_DEPOSIT or not refund.extra_data.get("returnId"):
            log.debug(f"row {refund.row_index}: settlement not applicable ({refund.refund_method.value})")
            return None
        if not self.settlement.is_configured:
            log.warning(
                f"row {refund.row_index}: deposit return needs settlement but POS_APP_URL, "
                "INTERNAL_API_KEY or SHOPIFY_SHOP_DOMAIN is not configured; skipping"
            )
            return StepResult(name="settlement", critical=False, ok=False, skipped=True, error="not configured")

        log.info(f"row {refund.row_index}: closing deposit return {refund.extra_data.get('returnId')} in POS")
        step = await self._run_step(
            "settlement",
            False,
            self.settlement.complete_deposit_return,
            self._settlement_payload(refund, receipt_url),
            row_index=refund.row_index,
        )
        if step.ok and not (step.value or {}).get("success"):
            step.ok = False
            step.error = (step.value or {}).get("error") or "settlement rejected"
            log.warning(f"row {refund.row_index}: settlement service reported failure: {step.error}")
        return step

    async def _completed_despite_error(self, row_index: int) -> Optional[RefundRecord]:
        """Re-read after a failed persist; the write may have landed even though its response was lost."""
        try:
            current = await self.repo.get_by_row_index(row_index)
        except StoreUnavailable:
            return None
        if current is None or current.status != RefundStatus.COMPLETED:
            return None
        log.warning(f"row {row_index}: persist reported an error but the row is completed, continuing")
        return current

    async def complete(
        self,
        row_index: int,
        receipt_document: Optional[bytes] = None,
        notify_customer: bool = True,
        completed_by: str = "admin",
    ) -> CompletionResult:
        steps: List[StepResult] = []
        receipt_url = None

        async with self.locks.hold(row_index):
            load = await self._run_step("load", True, self.repo.get_by_row_index, row_index, row_index=row_index)
            refund = load.value
            if refund is None:
                raise RefundNotFound(f"Refund not found for row {row_index}")
            if refund.status == RefundStatus.COMPLETED:
                raise AlreadyCompleted(f"Refund for row {row_index} is already completed")

            log.info(f"row {row_index}: completing refund for order {refund.order_id} ({refund.refund_method.value})")

            if receipt_document:
                upload = await self._run_step(
                    "receipt_upload",
                    False,
                    self.storage.upload_refund_receipt,
                    receipt_document,
                    refund.order_id,
                    row_index=row_index,
                )
                steps.append(upload)
                receipt_url = upload.value if upload.ok else None

            settlement = await self._settle(refund, receipt_url)
            if settlement is not None:
                steps.append(settlement)

            # no step deadline: cancelling a write in flight does not stop it landing
            try:
                persisted = await self._run_step(
                    "persist",
                    True,
                    self.repo.mark_completed,
                    row_index,
                    receipt_url,
                    completed_by,
                    row_index=row_index,
                    bounded=False,
                )
                refund = persisted.value
            except StoreUnavailable:
                refund = await self._completed_despite_error(row_index)
                if refund is None:
                    raise

        notification_result = None
        if notify_customer and refund.phone:
            notify = await self._run_step(
                "notification",
                False,
                self.notifier.send_refund_notification,
                refund,
                receipt_url,
                row_index=row_index,
            )
            if notify.ok:
                notification_result = notify.value
                notify.ok = bool(notify.value.get("success"))
            else:
                notification_result = {"success": False, "error": notify.error}
            steps.append(notify)
        elif notify_customer:
            log.info(f"row {row_index}: no phone on record, customer not notified")

        settlement_result = None
        if settlement is not None and not settlement.skipped:
            settlement_result = settlement.value if settlement.value is not None else {
                "success": False,
                "error": settlement.error,
            }

        warnings = [s.name if not s.skipped else f"{s.name}_skipped" for s in steps if not s.ok]
        log.info(f"row {row_index}: refund completed (warnings={warnings})")
        return CompletionResult(
            row_index=row_index,
            order_id=refund.order_id,
            status=RefundStatus.COMPLETED,
            receipt_url=receipt_url,
            notification_result=notification_result,
            settlement_result=settlement_result,
            warnings=warnings,
        )

    async def resend(self, row_index: int) -> Dict:
        """Send the completion message again; no retries and nothing is persisted."""
        refund = await self.repo.get_by_row_index(row_index)
        if refund is None:
            raise RefundNotFound(f"Refund not found for row {row_index}")
        if refund.status != RefundStatus.COMPLETED:
            raise RefundNotCompleted(f"Refund for row {row_index} is not completed yet")
        if not refund.phone:
            raise MissingPhoneNumber(f"Refund for row {row_index} has no phone number")

        receipt_url = refund.extra_data.get("receiptUrl") or refund.receipt_url
        log.info(f"row {row_index}: resending notification to {refund.phone}")
        return await self.notifier.send_refund_notification(refund, receipt_url)
