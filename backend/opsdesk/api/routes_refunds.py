import base64
import binascii

from fastapi import APIRouter, Depends, HTTPException

from opsdesk.api.deps import ServiceContainer, get_container, get_operator
from opsdesk.repositories.refund_repo import StoreUnavailable
from opsdesk.schemas.refund_schema import CompleteRefundIn
from opsdesk.services.refund_service import (
    AlreadyCompleted,
    MissingPhoneNumber,
    RefundNotCompleted,
    RefundNotFound,
    RefundServiceException,
)

router = APIRouter(prefix="/api/refunds", tags=["refunds"])


def _raise_for(e: Exception):
    if isinstance(e, RefundNotFound):
        raise HTTPException(status_code=404, detail=str(e))
    if isinstance(e, StoreUnavailable):
        raise HTTPException(status_code=500, detail=f"Refund store unavailable: {e}")
    raise HTTPException(status_code=400, detail=str(e))


@router.get("", summary="List refunds grouped by status")
async def list_refunds(container: ServiceContainer = Depends(get_container)):
    try:
        grouped = await container.refunds.list_refunds()
    except StoreUnavailable as e:
        _raise_for(e)
    return {
        "success": True,
        "data": {
            "all": [r.model_dump() for r in grouped["all"]],
            "in_progress": [r.model_dump() for r in grouped["in_progress"]],
            "completed": [r.model_dump() for r in grouped["completed"]],
        },
        "counts": grouped["counts"],
    }


@router.get("/health", summary="Which refund integrations are configured")
def refunds_health(container: ServiceContainer = Depends(get_container)):
    s = container.settings
    return {
        "success": True,
        "services": {
            "sheets": s.SHEETS_BACKEND != "google" or bool(s.GOOGLE_SHEETS_ID),
            "whatsapp": bool(s.WHATSAPP_PHONE_ID and s.WHATSAPP_ACCESS_TOKEN),
            "storage": bool(s.SUPABASE_URL and s.SUPABASE_SERVICE_ROLE_KEY),
            "settlement": bool(s.POS_APP_URL and s.INTERNAL_API_KEY and s.SHOPIFY_SHOP_DOMAIN),
        },
    }


@router.get("/{row_index}", summary="Get one refund by sheet row")
async def get_refund(row_index: int, container: ServiceContainer = Depends(get_container)):
    try:
        refund = await container.refunds.get_refund(row_index)
    except (RefundServiceException, StoreUnavailable) as e:
        _raise_for(e)
    return {"success": True, "data": refund.model_dump()}


@router.post("/{row_index}/complete", summary="Complete a refund")
async def complete_refund(
    row_index: int,
    payload: CompleteRefundIn,
    container: ServiceContainer = Depends(get_container),
    operator: str = Depends(get_operator),
):
    receipt = None
    if payload.receipt_base64:
        raw = payload.receipt_base64
        if raw.startswith("data:") and "," in raw:
            raw = raw.split(",", 1)[1]
        try:
            receipt = base64.b64decode(raw, validate=True)
        except (binascii.Error, ValueError):
            raise HTTPException(status_code=400, detail="receipt_base64 is not valid base64")

    try:
        result = await container.refunds.complete(
            row_index,
            receipt_document=receipt,
            notify_customer=payload.send_whatsapp,
            completed_by=operator,
        )
    except (AlreadyCompleted, RefundNotFound, StoreUnavailable) as e:
        _raise_for(e)
    return {
        "success": True,
        "message": "Refund completed" + (" with warnings" if result.warnings else ""),
        "data": result.model_dump(),
    }


@router.post("/{row_index}/send-whatsapp", summary="Resend the completion notification")
async def resend_notification(row_index: int, container: ServiceContainer = Depends(get_container)):
    try:
        result = await container.refunds.resend(row_index)
    except (RefundNotFound, RefundNotCompleted, MissingPhoneNumber, StoreUnavailable) as e:
        _raise_for(e)
    if not result.get("success"):
        raise HTTPException(status_code=500, detail=result.get("error") or "Error sending WhatsApp")
    return {"success": True, "message": "WhatsApp sent", "data": result}
