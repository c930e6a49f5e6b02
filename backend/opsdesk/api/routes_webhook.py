from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from fastapi.responses import PlainTextResponse

from opsdesk.api.deps import ServiceContainer, get_container
from opsdesk.utils.log import get_logger

log = get_logger("webhook")

router = APIRouter(prefix="/api/webhook", tags=["webhook"])


@router.get("/whatsapp", summary="Webhook verification handshake")
def verify_webhook(
    mode: Optional[str] = Query(None, alias="hub.mode"),
    token: Optional[str] = Query(None, alias="hub.verify_token"),
    challenge: Optional[str] = Query(None, alias="hub.challenge"),
    container: ServiceContainer = Depends(get_container),
):
    echoed = container.webhook.verify(mode, token, challenge)
    if echoed is None:
        return PlainTextResponse("Forbidden", status_code=403)
    return PlainTextResponse(echoed)


@router.post("/whatsapp", summary="Receive WhatsApp notifications")
async def receive_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    container: ServiceContainer = Depends(get_container),
):
    try:
        body = await request.json()
    except ValueError:
        body = None
    if not container.webhook.is_whatsapp_notification(body):
        log.warning(f"not a WhatsApp notification: object={body.get('object') if isinstance(body, dict) else None}")
        return PlainTextResponse("Not Found", status_code=404)

    # acknowledge now; the provider retries anything slower than its deadline
    background_tasks.add_task(container.webhook.process_acknowledged, body)
    return PlainTextResponse("EVENT_RECEIVED")


@router.get("/health", summary="Webhook health")
def webhook_health(container: ServiceContainer = Depends(get_container)):
    return {
        "success": True,
        "service": "WhatsApp Webhook",
        "verify_token": "configured" if container.webhook.verify_token else "missing",
        "dedup_cache_size": len(container.dedup),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
