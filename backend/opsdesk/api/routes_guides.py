from fastapi import APIRouter, Depends, HTTPException

from opsdesk.api.deps import ServiceContainer, get_container
from opsdesk.schemas.guide_schema import SendGuidesIn
from opsdesk.utils.log import get_logger

log = get_logger("guides")

router = APIRouter(prefix="/api/guides", tags=["guides"])


@router.post("/send-whatsapp", summary="Send shipping guides over WhatsApp")
async def send_guides(payload: SendGuidesIn, container: ServiceContainer = Depends(get_container)):
    notifier = container.notifier
    if not payload.guides:
        raise HTTPException(status_code=400, detail="A non-empty list of guides is required")
    if not payload.transport or not notifier.guide_template(payload.transport):
        raise HTTPException(status_code=400, detail="A valid transport is required")

    guides = [g.model_dump() for g in payload.guides]
    log.info(f"sending {sum(1 for g in guides if g['selected'])} guide messages via {payload.transport}")
    items = [notifier.guide_item(g, payload.transport) for g in guides]
    results = await notifier.send_bulk(items)

    updated = []
    for guide, result in zip(guides, results):
        status = "skipped" if result.get("skipped") else ("sent" if result["success"] else "failed")
        updated.append(
            {
                **guide,
                "status": status,
                "message_id": result.get("messageId"),
                "error": result.get("error"),
            }
        )

    return {
        "success": True,
        "summary": {
            "total": len(results),
            "sent": sum(1 for r in results if r["success"]),
            "failed": sum(1 for r in results if not r["success"] and not r.get("skipped")),
            "skipped": sum(1 for r in results if r.get("skipped")),
        },
        "results": updated,
    }


@router.get("/templates", summary="Available guide templates")
def list_templates(container: ServiceContainer = Depends(get_container)):
    return {"success": True, "templates": container.notifier.get_templates()}


@router.get("/health", summary="Guides health")
def guides_health(container: ServiceContainer = Depends(get_container)):
    return {
        "success": True,
        "services": {"whatsapp": container.notifier.client.is_configured},
    }
