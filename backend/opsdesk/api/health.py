from fastapi import APIRouter, Depends

from opsdesk.api.deps import ServiceContainer, get_container
from opsdesk.repositories.refund_repo import StoreUnavailable

router = APIRouter()


@router.get("/health", tags=["health"])
async def health(container: ServiceContainer = Depends(get_container)):
    s = container.settings
    store_ok = False
    try:
        await container.refunds.repo.get_by_row_index(2)
        store_ok = True
    except StoreUnavailable:
        store_ok = False

    whatsapp_ok = bool(s.WHATSAPP_PHONE_ID and s.WHATSAPP_ACCESS_TOKEN)
    return {
        "status": "ok" if store_ok and whatsapp_ok else "degraded",
        "store": store_ok,
        "whatsapp": whatsapp_ok,
        "storage": bool(s.SUPABASE_URL and s.SUPABASE_SERVICE_ROLE_KEY),
        "settlement": bool(s.POS_APP_URL and s.INTERNAL_API_KEY and s.SHOPIFY_SHOP_DOMAIN),
    }
