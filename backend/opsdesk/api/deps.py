from typing import Optional

import httpx
from fastapi import Header, Request

from opsdesk.adapters.object_storage import SupabaseStorageAdapter
from opsdesk.adapters.settlement_client import PosSettlementClient
from opsdesk.adapters.sheets_google import GoogleSheetsBackend
from opsdesk.adapters.sheets_sql import SqlSheetBackend
from opsdesk.adapters.whatsapp_client import WhatsAppCloudClient
from opsdesk.config import Settings
from opsdesk.db import SessionLocal
from opsdesk.repositories.refund_repo import RefundRepository
from opsdesk.services.dedup_cache import MessageDedupCache
from opsdesk.services.notification_service import FixedIntervalGate, NotificationService
from opsdesk.services.refund_service import RefundService
from opsdesk.services.webhook_service import WebhookService


class ServiceContainer:
    """Everything the routers need, built once per application."""

    def __init__(
        self,
        settings: Settings,
        refunds: RefundService,
        notifier: NotificationService,
        webhook: WebhookService,
        dedup: MessageDedupCache,
        http: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings
        self.refunds = refunds
        self.notifier = notifier
        self.webhook = webhook
        self.dedup = dedup
        self.http = http

    async def aclose(self):
        if self.http is not None:
            await self.http.aclose()


def build_container(settings: Settings, session_factory=None) -> ServiceContainer:
    http = httpx.AsyncClient(timeout=settings.OUTBOUND_TIMEOUT_SECONDS)

    if settings.SHEETS_BACKEND == "google":
        backend = GoogleSheetsBackend(http, settings.GOOGLE_SHEETS_ID, settings.GOOGLE_SHEETS_ACCESS_TOKEN)
    else:
        backend = SqlSheetBackend(session_factory or SessionLocal)

    whatsapp = WhatsAppCloudClient(
        http, settings.WHATSAPP_PHONE_ID, settings.WHATSAPP_ACCESS_TOKEN, settings.WHATSAPP_API_VERSION
    )
    notifier = NotificationService(
        whatsapp,
        gate=FixedIntervalGate(settings.WHATSAPP_SEND_INTERVAL_MS / 1000.0),
        language=settings.WHATSAPP_TEMPLATE_LANGUAGE,
        min_phone_length=settings.MIN_PHONE_LENGTH,
    )
    storage = SupabaseStorageAdapter(
        http,
        settings.SUPABASE_URL,
        settings.SUPABASE_SERVICE_ROLE_KEY,
        bucket=settings.REFUND_RECEIPTS_BUCKET,
        fallback_bucket=settings.REFUND_RECEIPTS_FALLBACK_BUCKET,
    )
    settlement = PosSettlementClient(http, settings.POS_APP_URL, settings.INTERNAL_API_KEY, settings.SHOPIFY_SHOP_DOMAIN)
    repo = RefundRepository(backend, sheet=settings.REFUNDS_SHEET_NAME, tz=settings.TIMEZONE)
    refunds = RefundService(repo, notifier, storage, settlement)

    dedup = MessageDedupCache()
    webhook = WebhookService(notifier, dedup, settings.WHATSAPP_WEBHOOK_VERIFY_TOKEN)
    return ServiceContainer(settings, refunds, notifier, webhook, dedup, http=http)


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_operator(x_operator_email: Optional[str] = Header(None, alias="X-Operator-Email")) -> str:
    return x_operator_email or "admin"
