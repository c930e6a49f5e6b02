import json

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from opsdesk.adapters.object_storage import StorageError
from opsdesk.adapters.settlement_client import SettlementError
from opsdesk.adapters.sheets_sql import SqlSheetBackend
from opsdesk.adapters.whatsapp_client import WhatsAppError
from opsdesk.api.deps import ServiceContainer
from opsdesk.config import settings
from opsdesk.db import init_db
from opsdesk.repositories import refund_repo as cols
from opsdesk.repositories.refund_repo import RefundRepository
from opsdesk.services.dedup_cache import MessageDedupCache
from opsdesk.services.notification_service import FixedIntervalGate, NotificationService
from opsdesk.services.refund_service import RefundService
from opsdesk.services.webhook_service import WebhookService

SHEET = "REGISTRO"
VERIFY_TOKEN = "test-verify-token"


def make_row(
    order_id="#1001",
    status="EN_PROCESO",
    phone="50212345678",
    method="efectivo",
    amount=150.0,
    extra=None,
    items=None,
    customer_name="Cliente Prueba",
    order_gid="",
    tax_id="CF",
    date="2026-10-01",
):
    cells = [""] * (cols.COL_RECEIPT_URL + 1)
    cells[cols.COL_ORDER] = order_id
    cells[cols.COL_TAX_ID] = tax_id
    cells[cols.COL_TAX_NAME] = customer_name
    cells[cols.COL_DATE] = date
    cells[cols.COL_PHONE] = phone
    cells[cols.COL_ORDER_GID] = order_gid
    cells[cols.COL_STATUS] = status
    cells[cols.COL_REFUND_ITEMS] = json.dumps(items or [{"name": "Item", "quantity": 1, "refundAmount": amount}])
    cells[cols.COL_REFUND_AMOUNT] = str(amount)
    data = {"method": method} if method else {}
    data.update(extra or {})
    cells[cols.COL_EXTRA_DATA] = json.dumps(data)
    return cells


class FakeWhatsAppClient:
    def __init__(self, fail=False, configured=True):
        self.fail = fail
        self.configured = configured
        self.calls = []

    @property
    def is_configured(self):
        return self.configured

    async def send_template(self, to, template_name, language_code, components):
        self.calls.append(
            {"to": to, "template": template_name, "language": language_code, "components": components}
        )
        if self.fail:
            raise WhatsAppError("(#131026) Message undeliverable", code=131026)
        return {"messageId": f"wamid.{len(self.calls)}"}


class FakeStorage:
    def __init__(self, fail=False, url="https://files.example/refunds/receipt.pdf"):
        self.fail = fail
        self.url = url
        self.calls = []

    async def upload_refund_receipt(self, data, order_number):
        self.calls.append((data, order_number))
        if self.fail:
            raise StorageError("bucket unreachable")
        return self.url


class FakeSettlement:
    def __init__(self, configured=True, response=None, fail=False):
        self.configured = configured
        self.response = response or {"success": True, "data": {"returnClosed": True}}
        self.fail = fail
        self.calls = []

    @property
    def is_configured(self):
        return self.configured

    async def complete_deposit_return(self, payload):
        self.calls.append(payload)
        if self.fail:
            raise SettlementError("POS timed out")
        return self.response


@pytest.fixture
def sql_backend():
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool, future=True
    )
    init_db(reset=True, bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield SqlSheetBackend(factory)
    engine.dispose()


@pytest.fixture
def repo(sql_backend):
    return RefundRepository(sql_backend, sheet=SHEET, tz="America/Guatemala")


@pytest.fixture
def whatsapp():
    return FakeWhatsAppClient()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def notifier(whatsapp, sleeps):
    async def fake_sleep(seconds):
        sleeps.append(seconds)

    return NotificationService(whatsapp, gate=FixedIntervalGate(0.5, sleep=fake_sleep), language="es")


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def settlement():
    return FakeSettlement()


@pytest.fixture
def refund_service(repo, notifier, storage, settlement):
    return RefundService(repo, notifier, storage, settlement, step_timeout=5)


@pytest.fixture
def container(refund_service, notifier):
    dedup = MessageDedupCache()
    webhook = WebhookService(notifier, dedup, VERIFY_TOKEN)
    return ServiceContainer(settings, refund_service, notifier, webhook, dedup)
