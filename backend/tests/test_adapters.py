import json
from urllib.parse import unquote

import httpx
import pytest

from opsdesk.adapters.object_storage import BucketNotFound, StorageError, SupabaseStorageAdapter
from opsdesk.adapters.settlement_client import PosSettlementClient, SettlementError
from opsdesk.adapters.sheets_google import GoogleSheetsBackend
from opsdesk.adapters.sheets_sql import SheetBackendError
from opsdesk.adapters.whatsapp_client import WhatsAppCloudClient, WhatsAppError

SUPABASE = "https://proj.supabase.co"
POS = "https://pos.example"


def _client(handler, seen=None):
    def record(request):
        if seen is not None:
            seen.append(request)
        return handler(request)

    return httpx.AsyncClient(transport=httpx.MockTransport(record))


# object storage


@pytest.mark.asyncio
async def test_receipt_upload_falls_back_when_bucket_missing():
    seen = []

    def handler(request):
        if "/object/refund-receipts/" in request.url.path:
            return httpx.Response(404, json={"error": "Bucket not found"})
        return httpx.Response(200, json={"Key": "receipts/x.pdf"})

    async with _client(handler, seen) as http:
        storage = SupabaseStorageAdapter(http, SUPABASE, "svc-key", "refund-receipts", fallback_bucket="receipts")
        url = await storage.upload_refund_receipt(b"%PDF", "#14923")

    assert len(seen) == 2
    assert seen[1].headers["Authorization"] == "Bearer svc-key"
    assert seen[1].headers["Content-Type"] == "application/pdf"
    assert seen[1].content == b"%PDF"
    assert url.startswith(f"{SUPABASE}/storage/v1/object/public/receipts/refunds/14923_")
    assert url.endswith(".pdf")


@pytest.mark.asyncio
async def test_receipt_upload_without_fallback_or_on_other_errors():
    async with _client(lambda r: httpx.Response(400, text="Bucket not found")) as http:
        storage = SupabaseStorageAdapter(http, SUPABASE, "svc-key")
        with pytest.raises(BucketNotFound):
            await storage.upload_refund_receipt(b"%PDF", "#1")

    async with _client(lambda r: httpx.Response(500, text="boom")) as http:
        storage = SupabaseStorageAdapter(http, SUPABASE, "svc-key", fallback_bucket="receipts")
        with pytest.raises(StorageError) as exc:
            await storage.upload_refund_receipt(b"%PDF", "#1")
    assert not isinstance(exc.value, BucketNotFound)
    assert "500" in str(exc.value)


@pytest.mark.asyncio
async def test_storage_not_configured():
    async with _client(lambda r: httpx.Response(200)) as http:
        storage = SupabaseStorageAdapter(http, None, None)
        assert storage.is_configured is False
        with pytest.raises(StorageError):
            await storage.upload(b"x", "application/pdf", "a.pdf")


# settlement


@pytest.mark.asyncio
async def test_settlement_adds_credentials():
    seen = []
    reply = {"success": True, "data": {"returnClosed": True}}

    async with _client(lambda r: httpx.Response(200, json=reply), seen) as http:
        pos = PosSettlementClient(http, POS + "/", "k-1", "shop.myshopify.com")
        result = await pos.complete_deposit_return({"returnId": "R-9", "rowIndex": 5})

    assert result == reply
    assert str(seen[0].url) == f"{POS}/api/complete-deposit-return"
    body = json.loads(seen[0].content)
    assert body == {"apiKey": "k-1", "shop": "shop.myshopify.com", "returnId": "R-9", "rowIndex": 5}


@pytest.mark.asyncio
async def test_settlement_error_bodies():
    async with _client(lambda r: httpx.Response(502, text="<html>bad gateway</html>")) as http:
        pos = PosSettlementClient(http, POS, "k-1", "shop")
        with pytest.raises(SettlementError):
            await pos.complete_deposit_return({})

    async with _client(lambda r: httpx.Response(500, json={"message": "crashed"})) as http:
        pos = PosSettlementClient(http, POS, "k-1", "shop")
        assert await pos.complete_deposit_return({}) == {"success": False, "error": "HTTP 500"}

    rejected = {"success": False, "error": "Return already closed"}
    async with _client(lambda r: httpx.Response(409, json=rejected)) as http:
        pos = PosSettlementClient(http, POS, "k-1", "shop")
        assert await pos.complete_deposit_return({}) == rejected


@pytest.mark.asyncio
async def test_settlement_not_configured():
    async with _client(lambda r: httpx.Response(200, json={})) as http:
        pos = PosSettlementClient(http, POS, "k-1", None)
        assert pos.is_configured is False
        with pytest.raises(SettlementError):
            await pos.complete_deposit_return({})


# whatsapp


@pytest.mark.asyncio
async def test_whatsapp_template_send():
    seen = []
    reply = {"messaging_product": "whatsapp", "messages": [{"id": "wamid.HBg"}]}

    async with _client(lambda r: httpx.Response(200, json=reply), seen) as http:
        wa = WhatsAppCloudClient(http, "1234", "tok", api_version="v18.0")
        components = [{"type": "body", "parameters": [{"type": "text", "text": "Ana"}]}]
        result = await wa.send_template("50212345678", "guia_forza", "es", components)

    assert result == {"messageId": "wamid.HBg"}
    assert str(seen[0].url) == "https://graph.facebook.com/v18.0/1234/messages"
    assert seen[0].headers["Authorization"] == "Bearer tok"
    body = json.loads(seen[0].content)
    assert body["to"] == "50212345678"
    assert body["template"] == {"name": "guia_forza", "language": {"code": "es"}, "components": components}


@pytest.mark.asyncio
async def test_whatsapp_provider_errors_carry_code():
    error = {"error": {"message": "(#131026) Message undeliverable", "code": 131026}}
    async with _client(lambda r: httpx.Response(400, json=error)) as http:
        wa = WhatsAppCloudClient(http, "1234", "tok")
        with pytest.raises(WhatsAppError) as exc:
            await wa.send_template("50212345678", "t", "es", [])
    assert exc.value.code == 131026
    assert "undeliverable" in str(exc.value)

    async with _client(lambda r: httpx.Response(503, text="unavailable")) as http:
        wa = WhatsAppCloudClient(http, "1234", "tok")
        with pytest.raises(WhatsAppError) as exc:
            await wa.send_template("50212345678", "t", "es", [])
    assert exc.value.code is None
    assert str(exc.value) == "HTTP 503"


@pytest.mark.asyncio
async def test_whatsapp_transport_failure():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async with _client(handler) as http:
        wa = WhatsAppCloudClient(http, "1234", "tok")
        with pytest.raises(WhatsAppError):
            await wa.send_template("50212345678", "t", "es", [])


# google sheets


@pytest.mark.asyncio
async def test_google_sheets_reads_and_writes():
    seen = []

    def handler(request):
        if request.method == "GET":
            return httpx.Response(200, json={"range": "REGISTRO!A2:AB3", "values": [["#1"], ["#2"]]})
        return httpx.Response(200, json={"totalUpdatedCells": 2})

    async with _client(handler, seen) as http:
        sheets = GoogleSheetsBackend(http, "sheet-1", "tok")
        rows = await sheets.get_values("REGISTRO!A2:AB")
        written = await sheets.batch_update({"REGISTRO!W5": "COMPLETADO", "REGISTRO!AB5": "https://r"})

    assert rows == [["#1"], ["#2"]]
    assert written == 2
    assert unquote(seen[0].url.path).endswith("/spreadsheets/sheet-1/values/REGISTRO!A2:AB")
    assert seen[0].headers["Authorization"] == "Bearer tok"
    body = json.loads(seen[1].content)
    assert body["valueInputOption"] == "RAW"
    assert body["data"] == [
        {"range": "REGISTRO!W5", "values": [["COMPLETADO"]]},
        {"range": "REGISTRO!AB5", "values": [["https://r"]]},
    ]


@pytest.mark.asyncio
async def test_google_sheets_failures_become_backend_errors():
    async with _client(lambda r: httpx.Response(403, json={"error": {"status": "PERMISSION_DENIED"}})) as http:
        sheets = GoogleSheetsBackend(http, "sheet-1", "tok")
        with pytest.raises(SheetBackendError):
            await sheets.get_values("REGISTRO!A2:AB")

    async with _client(lambda r: httpx.Response(200, text="<html>login</html>")) as http:
        sheets = GoogleSheetsBackend(http, "sheet-1", "tok")
        with pytest.raises(SheetBackendError):
            await sheets.get_values("REGISTRO!A2:AB")
        with pytest.raises(SheetBackendError):
            await sheets.batch_update({"REGISTRO!W5": "COMPLETADO"})
